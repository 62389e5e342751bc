"""
Response classifier: DispatchResult → Classification via an ordered rule list.

A rule is any callable (result, classifier) -> Classification | None.
The first rule returning a label wins; no label means PASS.
"""

from __future__ import annotations

import json
import logging
from typing import Callable, Optional

from fuzzkit.errors import ProtocolError
from fuzzkit.models import Classification, ConnectionOutcome, DispatchResult, TransportErrorKind

logger = logging.getLogger(__name__)

Rule = Callable[[DispatchResult, "ResponseClassifier"], Optional[Classification]]

STACK_TRACE_MARKERS = [
    "traceback (most recent call last)",
    "stack trace",
    "at object.",
    "panic:",
    "goroutine ",
    "exception in thread",
    "nullpointerexception",
    "undefined method",
]


def parse_json_body(result: DispatchResult):
    """Decode a JSON response body or raise ProtocolError."""
    try:
        return json.loads(result.body.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise ProtocolError(f"response body is not well-formed JSON: {e}") from e


# ── Default rules ────────────────────────────────────────────────────────────

def abandoned_rule(result: DispatchResult, classifier: "ResponseClassifier") -> Optional[Classification]:
    # Cut short by cancellation; no evidence either way.
    if result.outcome == ConnectionOutcome.ABANDONED:
        return Classification.PASS
    return None


def timeout_rule(result: DispatchResult, classifier: "ResponseClassifier") -> Optional[Classification]:
    if result.is_transport_error and result.error_kind == TransportErrorKind.TIMEOUT:
        return Classification.TIMEOUT
    return None


def transport_failure_rule(result: DispatchResult, classifier: "ResponseClassifier") -> Optional[Classification]:
    if result.is_transport_error:
        return Classification.CRASH
    return None


def rate_limit_rule(result: DispatchResult, classifier: "ResponseClassifier") -> Optional[Classification]:
    if result.status_code == 429:
        return Classification.RATE_LIMITED
    if result.status_code == 503 and "retry-after" in result.headers:
        return Classification.RATE_LIMITED
    for header in ("ratelimit-remaining", "x-ratelimit-remaining", "x-rate-limit-remaining"):
        if result.headers.get(header, "").strip() == "0" and result.status_code and result.status_code >= 400:
            return Classification.RATE_LIMITED
    return None


def server_error_rule(result: DispatchResult, classifier: "ResponseClassifier") -> Optional[Classification]:
    if result.status_code is not None and result.status_code >= 500:
        return Classification.ANOMALY
    return None


def malformed_body_rule(result: DispatchResult, classifier: "ResponseClassifier") -> Optional[Classification]:
    if not result.body or result.body_truncated:
        return None
    expect_json = classifier.expect_json if result.expects_json is None else result.expects_json
    if not (expect_json or "json" in result.content_type.lower()):
        return None
    try:
        parse_json_body(result)
    except ProtocolError as e:
        logger.debug("protocol error: %s", e)
        return Classification.ANOMALY
    return None


def stack_trace_rule(result: DispatchResult, classifier: "ResponseClassifier") -> Optional[Classification]:
    # Servers leaking internals
    if not result.body:
        return None
    text = result.body.decode("utf-8", errors="replace").lower()
    if any(marker in text for marker in STACK_TRACE_MARKERS):
        return Classification.ANOMALY
    return None


def slow_response_rule(threshold_ms: float) -> Rule:
    """Flag responses slower than threshold_ms as a resource-exhaustion anomaly."""
    def rule(result: DispatchResult, classifier: "ResponseClassifier") -> Optional[Classification]:
        if result.outcome == ConnectionOutcome.RESPONDED and result.latency_ms > threshold_ms:
            return Classification.ANOMALY
        return None
    rule.__name__ = f"slow_response_rule_{int(threshold_ms)}ms"
    return rule


DEFAULT_RULES: list[Rule] = [
    abandoned_rule,
    timeout_rule,
    transport_failure_rule,
    rate_limit_rule,
    server_error_rule,
    malformed_body_rule,
    stack_trace_rule,
]


class ResponseClassifier:
    """Pluggable, rule-based policy. Sees DispatchResults only."""

    def __init__(self, rules: Optional[list[Rule]] = None, expect_json: bool = True):
        self.rules: list[Rule] = list(DEFAULT_RULES if rules is None else rules)
        self.expect_json = expect_json

    def add_rule(self, rule: Rule, first: bool = False) -> None:
        if first:
            self.rules.insert(0, rule)
        else:
            self.rules.append(rule)

    def classify(self, result: DispatchResult) -> Classification:
        for rule in self.rules:
            label = rule(result, self)
            if label is not None:
                return label
        return Classification.PASS
