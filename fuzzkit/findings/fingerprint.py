"""
Failure fingerprints: what makes two observations "the same finding".

Composition: classification | status signature | strategy | body shape.
The status signature is the status class ("5xx") by default, or the exact
code with status_granularity="exact"; transport failures use their kind.
The body shape is a key/type skeleton for JSON bodies and a normalized
excerpt (numbers and hex ids collapsed) for anything else.
"""

from __future__ import annotations

import hashlib
import json
import re
from dataclasses import dataclass
from typing import Any, Literal

from fuzzkit.models import Classification, DispatchResult, FuzzCase

HEX_RUN = re.compile(r"\b[0-9a-f]{8,}\b")
DIGITS = re.compile(r"\d+")
SPACES = re.compile(r"\s+")


def _shape(value: Any, depth: int) -> str:
    if isinstance(value, dict):
        if depth <= 0:
            return "object"
        inner = ",".join(f"{k}:{_shape(value[k], depth - 1)}" for k in sorted(value))
        return "{" + inner + "}"
    if isinstance(value, list):
        if depth <= 0 or not value:
            return "array"
        return "[" + _shape(value[0], depth - 1) + "]"
    if isinstance(value, bool):
        return "bool"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, str):
        return "string"
    return "null"


@dataclass(frozen=True)
class FingerprintPolicy:
    status_granularity: Literal["class", "exact"] = "class"
    body_shape_depth: int = 2
    body_sample: int = 512

    def status_signature(self, result: DispatchResult) -> str:
        if result.status_code is None:
            kind = result.error_kind.value if result.error_kind else "unknown"
            return f"transport:{kind}"
        if self.status_granularity == "exact":
            return str(result.status_code)
        return result.status_class

    def body_shape(self, result: DispatchResult) -> str:
        if not result.body:
            return "empty"
        try:
            return "json:" + _shape(json.loads(result.body.decode("utf-8")), self.body_shape_depth)
        except (UnicodeDecodeError, json.JSONDecodeError):
            pass
        text = result.body[: self.body_sample].decode("utf-8", errors="replace").lower()
        text = HEX_RUN.sub("H", text)
        text = DIGITS.sub("0", text)
        text = SPACES.sub(" ", text).strip()
        return "text:" + text

    def fingerprint(self, case: FuzzCase, classification: Classification, result: DispatchResult) -> str:
        key = "|".join([
            classification.value,
            self.status_signature(result),
            case.strategy,
            self.body_shape(result),
        ])
        return hashlib.sha256(key.encode("utf-8")).hexdigest()[:16]
