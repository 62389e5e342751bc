"""Tests for the rule-based response classifier."""
import pytest

from fuzzkit.errors import ProtocolError
from fuzzkit.fuzzer.classifier import ResponseClassifier, parse_json_body, slow_response_rule
from fuzzkit.models import Classification, ConnectionOutcome, DispatchResult, TransportErrorKind


def _response(status=200, body=b'{"ok": true}', content_type="application/json", headers=None, **kwargs) -> DispatchResult:
    return DispatchResult(
        outcome=ConnectionOutcome.RESPONDED, status_code=status, body=body,
        content_type=content_type, headers=headers or {}, **kwargs,
    )


def _transport_error(kind: TransportErrorKind, outcome=ConnectionOutcome.TRANSPORT_ERROR) -> DispatchResult:
    return DispatchResult(outcome=outcome, error_kind=kind, attempts=3)


@pytest.mark.parametrize("result,expected", [
    (_response(), Classification.PASS),
    (_response(400, b'{"error": "invalid"}'), Classification.PASS),
    (_response(413, b""), Classification.PASS),
    (_response(500, b'{"error": "internal"}'), Classification.ANOMALY),
    (_response(502, b"bad gateway", "text/html"), Classification.ANOMALY),
    (_response(429, b""), Classification.RATE_LIMITED),
    (_response(503, b"", headers={"retry-after": "5"}), Classification.RATE_LIMITED),
    (_response(403, b'{}', headers={"x-ratelimit-remaining": "0"}), Classification.RATE_LIMITED),
    (_response(503, b'{"error": "down"}'), Classification.ANOMALY),
    (_transport_error(TransportErrorKind.TIMEOUT), Classification.TIMEOUT),
    (_transport_error(TransportErrorKind.CONNECTION_RESET), Classification.CRASH),
    (_transport_error(TransportErrorKind.CONNECTION_REFUSED), Classification.CRASH),
    (_transport_error(TransportErrorKind.CONNECTION_CLOSED), Classification.CRASH),
    (_transport_error(TransportErrorKind.CONNECTION_RESET, ConnectionOutcome.ABANDONED), Classification.PASS),
])
def test_default_rules(result, expected):
    assert ResponseClassifier().classify(result) == expected


def test_malformed_json_body_is_anomaly():
    result = _response(200, b'{"ok": tru')
    assert ResponseClassifier().classify(result) == Classification.ANOMALY


def test_non_json_body_ok_when_not_expected():
    """Plain-text endpoints only get the JSON check when they claim to be JSON."""
    classifier = ResponseClassifier(expect_json=False)
    assert classifier.classify(_response(200, b"hello", "text/plain")) == Classification.PASS
    assert classifier.classify(_response(200, b"hello", "application/json")) == Classification.ANOMALY


def test_json_expectation_follows_each_result():
    """One plain-text template does not switch off the JSON check for the others."""
    classifier = ResponseClassifier()
    assert classifier.classify(_response(200, b"hello", "text/plain", expects_json=False)) == Classification.PASS
    assert classifier.classify(_response(200, b"hello", "text/plain", expects_json=True)) == Classification.ANOMALY
    assert ResponseClassifier(expect_json=False).classify(
        _response(200, b"hello", "text/plain", expects_json=True)
    ) == Classification.ANOMALY


def test_truncated_body_not_judged_malformed():
    result = _response(200, b'{"items": [1, 2, 3', body_truncated=True)
    assert ResponseClassifier().classify(result) == Classification.PASS


def test_stack_trace_leak_is_anomaly():
    body = b'{"error": "Traceback (most recent call last):\\n  File \\"app.py\\""}'
    assert ResponseClassifier().classify(_response(400, body)) == Classification.ANOMALY


def test_slow_response_rule():
    classifier = ResponseClassifier()
    classifier.add_rule(slow_response_rule(500))
    assert classifier.classify(_response(latency_ms=800)) == Classification.ANOMALY
    assert classifier.classify(_response(latency_ms=100)) == Classification.PASS


def test_custom_rule_first_wins():
    classifier = ResponseClassifier()
    classifier.add_rule(lambda result, c: Classification.CRASH if result.status_code == 418 else None, first=True)
    assert classifier.classify(_response(418)) == Classification.CRASH
    assert classifier.classify(_response(500)) == Classification.ANOMALY


def test_empty_rule_list_passes_everything():
    assert ResponseClassifier(rules=[]).classify(_response(500)) == Classification.PASS


def test_parse_json_body_raises_protocol_error():
    with pytest.raises(ProtocolError):
        parse_json_body(_response(200, b"\xff\xfe"))
    assert parse_json_body(_response(200, b'[1]')) == [1]
