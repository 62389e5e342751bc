"""
Timestamp replay: exercise freshness and replay protection.

A timestamp field is moved strictly outside the acceptance window
[now - max_age, now + max_skew]; a nonce field is set back to a value
the target has already seen.
"""

from __future__ import annotations

import json
import math
from datetime import datetime, timezone
from typing import Any

from fuzzkit.errors import ConfigError
from fuzzkit.fuzzer.strategies import json_tree
from fuzzkit.fuzzer.strategies.base import MutationStrategy, register_strategy
from fuzzkit.models import FreshnessField, FuzzCase, RequestTemplate

# Body keys treated as freshness-bearing when a template declares none.
WELL_KNOWN_FIELDS = {
    "ts": "timestamp",
    "timestamp": "timestamp",
    "iat": "timestamp",
    "time": "timestamp",
    "request_time": "timestamp",
    "created_at": "timestamp",
    "nonce": "nonce",
    "jti": "nonce",
}

ISO_FORMAT = "%Y-%m-%dT%H:%M:%SZ"


def _guess_unit(value: Any) -> str:
    if isinstance(value, str):
        return "iso8601"
    if isinstance(value, (int, float)) and abs(value) >= 1e11:
        return "milliseconds"
    return "seconds"


def encode_timestamp(seconds: int, unit: str) -> Any:
    if unit == "milliseconds":
        return seconds * 1000
    if unit == "iso8601":
        return datetime.fromtimestamp(seconds, timezone.utc).strftime(ISO_FORMAT)
    return seconds


def decode_timestamp(value: Any, unit: str) -> float:
    if unit == "iso8601":
        parsed = datetime.strptime(str(value), ISO_FORMAT).replace(tzinfo=timezone.utc)
        return parsed.timestamp()
    if unit == "milliseconds":
        return float(value) / 1000
    return float(value)


def _as_example_type(raw: str, example: Any) -> Any:
    """Observed nonces are recorded as text; write them back with the example's JSON type."""
    if isinstance(example, bool) or example is None:
        return raw
    try:
        if isinstance(example, int):
            return int(raw)
        if isinstance(example, float):
            return float(raw)
    except ValueError:
        pass
    return raw


def _nonce_candidates(observed: tuple[str, ...], example: Any) -> list[Any]:
    values = [_as_example_type(raw, example) for raw in observed]
    if example is not None:
        values.append(example)
    unique: dict[tuple[str, str], Any] = {}
    for v in values:
        unique.setdefault((type(v).__name__, json.dumps(v, sort_keys=True)), v)
    return [unique[key] for key in sorted(unique)]


@register_strategy
class TimestampReplay(MutationStrategy):
    name = "timestamp_replay"
    description = "Stale/future timestamps outside the freshness window, reused nonces"

    def __init__(self, max_age: int = 300, max_skew: int = 300, margin: int = 3600):
        if max_age < 0 or max_skew < 0 or margin < 0:
            raise ConfigError("max_age, max_skew and margin must be >= 0")
        self.max_age = max_age
        self.max_skew = max_skew
        self.margin = margin

    def params(self) -> dict[str, Any]:
        return {"max_age": self.max_age, "max_skew": self.max_skew, "margin": self.margin}

    def supports(self, template: RequestTemplate) -> bool:
        return bool(self._fields(template))

    def generate(self, template: RequestTemplate, seed: int, reference_time: float) -> FuzzCase:
        rng = self.rng(template, seed)
        fields = self._fields(template)
        if not fields:
            raise ConfigError(f"template '{template.id}' has no freshness-bearing field")
        freshness, example = rng.choice(fields)

        if freshness.kind == "nonce":
            mode = "nonce_reuse"
            value: Any = rng.choice(_nonce_candidates(template.observed_nonces, example))
        else:
            mode = rng.choice(["stale", "future"])
            offset = 1 + rng.randint(0, self.margin)
            if mode == "stale":
                seconds = math.floor(reference_time) - self.max_age - offset
            else:
                seconds = math.ceil(reference_time) + self.max_skew + offset
            value = encode_timestamp(seconds, freshness.unit)

        headers = dict(template.headers)
        root = json_tree.to_tree(template.body)
        if freshness.location == "header":
            headers[freshness.path] = str(value)
        else:
            path = json_tree.resolve(root, freshness.path)
            root = json_tree.replace(root, path, value)

        body = b"" if template.body is None else json_tree.dump(root)
        mutation = f"{mode}@{freshness.location}:{freshness.path}"
        return self.make_case(template, seed, reference_time, mutation, body, headers=headers)

    def verify(self, template: RequestTemplate, case: FuzzCase) -> str | None:
        mode, _, target = case.mutation.partition("@")
        if mode not in ("stale", "future"):
            return None
        location, _, path = target.partition(":")
        freshness = next(
            (f for f, _ in self._fields(template) if f.location == location and f.path == path), None
        )
        if freshness is None:
            return f"timestamp_replay mutated undeclared field {target}"
        try:
            if location == "header":
                raw = case.headers[path]
                if freshness.unit != "iso8601":
                    raw = float(raw)
            else:
                raw = json_tree.read_dotted(json.loads(case.body), path)
            written = decode_timestamp(raw, freshness.unit)
        except (KeyError, ValueError, TypeError) as e:
            return f"timestamp_replay field {target} unreadable after mutation ({e})"

        low = case.generated_at - self.max_age
        high = case.generated_at + self.max_skew
        if low <= written <= high:
            return f"timestamp_replay value {written} lies inside freshness window [{low}, {high}]"
        return None

    def _fields(self, template: RequestTemplate) -> list[tuple[FreshnessField, Any]]:
        """Usable freshness fields paired with their example value."""
        declared = list(template.freshness_fields)
        if not declared and isinstance(template.body, dict):
            for key, kind in WELL_KNOWN_FIELDS.items():
                if key in template.body:
                    declared.append(FreshnessField(
                        path=key, kind=kind, unit=_guess_unit(template.body[key]),
                    ))

        usable = []
        for freshness in declared:
            if freshness.location == "header":
                example = template.headers.get(freshness.path)
            else:
                try:
                    example = json_tree.read_dotted(template.body, freshness.path)
                except KeyError:
                    continue
            if freshness.kind == "nonce" and example is None and not template.observed_nonces:
                continue
            usable.append((freshness, example))
        return usable
