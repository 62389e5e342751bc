"""
Structural corruption: break the JSON body in exactly one well-attributed way.

Operations:
  key_removal        drop a key from an object
  key_duplication    repeat a key with a conflicting value
  type_substitution  swap a scalar for a value of an incompatible type
  truncation         cut the serialized body at a token boundary
  deep_nesting       splice in nesting deeper than the configured limit
  invalid_bytes      put invalid UTF-8 inside a string value
"""

from __future__ import annotations

import copy
import json
import random
from typing import Any, Callable

from fuzzkit.errors import ConfigError
from fuzzkit.fuzzer.strategies import json_tree
from fuzzkit.fuzzer.strategies.base import MutationStrategy, register_strategy
from fuzzkit.fuzzer.strategies.json_tree import JsonObject, RawFragment
from fuzzkit.models import FuzzCase, RequestTemplate

OPERATIONS = (
    "key_removal",
    "key_duplication",
    "type_substitution",
    "truncation",
    "deep_nesting",
    "invalid_bytes",
)

INVALID_SEQUENCES = [
    b"\xff\xfe",            # never valid in UTF-8
    b"\xc0\xaf",            # overlong '/'
    b"\xed\xa0\x80",        # UTF-16 surrogate half
    b"\x80\x80",            # bare continuation bytes
    b"\xf8\x88\x80\x80\x80",  # 5-byte form
    b"\xe2\x82",            # truncated 3-byte sequence
]

BOUNDARY_BEFORE = b"{[,:"
BOUNDARY_AT = b"}],:\""


def _incompatible(value: Any, rng: random.Random) -> Any:
    """A replacement whose JSON type differs from value's."""
    if isinstance(value, bool):
        choices: list[Any] = ["true", 1, None, [value]]
    elif isinstance(value, (int, float)):
        choices = [str(value), True, [value], JsonObject([["value", value]])]
    elif isinstance(value, str):
        choices = [len(value), False, [value], JsonObject([[value[:16] or "k", value]])]
    else:  # null
        choices = [0, "null", [], JsonObject()]
    return copy.deepcopy(rng.choice(choices))


@register_strategy
class StructuralCorruption(MutationStrategy):
    name = "structural_corruption"
    description = "Key removal/duplication, type substitution, truncation, deep nesting, invalid bytes"

    def __init__(self, max_mutations: int = 1, nesting_limit: int = 64, operations: list[str] | None = None):
        if max_mutations < 1:
            raise ConfigError("max_mutations must be >= 1")
        if nesting_limit < 1:
            raise ConfigError("nesting_limit must be >= 1")
        ops = list(operations or OPERATIONS)
        unknown = [op for op in ops if op not in OPERATIONS]
        if unknown:
            raise ConfigError(f"unknown structural operations: {', '.join(unknown)}")
        self.max_mutations = max_mutations
        self.nesting_limit = nesting_limit
        self.operations = ops

    def params(self) -> dict[str, Any]:
        return {
            "max_mutations": self.max_mutations,
            "nesting_limit": self.nesting_limit,
            "operations": list(self.operations),
        }

    def generate(self, template: RequestTemplate, seed: int, reference_time: float) -> FuzzCase:
        rng = self.rng(template, seed)
        root = json_tree.to_tree(template.body)
        if not self._candidates(root):
            raise ConfigError(f"template '{template.id}' offers no applicable structural operation")
        applied: list[str] = []
        truncate = False

        for _ in range(rng.randint(1, self.max_mutations)):
            candidates = self._candidates(root)
            if not candidates:
                break
            op = rng.choice(sorted(candidates))
            if op == "truncation":
                truncate = True
                applied.append(op)
                break
            root, where = candidates[op](root, rng)
            applied.append(f"{op}@{where}")

        body = json_tree.dump(root)
        if not truncate and body == json_tree.canonical_body(template.body):
            # stacked operations cancelled each other out; one more always changes the body
            candidates = self._candidates(root)
            op = rng.choice(sorted(candidates))
            if op == "truncation":
                truncate = True
                applied.append(op)
            else:
                root, where = candidates[op](root, rng)
                applied.append(f"{op}@{where}")
                body = json_tree.dump(root)
        if truncate:
            body = self._truncate(body, rng)
        return self.make_case(template, seed, reference_time, "+".join(applied), body)

    def supports(self, template: RequestTemplate) -> bool:
        return bool(self._candidates(json_tree.to_tree(template.body)))

    def verify(self, template: RequestTemplate, case: FuzzCase) -> str | None:
        if case.body == json_tree.canonical_body(template.body):
            return "structural_corruption must change the body"
        return None

    # ── operation discovery ──────────────────────────────────────────────

    def _candidates(self, root: Any) -> dict[str, Callable[[Any, random.Random], tuple[Any, str]]]:
        nodes = list(json_tree.walk(root))
        keyed = [(p, i) for p, n in nodes if isinstance(n, JsonObject) for i in range(len(n.pairs))]
        scalars = [p for p, n in nodes if json_tree.is_scalar(n)]
        strings = [p for p, n in nodes if isinstance(n, str)]
        values = [p for p, n in nodes if not isinstance(n, RawFragment)]
        size = len(json_tree.dump(root))

        available: dict[str, Callable[[Any, random.Random], tuple[Any, str]]] = {}
        if keyed:
            available["key_removal"] = lambda r, g: self._remove_key(r, g, keyed)
            available["key_duplication"] = lambda r, g: self._duplicate_key(r, g, keyed)
        if scalars:
            available["type_substitution"] = lambda r, g: self._substitute_type(r, g, scalars)
        if size >= 2:
            available["truncation"] = lambda r, g: (r, "")
        if values:
            available["deep_nesting"] = lambda r, g: self._nest(r, g, values)
        if strings:
            available["invalid_bytes"] = lambda r, g: self._invalid_bytes(r, g, strings)
        return {op: fn for op, fn in available.items() if op in self.operations}

    # ── operations ───────────────────────────────────────────────────────

    def _remove_key(self, root, rng, keyed):
        path, idx = rng.choice(keyed)
        obj = json_tree.get(root, path)
        key = obj.pairs[idx][0]
        where = json_tree.label(root, path + (("k", idx),))
        del obj.pairs[idx]
        return root, where or key

    def _duplicate_key(self, root, rng, keyed):
        path, idx = rng.choice(keyed)
        obj = json_tree.get(root, path)
        key, value = obj.pairs[idx]
        where = json_tree.label(root, path + (("k", idx),))
        dup = _incompatible(value, rng) if json_tree.is_scalar(value) else copy.deepcopy(value)
        obj.pairs.insert(idx + 1, [key, dup])
        return root, where

    def _substitute_type(self, root, rng, scalars):
        path = rng.choice(scalars)
        where = json_tree.label(root, path)
        root = json_tree.replace(root, path, _incompatible(json_tree.get(root, path), rng))
        return root, where

    def _nest(self, root, rng, values):
        path = rng.choice(values)
        where = json_tree.label(root, path)
        depth = self.nesting_limit + 1 + rng.randint(0, self.nesting_limit)
        if rng.random() < 0.5:
            fragment = b"[" * depth + b"]" * depth
        else:
            fragment = b'{"a":' * depth + b"1" + b"}" * depth
        root = json_tree.replace(root, path, RawFragment(fragment))
        return root, f"{where}:{depth}"

    def _invalid_bytes(self, root, rng, strings):
        path = rng.choice(strings)
        where = json_tree.label(root, path)
        text = json_tree.get(root, path)
        pos = rng.randint(0, len(text))
        bad = rng.choice(INVALID_SEQUENCES)
        head = json.dumps(text[:pos], ensure_ascii=False)[1:-1].encode("utf-8")
        tail = json.dumps(text[pos:], ensure_ascii=False)[1:-1].encode("utf-8")
        root = json_tree.replace(root, path, RawFragment(b'"' + head + bad + tail + b'"'))
        return root, where

    def _truncate(self, body: bytes, rng: random.Random) -> bytes:
        boundaries = [
            i for i in range(1, len(body))
            if (body[i - 1] in BOUNDARY_BEFORE or body[i] in BOUNDARY_AT)
            and not 0x80 <= body[i] <= 0xBF
        ]
        if not boundaries:
            boundaries = [i for i in range(1, len(body)) if not 0x80 <= body[i] <= 0xBF] or [1]
        return body[: rng.choice(boundaries)]
