"""
Oversized payload: pad the body past the size the target claims to accept.
"""

from __future__ import annotations

from typing import Any

from fuzzkit.errors import ConfigError
from fuzzkit.fuzzer.strategies import json_tree
from fuzzkit.fuzzer.strategies.base import MutationStrategy, register_strategy
from fuzzkit.fuzzer.strategies.json_tree import JsonObject
from fuzzkit.models import FuzzCase, RequestTemplate

DEFAULT_THRESHOLD = 64 * 1024
FILLERS = ("A", "0", "x", " ")
PAD_KEY = "padding"


@register_strategy
class OversizedPayload(MutationStrategy):
    name = "oversized_payload"
    description = "Pad a field (or the body) until it is strictly larger than the accepted size"

    def __init__(self, threshold: int | None = None, overshoot: int = 256):
        if threshold is not None and threshold < 0:
            raise ConfigError("threshold must be >= 0")
        if overshoot < 1:
            raise ConfigError("overshoot must be >= 1")
        self.threshold = threshold
        self.overshoot = overshoot

    def params(self) -> dict[str, Any]:
        return {"threshold": self.threshold, "overshoot": self.overshoot}

    def threshold_for(self, template: RequestTemplate) -> int:
        if self.threshold is not None:
            return self.threshold
        if template.max_body_size is not None:
            return template.max_body_size
        return DEFAULT_THRESHOLD

    def generate(self, template: RequestTemplate, seed: int, reference_time: float) -> FuzzCase:
        rng = self.rng(template, seed)
        threshold = self.threshold_for(template)
        target = threshold + rng.randint(1, self.overshoot)
        filler = rng.choice(FILLERS)

        root = json_tree.to_tree(template.body)
        root, path = self._pad_target(root, template, rng)
        where = json_tree.label(root, path)

        current = json_tree.get(root, path)
        base_len = len(json_tree.dump(root))
        need = max(0, target - base_len)
        root = json_tree.replace(root, path, current + filler * need)

        body = json_tree.dump(root)
        return self.make_case(template, seed, reference_time, f"pad@{where}:{len(body)}", body)

    def verify(self, template: RequestTemplate, case: FuzzCase) -> str | None:
        threshold = self.threshold_for(template)
        if len(case.body) <= threshold:
            return f"oversized_payload body length {len(case.body)} must exceed threshold {threshold}"
        return None

    def _pad_target(self, root: Any, template: RequestTemplate, rng) -> tuple[Any, json_tree.Path]:
        """Pick the string node to grow, creating one when the body has none."""
        if template.oversize_field:
            path = json_tree.resolve(root, template.oversize_field)
            if path is not None and isinstance(json_tree.get(root, path), str):
                return root, path

        strings = [p for p, n in json_tree.walk(root) if isinstance(n, str)]
        if strings:
            return root, rng.choice(strings)

        if isinstance(root, JsonObject):
            root.pairs.append([PAD_KEY, ""])
            return root, (("k", len(root.pairs) - 1),)
        if isinstance(root, list):
            root.append("")
            return root, (("i", len(root) - 1),)
        return "", ()
