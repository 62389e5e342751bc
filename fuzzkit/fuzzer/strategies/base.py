"""
Base strategy interface: all mutation strategies inherit from this.
"""

from __future__ import annotations

import hashlib
import random
from abc import ABC, abstractmethod
from typing import Any

from fuzzkit.errors import ConfigError
from fuzzkit.models import FuzzCase, RequestTemplate

STRATEGY_REGISTRY: dict[str, type["MutationStrategy"]] = {}


def register_strategy(cls: type["MutationStrategy"]) -> type["MutationStrategy"]:
    """Class decorator adding a strategy to the registry under its name."""
    STRATEGY_REGISTRY[cls.name] = cls
    return cls


def available_strategies() -> list[str]:
    return sorted(STRATEGY_REGISTRY)


def build_strategy(name: str, **params: Any) -> "MutationStrategy":
    """Instantiate a registered strategy by name."""
    try:
        cls = STRATEGY_REGISTRY[name]
    except KeyError:
        raise ConfigError(
            f"unknown strategy '{name}' (available: {', '.join(available_strategies())})"
        ) from None
    try:
        return cls(**params)
    except TypeError as e:
        raise ConfigError(f"invalid parameters for strategy '{name}': {e}") from e


class MutationStrategy(ABC):
    """Abstract base class for all fuzzkit mutation strategies."""

    name: str = "base"
    description: str = "Base strategy"

    @abstractmethod
    def params(self) -> dict[str, Any]:
        """Constructor parameters; enough to rebuild an identical strategy."""
        ...

    @abstractmethod
    def generate(self, template: RequestTemplate, seed: int, reference_time: float) -> FuzzCase:
        """
        Produce one malformed request from a template.

        Must be a pure function of (template, params, seed, reference_time).
        """
        ...

    def supports(self, template: RequestTemplate) -> bool:
        return True

    def verify(self, template: RequestTemplate, case: FuzzCase) -> str | None:
        """Check the strategy's postcondition; return the violated invariant or None."""
        return None

    def rng(self, template: RequestTemplate, seed: int) -> random.Random:
        key = f"{self.name}:{template.id}:{seed}".encode()
        return random.Random(int.from_bytes(hashlib.sha256(key).digest()[:8], "big"))

    def make_case(
        self,
        template: RequestTemplate,
        seed: int,
        reference_time: float,
        mutation: str,
        body: bytes,
        headers: dict[str, str] | None = None,
    ) -> FuzzCase:
        return FuzzCase(
            template_id=template.id,
            strategy=self.name,
            strategy_params=self.params(),
            seed=seed,
            mutation=mutation,
            method=template.method.upper(),
            path=template.path,
            headers=dict(template.headers if headers is None else headers),
            body=body,
            generated_at=reference_time,
            expects_json=template.expects_json,
        )

    def __repr__(self) -> str:
        return f"<Strategy:{self.name}>"
