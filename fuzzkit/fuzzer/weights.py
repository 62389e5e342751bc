"""
Adaptive strategy weights: a multiplicative-feedback bandit heuristic.

Every weight stays >= floor and the vector always sums to 1, so no strategy
is ever abandoned. Swap this class out for UCB or Thompson sampling without
touching the scheduler: it only calls draw(), reward() and snapshot().
"""

from __future__ import annotations

import random
from typing import Iterable, Optional

from fuzzkit.errors import ConfigError


class StrategyWeights:

    def __init__(self, names: Iterable[str], floor: float = 0.05, boost: float = 1.5):
        self.names = list(dict.fromkeys(names))
        if not self.names:
            raise ConfigError("at least one strategy is required")
        if floor < 0 or floor * len(self.names) > 1:
            raise ConfigError(
                f"exploration floor {floor} is impossible for {len(self.names)} strategies"
            )
        if boost < 1:
            raise ConfigError("boost factor must be >= 1")
        self.floor = floor
        self.boost = boost
        self._weights = {name: 1.0 / len(self.names) for name in self.names}

    def snapshot(self) -> dict[str, float]:
        return dict(self._weights)

    def __getitem__(self, name: str) -> float:
        return self._weights[name]

    def draw(self, rng: random.Random, allowed: Optional[Iterable[str]] = None) -> str:
        """Weighted random choice, optionally restricted to a subset."""
        if allowed is None:
            pool = self.names
        else:
            allowed = set(allowed)
            pool = [n for n in self.names if n in allowed]
        if not pool:
            raise ConfigError("no strategy applies")
        return rng.choices(pool, weights=[self._weights[n] for n in pool], k=1)[0]

    def reward(self, name: str) -> None:
        """A strategy produced a new finding: boost it and renormalize."""
        self._weights[name] *= self.boost
        self._weights = self._normalize(self._weights)

    def _normalize(self, weights: dict[str, float]) -> dict[str, float]:
        """Scale to sum 1, then clamp to the floor, redistributing the rest proportionally."""
        total = sum(weights.values())
        result = {n: w / total for n, w in weights.items()}
        clamped: set[str] = set()
        while True:
            low = {n for n, w in result.items() if n not in clamped and w < self.floor}
            if not low:
                break
            clamped |= low
            free = [n for n in result if n not in clamped]
            remaining = 1.0 - self.floor * len(clamped)
            free_total = sum(result[n] for n in free)
            for n in clamped:
                result[n] = self.floor
            for n in free:
                result[n] = remaining * result[n] / free_total if free_total else remaining / len(free)
        return result
