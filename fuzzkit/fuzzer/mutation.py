"""
Mutation engine: (template, strategy, seed) → FuzzCase, deterministically.
"""

from __future__ import annotations

import hashlib
import logging
import time
from typing import Callable

from fuzzkit.errors import InternalError
from fuzzkit.fuzzer.strategies.base import MutationStrategy
from fuzzkit.models import FuzzCase, RequestTemplate

logger = logging.getLogger(__name__)


def derive_seed(base_seed: int, index: int) -> int:
    """Per-case seed from the campaign seed and the case's sequence number."""
    digest = hashlib.sha256(f"{base_seed}:{index}".encode()).digest()
    return int.from_bytes(digest[:4], "big")


class MutationEngine:
    """Runs strategies and enforces their postconditions."""

    def __init__(self, clock: Callable[[], float] = time.time):
        self.clock = clock

    def generate(
        self,
        template: RequestTemplate,
        strategy: MutationStrategy,
        seed: int,
        reference_time: float | None = None,
    ) -> FuzzCase:
        """
        Generate one FuzzCase.

        reference_time is the "now" the strategy reasons about (timestamp
        windows); it is stored on the case so replay can regenerate the exact
        same bytes later. Defaults to the engine clock.
        """
        if reference_time is None:
            reference_time = float(int(self.clock()))
        case = strategy.generate(template, seed, reference_time)

        inputs = {
            "template": template.id,
            "strategy": strategy.name,
            "params": strategy.params(),
            "seed": seed,
            "reference_time": reference_time,
        }
        if case.template_id != template.id or case.strategy != strategy.name:
            raise InternalError("fuzz case must reference its originating template and strategy", inputs)
        violation = strategy.verify(template, case)
        if violation:
            raise InternalError(violation, inputs)

        logger.debug("generated %s", case.short_str())
        return case
