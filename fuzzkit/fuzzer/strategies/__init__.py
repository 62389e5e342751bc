"""Built-in mutation strategies; importing this package registers them."""

from fuzzkit.fuzzer.strategies.base import (
    STRATEGY_REGISTRY,
    MutationStrategy,
    available_strategies,
    build_strategy,
    register_strategy,
)
from fuzzkit.fuzzer.strategies.oversized import OversizedPayload
from fuzzkit.fuzzer.strategies.structural import StructuralCorruption
from fuzzkit.fuzzer.strategies.timestamp_replay import TimestampReplay

__all__ = [
    "STRATEGY_REGISTRY",
    "MutationStrategy",
    "OversizedPayload",
    "StructuralCorruption",
    "TimestampReplay",
    "available_strategies",
    "build_strategy",
    "register_strategy",
]
