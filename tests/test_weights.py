"""Tests for adaptive strategy weights."""
import random

import pytest

from fuzzkit.errors import ConfigError
from fuzzkit.fuzzer.weights import StrategyWeights

NAMES = ["structural_corruption", "oversized_payload", "timestamp_replay"]


def test_starts_uniform():
    weights = StrategyWeights(NAMES)
    assert weights.snapshot() == pytest.approx({n: 1 / 3 for n in NAMES})


def test_reward_boosts_and_renormalizes():
    weights = StrategyWeights(NAMES, boost=1.5)
    weights.reward("oversized_payload")
    snap = weights.snapshot()
    assert sum(snap.values()) == pytest.approx(1.0)
    assert snap["oversized_payload"] == pytest.approx(1.5 / 3.5)
    assert snap["structural_corruption"] == pytest.approx(1 / 3.5)


def test_floor_holds_under_repeated_rewards():
    """No strategy ever drops below the exploration floor."""
    weights = StrategyWeights(NAMES, floor=0.05, boost=2.0)
    for _ in range(200):
        weights.reward("structural_corruption")
        snap = weights.snapshot()
        assert sum(snap.values()) == pytest.approx(1.0)
        assert min(snap.values()) >= 0.05 - 1e-12
    assert weights["oversized_payload"] == pytest.approx(0.05)
    assert weights["structural_corruption"] == pytest.approx(0.9)


def test_impossible_floor_rejected():
    with pytest.raises(ConfigError):
        StrategyWeights(NAMES, floor=0.4)
    with pytest.raises(ConfigError):
        StrategyWeights([])


def test_draw_respects_allowed_subset():
    weights = StrategyWeights(NAMES)
    rng = random.Random(0)
    drawn = {weights.draw(rng, allowed=["timestamp_replay"]) for _ in range(20)}
    assert drawn == {"timestamp_replay"}
    with pytest.raises(ConfigError):
        weights.draw(rng, allowed=[])


def test_draw_follows_weights():
    weights = StrategyWeights(NAMES, floor=0.05, boost=3.0)
    for _ in range(10):
        weights.reward("oversized_payload")
    rng = random.Random(1)
    draws = [weights.draw(rng) for _ in range(1000)]
    assert draws.count("oversized_payload") > 800
    assert draws.count("timestamp_replay") > 0
