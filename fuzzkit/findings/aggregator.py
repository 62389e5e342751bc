"""
Results aggregator: fingerprint, dedup and persist findings; replay them for triage.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from fuzzkit.errors import ConfigError
from fuzzkit.findings.fingerprint import FingerprintPolicy
from fuzzkit.findings.store import FindingsStore
from fuzzkit.fuzzer.classifier import ResponseClassifier
from fuzzkit.fuzzer.mutation import MutationEngine
from fuzzkit.fuzzer.strategies import build_strategy
from fuzzkit.fuzzer.transport.http_dispatcher import HttpDispatcher
from fuzzkit.models import Classification, DispatchResult, Finding, FuzzCase
from fuzzkit.seeds import SeedManager

logger = logging.getLogger(__name__)

EXCERPT_LIMIT = 200


@dataclass
class ReplayOutcome:
    """Result of re-sending a stored finding's FuzzCase."""
    finding: Finding
    case: FuzzCase
    result: DispatchResult
    classification: Classification

    @property
    def reproduced(self) -> bool:
        return self.classification == self.finding.classification


class ResultsAggregator:

    def __init__(
        self,
        store: FindingsStore,
        policy: Optional[FingerprintPolicy] = None,
        seeds: Optional[SeedManager] = None,
        engine: Optional[MutationEngine] = None,
        dispatcher: Optional[HttpDispatcher] = None,
        classifier: Optional[ResponseClassifier] = None,
    ):
        self.store = store
        self.policy = policy or FingerprintPolicy()
        self.seeds = seeds
        self.engine = engine or MutationEngine()
        self.dispatcher = dispatcher
        self.classifier = classifier or ResponseClassifier()

    def record(self, case: FuzzCase, classification: Classification, result: DispatchResult) -> tuple[Finding, bool]:
        """Store a non-pass observation; returns (finding, is_new)."""
        fingerprint = self.policy.fingerprint(case, classification, result)
        excerpt = result.body[:EXCERPT_LIMIT].decode("utf-8", errors="replace") or result.error_message
        candidate = Finding(
            id=fingerprint[:12],
            fingerprint=fingerprint,
            template_id=case.template_id,
            strategy=case.strategy,
            strategy_params=dict(case.strategy_params),
            seed=case.seed,
            mutation=case.mutation,
            generated_at=case.generated_at,
            classification=classification,
            status_code=result.status_code,
            error_kind=result.error_kind,
            latency_ms=round(result.latency_ms, 2),
            body_excerpt=excerpt[:EXCERPT_LIMIT],
        )
        finding, is_new = self.store.record(candidate)
        if is_new:
            logger.info("new finding %s", finding.short_str())
        else:
            logger.debug("repeat of %s (seen %d times)", finding.id, finding.observation_count)
        return finding, is_new

    def regenerate(self, finding_id: str) -> FuzzCase:
        """Rebuild the exact FuzzCase a finding was recorded from."""
        finding = self.store.get(finding_id)
        if finding is None:
            raise ConfigError(f"unknown finding id: {finding_id}")
        if self.seeds is None:
            raise ConfigError("replay needs the templates the finding was generated from")
        template = self.seeds.get(finding.template_id)
        strategy = build_strategy(finding.strategy, **finding.strategy_params)
        return self.engine.generate(template, strategy, finding.seed, reference_time=finding.generated_at)

    async def replay(self, finding_id: str) -> ReplayOutcome:
        """Regenerate a finding's case and send it again for triage confirmation."""
        if self.dispatcher is None:
            raise ConfigError("replay needs a dispatcher")
        case = self.regenerate(finding_id)
        finding = self.store.get(finding_id)
        result = await self.dispatcher.send(case)
        classification = self.classifier.classify(result)
        outcome = ReplayOutcome(finding=finding, case=case, result=result, classification=classification)
        logger.info(
            "replayed %s: %s (recorded %s)", finding_id, classification.value, finding.classification.value
        )
        return outcome
