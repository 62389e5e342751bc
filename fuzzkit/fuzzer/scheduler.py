"""
Campaign scheduler: the single coordinating loop of a fuzzing campaign.

Lifecycle: idle → running → (draining | cancelled) → stopped

Only this loop mutates counters and strategy weights. Dispatch tasks just
return (case, result) pairs; everything on the result path (classification,
aggregation, weight adaptation) runs here, one result at a time.
"""

from __future__ import annotations

import asyncio
import logging
import random
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Optional, Sequence

from fuzzkit.errors import ConfigError, InternalError
from fuzzkit.findings.aggregator import ResultsAggregator
from fuzzkit.fuzzer.classifier import ResponseClassifier
from fuzzkit.fuzzer.mutation import MutationEngine, derive_seed
from fuzzkit.fuzzer.strategies.base import MutationStrategy
from fuzzkit.fuzzer.transport.http_dispatcher import HttpDispatcher
from fuzzkit.fuzzer.weights import StrategyWeights
from fuzzkit.models import CampaignSummary, Classification, DispatchResult, Finding, FuzzCase
from fuzzkit.seeds import SeedManager

logger = logging.getLogger(__name__)


class CampaignState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    DRAINING = "draining"
    CANCELLED = "cancelled"
    STOPPED = "stopped"


@dataclass(frozen=True)
class CampaignSnapshot:
    """Read-only view of scheduler state for progress displays and callbacks."""
    state: CampaignState
    requests_sent: int
    completed: int
    findings_recorded: int
    classifications: dict[str, int] = field(default_factory=dict)
    weights: dict[str, float] = field(default_factory=dict)
    remaining_requests: Optional[int] = None
    remaining_seconds: Optional[float] = None


ResultCallback = Callable[[FuzzCase, DispatchResult, Classification, CampaignSnapshot], None]


class CampaignScheduler:

    def __init__(
        self,
        seeds: SeedManager,
        strategies: Sequence[MutationStrategy],
        dispatcher: HttpDispatcher,
        aggregator: ResultsAggregator,
        classifier: Optional[ResponseClassifier] = None,
        engine: Optional[MutationEngine] = None,
        concurrency: int = 4,
        max_requests: Optional[int] = None,
        duration: Optional[float] = None,
        seed: int = 0,
        exploration_floor: float = 0.05,
        boost_factor: float = 1.5,
        on_result: Optional[ResultCallback] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_requests is None and duration is None:
            raise ConfigError("a campaign needs a budget: max_requests or duration")
        self.seeds = seeds
        self.strategies = {s.name: s for s in strategies}
        self.dispatcher = dispatcher
        self.aggregator = aggregator
        self.classifier = classifier or ResponseClassifier()
        self.engine = engine or MutationEngine()
        self.concurrency = max(1, concurrency)
        self.max_requests = max_requests
        self.duration = duration
        self.base_seed = seed
        self.on_result = on_result
        self.clock = clock

        self.weights = StrategyWeights(self.strategies, floor=exploration_floor, boost=boost_factor)
        self._rng = random.Random(seed)

        unsupported = [
            t.id for t in seeds.all()
            if not any(s.supports(t) for s in self.strategies.values())
        ]
        if len(unsupported) == len(seeds):
            raise ConfigError(f"no selected strategy applies to any template ({', '.join(unsupported)})")
        for template_id in unsupported:
            logger.warning("template %s has no applicable strategy and will be skipped", template_id)

        self._state = CampaignState.IDLE
        self._stop_reason = ""
        self._requests_sent = 0
        self._completed = 0
        self._findings_recorded = 0
        self._counts = {c.value: 0 for c in Classification}
        self._new_findings: list[Finding] = []
        self._started_at: Optional[float] = None

    # ── public ───────────────────────────────────────────────────────────

    @property
    def state(self) -> CampaignState:
        return self._state

    def cancel(self) -> None:
        """Stop issuing new cases now; in-flight dispatches drain."""
        self.dispatcher.cancel_event.set()
        if self._state in (CampaignState.IDLE, CampaignState.RUNNING, CampaignState.DRAINING):
            self._state = CampaignState.CANCELLED
            self._stop_reason = "cancelled"
            logger.info("campaign cancelled; draining %d in-flight", self._requests_sent - self._completed)

    def snapshot(self) -> CampaignSnapshot:
        remaining_requests = None
        if self.max_requests is not None:
            remaining_requests = max(0, self.max_requests - self._requests_sent)
        return CampaignSnapshot(
            state=self._state,
            requests_sent=self._requests_sent,
            completed=self._completed,
            findings_recorded=self._findings_recorded,
            classifications=dict(self._counts),
            weights=self.weights.snapshot(),
            remaining_requests=remaining_requests,
            remaining_seconds=self._remaining_seconds(),
        )

    def plan(self, count: int) -> list[FuzzCase]:
        """The first `count` cases a campaign would send, without sending anything."""
        if self._state != CampaignState.IDLE:
            raise InternalError("plan() is only available before a campaign runs", {"state": self._state.value})
        return [self._next_case(i) for i in range(count)]

    async def run(self) -> CampaignSummary:
        """Drive the campaign until the budget is spent or it is cancelled, then drain."""
        if self._state == CampaignState.CANCELLED:
            self._state = CampaignState.STOPPED
            return self._summary(CampaignSummary())
        if self._state != CampaignState.IDLE:
            raise InternalError("a scheduler runs exactly one campaign", {"state": self._state.value})

        summary = CampaignSummary(target=self.dispatcher.base_url)
        self._state = CampaignState.RUNNING
        self._started_at = self.clock()
        pending: set[asyncio.Task] = set()
        logger.info(
            "campaign started: %d templates, strategies=%s, concurrency=%d",
            len(self.seeds), ",".join(self.strategies), self.concurrency,
        )

        try:
            while True:
                self._check_budget()
                while self._state == CampaignState.RUNNING and len(pending) < self.concurrency:
                    case = self._next_case(self._requests_sent)
                    self._requests_sent += 1
                    pending.add(asyncio.create_task(self._dispatch(case)))
                    self._check_budget()

                if not pending:
                    break

                # While running, wake at the duration deadline; while draining, just wait.
                wake = self._remaining_seconds() if self._state == CampaignState.RUNNING else None
                done, pending = await asyncio.wait(
                    pending, timeout=wake, return_when=asyncio.FIRST_COMPLETED
                )
                for task in done:
                    case, result = task.result()
                    self._handle(case, result)
        except BaseException:
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)
            self._state = CampaignState.STOPPED
            raise

        self._state = CampaignState.STOPPED
        logger.info(
            "campaign stopped (%s): %d sent, %d new findings",
            self._stop_reason, self._requests_sent, self._findings_recorded,
        )
        return self._summary(summary)

    # ── internals ────────────────────────────────────────────────────────

    def _remaining_seconds(self) -> Optional[float]:
        if self.duration is None or self._started_at is None:
            return None
        return max(0.0, self.duration - (self.clock() - self._started_at))

    def _check_budget(self) -> None:
        if self._state != CampaignState.RUNNING:
            return
        if self.max_requests is not None and self._requests_sent >= self.max_requests:
            self._state = CampaignState.DRAINING
            self._stop_reason = "max_requests reached"
        elif self.duration is not None and self._remaining_seconds() <= 0:
            self._state = CampaignState.DRAINING
            self._stop_reason = "duration elapsed"

    def _next_case(self, index: int) -> FuzzCase:
        for _ in range(len(self.seeds)):
            template = self.seeds.next()
            allowed = [name for name, s in self.strategies.items() if s.supports(template)]
            if allowed:
                break
        name = self.weights.draw(self._rng, allowed)
        seed = derive_seed(self.base_seed, index)
        return self.engine.generate(template, self.strategies[name], seed)

    async def _dispatch(self, case: FuzzCase) -> tuple[FuzzCase, DispatchResult]:
        try:
            result = await self.dispatcher.send(case)
        except Exception as e:
            raise InternalError(
                "dispatch must return a result, not raise",
                {"template": case.template_id, "strategy": case.strategy, "seed": case.seed, "error": repr(e)},
            ) from e
        return case, result

    def _handle(self, case: FuzzCase, result: DispatchResult) -> None:
        classification = self.classifier.classify(result)
        self._completed += 1
        self._counts[classification.value] += 1

        if classification != Classification.PASS:
            finding, is_new = self.aggregator.record(case, classification, result)
            if is_new:
                self._findings_recorded += 1
                self._new_findings.append(finding)
                self.weights.reward(case.strategy)

        if self.on_result:
            self.on_result(case, result, classification, self.snapshot())

    def _summary(self, summary: CampaignSummary) -> CampaignSummary:
        summary.state = self._state.value
        summary.stop_reason = self._stop_reason
        summary.requests_sent = self._requests_sent
        summary.findings_recorded = self._findings_recorded
        summary.classifications = dict(self._counts)
        summary.weights = self.weights.snapshot()
        summary.elapsed_seconds = round(self.clock() - self._started_at, 3) if self._started_at else 0.0
        summary.new_findings = list(self._new_findings)
        summary.mark_complete()
        return summary
