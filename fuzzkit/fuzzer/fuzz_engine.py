"""
Fuzz campaign engine.
Wires seeds, strategies, dispatcher, classifier, scheduler and findings together.
"""

import asyncio
import logging
import signal
from typing import Optional

import httpx

from fuzzkit.config import CampaignConfig
from fuzzkit.findings import FindingsStore, FingerprintPolicy, ReplayOutcome, ResultsAggregator
from fuzzkit.fuzzer.classifier import ResponseClassifier, slow_response_rule
from fuzzkit.fuzzer.mutation import MutationEngine
from fuzzkit.fuzzer.scheduler import CampaignScheduler, CampaignSnapshot
from fuzzkit.fuzzer.strategies import build_strategy
from fuzzkit.fuzzer.transport.http_dispatcher import HttpDispatcher
from fuzzkit.models import CampaignSummary, Classification, DispatchResult, FuzzCase, RequestTemplate
from fuzzkit.seeds import SeedManager
from fuzzkit.ui import console, get_progress, print_section

logger = logging.getLogger(__name__)


class FuzzEngine:
    """Orchestrates the fuzzing campaign."""

    def __init__(
        self,
        config: CampaignConfig,
        templates: list[RequestTemplate],
        transport: Optional[httpx.AsyncBaseTransport] = None,
        policy: Optional[FingerprintPolicy] = None,
        event_log_path: Optional[str] = None,
        quiet: bool = False,
    ):
        self.config = config
        self.seeds = SeedManager(templates)
        self.strategies = [
            build_strategy(name, **config.strategy_params.get(name, {}))
            for name in dict.fromkeys(config.strategies)
        ]
        self.store = FindingsStore(config.findings_path)
        self.policy = policy or FingerprintPolicy()
        self.engine = MutationEngine()
        self.classifier = ResponseClassifier()
        if config.slow_ms:
            self.classifier.add_rule(slow_response_rule(config.slow_ms))
        self.transport = transport
        self.event_log_path = event_log_path
        self.quiet = quiet
        self.scheduler: Optional[CampaignScheduler] = None

    # ── building blocks ──────────────────────────────────────────────────

    def _dispatcher(self) -> HttpDispatcher:
        c = self.config
        return HttpDispatcher(
            base_url=c.url,
            concurrency=c.concurrency,
            timeout=c.timeout,
            connect_timeout=c.connect_timeout,
            max_attempts=c.max_attempts,
            backoff_base=c.backoff_base,
            backoff_max=c.backoff_max,
            rate_limit=c.rate_limit,
            body_limit=c.body_limit,
            forced_headers=c.forced_headers,
            transport=self.transport,
            event_log_path=self.event_log_path,
        )

    def _aggregator(self, dispatcher: Optional[HttpDispatcher]) -> ResultsAggregator:
        return ResultsAggregator(
            self.store,
            policy=self.policy,
            seeds=self.seeds,
            engine=self.engine,
            dispatcher=dispatcher,
            classifier=self.classifier,
        )

    def _scheduler(self, dispatcher: HttpDispatcher, on_result=None) -> CampaignScheduler:
        c = self.config
        return CampaignScheduler(
            seeds=self.seeds,
            strategies=self.strategies,
            dispatcher=dispatcher,
            aggregator=self._aggregator(dispatcher),
            classifier=self.classifier,
            engine=self.engine,
            concurrency=c.concurrency,
            max_requests=c.max_requests,
            duration=c.duration,
            seed=c.seed,
            exploration_floor=c.exploration_floor,
            boost_factor=c.boost_factor,
            on_result=on_result,
        )

    # ── operations ───────────────────────────────────────────────────────

    def plan(self, count: Optional[int] = None) -> list[FuzzCase]:
        """Dry run: the cases a campaign would send, generated but never dispatched."""
        count = count or self.config.max_requests or 20
        return self._scheduler(self._dispatcher()).plan(count)

    def run(self) -> CampaignSummary:
        """Run the full fuzzing campaign."""
        return asyncio.run(self.run_async())

    async def run_async(self) -> CampaignSummary:
        if not self.quiet:
            print_section("Fuzzing", "🔥")

        async with self._dispatcher() as dispatcher:
            if self.quiet:
                self.scheduler = self._scheduler(dispatcher)
                return await self._run_with_signals(self.scheduler)

            with get_progress() as progress:
                task = progress.add_task("Fuzzing...", total=self.config.max_requests)

                def on_result(case: FuzzCase, result: DispatchResult, classification: Classification, snap: CampaignSnapshot):
                    progress.update(
                        task,
                        completed=snap.completed,
                        description=f"Fuzzing... [muted]{snap.findings_recorded} findings[/muted]",
                    )

                self.scheduler = self._scheduler(dispatcher, on_result=on_result)
                return await self._run_with_signals(self.scheduler)

    async def _run_with_signals(self, scheduler: CampaignScheduler) -> CampaignSummary:
        """Ctrl-C cancels the campaign (in-flight requests drain) instead of killing it."""
        loop = asyncio.get_running_loop()
        try:
            loop.add_signal_handler(signal.SIGINT, scheduler.cancel)
            installed = True
        except (NotImplementedError, RuntimeError, ValueError):
            installed = False
        try:
            return await scheduler.run()
        finally:
            if installed:
                loop.remove_signal_handler(signal.SIGINT)

    def replay(self, finding_id: str) -> ReplayOutcome:
        """Regenerate a stored finding's case and send it again."""
        return asyncio.run(self.replay_async(finding_id))

    async def replay_async(self, finding_id: str) -> ReplayOutcome:
        async with self._dispatcher() as dispatcher:
            outcome = await self._aggregator(dispatcher).replay(finding_id)
        if not self.quiet:
            icon = "[danger]reproduced[/danger]" if outcome.reproduced else "[warning]not reproduced[/warning]"
            console.print(
                f"  Replay {finding_id}: {outcome.classification.value} "
                f"(recorded {outcome.finding.classification.value}), {icon}"
            )
        return outcome
