from fuzzkit.findings.aggregator import ReplayOutcome, ResultsAggregator
from fuzzkit.findings.fingerprint import FingerprintPolicy
from fuzzkit.findings.store import FindingsStore

__all__ = [
    "FindingsStore",
    "FingerprintPolicy",
    "ReplayOutcome",
    "ResultsAggregator",
]
