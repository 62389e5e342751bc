"""api-fuzzkit: sandbox API resilience fuzzer."""

__version__ = "0.2.0"
