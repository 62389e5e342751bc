"""
Error taxonomy for fuzzkit.

ConfigError  : bad template, profile or URL; the campaign never starts.
NetworkError : transport failure inside the dispatcher; retried locally.
ProtocolError: malformed or unexpected response shape; becomes a classification.
InternalError: the tool broke one of its own invariants; aborts the campaign.
"""

from __future__ import annotations

from typing import Any


class FuzzkitError(Exception):
    """Base class for all fuzzkit errors."""


class ConfigError(FuzzkitError):
    """Invalid configuration, template, profile or target URL."""


class NetworkError(FuzzkitError):
    """A transport-level failure (no HTTP response was received)."""

    def __init__(self, kind: str, message: str = ""):
        self.kind = kind
        self.message = message
        super().__init__(f"{kind}: {message}" if message else kind)


class ProtocolError(FuzzkitError):
    """The target answered, but the response is not what a well-formed reply looks like."""


class InternalError(FuzzkitError):
    """A mutation or scheduling invariant was violated by fuzzkit itself."""

    def __init__(self, invariant: str, inputs: dict[str, Any] | None = None):
        self.invariant = invariant
        self.inputs = inputs or {}
        detail = ", ".join(f"{k}={v!r}" for k, v in self.inputs.items())
        super().__init__(f"invariant violated: {invariant}" + (f" ({detail})" if detail else ""))
