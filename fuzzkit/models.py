"""
Core data models for fuzzkit.
"""

from __future__ import annotations

import hashlib
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field


class Classification(str, Enum):
    PASS = "pass"
    ANOMALY = "anomaly"
    CRASH = "crash"
    TIMEOUT = "timeout"
    RATE_LIMITED = "rate_limited"

    @property
    def is_failure(self) -> bool:
        """Crash and Anomaly findings fail a campaign."""
        return self in (Classification.CRASH, Classification.ANOMALY)


class TransportErrorKind(str, Enum):
    CONNECTION_REFUSED = "connection_refused"
    CONNECTION_RESET = "connection_reset"
    CONNECTION_CLOSED = "connection_closed"
    DNS_FAILURE = "dns_failure"
    TIMEOUT = "timeout"
    OTHER = "other"


class ConnectionOutcome(str, Enum):
    RESPONDED = "responded"
    TRANSPORT_ERROR = "transport_error"
    ABANDONED = "abandoned"


class FreshnessField(BaseModel):
    """Where a template carries a timestamp or nonce."""
    model_config = ConfigDict(frozen=True)

    location: Literal["body", "header"] = "body"
    path: str
    kind: Literal["timestamp", "nonce"] = "timestamp"
    unit: Literal["seconds", "milliseconds", "iso8601"] = "seconds"


class RequestTemplate(BaseModel):
    """A baseline, known-valid request to derive fuzz cases from."""
    model_config = ConfigDict(frozen=True)

    id: str
    method: str = "POST"
    path: str = "/"
    headers: dict[str, str] = Field(default_factory=dict)
    body: Any = None
    max_body_size: int | None = None
    oversize_field: str | None = None
    freshness_fields: tuple[FreshnessField, ...] = ()
    observed_nonces: tuple[str, ...] = ()
    expects_json: bool = True


class FuzzCase(BaseModel):
    """A concrete malformed request. Same inputs, same bytes."""
    model_config = ConfigDict(frozen=True)

    template_id: str
    strategy: str
    strategy_params: dict[str, Any] = Field(default_factory=dict)
    seed: int
    mutation: str
    method: str
    path: str
    headers: dict[str, str] = Field(default_factory=dict)
    body: bytes = b""
    generated_at: float
    expects_json: bool = True

    @property
    def case_id(self) -> str:
        key = f"{self.template_id}:{self.strategy}:{self.seed}:{self.generated_at!r}"
        return hashlib.sha256(key.encode()).hexdigest()[:12]

    def short_str(self) -> str:
        return f"{self.method} {self.path} [{self.strategy}/{self.mutation}] seed={self.seed} ({len(self.body)} bytes)"


class DispatchResult(BaseModel):
    """What happened on the wire for one FuzzCase."""
    outcome: ConnectionOutcome
    status_code: int | None = None
    error_kind: TransportErrorKind | None = None
    latency_ms: float = 0.0
    body: bytes = b""
    body_truncated: bool = False
    content_type: str = ""
    headers: dict[str, str] = Field(default_factory=dict)
    attempts: int = 1
    error_message: str = ""
    # None: fall back to the classifier default
    expects_json: bool | None = None

    @property
    def is_transport_error(self) -> bool:
        return self.outcome == ConnectionOutcome.TRANSPORT_ERROR

    @property
    def status_class(self) -> str:
        if self.status_code is None:
            return ""
        return f"{self.status_code // 100}xx"


class Finding(BaseModel):
    """A deduplicated, persisted non-pass observation."""
    id: str
    fingerprint: str
    template_id: str
    strategy: str
    strategy_params: dict[str, Any] = Field(default_factory=dict)
    seed: int
    mutation: str = ""
    generated_at: float
    classification: Classification
    status_code: int | None = None
    error_kind: TransportErrorKind | None = None
    latency_ms: float = 0.0
    body_excerpt: str = ""
    observation_count: int = 1
    first_seen: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    last_seen: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def status_label(self) -> str:
        if self.status_code is not None:
            return f"HTTP {self.status_code}"
        if self.error_kind is not None:
            return self.error_kind.value
        return "-"

    def short_str(self) -> str:
        return (
            f"[{self.classification.value.upper()}] {self.id} {self.status_label} "
            f"(strategy={self.strategy}, template={self.template_id}, seen={self.observation_count})"
        )


class CampaignSummary(BaseModel):
    """Final outcome of one campaign run."""
    target: str = ""
    state: str = "stopped"
    stop_reason: str = ""
    requests_sent: int = 0
    findings_recorded: int = 0
    classifications: dict[str, int] = Field(default_factory=dict)
    weights: dict[str, float] = Field(default_factory=dict)
    elapsed_seconds: float = 0.0
    started_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    completed_at: datetime | None = None
    new_findings: list[Finding] = Field(default_factory=list)

    @property
    def failure_count(self) -> int:
        return self.classifications.get(Classification.CRASH.value, 0) + self.classifications.get(Classification.ANOMALY.value, 0)

    def to_json(self, indent: int = 2) -> str:
        return self.model_dump_json(indent=indent)

    def mark_complete(self):
        self.completed_at = datetime.now(timezone.utc)
