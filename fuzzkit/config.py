"""
fuzzkit configuration: campaign settings, target profiles and guardrails.

User defaults: ~/.fuzzkit/config.json
Resolution order: env var → config file → built-in default
"""

from __future__ import annotations

import json
import logging
import os
import tomllib
from pathlib import Path
from typing import Any, Optional
from urllib.parse import urlparse

from pydantic import BaseModel, Field, ValidationError, model_validator

from fuzzkit.errors import ConfigError

logger = logging.getLogger(__name__)

CONFIG_DIR = Path.home() / ".fuzzkit"
CONFIG_FILE = CONFIG_DIR / "config.json"

DEFAULT_STRATEGIES = ["structural_corruption", "oversized_payload", "timestamp_replay"]
DEFAULT_FINDINGS_FILE = "fuzzkit-findings.jsonl"

# env var name → (config key, type)
ENV_OVERRIDES = {
    "FUZZKIT_CONCURRENCY": ("concurrency", int),
    "FUZZKIT_RATE_LIMIT": ("rate_limit", float),
    "FUZZKIT_TIMEOUT": ("timeout", float),
    "FUZZKIT_FINDINGS": ("findings_path", str),
}


class CampaignConfig(BaseModel):
    """Everything one campaign needs to know before it starts."""
    url: str
    strategies: list[str] = Field(default_factory=lambda: list(DEFAULT_STRATEGIES))
    concurrency: int = 4
    rate_limit: float = 0.0
    max_requests: Optional[int] = None
    duration: Optional[float] = None
    seed: int = 0
    timeout: float = 5.0
    connect_timeout: Optional[float] = None
    max_attempts: int = 3
    backoff_base: float = 0.25
    backoff_max: float = 8.0
    exploration_floor: float = 0.05
    boost_factor: float = 1.5
    body_limit: int = 4096
    forced_headers: dict[str, str] = Field(default_factory=dict)
    slow_ms: Optional[float] = None
    dry_run: bool = False
    findings_path: Optional[str] = None
    strategy_params: dict[str, dict[str, Any]] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _check_limits(self) -> "CampaignConfig":
        if self.concurrency < 1:
            raise ValueError("concurrency must be >= 1")
        if self.rate_limit < 0:
            raise ValueError("rate_limit must be >= 0")
        if self.max_requests is None and self.duration is None:
            raise ValueError("a budget is required: max_requests or duration")
        if self.max_requests is not None and self.max_requests < 1:
            raise ValueError("max_requests must be > 0")
        if self.duration is not None and self.duration <= 0:
            raise ValueError("duration must be > 0")
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.timeout <= 0:
            raise ValueError("timeout must be > 0")
        if not 0 < self.exploration_floor < 1:
            raise ValueError("exploration_floor must be in (0, 1)")
        if self.boost_factor < 1:
            raise ValueError("boost_factor must be >= 1")
        if not self.strategies:
            raise ValueError("at least one strategy is required")
        return self


def build_config(**values: Any) -> CampaignConfig:
    """Validate campaign settings, turning pydantic errors into ConfigError."""
    try:
        config = CampaignConfig(**values)
    except ValidationError as e:
        first = e.errors()[0]
        raise ConfigError(f"invalid campaign configuration: {first.get('msg', e)}") from e
    validate_url(config.url)
    return config


def validate_url(url: str) -> str:
    """Reject anything that is not an absolute http(s) URL with a host."""
    parsed = urlparse(url or "")
    if parsed.scheme not in ("http", "https") or not parsed.hostname:
        raise ConfigError(f"invalid URL: {url!r} (expected http(s)://host[:port][/path])")
    return url


# ── User defaults ────────────────────────────────────────────────────────────

def load_config() -> dict:
    """Load user defaults from ~/.fuzzkit/config.json, then apply env overrides."""
    config: dict[str, Any] = {}
    if CONFIG_FILE.exists():
        try:
            config = json.loads(CONFIG_FILE.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError) as e:
            logger.warning("ignoring unreadable config file %s: %s", CONFIG_FILE, e)
            config = {}

    for env_var, (key, cast) in ENV_OVERRIDES.items():
        raw = os.environ.get(env_var)
        if raw is None or raw == "":
            continue
        try:
            config[key] = cast(raw)
        except ValueError as e:
            raise ConfigError(f"{env_var}={raw!r} is not a valid {cast.__name__}") from e
    return config


# ── Target profiles ──────────────────────────────────────────────────────────

class Limits(BaseModel):
    concurrency: int = 4
    rate_per_sec: float = 5
    request_budget: int = 100
    max_rate_per_sec: float = 20
    allowed_methods: list[str] = Field(default_factory=lambda: ["GET", "POST"])


class Timeouts(BaseModel):
    connect_ms: int = 2000
    read_ms: int = 5000


class Safety(BaseModel):
    require_sandbox_flag: bool = True
    allowlist_hosts: list[str] = Field(default_factory=list)
    force_headers: dict[str, str] = Field(default_factory=dict)


class TargetProfile(BaseModel):
    """A sandbox target description, loaded from TOML."""
    name: str
    base_url: str
    endpoint: str = "/"
    method: str = "POST"
    body: Any = None
    limits: Limits = Field(default_factory=Limits)
    timeouts: Timeouts = Field(default_factory=Timeouts)
    safety: Safety = Field(default_factory=Safety)


def load_profile(path: str | Path) -> TargetProfile:
    """Read and validate a target profile TOML file."""
    path = Path(path)
    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"failed to read profile: {path} ({e})") from e
    try:
        data = tomllib.loads(raw)
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"invalid TOML in profile {path}: {e}") from e
    try:
        return TargetProfile(**data)
    except ValidationError as e:
        raise ConfigError(f"invalid profile {path}: {e.errors()[0].get('msg')}") from e


def enforce_guardrails(profile: TargetProfile, sandbox: bool) -> None:
    """Refuse to fuzz anything the profile does not explicitly allow."""
    if profile.safety.require_sandbox_flag and not sandbox:
        raise ConfigError("sandbox flag required: re-run with --sandbox")

    host = urlparse(profile.base_url).hostname
    if not host:
        raise ConfigError(f"invalid base_url: {profile.base_url}")
    if not any(h.lower() == host.lower() for h in profile.safety.allowlist_hosts):
        raise ConfigError(f"base_url host not in allowlist: {host}")

    if not any(m.upper() == profile.method.upper() for m in profile.limits.allowed_methods):
        raise ConfigError(f"HTTP method '{profile.method}' not allowed by policy")

    if profile.limits.rate_per_sec > profile.limits.max_rate_per_sec:
        raise ConfigError("rate_per_sec exceeds policy ceiling")

    if profile.limits.request_budget <= 0:
        raise ConfigError("request_budget must be > 0")


def apply_profile(values: dict[str, Any], profile: TargetProfile) -> dict[str, Any]:
    """Fold profile limits into campaign settings; explicit values win."""
    merged = dict(values)
    merged.setdefault("url", profile.base_url)
    merged.setdefault("concurrency", profile.limits.concurrency)
    merged.setdefault("rate_limit", float(profile.limits.rate_per_sec))
    if merged.get("max_requests") is None and merged.get("duration") is None:
        merged["max_requests"] = profile.limits.request_budget
    merged.setdefault("timeout", profile.timeouts.read_ms / 1000)
    merged.setdefault("connect_timeout", profile.timeouts.connect_ms / 1000)
    headers = dict(merged.get("forced_headers") or {})
    for key, value in profile.safety.force_headers.items():
        headers.setdefault(key, value)
    merged["forced_headers"] = headers
    if merged.get("rate_limit", 0) > profile.limits.max_rate_per_sec:
        raise ConfigError("rate limit exceeds profile policy ceiling")
    return merged
