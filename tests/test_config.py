"""Tests for campaign configuration, user defaults and target profiles."""
import json

import pytest

from fuzzkit import config as config_module
from fuzzkit.config import (
    Limits,
    Safety,
    TargetProfile,
    apply_profile,
    build_config,
    enforce_guardrails,
    load_config,
    load_profile,
    validate_url,
)
from fuzzkit.errors import ConfigError


PROFILE_TOML = """
name = "sandbox"
base_url = "http://127.0.0.1:8080"
endpoint = "/v1/payments"
method = "POST"

[body]
amount = 10

[limits]
concurrency = 3
rate_per_sec = 5
request_budget = 50
max_rate_per_sec = 20

[timeouts]
connect_ms = 1500
read_ms = 4000

[safety]
require_sandbox_flag = true
allowlist_hosts = ["127.0.0.1"]

[safety.force_headers]
X-Env = "sandbox"
"""


def _make_profile(**kwargs) -> TargetProfile:
    defaults = dict(
        name="sandbox",
        base_url="http://127.0.0.1:8080",
        safety=Safety(allowlist_hosts=["127.0.0.1"]),
    )
    defaults.update(kwargs)
    return TargetProfile(**defaults)


# ─── CampaignConfig ──────────────────────────────────────────────────────────

def test_build_config_defaults():
    config = build_config(url="http://localhost:8000", max_requests=10)
    assert config.concurrency == 4
    assert config.max_attempts == 3
    assert config.strategies == ["structural_corruption", "oversized_payload", "timestamp_replay"]


def test_build_config_requires_budget():
    """Neither max_requests nor duration means the campaign could never end."""
    with pytest.raises(ConfigError, match="budget"):
        build_config(url="http://localhost:8000")


@pytest.mark.parametrize("field,value", [
    ("concurrency", 0),
    ("rate_limit", -1),
    ("max_requests", 0),
    ("max_attempts", 0),
    ("exploration_floor", 1.5),
    ("strategies", []),
])
def test_build_config_rejects_bad_values(field, value):
    values = dict(url="http://localhost:8000", max_requests=10)
    values[field] = value
    with pytest.raises(ConfigError):
        build_config(**values)


@pytest.mark.parametrize("url", ["localhost:8000", "ftp://example.com", "http://", ""])
def test_validate_url_rejects(url):
    with pytest.raises(ConfigError):
        validate_url(url)


def test_validate_url_accepts_https_with_path():
    assert validate_url("https://api.example.com/v1") == "https://api.example.com/v1"


# ─── User defaults ───────────────────────────────────────────────────────────

def test_load_config_reads_file_then_env(tmp_path, monkeypatch):
    """Environment variables override the config file."""
    cfg = tmp_path / "config.json"
    cfg.write_text(json.dumps({"concurrency": 2, "timeout": 9.0}))
    monkeypatch.setattr(config_module, "CONFIG_FILE", cfg)
    monkeypatch.setenv("FUZZKIT_CONCURRENCY", "7")
    monkeypatch.delenv("FUZZKIT_TIMEOUT", raising=False)

    loaded = load_config()
    assert loaded["concurrency"] == 7
    assert loaded["timeout"] == 9.0


def test_load_config_missing_file(tmp_path, monkeypatch):
    monkeypatch.setattr(config_module, "CONFIG_FILE", tmp_path / "none.json")
    for var in config_module.ENV_OVERRIDES:
        monkeypatch.delenv(var, raising=False)
    assert load_config() == {}


def test_load_config_bad_env_value(tmp_path, monkeypatch):
    monkeypatch.setattr(config_module, "CONFIG_FILE", tmp_path / "none.json")
    monkeypatch.setenv("FUZZKIT_RATE_LIMIT", "fast")
    with pytest.raises(ConfigError, match="FUZZKIT_RATE_LIMIT"):
        load_config()


# ─── Profiles & guardrails ───────────────────────────────────────────────────

def test_load_profile(tmp_path):
    path = tmp_path / "sandbox.toml"
    path.write_text(PROFILE_TOML)
    profile = load_profile(path)
    assert profile.limits.concurrency == 3
    assert profile.timeouts.read_ms == 4000
    assert profile.safety.force_headers == {"X-Env": "sandbox"}
    assert profile.body == {"amount": 10}


def test_load_profile_invalid_toml(tmp_path):
    path = tmp_path / "bad.toml"
    path.write_text("name = ")
    with pytest.raises(ConfigError, match="TOML"):
        load_profile(path)


def test_guardrails_require_sandbox_flag():
    with pytest.raises(ConfigError, match="sandbox"):
        enforce_guardrails(_make_profile(), sandbox=False)
    enforce_guardrails(_make_profile(), sandbox=True)


def test_guardrails_host_allowlist_case_insensitive():
    profile = _make_profile(base_url="http://API.Sandbox.local", safety=Safety(allowlist_hosts=["api.sandbox.LOCAL"]))
    enforce_guardrails(profile, sandbox=True)

    outside = _make_profile(base_url="http://prod.example.com")
    with pytest.raises(ConfigError, match="allowlist"):
        enforce_guardrails(outside, sandbox=True)


def test_guardrails_method_and_rate():
    with pytest.raises(ConfigError, match="method"):
        enforce_guardrails(_make_profile(method="DELETE"), sandbox=True)
    with pytest.raises(ConfigError, match="ceiling"):
        enforce_guardrails(_make_profile(limits=Limits(rate_per_sec=50, max_rate_per_sec=10)), sandbox=True)
    with pytest.raises(ConfigError, match="request_budget"):
        enforce_guardrails(_make_profile(limits=Limits(request_budget=0)), sandbox=True)


def test_apply_profile_explicit_values_win(tmp_path):
    path = tmp_path / "sandbox.toml"
    path.write_text(PROFILE_TOML)
    profile = load_profile(path)

    merged = apply_profile({"concurrency": 8, "forced_headers": {"X-Env": "override"}}, profile)
    assert merged["url"] == "http://127.0.0.1:8080"
    assert merged["concurrency"] == 8
    assert merged["max_requests"] == 50
    assert merged["timeout"] == 4.0
    assert merged["connect_timeout"] == 1.5
    assert merged["forced_headers"] == {"X-Env": "override"}


def test_apply_profile_rate_ceiling():
    with pytest.raises(ConfigError, match="ceiling"):
        apply_profile({"rate_limit": 100.0}, _make_profile())
