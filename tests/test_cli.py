"""Tests for the fuzzkit command line (typer CliRunner, simulated target)."""
import json

import httpx
import pytest
from typer.testing import CliRunner

from fuzzkit import cli
from fuzzkit import config as config_module
from fuzzkit.findings import FindingsStore
from fuzzkit.fuzzer.fuzz_engine import FuzzEngine

runner = CliRunner()

TEMPLATES = [
    {"id": "login", "path": "/login", "body": {"user": "alice", "ts": 1690000000}, "max_body_size": 2048},
]

PROFILE_TOML = """
name = "sandbox"
base_url = "http://127.0.0.1:8080"
endpoint = "/v1/pay"
method = "POST"

[body]
amount = 10
ts = 1700000000

[limits]
request_budget = 6

[safety]
require_sandbox_flag = true
allowlist_hosts = ["127.0.0.1"]
"""


@pytest.fixture(autouse=True)
def _isolated_config(tmp_path, monkeypatch):
    monkeypatch.setattr(config_module, "CONFIG_FILE", tmp_path / "no-config.json")
    for var in config_module.ENV_OVERRIDES:
        monkeypatch.delenv(var, raising=False)


def _write_templates(tmp_path) -> str:
    path = tmp_path / "templates.json"
    path.write_text(json.dumps(TEMPLATES))
    return str(path)


def _use_target(monkeypatch, handler):
    """Route every engine the CLI builds to a simulated target."""
    class _SimulatedEngine(FuzzEngine):
        def __init__(self, config, templates, **kwargs):
            super().__init__(config, templates, transport=httpx.MockTransport(handler), **kwargs)

    monkeypatch.setattr(cli, "FuzzEngine", _SimulatedEngine)


def _crash_on_oversize(request):
    if len(request.content) > 2048:
        return httpx.Response(500, text="Internal Server Error")
    return httpx.Response(200, json={"ok": True})


def _fuzz_args(tmp_path, *extra):
    return [
        "fuzz", "--url", "http://target.test", "--templates", _write_templates(tmp_path),
        "--findings", str(tmp_path / "findings.jsonl"), "--max-requests", "30", "--concurrency", "3",
        *extra,
    ]


# ─── Basic commands ──────────────────────────────────────────────────────────

def test_version():
    result = runner.invoke(cli.app, ["--version"])
    assert result.exit_code == 0
    assert "fuzzkit v" in result.output


def test_list_strategies():
    result = runner.invoke(cli.app, ["list-strategies"])
    assert result.exit_code == 0
    for name in ("structural_corruption", "oversized_payload", "timestamp_replay"):
        assert name in result.output


# ─── Exit codes ──────────────────────────────────────────────────────────────

def test_clean_campaign_exits_zero(tmp_path, monkeypatch):
    _use_target(monkeypatch, lambda request: httpx.Response(200, json={"ok": True}))
    result = runner.invoke(cli.app, _fuzz_args(tmp_path))
    assert result.exit_code == 0, result.output
    assert "Campaign Summary" in result.output


def test_anomaly_exits_one_and_writes_report(tmp_path, monkeypatch):
    _use_target(monkeypatch, _crash_on_oversize)
    report = tmp_path / "report.sarif"
    result = runner.invoke(cli.app, _fuzz_args(tmp_path, "-o", str(report), "--format", "sarif"))

    assert result.exit_code == 1, result.output
    sarif = json.loads(report.read_text())
    assert sarif["runs"][0]["results"][0]["partialFingerprints"]["strategy"] == "oversized_payload"
    assert len(FindingsStore(tmp_path / "findings.jsonl")) == 1


def test_missing_target_is_usage_error(tmp_path):
    result = runner.invoke(cli.app, ["fuzz", "--templates", _write_templates(tmp_path), "--max-requests", "5"])
    assert result.exit_code == 2


def test_missing_budget_is_config_error(tmp_path):
    result = runner.invoke(cli.app, ["fuzz", "--url", "http://target.test", "--templates", _write_templates(tmp_path)])
    assert result.exit_code == 2
    assert "budget" in result.output


def test_bad_url_is_config_error(tmp_path):
    result = runner.invoke(cli.app, _fuzz_args(tmp_path)[:1] + ["--url", "target.test", "--templates", _write_templates(tmp_path), "--max-requests", "5"])
    assert result.exit_code == 2


def test_unknown_strategy_is_config_error(tmp_path):
    result = runner.invoke(cli.app, _fuzz_args(tmp_path, "--strategies", "structural_corruption,nope"))
    assert result.exit_code == 2
    assert "nope" in result.output


def test_unknown_format_is_config_error(tmp_path):
    result = runner.invoke(cli.app, _fuzz_args(tmp_path, "--format", "xml"))
    assert result.exit_code == 2


# ─── Profiles & dry run ──────────────────────────────────────────────────────

def test_profile_requires_sandbox_flag(tmp_path):
    profile = tmp_path / "sandbox.toml"
    profile.write_text(PROFILE_TOML)
    result = runner.invoke(cli.app, ["fuzz", "--profile", str(profile), "--dry-run"])
    assert result.exit_code == 2
    assert "sandbox" in result.output


def test_profile_dry_run_sends_nothing(tmp_path, monkeypatch):
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(200)

    _use_target(monkeypatch, handler)
    profile = tmp_path / "sandbox.toml"
    profile.write_text(PROFILE_TOML)
    result = runner.invoke(cli.app, [
        "fuzz", "--profile", str(profile), "--sandbox", "--dry-run",
        "--findings", str(tmp_path / "findings.jsonl"),
    ])

    assert result.exit_code == 0, result.output
    assert "Planned Cases" in result.output
    assert calls == []


def test_prepare_campaign_uses_profile_limits(tmp_path):
    profile = tmp_path / "sandbox.toml"
    profile.write_text(PROFILE_TOML)
    config, templates = cli.prepare_campaign(None, None, str(profile), True, {"concurrency": 2})
    assert config.url == "http://127.0.0.1:8080"
    assert config.max_requests == 6
    assert config.concurrency == 2
    assert [t.path for t in templates] == ["/v1/pay"]


def test_prepare_campaign_rejects_conflicting_url(tmp_path):
    from fuzzkit.errors import ConfigError

    profile = tmp_path / "sandbox.toml"
    profile.write_text(PROFILE_TOML)
    with pytest.raises(ConfigError, match="conflicts"):
        cli.prepare_campaign("http://other.test", None, str(profile), True, {})


# ─── Findings & replay ───────────────────────────────────────────────────────

def test_findings_listing_and_replay(tmp_path, monkeypatch):
    _use_target(monkeypatch, _crash_on_oversize)
    assert runner.invoke(cli.app, _fuzz_args(tmp_path)).exit_code == 1

    store_path = tmp_path / "findings.jsonl"
    (finding,) = FindingsStore(store_path).all()

    listed = runner.invoke(cli.app, ["findings", "--findings", str(store_path), "--classification", "anomaly"])
    assert listed.exit_code == 0
    assert finding.id in listed.output

    none = runner.invoke(cli.app, ["findings", "--findings", str(store_path), "--strategy", "timestamp_replay"])
    assert "No findings match" in none.output

    replayed = runner.invoke(cli.app, _fuzz_args(tmp_path, "--replay", finding.id))
    assert replayed.exit_code == 1, replayed.output
    assert "reproduced" in replayed.output


def test_findings_unknown_classification(tmp_path):
    result = runner.invoke(cli.app, ["findings", "--findings", str(tmp_path / "f.jsonl"), "--classification", "fatal"])
    assert result.exit_code == 2
