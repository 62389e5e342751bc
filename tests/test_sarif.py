"""Tests for SARIF 2.1.0 and JSON report generation."""
import json

from fuzzkit.models import CampaignSummary, Classification, Finding, TransportErrorKind


# ─── Helper ──────────────────────────────────────────────────────────────────

def _make_finding(**kwargs) -> Finding:
    defaults = dict(
        id="a1b2c3d4e5f6", fingerprint="a1b2c3d4e5f60718", template_id="login",
        strategy="structural_corruption", seed=42, mutation="truncation", generated_at=1700000000.0,
        classification=Classification.ANOMALY, status_code=500, body_excerpt='{"error": "boom"}',
    )
    defaults.update(kwargs)
    return Finding(**defaults)


def _make_summary(**kwargs) -> CampaignSummary:
    defaults = dict(target="http://127.0.0.1:8080", requests_sent=100, findings_recorded=1,
                    classifications={"anomaly": 3, "pass": 97}, stop_reason="max_requests reached")
    defaults.update(kwargs)
    summary = CampaignSummary(**defaults)
    summary.mark_complete()
    return summary


# ─── SARIF structure tests ───────────────────────────────────────────────────

def test_sarif_top_level_structure():
    """SARIF report must have $schema, version, and runs."""
    from fuzzkit.reporters.sarif_report import generate_sarif_report

    sarif = generate_sarif_report(_make_summary(), [_make_finding()])

    assert sarif["version"] == "2.1.0"
    assert "sarif-schema-2.1.0" in sarif["$schema"]
    assert len(sarif["runs"]) == 1


def test_sarif_tool_driver():
    from fuzzkit.reporters.sarif_report import generate_sarif_report

    driver = generate_sarif_report(_make_summary(), [_make_finding()])["runs"][0]["tool"]["driver"]
    assert driver["name"] == "fuzzkit"
    assert driver["version"]
    assert len(driver["rules"]) == 1


def test_sarif_one_rule_per_strategy_and_classification():
    """Findings sharing strategy and classification share a rule."""
    from fuzzkit.reporters.sarif_report import generate_sarif_report

    findings = [
        _make_finding(id="1", fingerprint="1"),
        _make_finding(id="2", fingerprint="2", status_code=502),
        _make_finding(id="3", fingerprint="3", strategy="oversized_payload"),
        _make_finding(id="4", fingerprint="4", classification=Classification.CRASH, status_code=None,
                      error_kind=TransportErrorKind.CONNECTION_RESET),
    ]
    run = generate_sarif_report(_make_summary(), findings)["runs"][0]
    rule_ids = [r["id"] for r in run["tool"]["driver"]["rules"]]

    assert rule_ids == [
        "FUZZKIT-STRUCTURAL_CORRUPTION-ANOMALY",
        "FUZZKIT-OVERSIZED_PAYLOAD-ANOMALY",
        "FUZZKIT-STRUCTURAL_CORRUPTION-CRASH",
    ]
    assert len(run["results"]) == 4
    assert [r["ruleIndex"] for r in run["results"]] == [0, 0, 1, 2]


def test_sarif_levels_and_cwe():
    from fuzzkit.reporters.sarif_report import generate_sarif_report

    findings = [
        _make_finding(id="1", fingerprint="1", classification=Classification.CRASH),
        _make_finding(id="2", fingerprint="2", classification=Classification.RATE_LIMITED, status_code=429),
    ]
    run = generate_sarif_report(_make_summary(), findings)["runs"][0]
    assert [r["level"] for r in run["results"]] == ["error", "note"]
    crash_rule = run["tool"]["driver"]["rules"][0]
    assert crash_rule["relationships"][0]["target"]["id"] == "CWE-248"


def test_sarif_result_carries_replay_inputs():
    from fuzzkit.reporters.sarif_report import generate_sarif_report

    (result,) = generate_sarif_report(_make_summary(), [_make_finding()])["runs"][0]["results"]
    assert result["fingerprints"]["fuzzkitFingerprint/v1"] == "a1b2c3d4e5f60718"
    assert result["partialFingerprints"] == {
        "template": "login", "strategy": "structural_corruption", "classification": "anomaly",
    }
    assert result["properties"]["findingId"] == "a1b2c3d4e5f6"
    assert result["properties"]["seed"] == 42
    assert "HTTP 500" in result["message"]["text"]


def test_sarif_empty_findings():
    from fuzzkit.reporters.sarif_report import generate_sarif_report

    run = generate_sarif_report(_make_summary(), [])["runs"][0]
    assert run["tool"]["driver"]["rules"] == []
    assert run["results"] == []


def test_save_sarif_report(tmp_path):
    from fuzzkit.reporters.sarif_report import save_sarif_report

    out = tmp_path / "nested" / "report.sarif"
    assert save_sarif_report(_make_summary(), [_make_finding()], str(out))
    data = json.loads(out.read_text())
    assert data["runs"][0]["properties"]["requestsSent"] == 100


# ─── JSON report ─────────────────────────────────────────────────────────────

def test_json_report(tmp_path):
    from fuzzkit.reporters.json_report import generate_json_report

    out = tmp_path / "report.json"
    assert generate_json_report(_make_summary(), [_make_finding()], str(out))
    data = json.loads(out.read_text())
    assert data["target"] == "http://127.0.0.1:8080"
    assert data["findings"][0]["id"] == "a1b2c3d4e5f6"
    assert data["findings"][0]["classification"] == "anomaly"
    assert data["version"]
