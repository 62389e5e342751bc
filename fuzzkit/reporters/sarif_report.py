"""
SARIF Reporter: generates SARIF 2.1.0 reports for CI/CD integration.

Supports:
- GitHub Code Scanning
- GitLab SAST
- Any SARIF-compatible tool

SARIF Spec: https://docs.oasis-open.org/sarif/sarif/v2.1.0/sarif-v2.1.0.html
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from fuzzkit import __version__ as FUZZKIT_VERSION
from fuzzkit.models import CampaignSummary, Classification, Finding

logger = logging.getLogger(__name__)

# CWE mappings for each classification
CLASSIFICATION_CWE_MAP = {
    Classification.CRASH: "CWE-248",
    Classification.ANOMALY: "CWE-20",
    Classification.TIMEOUT: "CWE-400",
    Classification.RATE_LIMITED: "CWE-770",
}

CLASSIFICATION_TO_SARIF_LEVEL = {
    Classification.CRASH: "error",
    Classification.ANOMALY: "error",
    Classification.TIMEOUT: "warning",
    Classification.RATE_LIMITED: "note",
}

# Classification to SARIF security-severity score (for GitHub)
CLASSIFICATION_TO_SCORE = {
    Classification.CRASH: 8.5,
    Classification.ANOMALY: 6.5,
    Classification.TIMEOUT: 5.0,
    Classification.RATE_LIMITED: 2.0,
}

CLASSIFICATION_TITLES = {
    Classification.CRASH: "Target dropped the connection",
    Classification.ANOMALY: "Server error or malformed response",
    Classification.TIMEOUT: "Target did not answer in time",
    Classification.RATE_LIMITED: "Target throttled the campaign",
}

STRATEGY_DESCRIPTIONS = {
    "structural_corruption": "Syntactically corrupted JSON request bodies",
    "oversized_payload": "Request bodies padded past the accepted size",
    "timestamp_replay": "Stale, future or replayed freshness fields",
}

CWE_TAXA = [
    {"id": "CWE-20", "name": "Improper Input Validation"},
    {"id": "CWE-248", "name": "Uncaught Exception"},
    {"id": "CWE-400", "name": "Uncontrolled Resource Consumption"},
    {"id": "CWE-770", "name": "Allocation of Resources Without Limits or Throttling"},
]


def generate_rule_id(finding: Finding) -> str:
    """One rule per strategy and classification pair."""
    strategy = finding.strategy.upper()
    return f"FUZZKIT-{strategy}-{finding.classification.value.upper()}"


def _build_rule(finding: Finding) -> dict:
    cls = finding.classification
    cwe = CLASSIFICATION_CWE_MAP.get(cls, "CWE-20")
    strategy_text = STRATEGY_DESCRIPTIONS.get(finding.strategy, finding.strategy)
    title = CLASSIFICATION_TITLES.get(cls, cls.value)

    return {
        "id": generate_rule_id(finding),
        "name": f"{finding.strategy.replace('_', ' ').title()} {cls.value.replace('_', ' ').title()}",
        "shortDescription": {"text": title},
        "fullDescription": {"text": f"{title} when sent {strategy_text.lower()}."},
        "help": {
            "text": "Replay the finding with `fuzzkit fuzz --replay <id>` and fix the input handling it exposes.",
        },
        "properties": {
            "tags": ["robustness", "fuzzing", finding.strategy],
            "security-severity": str(CLASSIFICATION_TO_SCORE.get(cls, 5.0)),
        },
        "defaultConfiguration": {"level": CLASSIFICATION_TO_SARIF_LEVEL.get(cls, "warning")},
        "relationships": [
            {
                "target": {"id": cwe, "toolComponent": {"name": "CWE"}},
                "kinds": ["superset"],
            }
        ],
    }


def _build_result(finding: Finding, rule_index: int, target: str) -> dict:
    result: dict[str, Any] = {
        "ruleId": generate_rule_id(finding),
        "ruleIndex": rule_index,
        "level": CLASSIFICATION_TO_SARIF_LEVEL.get(finding.classification, "warning"),
        "message": {
            "text": f"{finding.status_label} on {finding.template_id} after {finding.mutation or finding.strategy}",
        },
        "locations": [
            {
                "physicalLocation": {
                    "artifactLocation": {"uri": target or "http://target"},
                },
                "logicalLocations": [
                    {"name": finding.template_id, "kind": "function"},
                ],
            }
        ],
        "fingerprints": {"fuzzkitFingerprint/v1": finding.fingerprint},
        "partialFingerprints": {
            "template": finding.template_id,
            "strategy": finding.strategy,
            "classification": finding.classification.value,
        },
        "properties": {
            "findingId": finding.id,
            "seed": finding.seed,
            "generatedAt": finding.generated_at,
            "strategyParams": finding.strategy_params,
            "observationCount": finding.observation_count,
            "latencyMs": finding.latency_ms,
        },
    }

    if finding.body_excerpt:
        result["properties"]["evidence"] = finding.body_excerpt[:1000]

    return result


def generate_sarif_report(summary: CampaignSummary, findings: list[Finding]) -> dict:
    """
    Generate a complete SARIF 2.1.0 report from a campaign.

    Pass findings have no place in the report; everything else the store holds
    becomes one result.
    """
    findings = [f for f in findings if f.classification != Classification.PASS]

    rules_map: dict[str, dict] = {}
    for finding in findings:
        rule_id = generate_rule_id(finding)
        if rule_id not in rules_map:
            rules_map[rule_id] = _build_rule(finding)

    rules = list(rules_map.values())
    rule_id_to_index = {r["id"]: i for i, r in enumerate(rules)}

    results = [
        _build_result(f, rule_id_to_index[generate_rule_id(f)], summary.target)
        for f in findings
    ]

    now_utc = datetime.now(timezone.utc).isoformat()

    return {
        "$schema": "https://raw.githubusercontent.com/oasis-tcs/sarif-spec/master/Schemata/sarif-schema-2.1.0.json",
        "version": "2.1.0",
        "runs": [
            {
                "tool": {
                    "driver": {
                        "name": "fuzzkit",
                        "version": FUZZKIT_VERSION,
                        "semanticVersion": FUZZKIT_VERSION,
                        "rules": rules,
                        "properties": {"tags": ["robustness", "fuzzing", "api"]},
                    }
                },
                "invocations": [
                    {
                        "executionSuccessful": True,
                        "commandLine": f"fuzzkit fuzz --url {summary.target}" if summary.target else "fuzzkit fuzz",
                        "startTimeUtc": summary.started_at.isoformat() if summary.started_at else now_utc,
                        "endTimeUtc": summary.completed_at.isoformat() if summary.completed_at else now_utc,
                    }
                ],
                "results": results,
                "taxonomies": [
                    {
                        "name": "CWE",
                        "version": "4.13",
                        "organization": "MITRE",
                        "shortDescription": {"text": "Common Weakness Enumeration"},
                        "informationUri": "https://cwe.mitre.org/",
                        "isComprehensive": False,
                        "taxa": CWE_TAXA,
                    }
                ],
                "properties": {
                    "target": summary.target,
                    "stopReason": summary.stop_reason,
                    "requestsSent": summary.requests_sent,
                    "classifications": summary.classifications,
                    "weights": summary.weights,
                },
            }
        ],
    }


def save_sarif_report(summary: CampaignSummary, findings: list[Finding], output_path: str) -> bool:
    """Save a SARIF report to a file. Returns True if successful."""
    sarif = generate_sarif_report(summary, findings)
    try:
        output_file = Path(output_path)
        output_file.parent.mkdir(parents=True, exist_ok=True)
        output_file.write_text(json.dumps(sarif, indent=2), encoding="utf-8")
    except OSError as e:
        logger.error("failed to write SARIF report %s: %s", output_path, e)
        return False
    return True
