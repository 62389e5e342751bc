"""
JSON Reporter: writes a campaign summary plus the full findings store.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path

from fuzzkit import __version__
from fuzzkit.models import CampaignSummary, Finding

logger = logging.getLogger(__name__)


def generate_json_report(summary: CampaignSummary, findings: list[Finding], output_path: str) -> bool:
    """
    Write a JSON report of one campaign.

    Args:
        summary: The finished campaign's summary
        findings: Every finding in the store, not just this run's new ones
        output_path: Path to write the JSON file

    Returns:
        True if successful, False otherwise
    """
    report_data = summary.model_dump(mode="json")
    report_data["findings"] = [f.model_dump(mode="json") for f in findings]
    report_data["report_generated_at"] = datetime.now(timezone.utc).isoformat()
    report_data["version"] = __version__

    try:
        output_file = Path(output_path)
        output_file.parent.mkdir(parents=True, exist_ok=True)
        with open(output_file, "w", encoding="utf-8") as f:
            json.dump(report_data, f, indent=2)
    except OSError as e:
        logger.error("failed to write JSON report %s: %s", output_path, e)
        return False
    return True
