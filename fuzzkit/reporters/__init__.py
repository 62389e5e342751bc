from fuzzkit.reporters.json_report import generate_json_report
from fuzzkit.reporters.sarif_report import generate_sarif_report, save_sarif_report

__all__ = [
    "generate_json_report",
    "generate_sarif_report",
    "save_sarif_report",
]
