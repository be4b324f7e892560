"""JSON and CSV export for batch reports."""

from __future__ import annotations

import csv
import io
import json
from typing import Optional

from cfpinner.models import AliveSet, BatchReport, ProbeOutcome
from cfpinner.stats import classify

CSV_FIELDS = [
    "address",
    "verdict",
    "status_code",
    "cache_status",
    "pop_code",
    "country",
    "ray_id",
    "error",
]


def export_json(report: BatchReport, alive: Optional[AliveSet] = None, indent: int = 2) -> str:
    """Export a report (and optional alive set) as a JSON string."""
    data: dict = {
        "summary": {
            "total": report.total,
            "hits": report.hits,
            "misses": report.misses,
            "errors": report.errors,
            "hit_percent": round(report.hit_percent, 1),
            "miss_percent": round(report.miss_percent, 1),
            "error_percent": round(report.error_percent, 1),
        },
        "outcomes": [_outcome_to_dict(o) for o in report.outcomes],
    }
    if alive is not None:
        data["alive"] = alive.sorted()
    return json.dumps(data, indent=indent)


def export_csv(report: BatchReport) -> str:
    """Export one CSV row per outcome."""
    output = io.StringIO()
    writer = csv.DictWriter(output, fieldnames=CSV_FIELDS)
    writer.writeheader()
    for outcome in report.outcomes:
        writer.writerow(_outcome_to_dict(outcome))
    return output.getvalue()


def write_to_file(content: str, filepath: str) -> None:
    """Write export content to a file."""
    with open(filepath, "w") as f:
        f.write(content)


def _outcome_to_dict(outcome: ProbeOutcome) -> dict:
    return {
        "address": outcome.address,
        "verdict": classify(outcome).value,
        "status_code": outcome.status_code,
        "cache_status": outcome.cache_status,
        "pop_code": outcome.pop_code,
        "country": outcome.country,
        "ray_id": outcome.ray_id,
        "error": outcome.error,
    }
