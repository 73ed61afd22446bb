"""Data preparation for export."""

import datetime
import json
from typing import Any, Dict, Optional

from ..core.models import Report, TaskState


def prepare_export(report: Dict[str, Any], state: Optional[TaskState] = None) -> Dict[str, Any]:
    """Wrap a stored report with task metadata for JSON export."""
    export_data = {
        "report": report,
        "metadata": {
            "export_timestamp": None,  # Will be set by caller
            "version": "1.0.0",
        },
    }
    if state is not None:
        request = state.request
        export_data["task"] = {
            "task_id": state.task_id,
            "status": state.stage.value,
            "message": state.message,
            "category": request.category,
            "keywords": request.keywords,
            "brands": request.brands,
        }
    return export_data


def export_to_json(data: Dict[str, Any], filename: str) -> None:
    """Export data to JSON file."""
    data.setdefault("metadata", {})["export_timestamp"] = datetime.datetime.now().isoformat()

    with open(filename, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2, ensure_ascii=False)


def export_report_json(report: Report, filename: str) -> None:
    """Export a freshly built report."""
    export_to_json(prepare_export(report.to_dict()), filename)
