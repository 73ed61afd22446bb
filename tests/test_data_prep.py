"""Tests for report export."""

import json

from commentscope.core.models import Dimension, TaskRequest, TaskStage, TaskState
from commentscope.core.scoring import build_report
from commentscope.utils.data_prep import export_report_json, export_to_json, prepare_export


class TestExport:
    def setup_method(self):
        self.report = build_report("吸尘器", [Dimension("吸力", "")], {})
        request = TaskRequest("吸尘器", ["吸尘器评测"], ["戴森"], [Dimension("吸力", "")])
        self.state = TaskState(task_id="t1", stage=TaskStage.COMPLETED, progress=100, message="done",
                               heartbeat=1.0, request_json=request.to_json(), report_id="r1")

    def test_prepare_export_includes_task(self):
        data = prepare_export(self.report.to_dict(), self.state)
        assert data["task"]["task_id"] == "t1"
        assert data["task"]["status"] == "completed"
        assert data["task"]["keywords"] == ["吸尘器评测"]
        assert data["report"]["category"] == "吸尘器"

    def test_export_writes_timestamped_json(self, tmp_path):
        path = tmp_path / "report.json"
        export_to_json(prepare_export(self.report.to_dict(), self.state), str(path))
        saved = json.loads(path.read_text(encoding="utf-8"))
        assert saved["metadata"]["export_timestamp"]
        assert saved["task"]["brands"] == ["戴森"]

    def test_export_report_object(self, tmp_path):
        path = tmp_path / "direct.json"
        export_report_json(self.report, str(path))
        saved = json.loads(path.read_text(encoding="utf-8"))
        assert saved["report"]["rankings"] == []
        assert "task" not in saved
