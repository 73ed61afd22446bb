"""Tests for merged batch analysis and its degrade path."""

import json
import threading

import pytest

from commentscope.core.exceptions import InputError, LLMResponseError, TaskCancelledError
from commentscope.core.models import BatchConfig, CommentInput, Dimension
from commentscope.services.analysis import NOT_FOUND_ERROR, AnalysisService

from conftest import FakeLLM, batch_items, merged_reply

SINGLE_REPLY = '{"brand": "戴森", "model": "V12", "scores": {"吸力": 7, "续航": null}}'


def inputs(n):
    return [CommentInput(id=f"c{i}", content=f"第{i}条评论：吸力很强", video_title="吸尘器横评") for i in range(n)]


def good_verdict(content):
    return "戴森", "V12", {"吸力": 9, "续航": 6}


def is_batch(user):
    return user.startswith("评论列表")


class TestMergedAnalysis:
    def setup_method(self):
        self.dims = [Dimension("吸力", "吸尘效果"), Dimension("续航", "电池续航")]

    def test_merged_success_keeps_order(self):
        llm = FakeLLM(lambda system, user: merged_reply(user, good_verdict))
        service = AnalysisService(llm, BatchConfig(max_items=5), concurrency=3)
        items = inputs(23)
        results = service.analyze_comments(items, self.dims)

        assert [r.comment_id for r in results] == [i.id for i in items]
        assert all(r.ok for r in results)
        assert results[0].scores == {"吸力": 9.0, "续航": 6.0}
        assert len(llm.calls) == 5

    def test_scores_clamped_and_limited_to_dimensions(self):
        def verdict(content):
            return "戴森", "V12", {"吸力": 15, "续航": "abc", "噪音": 3}
        llm = FakeLLM(lambda system, user: merged_reply(user, verdict))
        result = AnalysisService(llm).analyze_comments(inputs(1), self.dims)[0]
        assert result.scores == {"吸力": 10.0, "续航": None}

    def test_reply_without_results_degrades_to_single(self):
        def handler(system, user):
            return '{"oops": []}' if is_batch(user) else SINGLE_REPLY
        llm = FakeLLM(handler)
        results = AnalysisService(llm, BatchConfig(max_items=10)).analyze_comments(inputs(3), self.dims)

        assert len(llm.calls) == 4
        assert all(r.ok for r in results)
        assert results[0].scores == {"吸力": 7.0, "续航": None}
        assert results[0].brand == "戴森"

    def test_single_failures_become_error_entries(self):
        def handler(system, user):
            if is_batch(user):
                return "not json"
            return "still not json" if "第1条" in user else SINGLE_REPLY
        results = AnalysisService(FakeLLM(handler)).analyze_comments(inputs(3), self.dims)

        assert [r.ok for r in results] == [True, False, True]
        assert results[1].error.startswith("analysis failed:")
        assert results[1].scores == {}

    def test_missing_item_reanalyzed_individually(self):
        def handler(system, user):
            if not is_batch(user):
                return SINGLE_REPLY
            entries = [
                {"id": str(pos), "brand": "小米", "model": "G10", "scores": {"吸力": 8}}
                for pos, _ in batch_items(user) if pos != 2
            ]
            return json.dumps({"results": entries}, ensure_ascii=False)

        llm = FakeLLM(handler)
        results = AnalysisService(llm).analyze_comments(inputs(3), self.dims)
        assert [r.brand for r in results] == ["小米", "戴森", "小米"]
        assert len(llm.calls) == 2

    def test_batch_merged_marks_missing(self):
        def handler(system, user):
            return json.dumps({"results": [{"id": "1", "brand": "A", "model": "", "scores": {"吸力": 5}}]})
        service = AnalysisService(FakeLLM(handler))
        results = service.analyze_batch_merged(inputs(2), self.dims)
        assert results[0].ok
        assert results[1].error == NOT_FOUND_ERROR

    def test_items_matched_by_comment_id(self):
        def handler(system, user):
            return json.dumps({"results": [
                {"id": "c1", "brand": "B", "scores": {"吸力": 4}},
                {"id": "c0", "brand": "A", "scores": {"吸力": 6}},
            ]})
        results = AnalysisService(FakeLLM(handler)).analyze_batch_merged(inputs(2), self.dims)
        assert [r.brand for r in results] == ["A", "B"]

    def test_progress_reports_batches(self):
        calls = []
        llm = FakeLLM(lambda system, user: merged_reply(user, good_verdict))
        AnalysisService(llm, BatchConfig(max_items=2), concurrency=1).analyze_comments(
            inputs(5), self.dims, progress=lambda done, total, msg: calls.append((done, total)))
        assert calls == [(1, 3), (2, 3), (3, 3)]

    def test_empty_input_rejected(self):
        service = AnalysisService(FakeLLM(lambda s, u: ""))
        with pytest.raises(InputError):
            service.analyze_comments([], self.dims)
        with pytest.raises(InputError):
            service.analyze_comments(inputs(1), [])

    def test_cancelled_before_start(self):
        cancel = threading.Event()
        cancel.set()
        llm = FakeLLM(lambda system, user: merged_reply(user, good_verdict))
        with pytest.raises(TaskCancelledError) as exc:
            AnalysisService(llm).analyze_comments(inputs(3), self.dims, cancel_event=cancel)
        assert exc.value.partial == []
        assert llm.calls == []


class TestBrandIdentification:
    def test_dedupes_and_drops_unknown(self):
        def handler(system, user):
            return '结果：{"results": {"TWS5": "oppo", "X9": "未知", "V12": "戴森"}}'
        llm = FakeLLM(handler)
        mapping = AnalysisService(llm).identify_brands(["TWS5", "tws5", "X9", "V12", ""], "耳机", ["华为"])

        assert mapping == {"TWS5": "oppo", "V12": "戴森"}
        user = llm.calls[0][1]
        assert "型号列表" in user
        assert user.count("TWS5") + user.count("tws5") == 2  # one listed, one in the example
        assert "华为" in llm.calls[0][0]

    def test_no_models_no_call(self):
        llm = FakeLLM(lambda s, u: "")
        assert AnalysisService(llm).identify_brands([], "耳机") == {}
        assert llm.calls == []

    def test_unparseable_reply(self):
        assert AnalysisService(FakeLLM(lambda s, u: "抱歉")).identify_brands(["V12"], "吸尘器") == {}

    def test_fenced_reply(self):
        reply = "```json\n{\"results\": {\"V12\": \"戴森\"}}\n```"
        assert AnalysisService(FakeLLM(lambda s, u: reply)).identify_brands(["V12"], "吸尘器") == {"V12": "戴森"}

    def test_reply_without_results(self):
        reply = '{"brands": {"V12": "戴森"}}'
        assert AnalysisService(FakeLLM(lambda s, u: reply)).identify_brands(["V12"], "吸尘器") == {}


class TestRequirementParsing:
    PLAN = {
        "understanding": "我理解您想购买一台适合养宠家庭的吸尘器",
        "product_type": "吸尘器",
        "brands": ["戴森", "小米"],
        "dimensions": [{"name": "吸力", "description": "吸尘效果"}, {"name": "噪音"}],
        "keywords": ["戴森吸尘器", "吸尘器评测"],
    }

    def test_parses_plan(self):
        llm = FakeLLM(lambda s, u: "```json\n" + json.dumps(self.PLAN, ensure_ascii=False) + "\n```")
        plan = AnalysisService(llm).parse_requirement("想买个吸尘器，家里有猫")

        assert plan.product_type == "吸尘器"
        assert [d.name for d in plan.dimensions] == ["吸力", "噪音"]
        assert plan.keywords == ["戴森吸尘器", "吸尘器评测"]
        assert llm.calls[0][1] == "用户需求：想买个吸尘器，家里有猫"

    def test_missing_field_rejected(self):
        data = dict(self.PLAN, keywords=[])
        llm = FakeLLM(lambda s, u: json.dumps(data, ensure_ascii=False))
        with pytest.raises(LLMResponseError):
            AnalysisService(llm).parse_requirement("想买个吸尘器")

    def test_empty_requirement(self):
        with pytest.raises(InputError):
            AnalysisService(FakeLLM(lambda s, u: "")).parse_requirement("  ")
