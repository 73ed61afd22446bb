"""Tests for brand/model aggregation and the report builder."""

from commentscope.core.brands import BrandNormalizer
from commentscope.core.models import Dimension, ScoredComment
from commentscope.core.scoring import (
    build_report,
    group_by_brand,
    keyword_frequency,
    rank_brands,
    rank_models,
    resolve_brands,
    round1,
    select_typical_comments,
    sentiment_distribution,
)

from conftest import make_video

DIMS = [Dimension("吸力", "吸尘效果"), Dimension("续航", "电池续航")]


def scored(i, brand, scores, model="", content=None, error=""):
    return ScoredComment(comment_id=str(i), content=content or f"评论{i}", scores=scores,
                         brand=brand, model=model, error=error)


class TestRounding:
    def test_half_away_from_zero(self):
        assert round1(8.25) == 8.3
        assert round1(8.24) == 8.2
        assert round1(-1.25) == -1.3


class TestRankBrands:
    """Brand ranking over grouped comments."""

    def setup_method(self):
        self.groups = {
            "石头": [scored(1, "石头", {"吸力": 9, "续航": None}), scored(2, "石头", {"吸力": 8, "续航": None})],
            "追觅": [scored(3, "追觅", {"吸力": 5, "续航": 6})],
        }

    def test_scores_and_order(self):
        rankings = rank_brands(self.groups, DIMS)
        assert [(r.brand, r.overall_score, r.rank) for r in rankings] == [("石头", 8.5, 1), ("追觅", 5.5, 2)]
        assert rankings[0].scores == {"吸力": 8.5}
        assert rankings[0].comment_count == 2

    def test_ties_broken_by_name(self):
        groups = {
            "B牌": [scored(1, "B牌", {"吸力": 7})],
            "A牌": [scored(2, "A牌", {"吸力": 7})],
        }
        assert [r.brand for r in rank_brands(groups, DIMS)] == ["A牌", "B牌"]

    def test_brand_without_observations_excluded(self):
        groups = dict(self.groups, 空白=[scored(9, "空白", {"吸力": None, "续航": None})])
        assert "空白" not in [r.brand for r in rank_brands(groups, DIMS)]

    def test_report_is_idempotent(self):
        videos = [make_video("BV1", 10)]
        first = build_report("吸尘器", DIMS, self.groups, videos, 3).to_dict()
        second = build_report("吸尘器", DIMS, self.groups, videos, 3).to_dict()
        assert first == second
        assert first["brands"] == ["石头", "追觅"]
        assert first["brand_analysis"]["石头"]["strengths"] == ["吸力"]
        assert first["brand_analysis"]["追觅"]["weaknesses"] == ["吸力"]
        assert first["stats"]["comments_by_brand"] == {"石头": 2, "追觅": 1}
        assert first["video_sources"][0]["bvid"] == "BV1"
        assert "石头" in first["recommendation"]

    def test_empty_report(self):
        report = build_report("吸尘器", DIMS, {})
        assert report.rankings == []
        assert report.recommendation


class TestRankModels:
    def test_spellings_merged(self):
        groups = {"OPPO": [
            scored(1, "OPPO", {"吸力": 8}, model="TWS5"),
            scored(2, "OPPO", {"吸力": 6}, model="TWS 5"),
            scored(3, "OPPO", {"吸力": 7}, model="tws-5"),
            scored(4, "OPPO", {"吸力": 9}, model="通用"),
        ]}
        models = rank_models(groups, DIMS)
        assert len(models) == 1
        assert models[0].model == "TWS 5"
        assert models[0].overall_score == 7.0
        assert models[0].comment_count == 3

    def test_order(self):
        groups = {
            "石头": [scored(1, "石头", {"吸力": 6}, model="P10")],
            "追觅": [scored(2, "追觅", {"吸力": 9}, model="X40"), scored(3, "追觅", {"吸力": 6}, model="L20")],
        }
        assert [(m.model, m.rank) for m in rank_models(groups, DIMS)] == [("X40", 1), ("P10", 2), ("L20", 3)]


class TestCommentLevel:
    def test_sentiment_thirds(self):
        comments = [
            scored(1, "A", {"吸力": 9}),
            scored(2, "A", {"吸力": 6}),
            scored(3, "A", {"吸力": 2}),
            scored(4, "A", {"吸力": None}),
        ]
        stats = sentiment_distribution(comments)
        assert (stats.positive_count, stats.neutral_count, stats.negative_count) == (1, 1, 1)
        assert stats.positive_pct == 33.3

    def test_keyword_order(self):
        items = keyword_frequency(["dyson 吸力", "DYSON 吸力", "的 a"])
        assert [(k.word, k.count) for k in items] == [("dyson", 2), ("吸力", 2)]

    def test_typical_comments(self):
        groups = {"A": [
            scored(1, "A", {"吸力": 9}, content="好"),
            scored(2, "A", {"吸力": 10}, content="很好"),
            scored(3, "A", {"吸力": 3}, content="差"),
            scored(4, "A", {"吸力": 6}, content="一般"),
        ]}
        top, bad = select_typical_comments(groups)
        assert [t.content for t in top["A"]] == ["很好", "好"]
        assert [t.content for t in bad["A"]] == ["差"]


class TestBrandResolution:
    """Brand fill-in from discovered models and grouping."""

    def setup_method(self):
        self.normalizer = BrandNormalizer()

    def test_resolve_fills_unknown_brand(self):
        results = [
            scored(1, "未知", {"吸力": 8}, model="TWS5"),
            scored(2, "catlink/小佩", {"吸力": 7}, model="SCOOPER/Young"),
            scored(3, "", {}, error="analysis failed: x"),
        ]
        resolved = resolve_brands(results, {"tws5": "oppo"}, known_brands=["小佩"], normalizer=self.normalizer)
        assert resolved[0].brand == "OPPO"
        assert resolved[1].brand == "小佩"
        assert resolved[1].model == "SCOOPER"
        assert resolved[2] is results[2]

    def test_group_by_brand(self):
        results = [
            scored(1, "dyson", {"吸力": 9}, model="V12"),
            scored(2, "未知", {"吸力": 7}, content="小米的吸力还可以"),
            scored(3, "未知", {"吸力": 5}, content="没提品牌的评论"),
            scored(4, "追觅", {"吸力": 8}, content="X40 Ultra 很好用"),
            scored(5, "戴森", {}, error="analysis failed: x"),
        ]
        groups = group_by_brand(results, ["戴森", "小米"], self.normalizer)

        assert set(groups) == {"戴森", "小米", "追觅"}
        assert [c.comment_id for c in groups["戴森"]] == ["1"]
        assert groups["小米"][0].comment_id == "2"
        assert groups["追觅"][0].model == "X40 Ultra"
