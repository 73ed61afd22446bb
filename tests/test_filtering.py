"""Tests for the comment quality filter and ranker."""

from commentscope.core.filtering import filter_and_rank, is_quality_comment, score_comment
from commentscope.core.models import FilterConfig

from conftest import make_comment


class TestQualityFilter:
    def test_short_comment_rejected(self):
        assert not is_quality_comment("好用")

    def test_emoji_and_symbols_do_not_count(self):
        assert not is_quality_comment("😀😀😀😀😀😀😀😀😀😀😀😀")
        assert not is_quality_comment("!!!好用!!!???。。。")

    def test_whitespace_trimmed_before_counting(self):
        assert not is_quality_comment("   吸力不错   ")
        assert is_quality_comment("   用了半年吸力一直很不错   ")


class TestScoreComment:
    def test_components_are_capped(self):
        comment = make_comment(1, "字" * 1000, like=100000, reply_count=10000)
        assert score_comment(comment) == 70.0

    def test_distinct_keywords_counted_once(self):
        comment = make_comment(1, "吸力吸力吸力，续航也还行的样子")
        base = score_comment(comment)
        assert score_comment(comment, ["吸力", "吸力", "续航"]) == base + 20

    def test_keyword_match_is_case_insensitive(self):
        comment = make_comment(1, "Dyson 的吸力确实很强劲啊")
        assert score_comment(comment, ["dyson"]) == score_comment(comment) + 10


class TestFilterAndRank:
    def test_empty_input(self):
        assert filter_and_rank([]) == []

    def test_higher_score_first(self):
        weak = make_comment(1, "用起来还可以吧没什么感觉", like=0)
        strong = make_comment(2, "用起来还可以吧没什么感觉", like=2000)
        assert [c.rpid for c in filter_and_rank([weak, strong])] == [2, 1]

    def test_ties_broken_newer_then_likes_then_id(self):
        text = "一模一样的评论内容在这里"
        a = make_comment(1, text, ctime=100)
        b = make_comment(2, text, ctime=200)
        c = make_comment(3, text, ctime=100)
        assert [x.rpid for x in filter_and_rank([a, b, c])] == [2, 3, 1]

    def test_result_is_subsequence_of_quality_input(self):
        comments = [
            make_comment(1, "太短"),
            make_comment(2, "这个扫地机器人的避障能力真的很强", like=50),
            make_comment(3, "🤣🤣🤣🤣🤣🤣🤣🤣🤣🤣🤣"),
            make_comment(4, "续航一般般，大概只能用四十分钟左右", like=5),
        ]
        ranked = filter_and_rank(comments)
        assert {c.rpid for c in ranked} == {2, 4}
        assert all(c in comments for c in ranked)

    def test_truncates_to_max_comments(self):
        comments = [make_comment(i, f"第{i}条评论，内容足够长了吧", like=i) for i in range(1, 11)]
        ranked = filter_and_rank(comments, FilterConfig(max_comments=3))
        assert [c.rpid for c in ranked] == [10, 9, 8]

    def test_deterministic(self):
        comments = [make_comment(i, f"评论内容第{i % 3}类，字数足够长", ctime=i % 2) for i in range(20)]
        assert filter_and_rank(comments) == filter_and_rank(list(reversed(comments)))
