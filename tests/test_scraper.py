"""Tests for quota allocation and the concurrent scraper."""

import threading
import time

from commentscope.services.scraper import CommentScraper, allocate_quotas

from conftest import FakePlatformClient, make_comment, make_video


def comments_for(bvid, n, start=1):
    return [make_comment(start + i, f"{bvid} 的第{i}条评论内容足够长", bvid=bvid) for i in range(n)]


class TestAllocateQuotas:
    def test_even_split_without_counts(self):
        videos = [make_video("BVa"), make_video("BVb")]
        assert allocate_quotas(videos, 100, 10, 200) == {"BVa": 50, "BVb": 50}

    def test_proportional_split(self):
        videos = [make_video("BVa", 300), make_video("BVb", 100)]
        assert allocate_quotas(videos, 200, 10, 200) == {"BVa": 150, "BVb": 50}

    def test_capped_at_comment_count_and_ceiling(self):
        videos = [make_video("BVa", 1000), make_video("BVb", 5)]
        quotas = allocate_quotas(videos, 200, 10, 200)
        assert quotas == {"BVa": 199, "BVb": 5}

    def test_video_without_comments_gets_nothing(self):
        videos = [make_video("BVa", 100), make_video("BVb", 0)]
        quotas = allocate_quotas(videos, 100, 10, 200)
        assert quotas == {"BVa": 100, "BVb": 0}

    def test_ceiling_applies(self):
        videos = [make_video("BVa", 10000)]
        assert allocate_quotas(videos, 1000, 10, 200) == {"BVa": 200}

    def test_empty(self):
        assert allocate_quotas([], 100, 10, 200) == {}


class TestCommentScraper:
    """Scraping against the fake platform client."""

    def setup_method(self):
        self.videos = [make_video(f"BV{i}", 30) for i in range(6)]
        self.client = FakePlatformClient(comments={v.bvid: comments_for(v.bvid, 30) for v in self.videos})
        self.quotas = {v.bvid: 25 for v in self.videos}

    def test_scrapes_all_videos_within_quota(self):
        scraper = CommentScraper(self.client, max_concurrency=3, request_delay=0, fetch_replies=False)
        result = scraper.scrape(self.videos, self.quotas)

        assert set(result.comments) == {v.bvid for v in self.videos}
        assert all(len(c) == 25 for c in result.comments.values())
        assert result.total_comments == 150
        assert result.errors == []
        assert not result.cancelled
        first = result.comments["BV0"]
        assert [c.rpid for c in first] == list(range(1, 26))

    def test_partial_failure_recorded(self):
        self.client.failing = {"BV2"}
        scraper = CommentScraper(self.client, max_concurrency=2, request_delay=0, fetch_replies=False)
        result = scraper.scrape(self.videos, self.quotas)

        assert "BV2" not in result.comments
        assert len(result.comments) == 5
        assert len(result.errors) == 1
        assert result.errors[0].startswith("BV2: ")

    def test_progress_reported_per_video(self):
        calls = []
        scraper = CommentScraper(self.client, max_concurrency=3, request_delay=0, fetch_replies=False)
        scraper.scrape(self.videos, self.quotas, progress=lambda done, total, msg: calls.append((done, total)))

        assert len(calls) == len(self.videos)
        assert [c[0] for c in calls] == list(range(1, 7))
        assert calls[-1] == (6, 6)

    def test_concurrency_is_bounded(self):
        lock = threading.Lock()
        state = {"active": 0, "peak": 0}
        original = self.client.get_comments

        def slow_get_comments(*args, **kwargs):
            with lock:
                state["active"] += 1
                state["peak"] = max(state["peak"], state["active"])
            time.sleep(0.02)
            try:
                return original(*args, **kwargs)
            finally:
                with lock:
                    state["active"] -= 1

        self.client.get_comments = slow_get_comments
        scraper = CommentScraper(self.client, max_concurrency=2, request_delay=0, fetch_replies=False)
        scraper.scrape(self.videos, self.quotas)
        assert 1 <= state["peak"] <= 2

    def test_replies_attached(self):
        parent = make_comment(900, "这个吸尘器吸力怎么样啊大家", reply_count=2, bvid="BVr")
        video = make_video("BVr", 1)
        client = FakePlatformClient(
            comments={"BVr": [parent]},
            replies={900: [make_comment(901, "很好用", bvid="BVr"), make_comment(902, "一般般", bvid="BVr")]},
        )
        scraper = CommentScraper(client, request_delay=0, fetch_replies=True)
        result = scraper.scrape([video], {"BVr": 10})

        scraped = result.comments["BVr"][0]
        assert [r.rpid for r in scraped.replies] == [901, 902]
        assert result.total_replies == 2

    def test_cancelled_before_start(self):
        cancel = threading.Event()
        cancel.set()
        scraper = CommentScraper(self.client, request_delay=0, fetch_replies=False)
        result = scraper.scrape(self.videos, self.quotas, cancel_event=cancel)

        assert result.cancelled
        assert result.comments == {}
        assert self.client.comment_calls == []

    def test_no_videos(self):
        result = CommentScraper(self.client).scrape([])
        assert result.total_videos == 0
        assert result.comments == {}
