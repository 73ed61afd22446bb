"""Shared fakes for CommentScope tests."""

import json
import re
import threading

import pytest

from commentscope.core.models import Dimension, RawComment, VideoItem

_ITEM_LINE = re.compile(r"^\[(\d+)\] (?:视频：.*? \| )?内容：(.*)$", re.MULTILINE)


def batch_items(user_prompt):
    """[(position, content)] parsed from a merged-batch user prompt."""
    return [(int(n), text) for n, text in _ITEM_LINE.findall(user_prompt)]


def merged_reply(user_prompt, verdict):
    """Build a merged-batch reply; ``verdict(content)`` returns (brand, model, scores)."""
    results = []
    for pos, content in batch_items(user_prompt):
        brand, model, scores = verdict(content)
        results.append({"id": str(pos), "brand": brand, "model": model, "scores": scores})
    return json.dumps({"results": results}, ensure_ascii=False)


class FakeLLM:
    """Stands in for ``LLMClient``; ``handler(system, user)`` returns the reply text."""

    def __init__(self, handler):
        self.handler = handler
        self.calls = []
        self._lock = threading.Lock()

    def chat(self, system, user, temperature=0.3):
        with self._lock:
            self.calls.append((system, user))
        return self.handler(system, user)


class FakePlatformClient:
    """Stands in for ``BilibiliClient`` with canned videos and comments."""

    def __init__(self, videos=None, comments=None, failing=(), replies=None, search_failures=()):
        self.videos = videos or {}
        self.comments = comments or {}
        self.failing = set(failing)
        self.replies = replies or {}
        self.search_failures = set(search_failures)
        self.comment_calls = []
        self._lock = threading.Lock()

    def search_videos_with_limit(self, keyword, limit, min_duration=0):
        if keyword in self.search_failures:
            from commentscope.core.exceptions import PlatformAPIError
            raise PlatformAPIError("search failed", code=-412)
        return list(self.videos.get(keyword, []))[:limit]

    def get_comments(self, avid, page=1, page_size=20, bvid=""):
        with self._lock:
            self.comment_calls.append((bvid, page))
        if bvid in self.failing:
            from commentscope.core.exceptions import PlatformAPIError
            raise PlatformAPIError("API error code=-404", code=-404)
        all_comments = self.comments.get(bvid, [])
        start = (page - 1) * page_size
        return all_comments[start:start + page_size], len(all_comments)

    def get_all_replies(self, avid, root, max_replies=10, bvid="", cancel_event=None):
        return list(self.replies.get(root, []))[:max_replies]


def make_video(bvid, comment_count=0, aid=None, title="测评视频", pubdate=0):
    return VideoItem(bvid=bvid, aid=aid if aid is not None else abs(hash(bvid)) % 10_000_000 + 1,
                     title=title, author="up主", play=1000, comment_count=comment_count, pubdate=pubdate)


def make_comment(rpid, message, like=0, reply_count=0, ctime=0, bvid=""):
    return RawComment(rpid=rpid, oid=1, message=message, like=like, reply_count=reply_count,
                      ctime=ctime, bvid=bvid)


@pytest.fixture
def dimensions():
    return [Dimension("吸力", "吸尘效果"), Dimension("续航", "电池续航")]
