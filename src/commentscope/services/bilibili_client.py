"""Bilibili web API client for CommentScope."""

import html
import logging
import re
import threading
import time
from typing import Any, Dict, List, Optional, Tuple

import requests
from tenacity import Retrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from ..core.config import settings
from ..core.constants import ErrorConstants, PlatformConstants, ScrapeConstants
from ..core.exceptions import InputError, PlatformAPIError
from ..core.models import RawComment, VideoItem
from .signer import WbiSigner

logger = logging.getLogger(__name__)

_HIGHLIGHT_TAG = re.compile(r"<[^>]+>")


def pause(delay: float, cancel_event: Optional[threading.Event] = None) -> bool:
    """Sleep for ``delay`` seconds; return True if cancellation was requested."""
    if cancel_event is None:
        if delay > 0:
            time.sleep(delay)
        return False
    return cancel_event.wait(delay) if delay > 0 else cancel_event.is_set()


def clean_title(title: str) -> str:
    """Drop the search highlight markup (``<em class="keyword">``) from titles."""
    return html.unescape(_HIGHLIGHT_TAG.sub("", title or "")).strip()


def _to_int(value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


def parse_video(item: Dict[str, Any]) -> VideoItem:
    return VideoItem(
        bvid=item.get("bvid", ""),
        aid=_to_int(item.get("aid")),
        title=clean_title(item.get("title", "")),
        author=item.get("author", ""),
        play=_to_int(item.get("play")),
        comment_count=_to_int(item.get("video_review")),
        pubdate=_to_int(item.get("pubdate")),
        duration=str(item.get("duration", "")),
        mid=_to_int(item.get("mid")),
        favorites=_to_int(item.get("favorites")),
        description=item.get("description", ""),
        pic=item.get("pic", ""),
    )


def parse_comment(item: Dict[str, Any], bvid: str = "") -> RawComment:
    return RawComment(
        rpid=_to_int(item.get("rpid")),
        oid=_to_int(item.get("oid")),
        message=(item.get("content") or {}).get("message", ""),
        like=_to_int(item.get("like")),
        reply_count=_to_int(item.get("rcount") or item.get("count")),
        ctime=_to_int(item.get("ctime")),
        mid=_to_int(item.get("mid")),
        uname=(item.get("member") or {}).get("uname", ""),
        root=_to_int(item.get("root")),
        parent=_to_int(item.get("parent")),
        bvid=bvid,
    )


class BilibiliClient:
    """Thin, retrying wrapper over the platform's JSON endpoints.

    Every response is ``{code, message, data}``; any non-zero ``code`` raises
    ``PlatformAPIError`` even when the HTTP status is 200. Network errors and
    platform errors are retried with exponential backoff. Signing-key
    failures are not retried.
    """

    def __init__(
        self,
        cookie: Optional[str] = None,
        session: Optional[requests.Session] = None,
        signer: Optional[WbiSigner] = None,
        timeout: Optional[float] = None,
        max_attempts: Optional[int] = None,
        retry_delay: Optional[float] = None,
    ):
        self.session = session or requests.Session()
        self.session.headers.update({
            "User-Agent": PlatformConstants.USER_AGENT,
            "Referer": PlatformConstants.REFERER,
        })
        cookie = settings.bilibili_cookie if cookie is None else cookie
        if cookie:
            self.session.headers["Cookie"] = cookie

        self.timeout = timeout if timeout is not None else settings.platform_timeout
        self.signer = signer or WbiSigner(session=self.session, timeout=self.timeout)
        self.max_attempts = max_attempts if max_attempts is not None else settings.max_retries
        self.retry_delay = retry_delay if retry_delay is not None else settings.retry_delay
        self.retry_backoff = settings.retry_backoff

    def _retrying(self) -> Retrying:
        return Retrying(
            stop=stop_after_attempt(max(1, self.max_attempts)),
            wait=wait_exponential(multiplier=self.retry_delay, max=ErrorConstants.RETRY_MAX_DELAY,
                                  exp_base=self.retry_backoff),
            retry=retry_if_exception_type((requests.RequestException, PlatformAPIError)),
            reraise=True,
        )

    def _request(self, url: str, params: List[Tuple[str, Any]], signed: bool) -> Dict[str, Any]:
        if signed:
            params = self.signer.sign_params(params)
        resp = self.session.get(url, params=params, timeout=self.timeout)
        if resp.status_code != 200:
            raise PlatformAPIError(f"HTTP {resp.status_code} from {url}")
        try:
            payload = resp.json()
        except ValueError as e:
            raise PlatformAPIError(f"invalid JSON from {url}: {e}") from e

        code = payload.get("code", -1)
        if code != 0:
            raise PlatformAPIError(f"API error code={code}, message={payload.get('message', '')}", code=code)
        return payload.get("data") or {}

    def get_json(self, url: str, params: Optional[Dict[str, Any]] = None, signed: bool = False) -> Dict[str, Any]:
        """GET a platform endpoint and return its ``data`` object."""
        items = list((params or {}).items())
        for attempt in self._retrying():
            with attempt:
                n = attempt.retry_state.attempt_number
                if n > 1:
                    logger.warning(f"Retrying {url} (attempt {n}/{self.max_attempts})")
                return self._request(url, items, signed)

    def search_videos(self, keyword: str, page: int = 1, page_size: int = PlatformConstants.SEARCH_PAGE_SIZE) -> Tuple[List[VideoItem], int]:
        """Search videos by keyword. Returns the page of videos and the page count."""
        if not keyword.strip():
            raise InputError("search keyword must not be empty")
        page = max(1, page)
        if page_size <= 0:
            page_size = PlatformConstants.SEARCH_PAGE_SIZE
        page_size = min(page_size, PlatformConstants.SEARCH_MAX_PAGE_SIZE)

        data = self.get_json(
            PlatformConstants.SEARCH_URL,
            {"search_type": "video", "keyword": keyword, "page": page, "page_size": page_size},
            signed=True,
        )
        videos = [parse_video(item) for item in data.get("result") or [] if item.get("bvid")]
        return videos, _to_int(data.get("numPages"))

    def search_videos_with_limit(self, keyword: str, limit: int, min_duration: int = 0) -> List[VideoItem]:
        """Collect up to ``limit`` videos, paging through at most 10 search pages."""
        if limit <= 0:
            return []

        collected: List[VideoItem] = []
        page = 1
        while len(collected) < limit and page <= PlatformConstants.SEARCH_MAX_PAGES:
            videos, num_pages = self.search_videos(keyword, page, PlatformConstants.SEARCH_PAGE_SIZE)
            if not videos:
                break
            for video in videos:
                if min_duration > 0 and video.duration_seconds < min_duration:
                    continue
                collected.append(video)
                if len(collected) >= limit:
                    break
            if num_pages and page >= num_pages:
                break
            page += 1

        logger.info(f"Found {len(collected)} videos for keyword: {keyword}")
        return collected

    def get_comments(self, avid: int, page: int = 1, page_size: int = PlatformConstants.COMMENT_PAGE_SIZE,
                     bvid: str = "") -> Tuple[List[RawComment], int]:
        """Fetch one page of top-level comments sorted by likes. Returns (comments, total)."""
        if avid <= 0:
            raise InputError(f"invalid video id: {avid}")
        data = self.get_json(
            PlatformConstants.COMMENTS_URL,
            {
                "type": 1,
                "oid": avid,
                "pn": max(1, page),
                "ps": min(max(1, page_size), PlatformConstants.COMMENT_PAGE_SIZE),
                "sort": PlatformConstants.COMMENT_SORT_BY_LIKES,
            },
        )
        comments = [parse_comment(item, bvid) for item in data.get("replies") or []]
        total = _to_int((data.get("page") or {}).get("count"))
        return comments, total

    def get_replies(self, avid: int, root: int, page: int = 1, page_size: int = PlatformConstants.REPLY_PAGE_SIZE,
                    bvid: str = "") -> Tuple[List[RawComment], int]:
        """Fetch one page of nested replies under ``root``."""
        data = self.get_json(
            PlatformConstants.REPLIES_URL,
            {"type": 1, "oid": avid, "root": root, "pn": max(1, page), "ps": page_size},
        )
        replies = [parse_comment(item, bvid) for item in data.get("replies") or []]
        total = _to_int((data.get("page") or {}).get("count"))
        return replies, total

    def get_all_replies(self, avid: int, root: int, max_replies: int = ScrapeConstants.MAX_REPLIES_PER_COMMENT,
                        bvid: str = "", cancel_event: Optional[threading.Event] = None) -> List[RawComment]:
        """Page through a comment's replies, stopping at ``max_replies`` or the page ceiling."""
        replies: List[RawComment] = []
        for page in range(1, ScrapeConstants.MAX_REPLY_PAGES + 1):
            batch, total = self.get_replies(avid, root, page, bvid=bvid)
            replies.extend(batch)
            if not batch or len(replies) >= max_replies or len(replies) >= total:
                break
            if pause(ScrapeConstants.REPLY_DELAY, cancel_event):
                break
        return replies[:max_replies]
