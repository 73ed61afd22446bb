"""Bounded concurrent comment scraper."""

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import replace
from typing import Callable, Dict, List, Optional, Sequence, Tuple

import requests

from ..core.constants import PlatformConstants, ScrapeConstants
from ..core.exceptions import InputError, TransientRemoteError
from ..core.models import RawComment, ScrapeResult, VideoItem
from .bilibili_client import BilibiliClient, pause
from .bvid import decode_short_id

logger = logging.getLogger(__name__)

# (completed, total, message)
ScrapeProgress = Callable[[int, int, str], None]


def allocate_quotas(videos: Sequence[VideoItem], max_comments: int, floor: int, ceiling: int) -> Dict[str, int]:
    """Split the global comment budget across videos by their comment counts.

    Each quota is clamped to ``[floor, ceiling]`` and capped at the video's own
    comment count, so a video reporting none gets 0. With no counts at all
    the budget is split evenly, still clamped.
    """
    if not videos:
        return {}

    def clamp(n: int) -> int:
        return max(floor, min(ceiling, n))

    total = sum(max(0, v.comment_count) for v in videos)
    quotas: Dict[str, int] = {}
    if total == 0:
        per_video = clamp(max_comments // len(videos))
        for v in videos:
            quotas[v.bvid] = per_video
        return quotas

    for v in videos:
        quota = clamp(int(max_comments * max(0, v.comment_count) / total))
        quota = min(quota, max(0, v.comment_count))
        quotas[v.bvid] = quota
    return quotas


class CommentScraper:
    """Collect comments for many videos with at most ``max_concurrency`` in flight."""

    def __init__(
        self,
        client: BilibiliClient,
        max_concurrency: int = ScrapeConstants.MAX_CONCURRENCY,
        request_delay: float = ScrapeConstants.REQUEST_DELAY,
        fetch_replies: bool = ScrapeConstants.FETCH_REPLIES,
        max_pages: int = ScrapeConstants.MAX_PAGES,
    ):
        self.client = client
        self.max_concurrency = max(1, max_concurrency)
        self.request_delay = request_delay
        self.fetch_replies = fetch_replies
        self.max_pages = max_pages

    def scrape(
        self,
        videos: Sequence[VideoItem],
        quotas: Optional[Dict[str, int]] = None,
        progress: Optional[ScrapeProgress] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> ScrapeResult:
        """Scrape every video, tolerating per-video failures.

        Comments of one video keep the order the platform returned them in.
        If ``cancel_event`` is set, videos not yet started are skipped and the
        result is flagged ``cancelled``; finished videos are still returned.
        """
        start = time.time()
        cancel_event = cancel_event or threading.Event()
        result = ScrapeResult(videos=list(videos), total_videos=len(videos))
        if not videos:
            return result

        lock = threading.Lock()
        completed = 0
        total = len(videos)

        with ThreadPoolExecutor(max_workers=self.max_concurrency) as pool:
            futures = {
                pool.submit(self._scrape_video, v, (quotas or {}).get(v.bvid, 0), cancel_event): v
                for v in videos
            }
            for future in as_completed(futures):
                video = futures[future]
                try:
                    comments, reply_total = future.result()
                    error = None
                except Exception as e:
                    comments, reply_total = None, 0
                    error = f"{video.bvid}: {e}"
                    logger.warning(f"Failed to scrape comments for {video.bvid}: {e}")

                with lock:
                    completed += 1
                    if error:
                        result.errors.append(error)
                        message = f"Failed video {video.bvid} ({completed}/{total})"
                    elif comments is None:
                        message = f"Skipped video {video.bvid} ({completed}/{total})"
                    else:
                        result.comments[video.bvid] = comments
                        result.total_comments += len(comments)
                        result.total_replies += reply_total
                        message = f"Scraped {len(comments)} comments from {video.bvid} ({completed}/{total})"
                    if progress:
                        progress(completed, total, message)

        result.cancelled = cancel_event.is_set()
        result.duration = time.time() - start
        logger.info(
            f"Scraped {result.total_comments} comments and {result.total_replies} replies "
            f"from {len(result.comments)}/{total} videos in {result.duration:.1f}s ({len(result.errors)} errors)"
        )
        return result

    def _scrape_video(self, video: VideoItem, quota: int,
                      cancel_event: threading.Event) -> Tuple[Optional[List[RawComment]], int]:
        if cancel_event.is_set():
            return None, 0

        avid = video.aid or decode_short_id(video.bvid)
        if avid <= 0:
            raise InputError(f"malformed video id {video.bvid!r}")
        if quota <= 0:
            return [], 0

        comments: List[RawComment] = []
        for page in range(1, self.max_pages + 1):
            batch, total = self.client.get_comments(avid, page, PlatformConstants.COMMENT_PAGE_SIZE, bvid=video.bvid)
            comments.extend(batch)
            if not batch or len(comments) >= quota or len(comments) >= total:
                break
            if pause(self.request_delay, cancel_event):
                break
        comments = comments[:quota]

        reply_total = 0
        if self.fetch_replies:
            comments, reply_total = self._attach_replies(avid, video.bvid, comments, cancel_event)
        return comments, reply_total

    def _attach_replies(self, avid: int, bvid: str, comments: List[RawComment],
                        cancel_event: threading.Event) -> Tuple[List[RawComment], int]:
        enriched: List[RawComment] = []
        reply_total = 0
        for comment in comments:
            if comment.reply_count <= 0 or cancel_event.is_set():
                enriched.append(comment)
                continue
            try:
                replies = self.client.get_all_replies(avid, comment.rpid, bvid=bvid, cancel_event=cancel_event)
            except (TransientRemoteError, requests.RequestException) as e:
                logger.debug(f"Skipping replies of comment {comment.rpid}: {e}")
                enriched.append(comment)
                continue
            reply_total += len(replies)
            enriched.append(replace(comment, replies=tuple(replies)))
            pause(ScrapeConstants.REPLY_FETCH_DELAY, cancel_event)
        return enriched, reply_total
