"""Task orchestration: stage state machine, execution and crash recovery."""

import logging
import threading
import time
import uuid
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import replace
from typing import Callable, Dict, List, Optional, Sequence

import requests

from ..core.brands import BrandNormalizer, default_normalizer, is_concrete_model, is_unknown_brand
from ..core.config import settings
from ..core.constants import TaskConstants
from ..core.exceptions import (
    CommentScopeError,
    ConfigurationError,
    FatalTaskError,
    InputError,
    InvalidTransitionError,
    TaskCancelledError,
    TransientRemoteError,
)
from ..core.filtering import filter_and_rank
from ..core.models import (
    CommentInput,
    FilterConfig,
    ProgressEvent,
    RawComment,
    ScrapeResult,
    TaskRequest,
    TaskStage,
    TaskState,
    VideoItem,
)
from ..core.scoring import build_report, group_by_brand, resolve_brands
from .analysis import AnalysisService
from .bilibili_client import BilibiliClient
from .llm import LLMClient, LLMServiceFactory
from .progress import ProgressBroker
from .scraper import CommentScraper, allocate_quotas
from .storage import RawCommentStore, ReportStore, TaskStore

logger = logging.getLogger(__name__)

SECONDS_PER_MONTH = 30 * 86400


def default_client_factory() -> BilibiliClient:
    if not settings.bilibili_cookie:
        raise ConfigurationError("platform cookie is not configured (set BILIBILI_COOKIE)")
    return BilibiliClient(cookie=settings.bilibili_cookie)


class TaskTracker:
    """Moves one task through its stages and persists every change.

    Stages only move forward; ``failed`` can be entered from any
    non-terminal stage. Progress never decreases. Each update refreshes the
    heartbeat and is published to the broker.
    """

    def __init__(self, state: TaskState, store: TaskStore, broker: Optional[ProgressBroker] = None,
                 clock: Callable[[], float] = time.time):
        self.state = state
        self.store = store
        self.broker = broker
        self.clock = clock
        self._lock = threading.Lock()

    @property
    def task_id(self) -> str:
        return self.state.task_id

    def _persist(self, stage: TaskStage, progress: int, message: str, **changes):
        state = replace(self.state, stage=stage, progress=progress, message=message,
                        heartbeat=self.clock(), **changes)
        if not self.store.save_if_active(state):
            persisted = self.store.get(self.task_id)
            marked = persisted.stage.value if persisted is not None else "finished"
            raise InvalidTransitionError(f"task {self.task_id} was already marked {marked}")

        self.state = state
        if self.broker is not None:
            self.broker.publish(ProgressEvent(self.task_id, stage.value, progress, 100, message))

    def advance(self, stage: TaskStage, progress: int, message: str):
        with self._lock:
            current = self.state.stage
            if current.terminal:
                raise InvalidTransitionError(f"task {self.task_id} is already {current.value}")
            if stage == TaskStage.FAILED or stage.order < current.order:
                raise InvalidTransitionError(f"cannot move task {self.task_id} from {current.value} to {stage.value}")
            progress = max(self.state.progress, min(TaskConstants.PROGRESS_DONE, int(progress)))
            self._persist(stage, progress, message)
        logger.debug(f"[Task {self.task_id}] {stage.value} {progress}% {message}")

    def complete(self, report_id: str, message: str = "Analysis completed"):
        with self._lock:
            if self.state.stage.terminal:
                raise InvalidTransitionError(f"task {self.task_id} is already {self.state.stage.value}")
            self._persist(TaskStage.COMPLETED, TaskConstants.PROGRESS_DONE, message, report_id=report_id)

    def fail(self, message: str):
        """Mark the task failed; a no-op when it already reached a terminal stage."""
        with self._lock:
            if self.state.stage.terminal:
                return
            try:
                self._persist(TaskStage.FAILED, self.state.progress, message)
            except InvalidTransitionError:
                return
        logger.error(f"[Task {self.task_id}] failed: {message}")


class TaskHandle:
    """Handle returned by ``Orchestrator.submit``."""

    def __init__(self, task_id: str, future: Future, cancel_event: threading.Event):
        self.task_id = task_id
        self._future = future
        self._cancel_event = cancel_event

    def cancel(self):
        """Request cooperative cancellation; running network waits observe it."""
        self._cancel_event.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    def done(self) -> bool:
        return self._future.done()

    def result(self, timeout: Optional[float] = None) -> TaskState:
        return self._future.result(timeout=timeout)


class Orchestrator:
    """Runs analysis tasks end to end and owns their persisted state."""

    def __init__(
        self,
        store: TaskStore,
        report_store: ReportStore,
        raw_store: Optional[RawCommentStore] = None,
        broker: Optional[ProgressBroker] = None,
        client_factory: Callable[[], BilibiliClient] = default_client_factory,
        llm_factory: Callable[[], LLMClient] = LLMServiceFactory.create,
        normalizer: BrandNormalizer = default_normalizer,
        max_workers: int = TaskConstants.ORCHESTRATOR_WORKERS,
        heartbeat_timeout: Optional[float] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.report_store = report_store
        self.raw_store = raw_store
        self.broker = broker
        self.client_factory = client_factory
        self.llm_factory = llm_factory
        self.normalizer = normalizer
        self.heartbeat_timeout = (
            heartbeat_timeout if heartbeat_timeout is not None else settings.heartbeat_timeout_seconds
        )
        self.clock = clock
        self._pool = ThreadPoolExecutor(max_workers=max(1, max_workers), thread_name_prefix="task")
        self._handles: Dict[str, TaskHandle] = {}
        self._lock = threading.Lock()

    # ---- submission ----

    def submit(self, request: TaskRequest, task_id: Optional[str] = None) -> TaskHandle:
        """Persist a new task (or restart an existing one) and run it in the background."""
        task_id = task_id or uuid.uuid4().hex
        tracker = self._new_tracker(task_id, request)
        cancel_event = threading.Event()
        future = self._pool.submit(self._run_tracked, tracker, request, cancel_event)
        handle = TaskHandle(task_id, future, cancel_event)
        with self._lock:
            self._handles[task_id] = handle
        logger.info(f"[Task {task_id}] submitted ({len(request.keywords)} keywords, {len(request.dimensions)} dimensions)")
        return handle

    def run(self, request: TaskRequest, task_id: Optional[str] = None,
            cancel_event: Optional[threading.Event] = None) -> TaskState:
        """Run a task synchronously in the calling thread."""
        tracker = self._new_tracker(task_id or uuid.uuid4().hex, request)
        return self._run_tracked(tracker, request, cancel_event or threading.Event())

    def handle(self, task_id: str) -> Optional[TaskHandle]:
        with self._lock:
            return self._handles.get(task_id)

    def shutdown(self, wait: bool = True):
        with self._lock:
            handles = list(self._handles.values())
        if not wait:
            for h in handles:
                h.cancel()
        self._pool.shutdown(wait=wait)

    def _new_tracker(self, task_id: str, request: TaskRequest) -> TaskTracker:
        now = self.clock()
        existing = self.store.get(task_id)
        state = TaskState(
            task_id=task_id,
            stage=TaskStage.SEARCHING,
            progress=TaskConstants.PROGRESS_SEARCH_START,
            message="Task queued",
            heartbeat=now,
            request_json=request.to_json(),
            created_at=existing.created_at if existing else now,
        )
        self.store.save(state)
        return TaskTracker(state, self.store, self.broker, self.clock)

    def _run_tracked(self, tracker: TaskTracker, request: TaskRequest, cancel_event: threading.Event) -> TaskState:
        try:
            report_id = self._execute(tracker, request, cancel_event)
            tracker.complete(report_id)
            logger.info(f"[Task {tracker.task_id}] completed, report {report_id}")
        except TaskCancelledError:
            tracker.fail("Task cancelled")
        except CommentScopeError as e:
            tracker.fail(str(e))
        except Exception as e:
            logger.exception(f"[Task {tracker.task_id}] unexpected error")
            tracker.fail(f"Unexpected error: {e}")
        finally:
            if self.broker is not None:
                self.broker.close(tracker.task_id)
        return tracker.state

    # ---- pipeline ----

    def _execute(self, tracker: TaskTracker, request: TaskRequest, cancel_event: threading.Event) -> str:
        config = request.config
        if not request.keywords:
            raise InputError("at least one search keyword is required")
        if not request.dimensions:
            raise InputError("at least one evaluation dimension is required")

        tracker.advance(TaskStage.SEARCHING, TaskConstants.PROGRESS_SEARCH_START, "Loading settings")
        client = self.client_factory()
        llm = self.llm_factory()
        analysis = AnalysisService(llm, concurrency=config.ai_batch_concurrency)

        tracker.advance(TaskStage.SEARCHING, TaskConstants.PROGRESS_SEARCH_KEYWORDS, "Searching videos")
        videos = self._search_videos(tracker, client, request, cancel_event)
        if not videos:
            raise FatalTaskError("no videos found for the given keywords")

        tracker.advance(TaskStage.SCRAPING, TaskConstants.PROGRESS_SCRAPE_START,
                        f"Scraping comments from {len(videos)} videos")
        scrape_result = self._scrape(tracker, client, videos, request, cancel_event)

        inputs = self._prepare_inputs(scrape_result, request)
        if not inputs:
            raise FatalTaskError("no usable comments after filtering")

        tracker.advance(TaskStage.ANALYZING, TaskConstants.PROGRESS_ANALYZE_START,
                        f"Analyzing {len(inputs)} comments")
        span = TaskConstants.PROGRESS_ANALYZE_END - TaskConstants.PROGRESS_ANALYZE_START
        results = analysis.analyze_comments(
            inputs,
            request.dimensions,
            progress=lambda done, total, msg: tracker.advance(
                TaskStage.ANALYZING, TaskConstants.PROGRESS_ANALYZE_START + done * span // max(total, 1), msg),
            cancel_event=cancel_event,
        )
        if not any(r.ok for r in results):
            raise FatalTaskError(f"all {len(results)} comments failed analysis")

        model_to_brand = self._discover_brands(tracker, analysis, results, request)
        resolved = resolve_brands(results, model_to_brand, request.brands, self.normalizer)
        groups = group_by_brand(resolved, request.brands, self.normalizer)

        tracker.advance(TaskStage.GENERATING, TaskConstants.PROGRESS_GENERATE_START, "Generating report")
        report = build_report(request.category, request.dimensions, groups, videos, scrape_result.total_comments)
        tracker.advance(TaskStage.GENERATING, TaskConstants.PROGRESS_REPORT_BUILT, "Writing recommendation")
        try:
            report.recommendation = analysis.generate_recommendation(report) or report.recommendation
        except TransientRemoteError as e:
            logger.warning(f"[Task {tracker.task_id}] AI recommendation failed, keeping template: {e}")

        report_id = self.report_store.save(tracker.task_id, report.to_dict())
        tracker.advance(TaskStage.GENERATING, TaskConstants.PROGRESS_REPORT_SAVED, "Report saved")
        return report_id

    def _search_videos(self, tracker: TaskTracker, client: BilibiliClient, request: TaskRequest,
                       cancel_event: threading.Event) -> List[VideoItem]:
        config = request.config
        seen = set()
        videos: List[VideoItem] = []
        span = TaskConstants.PROGRESS_SCRAPE_START - TaskConstants.PROGRESS_SEARCH_KEYWORDS

        for i, keyword in enumerate(request.keywords, 1):
            if cancel_event.is_set():
                raise TaskCancelledError()
            try:
                found = client.search_videos_with_limit(keyword, config.max_videos_per_keyword,
                                                        config.min_video_duration)
            except (TransientRemoteError, InputError, requests.RequestException) as e:
                logger.warning(f"[Task {tracker.task_id}] search for {keyword!r} failed: {e}")
                found = []
            for video in found:
                if video.bvid not in seen:
                    seen.add(video.bvid)
                    videos.append(video)
            tracker.advance(TaskStage.SEARCHING, TaskConstants.PROGRESS_SEARCH_KEYWORDS + i * span // len(request.keywords),
                            f"Searched {i}/{len(request.keywords)} keywords, {len(videos)} videos")

        return self._filter_videos(videos, request)

    def _filter_videos(self, videos: Sequence[VideoItem], request: TaskRequest) -> List[VideoItem]:
        config = request.config
        kept = list(videos)
        if config.video_date_range_months > 0:
            cutoff = self.clock() - config.video_date_range_months * SECONDS_PER_MONTH
            kept = [v for v in kept if v.pubdate >= cutoff]
        if config.min_video_comments > 0:
            kept = [v for v in kept if v.comment_count >= config.min_video_comments]
        if len(kept) != len(videos):
            logger.info(f"Video filters kept {len(kept)}/{len(videos)} videos")
        return kept

    def _scrape(self, tracker: TaskTracker, client: BilibiliClient, videos: List[VideoItem],
                request: TaskRequest, cancel_event: threading.Event) -> ScrapeResult:
        config = request.config
        quotas = allocate_quotas(videos, config.max_comments, config.min_comments_per_video,
                                 config.max_comments_per_video)
        scraper = CommentScraper(client, max_concurrency=config.max_concurrency,
                                 request_delay=config.request_delay, fetch_replies=config.fetch_replies)
        span = TaskConstants.PROGRESS_ANALYZE_START - TaskConstants.PROGRESS_SCRAPE_START
        result = scraper.scrape(
            videos,
            quotas,
            progress=lambda done, total, msg: tracker.advance(
                TaskStage.SCRAPING, TaskConstants.PROGRESS_SCRAPE_START + done * span // max(total, 1), msg),
            cancel_event=cancel_event,
        )
        if result.cancelled:
            raise TaskCancelledError("scraping cancelled", partial=result)

        if self.raw_store is not None:
            for bvid, comments in result.comments.items():
                self.raw_store.put(tracker.task_id, bvid, comments)
        return result

    def _prepare_inputs(self, result: ScrapeResult, request: TaskRequest) -> List[CommentInput]:
        titles = {v.bvid: v.title for v in result.videos}
        flat: List[RawComment] = []
        for video in result.videos:
            for comment in result.comments.get(video.bvid, []):
                flat.append(comment)
                flat.extend(comment.replies)

        keywords = tuple(request.brands) + tuple(d.name for d in request.dimensions)
        ranked = filter_and_rank(flat, FilterConfig(max_comments=request.config.max_comments, keywords=keywords))
        return [
            CommentInput(
                id=str(c.rpid),
                content=c.message.strip(),
                video_title=titles.get(c.bvid, ""),
                video_bvid=c.bvid,
                like=c.like,
                reply_count=c.reply_count,
                ctime=c.ctime,
            )
            for c in ranked
        ]

    def _discover_brands(self, tracker: TaskTracker, analysis: AnalysisService, results, request: TaskRequest) -> Dict[str, str]:
        models = sorted({
            r.model.strip() for r in results
            if r.ok and is_unknown_brand(r.brand) and is_concrete_model(r.model)
        })
        if not models:
            return {}
        discovered = sorted({r.brand.strip() for r in results if r.ok and not is_unknown_brand(r.brand)})
        try:
            return analysis.identify_brands(models, request.category, request.brands, discovered)
        except TransientRemoteError as e:
            logger.warning(f"[Task {tracker.task_id}] brand identification failed: {e}")
            return {}

    # ---- recovery ----

    def recover(self) -> List[TaskHandle]:
        """Resume tasks left unfinished by a previous process.

        Tasks whose heartbeat is within the timeout are re-run from the start
        with their persisted request; older ones are marked failed.
        """
        now = self.clock()
        handles = []
        for state in self.store.list_unfinished():
            heartbeat = self._heartbeat_of(state, now)
            if heartbeat is None:
                continue

            age = now - heartbeat
            if age > self.heartbeat_timeout:
                logger.warning(f"[Task {state.task_id}] heartbeat is {age / 3600:.1f}h old, marking failed")
                self.store.mark_failed(state.task_id, "Task interrupted: heartbeat expired", now)
                continue

            try:
                request = state.request
            except (ValueError, TypeError) as e:
                self.store.mark_failed(state.task_id, f"Cannot restore task request: {e}", now)
                continue

            logger.info(f"[Task {state.task_id}] recovering from stage {state.stage.value}")
            handles.append(self.submit(request, task_id=state.task_id))
        return handles

    def _heartbeat_of(self, state: TaskState, now: float) -> Optional[float]:
        """A missing (zero) heartbeat is stamped with ``now`` once, so it starts aging.

        Returns None when the task was finished by another writer meanwhile.
        """
        if state.heartbeat:
            return state.heartbeat
        if not self.store.save_if_active(replace(state, heartbeat=now)):
            return None
        return now

    def sweep(self) -> List[str]:
        """Mark running tasks with a stale heartbeat as failed. Returns their ids."""
        now = self.clock()
        stale = []
        for state in self.store.list_unfinished():
            heartbeat = self._heartbeat_of(state, now)
            if heartbeat is None or now - heartbeat <= self.heartbeat_timeout:
                continue
            failed = self.store.mark_failed(state.task_id, "Task timed out: no heartbeat", now)
            if failed is not None and failed.stage == TaskStage.FAILED:
                stale.append(state.task_id)
        if stale:
            logger.warning(f"Marked {len(stale)} stale tasks as failed")
        return stale

    def start_sweeper(self, interval: Optional[float] = None) -> threading.Event:
        """Run ``sweep`` (and raw comment purging) periodically. Set the returned event to stop."""
        interval = interval if interval is not None else settings.sweep_interval_seconds
        stop = threading.Event()

        def loop():
            while not stop.wait(interval):
                try:
                    self.sweep()
                    if self.raw_store is not None:
                        self.raw_store.purge_expired()
                except Exception:
                    logger.exception("Periodic sweep failed")

        threading.Thread(target=loop, name="task-sweeper", daemon=True).start()
        return stop
