"""Disk-backed persistence for task state, reports and raw comments."""

import logging
import os
import time
import uuid
from abc import ABC, abstractmethod
from dataclasses import replace
from typing import Any, Callable, Dict, List, Optional, Sequence

from diskcache import Cache

from ..core.constants import FileConstants
from ..core.models import RawComment, TaskStage, TaskState

logger = logging.getLogger(__name__)

_TASK_PREFIX = "task:"
_REPORT_PREFIX = "report:"


class TaskStore(ABC):
    """Read/write access to persisted task-recovery records."""

    @abstractmethod
    def save(self, state: TaskState) -> None:
        ...

    @abstractmethod
    def get(self, task_id: str) -> Optional[TaskState]:
        ...

    @abstractmethod
    def list_states(self) -> List[TaskState]:
        ...

    @abstractmethod
    def save_if_active(self, state: TaskState) -> bool:
        """Atomically save ``state`` unless the stored copy is already terminal.

        Returns False (and writes nothing) when another writer, such as the
        stale-task sweeper, has already completed or failed the task.
        """

    def list_unfinished(self) -> List[TaskState]:
        return [s for s in self.list_states() if not s.stage.terminal]

    def mark_failed(self, task_id: str, message: str, now: Optional[float] = None) -> Optional[TaskState]:
        state = self.get(task_id)
        if state is None or state.stage.terminal:
            return state
        failed = replace(state, stage=TaskStage.FAILED, message=message,
                         heartbeat=now if now is not None else time.time())
        return failed if self.save_if_active(failed) else self.get(task_id)


class DiskTaskStore(TaskStore):
    """``TaskStore`` kept in a ``diskcache.Cache`` so it survives restarts."""

    def __init__(self, directory: Optional[str] = None, cache: Optional[Cache] = None):
        self.cache = cache or Cache(directory or os.path.join(FileConstants.DATA_DIR, "tasks"))

    def save(self, state: TaskState) -> None:
        self.cache.set(_TASK_PREFIX + state.task_id, state)

    def get(self, task_id: str) -> Optional[TaskState]:
        return self.cache.get(_TASK_PREFIX + task_id)

    def save_if_active(self, state: TaskState) -> bool:
        key = _TASK_PREFIX + state.task_id
        with self.cache.transact():
            current = self.cache.get(key)
            if current is not None and current.stage.terminal:
                return False
            self.cache.set(key, state)
        return True

    def mark_failed(self, task_id: str, message: str, now: Optional[float] = None) -> Optional[TaskState]:
        with self.cache.transact():
            return super().mark_failed(task_id, message, now)

    def list_states(self) -> List[TaskState]:
        states = []
        for key in self.cache.iterkeys():
            if isinstance(key, str) and key.startswith(_TASK_PREFIX):
                state = self.cache.get(key)
                if state is not None:
                    states.append(state)
        return sorted(states, key=lambda s: (s.created_at, s.task_id))

    def close(self):
        self.cache.close()


class ReportStore:
    """Stores finished reports and hands back a reference id."""

    def __init__(self, directory: Optional[str] = None, cache: Optional[Cache] = None):
        self.cache = cache or Cache(directory or os.path.join(FileConstants.DATA_DIR, "reports"))

    def save(self, task_id: str, report: Dict[str, Any]) -> str:
        report_id = uuid.uuid4().hex
        self.cache.set(_REPORT_PREFIX + report_id, {"task_id": task_id, "created_at": time.time(), "report": report})
        return report_id

    def get(self, report_id: str) -> Optional[Dict[str, Any]]:
        record = self.cache.get(_REPORT_PREFIX + report_id)
        return record["report"] if record else None

    def close(self):
        self.cache.close()


class RawCommentStore:
    """Fetched comments kept for a limited retention window."""

    def __init__(
        self,
        directory: Optional[str] = None,
        retention_days: float = FileConstants.RAW_COMMENT_RETENTION_DAYS,
        cache: Optional[Cache] = None,
    ):
        self.cache = cache or Cache(directory or os.path.join(FileConstants.DATA_DIR, "raw_comments"))
        self.retention_seconds = retention_days * 86400

    def put(self, task_id: str, bvid: str, comments: Sequence[RawComment]) -> None:
        self.cache.set(f"{task_id}:{bvid}", list(comments), expire=self.retention_seconds)

    def get(self, task_id: str, bvid: str) -> List[RawComment]:
        return self.cache.get(f"{task_id}:{bvid}", default=[])

    def purge_expired(self) -> int:
        """Drop comments older than the retention window. Returns the count removed."""
        removed = self.cache.expire()
        if removed:
            logger.info(f"Purged {removed} expired raw comment entries")
        return removed

    def close(self):
        self.cache.close()
