"""Data models for CommentScope."""

import json
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from .constants import BatchConstants, FilterConstants, ScrapeConstants, TaskConstants


@dataclass(frozen=True)
class Dimension:
    """A named evaluation axis scored 1-10 per comment."""
    name: str
    description: str = ""


@dataclass(frozen=True)
class VideoItem:
    """A video returned by platform search."""
    bvid: str
    aid: int
    title: str
    author: str
    play: int = 0
    comment_count: int = 0
    pubdate: int = 0
    duration: str = ""
    mid: int = 0
    favorites: int = 0
    description: str = ""
    pic: str = ""

    @property
    def duration_seconds(self) -> int:
        """Parse the platform's "mm:ss" (or "hh:mm:ss") duration."""
        total = 0
        for part in self.duration.split(":"):
            if not part.strip().isdigit():
                return 0
            total = total * 60 + int(part)
        return total


@dataclass(frozen=True)
class RawComment:
    """A comment as fetched from the platform."""
    rpid: int
    oid: int
    message: str
    like: int = 0
    reply_count: int = 0
    ctime: int = 0
    mid: int = 0
    uname: str = ""
    root: int = 0
    parent: int = 0
    bvid: str = ""
    replies: Tuple["RawComment", ...] = ()


@dataclass(frozen=True)
class CommentInput:
    """One comment prepared for model analysis."""
    id: str
    content: str
    video_title: str = ""
    video_bvid: str = ""
    like: int = 0
    reply_count: int = 0
    ctime: int = 0


@dataclass(frozen=True)
class ScoredComment:
    """Model verdict for a single comment."""
    comment_id: str
    content: str
    scores: Dict[str, Optional[float]] = field(default_factory=dict)
    brand: str = ""
    model: str = ""
    video_bvid: str = ""
    video_title: str = ""
    error: str = ""

    @property
    def ok(self) -> bool:
        return not self.error

    @property
    def average_score(self) -> Optional[float]:
        """Mean of the mentioned dimensions, None when nothing was scored."""
        values = [v for v in self.scores.values() if v is not None]
        if not values:
            return None
        return sum(values) / len(values)


@dataclass(frozen=True)
class BatchConfig:
    """Limits for merging comments into one model request."""
    max_chars: int = BatchConstants.MAX_CHARS
    max_items: int = BatchConstants.MAX_ITEMS
    min_items: int = BatchConstants.MIN_ITEMS


@dataclass(frozen=True)
class FilterConfig:
    """Options for the comment quality filter."""
    max_comments: int = 0  # 0 keeps every surviving comment
    min_length: int = FilterConstants.MIN_LENGTH
    keywords: Tuple[str, ...] = ()


@dataclass
class ScrapeResult:
    """Comments collected for a set of videos."""
    videos: List[VideoItem] = field(default_factory=list)
    comments: Dict[str, List[RawComment]] = field(default_factory=dict)
    total_videos: int = 0
    total_comments: int = 0
    total_replies: int = 0
    errors: List[str] = field(default_factory=list)
    duration: float = 0.0
    cancelled: bool = False


@dataclass
class RequirementPlan:
    """Structured reading of a free-text buying requirement."""
    understanding: str
    product_type: str
    brands: List[str]
    dimensions: List[Dimension]
    keywords: List[str]
    budget: str = ""
    scenario: str = ""
    special_needs: List[str] = field(default_factory=list)


@dataclass
class BrandRanking:
    brand: str
    overall_score: float
    rank: int
    scores: Dict[str, float]
    comment_count: int = 0


@dataclass
class ModelRanking:
    model: str
    brand: str
    overall_score: float
    rank: int
    scores: Dict[str, float]
    comment_count: int = 0


@dataclass
class BrandAnalysis:
    strengths: List[str] = field(default_factory=list)
    weaknesses: List[str] = field(default_factory=list)


@dataclass
class SentimentStats:
    """Threshold-based split of comment averages."""
    positive_count: int = 0
    neutral_count: int = 0
    negative_count: int = 0
    positive_pct: float = 0.0
    neutral_pct: float = 0.0
    negative_pct: float = 0.0


@dataclass
class KeywordItem:
    word: str
    count: int


@dataclass
class TypicalComment:
    content: str
    score: float


@dataclass
class VideoSource:
    bvid: str
    title: str
    author: str
    play: int
    comment_count: int


@dataclass
class ReportStats:
    total_videos: int = 0
    total_comments: int = 0
    comments_by_brand: Dict[str, int] = field(default_factory=dict)


@dataclass
class Report:
    """Final analysis report for one task."""
    category: str
    brands: List[str]
    dimensions: List[Dimension]
    scores: Dict[str, Dict[str, float]]
    rankings: List[BrandRanking]
    recommendation: str
    stats: ReportStats
    sentiment_distribution: SentimentStats
    top_comments: Dict[str, List[TypicalComment]]
    bad_comments: Dict[str, List[TypicalComment]]
    brand_analysis: Dict[str, BrandAnalysis]
    model_rankings: List[ModelRanking]
    video_sources: List[VideoSource]
    keyword_frequency: List[KeywordItem]

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class TaskConfig:
    """Tunable limits for one analysis task."""
    max_comments: int = TaskConstants.MAX_COMMENTS
    min_comments_per_video: int = TaskConstants.MIN_COMMENTS_PER_VIDEO
    max_comments_per_video: int = TaskConstants.MAX_COMMENTS_PER_VIDEO
    max_videos_per_keyword: int = TaskConstants.MAX_VIDEOS_PER_KEYWORD
    max_concurrency: int = ScrapeConstants.MAX_CONCURRENCY
    request_delay: float = ScrapeConstants.REQUEST_DELAY
    fetch_replies: bool = ScrapeConstants.FETCH_REPLIES
    ai_batch_concurrency: int = BatchConstants.CONCURRENCY
    min_video_duration: int = TaskConstants.MIN_VIDEO_DURATION
    video_date_range_months: int = TaskConstants.VIDEO_DATE_RANGE_MONTHS
    min_video_comments: int = TaskConstants.MIN_VIDEO_COMMENTS


@dataclass
class TaskRequest:
    """Everything needed to (re-)run an analysis task."""
    category: str
    keywords: List[str]
    brands: List[str]
    dimensions: List[Dimension]
    config: TaskConfig = field(default_factory=TaskConfig)

    def to_json(self) -> str:
        return json.dumps(asdict(self), ensure_ascii=False, sort_keys=True)

    @classmethod
    def from_json(cls, raw: str) -> "TaskRequest":
        data = json.loads(raw)
        known = TaskConfig.__dataclass_fields__
        config = {k: v for k, v in (data.get("config") or {}).items() if k in known}
        return cls(
            category=data.get("category", ""),
            keywords=list(data.get("keywords") or []),
            brands=list(data.get("brands") or []),
            dimensions=[
                Dimension(d.get("name", ""), d.get("description", ""))
                for d in data.get("dimensions") or []
            ],
            config=TaskConfig(**config),
        )


class TaskStage(str, Enum):
    """Lifecycle stages of an analysis task, in execution order."""
    SEARCHING = "searching"
    SCRAPING = "scraping"
    ANALYZING = "analyzing"
    GENERATING = "generating"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in (TaskStage.COMPLETED, TaskStage.FAILED)

    @property
    def order(self) -> int:
        return _STAGE_ORDER[self]


_STAGE_ORDER = {
    TaskStage.SEARCHING: 0,
    TaskStage.SCRAPING: 1,
    TaskStage.ANALYZING: 2,
    TaskStage.GENERATING: 3,
    TaskStage.COMPLETED: 4,
    TaskStage.FAILED: 5,
}


@dataclass
class TaskState:
    """Persisted task-recovery record."""
    task_id: str
    stage: TaskStage
    progress: int
    message: str
    heartbeat: float
    request_json: str
    report_id: Optional[str] = None
    created_at: float = 0.0

    @property
    def request(self) -> TaskRequest:
        return TaskRequest.from_json(self.request_json)


@dataclass(frozen=True)
class ProgressEvent:
    """Progress update pushed to subscribers."""
    task_id: str
    stage: str
    current: int
    total: int
    message: str
