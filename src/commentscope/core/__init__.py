"""Core modules for CommentScope."""

from .config import settings
from .models import *

__all__ = [
    "settings",
    "Dimension",
    "VideoItem",
    "RawComment",
    "CommentInput",
    "ScoredComment",
    "BatchConfig",
    "FilterConfig",
    "ScrapeResult",
    "BrandRanking",
    "ModelRanking",
    "Report",
    "TaskConfig",
    "TaskRequest",
    "TaskStage",
    "TaskState",
    "ProgressEvent",
]
