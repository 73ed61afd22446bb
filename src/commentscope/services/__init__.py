"""Services for CommentScope."""

from .analysis import AnalysisService
from .bilibili_client import BilibiliClient
from .llm import LLMClient, LLMServiceFactory
from .orchestrator import Orchestrator, TaskHandle
from .scraper import CommentScraper, allocate_quotas

__all__ = [
    "AnalysisService",
    "BilibiliClient",
    "CommentScraper",
    "LLMClient",
    "LLMServiceFactory",
    "Orchestrator",
    "TaskHandle",
    "allocate_quotas",
]
