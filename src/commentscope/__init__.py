"""CommentScope - LLM-scored brand and model rankings from Bilibili video comments."""

__version__ = "1.0.0"
__author__ = "CommentScope Team"

from .core.models import *
from .core.config import settings
from .services.llm import LLMServiceFactory
from .services.orchestrator import Orchestrator

__all__ = [
    "settings",
    "LLMServiceFactory",
    "Orchestrator",
]
