"""Dynamic batching of comments for merged model requests."""

from typing import List, Optional, Sequence

from .models import BatchConfig, CommentInput


def item_length(item: CommentInput) -> int:
    return len(item.content) + len(item.video_title)


def calculate_batches(items: Sequence[CommentInput], config: Optional[BatchConfig] = None) -> List[List[CommentInput]]:
    """Group comments so each batch stays under the character and item limits.

    A batch below ``min_items`` is kept open even if that breaks the limits;
    only the final batch may end up smaller than ``min_items``.
    """
    config = config or BatchConfig()
    batches: List[List[CommentInput]] = []
    current: List[CommentInput] = []
    current_chars = 0

    for item in items:
        length = item_length(item)
        over_limit = current_chars + length > config.max_chars or len(current) >= config.max_items
        if current and over_limit and len(current) >= config.min_items:
            batches.append(current)
            current = []
            current_chars = 0
        current.append(item)
        current_chars += length

    if current:
        batches.append(current)
    return batches
