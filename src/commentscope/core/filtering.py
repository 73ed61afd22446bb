"""Comment quality filter and ranker."""

from typing import List, Sequence, Tuple

from .constants import FilterConstants
from .models import FilterConfig, RawComment


def _meaningful_text(text: str) -> str:
    """Keep letters, digits and whitespace only (drops emoji and symbols)."""
    return "".join(ch for ch in text if ch.isalnum() or ch.isspace()).strip()


def is_quality_comment(text: str, min_length: int = FilterConstants.MIN_LENGTH) -> bool:
    trimmed = (text or "").strip()
    if len(trimmed) < min_length:
        return False
    return len(_meaningful_text(trimmed)) >= min_length


def score_comment(comment: RawComment, keywords: Sequence[str] = ()) -> float:
    """Heuristic usefulness score in [0, 100]."""
    text = comment.message.strip()
    score = (
        min(comment.like / FilterConstants.LIKE_DIVISOR, FilterConstants.LIKE_CAP)
        + min(comment.reply_count / FilterConstants.REPLY_DIVISOR, FilterConstants.REPLY_CAP)
        + min(len(text) / FilterConstants.LENGTH_DIVISOR, FilterConstants.LENGTH_CAP)
    )

    lowered = text.lower()
    distinct = {k.strip().lower() for k in keywords if k and k.strip()}
    hits = sum(1 for k in distinct if k in lowered)
    score += min(hits * FilterConstants.KEYWORD_BONUS, FilterConstants.KEYWORD_BONUS_CAP)

    return max(0.0, min(float(FilterConstants.MAX_SCORE), score))


def filter_and_rank(comments: Sequence[RawComment], config: FilterConfig = FilterConfig()) -> List[RawComment]:
    """Drop low-quality comments and order the rest by usefulness.

    Ties on score are broken by newer first, then more likes, then higher
    comment ID, so the order is reproducible. The result is truncated to
    ``config.max_comments`` when that is positive.
    """
    scored: List[Tuple[float, RawComment]] = []
    for comment in comments:
        if not is_quality_comment(comment.message, config.min_length):
            continue
        scored.append((score_comment(comment, config.keywords), comment))

    scored.sort(key=lambda sc: (-sc[0], -sc[1].ctime, -sc[1].like, -sc[1].rpid))
    ranked = [c for _, c in scored]
    if config.max_comments > 0:
        ranked = ranked[:config.max_comments]
    return ranked
