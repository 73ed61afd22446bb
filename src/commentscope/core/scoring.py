"""Aggregation and ranking of scored comments into a report."""

import logging
import math
import re
from collections import Counter
from dataclasses import replace
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from .brands import BrandNormalizer, clean_model, default_normalizer, extract_model_from_content, format_brand
from .brands import is_concrete_model, is_unknown_brand
from .constants import BrandConstants, ReportConstants
from .models import (
    BrandAnalysis,
    BrandRanking,
    Dimension,
    KeywordItem,
    ModelRanking,
    Report,
    ReportStats,
    ScoredComment,
    SentimentStats,
    TypicalComment,
    VideoItem,
    VideoSource,
)

logger = logging.getLogger(__name__)

_TOKEN = re.compile(r"[^\W_]+")

BrandGroups = Mapping[str, Sequence[ScoredComment]]


def round1(value: float) -> float:
    """Round half away from zero to one decimal (8.25 -> 8.3)."""
    return math.copysign(math.floor(abs(value) * 10 + 0.5) / 10, value)


# ---- brand resolution ----

def resolve_brands(
    results: Sequence[ScoredComment],
    model_to_brand: Mapping[str, str],
    known_brands: Sequence[str] = (),
    normalizer: BrandNormalizer = default_normalizer,
) -> List[ScoredComment]:
    """Fill unknown brands from discovered model->brand pairs and clean names."""
    lookup = {k.strip().lower(): v for k, v in model_to_brand.items()}
    resolved = []
    for r in results:
        if not r.ok:
            resolved.append(r)
            continue
        brand = r.brand.strip()
        if is_unknown_brand(brand) and r.model.strip():
            found = lookup.get(r.model.strip().lower(), "")
            if found and not is_unknown_brand(found):
                brand = found
        brand = normalizer.clean(format_brand(brand), known_brands) if not is_unknown_brand(brand) else brand
        resolved.append(replace(r, brand=brand, model=clean_model(r.model)))
    return resolved


def group_by_brand(
    results: Sequence[ScoredComment],
    declared_brands: Sequence[str] = (),
    normalizer: BrandNormalizer = default_normalizer,
) -> Dict[str, List[ScoredComment]]:
    """Group successful results by brand, keeping brands beyond the declared list.

    Declared brands absorb loosely matching spellings; a comment with no
    brand is attributed to a declared brand its text mentions, otherwise it
    is dropped. Missing models fall back to a regex match on the text.
    """
    groups: Dict[str, List[ScoredComment]] = {}
    for r in results:
        if not r.ok:
            continue
        brand = normalizer.canonical(r.brand)
        if is_unknown_brand(brand):
            brand = normalizer.match_declared(r.content, declared_brands)
        if not brand:
            continue

        for declared in declared_brands:
            if normalizer.same_brand(brand, declared):
                brand = declared
                break

        model = r.model
        if not model or model == BrandConstants.UNKNOWN_BRAND:
            model = extract_model_from_content(r.content)

        groups.setdefault(brand, []).append(replace(r, brand=brand, model=model))

    discovered = sorted(b for b in groups if b not in declared_brands)
    if discovered:
        logger.info(f"Discovered brands beyond the declared list: {discovered}")
    return groups


# ---- brand level ----

def _dimension_means(comments: Iterable[ScoredComment], dimensions: Sequence[Dimension]) -> Dict[str, float]:
    totals: Dict[str, float] = {}
    counts: Dict[str, int] = {}
    for c in comments:
        for dim in dimensions:
            score = c.scores.get(dim.name)
            if score is not None:
                totals[dim.name] = totals.get(dim.name, 0.0) + score
                counts[dim.name] = counts.get(dim.name, 0) + 1
    return {d.name: round1(totals[d.name] / counts[d.name]) for d in dimensions if counts.get(d.name)}


def overall_score(scores: Mapping[str, float]) -> Optional[float]:
    """Mean across the observed dimensions, None when nothing was observed."""
    if not scores:
        return None
    return round1(sum(scores.values()) / len(scores))


def brand_dimension_scores(groups: BrandGroups, dimensions: Sequence[Dimension]) -> Dict[str, Dict[str, float]]:
    return {brand: _dimension_means(groups[brand], dimensions) for brand in sorted(groups)}


def rank_brands(groups: BrandGroups, dimensions: Sequence[Dimension]) -> List[BrandRanking]:
    """Rank brands by overall score, ties broken by brand name."""
    scores = brand_dimension_scores(groups, dimensions)
    rows: List[Tuple[float, str]] = []
    for brand, dim_scores in scores.items():
        overall = overall_score(dim_scores)
        if overall is not None:
            rows.append((overall, brand))
    rows.sort(key=lambda row: (-row[0], row[1]))

    return [
        BrandRanking(brand=brand, overall_score=overall, rank=i, scores=scores[brand],
                     comment_count=len(groups[brand]))
        for i, (overall, brand) in enumerate(rows, 1)
    ]


def analyze_brands(scores: Mapping[str, Mapping[str, float]], dimensions: Sequence[Dimension]) -> Dict[str, BrandAnalysis]:
    analysis = {}
    for brand in sorted(scores):
        dim_scores = scores[brand]
        analysis[brand] = BrandAnalysis(
            strengths=[d.name for d in dimensions
                       if d.name in dim_scores and dim_scores[d.name] >= ReportConstants.STRENGTH_THRESHOLD],
            weaknesses=[d.name for d in dimensions
                        if d.name in dim_scores and dim_scores[d.name] < ReportConstants.WEAKNESS_THRESHOLD],
        )
    return analysis


# ---- model level ----

def normalize_model_key(brand: str, model: str) -> str:
    """``("Dyson", "V 12-Detect")`` -> ``"dyson|v12detect"``"""
    compact = "".join(ch for ch in model.lower() if ch.isalnum())
    return f"{brand.strip().lower()}|{compact}"


def display_model(variants: Sequence[str]) -> str:
    """Prefer a spelling with a space, then one starting upper-case, then the first seen."""
    if not variants:
        return ""
    for v in variants:
        if " " in v:
            return v
    for v in variants:
        if v[:1].isupper():
            return v
    return variants[0]


def rank_models(groups: BrandGroups, dimensions: Sequence[Dimension]) -> List[ModelRanking]:
    """Rank (brand, model) pairs, merging spellings that share a normalized key."""
    merged: Dict[str, Dict] = {}
    for brand in sorted(groups):
        if is_unknown_brand(brand):
            continue
        for c in groups[brand]:
            model = c.model.strip()
            if not is_concrete_model(model):
                continue
            key = normalize_model_key(brand, model)
            entry = merged.setdefault(key, {"brand": brand, "variants": [], "comments": []})
            if model not in entry["variants"]:
                entry["variants"].append(model)
            entry["comments"].append(c)

    rows = []
    for entry in merged.values():
        dim_scores = _dimension_means(entry["comments"], dimensions)
        overall = overall_score(dim_scores)
        if overall is None:
            continue
        rows.append(ModelRanking(
            model=display_model(entry["variants"]),
            brand=entry["brand"],
            overall_score=overall,
            rank=0,
            scores=dim_scores,
            comment_count=len(entry["comments"]),
        ))

    rows.sort(key=lambda m: (-m.overall_score, m.brand, m.model))
    for i, row in enumerate(rows, 1):
        row.rank = i
    return rows


# ---- comment level ----

def select_typical_comments(groups: BrandGroups) -> Tuple[Dict[str, List[TypicalComment]], Dict[str, List[TypicalComment]]]:
    """Pick up to three clearly positive and three clearly negative comments per brand."""
    top: Dict[str, List[TypicalComment]] = {}
    bad: Dict[str, List[TypicalComment]] = {}
    for brand in sorted(groups):
        good_rows, bad_rows = [], []
        for c in groups[brand]:
            avg = c.average_score
            if avg is None:
                continue
            if avg >= ReportConstants.TYPICAL_GOOD_THRESHOLD:
                good_rows.append(TypicalComment(c.content, round1(avg)))
            elif 0 < avg < ReportConstants.TYPICAL_BAD_THRESHOLD:
                bad_rows.append(TypicalComment(c.content, round1(avg)))
        good_rows.sort(key=lambda t: (-t.score, t.content))
        bad_rows.sort(key=lambda t: (t.score, t.content))
        if good_rows:
            top[brand] = good_rows[:ReportConstants.MAX_TYPICAL_COMMENTS]
        if bad_rows:
            bad[brand] = bad_rows[:ReportConstants.MAX_TYPICAL_COMMENTS]
    return top, bad


def sentiment_distribution(comments: Iterable[ScoredComment]) -> SentimentStats:
    """Threshold the per-comment average score; unscored comments are ignored."""
    stats = SentimentStats()
    for c in comments:
        avg = c.average_score
        if avg is None or avg <= 0:
            continue
        if avg >= ReportConstants.POSITIVE_THRESHOLD:
            stats.positive_count += 1
        elif avg >= ReportConstants.NEUTRAL_THRESHOLD:
            stats.neutral_count += 1
        else:
            stats.negative_count += 1

    total = stats.positive_count + stats.neutral_count + stats.negative_count
    if total:
        stats.positive_pct = round1(stats.positive_count * 100 / total)
        stats.neutral_pct = round1(stats.neutral_count * 100 / total)
        stats.negative_pct = round1(stats.negative_count * 100 / total)
    return stats


def keyword_frequency(texts: Iterable[str], limit: int = ReportConstants.MAX_KEYWORDS) -> List[KeywordItem]:
    counter: Counter = Counter()
    for text in texts:
        for token in _TOKEN.findall(text or ""):
            token = token.lower()
            if len(token) <= 1 or token in ReportConstants.STOP_WORDS:
                continue
            counter[token] += 1
    ranked = sorted(counter.items(), key=lambda kv: (-kv[1], kv[0]))
    return [KeywordItem(word, count) for word, count in ranked[:limit]]


def template_recommendation(rankings: Sequence[BrandRanking], dimensions: Sequence[Dimension]) -> str:
    if not rankings:
        return ReportConstants.NO_DATA_RECOMMENDATION

    top = rankings[0]
    strengths = [d.name for d in dimensions
                 if top.scores.get(d.name, 0) >= ReportConstants.STRENGTH_THRESHOLD]
    text = f"综合评价最高的是 {top.brand}（综合得分：{top.overall_score:.1f}分）"
    if strengths:
        text += f"，在 {'、'.join(strengths)} 方面表现突出"
    if len(rankings) > 1:
        second = rankings[1]
        text += f"。{second.brand}（{second.overall_score:.1f}分）紧随其后"
    return text + "。建议根据个人需求和预算选择合适的产品。"


# ---- report ----

def build_report(
    category: str,
    dimensions: Sequence[Dimension],
    groups: BrandGroups,
    videos: Sequence[VideoItem] = (),
    total_comments: int = 0,
) -> Report:
    """Recompute every derived figure from the grouped comments."""
    scores = brand_dimension_scores(groups, dimensions)
    rankings = rank_brands(groups, dimensions)
    top_comments, bad_comments = select_typical_comments(groups)
    all_comments = [c for brand in sorted(groups) for c in groups[brand]]

    report = Report(
        category=category,
        brands=[r.brand for r in rankings],
        dimensions=list(dimensions),
        scores=scores,
        rankings=rankings,
        recommendation=template_recommendation(rankings, dimensions),
        stats=ReportStats(
            total_videos=len(videos),
            total_comments=total_comments,
            comments_by_brand={brand: len(groups[brand]) for brand in sorted(groups)},
        ),
        sentiment_distribution=sentiment_distribution(all_comments),
        top_comments=top_comments,
        bad_comments=bad_comments,
        brand_analysis=analyze_brands(scores, dimensions),
        model_rankings=rank_models(groups, dimensions),
        video_sources=[VideoSource(v.bvid, v.title, v.author, v.play, v.comment_count) for v in videos],
        keyword_frequency=keyword_frequency(c.content for c in all_comments),
    )
    logger.info(f"Report built: {len(rankings)} brands, {len(report.model_rankings)} models")
    return report
