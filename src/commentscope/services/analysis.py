"""LLM batch analysis: merged scoring, degrade path and brand discovery."""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from string import Template
from textwrap import dedent
from typing import Any, Callable, Dict, List, Optional, Sequence

from ..core.batching import calculate_batches
from ..core.constants import BatchConstants, BrandConstants, ReportConstants
from ..core.exceptions import InputError, LLMResponseError, TaskCancelledError
from ..core.models import (
    BatchConfig,
    CommentInput,
    Dimension,
    ModelRanking,
    Report,
    RequirementPlan,
    ScoredComment,
)
from .llm import LLMClient, extract_json_object

logger = logging.getLogger(__name__)

NOT_FOUND_ERROR = "not found in batch response"

# (completed_batches, total_batches, message)
AnalysisProgress = Callable[[int, int, str], None]

REQUIREMENT_PROMPT = dedent("""
你是一个商品分析助手。用户会用自然语言描述他们的购买需求，你需要：

1. 理解用户的真实意图，提取商品类型（必须）、预算范围、使用场景、特殊需求（如果提到）
2. 用通俗易懂的语言描述你的理解（用"我理解您..."开头）
3. 推荐5个左右的主流品牌（按市场份额和需求匹配度排序），使用官方中文名
4. 提出6个针对性的评价维度（根据商品特点和用户特殊需求调整）
5. 生成B站搜索关键词：
   a) 品牌特定关键词（3-5个）："品牌名+商品类型"
   b) 通用发现关键词（4个）："商品类型+评测"、"商品类型+推荐"、"商品类型+横评"、"商品类型+对比"

直接返回JSON，不要使用Markdown代码块：
{
  "understanding": "我理解您想购买...",
  "product_type": "商品类型",
  "budget": "",
  "scenario": "",
  "special_needs": [],
  "brands": ["品牌1", "品牌2"],
  "dimensions": [{"name": "维度名", "description": "维度说明"}],
  "keywords": ["品牌1商品类型", "商品类型评测"]
}
""").strip()

SINGLE_ANALYSIS_PROMPT = Template(dedent("""
你是一个专业的商品评论分析助手。你的任务是：

1. 从视频标题和评论内容中识别品牌名称和具体型号（优先以评论内容为准）
2. 对以下维度进行打分（1-10分）：
$dimensions

评分标准：1-3差评，4-5一般，6-7较好，8-10优秀

规则：
- 品牌必须是单一品牌名称，不能包含"/"或其他分隔符
- 评论对比多个品牌时，只提取主要评价的那个品牌；无法确定主要品牌时填"未知"
- 型号必须是具体型号名（如"V12"、"Pro"），不能是描述性文字（如"新款"、"基础款"）
- 无法确定品牌填"未知"，无法确定型号填"通用"
- 只根据评论中明确提及的内容打分，未提及的维度返回null
- 必须严格返回JSON格式，不要添加任何其他文字

返回JSON格式：
{"brand":"品牌名","model":"型号名","scores":{"维度1":8.5,"维度2":null}}
""").strip())

BATCH_ANALYSIS_PROMPT = Template(dedent("""
你是商品评论分析助手。分析以下多条评论，为每条评论：
1. 提取品牌名称和具体型号
2. 对以下维度打分（1-10分，未提及则为null）：
$dimensions

评分标准：1-3差评，4-5一般，6-7较好，8-10优秀

规则：
- 每条评论独立分析，用评论编号[1][2]等标识，id字段填写编号
- 品牌必须是单一品牌名称，不能包含"/"或其他分隔符
- 评论对比多个品牌时，只提取主要评价的那个品牌；无法确定主要品牌时填"未知"
- 型号必须是具体型号名，不能是描述性文字（如"新款"、"基础款"）
- 无法确定品牌填"未知"，无法确定型号填"通用"
- results数组的顺序必须与输入评论顺序一致
- 必须返回JSON格式，不要添加任何其他文字

返回格式：
{"results":[{"id":"1","brand":"品牌","model":"型号","scores":{"维度1":8.5,"维度2":null}},{"id":"2",...}]}
""").strip())

BRAND_IDENTIFY_PROMPT = Template(dedent("""
你是一个专业的【$category】产品型号识别专家。

## 任务背景
- 商品类别：$category
- 用户关注的品牌：$known
- 已识别到的同类品牌：$discovered

## 识别规则
1. 如果型号明显属于已知品牌或已识别品牌，直接返回该品牌
2. 根据商品类别和已知品牌，推断该行业的其他常见品牌
3. 分析型号的命名规律（前缀、系列名）来判断品牌
4. 纯字母品牌用全大写（如 OPPO、CATLINK），中文品牌保持原样
5. 确实无法判断时返回"未知"

必须严格返回JSON格式。
""").strip())

RECOMMENDATION_PROMPT = dedent("""
你是一位专业的商品评测专家。请根据以下品牌评分和优劣势分析，生成一段200-300字的专业购买建议。
要求：
1. 客观分析各品牌的优缺点
2. 针对不同用户需求给出具体建议
3. 语言专业但易懂
4. 使用Markdown格式输出（## 小标题、**加粗**、- 列表、> 引用块）
""").strip()


def _dimension_lines(dimensions: Sequence[Dimension]) -> str:
    return "\n".join(f"- {d.name}：{d.description}" for d in dimensions)


def _coerce_score(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        score = float(value)
    except (TypeError, ValueError):
        return None
    if score != score:  # NaN
        return None
    return max(1.0, min(10.0, score))


def _build_scores(raw: Any, dimensions: Sequence[Dimension]) -> Dict[str, Optional[float]]:
    raw = raw if isinstance(raw, dict) else {}
    return {d.name: _coerce_score(raw.get(d.name)) for d in dimensions}


def _scored(item: CommentInput, entry: Dict[str, Any], dimensions: Sequence[Dimension]) -> ScoredComment:
    return ScoredComment(
        comment_id=item.id,
        content=item.content,
        scores=_build_scores(entry.get("scores"), dimensions),
        brand=str(entry.get("brand") or "").strip(),
        model=str(entry.get("model") or "").strip(),
        video_bvid=item.video_bvid,
        video_title=item.video_title,
    )


def _failed(item: CommentInput, error: str) -> ScoredComment:
    return ScoredComment(
        comment_id=item.id,
        content=item.content,
        video_bvid=item.video_bvid,
        video_title=item.video_title,
        error=error or "analysis failed",
    )


def _validate(comments: Sequence[CommentInput], dimensions: Sequence[Dimension]):
    if not comments:
        raise InputError("comment list must not be empty")
    if not dimensions:
        raise InputError("dimension list must not be empty")


class AnalysisService:
    """Scores comments with the model and resolves brands/models."""

    def __init__(
        self,
        llm: LLMClient,
        batch_config: Optional[BatchConfig] = None,
        concurrency: int = BatchConstants.CONCURRENCY,
    ):
        self.llm = llm
        self.batch_config = batch_config or BatchConfig()
        self.concurrency = max(1, concurrency)

    # ---- requirement planning ----

    def parse_requirement(self, requirement: str) -> RequirementPlan:
        """Turn a free-text buying need into brands, dimensions and search keywords."""
        if not requirement or not requirement.strip():
            raise InputError("requirement must not be empty")

        response = self.llm.chat(REQUIREMENT_PROMPT, f"用户需求：{requirement.strip()}")
        data = extract_json_object(response)

        dimensions = [
            Dimension(str(d.get("name", "")).strip(), str(d.get("description", "")).strip())
            for d in data.get("dimensions") or [] if isinstance(d, dict) and d.get("name")
        ]
        plan = RequirementPlan(
            understanding=str(data.get("understanding") or "").strip(),
            product_type=str(data.get("product_type") or "").strip(),
            brands=[str(b).strip() for b in data.get("brands") or [] if str(b).strip()],
            dimensions=dimensions,
            keywords=[str(k).strip() for k in data.get("keywords") or [] if str(k).strip()],
            budget=str(data.get("budget") or ""),
            scenario=str(data.get("scenario") or ""),
            special_needs=[str(s) for s in data.get("special_needs") or []],
        )

        for field_name in ("understanding", "product_type", "brands", "dimensions", "keywords"):
            if not getattr(plan, field_name):
                raise LLMResponseError(f"model response is missing {field_name}")
        return plan

    # ---- scoring ----

    def analyze_comment(self, item: CommentInput, dimensions: Sequence[Dimension]) -> ScoredComment:
        """Score one comment with its own request."""
        if not item.content.strip():
            raise InputError("comment content must not be empty")
        if not dimensions:
            raise InputError("dimension list must not be empty")

        system = SINGLE_ANALYSIS_PROMPT.substitute(dimensions=_dimension_lines(dimensions))
        if item.video_title:
            user = f"视频标题：{item.video_title}\n\n评论内容：{item.content}"
        else:
            user = f"评论内容：{item.content}"

        data = extract_json_object(self.llm.chat(system, user), required_key="scores")
        return _scored(item, data, dimensions)

    def analyze_individually(self, items: Sequence[CommentInput], dimensions: Sequence[Dimension]) -> List[ScoredComment]:
        """One request per comment; failures become error entries, never exceptions."""
        def run(item: CommentInput) -> ScoredComment:
            try:
                return self.analyze_comment(item, dimensions)
            except (LLMResponseError, InputError) as e:
                return _failed(item, f"analysis failed: {e}")

        if not items:
            return []
        with ThreadPoolExecutor(max_workers=len(items)) as pool:
            return list(pool.map(run, items))

    def analyze_batch_merged(self, items: Sequence[CommentInput], dimensions: Sequence[Dimension]) -> List[ScoredComment]:
        """Score a whole batch in one request.

        Raises ``LLMResponseError`` if the reply has no usable ``results``
        list. Items the reply does not cover are returned with an error.
        """
        _validate(items, dimensions)

        lines = []
        for i, item in enumerate(items, 1):
            if item.video_title:
                lines.append(f"[{i}] 视频：{item.video_title} | 内容：{item.content}")
            else:
                lines.append(f"[{i}] 内容：{item.content}")

        system = BATCH_ANALYSIS_PROMPT.substitute(dimensions=_dimension_lines(dimensions))
        user = f"评论列表（共{len(items)}条）：\n" + "\n".join(lines)

        data = extract_json_object(self.llm.chat(system, user), required_key="results")
        entries = data.get("results")
        if not isinstance(entries, list):
            raise LLMResponseError('"results" is not a list')

        by_id: Dict[str, Dict[str, Any]] = {}
        for entry in entries:
            if isinstance(entry, dict) and isinstance(entry.get("scores"), dict):
                by_id.setdefault(str(entry.get("id", "")).strip(), entry)

        results = []
        for i, item in enumerate(items, 1):
            entry = by_id.get(str(i)) or by_id.get(item.id)
            results.append(_scored(item, entry, dimensions) if entry else _failed(item, NOT_FOUND_ERROR))
        return results

    def _process_batch(self, index: int, total: int, batch: List[CommentInput],
                       dimensions: Sequence[Dimension]) -> List[ScoredComment]:
        logger.info(f"Analyzing batch {index + 1}/{total} ({len(batch)} comments)")
        try:
            results = self.analyze_batch_merged(batch, dimensions)
        except LLMResponseError as e:
            logger.warning(f"Merged analysis of batch {index + 1} failed, falling back to single comments: {e}")
            return self.analyze_individually(batch, dimensions)

        missing = [i for i, r in enumerate(results) if not r.ok]
        if missing:
            logger.info(f"Batch {index + 1}: re-analyzing {len(missing)} comments missing from the response")
            retried = self.analyze_individually([batch[i] for i in missing], dimensions)
            for i, r in zip(missing, retried):
                results[i] = r
        return results

    def analyze_comments(
        self,
        comments: Sequence[CommentInput],
        dimensions: Sequence[Dimension],
        progress: Optional[AnalysisProgress] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> List[ScoredComment]:
        """Score every comment, returning exactly one result per input in input order."""
        _validate(comments, dimensions)
        cancel_event = cancel_event or threading.Event()
        batches = calculate_batches(comments, self.batch_config)
        logger.info(f"Analyzing {len(comments)} comments in {len(batches)} batches (concurrency {self.concurrency})")

        batch_results: List[Optional[List[ScoredComment]]] = [None] * len(batches)
        lock = threading.Lock()
        completed = 0

        def run(index: int, batch: List[CommentInput]):
            nonlocal completed
            if cancel_event.is_set():
                return
            results = self._process_batch(index, len(batches), batch, dimensions)
            with lock:
                batch_results[index] = results
                completed += 1
                if progress:
                    progress(completed, len(batches), f"Analyzed batch {completed}/{len(batches)} ({len(batch)} comments)")

        with ThreadPoolExecutor(max_workers=self.concurrency) as pool:
            futures = [pool.submit(run, i, b) for i, b in enumerate(batches)]
            for future in futures:
                future.result()

        if any(r is None for r in batch_results):
            partial = [s for r in batch_results if r is not None for s in r]
            raise TaskCancelledError("analysis cancelled", partial=partial)

        results = [s for r in batch_results for s in r]
        failed = sum(1 for r in results if not r.ok)
        logger.info(f"Analysis finished: {len(results) - failed} scored, {failed} failed")
        return results

    # ---- brand discovery ----

    def identify_brands(
        self,
        models: Sequence[str],
        category: str,
        known_brands: Sequence[str] = (),
        discovered_brands: Sequence[str] = (),
    ) -> Dict[str, str]:
        """Ask the model which brand each model name belongs to.

        An unparseable reply yields an empty mapping; a failed call raises.
        """
        unique: List[str] = []
        seen = set()
        for m in models:
            m = (m or "").strip()
            if m and m.lower() not in seen:
                seen.add(m.lower())
                unique.append(m)
        if not unique:
            return {}

        logger.info(f"Identifying brands for {len(unique)} models (category: {category})")
        system = BRAND_IDENTIFY_PROMPT.substitute(
            category=category or "商品",
            known="、".join(known_brands) or "无",
            discovered="、".join(discovered_brands) or "无",
        )
        user = (
            "请识别以下型号对应的品牌，返回JSON格式：\n\n型号列表：\n"
            + "\n".join(unique)
            + '\n\n返回格式示例：\n{"results": {"TWS5": "OPPO", "Air 2": "小米", "V12": "戴森"}}'
        )
        response = self.llm.chat(system, user)

        try:
            data = extract_json_object(response, required_key="results")
        except LLMResponseError as e:
            logger.warning(f"Brand identification reply was not usable: {e}")
            return {}

        results = data.get("results")
        if not isinstance(results, dict):
            return {}
        return {
            str(model).strip(): str(brand).strip()
            for model, brand in results.items()
            if str(brand).strip() and str(brand).strip() != BrandConstants.UNKNOWN_BRAND
        }

    # ---- recommendation ----

    def generate_recommendation(self, report: Report, model_limit: int = 10) -> str:
        """Write a buying recommendation from the finished rankings."""
        if not report.rankings:
            return ReportConstants.NO_DATA_RECOMMENDATION

        lines = []
        for r in report.rankings:
            line = f"第{r.rank}名：{r.brand}（{r.overall_score:.1f}分）"
            analysis = report.brand_analysis.get(r.brand)
            if analysis and analysis.strengths:
                line += f"，优势：{'、'.join(analysis.strengths)}"
            if analysis and analysis.weaknesses:
                line += f"，劣势：{'、'.join(analysis.weaknesses)}"
            lines.append(line)

        model_text = ""
        models: List[ModelRanking] = report.model_rankings[:model_limit]
        if models:
            model_text = "\n\n型号排名：\n" + "\n".join(
                f"第{m.rank}名：{m.brand} {m.model}（{m.overall_score:.1f}分，{m.comment_count}条评论）"
                for m in models
            )

        user = f"商品类别：{report.category}\n\n品牌排名及分析：\n" + "\n".join(lines) + model_text + "\n请生成购买建议："
        return self.llm.chat(RECOMMENDATION_PROMPT, user, temperature=0.5).strip()
