"""LLM service for OpenAI-compatible chat completion endpoints."""

import hashlib
import json
import logging
import re
import threading
from typing import Any, Dict, List, Optional

import openai
from diskcache import Cache
from tenacity import Retrying, retry_if_exception_type, stop_after_attempt, wait_fixed

from ..core.config import settings
from ..core.constants import LLMConstants
from ..core.exceptions import ConfigurationError, LLMResponseError

logger = logging.getLogger(__name__)


def _strip_code_fences(s: str) -> str:
    s = s.strip()
    return re.sub(r"^```(?:json)?|```$", "", s, flags=re.IGNORECASE | re.MULTILINE).strip()


def extract_json_object(text: str, required_key: Optional[str] = None) -> Dict[str, Any]:
    """Parse a JSON object out of a model reply.

    Tries the reply with code fences removed first, then the outermost
    ``{...}`` block (the one containing ``required_key`` when given). Raises
    ``LLMResponseError`` when no object (or no object with the key) is found.
    """
    preview = text[:LLMConstants.ERROR_PREVIEW_LENGTH]
    candidates = [_strip_code_fences(text)]
    if required_key:
        match = re.search(r'\{[\s\S]*"' + re.escape(required_key) + r'"[\s\S]*\}', text)
    else:
        match = re.search(r"\{[\s\S]*\}", text)
    if match:
        candidates.append(match.group(0))

    for candidate in candidates:
        try:
            data = json.loads(candidate)
        except ValueError:
            continue
        if not isinstance(data, dict):
            continue
        if required_key and required_key not in data:
            continue
        return data

    if required_key:
        raise LLMResponseError(f'no JSON object with "{required_key}" in response: {preview}')
    raise LLMResponseError(f"could not parse JSON from response: {preview}")


class LLMServiceFactory:
    """Factory for creating LLM services."""

    @staticmethod
    def create() -> "LLMClient":
        """Create the client from settings; a missing key is a configuration error."""
        if not settings.effective_ai_key:
            raise ConfigurationError("AI API key is not configured (set AI_API_KEY or OPENAI_API_KEY)")
        return LLMClient(cache_dir=settings.llm_cache_dir or None)


class LLMClient:
    """Chat completion client with a client-wide concurrency cap.

    Each call is tried twice with a fixed wait in between and a 60 s timeout.
    Successful responses may be cached on disk so that re-running a task
    replays the same model answers.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        api_base: Optional[str] = None,
        model: Optional[str] = None,
        max_concurrent: Optional[int] = None,
        timeout: Optional[float] = None,
        retry_wait: Optional[float] = None,
        cache_dir: Optional[str] = None,
        client: Optional[Any] = None,
    ):
        self.model = model or settings.ai_model
        self.timeout = timeout if timeout is not None else settings.ai_timeout
        self.retry_wait = retry_wait if retry_wait is not None else settings.ai_retry_wait
        self.max_concurrent = max(1, max_concurrent or settings.ai_max_concurrent)
        self._gate = threading.BoundedSemaphore(self.max_concurrent)
        self.client = client or openai.OpenAI(
            api_key=api_key or settings.effective_ai_key,
            base_url=(api_base or settings.ai_api_base).rstrip("/"),
            timeout=self.timeout,
            max_retries=0,
        )
        self.cache = Cache(cache_dir) if cache_dir else None
        logger.info(f"LLM client initialized (model={self.model}, max_concurrent={self.max_concurrent})")

    def _cache_key(self, messages: List[Dict[str, str]], temperature: float) -> str:
        raw = json.dumps([self.model, temperature, messages], ensure_ascii=False, sort_keys=True)
        return hashlib.md5(raw.encode("utf-8")).hexdigest()

    def _complete(self, messages: List[Dict[str, str]], temperature: float) -> str:
        with self._gate:
            response = self.client.chat.completions.create(
                model=self.model,
                messages=messages,
                temperature=temperature,
                timeout=self.timeout,
            )
        if not response.choices:
            raise LLMResponseError("model returned no choices")
        content = response.choices[0].message.content or ""
        return content.strip()

    def chat_completion(self, messages: List[Dict[str, str]], temperature: float = LLMConstants.TEMPERATURE) -> str:
        """Send messages and return the first choice's content."""
        cache_key = self._cache_key(messages, temperature)
        if self.cache is not None:
            cached = self.cache.get(cache_key)
            if cached:
                logger.debug(f"Cache hit for LLM request: {cache_key[:LLMConstants.CACHE_KEY_LENGTH]}...")
                return cached

        retrying = Retrying(
            stop=stop_after_attempt(LLMConstants.MAX_ATTEMPTS),
            wait=wait_fixed(self.retry_wait),
            retry=retry_if_exception_type((openai.APIError, LLMResponseError)),
            reraise=True,
        )
        try:
            for attempt in retrying:
                with attempt:
                    if attempt.retry_state.attempt_number > 1:
                        logger.warning(f"Retrying model call in {self.retry_wait}s after failure")
                    result = self._complete(messages, temperature)
        except openai.APIError as e:
            logger.error(f"Chat failed after {LLMConstants.MAX_ATTEMPTS} attempts: {e}")
            raise LLMResponseError(f"AI request failed: {e}") from e

        if self.cache is not None and result:
            self.cache.set(cache_key, result, expire=3600 * LLMConstants.CACHE_TTL_HOURS)
        return result

    def chat(self, system: str, user: str, temperature: float = LLMConstants.TEMPERATURE) -> str:
        """System + user prompt convenience wrapper."""
        return self.chat_completion(
            [{"role": "system", "content": system}, {"role": "user", "content": user}],
            temperature=temperature,
        )
