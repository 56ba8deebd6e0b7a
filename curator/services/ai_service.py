import os
import time
import random
import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional
from google import genai
from google.genai import errors, types

from curator.utils.error_monitoring import is_rate_limit_message
from curator.utils.logging_config import log_generation


DEFAULT_MODEL = "gemini-2.5-flash"


@dataclass
class GenerationResult:
    success: bool
    content: Optional[str] = None
    error: Optional[str] = None
    model: str = ""
    response_time_ms: float = 0.0
    tokens_used: int = 0


class AIServiceError(Exception):
    pass


Backend = Callable[[str, Dict[str, Any]], Awaitable[GenerationResult]]


class GeminiBackend:
    """
    Text-in/text-out adapter over the Google GenAI SDK.
    Failures come back as an unsuccessful GenerationResult rather than raising.
    """

    # Options forwarded to GenerateContentConfig
    CONFIG_OPTIONS = ("temperature", "max_output_tokens", "system_instruction", "response_mime_type", "top_p")

    def __init__(self,
                 api_key: Optional[str] = None,
                 model: Optional[str] = None,
                 temperature: float = 0.4,
                 max_output_tokens: int = 8192,
                 timeout: float = 180.0):
        self.api_key = api_key or os.getenv("GEMINI_API_KEY")
        if not self.api_key:
            raise ValueError("Gemini API key required. Set GEMINI_API_KEY or pass api_key parameter.")

        self.client = genai.Client(api_key=self.api_key)
        self.model = model or os.getenv("GEMINI_MODEL") or DEFAULT_MODEL
        self.temperature = temperature
        self.max_output_tokens = max_output_tokens
        self.timeout = timeout
        self.logger = logging.getLogger(__name__)

    def _build_config(self, options: Dict[str, Any]) -> types.GenerateContentConfig:
        params: Dict[str, Any] = {
            "temperature": self.temperature,
            "max_output_tokens": self.max_output_tokens,
        }
        for key in self.CONFIG_OPTIONS:
            if options.get(key) is not None:
                params[key] = options[key]
        return types.GenerateContentConfig(**params)

    def _extract_text(self, response: Any) -> str:
        try:
            if getattr(response, "text", None):
                return response.text
        except ValueError as e:
            self.logger.debug(f"Could not access response.text: {e}")
        for candidate in getattr(response, "candidates", None) or []:
            content = getattr(candidate, "content", None)
            for part in getattr(content, "parts", None) or []:
                if getattr(part, "text", None):
                    return part.text
        return ""

    async def __call__(self, prompt: str, options: Optional[Dict[str, Any]] = None) -> GenerationResult:
        options = options or {}
        model = options.get("model") or self.model
        start = time.perf_counter()
        try:
            response = await asyncio.wait_for(
                self.client.aio.models.generate_content(
                    model=model,
                    contents=prompt,
                    config=self._build_config(options),
                ),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError:
            self.logger.error(f"Gemini API call timed out after {self.timeout:.0f} seconds")
            return GenerationResult(
                success=False,
                error=f"Gemini API call timed out after {self.timeout:.0f} seconds",
                model=model,
            )
        except errors.APIError as e:
            self.logger.error(f"Error calling Gemini API: {e}")
            return GenerationResult(success=False, error=str(e), model=model)

        elapsed_ms = (time.perf_counter() - start) * 1000
        usage = getattr(response, "usage_metadata", None)
        text = self._extract_text(response)
        if not text.strip():
            return GenerationResult(
                success=False,
                error="Empty response from Gemini",
                model=model,
                response_time_ms=elapsed_ms,
            )
        return GenerationResult(
            success=True,
            content=text,
            model=model,
            response_time_ms=elapsed_ms,
            tokens_used=(getattr(usage, "total_token_count", 0) or 0) if usage else 0,
        )


class AIService:
    """
    Bounded retry around a generative backend.

    Delays grow as ``base_delay * 2**attempt`` plus up to a second of jitter,
    doubled when the failure looks like a quota or rate-limit rejection.
    """

    def __init__(self,
                 backend: Backend,
                 max_retries: int = 3,
                 base_delay: float = 2.0,
                 max_delay: float = 60.0,
                 sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep):
        if max_retries < 1:
            raise ValueError("max_retries must be at least 1")
        self.backend = backend
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.max_delay = max_delay
        self._sleep = sleep
        self.stats = {"calls": 0, "successes": 0, "failures": 0, "retries": 0, "rate_limited": 0}
        self.logger = logging.getLogger(__name__)

    @property
    def model(self) -> str:
        return getattr(self.backend, "model", type(self.backend).__name__)

    def backoff_delay(self, attempt: int, error: str) -> float:
        delay = self.base_delay * (2 ** attempt) + random.uniform(0, 1)
        if is_rate_limit_message(error):
            delay *= 2
        return min(delay, self.max_delay)

    async def generate(self, prompt: str, options: Optional[Dict[str, Any]] = None) -> str:
        """
        Return generated text, retrying failed attempts.

        Raises AIServiceError once every attempt has failed.
        """
        options = dict(options or {})
        caller_id = options.get("caller_id", "anonymous")
        self.stats["calls"] += 1
        start = time.perf_counter()
        last_error = "no attempts made"

        for attempt in range(self.max_retries):
            try:
                result = await self.backend(prompt, options)
            except Exception as e:
                # Adapters may raise instead of reporting; treat both the same
                result = GenerationResult(success=False, error=str(e) or type(e).__name__)

            if result.success and result.content and result.content.strip():
                self.stats["successes"] += 1
                log_generation(
                    self.logger, caller_id, result.model or self.model, attempt + 1,
                    (time.perf_counter() - start) * 1000, True,
                    tokens_used=result.tokens_used,
                )
                return result.content

            last_error = result.error or "empty response"
            if is_rate_limit_message(last_error):
                self.stats["rate_limited"] += 1
            if attempt < self.max_retries - 1:
                delay = self.backoff_delay(attempt, last_error)
                self.stats["retries"] += 1
                self.logger.warning(
                    f"⚠️ Generation attempt {attempt + 1}/{self.max_retries} failed: {last_error}. "
                    f"Retrying in {delay:.1f}s"
                )
                await self._sleep(delay)

        self.stats["failures"] += 1
        log_generation(
            self.logger, caller_id, self.model, self.max_retries,
            (time.perf_counter() - start) * 1000, False, error=last_error,
        )
        raise AIServiceError(f"Generation failed after {self.max_retries} attempts: {last_error}")
