"""
OpenAI wrapper for expenditure tips, with retry and error handling.

Features:
    - One retry with backoff for transient failures (429, 5xx, timeouts)
    - Token usage tracking
    - Every failure surfaces as TextGenerationFailed; callers drop the tip

Author: Spending Tracker Team
"""

import asyncio
import json
from datetime import date
from typing import Optional, Sequence

import config
from .errors import TextGenerationFailed
from .observability import logger, metrics, timed


class AIService:
    """
    Wrapper for the OpenAI chat API used to phrase forecast tips.

    The numeric forecast is always computed locally; this service only turns
    it into a short piece of advice.
    """

    MAX_RETRIES = 1
    INITIAL_DELAY = 1.0
    MAX_DELAY = 10.0
    MAX_TIP_CHARS = 500

    SYSTEM_PROMPT = (
        "You are a concise personal finance assistant for an Indian user. "
        "Given projected spending for upcoming periods, write one practical, "
        "encouraging tip in at most two sentences. Use rupee amounts from the data. "
        "Do not invent numbers."
    )

    def __init__(self, api_key: str = None, model: str = None, client=None, timeout: float = None):
        raw_key = config.OPENAI_API_KEY if api_key is None else api_key
        self.api_key = raw_key.strip() if raw_key else None
        self.model = model or config.OPENAI_MODEL
        self.timeout = timeout or config.TIP_TIMEOUT_SECONDS
        self.client = client

        self.total_tokens_used = 0
        self.request_count = 0

        if self.client is None and self.api_key and self.api_key.startswith("sk-"):
            from openai import AsyncOpenAI
            self.client = AsyncOpenAI(api_key=self.api_key)
            logger.info("OpenAI client initialized", model=self.model)
        elif self.client is None:
            logger.warning("OpenAI API key not configured; expenditure tips disabled")

    @property
    def available(self) -> bool:
        return self.client is not None

    def _track_usage(self, response) -> None:
        """Track token usage from API response."""
        if hasattr(response, "usage") and response.usage:
            self.total_tokens_used += response.usage.total_tokens
            self.request_count += 1

    def get_usage_stats(self) -> dict:
        return {
            "total_tokens": self.total_tokens_used,
            "request_count": self.request_count,
            "avg_tokens_per_request": (
                self.total_tokens_used / self.request_count
                if self.request_count > 0 else 0
            ),
        }

    async def _call_with_retry(self, **kwargs):
        """
        Make an OpenAI call, retrying once on rate limits, server errors and
        timeouts. Anything else is raised immediately.
        """
        last_exception = None
        delay = self.INITIAL_DELAY

        for attempt in range(self.MAX_RETRIES + 1):
            try:
                response = await asyncio.wait_for(
                    self.client.chat.completions.create(model=self.model, **kwargs),
                    timeout=self.timeout,
                )
                self._track_usage(response)
                return response

            except Exception as e:
                last_exception = e
                error_str = str(e).lower()

                is_rate_limit = "rate_limit" in error_str or "429" in error_str
                is_server_error = any(code in error_str for code in ["500", "502", "503"])
                is_timeout = isinstance(e, asyncio.TimeoutError) or "timeout" in error_str

                if (is_rate_limit or is_server_error or is_timeout) and attempt < self.MAX_RETRIES:
                    wait_time = delay * (2 if is_rate_limit else 1)
                    logger.warning("Text generation failed, retrying",
                                   wait_seconds=f"{wait_time:.1f}", attempt=attempt + 1, error=repr(e))
                    metrics.increment("tip.retry")
                    await asyncio.sleep(wait_time)
                    delay = min(delay * 2, self.MAX_DELAY)
                    continue

                raise last_exception

        raise last_exception

    @staticmethod
    def build_context(
        forecast: Sequence[float],
        category: Optional[str],
        as_of: date,
        period: str = "month",
    ) -> dict:
        """Aggregated numbers only; no payee names or notes leave the service."""
        return {
            "as_of": as_of.isoformat(),
            "period": period,
            "category": category or "All spending",
            "forecast": [round(float(v), 2) for v in forecast],
        }

    @timed("tip.generate")
    async def generate_expenditure_tip(
        self,
        forecast: Sequence[float],
        category: Optional[str],
        as_of: date,
        period: str = "month",
    ) -> str:
        """
        Phrase a short tip for the projected spending.

        Raises:
            TextGenerationFailed: no client configured, the call failed after
                retry, or the model returned nothing usable.
        """
        if not self.client:
            raise TextGenerationFailed("Text generation is not configured")

        context = self.build_context(forecast, category, as_of, period)
        try:
            response = await self._call_with_retry(
                messages=[
                    {"role": "system", "content": self.SYSTEM_PROMPT},
                    {
                        "role": "user",
                        "content": f"Projected spending per {period}:\n{json.dumps(context, indent=2)}",
                    },
                ],
                max_tokens=120,
                temperature=0.4,
            )
            content = response.choices[0].message.content
        except Exception as e:
            raise TextGenerationFailed(f"Text generation error after retries: {e!r}") from e

        tip = (content or "").strip()
        if not tip:
            raise TextGenerationFailed("Text generation returned an empty tip")
        return tip[: self.MAX_TIP_CHARS]

    async def check_connection(self) -> bool:
        """Check if OpenAI API is accessible."""
        if not self.client:
            return False
        try:
            await self.client.models.list()
            return True
        except Exception as e:
            logger.debug("OpenAI connection check failed", error=repr(e))
            return False
