"""
Tourkit — Chat-Completions Planner
====================================

What:  PlanningOracle implementation for any OpenAI-compatible
       /v1/chat/completions endpoint.
Why:   The route sequencer needs a model that can reason about street
       addresses; a hosted chat model does that without a distance matrix.
How:   One POST per planning request, no retries. The HTTP status is folded
       into the SequenceError taxonomy here so the sequencer never sees a
       raw response.

Status mapping:
    2xx            → choices[0].message.content ("" when absent)
    402            → QuotaExceededError(code="quota_exhausted")
    429            → QuotaExceededError(code="rate_limited", retry_after=...)
    other / network→ PlannerUnavailableError
"""

import logging
import time
import uuid
from typing import Optional

import httpx

from tourkit.config import PlannerConfig
from tourkit.exceptions import PlannerUnavailableError, QuotaExceededError
from tourkit.services.http_client import (
    build_async_client,
    describe_error_response,
    parse_retry_after,
)
from tourkit.services.planner_base import PlanningOracle

logger = logging.getLogger(__name__)


class ChatCompletionPlanner(PlanningOracle):
    """Bearer-authenticated chat-completions client."""

    def __init__(
        self,
        config: Optional[PlannerConfig] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.config = config or PlannerConfig()
        self._owns_client = client is None
        self._client = client or build_async_client(timeout_seconds=self.config.timeout_seconds)

        logger.info(
            "ChatCompletionPlanner initialized with model=%s, configured=%s",
            self.config.model,
            bool(self.config.api_key),
        )

    async def complete(self, system_prompt: str, user_prompt: str) -> str:
        request_id = uuid.uuid4().hex[:8]

        if not self.config.api_key:
            logger.error("[%s] Planner called without an API key", request_id)
            raise PlannerUnavailableError(
                message="Route planning is not configured.",
                context={"request_id": request_id},
            )

        payload = {
            "model": self.config.model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            "temperature": self.config.temperature,
        }
        headers = {
            "Authorization": f"Bearer {self.config.api_key}",
            "Content-Type": "application/json",
        }

        start_time = time.time()
        try:
            response = await self._client.post(
                self.config.completions_url,
                json=payload,
                headers=headers,
            )
        except httpx.HTTPError as e:
            logger.error("[%s] Planner request failed: %s", request_id, e)
            raise PlannerUnavailableError(
                context={"request_id": request_id, "error_type": type(e).__name__},
            ) from e

        duration_ms = (time.time() - start_time) * 1000

        if response.status_code == 402:
            logger.error("[%s] Planner credits exhausted (402)", request_id)
            raise QuotaExceededError(
                message="Route planning credits are exhausted. Please check your plan.",
                code="quota_exhausted",
                context={"request_id": request_id},
            )
        if response.status_code == 429:
            retry_after = parse_retry_after(response)
            logger.warning("[%s] Planner rate limited (retry_after=%s)", request_id, retry_after)
            raise QuotaExceededError(
                message="Route planning is rate limited. Please try again later.",
                code="rate_limited",
                retry_after=retry_after,
                context={"request_id": request_id},
            )
        if not response.is_success:
            reason = describe_error_response(response, "Planner error")
            logger.error("[%s] Planner returned %s after %.0fms", request_id, reason, duration_ms)
            raise PlannerUnavailableError(
                context={"request_id": request_id, "status_code": response.status_code},
            )

        content = self._extract_content(response)
        logger.info(
            "[%s] Planner replied in %.0fms with %d chars",
            request_id,
            duration_ms,
            len(content),
        )
        return content

    async def health_check(self) -> bool:
        return bool(self.config.api_key)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    @staticmethod
    def _extract_content(response: httpx.Response) -> str:
        # A 2xx with an odd body is left to the sequencer's repair step
        try:
            data = response.json()
            content = data["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError):
            return ""
        return content if isinstance(content, str) else ""
