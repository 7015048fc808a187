from __future__ import annotations

from typing import Dict, List, Optional, Sequence

import logging
import openai
from openai import AsyncOpenAI

from leasing_chat.config import CompletionSettings
from leasing_chat.errors import CompletionError
from leasing_chat.models.session import ChatMessage

logger = logging.getLogger(__name__)

HISTORY_LIMIT = 20


class CompletionClient:
    """Produces the assistant reply for one turn from instructions and history."""

    @property
    def available(self) -> bool:
        return True

    async def complete(self, instructions: str, history: Sequence[ChatMessage]) -> str:
        raise NotImplementedError


class OpenAICompletion(CompletionClient):
    def __init__(self, settings: CompletionSettings, client: Optional[AsyncOpenAI] = None) -> None:
        self.settings = settings
        self._client: Optional[AsyncOpenAI] = client
        if self._client is None and settings.api_key:
            self._client = AsyncOpenAI(
                api_key=settings.api_key,
                base_url=settings.base_url,
                timeout=settings.timeout_seconds,
                max_retries=0,
            )

    @property
    def available(self) -> bool:
        return self._client is not None

    async def complete(self, instructions: str, history: Sequence[ChatMessage]) -> str:
        if not self._client:
            raise CompletionError("completion client is not configured")

        messages: List[Dict[str, str]] = [{"role": "system", "content": instructions}]
        messages.extend({"role": m.role, "content": m.content} for m in history[-HISTORY_LIMIT:])

        try:
            response = await self._client.chat.completions.create(
                model=self.settings.model,
                messages=messages,
                max_tokens=self.settings.max_tokens,
                timeout=self.settings.timeout_seconds,
            )
        except openai.APITimeoutError as exc:
            logger.warning("completion.timeout model=%s after=%.1fs", self.settings.model, self.settings.timeout_seconds)
            raise CompletionError("completion service timed out", timed_out=True) from exc
        except openai.APIError as exc:
            logger.warning("completion.error model=%s err=%s", self.settings.model, exc)
            raise CompletionError(f"completion service failed: {exc}") from exc

        if not response.choices:
            raise CompletionError("completion service returned no choices")
        text = (response.choices[0].message.content or "").strip()
        if not text:
            raise CompletionError("completion service returned an empty reply")
        return text
