"""
AI responder for SupportDesk Chat.

Thin adapter over the OpenAI chat completions API (any OpenAI-compatible
endpoint, e.g. OpenRouter, via base_url).
"""

import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol, Sequence

from openai import AsyncOpenAI

from .conversation_store import ChatMessage
from .prompt_templates import PromptTemplates

logger = logging.getLogger(__name__)

HISTORY_WINDOW = 10


class AIResponseError(Exception):
    """The AI subsystem could not produce a response."""


@dataclass
class AIResponse:
    content: str
    confidence: float
    tokens_used: int = 0
    response_time: float = 0.0  # milliseconds
    model: str = ""

    def metadata(self) -> Dict[str, Any]:
        return {
            "confidence": self.confidence,
            "tokensUsed": self.tokens_used,
            "responseTime": self.response_time,
        }


class Responder(Protocol):
    async def generate_response(
        self,
        history: Sequence[ChatMessage],
        customer_info: Optional[Dict[str, Any]] = None,
        knowledge_snippets: Optional[List[str]] = None,
    ) -> AIResponse:
        ...


class AIResponder:
    """
    OpenAI-backed response generator.

    Raises AIResponseError on any provider failure; the caller owns the
    apology/fallback behaviour.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        model_id: str = "gpt-4o-mini",
        base_url: Optional[str] = None,
        max_tokens: int = 500,
        temperature: float = 0.7,
        prompts: Optional[PromptTemplates] = None,
    ):
        self._client = AsyncOpenAI(api_key=api_key, base_url=base_url) if api_key else None
        self.model_id = model_id
        self.max_tokens = max_tokens
        self.temperature = temperature
        self.prompts = prompts or PromptTemplates()

        if self._client:
            logger.info(f"AI responder initialized: {model_id}")
        else:
            logger.warning("OPENAI_API_KEY not set, AI responses disabled")

    @staticmethod
    def format_history(history: Sequence[ChatMessage]) -> List[Dict[str, str]]:
        """Last messages as chat-completion turns; system notes are dropped."""
        turns = [m for m in history if m.role != "system"][-HISTORY_WINDOW:]
        return [{"role": m.role, "content": m.content} for m in turns]

    @staticmethod
    def estimate_confidence(finish_reason: Optional[str], content: str) -> float:
        if finish_reason == "stop" and len(content) > 50:
            return 0.8
        if finish_reason == "stop":
            return 0.6
        return 0.4

    async def generate_response(
        self,
        history: Sequence[ChatMessage],
        customer_info: Optional[Dict[str, Any]] = None,
        knowledge_snippets: Optional[List[str]] = None,
    ) -> AIResponse:
        if not self._client:
            raise AIResponseError("AI responder is not configured")

        start = time.time()
        system = self.prompts.build_system_prompt(customer_info, knowledge_snippets)
        messages = [{"role": "system", "content": system}] + self.format_history(history)

        try:
            completion = await self._client.chat.completions.create(
                model=self.model_id,
                messages=messages,
                max_tokens=self.max_tokens,
                temperature=self.temperature,
            )
        except Exception as e:
            logger.error(f"OpenAI generation failed: {e}")
            raise AIResponseError("Failed to generate AI response") from e

        choice = completion.choices[0] if completion.choices else None
        content = (choice.message.content or "").strip() if choice else ""
        if not content:
            raise AIResponseError("Empty AI response")

        return AIResponse(
            content=content,
            confidence=self.estimate_confidence(choice.finish_reason, content),
            tokens_used=completion.usage.total_tokens if completion.usage else 0,
            response_time=round((time.time() - start) * 1000, 2),
            model=self.model_id,
        )
