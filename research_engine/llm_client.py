"""OpenRouter chat client exposed through a small ``messages.create`` API."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from openai import AsyncOpenAI

from research_engine.config import settings

DEFAULT_BASE_URL = "https://openrouter.ai/api/v1"


@dataclass
class Usage:
    input_tokens: int = 0
    output_tokens: int = 0


@dataclass
class TextBlock:
    type: str
    text: str


@dataclass
class MessageResponse:
    content: list[Any] = field(default_factory=list)
    usage: Usage = field(default_factory=Usage)


def _temperature(model: str) -> int:
    # GPT-5 family routes reject temperature=0.
    return 1 if "gpt-5" in (model or "").lower() else 0


class ChatMessages:
    """System prompt plus plain user/assistant turns, optionally in JSON mode."""

    def __init__(self, openai_client: AsyncOpenAI):
        self._client = openai_client

    async def create(
        self,
        *,
        model: str,
        max_tokens: int,
        system: str,
        messages: list[dict[str, Any]],
        response_format: dict[str, Any] | None = None,
    ) -> MessageResponse:
        request: dict[str, Any] = {
            "model": model,
            "max_tokens": max_tokens,
            "temperature": _temperature(model),
            "messages": [{"role": "system", "content": system}]
            + [{"role": m["role"], "content": str(m["content"])} for m in messages],
        }
        if response_format:
            request["response_format"] = response_format

        completion = await self._client.chat.completions.create(**request)

        message = completion.choices[0].message
        blocks = [TextBlock(type="text", text=message.content)] if message.content else []
        usage = completion.usage
        return MessageResponse(
            content=blocks,
            usage=Usage(
                input_tokens=getattr(usage, "prompt_tokens", 0) or 0,
                output_tokens=getattr(usage, "completion_tokens", 0) or 0,
            ),
        )


class LLMClient:
    def __init__(self, openai_client: AsyncOpenAI):
        self.messages = ChatMessages(openai_client)


def get_client() -> LLMClient:
    """Build an OpenRouter client via the OpenAI-compatible SDK."""
    return LLMClient(
        AsyncOpenAI(
            api_key=settings.openrouter_api_key,
            base_url=settings.openrouter_base_url.strip() or DEFAULT_BASE_URL,
            max_retries=2,
        )
    )


def get_model() -> str:
    """Get the active OpenRouter model id."""
    return settings.openrouter_model or settings.default_model


_client: LLMClient | None = None


def client() -> LLMClient:
    """Get or create the LLM client."""
    global _client
    if _client is None:
        _client = get_client()
    return _client
