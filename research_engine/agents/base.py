from __future__ import annotations

import json
import time
from typing import Any

from research_engine.llm_client import MessageResponse, client as llm_client, get_model
from research_engine.services import limits
from research_engine.services import logger as log_service
from research_engine.services.limits import BackendLimiter


class BaseAgent:
    """Base for agents that make single-shot LLM calls.

    Every call goes through the shared backend limiter and is logged with its
    token usage and duration.
    """

    name: str = "base"

    def __init__(
        self,
        model: str | None = None,
        *,
        client: Any | None = None,
        limiter: BackendLimiter | None = None,
    ):
        self.model = model or get_model()
        self.client = client
        self.limiter = limiter or BackendLimiter.from_settings()

    async def _complete(
        self,
        *,
        system: str,
        user: str,
        max_tokens: int,
        json_mode: bool = False,
    ) -> str:
        active_client = self.client or llm_client()
        kwargs: dict[str, Any] = {
            "model": self.model,
            "max_tokens": max_tokens,
            "system": system,
            "messages": [{"role": "user", "content": user}],
        }
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}

        t0 = time.monotonic()
        try:
            response: MessageResponse = await self.limiter.run(
                limits.LLM, lambda: active_client.messages.create(**kwargs)
            )
        except Exception as e:
            log_service.log_llm_call(
                model=self.model,
                caller=self.name,
                duration_ms=int((time.monotonic() - t0) * 1000),
                status="error",
                error=str(e) or type(e).__name__,
            )
            raise
        elapsed_ms = int((time.monotonic() - t0) * 1000)

        usage = response.usage
        log_service.log_llm_call(
            model=self.model,
            caller=self.name,
            input_tokens=usage.input_tokens,
            output_tokens=usage.output_tokens,
            duration_ms=elapsed_ms,
        )
        return "\n".join(b.text for b in response.content if b.type == "text").strip()

    @staticmethod
    def _extract_json_object(raw_text: str) -> dict[str, Any]:
        text = raw_text.strip()
        if text.startswith("```"):
            parts = text.split("```")
            if len(parts) >= 2:
                text = parts[1]
            if text.startswith("json"):
                text = text[4:]
            text = text.strip()
        start = text.find("{")
        end = text.rfind("}")
        if start < 0 or end <= start:
            raise json.JSONDecodeError("object not found", text, 0)
        parsed = json.loads(text[start : end + 1])
        if not isinstance(parsed, dict):
            raise json.JSONDecodeError("not an object", text, 0)
        return parsed
