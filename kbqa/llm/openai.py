"""OpenAI-compatible chat completions provider."""

from __future__ import annotations

import json
from typing import AsyncIterator, List, Sequence

import httpx

from kbqa.errors import ProviderError
from kbqa.llm.base import (
    BaseProvider,
    ChatMessage,
    StreamDelta,
    StreamEvent,
    StreamFinish,
    parse_sse_data,
    provider_error,
)


class OpenAIProvider(BaseProvider):
    """Provider for any /chat/completions endpoint speaking the OpenAI wire format."""

    DEFAULT_BASE_URL = "https://api.openai.com/v1"

    def __init__(
        self,
        model: str = "gpt-4o-mini",
        api_key: str = "",
        base_url: str = "",
        temperature: float = 0.3,
        max_tokens: int = 1024,
        timeout: float = 60.0,
        label: str = "",
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        super().__init__(
            model=model, temperature=temperature, max_tokens=max_tokens, label=label or "openai"
        )
        if not api_key:
            raise ValueError("API key is required for OpenAI provider")
        self._api_key = api_key
        self._base_url = (base_url or self.DEFAULT_BASE_URL).rstrip("/")
        self._timeout = timeout
        self._transport = transport

    def _build_request(self, system_prompt: str, messages: Sequence[ChatMessage]) -> dict:
        wire_messages = []
        if system_prompt:
            wire_messages.append({"role": "system", "content": system_prompt})
        wire_messages.extend({"role": m.role, "content": m.content} for m in messages)
        return {
            "model": self.model,
            "messages": wire_messages,
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
            "stream": True,
        }

    async def stream_generate(
        self, system_prompt: str, messages: Sequence[ChatMessage]
    ) -> AsyncIterator[StreamEvent]:
        parts: List[str] = []
        finish_reason = None
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                async with client.stream(
                    "POST",
                    f"{self._base_url}/chat/completions",
                    json=self._build_request(system_prompt, messages),
                    headers={
                        "Authorization": f"Bearer {self._api_key}",
                        "Content-Type": "application/json",
                    },
                ) as response:
                    if response.status_code >= 400:
                        body = (await response.aread()).decode("utf-8", "replace")
                        raise provider_error("OpenAI", response.status_code, body)

                    async for line in response.aiter_lines():
                        payload = parse_sse_data(line)
                        if not payload:
                            continue
                        if payload == "[DONE]":
                            break
                        chunk = json.loads(payload)
                        choices = chunk.get("choices") or []
                        if not choices:
                            continue
                        finish_reason = choices[0].get("finish_reason") or finish_reason
                        text = (choices[0].get("delta") or {}).get("content") or ""
                        if text:
                            parts.append(text)
                            yield StreamDelta(text=text)
        except httpx.HTTPError as e:
            raise ProviderError(f"OpenAI request failed: {e}", provider="OpenAI") from e
        except json.JSONDecodeError as e:
            raise ProviderError(f"Unexpected OpenAI stream payload: {e}", provider="OpenAI") from e

        yield StreamFinish(full_text="".join(parts), finish_reason=finish_reason, model=self.model)
