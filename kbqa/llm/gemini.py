"""Gemini provider using the Google Generative AI streaming API."""

from __future__ import annotations

import json
from typing import AsyncIterator, List, Optional, Sequence

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


class GeminiProvider(BaseProvider):
    """Google Gemini provider.

    Streams from :streamGenerateContent with alt=sse. System instructions
    are sent separately from the conversation contents.
    """

    API_BASE = "https://generativelanguage.googleapis.com/v1beta"

    def __init__(
        self,
        model: str = "gemini-2.5-flash",
        api_key: str = "",
        temperature: float = 0.3,
        max_tokens: int = 1024,
        timeout: float = 60.0,
        label: str = "",
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize Gemini provider.

        Args:
            model: Model name (e.g., "gemini-2.5-flash", "gemini-2.5-pro")
            api_key: Google API key
            temperature: Sampling temperature (0.0 - 1.0)
            max_tokens: Maximum tokens to generate
            timeout: Request timeout in seconds
            label: Name used in logs
            transport: Optional httpx transport (used by tests)
        """
        super().__init__(
            model=model, temperature=temperature, max_tokens=max_tokens, label=label or "gemini"
        )
        self._api_key = api_key
        self._timeout = timeout
        self._transport = transport

        if not self._api_key:
            raise ValueError("Google API key is required for Gemini provider")

    def _model_id(self) -> str:
        # gemini-2.5-flash -> models/gemini-2.5-flash
        return self.model if self.model.startswith("models/") else f"models/{self.model}"

    def _build_request(self, system_prompt: str, messages: Sequence[ChatMessage]) -> dict:
        contents = [
            {
                "role": "model" if m.role == "assistant" else "user",
                "parts": [{"text": m.content}],
            }
            for m in messages
        ]
        data = {
            "contents": contents,
            "generationConfig": {
                "temperature": self.temperature,
                "maxOutputTokens": self.max_tokens,
            },
        }
        if system_prompt:
            data["systemInstruction"] = {"parts": [{"text": system_prompt}]}
        return data

    @staticmethod
    def _extract_text(chunk: dict) -> str:
        try:
            parts = chunk["candidates"][0]["content"].get("parts", [])
        except (KeyError, IndexError):
            return ""
        return "".join(part.get("text", "") for part in parts)

    @staticmethod
    def _extract_finish_reason(chunk: dict) -> Optional[str]:
        try:
            return chunk["candidates"][0].get("finishReason")
        except (KeyError, IndexError):
            return None

    async def stream_generate(
        self, system_prompt: str, messages: Sequence[ChatMessage]
    ) -> AsyncIterator[StreamEvent]:
        url = f"{self.API_BASE}/{self._model_id()}:streamGenerateContent"
        params = {"alt": "sse", "key": self._api_key}
        data = self._build_request(system_prompt, messages)

        parts: List[str] = []
        finish_reason = None
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                async with client.stream(
                    "POST",
                    url,
                    params=params,
                    json=data,
                    headers={"Content-Type": "application/json"},
                ) as response:
                    if response.status_code >= 400:
                        body = (await response.aread()).decode("utf-8", "replace")
                        raise provider_error("Gemini", response.status_code, body)

                    async for line in response.aiter_lines():
                        payload = parse_sse_data(line)
                        if not payload:
                            continue
                        chunk = json.loads(payload)
                        if "error" in chunk:
                            raise ProviderError(
                                f"Gemini API error: {chunk['error']}", provider="Gemini"
                            )
                        text = self._extract_text(chunk)
                        finish_reason = self._extract_finish_reason(chunk) or finish_reason
                        if text:
                            parts.append(text)
                            yield StreamDelta(text=text)
        except httpx.HTTPError as e:
            raise ProviderError(f"Gemini request failed: {e}", provider="Gemini") from e
        except json.JSONDecodeError as e:
            raise ProviderError(f"Unexpected Gemini stream payload: {e}", provider="Gemini") from e

        yield StreamFinish(full_text="".join(parts), finish_reason=finish_reason, model=self.model)
