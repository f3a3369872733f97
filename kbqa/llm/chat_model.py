"""Provider backed by a LangChain chat model."""

from __future__ import annotations

from typing import AsyncIterator, List, Sequence

from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage

from kbqa.errors import ProviderError, RateLimitError, is_rate_limit_error
from kbqa.llm.base import BaseProvider, ChatMessage, StreamDelta, StreamEvent, StreamFinish


def _chunk_text(content) -> str:
    """Text of a message chunk whose content is a string or a list of parts."""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        return "".join(
            part if isinstance(part, str) else str(part.get("text", ""))
            for part in content
        )
    return ""


class ChatModelProvider(BaseProvider):
    """Wraps any LangChain BaseChatModel supporting astream."""

    def __init__(self, chat_model: BaseChatModel, model: str = "", label: str = ""):
        super().__init__(
            model=model or getattr(chat_model, "model", "") or type(chat_model).__name__,
            label=label or "langchain",
        )
        self._chat_model = chat_model

    @staticmethod
    def to_langchain_messages(
        system_prompt: str, messages: Sequence[ChatMessage]
    ) -> List[BaseMessage]:
        converted: List[BaseMessage] = []
        if system_prompt:
            converted.append(SystemMessage(content=system_prompt))
        for m in messages:
            if m.role == "assistant":
                converted.append(AIMessage(content=m.content))
            else:
                converted.append(HumanMessage(content=m.content))
        return converted

    async def stream_generate(
        self, system_prompt: str, messages: Sequence[ChatMessage]
    ) -> AsyncIterator[StreamEvent]:
        parts: List[str] = []
        finish_reason = None
        try:
            async for chunk in self._chat_model.astream(
                self.to_langchain_messages(system_prompt, messages)
            ):
                metadata = getattr(chunk, "response_metadata", None) or {}
                finish_reason = metadata.get("finish_reason") or finish_reason
                text = _chunk_text(chunk.content)
                if text:
                    parts.append(text)
                    yield StreamDelta(text=text)
        except ProviderError:
            raise
        except Exception as e:
            if is_rate_limit_error(e):
                raise RateLimitError(str(e), provider=self.label, status_code=429) from e
            raise ProviderError(f"{self.label} generation failed: {e}", provider=self.label) from e

        yield StreamFinish(full_text="".join(parts), finish_reason=finish_reason, model=self.model)
