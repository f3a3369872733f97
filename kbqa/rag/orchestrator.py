"""Generation orchestration with primary/fallback failover.

Per request the orchestrator moves through:

    IDLE -> ATTEMPTING_PRIMARY -> {STREAMING | ATTEMPTING_FALLBACK}
         -> {COMPLETED | BLOCKED | FAILED}

The primary attempt is buffered in full so an empty answer can be detected
before anything reaches the caller. A failed, rate-limited or empty primary
is retried exactly once on the fallback, whose output is streamed live.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from contextlib import aclosing
from dataclasses import dataclass, field
from enum import Enum
from typing import AsyncIterator, Callable, List, Optional, Sequence, Tuple, Union

from kbqa.errors import EmptyResponseError, GenerationUnavailableError, is_rate_limit_error
from kbqa.llm.base import BaseProvider, ChatMessage, StreamDelta, StreamFinish
from kbqa.rag.conversation import Citation, ConversationStore
from kbqa.rag.prompts import build_user_message, system_prompt
from kbqa.safety.guard import OutputScreening, screen_output

logger = logging.getLogger(__name__)


class GenerationState(str, Enum):
    """Lifecycle of a single generation request."""

    IDLE = "idle"
    ATTEMPTING_PRIMARY = "attempting_primary"
    ATTEMPTING_FALLBACK = "attempting_fallback"
    STREAMING = "streaming"
    COMPLETED = "completed"
    BLOCKED = "blocked"
    FAILED = "failed"


@dataclass
class GenerationAttempt:
    """Audit record of one provider invocation.

    Attributes:
        provider_label: Configured provider label
        model_id: Model name used
        started_at: Wall-clock start time (epoch seconds)
        error: Failure description, None when the attempt succeeded
        duration_ms: Time spent in the attempt
    """

    provider_label: str
    model_id: str
    started_at: float
    error: Optional[str] = None
    duration_ms: int = 0

    def to_dict(self) -> dict:
        return {
            "provider_label": self.provider_label,
            "model_id": self.model_id,
            "started_at": self.started_at,
            "error": self.error,
            "duration_ms": self.duration_ms,
        }


@dataclass
class ConversationState:
    """Conversation inputs for one generation.

    Attributes:
        session_id: Conversation identifier
        query: Current user question
        summary: Rolling summary of earlier turns (may be empty)
    """

    session_id: str
    query: str
    summary: str = ""


@dataclass
class GenerationResult:
    """Final outcome handed to the caller and the conversation store.

    text is the visible answer: the fixed blocked-response message when
    output screening withheld the generated text.
    """

    text: str
    state: GenerationState
    attempts: List[GenerationAttempt] = field(default_factory=list)
    provider_label: str = ""
    model_id: str = ""
    finish_reason: Optional[str] = None
    screening: OutputScreening = field(default_factory=OutputScreening)
    citations: List[Citation] = field(default_factory=list)

    @property
    def blocked(self) -> bool:
        return self.state is GenerationState.BLOCKED

    def metadata(self) -> dict:
        return {
            "state": self.state.value,
            "provider_label": self.provider_label,
            "model_id": self.model_id,
            "finish_reason": self.finish_reason,
            "attempts": [a.to_dict() for a in self.attempts],
        }


@dataclass
class TokenEvent:
    """A text delta forwarded to the caller."""

    text: str


@dataclass
class FinishEvent:
    """Terminal event of a successful generation."""

    result: GenerationResult


OrchestratorEvent = Union[TokenEvent, FinishEvent]


class RateLimitCooldown:
    """Process-wide rate-limit cool-down shared by all requests.

    While active, the fallback provider is preferred. Reads may be slightly
    stale; that only affects which provider is tried first.
    """

    def __init__(self, backoff_seconds: float = 60.0, clock: Callable[[], float] = time.monotonic):
        self.backoff_seconds = backoff_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._until = 0.0

    def trip(self) -> float:
        """Start (or extend) the cool-down. Returns seconds until it expires."""
        with self._lock:
            self._until = max(self._until, self._clock() + self.backoff_seconds)
            return self._until - self._clock()

    def active(self) -> bool:
        with self._lock:
            return self._clock() < self._until

    def remaining(self) -> float:
        with self._lock:
            return max(0.0, self._until - self._clock())

    def reset(self) -> None:
        with self._lock:
            self._until = 0.0


class GenerationOrchestrator:
    """Streams an answer from a primary provider with single-shot failover."""

    def __init__(
        self,
        primary: BaseProvider,
        fallback: Optional[BaseProvider] = None,
        cooldown: Optional[RateLimitCooldown] = None,
        store: Optional[ConversationStore] = None,
        summarizer=None,
        attempt_timeout: float = 120.0,
        allow_general_knowledge: bool = False,
    ):
        """Initialize orchestrator.

        Args:
            primary: Preferred provider
            fallback: Provider used once when the first attempt fails
            cooldown: Shared rate-limit cool-down
            store: Conversation store receiving the screened answer
            summarizer: RollingSummarizer scheduled after each completed turn
            attempt_timeout: Seconds allowed per provider attempt
            allow_general_knowledge: Use the permissive system prompt
        """
        self.primary = primary
        self.fallback = fallback
        self.cooldown = cooldown or RateLimitCooldown()
        self.store = store
        self.summarizer = summarizer
        self.attempt_timeout = attempt_timeout
        self.allow_general_knowledge = allow_general_knowledge

    def ordered_providers(self) -> Tuple[BaseProvider, Optional[BaseProvider]]:
        """Providers in the order they should be tried for the next request."""
        if self.fallback is not None and self.cooldown.active():
            return self.fallback, self.primary
        return self.primary, self.fallback

    def _build_prompt(
        self, context: str, conversation: ConversationState
    ) -> Tuple[str, List[ChatMessage]]:
        system = system_prompt(self.allow_general_knowledge)
        return system, self.build_messages(context, conversation)

    def build_messages(self, context: str, conversation: ConversationState) -> List[ChatMessage]:
        return [
            ChatMessage(
                role="user",
                content=build_user_message(conversation.query, context, conversation.summary),
            )
        ]

    async def generate(
        self,
        context: str,
        conversation: ConversationState,
        citations: Sequence[Citation] = (),
    ) -> AsyncIterator[OrchestratorEvent]:
        """Generate an answer.

        Args:
            context: Sanitized context text
            conversation: Session, query and rolling summary
            citations: Retrieval provenance stored with the answer

        Yields:
            TokenEvent for each text delta, then exactly one FinishEvent

        Raises:
            GenerationUnavailableError: If the first attempt and the fallback both fail
            ProviderError: If the first attempt fails and no fallback is configured
        """
        state = GenerationState.IDLE
        attempts: List[GenerationAttempt] = []
        first, second = self.ordered_providers()
        if first is not self.primary:
            logger.info(
                "rate-limit cool-down active, preferring %s: remaining=%.1fs",
                first.label,
                self.cooldown.remaining(),
            )

        state = self._transition(state, GenerationState.ATTEMPTING_PRIMARY, conversation)
        attempt = self._start_attempt(first, attempts)
        prompt: Optional[Tuple[str, List[ChatMessage]]] = None
        failed = False
        try:
            prompt = self._build_prompt(context, conversation)
            system, messages = prompt
            deltas, finish = await asyncio.wait_for(
                self._collect(first, system, messages), timeout=self.attempt_timeout
            )
            if not finish.full_text.strip():
                raise EmptyResponseError(f"Empty output from {first.label}", provider=first.label)
            self._finish_attempt(attempt)
        except Exception as e:
            self._finish_attempt(attempt, e)
            self._record_failure(first, e, conversation)
            if second is None:
                logger.error(
                    "generation failed, no fallback configured: session=%s provider=%s",
                    conversation.session_id,
                    first.label,
                )
                self._transition(state, GenerationState.FAILED, conversation)
                raise
            failed = True

        if failed:
            state = self._transition(state, GenerationState.ATTEMPTING_FALLBACK, conversation)
            async with aclosing(
                self._fallback(second, context, prompt, conversation, attempts, citations)
            ) as events:
                async for event in events:
                    yield event
            return

        # The buffered primary is screened before replay, so a blocked answer never streams
        result = self._screen(finish, first, attempts, citations)
        if not result.blocked:
            state = self._transition(state, GenerationState.STREAMING, conversation)
            for delta in deltas:
                yield TokenEvent(text=delta)
        self._transition(state, result.state, conversation)
        await self._persist(conversation, result)
        yield FinishEvent(result=result)

    async def _fallback(
        self,
        provider: BaseProvider,
        context: str,
        prompt: Optional[Tuple[str, List[ChatMessage]]],
        conversation: ConversationState,
        attempts: List[GenerationAttempt],
        citations: Sequence[Citation],
    ) -> AsyncIterator[OrchestratorEvent]:
        """Stream the fallback live. Used at most once per request."""
        logger.warning(
            "attempting fallback: session=%s provider=%s model=%s",
            conversation.session_id,
            provider.label,
            provider.model,
        )
        state = GenerationState.ATTEMPTING_FALLBACK
        attempt = self._start_attempt(provider, attempts)
        deadline = time.monotonic() + self.attempt_timeout
        finish: Optional[StreamFinish] = None

        try:
            system, messages = prompt or self._build_prompt(context, conversation)
            async with aclosing(provider.stream_generate(system, messages)) as stream:
                while True:
                    remaining = deadline - time.monotonic()
                    if remaining <= 0:
                        raise asyncio.TimeoutError()
                    try:
                        event = await asyncio.wait_for(stream.__anext__(), timeout=remaining)
                    except StopAsyncIteration:
                        break
                    if isinstance(event, StreamDelta):
                        if state is not GenerationState.STREAMING:
                            state = self._transition(state, GenerationState.STREAMING, conversation)
                        yield TokenEvent(text=event.text)
                    else:
                        finish = event

            if finish is None or not finish.full_text.strip():
                raise EmptyResponseError(
                    f"Empty output from {provider.label}", provider=provider.label
                )
            self._finish_attempt(attempt)
        except Exception as e:
            self._finish_attempt(attempt, e)
            logger.error(
                "fallback failed: session=%s provider=%s error=%r",
                conversation.session_id,
                provider.label,
                e,
            )
            self._transition(state, GenerationState.FAILED, conversation)
            raise GenerationUnavailableError(
                "All configured providers failed", attempts=attempts
            ) from e

        result = self._screen(finish, provider, attempts, citations)
        self._transition(state, result.state, conversation)
        await self._persist(conversation, result)
        yield FinishEvent(result=result)

    async def _collect(
        self, provider: BaseProvider, system: str, messages: Sequence[ChatMessage]
    ) -> Tuple[List[str], StreamFinish]:
        """Drain a provider stream, keeping its deltas for later replay."""
        deltas: List[str] = []
        finish: Optional[StreamFinish] = None
        async with aclosing(provider.stream_generate(system, messages)) as stream:
            async for event in stream:
                if isinstance(event, StreamDelta):
                    deltas.append(event.text)
                else:
                    finish = event
        if finish is None:
            finish = StreamFinish(full_text="".join(deltas), model=provider.model)
        return deltas, finish

    def _screen(
        self,
        finish: StreamFinish,
        provider: BaseProvider,
        attempts: List[GenerationAttempt],
        citations: Sequence[Citation],
    ) -> GenerationResult:
        screening = screen_output(finish.full_text)
        state = GenerationState.BLOCKED if screening.blocked else GenerationState.COMPLETED
        return GenerationResult(
            text=screening.visible_text(finish.full_text),
            state=state,
            attempts=attempts,
            provider_label=provider.label,
            model_id=finish.model or provider.model,
            finish_reason=finish.finish_reason,
            screening=screening,
            citations=[] if screening.blocked else list(citations),
        )

    async def _persist(self, conversation: ConversationState, result: GenerationResult) -> None:
        if self.store is not None:
            await self.store.save_message(
                conversation.session_id, "assistant", result.text, result.citations
            )
        if self.summarizer is not None and result.state is GenerationState.COMPLETED:
            self.summarizer.schedule(conversation.session_id)

    def _record_failure(
        self, provider: BaseProvider, error: BaseException, conversation: ConversationState
    ) -> None:
        if isinstance(error, EmptyResponseError):
            logger.warning(
                "empty output: session=%s provider=%s model=%s",
                conversation.session_id,
                provider.label,
                provider.model,
            )
            return
        logger.warning(
            "provider attempt failed: session=%s provider=%s model=%s error=%r",
            conversation.session_id,
            provider.label,
            provider.model,
            error,
        )
        if is_rate_limit_error(error):
            remaining = self.cooldown.trip()
            logger.warning("rate limit detected, preferring fallback for %.0fs", remaining)

    @staticmethod
    def _start_attempt(provider: BaseProvider, attempts: List[GenerationAttempt]) -> GenerationAttempt:
        attempt = GenerationAttempt(
            provider_label=provider.label, model_id=provider.model, started_at=time.time()
        )
        attempts.append(attempt)
        return attempt

    @staticmethod
    def _finish_attempt(attempt: GenerationAttempt, error: Optional[BaseException] = None) -> None:
        attempt.duration_ms = int((time.time() - attempt.started_at) * 1000)
        if error is not None:
            attempt.error = repr(error)

    @staticmethod
    def _transition(
        current: GenerationState, new: GenerationState, conversation: ConversationState
    ) -> GenerationState:
        logger.debug(
            "generation state: session=%s %s -> %s",
            conversation.session_id,
            current.value,
            new.value,
        )
        return new
