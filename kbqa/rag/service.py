"""Query pipeline: retrieval, sanitization and generation for one chat turn."""

from __future__ import annotations

import logging
import time
from contextlib import aclosing
from dataclasses import dataclass, field
from typing import AsyncIterator, List, Optional, Union

from kbqa.domain.results import RankedResult
from kbqa.errors import MalformedRequestError
from kbqa.rag.context_builder import ContextBuilder
from kbqa.rag.conversation import Citation, ConversationStore
from kbqa.rag.orchestrator import (
    ConversationState,
    FinishEvent,
    GenerationOrchestrator,
    GenerationResult,
    TokenEvent,
)
from kbqa.retrieval.hybrid import HybridSearcher
from kbqa.safety.guard import screen_input
from kbqa.safety.sanitizer import ContextSanitizer, SafetyReport

logger = logging.getLogger(__name__)


@dataclass
class RetrievalEvent:
    """Emitted once retrieval and sanitization are done, before generation.

    Attributes:
        results: Results used as context, best first
        report: Safety report of the sanitized context
        retrieval_ms: Hybrid search duration
        candidates: Number of results before the minimum-score filter
    """

    results: List[RankedResult] = field(default_factory=list)
    report: SafetyReport = field(default_factory=SafetyReport)
    retrieval_ms: int = 0
    candidates: int = 0


ChatEvent = Union[RetrievalEvent, TokenEvent, FinishEvent]


class ChatService:
    """Runs one chat turn end to end.

    Ordering within a turn: input screening, user turn persisted, hybrid
    search, context sanitization, generation, output screening, assistant
    turn persisted.
    """

    def __init__(
        self,
        searcher: HybridSearcher,
        sanitizer: ContextSanitizer,
        orchestrator: GenerationOrchestrator,
        context_builder: Optional[ContextBuilder] = None,
        store: Optional[ConversationStore] = None,
        screen_queries: bool = True,
        use_summary: bool = False,
    ):
        self.searcher = searcher
        self.sanitizer = sanitizer
        self.orchestrator = orchestrator
        self.context_builder = context_builder or ContextBuilder()
        self.store = store
        self.screen_queries = screen_queries
        self.use_summary = use_summary

    def check_request(self, session_id: Optional[str], query: Optional[str]) -> str:
        """Validate and screen a request without touching any collaborator.

        Returns:
            The stripped query

        Raises:
            MalformedRequestError: If the session ID or query is missing
            PolicyViolationError: If the query asks for restricted information
        """
        if not session_id or not str(session_id).strip():
            raise MalformedRequestError("Missing session_id")
        if not query or not query.strip():
            raise MalformedRequestError("Missing query")

        query = query.strip()
        if self.screen_queries:
            screen_input(query)
        return query

    async def search(self, query: str) -> List[RankedResult]:
        """Hybrid search without generation."""
        return await self.searcher.search(query)

    async def answer(self, session_id: str, query: str) -> AsyncIterator[ChatEvent]:
        """Answer a question.

        Yields:
            One RetrievalEvent, then TokenEvents, then one FinishEvent

        Raises:
            MalformedRequestError: If the session ID or query is missing
            PolicyViolationError: If the query is rejected by input screening
            RetrievalUnavailableError: If both retrieval branches fail
            GenerationUnavailableError: If every provider fails
        """
        query = self.check_request(session_id, query)

        if self.store is not None:
            await self.store.save_message(session_id, "user", query)

        start = time.monotonic()
        results = await self.searcher.search(query)
        retrieval_ms = int((time.monotonic() - start) * 1000)

        used = self.context_builder.select(results)
        if len(used) != len(results):
            logger.info(
                "filtered results: session=%s kept=%d of=%d min_score=%s",
                session_id,
                len(used),
                len(results),
                self.context_builder.min_score,
            )

        # Each chunk is cleaned before its source header is added
        sanitized = self.sanitizer.sanitize_results(used)
        used = sanitized.results
        context = self.context_builder.build_context(used)
        logger.info(
            "context built: session=%s length=%d results=%d redactions=%d",
            session_id,
            len(context),
            len(used),
            sanitized.report.redaction_count,
        )

        summary = ""
        if self.use_summary and self.store is not None:
            summary = await self.store.get_summary(session_id)

        yield RetrievalEvent(
            results=used,
            report=sanitized.report,
            retrieval_ms=retrieval_ms,
            candidates=len(results),
        )

        conversation = ConversationState(session_id=session_id, query=query, summary=summary)
        citations = [Citation.from_result(r) for r in used]
        async with aclosing(
            self.orchestrator.generate(context, conversation, citations)
        ) as events:
            async for event in events:
                yield event

    async def ask(self, session_id: str, query: str) -> GenerationResult:
        """Answer a question and return only the final result."""
        result: Optional[GenerationResult] = None
        async with aclosing(self.answer(session_id, query)) as events:
            async for event in events:
                if isinstance(event, FinishEvent):
                    result = event.result
        return result
