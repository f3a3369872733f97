"""Rolling conversation summary, updated in the background."""

from __future__ import annotations

import asyncio
import logging
import re
from typing import Optional, Set

from kbqa.llm.base import BaseProvider, ChatMessage
from kbqa.rag.conversation import ConversationStore
from kbqa.rag.prompts import SUMMARY_SYSTEM_PROMPT, build_summary_request

logger = logging.getLogger(__name__)

_META_LINE = re.compile(r"^(?:model|mode):", re.IGNORECASE)


def _strip_meta_lines(text: str) -> str:
    """Drop "Model:" / "Mode:" header lines some prompts ask assistants to emit."""
    return "\n".join(
        line for line in text.split("\n") if not _META_LINE.match(line.strip())
    ).strip()


class RollingSummarizer:
    """Keeps a short bullet summary per session.

    Every turn_interval stored messages, the most recent max_messages turns
    plus the current summary are condensed by a provider. Runs as a
    fire-and-forget task; failures are logged and never reach the request.
    """

    def __init__(
        self,
        provider: BaseProvider,
        store: ConversationStore,
        turn_interval: int = 6,
        max_messages: int = 12,
        cooldown=None,
    ):
        """Initialize summarizer.

        Args:
            provider: Provider used to write summaries
            store: Conversation store to read turns from and write summaries to
            turn_interval: Update when the message count is a multiple of this
            max_messages: Number of recent turns included in the transcript
            cooldown: RateLimitCooldown; summaries are skipped while it is active
        """
        self.provider = provider
        self.store = store
        self.turn_interval = turn_interval
        self.max_messages = max_messages
        self.cooldown = cooldown
        self._tasks: Set[asyncio.Task] = set()

    def schedule(self, session_id: str) -> Optional[asyncio.Task]:
        """Start a background update for a session, if one is due."""
        if self.turn_interval <= 0:
            return None
        if self.cooldown is not None and self.cooldown.active():
            logger.info("summary skipped due to rate limit: session=%s", session_id)
            return None

        task = asyncio.get_running_loop().create_task(self._run(session_id))
        # Keep a reference until done, the loop only holds weak references
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _run(self, session_id: str) -> None:
        try:
            await self.update(session_id)
        except Exception as e:
            logger.warning("rolling summary update failed: session=%s error=%r", session_id, e)

    async def update(self, session_id: str) -> Optional[str]:
        """Update the summary now if the message count is on the interval.

        Returns:
            The new summary, or None when no update was due or produced
        """
        total = await self.store.count_messages(session_id)
        if total == 0 or total % self.turn_interval != 0:
            return None

        existing = await self.store.get_summary(session_id)
        recent = await self.store.get_recent_messages(session_id, self.max_messages)
        transcript = "\n".join(
            f"{m.role.upper()}: "
            f"{_strip_meta_lines(m.content) if m.role == 'assistant' else m.content}".strip()
            for m in recent
        )

        response = await self.provider.generate(
            SUMMARY_SYSTEM_PROMPT,
            [ChatMessage(role="user", content=build_summary_request(existing, transcript))],
        )
        summary = response.content.strip()
        if not summary:
            return None

        await self.store.update_summary(session_id, summary)
        logger.info("rolling summary updated: session=%s messages=%d", session_id, total)
        return summary

    async def drain(self) -> None:
        """Wait for pending summary tasks (used at shutdown and in tests)."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
