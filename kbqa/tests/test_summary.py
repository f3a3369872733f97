"""Unit tests for the conversation store and rolling summaries."""

import asyncio

import pytest

from kbqa.errors import ProviderError
from kbqa.rag.conversation import Citation, InMemoryConversationStore
from kbqa.rag.orchestrator import RateLimitCooldown
from kbqa.rag.summary import RollingSummarizer


async def seed(store, session_id="s1", turns=3):
    """Store alternating user and assistant messages."""
    for i in range(turns):
        await store.save_message(session_id, "user", f"Question {i}")
        await store.save_message(session_id, "assistant", f"Model: gemini\nMode: kb\nAnswer {i}")


class TestInMemoryConversationStore:
    """Test suite for InMemoryConversationStore."""

    def test_messages_and_summary(self):
        """Test turns, counts and summaries per session."""
        store = InMemoryConversationStore()

        async def scenario():
            citation = Citation(source_path="a.md", chunk_index=0, score=0.5)
            await store.save_message("s1", "user", "hi")
            await store.save_message("s1", "assistant", "hello", [citation])
            await store.save_message("s2", "user", "other")
            await store.update_summary("s1", "- greeted")
            return (
                await store.count_messages("s1"),
                await store.get_recent_messages("s1", 1),
                await store.get_summary("s1"),
                await store.get_summary("s2"),
            )

        count, recent, summary, empty = asyncio.run(scenario())

        assert count == 2
        assert [m.content for m in recent] == ["hello"]
        assert recent[0].citations[0].source_path == "a.md"
        assert summary == "- greeted"
        assert empty == ""


class TestRollingSummarizer:
    """Test suite for RollingSummarizer."""

    def test_updates_on_interval(self, make_provider):
        """Test the summary is written when the message count hits the interval."""
        store = InMemoryConversationStore()
        provider = make_provider(["- user asked three questions"])
        summarizer = RollingSummarizer(provider, store, turn_interval=6)

        async def scenario():
            await seed(store)
            return await summarizer.update("s1"), await store.get_summary("s1")

        returned, stored = asyncio.run(scenario())

        assert returned == "- user asked three questions"
        assert stored == returned
        transcript = provider.last_messages[0].content
        assert "USER: Question 0" in transcript
        assert "ASSISTANT: Answer 0" in transcript
        assert "Model:" not in transcript

    def test_skips_off_interval(self, make_provider):
        """Test no provider call happens between intervals."""
        store = InMemoryConversationStore()
        provider = make_provider(["unused"])
        summarizer = RollingSummarizer(provider, store, turn_interval=4)

        async def scenario():
            await seed(store, turns=3)
            return await summarizer.update("s1")

        assert asyncio.run(scenario()) is None
        assert provider.calls == 0

    def test_includes_existing_summary(self, make_provider):
        """Test the previous summary is sent for condensing."""
        store = InMemoryConversationStore()
        provider = make_provider(["- new summary"])
        summarizer = RollingSummarizer(provider, store, turn_interval=2)

        async def scenario():
            await store.update_summary("s1", "- old summary")
            await seed(store, turns=1)
            await summarizer.update("s1")

        asyncio.run(scenario())

        assert "Current summary:\n- old summary" in provider.last_messages[0].content

    def test_schedule_runs_in_background(self, make_provider):
        """Test scheduled updates complete after drain."""
        store = InMemoryConversationStore()
        summarizer = RollingSummarizer(make_provider(["- done"]), store, turn_interval=2)

        async def scenario():
            await seed(store, turns=1)
            task = summarizer.schedule("s1")
            await summarizer.drain()
            return task, await store.get_summary("s1")

        task, summary = asyncio.run(scenario())

        assert task is not None
        assert summary == "- done"

    def test_schedule_failure_is_contained(self, make_provider):
        """Test a failing summary provider never raises to the caller."""
        store = InMemoryConversationStore()
        summarizer = RollingSummarizer(
            make_provider([ProviderError("down")]), store, turn_interval=2
        )

        async def scenario():
            await seed(store, turns=1)
            task = summarizer.schedule("s1")
            await summarizer.drain()
            return task

        task = asyncio.run(scenario())

        assert task.exception() is None
        assert asyncio.run(store.get_summary("s1")) == ""

    def test_schedule_skipped_during_cooldown(self, make_provider):
        """Test no summary work starts while rate limited."""
        cooldown = RateLimitCooldown(60)
        cooldown.trip()
        summarizer = RollingSummarizer(
            make_provider(["unused"]), InMemoryConversationStore(), cooldown=cooldown
        )

        async def scenario():
            return summarizer.schedule("s1")

        assert asyncio.run(scenario()) is None

    @pytest.mark.parametrize("interval", [0, -1])
    def test_disabled_interval(self, make_provider, interval):
        """Test a non-positive interval disables scheduling."""
        summarizer = RollingSummarizer(
            make_provider(["unused"]), InMemoryConversationStore(), turn_interval=interval
        )

        async def scenario():
            return summarizer.schedule("s1")

        assert asyncio.run(scenario()) is None
