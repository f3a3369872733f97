"""Pytest configuration and shared fakes for KB Q&A tests."""

import re
import sys
from pathlib import Path

import pytest

# Add repository root to path for imports
repo_root = Path(__file__).parent.parent.parent
sys.path.insert(0, str(repo_root))

from kbqa.llm.base import BaseProvider, StreamDelta, StreamFinish  # noqa: E402
from kbqa.storage.embeddings import BaseEmbeddings  # noqa: E402

VOCABULARY = ("deep", "learning", "neural", "network", "brain", "layers", "python", "database")


class KeywordEmbeddings(BaseEmbeddings):
    """Deterministic embeddings with one dimension per vocabulary keyword."""

    def __init__(self, vocabulary=VOCABULARY, error=None):
        super().__init__(model="keyword-test", api_key="test")
        self.vocabulary = vocabulary
        self.error = error
        self.calls = []

    def vector(self, text):
        lowered = text.lower()
        # Constant last dimension keeps every vector non-zero
        return [1.0 if word in lowered else 0.0 for word in self.vocabulary] + [0.1]

    async def embed(self, texts):
        self.calls.append(list(texts))
        if self.error is not None:
            raise self.error
        return [self.vector(t) for t in texts]

    async def _embed_batch(self, client, texts):
        return [self.vector(t) for t in texts]


class ScriptedProvider(BaseProvider):
    """Provider replaying one scripted outcome per call.

    Each outcome is either answer text (streamed word by word) or an
    exception raised before any delta. The last outcome repeats.
    """

    def __init__(self, outcomes, label="scripted", model="scripted-model"):
        super().__init__(model=model, label=label)
        self.outcomes = list(outcomes)
        self.calls = 0
        self.last_system_prompt = None
        self.last_messages = None

    async def stream_generate(self, system_prompt, messages):
        self.calls += 1
        self.last_system_prompt = system_prompt
        self.last_messages = list(messages)
        outcome = self.outcomes[min(self.calls, len(self.outcomes)) - 1]
        if isinstance(outcome, BaseException):
            raise outcome
        for piece in re.findall(r"\S+\s*|\s+", outcome):
            yield StreamDelta(text=piece)
        yield StreamFinish(full_text=outcome, finish_reason="stop", model=self.model)


@pytest.fixture
def embeddings():
    """Keyword embeddings over a small fixed vocabulary."""
    return KeywordEmbeddings()


@pytest.fixture
def make_embeddings():
    """Factory for keyword embeddings with custom options."""
    return KeywordEmbeddings


@pytest.fixture
def make_provider():
    """Factory for scripted providers."""
    return ScriptedProvider
