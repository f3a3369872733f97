"""Component wiring and FastAPI dependencies."""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

from fastapi import Request

from kbqa.config import Config
from kbqa.llm.base import BaseProvider
from kbqa.llm.factory import create_provider
from kbqa.pipeline.chunk import ChunkingStrategy
from kbqa.pipeline.ingest import IngestionPipeline
from kbqa.rag.context_builder import ContextBuilder
from kbqa.rag.conversation import ConversationStore, InMemoryConversationStore
from kbqa.rag.orchestrator import GenerationOrchestrator, RateLimitCooldown
from kbqa.rag.service import ChatService
from kbqa.rag.summary import RollingSummarizer
from kbqa.retrieval.hybrid import HybridSearcher
from kbqa.safety.sanitizer import ContextSanitizer
from kbqa.storage.embeddings import BaseEmbeddings, create_embeddings
from kbqa.storage.lexical_index import LexicalIndex
from kbqa.storage.vectorstore import BaseVectorStore, create_vector_store

DEFAULT_CONFIG_PATH = "kbqa.yaml"


@lru_cache
def get_config() -> Config:
    """Get cached configuration.

    Reads the YAML file named by KBQA_CONFIG (default: kbqa.yaml), falling
    back to environment variables when it does not exist.
    """
    config_path = os.environ.get("KBQA_CONFIG", DEFAULT_CONFIG_PATH)
    if os.path.exists(config_path):
        return Config.from_yaml(config_path)
    return Config.from_env()


@dataclass
class Components:
    """Everything a running service needs, built once per process."""

    config: Config
    embeddings: BaseEmbeddings
    vector_store: BaseVectorStore
    lexical_index: LexicalIndex
    searcher: HybridSearcher
    pipeline: IngestionPipeline
    orchestrator: GenerationOrchestrator
    service: ChatService
    store: ConversationStore
    summarizer: Optional[RollingSummarizer] = None


def build_components(
    config: Config,
    embeddings: BaseEmbeddings | None = None,
    vector_store: BaseVectorStore | None = None,
    primary: BaseProvider | None = None,
    fallback: BaseProvider | None = None,
    store: ConversationStore | None = None,
) -> Components:
    """Build all components from configuration.

    Any collaborator passed explicitly is used instead of the configured one.
    """
    embeddings = embeddings or create_embeddings(
        provider=config.embedding.provider,
        model=config.embedding.model,
        api_key=config.embedding.api_key,
        timeout=config.embedding.timeout,
        batch_size=config.embedding.batch_size,
    )
    vector_store = vector_store or create_vector_store(
        backend=config.vector_store.backend,
        database_url=config.vector_store.database_url,
        table_name=config.vector_store.table_name,
        embedding_dim=config.vector_store.embedding_dim,
    )
    retrieval = config.retrieval
    lexical_index = LexicalIndex(fuzzy=retrieval.fuzzy, prefix=retrieval.prefix)

    searcher = HybridSearcher(
        embeddings=embeddings,
        vector_store=vector_store,
        lexical_index=lexical_index,
        top_k=retrieval.top_k,
        semantic_top_n=retrieval.semantic_top_n,
        semantic_weight=retrieval.semantic_weight,
        lexical_weight=retrieval.lexical_weight,
        fuzzy=retrieval.fuzzy,
        branch_timeout=retrieval.branch_timeout,
    )
    pipeline = IngestionPipeline(
        embeddings=embeddings,
        vector_store=vector_store,
        lexical_index=lexical_index,
        chunker=ChunkingStrategy(config.chunking),
        tokens_per_chunk=config.quota.tokens_per_chunk,
        token_limit=config.quota.token_limit,
        record_quota=config.quota.record_quota,
    )

    generation = config.generation
    primary = primary or create_provider(generation.primary)
    if fallback is None and generation.fallback is not None:
        fallback = create_provider(generation.fallback)

    store = store or InMemoryConversationStore()
    cooldown = RateLimitCooldown(generation.rate_limit_backoff_seconds)

    summarizer = None
    if config.summary.enabled:
        summary_provider = (
            create_provider(config.summary.provider) if config.summary.provider else primary
        )
        summarizer = RollingSummarizer(
            provider=summary_provider,
            store=store,
            turn_interval=config.summary.turn_interval,
            max_messages=config.summary.max_messages,
            cooldown=cooldown,
        )

    orchestrator = GenerationOrchestrator(
        primary=primary,
        fallback=fallback,
        cooldown=cooldown,
        store=store,
        summarizer=summarizer,
        attempt_timeout=generation.attempt_timeout,
        allow_general_knowledge=generation.allow_general_knowledge,
    )
    service = ChatService(
        searcher=searcher,
        sanitizer=ContextSanitizer(
            max_context_chars=config.safety.max_context_chars,
            redaction_alert_threshold=config.safety.redaction_alert_threshold,
        ),
        orchestrator=orchestrator,
        context_builder=ContextBuilder(
            max_length=retrieval.max_context_chars, min_score=retrieval.min_context_score
        ),
        store=store,
        screen_queries=config.safety.screen_queries,
        use_summary=config.summary.enabled,
    )

    return Components(
        config=config,
        embeddings=embeddings,
        vector_store=vector_store,
        lexical_index=lexical_index,
        searcher=searcher,
        pipeline=pipeline,
        orchestrator=orchestrator,
        service=service,
        store=store,
        summarizer=summarizer,
    )


# ========== Request Dependencies ==========


def get_components(request: Request) -> Components:
    return request.app.state.components


def get_chat_service(request: Request) -> ChatService:
    return get_components(request).service


def get_pipeline(request: Request) -> IngestionPipeline:
    return get_components(request).pipeline
