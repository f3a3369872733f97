"""Service configuration."""

from __future__ import annotations

from dataclasses import dataclass, field
import importlib
import os
import re


def _expand_env_var(value: str) -> str:
    """Expand environment variables in the form ${VAR:-default}.

    Args:
        value: String possibly containing ${VAR:-default}

    Returns:
        Expanded string with environment variable or default value
    """
    if not isinstance(value, str):
        return value

    # Match ${VAR:-default} or ${VAR-default}
    pattern = r"\$\{([^:}]+):-?([^}]*)\}"

    def replace_env(match):
        var_name = match.group(1)
        default_value = match.group(2)
        return os.environ.get(var_name, default_value)

    return re.sub(pattern, replace_env, value)


def _expand_env(value):
    """Recursively expand env vars in strings inside dicts/lists."""
    if isinstance(value, str):
        return _expand_env_var(value)
    if isinstance(value, dict):
        return {k: _expand_env(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_expand_env(v) for v in value]
    return value


def _secret(value: str | None, env_var: str) -> str:
    """Use the configured secret, falling back to an environment variable."""
    if not value or "${" in str(value):
        return os.environ.get(env_var, "")
    return value


@dataclass
class ChunkingConfig:
    """Chunking configuration."""

    chunk_size: int = 1000
    chunk_overlap: int = 200


@dataclass
class EmbeddingConfig:
    """Embedding client configuration."""

    provider: str = "gemini"
    model: str = "models/text-embedding-004"
    api_key: str = ""
    timeout: float = 60.0
    batch_size: int = 100


@dataclass
class VectorStoreConfig:
    """Vector store configuration."""

    backend: str = "pgvector"
    database_url: str = ""
    table_name: str = "kbqa_chunks"
    embedding_dim: int = 768


@dataclass
class RetrievalConfig:
    """Hybrid search configuration.

    The 70/30 weighting and the agreement boost are tunable, not proven optimal.
    """

    top_k: int = 5
    semantic_top_n: int = 10
    semantic_weight: float = 0.7
    lexical_weight: float = 0.3
    fuzzy: float = 0.2
    prefix: bool = True
    branch_timeout: float = 10.0
    min_context_score: float = 0.25
    max_context_chars: int = 12000


@dataclass
class ProviderConfig:
    """Language-model provider configuration."""

    provider: str = "gemini"
    model: str = "gemini-2.5-flash"
    api_key: str = ""
    base_url: str = ""
    temperature: float = 0.3
    max_tokens: int = 2048
    timeout: float = 60.0
    label: str = ""


@dataclass
class GenerationConfig:
    """Generation orchestrator configuration."""

    primary: ProviderConfig = field(default_factory=ProviderConfig)
    fallback: ProviderConfig | None = None
    rate_limit_backoff_seconds: float = 60.0
    attempt_timeout: float = 120.0
    allow_general_knowledge: bool = False


@dataclass
class SummaryConfig:
    """Rolling conversation summary configuration."""

    enabled: bool = False
    turn_interval: int = 6
    max_messages: int = 12
    provider: ProviderConfig | None = None


@dataclass
class SafetyConfig:
    """Context sanitization and screening configuration."""

    max_context_chars: int = 50_000
    redaction_alert_threshold: int = 5
    screen_queries: bool = True


@dataclass
class QuotaConfig:
    """Ingest pre-flight limits. A limit of 0 disables that check."""

    tokens_per_chunk: int = 180
    token_limit: int = 100_000
    record_quota: int = 300


@dataclass
class Config:
    """Main configuration class."""

    chunking: ChunkingConfig = field(default_factory=ChunkingConfig)
    embedding: EmbeddingConfig = field(default_factory=EmbeddingConfig)
    vector_store: VectorStoreConfig = field(default_factory=VectorStoreConfig)
    retrieval: RetrievalConfig = field(default_factory=RetrievalConfig)
    generation: GenerationConfig = field(default_factory=GenerationConfig)
    summary: SummaryConfig = field(default_factory=SummaryConfig)
    safety: SafetyConfig = field(default_factory=SafetyConfig)
    quota: QuotaConfig = field(default_factory=QuotaConfig)
    log_level: str = "INFO"

    @classmethod
    def from_yaml(cls, path: str) -> "Config":
        """Load configuration from YAML file."""
        yaml = importlib.import_module("yaml")
        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}
        return cls.from_dict(data)

    @classmethod
    def from_dict(cls, data: dict) -> "Config":
        """Create config from dictionary."""
        data = _expand_env(data)

        embedding_data = dict(data.get("embedding", {}))
        embedding_provider = embedding_data.get("provider", "gemini")
        if embedding_provider not in ("gemini", "jina"):
            raise ValueError(
                f"Unsupported embedding provider: {embedding_provider}. Supported: gemini, jina"
            )
        embedding_data["api_key"] = _secret(
            embedding_data.get("api_key"),
            "JINA_API_KEY" if embedding_provider == "jina" else "GEMINI_API_KEY",
        )

        vector_store_data = dict(data.get("vector_store", {}))
        vector_store_data["database_url"] = _secret(
            vector_store_data.get("database_url"), "DATABASE_URL"
        )
        if vector_store_data.get("backend", "pgvector") not in ("pgvector", "memory"):
            raise ValueError("vector_store.backend must be 'pgvector' or 'memory'")

        generation_data = dict(data.get("generation", {}))
        primary = _provider_from_dict(generation_data.pop("primary", {}))
        fallback_data = generation_data.pop("fallback", None)
        fallback = _provider_from_dict(fallback_data) if fallback_data else None

        summary_data = dict(data.get("summary", {}))
        summary_provider = summary_data.pop("provider", None)

        return cls(
            chunking=ChunkingConfig(**data.get("chunking", {})),
            embedding=EmbeddingConfig(**embedding_data),
            vector_store=VectorStoreConfig(**vector_store_data),
            retrieval=RetrievalConfig(**data.get("retrieval", {})),
            generation=GenerationConfig(
                primary=primary, fallback=fallback, **generation_data
            ),
            summary=SummaryConfig(
                provider=_provider_from_dict(summary_provider) if summary_provider else None,
                **summary_data,
            ),
            safety=SafetyConfig(**data.get("safety", {})),
            quota=QuotaConfig(**data.get("quota", {})),
            log_level=data.get("log_level", "INFO"),
        )

    @classmethod
    def from_env(cls) -> "Config":
        """Load config from environment variables."""
        fallback = None
        if os.environ.get("OPENAI_API_KEY"):
            fallback = ProviderConfig(
                provider="openai",
                model=os.environ.get("OPENAI_FALLBACK_MODEL", "gpt-4o-mini"),
                api_key=os.environ["OPENAI_API_KEY"],
                base_url=os.environ.get("OPENAI_BASE_URL", ""),
            )

        return cls(
            embedding=EmbeddingConfig(
                provider=os.environ.get("EMBEDDING_PROVIDER", "gemini"),
                model=os.environ.get("EMBEDDING_MODEL", "models/text-embedding-004"),
                api_key=os.environ.get("GEMINI_API_KEY", "")
                if os.environ.get("EMBEDDING_PROVIDER", "gemini") == "gemini"
                else os.environ.get("JINA_API_KEY", ""),
            ),
            vector_store=VectorStoreConfig(
                backend=os.environ.get("VECTOR_BACKEND", "pgvector"),
                database_url=os.environ.get("DATABASE_URL", ""),
                table_name=os.environ.get("VECTOR_TABLE_NAME", "kbqa_chunks"),
                embedding_dim=int(os.environ.get("EMBEDDING_DIM", "768")),
            ),
            retrieval=RetrievalConfig(
                min_context_score=float(os.environ.get("MIN_CONTEXT_SCORE", "0.25")),
            ),
            generation=GenerationConfig(
                primary=ProviderConfig(
                    provider="gemini",
                    model=os.environ.get("PRIMARY_MODEL", "gemini-2.5-flash"),
                    api_key=os.environ.get("GEMINI_API_KEY", ""),
                ),
                fallback=fallback,
                rate_limit_backoff_seconds=float(
                    os.environ.get("RATE_LIMIT_BACKOFF_SECONDS", "60")
                ),
                allow_general_knowledge=os.environ.get("ALLOW_GENERAL_FALLBACK") == "true",
            ),
            summary=SummaryConfig(
                enabled=os.environ.get("ENABLE_ROLLING_SUMMARY") == "true",
                turn_interval=int(os.environ.get("SUMMARY_TURN_INTERVAL", "6")),
                max_messages=int(os.environ.get("SUMMARY_MAX_MESSAGES", "12")),
            ),
            log_level=os.environ.get("LOG_LEVEL", "INFO"),
        )


def _provider_from_dict(data: dict) -> ProviderConfig:
    """Build a provider section, resolving the API key from the environment."""
    data = dict(data)
    provider = data.get("provider", "gemini")
    env_var = "OPENAI_API_KEY" if provider == "openai" else "GEMINI_API_KEY"
    data["api_key"] = _secret(data.get("api_key"), env_var)
    return ProviderConfig(**data)
