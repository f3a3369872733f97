"""Unit tests for configuration loading."""

import pytest

from kbqa.config import Config


class TestConfigDefaults:
    """Test suite for default values."""

    def test_retrieval_defaults(self):
        """Test fusion and top-K defaults."""
        config = Config()

        assert config.retrieval.top_k == 5
        assert config.retrieval.semantic_weight == 0.7
        assert config.retrieval.lexical_weight == 0.3
        assert config.retrieval.fuzzy == 0.2

    def test_chunking_and_safety_defaults(self):
        """Test chunk windows and sanitizer thresholds."""
        config = Config()

        assert config.chunking.chunk_size == 1000
        assert config.chunking.chunk_overlap == 200
        assert config.safety.max_context_chars == 50_000
        assert config.safety.redaction_alert_threshold == 5
        assert config.generation.rate_limit_backoff_seconds == 60.0
        assert config.generation.fallback is None


class TestConfigFromDict:
    """Test suite for Config.from_dict."""

    def test_sections(self, monkeypatch):
        """Test nested sections are parsed."""
        monkeypatch.delenv("GEMINI_API_KEY", raising=False)
        config = Config.from_dict(
            {
                "retrieval": {"top_k": 8, "semantic_weight": 0.6, "lexical_weight": 0.4},
                "vector_store": {"backend": "memory"},
                "generation": {
                    "primary": {"provider": "gemini", "model": "gemini-2.5-pro", "api_key": "g"},
                    "fallback": {"provider": "openai", "model": "gpt-4o-mini", "api_key": "o"},
                    "rate_limit_backoff_seconds": 30,
                },
                "summary": {"enabled": True, "turn_interval": 4},
                "log_level": "DEBUG",
            }
        )

        assert config.retrieval.top_k == 8
        assert config.retrieval.lexical_weight == 0.4
        assert config.vector_store.backend == "memory"
        assert config.generation.primary.model == "gemini-2.5-pro"
        assert config.generation.fallback.provider == "openai"
        assert config.generation.fallback.api_key == "o"
        assert config.generation.rate_limit_backoff_seconds == 30
        assert config.summary.enabled is True
        assert config.summary.turn_interval == 4
        assert config.log_level == "DEBUG"

    def test_env_expansion(self, monkeypatch):
        """Test ${VAR:-default} values are expanded."""
        monkeypatch.setenv("KBQA_TEST_DB", "postgresql://db/kb")
        monkeypatch.delenv("KBQA_TEST_TABLE", raising=False)
        config = Config.from_dict(
            {
                "vector_store": {
                    "database_url": "${KBQA_TEST_DB:-}",
                    "table_name": "${KBQA_TEST_TABLE:-chunks_default}",
                },
            }
        )

        assert config.vector_store.database_url == "postgresql://db/kb"
        assert config.vector_store.table_name == "chunks_default"

    def test_secrets_from_environment(self, monkeypatch):
        """Test missing API keys are read from provider environment variables."""
        monkeypatch.setenv("GEMINI_API_KEY", "gemini-secret")
        monkeypatch.setenv("OPENAI_API_KEY", "openai-secret")
        config = Config.from_dict({"generation": {"fallback": {"provider": "openai"}}})

        assert config.embedding.api_key == "gemini-secret"
        assert config.generation.primary.api_key == "gemini-secret"
        assert config.generation.fallback.api_key == "openai-secret"

    def test_invalid_embedding_provider(self):
        """Test unsupported embedding providers are rejected."""
        with pytest.raises(ValueError, match="Unsupported embedding provider"):
            Config.from_dict({"embedding": {"provider": "cohere"}})

    def test_invalid_backend(self):
        """Test unsupported vector store backends are rejected."""
        with pytest.raises(ValueError):
            Config.from_dict({"vector_store": {"backend": "sqlite"}})


class TestConfigFromFile:
    """Test suite for YAML and environment loading."""

    def test_from_yaml(self, tmp_path):
        """Test loading a YAML file."""
        path = tmp_path / "kbqa.yaml"
        path.write_text(
            "retrieval:\n"
            "  top_k: 3\n"
            "safety:\n"
            "  screen_queries: false\n"
            "quota:\n"
            "  record_quota: 10\n"
        )
        config = Config.from_yaml(str(path))

        assert config.retrieval.top_k == 3
        assert config.safety.screen_queries is False
        assert config.quota.record_quota == 10

    def test_from_empty_yaml(self, tmp_path):
        """Test an empty file yields defaults."""
        path = tmp_path / "empty.yaml"
        path.write_text("")

        assert Config.from_yaml(str(path)).retrieval.top_k == 5

    def test_from_env(self, monkeypatch):
        """Test environment-only configuration."""
        monkeypatch.setenv("GEMINI_API_KEY", "gemini-secret")
        monkeypatch.setenv("OPENAI_API_KEY", "openai-secret")
        monkeypatch.setenv("VECTOR_BACKEND", "memory")
        monkeypatch.setenv("ENABLE_ROLLING_SUMMARY", "true")
        monkeypatch.setenv("RATE_LIMIT_BACKOFF_SECONDS", "15")
        config = Config.from_env()

        assert config.embedding.api_key == "gemini-secret"
        assert config.vector_store.backend == "memory"
        assert config.generation.fallback.provider == "openai"
        assert config.generation.rate_limit_backoff_seconds == 15.0
        assert config.summary.enabled is True

    def test_from_env_without_fallback(self, monkeypatch):
        """Test no fallback is configured without an OpenAI key."""
        monkeypatch.delenv("OPENAI_API_KEY", raising=False)

        assert Config.from_env().generation.fallback is None
