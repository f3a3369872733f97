"""Tests for the command-line interface."""

import asyncio

import pytest

from kbqa.api.dependencies import build_components
from kbqa.cli import build_parser, load_config, run_ingest, run_search, run_serve
from kbqa.config import Config
from kbqa.storage.vectorstore import InMemoryVectorStore


@pytest.fixture
def components(embeddings, make_provider):
    """Components over in-memory storage."""
    return build_components(
        Config(),
        embeddings=embeddings,
        vector_store=InMemoryVectorStore(),
        primary=make_provider(["An answer."]),
    )


class TestParser:
    """Test suite for argument parsing."""

    def test_ingest(self):
        """Test ingest takes one or more paths."""
        args = build_parser().parse_args(["ingest", "a.md", "b.md"])

        assert args.command == "ingest"
        assert args.paths == ["a.md", "b.md"]

    def test_search_with_config(self):
        """Test global options come before the subcommand."""
        args = build_parser().parse_args(["--config", "custom.yaml", "search", "deep learning"])

        assert args.config == "custom.yaml"
        assert args.command == "search"
        assert args.query == "deep learning"

    def test_ask_session(self):
        """Test ask accepts a session ID."""
        args = build_parser().parse_args(["ask", "what is it?", "--session-id", "abc"])

        assert args.session_id == "abc"

    def test_serve_defaults(self):
        """Test serve binds to localhost:8000 by default."""
        args = build_parser().parse_args(["serve"])

        assert (args.host, args.port) == ("127.0.0.1", 8000)

    def test_command_required(self):
        """Test a subcommand is mandatory."""
        with pytest.raises(SystemExit):
            build_parser().parse_args([])


class TestCommands:
    """Test suite for command implementations."""

    def test_load_config_from_file(self, tmp_path):
        """Test an existing config file is loaded."""
        path = tmp_path / "kbqa.yaml"
        path.write_text("retrieval:\n  top_k: 2\n")

        assert load_config(str(path)).retrieval.top_k == 2

    def test_load_config_falls_back_to_env(self, tmp_path, monkeypatch):
        """Test a missing config file falls back to environment variables."""
        monkeypatch.setenv("VECTOR_BACKEND", "memory")
        config = load_config(str(tmp_path / "missing.yaml"))

        assert config.vector_store.backend == "memory"

    def test_ingest_and_search(self, components, tmp_path, capsys):
        """Test files are ingested and then found by search."""
        doc = tmp_path / "dl.md"
        doc.write_text("Deep learning uses multiple layers.")
        missing = tmp_path / "missing.md"

        failures = asyncio.run(run_ingest(components, [str(doc), str(missing)]))
        asyncio.run(run_search(components, "deep learning"))

        output = capsys.readouterr().out
        assert failures == 1
        assert "Indexed: 1" in output
        assert str(doc) in output
        assert "semantic+lexical" in output

    def test_serve_runs_uvicorn(self, monkeypatch):
        """Test serve hands a FastAPI app to uvicorn."""
        calls = []
        monkeypatch.setattr(
            "kbqa.cli.uvicorn.run", lambda app, **kwargs: calls.append((app, kwargs))
        )
        monkeypatch.setattr("kbqa.cli.build_components", lambda config: None)

        run_serve(Config(), "0.0.0.0", 9000)

        app, kwargs = calls[0]
        assert app.title == "KB Q&A API"
        assert kwargs == {"host": "0.0.0.0", "port": 9000, "log_level": "info"}
