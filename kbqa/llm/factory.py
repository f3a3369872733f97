"""Provider factory for creating LLM providers from configuration."""

from __future__ import annotations

from kbqa.config import ProviderConfig
from kbqa.llm.base import BaseProvider
from kbqa.llm.chat_model import ChatModelProvider
from kbqa.llm.gemini import GeminiProvider
from kbqa.llm.openai import OpenAIProvider

SUPPORTED_PROVIDERS = ("gemini", "openai", "langchain-gemini")


def create_provider(config: ProviderConfig) -> BaseProvider:
    """Create a provider instance from its configuration section.

    Args:
        config: Provider section with provider, model, api_key and sampling options

    Returns:
        BaseProvider configured with the provided settings

    Raises:
        ValueError: If provider is not supported or config is invalid
    """
    provider = config.provider
    label = config.label or f"{provider}:{config.model}"

    if provider == "gemini":
        return GeminiProvider(
            model=config.model,
            api_key=config.api_key,
            temperature=config.temperature,
            max_tokens=config.max_tokens,
            timeout=config.timeout,
            label=label,
        )
    if provider == "openai":
        return OpenAIProvider(
            model=config.model,
            api_key=config.api_key,
            base_url=config.base_url,
            temperature=config.temperature,
            max_tokens=config.max_tokens,
            timeout=config.timeout,
            label=label,
        )
    if provider == "langchain-gemini":
        if not config.api_key:
            raise ValueError("GEMINI_API_KEY is required")
        try:
            from langchain_google_genai import ChatGoogleGenerativeAI
        except ImportError as exc:  # pragma: no cover
            raise RuntimeError(
                "langchain-google-genai is required to use the langchain-gemini provider"
            ) from exc

        chat_model = ChatGoogleGenerativeAI(
            model=config.model,
            google_api_key=config.api_key,
            temperature=config.temperature,
            max_output_tokens=config.max_tokens,
        )
        return ChatModelProvider(chat_model, model=config.model, label=label)

    raise ValueError(
        f"Unsupported LLM provider: {provider}. Supported: {', '.join(SUPPORTED_PROVIDERS)}"
    )
