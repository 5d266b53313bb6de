from typing import Any, ClassVar

from tierstore.ai.analyzer import DocumentAnalyzer
from tierstore.ai.base import BaseDocumentAnalyzer
from tierstore.ai.keyword_analyzer import KeywordDocumentAnalyzer
from tierstore.ai.openai_client_adapter import OpenAIClientAdapter
from tierstore.config.settings import Settings


class AnalyzerFactory:
    """Creates the configured document analyzer.

    Every chat provider reads ``ai_<provider>_api_key``, ``ai_<provider>_model_name``
    and ``ai_<provider>_timeout_seconds`` from settings. ``example`` needs no network.
    """

    OFFLINE_PROVIDER: ClassVar[str] = "example"
    DEFAULT_BASE_URLS: ClassVar[dict[str, str | None]] = {
        "openai": None,
        "openrouter": "https://openrouter.ai/api/v1",
        "ollama": "http://localhost:11434/v1",
    }

    @classmethod
    def supported_providers(cls) -> list[str]:
        return [cls.OFFLINE_PROVIDER, "openai_compatible", *sorted(cls.DEFAULT_BASE_URLS)]

    @classmethod
    def create(cls, settings: Settings) -> BaseDocumentAnalyzer:
        provider = settings.ai_provider.lower()
        if provider == cls.OFFLINE_PROVIDER:
            return KeywordDocumentAnalyzer()
        if provider not in cls.supported_providers():
            raise ValueError(
                f"Unknown AI provider '{provider}'. Choose from: {cls.supported_providers()}"
            )

        client = OpenAIClientAdapter(
            api_key=cls._setting(settings, provider, "api_key", ""),
            timeout_seconds=cls._setting(settings, provider, "timeout_seconds", 30),
            base_url=cls._base_url(provider, settings),
            provider_name=provider,
        )
        # Only the hosted OpenAI provider exposes a temperature knob.
        temperature = settings.ai_openai_temperature if provider == "openai" else 0.0
        return DocumentAnalyzer(
            client=client,
            model=cls._setting(settings, provider, "model_name", ""),
            temperature=temperature,
        )

    @staticmethod
    def _setting(settings: Settings, provider: str, name: str, default: Any) -> Any:
        return getattr(settings, f"ai_{provider}_{name}", None) or default

    @classmethod
    def _base_url(cls, provider: str, settings: Settings) -> str | None:
        if provider != "openai_compatible":
            return cls.DEFAULT_BASE_URLS[provider]
        url = settings.ai_openai_compatible_base_url.strip()
        if not url:
            raise ValueError(
                "ai_openai_compatible_base_url is required for ai_provider=openai_compatible"
            )
        return url
