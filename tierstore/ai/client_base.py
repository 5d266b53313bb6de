from abc import ABC, abstractmethod


class BaseAnalysisClient(ABC):
    """Contract for provider-specific chat completion clients."""

    @abstractmethod
    def create_chat_completion(
        self,
        *,
        model: str,
        temperature: float,
        system_prompt: str,
        user_prompt: str,
        schema_name: str,
        json_schema: dict[str, object],
    ) -> str:
        """Return provider response as plain text."""

    @abstractmethod
    def test_connection(self) -> bool:
        """Return True if the provider answers. Must never raise."""

    @abstractmethod
    def get_provider_name(self) -> str:
        pass
