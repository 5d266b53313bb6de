import httpx
import openai

from tierstore.ai.client_base import BaseAnalysisClient
from tierstore.ai.exceptions import AnalysisError, AnalysisNetworkError
from tierstore.logging.logger import Log


class OpenAIClientAdapter(BaseAnalysisClient):
    """Analysis client built on the OpenAI-compatible chat API."""

    def __init__(
        self,
        *,
        api_key: str,
        timeout_seconds: int,
        base_url: str | None = None,
        provider_name: str = "openai",
    ) -> None:
        self._provider_name = provider_name
        self._client = openai.OpenAI(
            api_key=api_key,
            timeout=timeout_seconds,
            base_url=base_url,
        )

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
        messages = [{"role": "user", "content": user_prompt}]
        if system_prompt:
            messages.insert(0, {"role": "system", "content": system_prompt})
        Log.debug(f"Requesting {schema_name} from {self._provider_name} model {model}")
        try:
            response = self._client.chat.completions.create(
                model=model,
                temperature=temperature,
                response_format=self._schema_format(schema_name, json_schema),
                messages=messages,  # type: ignore[arg-type]
            )
        except (openai.APIConnectionError, httpx.ConnectError, httpx.TimeoutException) as exc:
            raise AnalysisNetworkError(f"AI provider network error: {exc}") from exc
        except openai.APIError as exc:
            raise AnalysisNetworkError(f"AI provider API error: {exc}") from exc

        if not response.choices:
            raise AnalysisError("AI returned no choices")
        content = response.choices[0].message.content
        if content is None:
            raise AnalysisError("AI returned empty response")
        return content

    @staticmethod
    def _schema_format(schema_name: str, json_schema: dict[str, object]) -> dict[str, object]:
        return {
            "type": "json_schema",
            "json_schema": {"name": schema_name, "strict": True, "schema": json_schema},
        }

    def test_connection(self) -> bool:
        try:
            self._client.models.list()
        except (openai.APIError, httpx.HTTPError):
            return False
        return True

    def get_provider_name(self) -> str:
        return self._provider_name
