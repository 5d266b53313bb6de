"""AI-backed document analyzer for the discovery pipeline."""

import json
from pathlib import Path
from typing import Any

from tierstore.ai.base import BaseDocumentAnalyzer
from tierstore.ai.client_base import BaseAnalysisClient
from tierstore.ai.exceptions import AnalysisError, AnalysisValidationError
from tierstore.ai.models import DocumentAnalysis
from tierstore.ai.prompt_loader import load_json_schema, load_prompt_template
from tierstore.ai.validator import validate_and_build
from tierstore.logging.logger import Log
from tierstore.registry.constants import CATEGORIES


class DocumentAnalyzer(BaseDocumentAnalyzer):
    """Summarizes and classifies documents through a chat completion client."""

    SYSTEM_PROMPT = (
        "You are a records assistant for a nonprofit organization. "
        "You answer only with JSON that follows the requested schema."
    )

    def __init__(
        self,
        *,
        client: BaseAnalysisClient,
        model: str,
        temperature: float = 0.0,
        prompt_dir: Path | None = None,
    ) -> None:
        self._client = client
        self._model = model
        self._temperature = max(0.0, min(0.3, temperature))
        self._templates = {
            name: load_prompt_template(name, prompt_dir)
            for name in ("classify", "summarize", "key_points")
        }
        self._schemas = {
            name: load_json_schema(name, prompt_dir)
            for name in ("classify", "summarize", "key_points")
        }

    @property
    def client(self) -> BaseAnalysisClient:
        return self._client

    def summarize(self, text: str) -> str:
        parsed = self._complete("summarize", document_text=text)
        summary = parsed.get("summary")
        if not isinstance(summary, str):
            raise AnalysisValidationError("'summary' must be a string")
        return summary.strip()

    def extract_key_points(self, text: str, num_points: int = 5) -> list[str]:
        parsed = self._complete("key_points", document_text=text, num_points=num_points)
        points = parsed.get("key_points")
        if not isinstance(points, list) or not all(isinstance(p, str) for p in points):
            raise AnalysisValidationError("'key_points' must be a list of strings")
        return [p.strip() for p in points if p.strip()][:num_points]

    def classify(self, text: str, filename: str) -> DocumentAnalysis:
        parsed = self._complete(
            "classify",
            document_text=text,
            filename=filename,
            categories=", ".join(sorted(CATEGORIES)),
        )
        analysis = validate_and_build(parsed)
        Log.info(
            f"Classified {filename} as {analysis.category} "
            f"(confidence {analysis.confidence:.2f})"
        )
        return analysis

    def _complete(self, name: str, **values: Any) -> dict[str, Any]:
        schema = self._schemas[name]
        prompt = self._templates[name].format(json_schema=schema, **values)
        Log.debug(f"Analysis prompt ({name}):\n{prompt}")
        raw = self._client.create_chat_completion(
            model=self._model,
            temperature=self._temperature,
            system_prompt=self.SYSTEM_PROMPT,
            user_prompt=prompt,
            schema_name=f"document_{name}",
            json_schema=json.loads(schema),
        )
        Log.debug(f"AI raw response ({name}):\n{raw}")
        return self._parse_json(raw)

    @staticmethod
    def _parse_json(raw: str) -> dict[str, Any]:
        cleaned = raw.strip()
        if cleaned.startswith("```"):
            lines = cleaned.splitlines()
            if lines and lines[0].startswith("```"):
                lines = lines[1:]
            if lines and lines[-1].strip() == "```":
                lines = lines[:-1]
            cleaned = "\n".join(lines)

        try:
            parsed = json.loads(cleaned)
        except json.JSONDecodeError as exc:
            raise AnalysisError(f"Invalid JSON response: {exc}") from exc

        if not isinstance(parsed, dict):
            raise AnalysisError("JSON response must be an object")
        return parsed
