from abc import ABC, abstractmethod
from dataclasses import dataclass, field

from tierstore.ai.models import DocumentAnalysis
from tierstore.database.models import DiscoveryRecord, FileRecord


@dataclass(slots=True)
class DiscoveryContext:
    file_id: str
    file: FileRecord | None = None
    raw_bytes: bytes = b""
    text: str = ""
    analysis: DocumentAnalysis | None = None
    record: DiscoveryRecord | None = None
    notes: list[str] = field(default_factory=list)


class PipelineStep(ABC):
    @abstractmethod
    def run(self, context: DiscoveryContext) -> DiscoveryContext:
        raise NotImplementedError


def confidence_band(score: float | None, high: float = 0.75, medium: float = 0.50) -> str:
    """Bucket a confidence score into ``high``, ``medium`` or ``low``."""
    if score is None:
        return "low"
    if score >= high:
        return "high"
    if score >= medium:
        return "medium"
    return "low"
