from dataclasses import replace

from tierstore.ai.base import BaseDocumentAnalyzer
from tierstore.database.connection import get_connection
from tierstore.database.repositories.discovery_repository import DiscoveryRepository
from tierstore.database.repositories.file_repository import FileRepository
from tierstore.discovery.exceptions import DiscoveryError, DiscoveryNotFoundError
from tierstore.discovery.pipeline import DiscoveryContext, PipelineStep
from tierstore.extraction.factory import TextExtractorFactory
from tierstore.logging.logger import Log
from tierstore.storage.local_adapter import remove_temp_file
from tierstore.storage.resolver import TierResolver


class LoadFileStep(PipelineStep):
    def __init__(self, file_repo: FileRepository, resolver: TierResolver) -> None:
        self._file_repo = file_repo
        self._resolver = resolver

    def run(self, context: DiscoveryContext) -> DiscoveryContext:
        with get_connection() as conn:
            record = self._file_repo.find_by_id(conn, context.file_id)
        if record is None:
            raise DiscoveryNotFoundError(f"File {context.file_id} no longer exists")
        location, path = self._resolver.fetch(context.file_id)
        try:
            context.raw_bytes = path.read_bytes()
        finally:
            remove_temp_file(path)
        context.file = record
        Log.info(
            f"Loaded {len(context.raw_bytes)} bytes of file {context.file_id} "
            f"from {location.tier}"
        )
        return context


class ExtractTextStep(PipelineStep):
    def __init__(self, extractors: TextExtractorFactory, max_chars: int) -> None:
        self._extractors = extractors
        self._max_chars = max_chars

    def run(self, context: DiscoveryContext) -> DiscoveryContext:
        if context.file is None:
            raise ValueError("DiscoveryContext.file must be set before text extraction")
        extractor = self._extractors.for_mime_type(context.file.mime_type)
        text = extractor.extract(context.raw_bytes)
        context.text = text[: self._max_chars]
        Log.info(
            f"Extracted {len(text)} chars from file {context.file_id}"
            + (f", using the first {self._max_chars}" if len(text) > self._max_chars else "")
        )
        return context


class AnalyzeStep(PipelineStep):
    def __init__(self, analyzer: BaseDocumentAnalyzer, num_key_points: int = 5) -> None:
        self._analyzer = analyzer
        self._num_key_points = num_key_points

    def run(self, context: DiscoveryContext) -> DiscoveryContext:
        if context.file is None:
            raise ValueError("DiscoveryContext.file must be set before analysis")
        if not context.text.strip():
            raise DiscoveryError(f"File {context.file_id} has no extractable text")
        analysis = self._analyzer.classify(context.text, context.file.filename)
        if not analysis.summary:
            summary = self._analyzer.summarize(context.text)
            analysis = replace(analysis, summary=summary)
        if not analysis.key_points:
            points = self._analyzer.extract_key_points(context.text, self._num_key_points)
            analysis = replace(analysis, key_points=points)
        context.analysis = analysis
        return context


class PersistDiscoveryStep(PipelineStep):
    """Stores the suggestions. Below ``high_threshold`` the record is flagged for review."""

    def __init__(self, discovery_repo: DiscoveryRepository, high_threshold: float) -> None:
        self._discovery_repo = discovery_repo
        self._high_threshold = high_threshold

    def run(self, context: DiscoveryContext) -> DiscoveryContext:
        analysis = context.analysis
        if analysis is None:
            raise ValueError("DiscoveryContext.analysis must be set before persist")
        # Judged on the stored two-decimal score so status and band always agree.
        confidence = round(analysis.confidence, 2)
        status = "needs_review" if confidence < self._high_threshold else "reviewed"
        with get_connection() as conn:
            record = self._discovery_repo.save_result(
                conn,
                context.file_id,
                status=status,
                category=analysis.category,
                subcategory=analysis.subcategory,
                confidence=confidence,
                summary=analysis.summary,
                key_points=analysis.key_points,
                tags=analysis.tags,
                entities=analysis.entities,
                document_date=analysis.document_date,
                language=analysis.language,
            )
            conn.commit()
        if record is None:
            raise DiscoveryError(f"Discovery record {context.file_id} is no longer processing")
        context.record = record
        Log.info(
            f"Discovery for file {context.file_id}: {analysis.category} "
            f"({confidence:.2f}) -> {status}"
        )
        return context

