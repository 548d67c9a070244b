"""
Knowledge Ingestor

Turns raw files into indexed knowledge articles:
extract text → best-effort metadata → build article → KnowledgeIndex.upsert.

Batches are processed with a small fixed concurrency cap (sequential by
default) so a large sync never fans out unbounded calls to the embedding and
vector backends.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from ..common.article_store import validate_article_id
from ..common.errors import ExtractionFailed, InvalidArticleId
from ..common.schemas.knowledge import (
    KnowledgeArticle,
    SourceType,
    generate_article_id,
)
from ..retriever.knowledge_index import KnowledgeIndex
from .extractor import Extractor, placeholder_for
from .metadata_extractor import MetadataExtractor, fallback_metadata

logger = logging.getLogger("brain.ingest.ingestor")


@dataclass
class IngestRequest:
    """One file handed over by an ingestion trigger (upload, sync, manual)"""
    file_bytes: bytes
    media_type: str
    display_name: str
    source_url: Optional[str] = None
    access_scope: Optional[List[str]] = None
    source_type: SourceType = SourceType.UPLOAD
    article_id: Optional[str] = None  # set to re-ingest (replace) an article
    title: Optional[str] = None
    tags: List[str] = field(default_factory=list)


@dataclass
class IngestFailure:
    display_name: str
    error: str


@dataclass
class BatchResult:
    """Successful articles and per-file failures, both in input order"""
    articles: List[KnowledgeArticle] = field(default_factory=list)
    failures: List[IngestFailure] = field(default_factory=list)
    aborted: bool = False


class KnowledgeIngestor:
    """Ingestion pipeline for knowledge files"""

    def __init__(
        self,
        extractor: Extractor,
        metadata_extractor: MetadataExtractor,
        index: KnowledgeIndex,
        default_access_scope: Optional[List[str]] = None,
        max_concurrency: int = 1,
        metadata_enabled: bool = True,
    ):
        self._extractor = extractor
        self._metadata = metadata_extractor
        self._index = index
        self._default_scope = list(default_access_scope or ["general"])
        self._max_concurrency = max(1, max_concurrency)
        self._metadata_enabled = metadata_enabled

    def _article_id(self, request: IngestRequest) -> str:
        if request.article_id:
            return validate_article_id(request.article_id)
        if request.source_type == SourceType.EXTERNAL_SYNC and request.source_url:
            # Re-syncing the same source replaces the earlier article
            return generate_article_id(request.source_url)
        return generate_article_id()

    async def ingest(self, request: IngestRequest) -> KnowledgeArticle:
        """
        Ingest one file.

        Raises:
            ExtractionFailed: the file has a supported type but is broken
            InvalidArticleId: the explicit article_id cannot name a record
        """
        name = request.display_name
        article_id = self._article_id(request)
        text = await asyncio.to_thread(
            self._extractor.extract, request.file_bytes, request.media_type, name,
        )

        if self._metadata_enabled and text and text != placeholder_for(name):
            metadata = await self._metadata.extract(text, name)
        else:
            metadata = fallback_metadata(text)

        existing = await self._index.get(article_id)

        fields = dict(
            id=article_id,
            title=request.title or name or metadata.title or "Untitled",
            content=text,
            summary=metadata.summary,
            category=metadata.category,
            tags=[*metadata.tags, *request.tags],
            key_points=metadata.key_points,
            source_type=request.source_type,
            source_url=request.source_url,
            access_scope=request.access_scope or self._default_scope,
        )
        if existing is not None:
            fields["created_at"] = existing.created_at
        article = KnowledgeArticle(**fields)

        searchable = await self._index.upsert(article)
        logger.info(
            "Ingested %s as %s (%d chars, category=%s, searchable=%s%s)",
            name, article.id, len(text), article.category.value, searchable,
            ", replaced" if existing is not None else "",
        )
        return article

    async def ingest_batch(
        self,
        requests: Sequence[IngestRequest],
        stop_on_error: bool = False,
    ) -> BatchResult:
        """
        Ingest many files with bounded concurrency.

        A failing file is recorded and skipped. With stop_on_error, no new
        file is started after the first failure and the result is marked
        aborted.
        """
        semaphore = asyncio.Semaphore(self._max_concurrency)
        abort = asyncio.Event()
        outcomes: List[object] = [None] * len(requests)

        async def run(position: int, request: IngestRequest) -> None:
            async with semaphore:
                if abort.is_set():
                    return
                try:
                    outcomes[position] = await self.ingest(request)
                except (ExtractionFailed, InvalidArticleId) as e:
                    outcomes[position] = IngestFailure(request.display_name, str(e))
                    if stop_on_error:
                        abort.set()
                except Exception as e:
                    logger.error("Ingestion of %s failed", request.display_name, exc_info=True)
                    outcomes[position] = IngestFailure(request.display_name, repr(e))
                    if stop_on_error:
                        abort.set()

        await asyncio.gather(*(run(i, r) for i, r in enumerate(requests)))

        result = BatchResult(aborted=abort.is_set())
        for outcome in outcomes:
            if isinstance(outcome, KnowledgeArticle):
                result.articles.append(outcome)
            elif isinstance(outcome, IngestFailure):
                result.failures.append(outcome)

        logger.info(
            "Batch ingest: %d ingested, %d failed, %d skipped%s",
            len(result.articles), len(result.failures),
            sum(1 for o in outcomes if o is None),
            " (aborted)" if result.aborted else "",
        )
        return result
