"""
Ingest - Knowledge Capture

Normalizes uploaded and synced documents into knowledge articles.

Key Components:
- Extractor: Plain-text extraction by media type
- MetadataExtractor: LLM-derived summary, category, and tags
- KnowledgeIngestor: Extract → enrich → index, single file or batch

Rules:
1. Unsupported file types produce a placeholder, never an error
2. A broken supported file fails only that file
3. Metadata is best-effort; model output never blocks ingestion
4. Batches run with a fixed concurrency cap
"""

from .extractor import Extractor, guess_media_type
from .ingestor import BatchResult, IngestFailure, IngestRequest, KnowledgeIngestor
from .metadata_extractor import ExtractedMetadata, MetadataExtractor

__all__ = [
    "Extractor",
    "guess_media_type",
    "BatchResult",
    "IngestFailure",
    "IngestRequest",
    "KnowledgeIngestor",
    "ExtractedMetadata",
    "MetadataExtractor",
]
