"""
Company Brain

Internal knowledge retrieval and answer generation.

Philosophy:
- Every article is plain text; binaries never reach the index
- Retrieval is best-effort augmentation, never a hard dependency
- Model output is untrusted text: structured fields always have a default

Usage:
    from brain.common import load_config
    from brain.services import build_services
    from brain.ingest import KnowledgeIngestor, IngestRequest
    from brain.retriever import ContextAssembler, Synthesizer
"""

__version__ = "0.1.0"
