"""
Company Brain Common Module

Shared infrastructure for the ingest and retriever packages.
"""

from .article_store import ArticleStore
from .config import BrainConfig, load_config
from .embedding_service import EmbeddingService
from .llm_client import LLMClient
from .model_chain import ModelChain
from .vector_client import VectorClient

__all__ = [
    "ArticleStore",
    "BrainConfig",
    "load_config",
    "EmbeddingService",
    "LLMClient",
    "ModelChain",
    "VectorClient",
]
