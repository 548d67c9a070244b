"""
Service wiring

Builds every pipeline component once from a BrainConfig and hands them out
explicitly. There are no module-level singletons: the server keeps one
BrainServices on app.state and tests build their own with fakes.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

from .common.article_store import ArticleStore
from .common.config import BrainConfig
from .common.embedding_service import EmbeddingService
from .common.llm_client import LLMClient
from .common.model_chain import ModelChain, build_candidates
from .common.schemas.organization import OrganizationSnapshot, load_snapshot
from .common.vector_client import VectorClient
from .ingest.extractor import Extractor
from .ingest.ingestor import KnowledgeIngestor
from .ingest.metadata_extractor import MetadataExtractor
from .retriever.context_assembler import ContextAssembler
from .retriever.knowledge_index import KnowledgeIndex
from .retriever.synthesizer import AnswerResponse, Synthesizer

logger = logging.getLogger("brain.services")


@dataclass
class BrainServices:
    """All long-lived components of one process"""
    config: BrainConfig
    llm: LLMClient
    chain: ModelChain
    embedder: EmbeddingService
    vectors: VectorClient
    store: ArticleStore
    index: KnowledgeIndex
    extractor: Extractor
    ingestor: KnowledgeIngestor
    assembler: ContextAssembler
    synthesizer: Synthesizer

    async def load_snapshot(self) -> OrganizationSnapshot:
        return await asyncio.to_thread(load_snapshot, self.config.storage.data_dir)

    async def ask(
        self,
        question: str,
        scope: Optional[str] = None,
        snapshot: Optional[OrganizationSnapshot] = None,
    ) -> AnswerResponse:
        """Question → context → answer"""
        if snapshot is None:
            snapshot = await self.load_snapshot()
        context = await self.assembler.assemble(question, scope, snapshot)
        return await self.synthesizer.answer(question, context)


def _embedding_api_key(config: BrainConfig) -> str:
    provider = (config.embedding.provider or "google").lower()
    return getattr(config.llm, f"{provider}_api_key", "")


def build_services(
    config: BrainConfig,
    *,
    llm: Optional[LLMClient] = None,
    embedder: Optional[EmbeddingService] = None,
    vectors: Optional[VectorClient] = None,
) -> BrainServices:
    """
    Construct the pipeline from configuration.

    Keyword arguments replace the external-service adapters (used by tests
    and by callers that share a client).
    """
    llm = llm or LLMClient(
        provider=config.llm.provider,
        model=config.llm.model,
        google_api_key=config.llm.google_api_key or None,
        anthropic_api_key=config.llm.anthropic_api_key or None,
        openai_api_key=config.llm.openai_api_key or None,
    )
    candidates = build_candidates(config.llm.model, config.llm.fallback_models)
    chain = ModelChain(llm, candidates, max_tokens=config.llm.max_tokens, timeout=config.llm.timeout)

    follow_up_chain = None
    if config.llm.follow_up_model:
        follow_up_chain = ModelChain(
            llm,
            build_candidates(config.llm.follow_up_model, candidates),
            max_tokens=512,
            timeout=config.llm.timeout,
        )

    embedder = embedder or EmbeddingService(
        provider=config.embedding.provider,
        model=config.embedding.model,
        api_key=_embedding_api_key(config) or None,
    )
    vectors = vectors or VectorClient(path=config.vector.path, collection=config.vector.collection)
    store = ArticleStore(config.storage.articles_dir)

    index = KnowledgeIndex(
        store,
        vectors,
        embedder,
        embed_char_budget=config.embedding.embed_char_budget,
        unrestricted_scopes=config.retriever.unrestricted_scopes,
    )
    extractor = Extractor(max_table_rows=config.ingest.max_table_rows)
    ingestor = KnowledgeIngestor(
        extractor,
        MetadataExtractor(chain, char_limit=config.ingest.metadata_char_limit),
        index,
        default_access_scope=config.ingest.default_access_scope,
        max_concurrency=config.ingest.max_concurrency,
        metadata_enabled=config.ingest.metadata_extraction,
    )
    assembler = ContextAssembler(
        index,
        topk=config.retriever.topk,
        max_projects=config.retriever.max_projects,
        max_members=config.retriever.max_members,
        record_char_limit=config.retriever.record_char_limit,
        context_char_limit=config.retriever.context_char_limit,
        article_char_limit=config.retriever.article_char_limit,
    )
    synthesizer = Synthesizer(
        chain,
        follow_up_chain=follow_up_chain,
        company=config.company,
        follow_ups_enabled=config.llm.follow_ups_enabled,
    )

    logger.info(
        "Services ready (llm=%s %s, candidates=%s, embeddings=%s)",
        config.llm.provider,
        "available" if llm.is_available else "unavailable",
        ", ".join(candidates),
        "available" if embedder.is_available else "unavailable",
    )

    return BrainServices(
        config=config,
        llm=llm,
        chain=chain,
        embedder=embedder,
        vectors=vectors,
        store=store,
        index=index,
        extractor=extractor,
        ingestor=ingestor,
        assembler=assembler,
        synthesizer=synthesizer,
    )
