"""
Knowledge Index

Keeps two stores in step: the durable article store (full records) and the
vector index (embedding plus a small metadata projection, keyed by article
id). The two writes are not atomic. Every disagreement that is noticed is
logged as an IndexInconsistency warning and can be repaired by re-upserting
the article or by running reconcile().
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Iterable, List, Optional

from ..common.article_store import ArticleStore
from ..common.embedding_service import EmbeddingService
from ..common.errors import EmbeddingUnavailable, IndexInconsistency
from ..common.schemas.knowledge import KnowledgeArticle, ScoredArticle
from ..common.vector_client import VectorClient

logger = logging.getLogger("brain.retriever.knowledge_index")

# Extra vector hits fetched beyond the requested limit
SEARCH_OVERFETCH = 10


@dataclass
class ReconcileReport:
    """Outcome of one consistency sweep"""
    reindexed: List[str] = field(default_factory=list)
    removed_orphans: List[str] = field(default_factory=list)
    unsearchable: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors


def _report_inconsistency(article_id: str, detail: str) -> IndexInconsistency:
    issue = IndexInconsistency(article_id, detail)
    logger.warning("%s", issue)
    return issue


class KnowledgeIndex:
    """
    Durable article records plus a parallel vector index.

    All blocking store, embedding, and vector calls run in worker threads so
    the event loop is never blocked.
    """

    def __init__(
        self,
        store: ArticleStore,
        vectors: VectorClient,
        embedder: EmbeddingService,
        embed_char_budget: int = 8000,
        unrestricted_scopes: Iterable[str] = ("admin",),
    ):
        """
        Initialize knowledge index.

        Args:
            store: Durable article store
            vectors: Vector index client
            embedder: Embedding service for articles and queries
            embed_char_budget: Max content chars used for an article embedding
            unrestricted_scopes: Scopes that may see every article
        """
        self._store = store
        self._vectors = vectors
        self._embedder = embedder
        self._embed_char_budget = embed_char_budget
        self._unrestricted = set(unrestricted_scopes)

    def effective_scope(self, scope: Optional[str]) -> Optional[str]:
        """None means no scope restriction"""
        if scope is None or scope in self._unrestricted:
            return None
        return scope

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def upsert(self, article: KnowledgeArticle) -> bool:
        """
        Persist an article and (re)index its embedding.

        Same id overwrites both stores. A durable write failure propagates;
        embedding or vector failures leave the article durable but not
        searchable.

        Returns:
            True if the article is searchable after the call
        """
        await asyncio.to_thread(self._store.put, article)
        return await self._index_vector(article)

    async def _index_vector(self, article: KnowledgeArticle) -> bool:
        vector: List[float] = []
        if article.content and article.content.strip():
            try:
                vector = await asyncio.to_thread(
                    self._embedder.embed_single,
                    article.embedding_text(self._embed_char_budget),
                )
            except EmbeddingUnavailable as e:
                logger.warning("Article %s stored without embedding: %s", article.id, e)

        if not vector:
            # Unembeddable: make sure no stale vector keeps it searchable
            result = await asyncio.to_thread(self._vectors.delete, article.id)
            if not result.get("ok"):
                _report_inconsistency(
                    article.id, f"stale vector could not be removed: {result.get('error')}",
                )
            logger.info("Article %s is not searchable (no embedding)", article.id)
            return False

        result = await asyncio.to_thread(
            self._vectors.upsert, article.id, vector, article.index_metadata(),
        )
        if not result.get("ok"):
            _report_inconsistency(
                article.id, f"durable record written but vector upsert failed: {result.get('error')}",
            )
            return False

        logger.debug("Indexed article %s (%d dims)", article.id, len(vector))
        return True

    async def delete(self, article_id: str) -> bool:
        """
        Remove an article from both stores.

        Returns:
            True only if both removals succeeded
        """
        durable_ok = True
        try:
            await asyncio.to_thread(self._store.delete, article_id)
        except (OSError, ValueError) as e:
            durable_ok = False
            _report_inconsistency(article_id, f"durable deletion failed: {e!r}")

        result = await asyncio.to_thread(self._vectors.delete, article_id)
        vector_ok = bool(result.get("ok"))
        if not vector_ok:
            state = "after durable deletion" if durable_ok else "and durable deletion also failed"
            _report_inconsistency(
                article_id, f"vector deletion failed {state}: {result.get('error')}",
            )

        if durable_ok and vector_ok:
            logger.info("Deleted article %s", article_id)
        return durable_ok and vector_ok

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def search(
        self,
        query: str,
        scope: Optional[str] = None,
        limit: int = 5,
    ) -> List[ScoredArticle]:
        """
        Semantic search restricted to articles visible to ``scope``.

        Ordered by descending similarity, ties broken by most recent
        updated_at. Any embedding or vector failure yields [].
        """
        if not query or not query.strip() or limit <= 0:
            return []

        scope = self.effective_scope(scope)

        try:
            vector = await asyncio.to_thread(self._embedder.embed_single, query)
        except EmbeddingUnavailable as e:
            logger.warning("Search degraded to no results, embedding unavailable: %s", e)
            return []
        if not vector:
            return []

        # Over-fetch so ties straddling the limit and hits dropped by the
        # durable re-check do not decide what gets cut
        fetch = limit + SEARCH_OVERFETCH
        result = await asyncio.to_thread(self._vectors.query, vector, scope, fetch)
        if not result.get("ok"):
            logger.warning("Vector query failed: %s", result.get("error"))
            return []

        scored = []
        for hit in self._vectors.parse_query_results(result):
            article = await asyncio.to_thread(self._store.get, hit["id"])
            if article is None:
                _report_inconsistency(hit["id"], "vector entry has no durable record")
                continue
            if not article.is_visible_to(scope):
                # Vector metadata is stale relative to the durable record
                logger.debug("Dropping %s: not visible to scope %s", article.id, scope)
                continue
            scored.append(ScoredArticle(article=article, score=hit["score"]))

        scored.sort(key=lambda s: (s.score, s.article.updated_at), reverse=True)
        return scored[:limit]

    async def get(self, article_id: str) -> Optional[KnowledgeArticle]:
        return await asyncio.to_thread(self._store.get, article_id)

    async def list_articles(self, scope: Optional[str] = None) -> List[KnowledgeArticle]:
        """Durable articles visible to ``scope``, newest first"""
        scope = self.effective_scope(scope)
        articles = await asyncio.to_thread(self._store.list_all)
        return [a for a in articles if a.is_visible_to(scope)]

    # ------------------------------------------------------------------
    # Consistency sweep
    # ------------------------------------------------------------------

    async def reconcile(self) -> ReconcileReport:
        """
        Bring the vector index back in line with the durable store.

        Durable articles without a vector are re-indexed; vector entries
        without a durable record are removed.
        """
        report = ReconcileReport()

        listed = await asyncio.to_thread(self._vectors.list_ids)
        if not listed.get("ok"):
            report.errors.append(f"vector listing failed: {listed.get('error')}")
            logger.error("Reconcile aborted: %s", report.errors[-1])
            return report

        vector_ids = set(listed.get("results", []))
        durable_ids = set(await asyncio.to_thread(self._store.list_ids))

        for orphan_id in sorted(vector_ids - durable_ids):
            result = await asyncio.to_thread(self._vectors.delete, orphan_id)
            if result.get("ok"):
                report.removed_orphans.append(orphan_id)
            else:
                report.errors.append(f"{orphan_id}: {result.get('error')}")

        for article_id in sorted(durable_ids - vector_ids):
            article = await asyncio.to_thread(self._store.get, article_id)
            if article is None:
                report.errors.append(f"{article_id}: unreadable durable record")
                continue
            if await self._index_vector(article):
                report.reindexed.append(article_id)
            else:
                report.unsearchable.append(article_id)

        logger.info(
            "Reconcile done: %d reindexed, %d orphans removed, %d unsearchable, %d errors",
            len(report.reindexed), len(report.removed_orphans),
            len(report.unsearchable), len(report.errors),
        )
        return report
