"""Tests for the Knowledge Index (durable store + vector index)."""

import logging
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest
from brain.common.schemas import KnowledgeArticle
from brain.retriever.knowledge_index import KnowledgeIndex


def _article(article_id, title, content, scope=("general",), **kwargs):
    return KnowledgeArticle(id=article_id, title=title, content=content, access_scope=list(scope), **kwargs)


@pytest.fixture
def index(store, vectors, embedder):
    return KnowledgeIndex(store, vectors, embedder, embed_char_budget=8000, unrestricted_scopes=["admin"])


class TestUpsert:
    @pytest.mark.asyncio
    async def test_upsert_is_idempotent(self, index, store, vectors):
        article = _article("k-vac", "Vacation policy", "Vacation policy: 20 days/year")

        assert await index.upsert(article) is True
        assert await index.upsert(article) is True

        assert store.list_ids() == ["k-vac"]
        assert vectors.list_ids()["results"] == ["k-vac"]
        results = await index.search("vacation days", "general", limit=5)
        assert [r.article.id for r in results] == ["k-vac"]

    @pytest.mark.asyncio
    async def test_embedding_text_bounded_by_budget(self, store, vectors, embedder):
        index = KnowledgeIndex(store, vectors, embedder, embed_char_budget=10)
        await index.upsert(_article("k-1", "Title", "x" * 500, summary="Sum"))

        assert embedder.calls[-1] == "Title: Title\nSummary: Sum\nContent: " + "x" * 10

    @pytest.mark.asyncio
    async def test_empty_content_is_durable_but_not_searchable(self, index, store, vectors):
        await index.upsert(_article("k-1", "Empty", "words here"))
        assert vectors.list_ids()["results"] == ["k-1"]

        searchable = await index.upsert(_article("k-1", "Empty", ""))

        assert searchable is False
        assert store.get("k-1") is not None
        # The stale vector from the earlier version is gone
        assert vectors.list_ids()["results"] == []

    @pytest.mark.asyncio
    async def test_embedding_failure_keeps_durable_record(self, index, store, vectors, embedder, caplog):
        embedder.fail = True

        with caplog.at_level(logging.WARNING, logger="brain.retriever.knowledge_index"):
            searchable = await index.upsert(_article("k-1", "Policy", "text"))

        assert searchable is False
        assert store.get("k-1").title == "Policy"
        assert vectors.list_ids()["results"] == []
        assert "stored without embedding" in caplog.text

    @pytest.mark.asyncio
    async def test_vector_failure_logged_as_inconsistency(self, store, embedder, caplog):
        vectors = MagicMock()
        vectors.upsert.return_value = {"ok": False, "error": "backend down"}
        index = KnowledgeIndex(store, vectors, embedder)

        with caplog.at_level(logging.WARNING, logger="brain.retriever.knowledge_index"):
            searchable = await index.upsert(_article("k-1", "Policy", "text"))

        assert searchable is False
        assert store.get("k-1") is not None
        assert "Index inconsistency for k-1" in caplog.text
        assert "backend down" in caplog.text


class TestSearch:
    @pytest.mark.asyncio
    async def test_never_returns_out_of_scope_articles(self, index):
        await index.upsert(_article("k-hr", "Vacation policy", "vacation days per year", scope=["general"]))
        await index.upsert(_article("k-eng", "Deploy runbook", "vacation freeze during deploys", scope=["engineering"]))
        await index.upsert(_article("k-all", "Holiday calendar", "public holidays and vacation", scope=["all"]))

        general = {r.article.id for r in await index.search("vacation", "general", limit=10)}
        engineering = {r.article.id for r in await index.search("vacation", "engineering", limit=10)}

        assert general == {"k-hr", "k-all"}
        assert engineering == {"k-eng", "k-all"}

    @pytest.mark.asyncio
    async def test_unrestricted_scope_sees_everything(self, index):
        await index.upsert(_article("k-hr", "Vacation", "vacation", scope=["general"]))
        await index.upsert(_article("k-eng", "Runbook", "vacation", scope=["engineering"]))

        assert len(await index.search("vacation", "admin", limit=10)) == 2
        assert len(await index.search("vacation", None, limit=10)) == 2

    @pytest.mark.asyncio
    async def test_ordered_by_similarity_and_limited(self, index):
        await index.upsert(_article("k-1", "Vacation policy", "vacation days vacation leave"))
        await index.upsert(_article("k-2", "Expense policy", "receipts and reimbursements"))
        await index.upsert(_article("k-3", "Parking", "parking spots garage"))

        results = await index.search("vacation leave days", "general", limit=2)

        assert len(results) == 2
        assert results[0].article.id == "k-1"
        assert results[0].score >= results[1].score

    @pytest.mark.asyncio
    async def test_embedding_failure_returns_empty(self, index, embedder):
        await index.upsert(_article("k-1", "Vacation", "vacation"))
        embedder.fail = True

        assert await index.search("vacation", "general") == []

    @pytest.mark.asyncio
    async def test_vector_failure_returns_empty(self, store, embedder):
        vectors = MagicMock()
        vectors.query.return_value = {"ok": False, "error": "timeout"}
        index = KnowledgeIndex(store, vectors, embedder)

        assert await index.search("vacation", "general") == []

    @pytest.mark.asyncio
    async def test_blank_query_returns_empty(self, index):
        assert await index.search("   ", "general") == []

    @pytest.mark.asyncio
    async def test_orphan_vector_skipped_and_logged(self, index, store, caplog):
        await index.upsert(_article("k-1", "Vacation", "vacation"))
        store.delete("k-1")

        with caplog.at_level(logging.WARNING, logger="brain.retriever.knowledge_index"):
            results = await index.search("vacation", "general")

        assert results == []
        assert "vector entry has no durable record" in caplog.text

    @pytest.mark.asyncio
    async def test_scope_rechecked_on_durable_record(self, store, embedder):
        # Vector metadata says general, durable record was narrowed since
        store.put(_article("k-1", "Vacation", "vacation", scope=["engineering"]))
        vectors = MagicMock()
        vectors.query.return_value = {"ok": True}
        vectors.parse_query_results.return_value = [{"id": "k-1", "score": 0.9, "distance": 0.1, "metadata": {}}]
        index = KnowledgeIndex(store, vectors, embedder)

        assert await index.search("vacation", "general") == []

    @pytest.mark.asyncio
    async def test_ties_broken_by_most_recent_update(self, store, embedder):
        now = datetime.now(timezone.utc)
        store.put(_article("k-old", "Old", "x", updated_at=now - timedelta(days=5)))
        store.put(_article("k-new", "New", "x", updated_at=now))
        vectors = MagicMock()
        vectors.query.return_value = {"ok": True}
        vectors.parse_query_results.return_value = [
            {"id": "k-old", "score": 0.8, "distance": 0.2, "metadata": {}},
            {"id": "k-new", "score": 0.8, "distance": 0.2, "metadata": {}},
        ]
        index = KnowledgeIndex(store, vectors, embedder)

        results = await index.search("x", "general")

        assert [r.article.id for r in results] == ["k-new", "k-old"]

    @pytest.mark.asyncio
    async def test_tie_at_limit_goes_to_most_recent(self, index):
        now = datetime.now(timezone.utc)
        # Older one indexed first so insertion order cannot decide the cut
        await index.upsert(_article("k-old", "Vacation", "vacation days", updated_at=now - timedelta(days=30)))
        await index.upsert(_article("k-new", "Vacation", "vacation days", updated_at=now))

        results = await index.search("vacation days", None, limit=1)

        assert [r.article.id for r in results] == ["k-new"]

    @pytest.mark.asyncio
    async def test_hits_dropped_on_recheck_do_not_shrink_results(self, store, embedder):
        store.put(_article("k-narrowed", "Vacation", "vacation", scope=["engineering"]))
        store.put(_article("k-open", "Vacation", "vacation"))
        vectors = MagicMock()
        vectors.query.return_value = {"ok": True}
        vectors.parse_query_results.return_value = [
            {"id": "k-narrowed", "score": 0.9, "distance": 0.1, "metadata": {}},
            {"id": "k-open", "score": 0.8, "distance": 0.2, "metadata": {}},
        ]
        index = KnowledgeIndex(store, vectors, embedder)

        results = await index.search("vacation", "general", limit=1)

        assert [r.article.id for r in results] == ["k-open"]
        assert vectors.query.call_args.args[2] > 1


class TestDelete:
    @pytest.mark.asyncio
    async def test_delete_removes_from_both_stores(self, index, store, vectors):
        await index.upsert(_article("k-1", "Vacation", "vacation"))

        assert await index.delete("k-1") is True

        assert store.get("k-1") is None
        assert vectors.list_ids()["results"] == []
        assert await index.search("vacation", "general") == []

    @pytest.mark.asyncio
    async def test_vector_delete_failure_is_logged(self, store, embedder, caplog):
        store.put(_article("k-1", "Vacation", "vacation"))
        vectors = MagicMock()
        vectors.delete.return_value = {"ok": False, "error": "unreachable"}
        index = KnowledgeIndex(store, vectors, embedder)

        with caplog.at_level(logging.WARNING, logger="brain.retriever.knowledge_index"):
            ok = await index.delete("k-1")

        assert ok is False
        assert store.get("k-1") is None
        assert "vector deletion failed after durable deletion" in caplog.text


class TestReconcile:
    @pytest.mark.asyncio
    async def test_reindexes_missing_and_removes_orphans(self, index, store, vectors, embedder):
        # Durable only (e.g. embedding was down at ingest time)
        embedder.fail = True
        await index.upsert(_article("k-durable", "Vacation", "vacation"))
        embedder.fail = False
        # Vector only (e.g. durable delete succeeded, vector delete crashed)
        await index.upsert(_article("k-orphan", "Old", "old text"))
        store.delete("k-orphan")
        # Empty content stays unsearchable
        store.put(_article("k-empty", "Blank", ""))

        report = await index.reconcile()

        assert report.ok
        assert report.reindexed == ["k-durable"]
        assert report.removed_orphans == ["k-orphan"]
        assert report.unsearchable == ["k-empty"]
        assert sorted(vectors.list_ids()["results"]) == ["k-durable"]

    @pytest.mark.asyncio
    async def test_vector_listing_failure_aborts(self, store, embedder):
        vectors = MagicMock()
        vectors.list_ids.return_value = {"ok": False, "error": "down"}
        index = KnowledgeIndex(store, vectors, embedder)

        report = await index.reconcile()

        assert not report.ok
        vectors.delete.assert_not_called()


class TestReads:
    @pytest.mark.asyncio
    async def test_list_articles_filters_scope(self, index):
        await index.upsert(_article("k-hr", "Vacation", "v", scope=["general"]))
        await index.upsert(_article("k-eng", "Runbook", "r", scope=["engineering"]))

        assert [a.id for a in await index.list_articles("general")] == ["k-hr"]
        assert len(await index.list_articles("admin")) == 2

    @pytest.mark.asyncio
    async def test_get(self, index):
        await index.upsert(_article("k-1", "Vacation", "v"))
        assert (await index.get("k-1")).title == "Vacation"
        assert await index.get("k-nope") is None
