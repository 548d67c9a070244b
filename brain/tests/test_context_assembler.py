"""Tests for context assembly and truncation."""

import pytest
from brain.common.schemas import KnowledgeArticle, ScoredArticle
from brain.common.schemas.organization import MemberRecord, OrganizationSnapshot, ProjectRecord
from brain.retriever.context_assembler import NO_ARTICLES, ContextAssembler, clip


class StubIndex:
    def __init__(self, articles=None):
        self.articles = list(articles or [])
        self.calls = []

    async def search(self, query, scope=None, limit=5):
        self.calls.append((query, scope, limit))
        return self.articles[:limit]


def _scored(article_id, content="Body text.", score=0.9, **kwargs):
    article = KnowledgeArticle(id=article_id, title=f"Article {article_id}", content=content, **kwargs)
    return ScoredArticle(article=article, score=score)


def _snapshot(projects=3, members=3):
    return OrganizationSnapshot(
        projects=[
            ProjectRecord(id=f"p{i}", name=f"Project {i}", status="in_progress",
                          progressPercent=40, assignees=["m0"], description="Ship it")
            for i in range(projects)
        ],
        members=[
            MemberRecord(id=f"m{i}", name=f"Member {i}", department="Sales",
                         position="Manager", skills=["negotiation", {"name": "excel", "level": 3}])
            for i in range(members)
        ],
    )


class TestClip:
    def test_short_text_unchanged(self):
        assert clip("hello", 10) == "hello"

    def test_long_text_marked(self):
        assert clip("abcdefghij", 4) == "abcd..."

    def test_none_is_empty(self):
        assert clip(None, 4) == ""


class TestAssemble:
    @pytest.mark.asyncio
    async def test_passes_scope_and_topk_to_index(self):
        index = StubIndex([_scored("a")])
        assembler = ContextAssembler(index, topk=3)

        await assembler.assemble("What is the vacation policy?", "general")

        assert index.calls == [("What is the vacation policy?", "general", 3)]

    @pytest.mark.asyncio
    async def test_contains_articles_and_digest(self):
        assembler = ContextAssembler(StubIndex([_scored("a", content="Vacation policy: 20 days/year")]))

        context = await assembler.assemble("vacation?", "general", _snapshot(projects=1, members=1))

        assert "Vacation policy: 20 days/year" in context.text
        assert "- Project 0 (uncategorized)" in context.text
        assert "Assignees: Member 0" in context.text
        assert "Skills: negotiation, excel" in context.text
        assert context.truncated is False
        assert [s["id"] for s in context.sources] == ["a"]

    @pytest.mark.asyncio
    async def test_no_articles_still_builds_context(self):
        context = await ContextAssembler(StubIndex()).assemble("anything", "general")

        assert NO_ARTICLES in context.text
        assert "## Active projects\n(none)" in context.text
        assert context.articles == []

    @pytest.mark.asyncio
    async def test_terminal_records_excluded(self):
        snapshot = OrganizationSnapshot(
            projects=[
                ProjectRecord(name="Live", status="in_progress"),
                ProjectRecord(name="Done", status="completed"),
                ProjectRecord(name="Dropped", status="Cancelled"),
            ],
            members=[
                MemberRecord(name="Current", status="active"),
                MemberRecord(name="Gone", status="left"),
            ],
        )

        context = await ContextAssembler(StubIndex()).assemble("q", None, snapshot)

        assert "Live" in context.text
        assert "Done" not in context.text
        assert "Dropped" not in context.text
        assert "Current" in context.text
        assert "Gone" not in context.text

    @pytest.mark.asyncio
    async def test_caps_add_overflow_notes(self):
        assembler = ContextAssembler(StubIndex(), max_projects=2, max_members=1)

        context = await assembler.assemble("q", None, _snapshot(projects=5, members=4))

        assert "...and 3 more projects" in context.text
        assert "...and 3 more members" in context.text
        assert "Project 2" not in context.text

    @pytest.mark.asyncio
    async def test_long_descriptions_clipped(self):
        snapshot = OrganizationSnapshot(projects=[ProjectRecord(name="P", description="x" * 500)])
        assembler = ContextAssembler(StubIndex(), record_char_limit=50)

        context = await assembler.assemble("q", None, snapshot)

        assert "Description: " + "x" * 50 + "..." in context.text
        assert "x" * 51 not in context.text

    @pytest.mark.asyncio
    async def test_long_names_clipped(self):
        snapshot = OrganizationSnapshot(
            projects=[ProjectRecord(name="P" * 500)],
            members=[MemberRecord(name="N" * 500, department="D" * 500, position="R" * 500)],
        )
        assembler = ContextAssembler(StubIndex(), record_char_limit=20)

        context = await assembler.assemble("q", None, snapshot)

        assert "- " + "P" * 20 + "... (uncategorized)" in context.text
        assert "- " + "N" * 20 + "... (" + "D" * 20 + "... / " + "R" * 20 + "...)" in context.text
        for letter in "PNDR":
            assert letter * 21 not in context.text

    @pytest.mark.asyncio
    async def test_key_points_listed(self):
        article = _scored("a", key_points=["20 days per year", "Carry over up to 5"])

        context = await ContextAssembler(StubIndex([article])).assemble("q", None)

        assert "Key points:\n- 20 days per year\n- Carry over up to 5\nBody text." in context.text


class TestTruncation:
    @pytest.mark.parametrize("limit", [300, 800, 1500, 4000])
    @pytest.mark.asyncio
    async def test_never_exceeds_ceiling(self, limit):
        articles = [_scored(f"a{i}", content="word " * 200, score=1 - i / 10) for i in range(5)]
        assembler = ContextAssembler(StubIndex(articles), context_char_limit=limit)

        context = await assembler.assemble("q", "general", _snapshot(projects=5, members=10))

        assert len(context.text) <= limit
        assert context.truncated is True

    @pytest.mark.asyncio
    async def test_lowest_relevance_articles_dropped_first(self):
        articles = [_scored(f"a{i}", content="word " * 100, score=1 - i / 10) for i in range(4)]
        assembler = ContextAssembler(StubIndex(articles), context_char_limit=1700)

        context = await assembler.assemble("q", "general", _snapshot(projects=2, members=2))

        kept = [s["id"] for s in context.sources]
        assert kept == ["a0", "a1"]
        # Organization digest is intact while articles absorb the cut
        assert "Project 1" in context.text
        assert "Member 1" in context.text
        assert "Article a2" not in context.text

    @pytest.mark.asyncio
    async def test_members_dropped_before_projects(self):
        articles = [_scored("a0", content="word " * 100)]
        snapshot = _snapshot(projects=2, members=6)
        full = await ContextAssembler(StubIndex(articles)).assemble("q", None, snapshot)
        assembler = ContextAssembler(StubIndex(articles), context_char_limit=len(full.text) - 100)

        context = await assembler.assemble("q", None, snapshot)

        assert context.truncated
        assert [s["id"] for s in context.sources] == ["a0"]
        assert "Project 1" in context.text
        assert "Member 5" not in context.text
        assert "more members" in context.text

    @pytest.mark.asyncio
    async def test_best_article_kept_until_hard_cut(self):
        articles = [_scored("a0", content="word " * 400)]
        assembler = ContextAssembler(StubIndex(articles), context_char_limit=200)

        context = await assembler.assemble("q", None, _snapshot())

        assert len(context.text) == 200
        assert context.text.startswith("## Knowledge articles\n### [1] Article a0")
        assert [s["id"] for s in context.sources] == ["a0"]

    @pytest.mark.asyncio
    async def test_hard_cut_keeps_digest_tail(self):
        articles = [_scored("a0", content="word " * 400)]
        assembler = ContextAssembler(StubIndex(articles), context_char_limit=300, article_char_limit=0)

        context = await assembler.assemble("q", None, _snapshot())

        assert len(context.text) == 300
        assert context.text.endswith("## Members\n(none)\n...and 3 more members")
        assert "...and 3 more projects" in context.text

    @pytest.mark.asyncio
    async def test_article_body_clipped_to_budget(self):
        articles = [_scored("a0", content="x" * 5000)]
        assembler = ContextAssembler(StubIndex(articles), article_char_limit=100)

        context = await assembler.assemble("q", None)

        assert "x" * 100 + "..." in context.text
        assert "x" * 101 not in context.text
        assert context.truncated is False

    @pytest.mark.asyncio
    async def test_long_article_does_not_crowd_out_digest(self):
        articles = [
            _scored("big", content="handbook " * 5000, score=0.95),
            _scored("vac", content="Vacation policy: 20 days/year", score=0.9),
            _scored("sick", content="Sick leave: 10 days/year", score=0.85),
            _scored("trip", content="Business trips need approval", score=0.8),
        ]
        snapshot = OrganizationSnapshot(
            projects=[ProjectRecord(name="Apollo", status="in_progress")],
            members=[MemberRecord(name="Alice", department="Engineering")],
        )
        assembler = ContextAssembler(StubIndex(articles))

        context = await assembler.assemble("q", None, snapshot)

        assert len(context.text) <= assembler.context_char_limit
        assert [s["id"] for s in context.sources] == ["big", "vac", "sick", "trip"]
        assert "Business trips need approval" in context.text
        assert "- Apollo (uncategorized)" in context.text
        assert "- Alice (Engineering / no position)" in context.text
