"""
Context Assembler

Builds the bounded prompt context for one question: the most relevant
knowledge articles visible to the caller plus a digest of live projects and
members. The blob never exceeds the configured character ceiling.

Each article body is clipped to its own budget first, so one long document
cannot crowd out the rest. Truncation order when still over the ceiling:
1. Lowest-relevance articles (the best article is always kept)
2. Trailing member entries
3. Trailing project entries
4. Hard cut of the knowledge section, keeping the digest when it fits
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional

from ..common.schemas.knowledge import ScoredArticle
from ..common.schemas.organization import MemberRecord, OrganizationSnapshot, ProjectRecord
from .knowledge_index import KnowledgeIndex

logger = logging.getLogger("brain.retriever.context_assembler")

MAX_SKILLS = 5
NO_ARTICLES = "No relevant knowledge articles were found."


@dataclass
class QueryContext:
    """Per-request context handed to the Synthesizer (never persisted)"""
    question: str
    scope: Optional[str]
    articles: List[ScoredArticle] = field(default_factory=list)
    organization_digest: str = ""
    text: str = ""
    truncated: bool = False

    @property
    def sources(self) -> List[dict]:
        return [
            {"id": s.article.id, "title": s.article.title, "url": s.article.source_url, "score": s.score}
            for s in self.articles
        ]


def clip(text: str, limit: int) -> str:
    """Cut free text to ``limit`` chars, marking the cut with an ellipsis"""
    text = (text or "").strip()
    if limit <= 0 or len(text) <= limit:
        return text
    return text[:limit].rstrip() + "..."


def _format_article(index: int, scored: ScoredArticle, body_limit: int) -> str:
    article = scored.article
    lines = [f"### [{index}] {article.title} ({article.category.value}, relevance {scored.score:.2f})"]
    if article.source_url:
        lines.append(f"Source: {article.source_url}")
    if article.summary:
        lines.append(f"Summary: {article.summary}")
    if article.tags:
        lines.append(f"Tags: {', '.join(article.tags)}")
    if article.key_points:
        lines.append("Key points:")
        lines.extend(f"- {point}" for point in article.key_points)
    lines.append(clip(article.content, body_limit))
    return "\n".join(lines)


class ContextAssembler:
    """Selects and bounds the material given to the generation step"""

    def __init__(
        self,
        index: KnowledgeIndex,
        topk: int = 5,
        max_projects: int = 5,
        max_members: int = 10,
        record_char_limit: int = 200,
        context_char_limit: int = 10000,
        article_char_limit: int = 2000,
    ):
        """
        Initialize context assembler.

        Args:
            index: Knowledge index to search
            topk: Max articles retrieved per question
            max_projects: Max active projects in the digest
            max_members: Max active members in the digest
            record_char_limit: Max chars per free-text field of a record
            context_char_limit: Ceiling for the whole context blob
            article_char_limit: Max body chars per article (0: no limit)
        """
        self._index = index
        self.topk = topk
        self.max_projects = max_projects
        self.max_members = max_members
        self.record_char_limit = record_char_limit
        self.context_char_limit = context_char_limit
        self.article_char_limit = article_char_limit

    async def assemble(
        self,
        question: str,
        scope: Optional[str],
        snapshot: Optional[OrganizationSnapshot] = None,
    ) -> QueryContext:
        """
        Assemble the context for one question.

        Args:
            question: The user's question
            scope: Caller's access scope (None: unrestricted)
            snapshot: Live projects and members (read-only)

        Returns:
            QueryContext whose text is at most context_char_limit chars
        """
        articles = await self._index.search(question, scope, limit=self.topk)
        if not articles:
            logger.info("No knowledge articles found for question (scope=%s)", scope)

        snapshot = snapshot or OrganizationSnapshot()
        projects = [p for p in snapshot.projects if p.is_active]
        members = [m for m in snapshot.members if m.is_active]

        article_blocks = [
            _format_article(i, a, self.article_char_limit) for i, a in enumerate(articles, 1)
        ]
        project_blocks = [self._format_project(p, snapshot) for p in projects[:self.max_projects]]
        member_blocks = [self._format_member(m) for m in members[:self.max_members]]

        truncated = False
        text = self._render(article_blocks, project_blocks, len(projects), member_blocks, len(members))
        while len(text) > self.context_char_limit:
            if len(article_blocks) > 1:
                article_blocks.pop()
            elif member_blocks:
                member_blocks.pop()
            elif project_blocks:
                project_blocks.pop()
            else:
                break
            truncated = True
            text = self._render(article_blocks, project_blocks, len(projects), member_blocks, len(members))

        if len(text) > self.context_char_limit:
            digest = self._render_digest(project_blocks, len(projects), member_blocks, len(members))
            text = self._hard_cut(article_blocks, digest)
            truncated = True

        if truncated:
            logger.info(
                "Context truncated to %d chars (%d/%d articles, %d/%d projects, %d/%d members kept)",
                len(text), len(article_blocks), len(articles),
                len(project_blocks), len(projects), len(member_blocks), len(members),
            )

        return QueryContext(
            question=question,
            scope=scope,
            articles=articles[:len(article_blocks)],
            organization_digest=self._render_digest(project_blocks, len(projects), member_blocks, len(members)),
            text=text,
            truncated=truncated,
        )

    def _format_project(self, project: ProjectRecord, snapshot: OrganizationSnapshot) -> str:
        limit = self.record_char_limit
        assignees = clip(", ".join(snapshot.member_names(project.assignees)), limit) or "unassigned"
        lines = [
            f"- {clip(project.name, limit)} ({clip(project.category, limit) or 'uncategorized'})",
            f"  Status: {clip(project.status, limit)}",
            f"  Progress: {project.progress_percent:g}%",
            f"  Assignees: {assignees}",
        ]
        if project.deadline:
            lines.append(f"  Deadline: {clip(project.deadline, limit)}")
        lines.append(f"  Description: {clip(project.description, limit) or 'none'}")
        return "\n".join(lines)

    def _format_member(self, member: MemberRecord) -> str:
        limit = self.record_char_limit
        department = clip(member.department, limit) or "no department"
        position = clip(member.position or member.role, limit) or "no position"
        skills = clip(", ".join(member.skills[:MAX_SKILLS]), limit)
        lines = [f"- {clip(member.name, limit)} ({department} / {position})"]
        lines.append(f"  Skills: {skills or 'none'}")
        if member.workload_status:
            lines.append(f"  Workload: {clip(member.workload_status, limit)}")
        return "\n".join(lines)

    def _hard_cut(self, article_blocks, digest: str) -> str:
        """Cut the knowledge section so the digest still fits under the ceiling"""
        head = "## Knowledge articles\n"
        tail = f"\n\n{digest}"
        knowledge = "\n\n".join(article_blocks) if article_blocks else NO_ARTICLES
        room = self.context_char_limit - len(head) - len(tail)
        if room <= 0:
            return (head + knowledge + tail)[:self.context_char_limit]
        return head + knowledge[:room] + tail

    @staticmethod
    def _render_digest(project_blocks, project_total, member_blocks, member_total) -> str:
        parts = ["## Active projects"]
        parts.extend(project_blocks or ["(none)"])
        if project_total > len(project_blocks):
            parts.append(f"...and {project_total - len(project_blocks)} more projects")
        parts.append("")
        parts.append("## Members")
        parts.extend(member_blocks or ["(none)"])
        if member_total > len(member_blocks):
            parts.append(f"...and {member_total - len(member_blocks)} more members")
        return "\n".join(parts)

    def _render(self, article_blocks, project_blocks, project_total, member_blocks, member_total) -> str:
        knowledge = "\n\n".join(article_blocks) if article_blocks else NO_ARTICLES
        digest = self._render_digest(project_blocks, project_total, member_blocks, member_total)
        return f"## Knowledge articles\n{knowledge}\n\n{digest}"
