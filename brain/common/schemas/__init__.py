"""
Company Brain Schemas

Knowledge articles and read-only organizational records.
"""

from .knowledge import (
    KnowledgeArticle,
    KnowledgeCategory,
    ScoredArticle,
    SourceType,
    SCOPE_ALL,
    generate_article_id,
)
from .organization import (
    MemberRecord,
    OrganizationSnapshot,
    ProjectRecord,
    TERMINAL_MEMBER_STATUSES,
    TERMINAL_PROJECT_STATUSES,
    load_snapshot,
)

__all__ = [
    "KnowledgeArticle",
    "KnowledgeCategory",
    "ScoredArticle",
    "SourceType",
    "SCOPE_ALL",
    "generate_article_id",
    "MemberRecord",
    "OrganizationSnapshot",
    "ProjectRecord",
    "TERMINAL_MEMBER_STATUSES",
    "TERMINAL_PROJECT_STATUSES",
    "load_snapshot",
]
