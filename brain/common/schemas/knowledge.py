"""
Knowledge Article Schema

An article is the normalized unit of internal knowledge: plain text plus the
access metadata that decides who may retrieve it.
"""

import uuid
import hashlib
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator


# Wildcard access scope: visible to every department
SCOPE_ALL = "all"


# ============================================================================
# Enums
# ============================================================================

class KnowledgeCategory(str, Enum):
    """Knowledge categories"""
    COMPANY_POLICY = "company_policy"
    BENEFITS = "benefits"
    PROCEDURE = "procedure"
    TECHNICAL = "technical"
    CASE_STUDY = "case_study"
    FAQ = "faq"
    OTHER = "other"

    @classmethod
    def coerce(cls, value, default: "KnowledgeCategory" = None) -> "KnowledgeCategory":
        """Map free text (e.g. model output) onto the closed enumeration"""
        default = default or cls.OTHER
        if isinstance(value, cls):
            return value
        if not isinstance(value, str):
            return default
        normalized = value.strip().lower().replace("-", "_").replace(" ", "_")
        try:
            return cls(normalized)
        except ValueError:
            return default


class SourceType(str, Enum):
    """Where an article came from"""
    UPLOAD = "upload"
    EXTERNAL_SYNC = "external_sync"
    MANUAL = "manual"


# ============================================================================
# Models
# ============================================================================

def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class KnowledgeArticle(BaseModel):
    """A normalized unit of internal knowledge"""
    id: str = Field(..., description="Stable, globally unique identifier")
    title: str
    content: str = Field(default="", description="Normalized full text")
    summary: str = ""
    category: KnowledgeCategory = KnowledgeCategory.OTHER
    tags: List[str] = Field(default_factory=list)
    key_points: List[str] = Field(default_factory=list, description="Most important points, in order")
    source_type: SourceType = SourceType.UPLOAD
    source_url: Optional[str] = None
    access_scope: List[str] = Field(default_factory=lambda: [SCOPE_ALL])
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    @field_validator("tags")
    @classmethod
    def _dedupe_tags(cls, v: List[str]) -> List[str]:
        return sorted({t.strip() for t in v if t and t.strip()})

    @field_validator("access_scope")
    @classmethod
    def _normalize_scope(cls, v: List[str]) -> List[str]:
        scopes = sorted({s.strip() for s in v if s and s.strip()})
        return scopes or [SCOPE_ALL]

    def is_visible_to(self, scope: Optional[str]) -> bool:
        """Whether a caller with this scope may retrieve the article"""
        if scope is None:
            return True
        return SCOPE_ALL in self.access_scope or scope in self.access_scope

    def embedding_text(self, char_budget: int) -> str:
        """Text used to compute the article embedding"""
        return (
            f"Title: {self.title}\n"
            f"Summary: {self.summary}\n"
            f"Content: {self.content[:char_budget]}"
        )

    def index_metadata(self) -> dict:
        """Minimal projection stored next to the vector"""
        metadata = {
            "title": self.title,
            "summary": self.summary,
            "category": self.category.value,
            "access_scope": list(self.access_scope),
            "updated_at": self.updated_at.isoformat(),
        }
        if self.source_url:
            metadata["source_url"] = self.source_url
        return metadata


class ScoredArticle(BaseModel):
    """An article with its relevance to one query"""
    article: KnowledgeArticle
    score: float


def generate_article_id(source_url: Optional[str] = None) -> str:
    """
    Generate an article ID.

    Synced sources get a deterministic ID derived from their URL so that a
    re-sync replaces the earlier article instead of duplicating it.

    Format: k-<hex>
    """
    if source_url:
        digest = hashlib.sha1(source_url.encode("utf-8")).hexdigest()[:16]
        return f"k-{digest}"
    return f"k-{uuid.uuid4().hex[:16]}"
