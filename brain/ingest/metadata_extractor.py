"""
LLM-based Metadata Extractor

Asks the generation chain for a summary, category, tags, and key points of an
extracted document. The model output is untrusted: it is parsed with
parse_llm_json and every field falls back to a deterministic default.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional

from ..common.errors import AllModelsFailed
from ..common.llm_utils import coerce_str_list, parse_llm_json
from ..common.model_chain import ModelChain
from ..common.schemas.knowledge import KnowledgeCategory

logger = logging.getLogger("brain.ingest.metadata_extractor")

SUMMARY_FALLBACK_CHARS = 200
DEFAULT_CATEGORY = KnowledgeCategory.TECHNICAL
MAX_TAGS = 10
MAX_KEY_POINTS = 5


@dataclass
class ExtractedMetadata:
    """Document metadata, either model-derived or the fallback defaults"""
    title: str = ""
    summary: str = ""
    category: KnowledgeCategory = DEFAULT_CATEGORY
    tags: List[str] = field(default_factory=list)
    key_points: List[str] = field(default_factory=list)
    from_model: bool = False


METADATA_PROMPT = """Analyze the following internal company document and extract its key information.

Respond with a valid JSON object with these keys:
- "title": A short descriptive title (empty string if the file name is fine)
- "summary": A 1-3 sentence summary in the document's own language
- "category": One of {categories}
- "tags": List of short topic tags (at most {max_tags})
- "keyPoints": List of the most important points (at most {max_points})

Document name: {name}
Document content:
{content}

JSON:"""


def fallback_metadata(content: str) -> ExtractedMetadata:
    """Defaults used when extraction is disabled or the model fails"""
    return ExtractedMetadata(summary=(content or "")[:SUMMARY_FALLBACK_CHARS].strip())


class MetadataExtractor:
    """Best-effort document metadata via the model fallback chain"""

    def __init__(self, chain: Optional[ModelChain], char_limit: int = 10000):
        self._chain = chain
        self._char_limit = char_limit

    @property
    def is_available(self) -> bool:
        return self._chain is not None

    async def extract(self, content: str, name: str = "") -> ExtractedMetadata:
        """
        Extract metadata from document text.

        Never raises: a failed or unparseable model response yields the
        fallback metadata.
        """
        fallback = fallback_metadata(content)
        if not self.is_available or not content or not content.strip():
            return fallback

        prompt = METADATA_PROMPT.format(
            categories=", ".join(f'"{c.value}"' for c in KnowledgeCategory),
            max_tags=MAX_TAGS,
            max_points=MAX_KEY_POINTS,
            name=name or "untitled",
            content=content[:self._char_limit],
        )

        try:
            result = await self._chain.generate(prompt, max_tokens=1024)
        except AllModelsFailed as e:
            logger.warning("Metadata extraction failed for %s: %s", name, e)
            return fallback

        data = parse_llm_json(result.text, default={})
        if not data:
            logger.info("Metadata response for %s was not JSON, using defaults", name)
            return fallback

        return self._from_response(data, fallback)

    @staticmethod
    def _from_response(data: dict, fallback: ExtractedMetadata) -> ExtractedMetadata:
        summary = data.get("summary")
        title = data.get("title")
        return ExtractedMetadata(
            title=title.strip() if isinstance(title, str) else "",
            summary=summary.strip() if isinstance(summary, str) and summary.strip() else fallback.summary,
            category=KnowledgeCategory.coerce(data.get("category"), DEFAULT_CATEGORY),
            tags=coerce_str_list(data.get("tags"), limit=MAX_TAGS),
            key_points=coerce_str_list(data.get("keyPoints", data.get("key_points")), limit=MAX_KEY_POINTS),
            from_model=True,
        )
