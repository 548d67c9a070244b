"""
Article Store

Durable store for full article records: one JSON document per article id
(``<id>.json``) in a single directory. Writes go through a temp file and
``os.replace`` so a crash never leaves a half-written record behind.
"""

import json
import logging
import os
import re
import tempfile
from pathlib import Path
from typing import List, Optional

from pydantic import ValidationError

from .errors import InvalidArticleId
from .schemas.knowledge import KnowledgeArticle

logger = logging.getLogger("brain.common.article_store")

_SAFE_ID_RE = re.compile(r"^[A-Za-z0-9._-]+$")


def validate_article_id(article_id: str) -> str:
    """Return the id unchanged, or raise InvalidArticleId if it cannot be a file name"""
    if not _SAFE_ID_RE.match(article_id or "") or article_id in (".", ".."):
        raise InvalidArticleId(article_id)
    return article_id


class ArticleStore:
    """Directory-backed mapping from article id to KnowledgeArticle"""

    def __init__(self, directory: str):
        self._dir = Path(directory).expanduser()
        self._dir.mkdir(parents=True, exist_ok=True)

    @property
    def directory(self) -> Path:
        return self._dir

    def _path_for(self, article_id: str) -> Path:
        return self._dir / f"{validate_article_id(article_id)}.json"

    def put(self, article: KnowledgeArticle) -> None:
        """Write (or fully replace) one article"""
        path = self._path_for(article.id)
        fd, tmp_name = tempfile.mkstemp(dir=self._dir, prefix=f".{article.id}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(article.model_dump_json(indent=2))
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def get(self, article_id: str) -> Optional[KnowledgeArticle]:
        """Load one article, or None if it does not exist or is unreadable"""
        try:
            path = self._path_for(article_id)
        except ValueError:
            return None
        if not path.exists():
            return None
        return self._read(path)

    def delete(self, article_id: str) -> bool:
        """Remove one article. Returns False if it was not present."""
        path = self._path_for(article_id)
        try:
            path.unlink()
            return True
        except FileNotFoundError:
            return False

    def exists(self, article_id: str) -> bool:
        try:
            return self._path_for(article_id).exists()
        except ValueError:
            return False

    def list_ids(self) -> List[str]:
        return sorted(p.stem for p in self._dir.glob("*.json"))

    def list_all(self) -> List[KnowledgeArticle]:
        """All readable articles, newest first. Unreadable files are skipped."""
        articles = []
        for path in self._dir.glob("*.json"):
            article = self._read(path)
            if article is not None:
                articles.append(article)
        articles.sort(key=lambda a: a.updated_at, reverse=True)
        return articles

    def _read(self, path: Path) -> Optional[KnowledgeArticle]:
        try:
            with open(path, encoding="utf-8") as f:
                return KnowledgeArticle.model_validate(json.load(f))
        except (OSError, json.JSONDecodeError, ValidationError) as e:
            logger.warning("Skipping unreadable article file %s: %s", path.name, e)
            return None
