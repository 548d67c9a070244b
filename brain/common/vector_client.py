"""
Vector Client

Wraps a Chroma collection for the article vector index. Every operation
returns a result dict ({"ok": True, "results": ...} or {"ok": False,
"error": ...}) instead of raising, so callers decide how to degrade.

Access scopes are stored as one boolean flag per scope, which lets a single
query combine "visible to my scope" OR "visible to all" in one filter.
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

from .schemas.knowledge import SCOPE_ALL

logger = logging.getLogger("brain.common.vector_client")

SCOPE_FLAG_PREFIX = "scope__"


def scope_flag(scope: str) -> str:
    return f"{SCOPE_FLAG_PREFIX}{scope}"


def scope_filter(scope: Optional[str]) -> Optional[Dict[str, Any]]:
    """Chroma where-clause for entries visible to ``scope`` (None: no filter)"""
    if scope is None:
        return None
    if scope == SCOPE_ALL:
        return {scope_flag(SCOPE_ALL): True}
    return {"$or": [{scope_flag(scope): True}, {scope_flag(SCOPE_ALL): True}]}


class VectorClient:
    """
    Client for the article vector index.

    Uses a persistent Chroma client when a path is given, an in-memory one
    otherwise. A ready-made chromadb client can be injected for tests.
    """

    def __init__(
        self,
        path: str = "",
        collection: str = "company-brain",
        client=None,
    ):
        """
        Initialize vector client.

        Args:
            path: Directory for the persistent index ("" for in-memory)
            collection: Collection name
            client: Optional pre-built chromadb client
        """
        self._path = path
        self._collection_name = collection
        self._client = client
        self._collection = None

    def _ensure_initialized(self) -> None:
        """Lazily open the client and collection"""
        if self._collection is not None:
            return

        if self._client is None:
            import chromadb

            if self._path:
                Path(self._path).expanduser().mkdir(parents=True, exist_ok=True)
                self._client = chromadb.PersistentClient(path=str(Path(self._path).expanduser()))
            else:
                self._client = chromadb.EphemeralClient()

        self._collection = self._client.get_or_create_collection(
            name=self._collection_name,
            metadata={"hnsw:space": "cosine"},
            embedding_function=None,
        )
        logger.info("Opened vector collection %s (%s)", self._collection_name, self._path or "in-memory")

    @property
    def is_available(self) -> bool:
        """Check if client is available"""
        try:
            self._ensure_initialized()
            return True
        except Exception as e:
            logger.warning("Vector index unavailable: %s", e)
            return False

    @staticmethod
    def _to_chroma_metadata(metadata: Dict[str, Any]) -> Dict[str, Any]:
        """Flatten metadata into Chroma's scalar-only value space"""
        flat = {}
        for key, value in metadata.items():
            if value is None:
                continue
            if key == "access_scope":
                scopes = list(value) or [SCOPE_ALL]
                flat["access_scope"] = json.dumps(scopes)
                for scope in scopes:
                    flat[scope_flag(scope)] = True
            elif isinstance(value, (str, int, float, bool)):
                flat[key] = value
            else:
                flat[key] = json.dumps(value)
        return flat

    @staticmethod
    def _from_chroma_metadata(metadata: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        metadata = dict(metadata or {})
        for key in [k for k in metadata if k.startswith(SCOPE_FLAG_PREFIX)]:
            metadata.pop(key)
        raw_scope = metadata.get("access_scope")
        if isinstance(raw_scope, str):
            try:
                metadata["access_scope"] = json.loads(raw_scope)
            except json.JSONDecodeError:
                metadata["access_scope"] = [raw_scope]
        return metadata

    def upsert(self, item_id: str, vector: List[float], metadata: Dict[str, Any]) -> Dict[str, Any]:
        """
        Insert or replace one vector.

        Returns:
            Result dict with ok/error status
        """
        try:
            self._ensure_initialized()
            # Chroma merges metadata on update; drop the old entry so stale
            # scope flags cannot survive a scope change
            self._collection.delete(ids=[item_id])
            self._collection.upsert(
                ids=[item_id],
                embeddings=[vector],
                metadatas=[self._to_chroma_metadata(metadata)],
            )
            return {"ok": True, "results": {"id": item_id}}
        except Exception as e:
            return {"ok": False, "error": repr(e)}

    def query(
        self,
        vector: List[float],
        scope: Optional[str] = None,
        topk: int = 5,
    ) -> Dict[str, Any]:
        """
        Nearest-neighbor search restricted to entries visible to ``scope``.

        Returns:
            Result dict; results hold Chroma's raw ids/metadatas/distances
        """
        try:
            self._ensure_initialized()
            if topk <= 0 or self._collection.count() == 0:
                return {"ok": True, "results": {"ids": [[]], "metadatas": [[]], "distances": [[]]}}

            kwargs = {
                "query_embeddings": [vector],
                "n_results": min(topk, self._collection.count()),
                "include": ["metadatas", "distances"],
            }
            where = scope_filter(scope)
            if where is not None:
                kwargs["where"] = where
            return {"ok": True, "results": self._collection.query(**kwargs)}
        except Exception as e:
            return {"ok": False, "error": repr(e)}

    def delete(self, item_id: str) -> Dict[str, Any]:
        """Remove one vector (removing a missing id is not an error)"""
        try:
            self._ensure_initialized()
            self._collection.delete(ids=[item_id])
            return {"ok": True, "results": {"id": item_id}}
        except Exception as e:
            return {"ok": False, "error": repr(e)}

    def list_ids(self) -> Dict[str, Any]:
        """All ids in the collection"""
        try:
            self._ensure_initialized()
            got = self._collection.get(include=["metadatas"])
            return {"ok": True, "results": list(got.get("ids", []))}
        except Exception as e:
            return {"ok": False, "error": repr(e)}

    def parse_query_results(self, result: Dict[str, Any]) -> List[Dict[str, Any]]:
        """
        Parse query results into a cleaner format.

        Args:
            result: Raw result from query()

        Returns:
            List of {id, score, distance, metadata}, best first
        """
        if not result.get("ok"):
            return []

        raw = result.get("results") or {}
        ids = (raw.get("ids") or [[]])[0] or []
        metadatas = (raw.get("metadatas") or [[]])[0] or []
        distances = (raw.get("distances") or [[]])[0] or []

        parsed = []
        for i, item_id in enumerate(ids):
            distance = float(distances[i]) if i < len(distances) else 1.0
            metadata = metadatas[i] if i < len(metadatas) else {}
            parsed.append({
                "id": item_id,
                "distance": distance,
                "score": 1.0 - distance,  # cosine distance to similarity
                "metadata": self._from_chroma_metadata(metadata),
            })

        parsed.sort(key=lambda x: x["score"], reverse=True)
        return parsed
