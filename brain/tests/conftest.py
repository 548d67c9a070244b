"""Shared fakes for external services (generation, embeddings, vector index)."""

import re
import uuid
import zlib
from typing import Dict, List, Optional

import chromadb
import numpy as np
import pytest

from brain.common.article_store import ArticleStore
from brain.common.errors import EmbeddingUnavailable
from brain.common.vector_client import VectorClient

DIMENSION = 64
_WORD_RE = re.compile(r"[a-z0-9]+")


class FakeEmbedder:
    """Deterministic bag-of-words embedder (hashed into DIMENSION buckets)"""

    def __init__(self):
        self.fail = False
        self.calls: List[str] = []

    @property
    def is_available(self) -> bool:
        return True

    def embed_single(self, text: Optional[str]) -> List[float]:
        self.calls.append(text or "")
        if self.fail:
            raise EmbeddingUnavailable("embedding backend down")
        if not text or not text.strip():
            return []
        vector = np.zeros(DIMENSION)
        for word in _WORD_RE.findall(text.lower()):
            vector[zlib.crc32(word.encode()) % DIMENSION] += 1.0
        norm = np.linalg.norm(vector)
        return (vector / norm).tolist() if norm else []


class ScriptedLLM:
    """
    Stand-in for LLMClient.

    ``responses`` maps a model name to a string (returned), an exception
    (raised), or a callable taking the prompt.
    """

    def __init__(self, responses: Optional[Dict[str, object]] = None, default: object = "Generated answer."):
        self.responses = dict(responses or {})
        self.default = default
        self.calls: List[Dict[str, object]] = []

    @property
    def is_available(self) -> bool:
        return True

    def generate(self, prompt, *, model=None, system=None, max_tokens=1024, timeout=60.0):
        self.calls.append({"model": model, "prompt": prompt, "system": system})
        outcome = self.responses.get(model, self.default)
        if isinstance(outcome, BaseException):
            raise outcome
        if callable(outcome):
            return outcome(prompt)
        return outcome

    @property
    def models_called(self) -> List[str]:
        return [c["model"] for c in self.calls]


@pytest.fixture
def embedder():
    return FakeEmbedder()


@pytest.fixture
def chroma_client():
    return chromadb.EphemeralClient()


@pytest.fixture
def vectors(chroma_client):
    # Ephemeral clients share state in-process; isolate by collection name
    return VectorClient(client=chroma_client, collection=f"test-{uuid.uuid4().hex[:12]}")


@pytest.fixture
def store(tmp_path):
    return ArticleStore(str(tmp_path / "articles"))
