"""
Embedding Service

Turns text into L2-normalized vectors through a remote embedding model
(Gemini or OpenAI). Built once at startup and passed to whoever needs it.
"""

import logging
import re
from typing import List, Optional

import numpy as np

from .errors import EmbeddingUnavailable

logger = logging.getLogger("brain.common.embedding_service")

_WHITESPACE_RE = re.compile(r"\s+")


class EmbeddingService:
    """
    Embedding service for Company Brain.

    Empty input is not an error: it yields an empty vector, which callers
    treat as "unembeddable". Backend failures raise EmbeddingUnavailable so
    callers can degrade instead of failing.
    """

    def __init__(
        self,
        provider: str = "google",
        model: str = "models/text-embedding-004",
        api_key: Optional[str] = None,
    ):
        self._provider = (provider or "google").lower()
        self._model = model
        self._client = None

        if not api_key:
            logger.info("Embedding API key not provided, embeddings unavailable")
            return

        try:
            if self._provider == "google":
                import google.generativeai as genai

                genai.configure(api_key=api_key)
                self._client = genai
            elif self._provider == "openai":
                from openai import OpenAI

                self._client = OpenAI(api_key=api_key)
            else:
                logger.warning("Unsupported embedding provider: %s", self._provider)
                return
            logger.info("Initialized embeddings with provider=%s, model=%s", self._provider, model)
        except ImportError as e:
            logger.warning("Embedding provider package not installed: %s", e)
        except Exception as e:
            logger.warning("Failed to initialize embedding client: %s", e)

    @property
    def is_available(self) -> bool:
        """Check if embedding service is available"""
        return self._client is not None

    @property
    def model(self) -> str:
        return self._model

    def _request(self, texts: List[str]) -> List[List[float]]:
        if self._provider == "google":
            vectors = []
            for text in texts:
                result = self._client.embed_content(model=self._model, content=text)
                vectors.append(list(result["embedding"]))
            return vectors

        response = self._client.embeddings.create(model=self._model, input=texts)
        return [list(item.embedding) for item in response.data]

    def embed(self, texts: List[str]) -> List[List[float]]:
        """
        Generate embeddings for a list of texts.

        Args:
            texts: List of strings to embed

        Returns:
            One vector per input, in order. Blank inputs get [].

        Raises:
            EmbeddingUnavailable: backend not configured or the call failed
        """
        if not texts:
            return []

        cleaned = [_WHITESPACE_RE.sub(" ", t or "").strip() for t in texts]
        wanted = [i for i, t in enumerate(cleaned) if t]
        results: List[List[float]] = [[] for _ in texts]
        if not wanted:
            return results

        if not self.is_available:
            raise EmbeddingUnavailable("Embedding backend is not configured")

        try:
            vectors = self._request([cleaned[i] for i in wanted])
        except Exception as e:
            logger.warning("Embedding request failed (%s): %s", self._model, e)
            raise EmbeddingUnavailable(f"Embedding request failed: {e}", cause=e) from e

        for i, vector in zip(wanted, vectors):
            results[i] = normalize(vector)
        return results

    def embed_single(self, text: Optional[str]) -> List[float]:
        """
        Generate embedding for a single text.

        Returns:
            Embedding vector (L2 normalized), or [] for blank input
        """
        if not text or not text.strip():
            return []
        return self.embed([text])[0]

    def cosine_similarity(self, vec1: List[float], vec2: List[float]) -> float:
        """
        Compute cosine similarity between two vectors.

        Vectors are already L2 normalized, so the dot product equals the
        cosine similarity.
        """
        v1 = np.array(vec1)
        v2 = np.array(vec2)

        if v1.shape != v2.shape:
            raise ValueError(f"Vector dimension mismatch: {v1.shape} vs {v2.shape}")

        similarity = float(np.dot(v1, v2))
        return max(-1.0, min(1.0, similarity))


def normalize(vector: List[float]) -> List[float]:
    """L2-normalize a vector; a zero vector becomes []"""
    arr = np.asarray(vector, dtype=float)
    norm = float(np.linalg.norm(arr))
    if arr.size == 0 or norm == 0.0:
        return []
    return (arr / norm).tolist()
