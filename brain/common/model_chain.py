"""
Model Chain

Drives an ordered, finite list of candidate models: primary first, then the
configured fallbacks. The first non-empty response wins; every failed
attempt is recorded and logged.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import List, Optional

from .errors import AllModelsFailed, ErrorKind, GenerationError
from .llm_client import LLMClient, classify_error

logger = logging.getLogger("brain.common.model_chain")


@dataclass
class GenerationAttempt:
    """One try against one candidate model (not persisted)"""
    model: str
    order: int
    outcome: str  # "success" | "error" | "empty"
    error_kind: Optional[ErrorKind] = None
    detail: str = ""
    elapsed: float = 0.0


@dataclass
class ChainResult:
    """Successful generation plus the attempts that led to it"""
    text: str
    model: str
    attempts: List[GenerationAttempt] = field(default_factory=list)


def build_candidates(primary: str, fallbacks: List[str]) -> List[str]:
    """Primary first, then fallbacks; duplicates and blanks removed, order kept"""
    candidates = []
    for model in [primary, *fallbacks]:
        if model and model not in candidates:
            candidates.append(model)
    return candidates


class ModelChain:
    """
    Fallback chain over generation models.

    The candidate list is fixed at construction, so a generate() call makes
    at most len(candidates) model calls and always terminates.
    """

    def __init__(
        self,
        llm_client: LLMClient,
        candidates: List[str],
        max_tokens: int = 1024,
        timeout: float = 60.0,
    ):
        if not candidates:
            raise ValueError("ModelChain needs at least one candidate model")
        self._llm = llm_client
        self._candidates = list(candidates)
        self._max_tokens = max_tokens
        self._timeout = timeout

    @property
    def candidates(self) -> List[str]:
        return list(self._candidates)

    async def generate(
        self,
        prompt: str,
        *,
        system: Optional[str] = None,
        max_tokens: Optional[int] = None,
    ) -> ChainResult:
        """
        Try each candidate in order until one returns non-empty text.

        Raises:
            AllModelsFailed: every candidate raised or returned empty text
        """
        attempts: List[GenerationAttempt] = []

        for order, model in enumerate(self._candidates, 1):
            logger.info("Attempting generation with %s (%d/%d)", model, order, len(self._candidates))
            started = time.monotonic()
            try:
                text = await asyncio.to_thread(
                    self._llm.generate,
                    prompt,
                    model=model,
                    system=system,
                    max_tokens=max_tokens or self._max_tokens,
                    timeout=self._timeout,
                )
            except Exception as e:
                kind = e.kind if isinstance(e, GenerationError) else classify_error(e)
                cause = e.cause if isinstance(e, GenerationError) and e.cause is not None else e
                attempts.append(GenerationAttempt(
                    model=model,
                    order=order,
                    outcome="error",
                    error_kind=kind,
                    detail=repr(cause),
                    elapsed=time.monotonic() - started,
                ))
                logger.warning(
                    "Model %s failed (attempt %d/%d, %s): %r",
                    model, order, len(self._candidates), kind.value, cause,
                )
                continue

            elapsed = time.monotonic() - started
            if text:
                attempts.append(GenerationAttempt(
                    model=model, order=order, outcome="success", elapsed=elapsed,
                ))
                logger.info("Generation succeeded with %s (%.2fs)", model, elapsed)
                return ChainResult(text=text, model=model, attempts=attempts)

            attempts.append(GenerationAttempt(
                model=model,
                order=order,
                outcome="empty",
                error_kind=ErrorKind.EMPTY,
                detail="empty response",
                elapsed=elapsed,
            ))
            logger.warning("Model %s returned empty text (attempt %d/%d)", model, order, len(self._candidates))

        logger.error(
            "All %d candidate models failed: %s",
            len(attempts),
            "; ".join(f"{a.order}:{a.model}={a.error_kind.value if a.error_kind else '?'}" for a in attempts),
        )
        raise AllModelsFailed(attempts)
