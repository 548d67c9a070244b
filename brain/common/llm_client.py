"""
Provider-agnostic LLM client for Company Brain.

Supports Google Gemini, Anthropic, and OpenAI with a shared text-generation
interface. Provider failures are classified into an ErrorKind here, at the
boundary, so nothing downstream inspects error strings.
"""

from __future__ import annotations

import hashlib
import logging
from typing import Optional

from .errors import ErrorKind, GenerationError

logger = logging.getLogger("brain.common.llm_client")

_STATUS_KINDS = {
    401: ErrorKind.PERMISSION,
    403: ErrorKind.PERMISSION,
    404: ErrorKind.NOT_FOUND,
    429: ErrorKind.RATE_LIMIT,
}


class SafetyBlocked(Exception):
    """The provider refused or filtered the response"""


def _status_of(exc: BaseException) -> Optional[int]:
    # anthropic / openai APIStatusError carry status_code,
    # google.api_core exceptions carry an HTTP code
    for attr in ("status_code", "code"):
        value = getattr(exc, attr, None)
        if isinstance(value, int):
            return value
    return None


def _is_google_safety_exception(exc: BaseException) -> bool:
    try:
        from google.generativeai.types import BlockedPromptException, StopCandidateException
    except ImportError:
        return False
    return isinstance(exc, (BlockedPromptException, StopCandidateException))


def classify_error(exc: BaseException) -> ErrorKind:
    """Map a provider exception onto the closed ErrorKind set"""
    if isinstance(exc, GenerationError):
        return exc.kind
    if isinstance(exc, SafetyBlocked) or _is_google_safety_exception(exc):
        return ErrorKind.SAFETY
    status = _status_of(exc)
    if status is not None:
        return _STATUS_KINDS.get(status, ErrorKind.OTHER)
    return ErrorKind.OTHER


class LLMClient:
    """Unified text generation client across LLM providers."""

    def __init__(
        self,
        provider: str = "google",
        model: str = "",
        google_api_key: Optional[str] = None,
        anthropic_api_key: Optional[str] = None,
        openai_api_key: Optional[str] = None,
    ) -> None:
        self.provider = (provider or "google").lower()
        self.model = model
        self._client = None

        if self.provider == "google":
            if not google_api_key:
                logger.info("%s API key not provided, LLM client unavailable", self.provider)
                return
            try:
                import google.generativeai as genai

                genai.configure(api_key=google_api_key)
                self._client = genai  # Store the module, not a model instance
                self._google_models = {}  # Cache models by (model, system prompt hash)
            except ImportError:
                logger.warning("google-generativeai package not installed")
            except Exception as e:
                logger.warning("Failed to initialize Gemini client: %s", e)
            return

        if self.provider == "anthropic":
            if not anthropic_api_key:
                logger.info("%s API key not provided, LLM client unavailable", self.provider)
                return
            try:
                import anthropic

                self._client = anthropic.Anthropic(api_key=anthropic_api_key)
            except ImportError:
                logger.warning("anthropic package not installed")
            except Exception as e:
                logger.warning("Failed to initialize Anthropic client: %s", e)
            return

        if self.provider == "openai":
            if not openai_api_key:
                logger.info("%s API key not provided, LLM client unavailable", self.provider)
                return
            try:
                from openai import OpenAI

                self._client = OpenAI(api_key=openai_api_key)
            except ImportError:
                logger.warning("openai package not installed")
            except Exception as e:
                logger.warning("Failed to initialize OpenAI client: %s", e)
            return

        logger.warning("Unsupported LLM provider: %s", self.provider)

    @property
    def is_available(self) -> bool:
        return self._client is not None

    def generate(
        self,
        prompt: str,
        *,
        model: Optional[str] = None,
        system: Optional[str] = None,
        max_tokens: int = 1024,
        timeout: float = 60.0,
    ) -> str:
        """Generate text with one model.

        Returns the stripped text, possibly empty. Every provider failure is
        raised as a GenerationError carrying its ErrorKind.
        """
        model = model or self.model
        if not self.is_available:
            raise GenerationError(
                ErrorKind.PERMISSION, model, RuntimeError("LLM client is not available")
            )

        try:
            if self.provider == "google":
                return self._generate_google(prompt, model, system, max_tokens, timeout)
            if self.provider == "anthropic":
                return self._generate_anthropic(prompt, model, system, max_tokens, timeout)
            if self.provider == "openai":
                return self._generate_openai(prompt, model, system, max_tokens, timeout)
        except GenerationError:
            raise
        except Exception as e:
            raise GenerationError(classify_error(e), model, e) from e

        raise GenerationError(
            ErrorKind.OTHER, model, RuntimeError(f"Unsupported LLM provider: {self.provider}")
        )

    def _generate_google(self, prompt, model, system, max_tokens, timeout) -> str:
        cache_key = (model, hashlib.md5((system or "").encode()).hexdigest())
        if cache_key not in self._google_models:
            kwargs = {"model_name": model}
            if system:
                kwargs["system_instruction"] = system
            self._google_models[cache_key] = self._client.GenerativeModel(**kwargs)
        gemini = self._google_models[cache_key]
        response = gemini.generate_content(
            prompt,
            generation_config={"max_output_tokens": max_tokens},
            request_options={"timeout": timeout},
        )

        feedback = getattr(response, "prompt_feedback", None)
        if feedback is not None and getattr(feedback, "block_reason", None):
            raise SafetyBlocked(f"prompt blocked: {feedback.block_reason}")

        candidates = getattr(response, "candidates", None) or []
        if candidates:
            finish_reason = getattr(candidates[0], "finish_reason", None)
            if getattr(finish_reason, "name", finish_reason) == "SAFETY":
                raise SafetyBlocked("candidate stopped by safety filter")
        else:
            return ""

        return (response.text or "").strip()

    def _generate_anthropic(self, prompt, model, system, max_tokens, timeout) -> str:
        kwargs = {
            "model": model,
            "max_tokens": max_tokens,
            "messages": [{"role": "user", "content": prompt}],
            "timeout": timeout,
        }
        if system:
            kwargs["system"] = system
        response = self._client.messages.create(**kwargs)
        if getattr(response, "stop_reason", None) == "refusal":
            raise SafetyBlocked("model refused")
        texts = [block.text for block in response.content if getattr(block, "text", None)]
        return "".join(texts).strip()

    def _generate_openai(self, prompt, model, system, max_tokens, timeout) -> str:
        messages = []
        if system:
            messages.append({"role": "system", "content": system})
        messages.append({"role": "user", "content": prompt})
        response = self._client.chat.completions.create(
            model=model,
            max_tokens=max_tokens,
            messages=messages,
            timeout=timeout,
        )
        choice = response.choices[0]
        if choice.finish_reason == "content_filter":
            raise SafetyBlocked("content filter")
        return (choice.message.content or "").strip()
