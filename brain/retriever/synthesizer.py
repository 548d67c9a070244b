"""
Synthesizer

Answers a question from an assembled QueryContext through the model
fallback chain.

Key principles:
- Sources are the articles that made it into the context, never re-derived
  from the model's text
- When every model fails, the answer is a classified user-facing message,
  never a raw exception string
- Follow-up questions are best-effort and never affect the primary answer
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ..common.config import CompanyConfig
from ..common.errors import AllModelsFailed, ErrorKind
from ..common.language import LanguageInfo, detect_language
from ..common.llm_utils import coerce_str_list, parse_llm_json
from ..common.model_chain import ModelChain
from .context_assembler import QueryContext

logger = logging.getLogger("brain.retriever.synthesizer")

MAX_FOLLOW_UPS = 3


@dataclass
class AnswerResponse:
    """Structured answer returned to the caller"""
    text: str
    sources: List[Dict[str, Any]] = field(default_factory=list)
    follow_up_questions: List[str] = field(default_factory=list)
    model: Optional[str] = None
    error_kind: Optional[ErrorKind] = None
    warnings: List[str] = field(default_factory=list)

    @property
    def failed(self) -> bool:
        return self.error_kind is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "text": self.text,
            "sources": self.sources,
            "follow_up_questions": self.follow_up_questions,
            "model": self.model,
            "error_kind": self.error_kind.value if self.error_kind else None,
            "warnings": self.warnings,
        }


SYSTEM_PROMPT = """You are "Company Brain", the internal AI assistant of {company_name}.
Industry: {industry}
About the company: {description}

{language_instruction}

Rules:
1. Answer company-specific questions ONLY from the context below (knowledge articles, projects, members). Do NOT make up policies, numbers, or people.
2. When you use a knowledge article, mention its title.
3. If the context does not contain the answer, say so plainly and suggest who or what might know.
4. Be concise and direct. Use short lists where they help."""


ANSWER_PROMPT = """Context:
{context}

User question: {question}

Answer:"""


FOLLOW_UP_PROMPT = """A user asked: "{question}"
The assistant answered: "{answer}"

Suggest {count} short follow-up questions the user might ask next.
{language_instruction}
Respond with a JSON array of strings only.

JSON:"""


class Synthesizer:
    """
    Generates answers through the model fallback chain.

    A separate chain can be used for follow-up questions (e.g. a cheaper
    model); by default the answer chain is reused.
    """

    def __init__(
        self,
        chain: ModelChain,
        follow_up_chain: Optional[ModelChain] = None,
        company: Optional[CompanyConfig] = None,
        follow_ups_enabled: bool = True,
    ):
        """
        Initialize synthesizer.

        Args:
            chain: Fallback chain for the primary answer
            follow_up_chain: Chain for follow-up questions (default: chain)
            company: Company profile for the system framing
            follow_ups_enabled: Generate follow-up questions
        """
        self._chain = chain
        self._follow_up_chain = follow_up_chain or chain
        self._company = company or CompanyConfig()
        self._follow_ups_enabled = follow_ups_enabled

    def build_system_prompt(self, language: LanguageInfo) -> str:
        return SYSTEM_PROMPT.format(
            company_name=self._company.name,
            industry=self._company.industry,
            description=self._company.description,
            language_instruction=language.answer_instruction(),
        )

    async def answer(self, question: str, context: QueryContext) -> AnswerResponse:
        """
        Answer a question from the assembled context.

        Never raises for model failures: AllModelsFailed becomes an
        AnswerResponse carrying the classified message and error_kind.
        """
        language = detect_language(question)
        prompt = ANSWER_PROMPT.format(context=context.text, question=question)

        warnings = []
        if not context.articles:
            warnings.append("No knowledge articles matched; answer uses organizational context only")
        if context.truncated:
            warnings.append("Context was truncated to fit the size limit")

        try:
            result = await self._chain.generate(prompt, system=self.build_system_prompt(language))
        except AllModelsFailed as e:
            logger.error("Answer generation failed after %d attempt(s): %s", len(e.attempts), e)
            return AnswerResponse(
                text=e.user_message,
                error_kind=e.kind,
                warnings=warnings,
            )

        follow_ups: List[str] = []
        if self._follow_ups_enabled:
            follow_ups = await self.suggest_follow_ups(question, result.text, language)

        return AnswerResponse(
            text=result.text,
            sources=context.sources,
            follow_up_questions=follow_ups,
            model=result.model,
            warnings=warnings,
        )

    async def suggest_follow_ups(
        self,
        question: str,
        answer: str,
        language: Optional[LanguageInfo] = None,
    ) -> List[str]:
        """Best-effort follow-up questions; any failure yields []"""
        language = language or detect_language(question)
        prompt = FOLLOW_UP_PROMPT.format(
            question=question,
            answer=answer[:2000],
            count=MAX_FOLLOW_UPS,
            language_instruction=language.answer_instruction(),
        )
        try:
            result = await self._follow_up_chain.generate(prompt, max_tokens=512)
        except AllModelsFailed as e:
            logger.warning("Follow-up generation failed: %s", e)
            return []
        except Exception as e:
            logger.warning("Follow-up generation failed unexpectedly: %s", e)
            return []

        return coerce_str_list(parse_llm_json(result.text, default=[]), limit=MAX_FOLLOW_UPS)


def format_answer_for_display(answer: AnswerResponse) -> str:
    """Format an answer for CLI/log display"""
    lines = [answer.text]

    if answer.model:
        lines.append("")
        lines.append(f"**Model**: {answer.model}")

    if answer.warnings:
        lines.append("")
        lines.append("**Warnings**:")
        for w in answer.warnings:
            lines.append(f"  - {w}")

    if answer.sources:
        lines.append("")
        lines.append("**Sources**:")
        for s in answer.sources:
            suffix = f" <{s['url']}>" if s.get("url") else ""
            lines.append(f"  - {s['title']}{suffix}")

    if answer.follow_up_questions:
        lines.append("")
        lines.append("**Follow-up questions**:")
        for q in answer.follow_up_questions:
            lines.append(f"  - {q}")

    return "\n".join(lines)
