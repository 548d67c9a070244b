"""
Retriever - Question Answering over Company Knowledge

Finds the knowledge visible to the caller and answers with an LLM.

Key Components:
- KnowledgeIndex: Durable article store plus vector index
- ContextAssembler: Bounded prompt context (articles, projects, members)
- Synthesizer: Answer generation with model fallback

Pipeline:
1. Embed the question and search articles within the caller's scope
2. Append a digest of active projects and members
3. Truncate to the context ceiling
4. Generate the answer, falling back across candidate models
"""

from .context_assembler import ContextAssembler, QueryContext
from .knowledge_index import KnowledgeIndex, ReconcileReport
from .synthesizer import AnswerResponse, Synthesizer, format_answer_for_display

__all__ = [
    "ContextAssembler",
    "QueryContext",
    "KnowledgeIndex",
    "ReconcileReport",
    "AnswerResponse",
    "Synthesizer",
    "format_answer_for_display",
]
