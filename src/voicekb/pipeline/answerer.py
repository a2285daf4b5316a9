from typing import List, Optional, Sequence

from .tables import ResolutionTables
from .text import truncate
from .types import AnswerResult, Source


def build_llm_prompt(question: str, snippets: Sequence[str], document: Optional[str] = None) -> str:
    if not snippets and not document:
        return question
    parts: List[str] = []
    if document:
        parts.append(f"Attached document:\n{document}")
    if snippets:
        evidence = "\n".join(f"{idx}. {text}" for idx, text in enumerate(snippets, start=1))
        parts.append(f"Knowledge snippets:\n{evidence}")
    context = "\n\n".join(parts)
    return f"Question: {question}\n\n{context}\n\nAnswer the question using the material above where it helps."


def build_default_answer(
    query: str,
    tables: ResolutionTables,
    suggestions: Optional[Sequence[str]] = None,
    max_query_chars: int = 200,
) -> AnswerResult:
    shown = truncate(query.strip(), max_query_chars)
    kind = tables.classify(query)
    template = tables.templates.get(kind) or tables.templates["general"]
    text = template.format(query=shown) + "\n\n" + tables.teach_hint.format(query=shown)
    if suggestions:
        related = ", ".join(f'"{q}"' for q in suggestions)
        text += f"\n\n**Related topics:** {related}"
    return AnswerResult(source=Source.DEFAULT, text=text)
