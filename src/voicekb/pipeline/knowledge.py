import logging
import re
from dataclasses import dataclass
from typing import Dict, List, Tuple

from .errors import ValidationError
from .store import KnowledgeStore
from .tables import ResolutionTables
from .text import significant_words
from .types import KnowledgeEntry

log = logging.getLogger(__name__)

SENTENCE_END_RE = re.compile(r"[.!?]")


@dataclass
class AddResult:
    question: str
    answer: str
    created: bool

    @property
    def summary(self) -> str:
        verb = "Added" if self.created else "Updated"
        return f'{verb}: "{self.question}"'


def generate_question(answer: str) -> str:
    words = significant_words(answer, min_len=3)
    if words:
        return f"What is {words[0]}?"
    return SENTENCE_END_RE.split(answer)[0][:50].strip() or "General information"


def parse_payload(payload: str) -> Tuple[str, str]:
    """Split ``question || answer``; a payload without ``||`` is all answer."""
    if "||" in payload:
        parts = [part.strip() for part in payload.split("||")]
        question = parts[0].strip().strip('"')
        answer = "||".join(parts[1:]).strip().strip('"')
    else:
        answer = payload.strip()
        question = generate_question(answer)

    if not question or len(question) < 2:
        raise ValidationError("Question is too short or invalid")
    if not answer or len(answer) < 2:
        raise ValidationError("Answer is too short or invalid")
    return question, answer


async def add_knowledge(store: KnowledgeStore, payload: str) -> AddResult:
    question, answer = parse_payload(payload)
    existing = await store.find_exact(question)
    if existing is not None:
        await store.update(existing.id, {"answer": answer, "content": answer})
        log.info("updated knowledge %s: %r", existing.id, existing.question)
        return AddResult(question=existing.question, answer=answer, created=False)

    entry = await store.insert(KnowledgeEntry(id="", question=question, answer=answer, content=answer))
    log.info("added knowledge %s: %r", entry.id, question)
    return AddResult(question=question, answer=answer, created=True)


async def render_faq(store: KnowledgeStore, tables: ResolutionTables, limit: int = 15, per_category: int = 5) -> str:
    questions = await store.list_questions(limit)
    if not questions:
        return 'No FAQs yet. Be the first to add one!\n\n`/add "question" || "answer"`'

    categories: Dict[str, List[str]] = {}
    for question in questions:
        categories.setdefault(tables.faq_category(question), []).append(question)

    lines = ["**Frequently Asked Questions**", ""]
    for category, items in categories.items():
        lines.append(f"**{category}:**")
        lines.extend(f"• {q}" for q in items[:per_category])
        lines.append("")
    lines.append(f"**Total knowledge:** {await store.count()} items")
    lines.append("**Search:** `/search [topic]`")
    lines.append('**Add:** `/add "question" || "answer"`')
    return "\n".join(lines)
