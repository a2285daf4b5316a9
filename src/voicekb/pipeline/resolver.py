"""Multi-stage answer resolution.

kb-first: exact -> synonym -> fuzzy -> content -> llm -> default
llm-first: llm -> default

Every collaborator call goes through the governor and comes back as an
``Outcome``; a failed outcome means the stage found nothing and resolution
moves on. Only admission errors (shutdown, full queue) escape ``resolve``.
"""

from __future__ import annotations

import asyncio
import contextvars
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from .answerer import build_default_answer, build_llm_prompt
from .errors import GovernorError, OperationTimeout, QueueFullError, ShuttingDownError
from .governor import RequestGovernor
from .llm import LLMBackend
from .scorer import MatchScorer
from .store import KnowledgeStore
from .tables import ResolutionTables
from .text import contains_phrase, normalize_text, significant_words
from .types import AnswerResult, KnowledgeEntry, Mode, Outcome, Source

log = logging.getLogger(__name__)

# loop time by which the current resolve must hand back an answer
_deadline: contextvars.ContextVar[Optional[float]] = contextvars.ContextVar("voicekb_resolve_deadline", default=None)


@dataclass
class ResolverSettings:
    recent_limit: int = 100
    llm_snippets: int = 2
    suggestion_limit: int = 3
    stage_timeout_sec: float = 5.0
    llm_timeout_sec: float = 25.0
    total_timeout_sec: float = 30.0

    @classmethod
    def from_config(cls, cfg: Optional[Dict[str, Any]]) -> "ResolverSettings":
        cfg = cfg or {}
        return cls(
            recent_limit=int(cfg.get("recent_limit", 100)),
            llm_snippets=int(cfg.get("llm_snippets", 2)),
            suggestion_limit=int(cfg.get("suggestion_limit", 3)),
            stage_timeout_sec=float(cfg.get("stage_timeout_sec", 5.0)),
            llm_timeout_sec=float(cfg.get("llm_timeout_sec", 25.0)),
            total_timeout_sec=float(cfg.get("total_timeout_sec", 30.0)),
        )


class AnswerResolver:
    def __init__(
        self,
        store: KnowledgeStore,
        governor: RequestGovernor,
        llm: Optional[LLMBackend] = None,
        scorer: Optional[MatchScorer] = None,
        tables: Optional[ResolutionTables] = None,
        settings: Optional[ResolverSettings] = None,
    ) -> None:
        self.store = store
        self.governor = governor
        self.llm = llm
        self.scorer = scorer or MatchScorer()
        self.tables = tables or ResolutionTables()
        self.settings = settings or ResolverSettings()

    async def resolve(self, query: str, mode: Mode = Mode.KB, document: Optional[str] = None) -> AnswerResult:
        """Answer ``query``. Stages share ``total_timeout_sec``; once it is spent
        the remaining lookups are skipped and the scripted default is returned."""
        token = _deadline.set(asyncio.get_running_loop().time() + self.settings.total_timeout_sec)
        try:
            return await self._resolve(query, mode, document)
        finally:
            _deadline.reset(token)

    async def _resolve(self, query: str, mode: Mode, document: Optional[str]) -> AnswerResult:
        q = normalize_text(query)
        if not q:
            return await self._default_stage(query)

        if Mode(mode) is Mode.KB:
            result = await self.match(q)
            if result is not None:
                return result

        result = await self._llm_stage(q, document)
        if result is not None:
            return result
        return await self._default_stage(query)

    async def match(self, query: str) -> Optional[AnswerResult]:
        """Knowledge-store stages only (exact, synonym, fuzzy, content)."""
        q = normalize_text(query)
        if not q:
            return None
        for stage in (self._exact_stage, self._synonym_stage, self._fuzzy_stage, self._content_stage):
            result = await stage(q)
            if result is not None:
                log.debug("resolved %r via %s (score=%s)", q, result.source.value, result.score)
                return result
        log.debug("no knowledge match for %r", q)
        return None

    def rank(self, query: str, entries: List[KnowledgeEntry]) -> List[Tuple[float, KnowledgeEntry]]:
        """Entries scoring above the threshold, best first; ties keep store order."""
        scored = [(self.scorer.score(query, e.question, e.reply_text), e) for e in entries if e.question]
        passing = [pair for pair in scored if self.scorer.passes(pair[0])]
        return sorted(passing, key=lambda pair: pair[0], reverse=True)

    async def related_questions(self, query: str) -> List[str]:
        limit = self.settings.suggestion_limit
        found: List[str] = []
        for word in significant_words(query, min_len=3):
            if len(found) >= limit:
                break
            outcome = await self._call(
                "store.related", lambda w=word: self.store.find_by_substring(("question",), w, limit=limit)
            )
            if not outcome.ok:
                continue
            for entry in outcome.value or []:
                if entry.question not in found:
                    found.append(entry.question)
        return found[:limit]

    async def _call(
        self,
        name: str,
        operation: Callable[[], Awaitable[Any]],
        timeout: Optional[float] = None,
    ) -> Outcome[Any]:
        budget = timeout or self.settings.stage_timeout_sec
        deadline = _deadline.get()
        if deadline is not None:
            remaining = deadline - asyncio.get_running_loop().time()
            if remaining <= 0:
                log.warning("%s skipped: resolve deadline reached", name)
                return Outcome.failure(OperationTimeout(name, 0.0))
            budget = min(budget, remaining)
        try:
            value = await self.governor.admit(operation, name, budget)
        except (ShuttingDownError, QueueFullError):
            raise
        except Exception as exc:  # any collaborator failure ends the stage
            log.warning("%s failed: %s", name, exc)
            return Outcome.failure(exc)
        return Outcome.success(value)

    async def _exact_stage(self, q: str) -> Optional[AnswerResult]:
        outcome = await self._call("store.find_exact", lambda: self.store.find_exact(q))
        entry = outcome.value if outcome.ok else None
        if entry is None or not entry.reply_text:
            return None
        return AnswerResult(source=Source.EXACT, text=entry.reply_text, question=entry.question)

    def _synonym_candidates(self, q: str) -> List[str]:
        matches = []
        for canonical, variants in self.tables.synonyms.items():
            if contains_phrase(q, canonical) or any(
                contains_phrase(q, v) or contains_phrase(v, q) for v in variants
            ):
                matches.append(canonical)
        return matches

    async def _synonym_stage(self, q: str) -> Optional[AnswerResult]:
        for canonical in self._synonym_candidates(q):
            outcome = await self._call(
                "store.find_by_substring",
                lambda c=canonical: self.store.find_by_substring(("question",), c, limit=1),
            )
            if not outcome.ok or not outcome.value:
                continue
            entry = outcome.value[0]
            if entry.reply_text:
                log.debug("synonym %r -> %r", q, entry.question)
                return AnswerResult(source=Source.SYNONYM, text=entry.reply_text, question=entry.question)
        return None

    async def _fuzzy_stage(self, q: str) -> Optional[AnswerResult]:
        outcome = await self._call("store.list_recent", lambda: self.store.list_recent(self.settings.recent_limit))
        if not outcome.ok or not outcome.value:
            return None
        for score, entry in self.rank(q, outcome.value):
            if entry.reply_text:
                log.debug("best fuzzy match %r (score: %.2f)", entry.question, score)
                return AnswerResult(source=Source.FUZZY, text=entry.reply_text, score=score, question=entry.question)
        return None

    async def _content_stage(self, q: str) -> Optional[AnswerResult]:
        outcome = await self._call(
            "store.find_by_substring",
            lambda: self.store.find_by_substring(("answer", "content"), q, limit=1, newest_first=True),
        )
        if not outcome.ok or not outcome.value:
            return None
        entry = outcome.value[0]
        if not entry.reply_text:
            return None
        return AnswerResult(source=Source.CONTENT, text=entry.reply_text, question=entry.question)

    async def _snippets(self, q: str) -> List[str]:
        if self.settings.llm_snippets <= 0:
            return []
        outcome = await self._call("store.list_recent", lambda: self.store.list_recent(self.settings.recent_limit))
        if not outcome.ok or not outcome.value:
            return []
        scored = [(self.scorer.score(q, e.question, e.reply_text), e) for e in outcome.value if e.reply_text]
        scored.sort(key=lambda pair: pair[0], reverse=True)
        return [f"Q: {e.question}\nA: {e.reply_text}" for _, e in scored[: self.settings.llm_snippets]]

    async def _llm_stage(self, q: str, document: Optional[str]) -> Optional[AnswerResult]:
        llm = self.llm
        if llm is None:
            return None
        prompt = build_llm_prompt(q, await self._snippets(q), document)
        outcome = await self._call("llm.complete", lambda: llm.complete(prompt), self.settings.llm_timeout_sec)
        if not outcome.ok or not outcome.value:
            return None
        return AnswerResult(source=Source.LLM, text=outcome.value)

    async def _default_stage(self, query: str) -> AnswerResult:
        try:
            suggestions = await self.related_questions(query)
        except GovernorError as exc:
            log.warning("skipping related topics: %s", exc)
            suggestions = []
        return build_default_answer(query, self.tables, suggestions)
