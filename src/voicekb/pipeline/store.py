"""Knowledge store interface and the in-process implementation.

The resolver only reads from the store; writes come from the knowledge-add
path. All matching is case-insensitive.
"""

from __future__ import annotations

import time
import uuid
from abc import ABC, abstractmethod
from dataclasses import replace
from typing import Any, Callable, Dict, List, Optional, Sequence

from .loader import load_knowledge, write_knowledge
from .text import normalize_text
from .types import KnowledgeEntry, Origin

SEARCHABLE_FIELDS = ("question", "answer", "content")


class KnowledgeStore(ABC):
    @abstractmethod
    async def find_exact(self, question: str) -> Optional[KnowledgeEntry]:
        """Entry whose question equals ``question`` after ``normalize_text``, if any."""

    @abstractmethod
    async def find_by_substring(
        self,
        fields: Sequence[str],
        pattern: str,
        limit: int = 1,
        newest_first: bool = False,
    ) -> List[KnowledgeEntry]:
        """Entries where any of ``fields`` contains ``pattern``."""

    @abstractmethod
    async def list_recent(self, limit: int) -> List[KnowledgeEntry]:
        """Up to ``limit`` entries with a question, newest first."""

    @abstractmethod
    async def insert(self, entry: KnowledgeEntry) -> KnowledgeEntry:
        ...

    @abstractmethod
    async def update(self, entry_id: str, fields: Dict[str, Any]) -> KnowledgeEntry:
        ...

    @abstractmethod
    async def count(self) -> int:
        ...

    async def list_questions(self, limit: int) -> List[str]:
        """Questions in alphabetical order."""
        entries = await self.list_recent(max(limit, await self.count()))
        return sorted((e.question for e in entries), key=str.lower)[:limit]

    async def save_message(self, user_id: str, text: str, origin: Origin) -> None:
        """Record a user utterance. Stores without a transcript log ignore it."""
        return None

    @property
    def name(self) -> str:
        return self.__class__.__name__


class InMemoryKnowledgeStore(KnowledgeStore):
    """List-backed store, optionally mirrored to a JSONL file on every write."""

    def __init__(
        self,
        entries: Optional[List[KnowledgeEntry]] = None,
        path: Optional[str] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.path = path
        self._clock = clock
        self._entries: List[KnowledgeEntry] = list(entries or [])
        self.messages: List[Dict[str, Any]] = []

    @classmethod
    def from_file(cls, path: str, create: bool = True) -> "InMemoryKnowledgeStore":
        try:
            entries = load_knowledge(path)
        except FileNotFoundError:
            if not create:
                raise
            entries = []
        return cls(entries, path=path)

    async def find_exact(self, question: str) -> Optional[KnowledgeEntry]:
        q = normalize_text(question)
        for entry in self._entries:
            if normalize_text(entry.question) == q:
                return entry
        return None

    async def find_by_substring(
        self,
        fields: Sequence[str],
        pattern: str,
        limit: int = 1,
        newest_first: bool = False,
    ) -> List[KnowledgeEntry]:
        unknown = set(fields) - set(SEARCHABLE_FIELDS)
        if unknown:
            raise ValueError(f"Unsupported search fields: {sorted(unknown)}")
        p = pattern.strip().lower()
        if not p:
            return []
        pool = self._newest_first() if newest_first else self._entries
        hits = [e for e in pool if any(p in (getattr(e, f) or "").lower() for f in fields)]
        return hits[:limit]

    async def list_recent(self, limit: int) -> List[KnowledgeEntry]:
        return [e for e in self._newest_first() if e.question][:limit]

    async def insert(self, entry: KnowledgeEntry) -> KnowledgeEntry:
        now = self._clock()
        stored = replace(
            entry,
            id=entry.id or uuid.uuid4().hex[:12],
            content=entry.content or entry.answer,
            created_at=entry.created_at or now,
            updated_at=entry.updated_at or now,
        )
        self._entries.append(stored)
        self._flush()
        return stored

    async def update(self, entry_id: str, fields: Dict[str, Any]) -> KnowledgeEntry:
        for idx, entry in enumerate(self._entries):
            if entry.id == entry_id:
                changes = {k: v for k, v in fields.items() if k in SEARCHABLE_FIELDS}
                updated = replace(entry, updated_at=self._clock(), **changes)
                self._entries[idx] = updated
                self._flush()
                return updated
        raise KeyError(entry_id)

    async def count(self) -> int:
        return len(self._entries)

    async def save_message(self, user_id: str, text: str, origin: Origin) -> None:
        self.messages.append({"user_id": user_id, "text": text, "source": Origin(origin).value, "ts": self._clock()})

    def _newest_first(self) -> List[KnowledgeEntry]:
        # sorted() is stable, so equal timestamps keep later inserts first
        return sorted(reversed(self._entries), key=lambda e: e.created_at, reverse=True)

    def _flush(self) -> None:
        if self.path:
            write_knowledge(self.path, self._entries)

    @property
    def name(self) -> str:
        return "InMemory" if not self.path else f"JSONL({self.path})"
