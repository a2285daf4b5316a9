from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Generic, Optional, TypeVar

T = TypeVar("T")


class Origin(str, Enum):
    VOICE = "voice"
    TEXT = "text"


class Mode(str, Enum):
    KB = "kb"
    LLM = "llm"


class Source(str, Enum):
    EXACT = "exact"
    SYNONYM = "synonym"
    FUZZY = "fuzzy"
    CONTENT = "content"
    LLM = "llm"
    DEFAULT = "default"


@dataclass(frozen=True)
class Request:
    id: str
    text: str
    origin: Origin
    user_id: str
    submitted_at: float = field(default_factory=time.time)


@dataclass
class KnowledgeEntry:
    id: str
    question: str
    answer: str
    content: str = ""
    created_at: float = 0.0
    updated_at: float = 0.0

    @property
    def reply_text(self) -> str:
        return self.answer or self.content


@dataclass(frozen=True)
class AnswerResult:
    source: Source
    text: str
    score: Optional[float] = None
    question: Optional[str] = None


@dataclass(frozen=True)
class Outcome(Generic[T]):
    """Result of one collaborator call: either a value or the error it raised."""

    ok: bool
    value: Optional[T] = None
    error: Optional[BaseException] = None

    @classmethod
    def success(cls, value: Any) -> "Outcome[Any]":
        return cls(ok=True, value=value)

    @classmethod
    def failure(cls, error: BaseException) -> "Outcome[Any]":
        return cls(ok=False, error=error)
