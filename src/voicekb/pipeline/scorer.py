from dataclasses import dataclass
from typing import Any, Dict, Optional

from .text import normalize_text, significant_words


@dataclass(frozen=True)
class ScoreWeights:
    exact_contains: float = 3.0
    word_overlap: float = 2.0
    starts_with: float = 1.5
    ends_with: float = 1.0
    length_similarity: float = 0.5
    answer_contains: float = 0.3

    @classmethod
    def from_config(cls, cfg: Optional[Dict[str, Any]]) -> "ScoreWeights":
        cfg = cfg or {}
        defaults = cls()
        return cls(**{name: float(cfg.get(name, getattr(defaults, name))) for name in defaults.__dataclass_fields__})


def word_overlap(query: str, candidate: str) -> float:
    """Share of significant words that partially match a word on the other side."""
    q_words = significant_words(query)
    c_words = significant_words(candidate)
    if not q_words or not c_words:
        return 0.0
    common = [w for w in q_words if any(c in w or w in c for c in c_words)]
    return len(common) / max(len(q_words), len(c_words))


def length_similarity(query: str, candidate: str) -> float:
    longest = max(len(query), len(candidate))
    if longest == 0:
        return 0.0
    return 1.0 - abs(len(query) - len(candidate)) / longest


class MatchScorer:
    def __init__(self, weights: Optional[ScoreWeights] = None, threshold: float = 0.3) -> None:
        self.weights = weights or ScoreWeights()
        self.threshold = threshold

    def signals(self, query: str, question: str, answer: str = "") -> Dict[str, float]:
        q = normalize_text(query)
        c = normalize_text(question)
        words = c.split(" ") if c else []
        return {
            "exact_contains": 1.0 if q and c and (q in c or c in q) else 0.0,
            "word_overlap": word_overlap(q, c),
            "starts_with": 1.0 if words and q.startswith(words[0]) else 0.0,
            "ends_with": 1.0 if words and q.endswith(words[-1]) else 0.0,
            "length_similarity": length_similarity(q, c),
            "answer_contains": 1.0 if q and q in (answer or "").lower() else 0.0,
        }

    def score(self, query: str, question: str, answer: str = "") -> float:
        w = self.weights
        s = self.signals(query, question, answer)
        return (
            s["exact_contains"] * w.exact_contains
            + s["word_overlap"] * w.word_overlap
            + s["starts_with"] * w.starts_with
            + s["ends_with"] * w.ends_with
            + s["length_similarity"] * w.length_similarity
            + s["answer_contains"] * w.answer_contains
        )

    def passes(self, score: float) -> bool:
        return score > self.threshold
