import re
from typing import List

SPACE_RE = re.compile(r"\s+")
MARKUP_RE = re.compile(r"\*\*|`")


def normalize_text(text: str) -> str:
    normalized = text.replace("\u3000", " ").strip().lower()
    normalized = SPACE_RE.sub(" ", normalized)
    return normalized


def significant_words(text: str, min_len: int = 2) -> List[str]:
    """Whitespace tokens of ``text`` longer than ``min_len`` characters."""
    return [w for w in SPACE_RE.split(text.lower()) if len(w) > min_len]


def contains_phrase(text: str, phrase: str) -> bool:
    if not phrase:
        return False
    pattern = r"(?<!\w)" + re.escape(phrase) + r"(?!\w)"
    return re.search(pattern, text) is not None


def strip_markup(text: str) -> str:
    return MARKUP_RE.sub("", text)


def truncate(text: str, max_chars: int) -> str:
    if max_chars <= 0 or len(text) <= max_chars:
        return text
    return text[:max_chars].rstrip()
