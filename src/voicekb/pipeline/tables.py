"""Static lookup data used by the resolver: synonyms, query patterns, reply templates.

Everything here is plain data so it can be extended from config without
touching the resolution logic.
"""

import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Pattern, Tuple

DEFAULT_SYNONYMS: Dict[str, List[str]] = {
    # greetings
    "hello": ["hi", "hey", "hi there", "hello there", "howdy", "greetings", "yo", "sup"],
    "good morning": ["morning", "top of the morning"],
    "good afternoon": ["afternoon"],
    "good evening": ["evening", "night"],
    # help / support
    "help": ["support", "assist", "aid", "guidance", "trouble", "problem", "issue"],
    "support": ["customer service", "help desk", "assistance", "tech support"],
    "thank you": ["thanks", "thx", "thank you very much", "appreciate it", "cheers", "grateful"],
    "bye": ["goodbye", "see you", "farewell", "later", "take care", "cya", "adios"],
    # about the bot
    "how are you": ["how do you do", "hows it going", "whats up", "how are things", "hows life"],
    "what are you": ["who are you", "what is this", "what is this bot"],
    "what can you do": ["capabilities", "features", "functions", "abilities", "what do you do"],
    "voice": ["speak", "talk", "microphone", "audio", "sound", "voice message"],
    "how do i use": ["how to use", "how does this work", "instructions", "tutorial"],
    # account
    "account": ["login", "sign in", "profile", "user", "credentials"],
    "password": ["reset password", "forgot password", "change password", "lost password"],
    # pricing
    "price": ["cost", "pricing", "fee", "charge", "subscription", "how much", "costs"],
    "free": ["free trial", "no cost", "complimentary", "gratis"],
    # technical
    "error": ["problem", "issue", "bug", "not working", "broken", "failed"],
    "not working": ["doesnt work", "not functioning", "broken", "malfunctioning"],
}

# (regex, category); first match wins, order matters.
DEFAULT_PATTERNS: List[Tuple[str, str]] = [
    (r"^(what|who|where|when|why|how|can|is|are|do|does|will|would|should|could)\b", "question"),
    (r"\?$", "question"),
    (r"^(tell me|explain|describe|show me|teach me)", "explanation"),
    (r"^(how to|how do i|steps to|guide to)", "howto"),
]

DEFAULT_GREETINGS: List[str] = ["hello", "hi", "hey", "good morning", "good afternoon", "good evening"]

DEFAULT_TEMPLATES: Dict[str, str] = {
    "greeting": "Hello! I'm your assistant. I don't have specific info about \"{query}\" yet, but I'd love to learn!",
    "question": "That's a great question about \"{query}\"! I need to learn more about this topic.",
    "explanation": "I'd be happy to explain \"{query}\"! First, I need to learn about it.",
    "howto": "I can help you with \"{query}\"! Let me learn the steps first.",
    "general": "I'm still learning about \"{query}\". Would you like to teach me?",
}

DEFAULT_TEACH_HINT = "**Teach me:**\n`/add \"{query}\" || [your answer here]`"

# FAQ grouping: (category, any-of keywords, all-of keywords)
DEFAULT_FAQ_CATEGORIES: List[Tuple[str, List[str], List[str]]] = [
    ("Greetings", ["hello", "hi", "hey"], []),
    ("Usage", [], ["how", "use"]),
    ("About", [], ["what", "you"]),
    ("Account", ["account", "login", "password"], []),
    ("Pricing", ["price", "cost", "free"], []),
    ("Support", ["help", "support"], []),
]


@dataclass
class ResolutionTables:
    synonyms: Dict[str, List[str]] = field(default_factory=lambda: dict(DEFAULT_SYNONYMS))
    patterns: List[Tuple[Pattern[str], str]] = field(
        default_factory=lambda: [(re.compile(rx, re.IGNORECASE), kind) for rx, kind in DEFAULT_PATTERNS]
    )
    greetings: List[str] = field(default_factory=lambda: list(DEFAULT_GREETINGS))
    templates: Dict[str, str] = field(default_factory=lambda: dict(DEFAULT_TEMPLATES))
    teach_hint: str = DEFAULT_TEACH_HINT
    faq_categories: List[Tuple[str, List[str], List[str]]] = field(
        default_factory=lambda: list(DEFAULT_FAQ_CATEGORIES)
    )

    @classmethod
    def from_config(cls, cfg: Optional[Dict[str, Any]]) -> "ResolutionTables":
        """Build tables from the ``tables`` config section.

        Synonyms and templates are merged over the defaults; patterns and
        greetings replace them when given.
        """
        cfg = cfg or {}
        tables = cls()
        if cfg.get("synonyms"):
            if cfg.get("replace_synonyms"):
                tables.synonyms = {}
            for canonical, variants in cfg["synonyms"].items():
                tables.synonyms[canonical.lower()] = [v.lower() for v in variants]
        if cfg.get("patterns"):
            tables.patterns = [(re.compile(p["regex"], re.IGNORECASE), p["type"]) for p in cfg["patterns"]]
        if cfg.get("greetings"):
            tables.greetings = [g.lower() for g in cfg["greetings"]]
        tables.templates.update(cfg.get("templates", {}))
        if cfg.get("teach_hint"):
            tables.teach_hint = cfg["teach_hint"]
        return tables

    def classify(self, query: str) -> str:
        q = query.lower().strip()
        kind = "general"
        for regex, category in self.patterns:
            if regex.search(q):
                kind = category
                break
        if any(g in q for g in self.greetings):
            kind = "greeting"
        return kind

    def faq_category(self, question: str) -> str:
        q = question.lower()
        for category, any_of, all_of in self.faq_categories:
            if any_of and any(k in q for k in any_of):
                return category
            if all_of and all(k in q for k in all_of):
                return category
        return "General"
