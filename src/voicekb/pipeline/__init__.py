from .dedup import DedupGuard
from .errors import (
    GovernorError,
    OperationTimeout,
    QueueFullError,
    ShuttingDownError,
    UpstreamError,
    ValidationError,
    VoiceKBError,
)
from .governor import RequestGovernor
from .resolver import AnswerResolver, ResolverSettings
from .scorer import MatchScorer, ScoreWeights
from .service import ConversationService, ServiceSettings
from .session import SessionModeStore
from .store import InMemoryKnowledgeStore, KnowledgeStore
from .tables import ResolutionTables
from .types import AnswerResult, KnowledgeEntry, Mode, Origin, Outcome, Request, Source

__all__ = [
    "AnswerResolver",
    "AnswerResult",
    "ConversationService",
    "DedupGuard",
    "GovernorError",
    "InMemoryKnowledgeStore",
    "KnowledgeEntry",
    "KnowledgeStore",
    "MatchScorer",
    "Mode",
    "OperationTimeout",
    "Origin",
    "Outcome",
    "QueueFullError",
    "Request",
    "RequestGovernor",
    "ResolutionTables",
    "ResolverSettings",
    "ScoreWeights",
    "ServiceSettings",
    "SessionModeStore",
    "ShuttingDownError",
    "Source",
    "UpstreamError",
    "ValidationError",
    "VoiceKBError",
]
