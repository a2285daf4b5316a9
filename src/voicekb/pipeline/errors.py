class VoiceKBError(Exception):
    """Base class for errors raised by voicekb."""


class GovernorError(VoiceKBError):
    pass


class OperationTimeout(GovernorError, TimeoutError):
    def __init__(self, name: str, budget: float) -> None:
        super().__init__(f"{name} exceeded its {budget:.3f}s budget")
        self.name = name
        self.budget = budget


class ShuttingDownError(GovernorError):
    def __init__(self, name: str) -> None:
        super().__init__(f"{name} refused: governor is shutting down")
        self.name = name


class QueueFullError(GovernorError):
    def __init__(self, name: str, depth: int) -> None:
        super().__init__(f"{name} refused: admission queue is full ({depth} waiting)")
        self.name = name
        self.depth = depth


class UpstreamError(VoiceKBError):
    """A collaborator (store, LLM, ASR, TTS, extractor) failed."""

    def __init__(self, collaborator: str, message: str) -> None:
        super().__init__(f"{collaborator}: {message}")
        self.collaborator = collaborator


class ValidationError(VoiceKBError):
    pass
