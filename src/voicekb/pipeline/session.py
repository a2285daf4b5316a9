import time
from dataclasses import dataclass, field
from typing import Callable, Dict, Optional, Tuple

from .types import Mode, Origin


@dataclass
class SessionState:
    voice_mode: Mode = Mode.KB
    text_mode: Mode = Mode.KB
    # (text, expires_at)
    pending_context: Optional[Tuple[str, float]] = None


class SessionModeStore:
    """Per-user routing modes and attached document context, kept in process memory."""

    def __init__(self, context_ttl_sec: float = 1800, clock: Callable[[], float] = time.time) -> None:
        self.context_ttl_sec = context_ttl_sec
        self._clock = clock
        self._sessions: Dict[str, SessionState] = {}

    def _state(self, user_id: str) -> SessionState:
        state = self._sessions.get(user_id)
        if state is None:
            state = SessionState()
            self._sessions[user_id] = state
        return state

    def get_mode(self, user_id: str, channel: Origin) -> Mode:
        state = self._sessions.get(user_id)
        if state is None:
            return Mode.KB
        return state.voice_mode if Origin(channel) is Origin.VOICE else state.text_mode

    def set_mode(self, user_id: str, channel: Origin, value: Mode) -> None:
        state = self._state(user_id)
        if Origin(channel) is Origin.VOICE:
            state.voice_mode = Mode(value)
        else:
            state.text_mode = Mode(value)

    def attach_context(self, user_id: str, text: str, ttl_sec: Optional[float] = None) -> None:
        ttl = self.context_ttl_sec if ttl_sec is None else ttl_sec
        self._state(user_id).pending_context = (text, self._clock() + ttl)

    def pending_context(self, user_id: str) -> Optional[str]:
        state = self._sessions.get(user_id)
        if state is None or state.pending_context is None:
            return None
        text, expires_at = state.pending_context
        if expires_at < self._clock():
            state.pending_context = None
            return None
        return text

    def clear_context(self, user_id: str) -> None:
        state = self._sessions.get(user_id)
        if state is not None:
            state.pending_context = None
