from __future__ import annotations

from typing import Any, AsyncIterator, Dict, Optional

import edge_tts

from ..pipeline.errors import UpstreamError
from ..pipeline.text import strip_markup, truncate


class EdgeTTS:
    """Thin wrapper over edge-tts.

    Produces MP3 bytes, either streamed chunk by chunk or joined. Input text is
    stripped of markdown markers and truncated to ``max_chars``.
    """

    def __init__(self, voice: Optional[str] = None, max_chars: int = 600) -> None:
        self.voice = voice or "en-US-AriaNeural"
        self.max_chars = max_chars

    @classmethod
    def from_config(cls, cfg: Optional[Dict[str, Any]]) -> "EdgeTTS":
        cfg = cfg or {}
        return cls(voice=cfg.get("voice"), max_chars=int(cfg.get("max_chars", 600)))

    def prepare(self, text: str) -> str:
        return truncate(strip_markup(text).strip(), self.max_chars)

    async def stream(self, text: str) -> AsyncIterator[bytes]:
        text = self.prepare(text)
        if not text:
            return
        communicate = edge_tts.Communicate(text, self.voice)
        async for chunk in communicate.stream():
            if chunk["type"] == "audio":
                yield chunk["data"]

    async def synthesize(self, text: str) -> bytes:
        chunks = [audio async for audio in self.stream(text)]
        audio = b"".join(chunks)
        if not audio:
            raise UpstreamError("tts", "no audio produced")
        return audio
