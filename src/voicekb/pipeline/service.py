"""Conversation flow shared by every transport.

inbound event -> dedup -> transcription (voice) -> governor.admit(resolve)
-> text reply -> synthesized voice reply
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, Protocol

from .dedup import DedupGuard
from .errors import GovernorError, ValidationError
from .governor import RequestGovernor
from .knowledge import add_knowledge, render_faq
from .resolver import AnswerResolver
from .session import SessionModeStore
from .text import truncate
from .types import AnswerResult, Mode, Origin, Request

log = logging.getLogger(__name__)

APOLOGY = "Sorry, I'm a bit overloaded right now. Please try again in a moment."
ADD_USAGE = (
    '**Usage:**\n`/add "question" || "answer"`\n\n'
    "**Examples:**\n"
    "• `/add What is the return policy? || 30-day returns`\n"
    '• `/add How to reset password? || Click "Forgot Password" on login page`'
)


class ChatTransport(Protocol):
    async def send_text(self, text: str) -> None:
        ...

    async def send_voice(self, audio: bytes) -> None:
        ...


class SpeechToText(Protocol):
    ready: bool

    async def transcribe(self, audio_bytes: bytes) -> str:
        ...


class TextToSpeech(Protocol):
    async def synthesize(self, text: str) -> bytes:
        ...


class DocumentReader(Protocol):
    async def extract(self, data: bytes, kind: str) -> str:
        ...


@dataclass
class ServiceSettings:
    resolve_timeout_sec: float = 40.0
    asr_timeout_sec: float = 30.0
    tts_timeout_sec: float = 20.0
    store_timeout_sec: float = 5.0
    document_timeout_sec: float = 30.0
    max_context_chars: int = 8000
    voice_replies: bool = True

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "ServiceSettings":
        budgets = config.get("governor", {}).get("budgets", {})
        return cls(
            resolve_timeout_sec=float(budgets.get("resolve", 40.0)),
            asr_timeout_sec=float(budgets.get("transcribe", 30.0)),
            tts_timeout_sec=float(budgets.get("synthesize", 20.0)),
            store_timeout_sec=float(budgets.get("store", 5.0)),
            document_timeout_sec=float(budgets.get("extract", 30.0)),
            max_context_chars=int(config.get("session", {}).get("max_context_chars", 8000)),
            voice_replies=bool(config.get("tts", {}).get("voice_replies", True)),
        )


class ConversationService:
    def __init__(
        self,
        resolver: AnswerResolver,
        governor: RequestGovernor,
        sessions: Optional[SessionModeStore] = None,
        dedup: Optional[DedupGuard] = None,
        asr: Optional[SpeechToText] = None,
        tts: Optional[TextToSpeech] = None,
        extractor: Optional[DocumentReader] = None,
        settings: Optional[ServiceSettings] = None,
    ) -> None:
        self.resolver = resolver
        self.store = resolver.store
        self.governor = governor
        self.sessions = sessions or SessionModeStore()
        self.dedup = dedup or DedupGuard()
        self.asr = asr
        self.tts = tts
        self.extractor = extractor
        self.settings = settings or ServiceSettings()
        self._commands: Dict[str, Callable[[str, str, ChatTransport], Awaitable[None]]] = {
            "start": self._cmd_start,
            "help": self._cmd_start,
            "add": self._cmd_add,
            "search": self._cmd_search,
            "faq": self._cmd_faq,
            "stats": self._cmd_stats,
            "mode": self._cmd_mode,
            "forget": self._cmd_forget,
        }

    # ── inbound events ──

    async def handle_text(self, message_id: str, user_id: str, text: str, transport: ChatTransport) -> Optional[AnswerResult]:
        if self.dedup.seen(message_id):
            log.debug("skipping redelivered message %s", message_id)
            return None
        text = text.strip()
        if not text:
            return None
        if text.startswith("/"):
            await self.handle_command(user_id, text, transport)
            return None
        return await self._answer(Request(id=message_id, text=text, origin=Origin.TEXT, user_id=user_id), transport)

    async def handle_voice(self, message_id: str, user_id: str, audio: bytes, transport: ChatTransport) -> Optional[AnswerResult]:
        if self.dedup.seen(message_id):
            log.debug("skipping redelivered voice message %s", message_id)
            return None
        asr = self.asr
        if asr is None:
            await transport.send_text("Voice input is not available. Please type your question.")
            return None

        await transport.send_text("Listening...")
        try:
            text = await self.governor.admit(lambda: asr.transcribe(audio), "asr.transcribe", self.settings.asr_timeout_sec)
        except GovernorError as exc:
            log.warning("transcription of %s not admitted/finished: %s", message_id, exc)
            await transport.send_text(APOLOGY)
            return None
        except Exception:
            log.exception("transcription of %s failed", message_id)
            await transport.send_text("Sorry, error processing voice. Try typing instead.")
            return None

        text = (text or "").strip()
        if not text:
            await transport.send_text("I heard nothing. Please try again.")
            return None
        await transport.send_text(f"**You said:** {text}")
        return await self._answer(Request(id=message_id, text=text, origin=Origin.VOICE, user_id=user_id), transport)

    async def handle_document(
        self, message_id: str, user_id: str, data: bytes, kind: str, transport: ChatTransport
    ) -> Optional[str]:
        if self.dedup.seen(message_id):
            return None
        extractor = self.extractor
        if extractor is None:
            await transport.send_text("Document upload is not available.")
            return None
        try:
            text = await self.governor.admit(
                lambda: extractor.extract(data, kind), "documents.extract", self.settings.document_timeout_sec
            )
        except GovernorError as exc:
            log.warning("document %s not extracted: %s", message_id, exc)
            await transport.send_text(APOLOGY)
            return None
        except Exception as exc:
            log.warning("document %s extraction failed: %s", message_id, exc)
            await transport.send_text(f"Sorry, I couldn't read that document ({exc}).")
            return None

        text = truncate((text or "").strip(), self.settings.max_context_chars)
        if not text:
            await transport.send_text("I couldn't find any text in that document.")
            return None
        self.sessions.attach_context(user_id, text)
        minutes = int(self.sessions.context_ttl_sec // 60)
        reply = f"Document received ({len(text)} characters). Ask me about it in the next {minutes} minutes."
        if self.resolver.llm is None:
            reply += "\nNo language model is configured, so answers still come from the knowledge base."
        await transport.send_text(reply)
        return text

    async def handle_command(self, user_id: str, text: str, transport: ChatTransport) -> None:
        name, _, arg = text[1:].partition(" ")
        name = name.split("@", 1)[0].lower()
        handler = self._commands.get(name)
        if handler is None:
            await transport.send_text(f"Unknown command /{name}. Try /help.")
            return
        try:
            await handler(user_id, arg.strip(), transport)
        except GovernorError as exc:
            log.warning("/%s not completed: %s", name, exc)
            await transport.send_text(APOLOGY)
        except Exception:
            log.exception("/%s failed", name)
            await transport.send_text(f"Error handling /{name}. Please try again later.")

    # ── resolution + replies ──

    async def _answer(self, request: Request, transport: ChatTransport) -> Optional[AnswerResult]:
        await self._record(request)
        mode = self.sessions.get_mode(request.user_id, request.origin)
        document = self.sessions.pending_context(request.user_id)
        try:
            result = await self.governor.admit(
                lambda: self.resolver.resolve(request.text, mode, document),
                "resolve",
                self.settings.resolve_timeout_sec,
            )
        except GovernorError as exc:
            log.warning("request %s not resolved: %s", request.id, exc)
            await transport.send_text(APOLOGY)
            return None

        log.info("request %s (%s, %s) answered via %s", request.id, request.origin.value, mode.value, result.source.value)
        await transport.send_text(result.text)
        if self.settings.voice_replies:
            await self._speak(result.text, transport)
        return result

    async def _record(self, request: Request) -> None:
        try:
            await self.governor.admit(
                lambda: self.store.save_message(request.user_id, request.text, request.origin),
                "store.save_message",
                self.settings.store_timeout_sec,
            )
        except Exception as exc:
            log.warning("failed to save transcript for %s: %s", request.id, exc)

    async def _speak(self, text: str, transport: ChatTransport) -> None:
        tts = self.tts
        if tts is None:
            return
        try:
            audio = await self.governor.admit(lambda: tts.synthesize(text), "tts.synthesize", self.settings.tts_timeout_sec)
        except Exception as exc:
            log.warning("voice reply failed: %s", exc)
            await transport.send_text("(Voice reply failed)")
            return
        await transport.send_voice(audio)

    async def _store_call(self, name: str, operation: Callable[[], Awaitable[Any]]) -> Any:
        return await self.governor.admit(operation, name, self.settings.store_timeout_sec)

    # ── commands ──

    async def _cmd_start(self, user_id: str, arg: str, transport: ChatTransport) -> None:
        count = await self._store_call("store.count", self.store.count)
        await transport.send_text(
            f"Welcome! I'm your voice assistant with {count} pieces of knowledge.\n\n"
            "Send voice or text, and I'll reply from my knowledge base!\n"
            "Try: /faq - See common questions\n"
            "Try: /search [topic] - Search knowledge\n"
            'Try: /add "question" || "answer" - Add new knowledge\n'
            "Try: /mode [voice|text] [kb|llm] - Choose how I answer"
        )

    async def _cmd_add(self, user_id: str, arg: str, transport: ChatTransport) -> None:
        if not arg:
            await transport.send_text(ADD_USAGE)
            return
        try:
            added = await self._store_call("knowledge.add", lambda: add_knowledge(self.store, arg))
        except ValidationError as exc:
            await transport.send_text(f'Error: {exc}\n\nFormat: `/add "question" || "answer"`')
            return
        answer = added.answer if len(added.answer) <= 200 else added.answer[:200] + "..."
        await transport.send_text(f"{added.summary}\n\n**Q:** {added.question}\n**A:** {answer}")

    async def _cmd_search(self, user_id: str, arg: str, transport: ChatTransport) -> None:
        if not arg:
            await transport.send_text("**Usage:** `/search [query]`\nExample: `/search password reset`")
            return
        result = await self.governor.admit(lambda: self.resolver.match(arg), "search", self.settings.resolve_timeout_sec)
        if result is not None:
            await transport.send_text(f"**Found:**\n\n{result.text}")
            return
        reply = f'No exact match for "{arg}"'
        suggestions = await self.governor.admit(
            lambda: self.resolver.related_questions(arg), "search.related", self.settings.resolve_timeout_sec
        )
        if suggestions:
            related = ", ".join(f'"{q}"' for q in suggestions)
            reply += f"\n\n**Related topics:** {related}\nTry asking about one of these!"
        await transport.send_text(reply)

    async def _cmd_faq(self, user_id: str, arg: str, transport: ChatTransport) -> None:
        text = await self._store_call("knowledge.faq", lambda: render_faq(self.store, self.resolver.tables))
        await transport.send_text(text)

    async def _cmd_stats(self, user_id: str, arg: str, transport: ChatTransport) -> None:
        count = await self._store_call("store.count", self.store.count)
        if self.asr is None:
            voice = "Disabled"
        else:
            voice = "Ready" if self.asr.ready else "Loads on first use"
        llm = self.resolver.llm.name if self.resolver.llm is not None else "Disabled"
        await transport.send_text(
            "**Knowledge Base Stats**\n\n"
            f"• Total entries: {count}\n"
            f"• Voice model: {voice}\n"
            f"• Language model: {llm}\n"
            f"• Store: {self.store.name}\n"
            f"• Busy slots: {self.governor.active}/{self.governor.max_concurrent}\n\n"
            "Use /faq to see available questions"
        )

    async def _cmd_mode(self, user_id: str, arg: str, transport: ChatTransport) -> None:
        parts = arg.lower().split()
        if not parts:
            voice = self.sessions.get_mode(user_id, Origin.VOICE).value
            text = self.sessions.get_mode(user_id, Origin.TEXT).value
            await transport.send_text(f"Voice: {voice}, text: {text}\nChange with `/mode [voice|text|all] [kb|llm]`")
            return
        channel, value = ("all", parts[0]) if len(parts) == 1 else (parts[0], parts[1])
        if value not in {m.value for m in Mode} or channel not in {"voice", "text", "all"}:
            await transport.send_text("Usage: `/mode [voice|text|all] [kb|llm]`")
            return
        channels = [Origin.VOICE, Origin.TEXT] if channel == "all" else [Origin(channel)]
        for origin in channels:
            self.sessions.set_mode(user_id, origin, Mode(value))
        first = "knowledge base" if value == Mode.KB.value else "language model"
        await transport.send_text(f"{channel.capitalize()} messages now go to the {first} first.")

    async def _cmd_forget(self, user_id: str, arg: str, transport: ChatTransport) -> None:
        self.sessions.clear_context(user_id)
        await transport.send_text("Attached document cleared.")
