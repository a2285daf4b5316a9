from __future__ import annotations

import base64
import binascii
import json
import logging
import uuid
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional

from fastapi import FastAPI, HTTPException, Request, Response, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from ..app import build_service, stop_service
from ..pipeline.config import load_settings
from ..pipeline.errors import GovernorError, ValidationError
from ..pipeline.knowledge import add_knowledge
from ..pipeline.service import ConversationService

log = logging.getLogger(__name__)


class WebSocketTransport:
    def __init__(self, websocket: WebSocket) -> None:
        self.websocket = websocket

    async def send_text(self, text: str) -> None:
        await self.websocket.send_text(json.dumps({"type": "text", "text": text}, ensure_ascii=False))

    async def send_voice(self, audio: bytes) -> None:
        await self.websocket.send_bytes(audio)


class BufferTransport:
    """Collects replies for request/response endpoints."""

    def __init__(self) -> None:
        self.texts: List[str] = []
        self.audio: List[bytes] = []

    async def send_text(self, text: str) -> None:
        self.texts.append(text)

    async def send_voice(self, audio: bytes) -> None:
        self.audio.append(audio)


class KnowledgeIn(BaseModel):
    question: str = ""
    answer: str = ""
    payload: str = ""


def create_app(
    config_path: Optional[str] = None,
    config: Optional[Dict[str, Any]] = None,
    service: Optional[ConversationService] = None,
) -> FastAPI:
    if service is None:
        cfg = config if config is not None else load_settings(config_path)
        service = build_service(cfg)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        yield
        await stop_service(service)

    app = FastAPI(lifespan=lifespan)
    app.state.service = service
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/health")
    async def health() -> Dict[str, Any]:
        governor = service.governor
        return {
            "status": "draining" if governor.shutting_down else "ok",
            "items": await service.store.count(),
            "active": governor.active,
            "queued": governor.queued,
        }

    @app.post("/knowledge")
    async def post_knowledge(body: KnowledgeIn) -> Dict[str, Any]:
        payload = body.payload or f"{body.question} || {body.answer}"
        try:
            added = await service.governor.admit(
                lambda: add_knowledge(service.store, payload), "knowledge.add", service.settings.store_timeout_sec
            )
        except ValidationError as exc:
            raise HTTPException(status_code=422, detail=str(exc)) from exc
        except GovernorError as exc:
            raise HTTPException(status_code=503, detail=str(exc)) from exc
        return {"question": added.question, "answer": added.answer, "created": added.created, "result": added.summary}

    @app.post("/documents")
    async def post_document(request: Request, user: str, kind: str = "pdf", id: Optional[str] = None) -> Dict[str, Any]:
        data = await request.body()
        if not data:
            raise HTTPException(status_code=400, detail="empty document")
        transport = BufferTransport()
        text = await service.handle_document(id or uuid.uuid4().hex, user, data, kind, transport)
        return {"attached": text is not None, "chars": len(text or ""), "messages": transport.texts}

    @app.post("/nrt")
    async def http_non_realtime(request: Request) -> Response:
        """Non-realtime endpoint:
        - Client sends full audio (PCM16LE 16kHz mono) as HTTP body.
        - Server transcribes, resolves, and returns the TTS answer (MP3).
        Headers ``X-User-Id`` and ``X-Message-Id`` identify the sender and the event.
        """
        audio_bytes = await request.body()
        if not audio_bytes:
            return Response(content=b"", media_type="audio/mpeg", status_code=400)
        user_id = request.headers.get("x-user-id", "http")
        message_id = request.headers.get("x-message-id") or uuid.uuid4().hex
        transport = BufferTransport()
        result = await service.handle_voice(message_id, user_id, audio_bytes, transport)
        if result is None or not transport.audio:
            return Response(
                content=json.dumps({"messages": transport.texts}, ensure_ascii=False),
                media_type="application/json",
                # nothing sent at all means the message id was already handled
                status_code=200 if transport.texts else 409,
            )
        return Response(
            content=b"".join(transport.audio),
            media_type="audio/mpeg",
            headers={"X-Answer-Source": result.source.value},
        )

    @app.websocket("/ws")
    async def ws_chat(websocket: WebSocket) -> None:
        """Conversation endpoint.

        Incoming:
          - text JSON {"type": "text", "id", "user", "text"}; a non-JSON frame is a text query
          - binary frames = PCM16LE 16kHz mono audio, buffered until
            {"type": "flush", "id", "user"}
          - {"type": "document", "id", "user", "kind", "data": base64}
        Outgoing: {"type": "text", "text"} frames, binary MP3 voice replies, and
        {"type": "done", "id", "source"} after each event.
        """
        await websocket.accept()
        transport = WebSocketTransport(websocket)
        default_user = f"ws-{uuid.uuid4().hex[:8]}"
        audio_buf = bytearray()
        try:
            while True:
                msg = await websocket.receive()
                if msg.get("type") == "websocket.disconnect":
                    return
                if msg.get("bytes") is not None:
                    audio_buf.extend(msg["bytes"])
                    continue
                raw = msg.get("text") or ""
                try:
                    payload = json.loads(raw) if raw else {}
                except json.JSONDecodeError:
                    payload = {"type": "text", "text": raw}
                if not isinstance(payload, dict):
                    payload = {"type": "text", "text": raw}

                kind = payload.get("type", "text")
                message_id = str(payload.get("id") or uuid.uuid4().hex)
                user_id = str(payload.get("user") or default_user)
                source = None
                if kind == "text":
                    result = await service.handle_text(message_id, user_id, payload.get("text") or "", transport)
                    source = result.source.value if result else None
                elif kind == "flush":
                    audio = bytes(audio_buf)
                    audio_buf.clear()
                    if not audio:
                        await websocket.send_text(json.dumps({"type": "warning", "text": "no audio buffered"}))
                        continue
                    result = await service.handle_voice(message_id, user_id, audio, transport)
                    source = result.source.value if result else None
                elif kind == "document":
                    try:
                        data = base64.b64decode(payload.get("data") or "", validate=True)
                    except (binascii.Error, ValueError):
                        await websocket.send_text(json.dumps({"type": "error", "text": "document data must be base64"}))
                        continue
                    await service.handle_document(message_id, user_id, data, payload.get("kind", "pdf"), transport)
                else:
                    await websocket.send_text(json.dumps({"type": "error", "text": f"unknown frame type {kind}"}))
                    continue
                await websocket.send_text(json.dumps({"type": "done", "id": message_id, "source": source}))
        except WebSocketDisconnect:
            return

    return app


if __name__ == "__main__":
    import uvicorn

    settings = load_settings()
    server_cfg = settings.get("server", {})
    uvicorn.run(create_app(config=settings), host=server_cfg.get("host", "0.0.0.0"), port=int(server_cfg.get("port", 9000)))
