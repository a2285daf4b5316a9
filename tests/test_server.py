import base64
import unittest

from fastapi.testclient import TestClient
from fakes import FakeASR, FakeExtractor, FakeTTS, entry

from voicekb.pipeline.governor import RequestGovernor
from voicekb.pipeline.resolver import AnswerResolver
from voicekb.pipeline.service import ConversationService
from voicekb.pipeline.store import InMemoryKnowledgeStore
from voicekb.realtime.server import create_app


def make_client(tts=None):
    governor = RequestGovernor(max_concurrent=2, default_timeout=2)
    store = InMemoryKnowledgeStore([entry(1, "hello", "Hi!")])
    service = ConversationService(
        resolver=AnswerResolver(store=store, governor=governor),
        governor=governor,
        asr=FakeASR("hello"),
        tts=tts,
        extractor=FakeExtractor("Attached manual text"),
    )
    return TestClient(create_app(service=service))


class TestHttp(unittest.TestCase):

    def test_health(self):
        with make_client() as client:
            body = client.get("/health").json()
        self.assertEqual(body, {"status": "ok", "items": 1, "active": 0, "queued": 0})

    def test_add_knowledge(self):
        with make_client() as client:
            resp = client.post("/knowledge", json={"question": "Opening hours", "answer": "9 to 5"})
            self.assertEqual(resp.status_code, 200)
            self.assertTrue(resp.json()["created"])
            self.assertEqual(client.get("/health").json()["items"], 2)

            resp = client.post("/knowledge", json={"payload": "a || b"})
            self.assertEqual(resp.status_code, 422)

    def test_document_upload(self):
        with make_client() as client:
            resp = client.post("/documents", params={"user": "u1", "kind": "txt"}, content=b"manual")
            self.assertEqual(resp.status_code, 200)
            self.assertTrue(resp.json()["attached"])
            self.assertEqual(resp.json()["chars"], len("Attached manual text"))

            self.assertEqual(client.post("/documents", params={"user": "u1"}, content=b"").status_code, 400)

    def test_non_realtime_voice(self):
        with make_client(tts=FakeTTS(audio=b"mp3-bytes")) as client:
            resp = client.post("/nrt", content=b"\x00\x01" * 100, headers={"x-message-id": "v1"})
            self.assertEqual(resp.status_code, 200)
            self.assertEqual(resp.content, b"mp3-bytes")
            self.assertEqual(resp.headers["x-answer-source"], "exact")

            again = client.post("/nrt", content=b"\x00\x01" * 100, headers={"x-message-id": "v1"})
            self.assertEqual(again.status_code, 409)


class TestWebSocket(unittest.TestCase):

    def test_text_frame(self):
        with make_client() as client, client.websocket_connect("/ws") as ws:
            ws.send_json({"type": "text", "id": "m1", "user": "u1", "text": "hello"})
            self.assertEqual(ws.receive_json(), {"type": "text", "text": "Hi!"})
            self.assertEqual(ws.receive_json(), {"type": "done", "id": "m1", "source": "exact"})

            ws.send_json({"type": "text", "id": "m1", "user": "u1", "text": "hello"})
            self.assertEqual(ws.receive_json(), {"type": "done", "id": "m1", "source": None})

    def test_plain_text_frame_is_a_query(self):
        with make_client() as client, client.websocket_connect("/ws") as ws:
            ws.send_text("hello")
            self.assertEqual(ws.receive_json()["text"], "Hi!")
            self.assertEqual(ws.receive_json()["type"], "done")

    def test_audio_then_flush(self):
        with make_client(tts=FakeTTS()) as client, client.websocket_connect("/ws") as ws:
            ws.send_bytes(b"\x00\x01" * 100)
            ws.send_json({"type": "flush", "id": "v1"})
            self.assertEqual(ws.receive_json()["text"], "Listening...")
            self.assertEqual(ws.receive_json()["text"], "**You said:** hello")
            self.assertEqual(ws.receive_json()["text"], "Hi!")
            self.assertEqual(ws.receive_bytes(), b"mp3")
            self.assertEqual(ws.receive_json(), {"type": "done", "id": "v1", "source": "exact"})

    def test_flush_without_audio_warns(self):
        with make_client() as client, client.websocket_connect("/ws") as ws:
            ws.send_json({"type": "flush"})
            self.assertEqual(ws.receive_json()["type"], "warning")

    def test_document_frame(self):
        with make_client() as client, client.websocket_connect("/ws") as ws:
            data = base64.b64encode(b"manual").decode()
            ws.send_json({"type": "document", "id": "d1", "user": "u1", "kind": "txt", "data": data})
            self.assertTrue(ws.receive_json()["text"].startswith("Document received"))
            self.assertEqual(ws.receive_json()["type"], "done")

            ws.send_json({"type": "document", "data": "***"})
            self.assertEqual(ws.receive_json()["type"], "error")


if __name__ == "__main__":
    unittest.main()
