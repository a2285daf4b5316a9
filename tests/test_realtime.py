import unittest

import fitz

from voicekb.pipeline.errors import UpstreamError
from voicekb.realtime.asr import WhisperASR
from voicekb.realtime.documents import DocumentExtractor
from voicekb.realtime.tts import EdgeTTS


class TestDocumentExtractor(unittest.IsolatedAsyncioTestCase):

    async def test_pdf_text(self):
        doc = fitz.open()
        page = doc.new_page()
        page.insert_text((72, 72), "Warranty: two years")
        data = doc.tobytes()
        doc.close()
        self.assertIn("Warranty: two years", await DocumentExtractor().extract(data, "pdf"))

    async def test_text_formats(self):
        self.assertEqual(await DocumentExtractor().extract(b"  plain notes\n", ".TXT"), "plain notes")
        self.assertEqual(await DocumentExtractor().extract(b"a,b", "text/csv"), "a,b")

    def test_rejects_other_types(self):
        with self.assertRaises(UpstreamError):
            DocumentExtractor().extract_sync(b"\x89PNG", "png")
        with self.assertRaises(UpstreamError):
            DocumentExtractor().extract_sync(b"not a pdf", "pdf")


class TestEdgeTTS(unittest.TestCase):

    def test_prepare_strips_markup_and_truncates(self):
        tts = EdgeTTS(max_chars=12)
        self.assertEqual(tts.prepare("**Found:** `x`"), "Found: x")
        self.assertEqual(tts.prepare("a" * 20), "a" * 12)

    def test_from_config(self):
        tts = EdgeTTS.from_config({"voice": "en-GB-SoniaNeural", "max_chars": 100})
        self.assertEqual((tts.voice, tts.max_chars), ("en-GB-SoniaNeural", 100))
        self.assertEqual(EdgeTTS.from_config(None).voice, "en-US-AriaNeural")


class TestWhisperASR(unittest.TestCase):

    def test_empty_audio_skips_model_load(self):
        asr = WhisperASR(model_name="tiny.en")
        self.assertEqual(asr.transcribe_bytes(b""), "")
        self.assertFalse(asr.ready)


if __name__ == "__main__":
    unittest.main()
