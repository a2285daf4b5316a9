import json
import os
import tempfile
import unittest
from unittest.mock import MagicMock, patch

import requests

from voicekb.pipeline.config import apply_env_overrides, load_config, load_settings
from voicekb.pipeline.errors import UpstreamError
from voicekb.pipeline.llm import LocalQwenLLM, OpenAICompatLLM, build_llm
from voicekb.pipeline.resolver import ResolverSettings
from voicekb.pipeline.scorer import ScoreWeights
from voicekb.pipeline.tables import ResolutionTables


class TestConfigFiles(unittest.TestCase):

    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self.tmp.cleanup)

    def write(self, name, text):
        path = os.path.join(self.tmp.name, name)
        with open(path, "w", encoding="utf-8") as f:
            f.write(text)
        return path

    def test_json_and_yaml(self):
        self.assertEqual(load_config(self.write("a.json", json.dumps({"llm": {"provider": "none"}}))),
                         {"llm": {"provider": "none"}})
        self.assertEqual(load_config(self.write("a.yaml", "resolver:\n  threshold: 0.5\n")),
                         {"resolver": {"threshold": 0.5}})
        self.assertEqual(load_config(self.write("empty.yml", "")), {})

    def test_unsupported_and_missing(self):
        with self.assertRaises(ValueError):
            load_config(self.write("a.toml", "x = 1"))
        with self.assertRaises(FileNotFoundError):
            load_config(os.path.join(self.tmp.name, "nope.json"))

    def test_env_wins_over_file(self):
        path = self.write("a.json", json.dumps({"llm": {"provider": "groq", "model": "m1"}, "asr": {"model": "tiny.en"}}))
        env = {"VOICEKB_CONFIG": path, "LLM_PROVIDER": "none", "ASR_MODEL": "small", "TTS_VOICE": "en-GB-SoniaNeural"}
        with patch.dict(os.environ, env):
            config = load_settings(dotenv_path=os.path.join(self.tmp.name, "missing.env"))
        self.assertEqual(config["llm"], {"provider": "none", "model": "m1"})
        self.assertEqual(config["asr"]["model"], "small")
        self.assertEqual(config["tts"]["voice"], "en-GB-SoniaNeural")

    def test_overrides_leave_unset_keys_alone(self):
        with patch.dict(os.environ, {}, clear=True):
            config = apply_env_overrides({"llm": {"provider": "local"}})
        self.assertEqual(config["llm"], {"provider": "local"})


class TestSectionsFromConfig(unittest.TestCase):

    def test_weights_and_settings(self):
        weights = ScoreWeights.from_config({"word_overlap": 5})
        self.assertEqual(weights.word_overlap, 5.0)
        self.assertEqual(weights.exact_contains, 3.0)
        settings = ResolverSettings.from_config({"llm_snippets": 4})
        self.assertEqual(settings.llm_snippets, 4)
        self.assertEqual(settings.recent_limit, 100)

    def test_tables_merge_synonyms(self):
        tables = ResolutionTables.from_config({"synonyms": {"Refund": ["money back"]}})
        self.assertEqual(tables.synonyms["refund"], ["money back"])
        self.assertIn("hello", tables.synonyms)

        replaced = ResolutionTables.from_config({"synonyms": {"refund": ["money back"]}, "replace_synonyms": True})
        self.assertEqual(list(replaced.synonyms), ["refund"])

    def test_tables_classify(self):
        tables = ResolutionTables()
        self.assertEqual(tables.classify("where is the office"), "question")
        self.assertEqual(tables.classify("explain refunds"), "explanation")
        self.assertEqual(tables.classify("hey, refunds"), "greeting")
        self.assertEqual(tables.classify("refunds"), "general")


class TestBuildLLM(unittest.TestCase):

    def test_providers(self):
        self.assertIsNone(build_llm({}))
        self.assertIsNone(build_llm({"provider": "none"}))
        self.assertIsNone(build_llm({"provider": "groq"}, api_key=""))
        self.assertIsInstance(build_llm({"provider": "groq"}, api_key="k"), OpenAICompatLLM)
        self.assertIsInstance(build_llm({"provider": "local"}), LocalQwenLLM)
        with self.assertRaises(ValueError):
            build_llm({"provider": "carrier-pigeon"})


def http_response(status, payload=None):
    resp = MagicMock()
    resp.status_code = status
    resp.json.return_value = payload
    if status >= 400:
        resp.raise_for_status.side_effect = requests.HTTPError(response=resp)
    else:
        resp.raise_for_status.return_value = None
    return resp


class TestOpenAICompatLLM(unittest.IsolatedAsyncioTestCase):

    def make(self, *responses):
        llm = OpenAICompatLLM(api_key="k", retry_max=3, retry_backoff_sec=0)
        llm._session = MagicMock()
        llm._session.post.side_effect = list(responses)
        return llm

    async def test_completion(self):
        llm = self.make(http_response(200, {"choices": [{"message": {"content": " We open at 9. "}}]}))
        self.assertEqual(await llm.complete("when do you open", context="Knowledge snippets:"), "We open at 9.")
        sent = llm._session.post.call_args.kwargs["json"]["messages"]
        self.assertEqual(sent[1]["content"], "Knowledge snippets:\n\nwhen do you open")

    @patch("voicekb.pipeline.llm.time.sleep")
    async def test_retries_rate_limit(self, sleep):
        llm = self.make(http_response(429), http_response(200, {"choices": [{"message": {"content": "ok"}}]}))
        self.assertEqual(await llm.complete("hi"), "ok")
        self.assertEqual(llm._session.post.call_count, 2)

    async def test_client_error_is_not_retried(self):
        llm = self.make(http_response(401), http_response(200))
        with self.assertRaises(UpstreamError):
            await llm.complete("hi")
        self.assertEqual(llm._session.post.call_count, 1)

    async def test_empty_completion_is_an_error(self):
        llm = self.make(http_response(200, {"choices": [{"message": {"content": "  "}}]}))
        with self.assertRaises(UpstreamError):
            await llm.complete("hi")


if __name__ == "__main__":
    unittest.main()
