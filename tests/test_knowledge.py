import json
import os
import tempfile
import unittest

from fakes import entry

from voicekb.pipeline.errors import ValidationError
from voicekb.pipeline.knowledge import add_knowledge, generate_question, parse_payload, render_faq
from voicekb.pipeline.loader import load_knowledge
from voicekb.pipeline.store import InMemoryKnowledgeStore
from voicekb.pipeline.tables import ResolutionTables


class TestParsePayload(unittest.TestCase):

    def test_question_and_answer(self):
        self.assertEqual(parse_payload("What is the return policy? || 30-day returns"),
                         ("What is the return policy?", "30-day returns"))

    def test_quotes_are_stripped(self):
        self.assertEqual(parse_payload('"Opening hours" || "9 to 5"'), ("Opening hours", "9 to 5"))

    def test_extra_separators_stay_in_answer(self):
        self.assertEqual(parse_payload("cmd || a || b"), ("cmd", "a||b"))

    def test_answer_only_generates_question(self):
        question, answer = parse_payload("Refunds are processed weekly")
        self.assertEqual(question, "What is refunds?")
        self.assertEqual(answer, "Refunds are processed weekly")

    def test_generate_question_fallbacks(self):
        self.assertEqual(generate_question("Ok no. Yes"), "Ok no")
        self.assertEqual(generate_question("!!"), "General information")

    def test_too_short_is_rejected(self):
        with self.assertRaises(ValidationError):
            parse_payload("a || b")
        with self.assertRaises(ValidationError):
            parse_payload("hello || ")


class TestAddKnowledge(unittest.IsolatedAsyncioTestCase):

    async def test_insert_then_update_same_question(self):
        store = InMemoryKnowledgeStore()
        added = await add_knowledge(store, "Hello || Hi")
        self.assertTrue(added.created)
        self.assertEqual(added.summary, 'Added: "Hello"')

        updated = await add_knowledge(store, "HELLO || Hey there")
        self.assertFalse(updated.created)
        self.assertEqual(updated.summary, 'Updated: "Hello"')
        self.assertEqual(await store.count(), 1)
        stored = await store.find_exact("hello")
        self.assertEqual(stored.answer, "Hey there")
        self.assertEqual(stored.content, "Hey there")

    async def test_jsonl_store_persists_writes(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = os.path.join(tmp, "kb", "knowledge.jsonl")
            store = InMemoryKnowledgeStore.from_file(path)
            await add_knowledge(store, "Opening hours || 9 to 5")

            reloaded = load_knowledge(path)
            self.assertEqual(len(reloaded), 1)
            self.assertEqual(reloaded[0].question, "Opening hours")
            self.assertEqual(reloaded[0].content, "9 to 5")
            self.assertGreater(reloaded[0].created_at, 0)

    def test_loader_accepts_query_field(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = os.path.join(tmp, "qa.jsonl")
            with open(path, "w", encoding="utf-8") as f:
                f.write(json.dumps({"id": "q1", "query": "hello", "answer": "Hi!"}) + "\n\n")
            entries = load_knowledge(path)
        self.assertEqual(entries[0].question, "hello")
        self.assertEqual(entries[0].content, "Hi!")

    def test_loader_missing_file(self):
        with self.assertRaises(FileNotFoundError):
            load_knowledge("/nonexistent/knowledge.jsonl")


class TestStore(unittest.IsolatedAsyncioTestCase):

    async def test_list_recent_is_newest_first(self):
        store = InMemoryKnowledgeStore([entry(1, "a", "x", 1.0), entry(2, "b", "y", 3.0), entry(3, "c", "z", 2.0)])
        self.assertEqual([e.question for e in await store.list_recent(2)], ["b", "c"])

    async def test_substring_search_fields(self):
        store = InMemoryKnowledgeStore([entry(1, "Shipping", "Parcels ship daily")])
        self.assertEqual(len(await store.find_by_substring(("question",), "SHIP")), 1)
        self.assertEqual(await store.find_by_substring(("question",), "daily"), [])
        self.assertEqual(len(await store.find_by_substring(("answer", "content"), "daily")), 1)
        with self.assertRaises(ValueError):
            await store.find_by_substring(("id",), "1")

    async def test_update_unknown_id(self):
        with self.assertRaises(KeyError):
            await InMemoryKnowledgeStore().update("missing", {"answer": "x"})


class TestFaq(unittest.IsolatedAsyncioTestCase):

    async def test_groups_questions_by_category(self):
        store = InMemoryKnowledgeStore([
            entry(1, "hello", "Hi!"),
            entry(2, "what is the price", "10 EUR"),
            entry(3, "random topic", "Something"),
        ])
        text = await render_faq(store, ResolutionTables())
        self.assertIn("**Greetings:**\n• hello", text)
        self.assertIn("**Pricing:**\n• what is the price", text)
        self.assertIn("**General:**\n• random topic", text)
        self.assertIn("**Total knowledge:** 3 items", text)

    async def test_empty_store(self):
        text = await render_faq(InMemoryKnowledgeStore(), ResolutionTables())
        self.assertTrue(text.startswith("No FAQs yet"))


if __name__ == "__main__":
    unittest.main()
