"""
Tests for Generator. The OpenAI client is mocked; streamed responses are
built from plain namespaces.
"""

import itertools
import os
import threading
import unittest
from unittest.mock import MagicMock, patch

import httpx
import openai

from catalog_rag.errors import GenerationCancelled, GenerationTimeout, ModelUnavailable
from catalog_rag.generator import GenerationResult, Generator
from tests.fakes import FakeStream, make_chunk, make_usage

_REQUEST = httpx.Request("POST", "http://localhost:11434/v1/chat/completions")


class GeneratorTestCase(unittest.TestCase):

    def setUp(self):
        patcher = patch("catalog_rag.generator.openai.OpenAI")
        self.openai_cls = patcher.start()
        self.addCleanup(patcher.stop)
        self.client = MagicMock()
        self.openai_cls.return_value = self.client
        self.create = self.client.chat.completions.create

    def stream_of(self, *pieces, usage=None, on_chunk=None):
        chunks = [make_chunk(p) for p in pieces]
        chunks.append(make_chunk(finish_reason="stop"))
        if usage is not None:
            chunks.append(make_chunk(usage=usage))
        stream = FakeStream(chunks, on_chunk=on_chunk)
        self.create.return_value = stream
        return stream


class TestGenerate(GeneratorTestCase):

    def test_returns_joined_answer_and_usage(self):
        stream = self.stream_of("item_name: latte\n", "common_themes: smooth", usage=make_usage(120, 9))
        result = Generator(api_key="k").generate("PROMPT")

        self.assertIsInstance(result, GenerationResult)
        self.assertEqual(result.answer, "item_name: latte\ncommon_themes: smooth")
        self.assertEqual(result.prompt_tokens, 120)
        self.assertEqual(result.completion_tokens, 9)
        self.assertEqual(result.total_tokens, 129)
        self.assertFalse(result.truncated)
        self.assertTrue(stream.closed)

    def test_prompt_sent_as_user_message(self):
        self.stream_of("ok")
        Generator(api_key="k", system_message="SYS").generate("PROMPT")
        messages = self.create.call_args.kwargs["messages"]
        self.assertEqual(messages[0], {"role": "system", "content": "SYS"})
        self.assertEqual(messages[1], {"role": "user", "content": "PROMPT"})
        self.assertTrue(self.create.call_args.kwargs["stream"])

    def test_cap_is_sent_to_server(self):
        self.stream_of("ok")
        Generator(api_key="k", max_tokens=64).generate("p", max_tokens=5)
        self.assertEqual(self.create.call_args.kwargs["max_tokens"], 5)

    def test_default_cap_is_sent_to_server(self):
        self.stream_of("ok")
        Generator(api_key="k", max_tokens=64).generate("p")
        self.assertEqual(self.create.call_args.kwargs["max_tokens"], 64)

    def test_output_never_exceeds_cap(self):
        stream = self.stream_of(*[f"t{i} " for i in range(10)])
        result = Generator(api_key="k").generate("p", max_tokens=3)
        self.assertEqual(result.answer, "t0 t1 t2")
        self.assertTrue(result.truncated)
        self.assertEqual(stream.consumed, 3)
        self.assertTrue(stream.closed)

    def test_length_finish_reason_marks_truncation(self):
        self.create.return_value = FakeStream([make_chunk("abc", finish_reason="length")])
        self.assertTrue(Generator(api_key="k").generate("p").truncated)

    def test_invalid_cap(self):
        with self.assertRaises(ValueError):
            Generator(api_key="k").generate("p", max_tokens=0)


class TestGeneratorFailures(GeneratorTestCase):

    def test_client_timeout_raises_generation_timeout(self):
        self.create.side_effect = openai.APITimeoutError(request=_REQUEST)
        with self.assertRaises(GenerationTimeout):
            Generator(api_key="k").generate("p")

    def test_connection_error_raises_model_unavailable(self):
        self.create.side_effect = openai.APIConnectionError(request=_REQUEST)
        with self.assertRaises(ModelUnavailable):
            Generator(api_key="k").generate("p")

    def test_rate_limit_raises_model_unavailable(self):
        self.create.side_effect = openai.RateLimitError(
            "slow down", response=httpx.Response(429, request=_REQUEST), body=None
        )
        with self.assertRaises(ModelUnavailable):
            Generator(api_key="k").generate("p")

    def test_server_error_raises_model_unavailable(self):
        self.create.side_effect = openai.InternalServerError(
            "upstream crashed", response=httpx.Response(500, request=_REQUEST), body=None
        )
        with self.assertRaises(ModelUnavailable):
            Generator(api_key="k").generate("p")

    def test_connection_lost_mid_stream_raises_model_unavailable(self):
        def drop_after_first(i):
            if i == 1:
                raise openai.APIConnectionError(request=_REQUEST)

        stream = self.stream_of("a", "b", "c", on_chunk=drop_after_first)
        with self.assertRaises(ModelUnavailable):
            Generator(api_key="k").generate("p")
        self.assertTrue(stream.closed)

    def test_wall_clock_budget(self):
        stream = self.stream_of("a", "b", "c")
        clock = itertools.chain([0.0, 1.0], itertools.repeat(50.0))
        with patch("catalog_rag.generator.time") as fake_time:
            fake_time.monotonic.side_effect = lambda: next(clock)
            with self.assertRaises(GenerationTimeout):
                Generator(api_key="k", generation_timeout=10.0).generate("p")
        self.assertTrue(stream.closed)

    def test_cancel_before_start(self):
        event = threading.Event()
        event.set()
        with self.assertRaises(GenerationCancelled):
            Generator(api_key="k").generate("p", cancel_event=event)
        self.create.assert_not_called()

    def test_cancel_mid_stream(self):
        event = threading.Event()

        def cancel_after_first(i):
            if i == 1:
                event.set()

        stream = self.stream_of("a", "b", "c", on_chunk=cancel_after_first)
        with self.assertRaises(GenerationCancelled):
            Generator(api_key="k").generate("p", cancel_event=event)
        self.assertTrue(stream.closed)


class TestGeneratorSetup(GeneratorTestCase):

    def test_missing_key_without_local_server(self):
        with patch.dict(os.environ, {}, clear=True):
            with self.assertRaises(ValueError):
                Generator()

    def test_local_server_needs_no_key(self):
        with patch.dict(os.environ, {}, clear=True):
            Generator(base_url="http://localhost:11434/v1", model="llama3")
        kwargs = self.openai_cls.call_args.kwargs
        self.assertEqual(kwargs["base_url"], "http://localhost:11434/v1")
        self.assertTrue(kwargs["api_key"])

    def test_close_releases_client(self):
        with Generator(api_key="k"):
            pass
        self.client.close.assert_called_once()

    def test_repr(self):
        self.assertIn("max_tokens=256", repr(Generator(api_key="k")))


if __name__ == "__main__":
    unittest.main()
