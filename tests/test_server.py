"""
Tests for the HTTP endpoint.
"""

import unittest
from unittest.mock import MagicMock

from fastapi.testclient import TestClient

from catalog_rag.errors import GenerationTimeout, IndexUnavailable, PipelineError
from catalog_rag.server import create_app


class TestServer(unittest.TestCase):

    def setUp(self):
        self.pipeline = MagicMock()
        self.pipeline.answer.return_value = "item_name: latte\ncommon_themes: smooth"
        self.client = TestClient(create_app(pipeline=self.pipeline))

    def test_health(self):
        response = self.client.get("/health")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {"status": "healthy"})

    def test_answer(self):
        response = self.client.post("/answer", json={"query_text": "latte", "k": 2})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {"answer_text": "item_name: latte\ncommon_themes: smooth"})
        self.pipeline.answer.assert_called_once_with("latte", k=2)

    def test_default_k(self):
        self.client.post("/answer", json={"query_text": "latte"})
        self.pipeline.answer.assert_called_once_with("latte", k=None)

    def test_invalid_request(self):
        self.assertEqual(self.client.post("/answer", json={"query_text": "latte", "k": 0}).status_code, 422)
        self.assertEqual(self.client.post("/answer", json={"k": 2}).status_code, 422)
        self.pipeline.answer.assert_not_called()

    def test_timeout_maps_to_504(self):
        self.pipeline.answer.side_effect = PipelineError("generating", GenerationTimeout("too slow"))
        response = self.client.post("/answer", json={"query_text": "latte"})
        self.assertEqual(response.status_code, 504)
        self.assertEqual(
            response.json()["detail"],
            {"error": "generation_timeout", "stage": "generating", "message": "too slow"},
        )

    def test_index_unavailable_maps_to_503(self):
        self.pipeline.answer.side_effect = PipelineError("retrieving", IndexUnavailable("gone"))
        response = self.client.post("/answer", json={"query_text": "latte"})
        self.assertEqual(response.status_code, 503)
        self.assertEqual(response.json()["detail"]["stage"], "retrieving")

    def test_unexpected_cause_maps_to_500(self):
        self.pipeline.answer.side_effect = PipelineError("composing", TypeError("bad"))
        response = self.client.post("/answer", json={"query_text": "latte"})
        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.json()["detail"]["error"], "internal_error")

    def test_lifespan_keeps_injected_pipeline_open(self):
        with TestClient(create_app(pipeline=self.pipeline)) as client:
            client.get("/health")
        self.pipeline.close.assert_not_called()


if __name__ == "__main__":
    unittest.main()
