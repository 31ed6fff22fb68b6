"""
Tests for Retriever over a real VectorIndex and a bag-of-words embedder.
"""

import unittest
from unittest.mock import MagicMock, patch

from catalog_rag.embedder import Embedder
from catalog_rag.errors import IndexUnavailable
from catalog_rag.retriever import Retriever
from catalog_rag.vector_store import VectorIndex
from tests.fakes import FakeSentenceModel

CORPUS = ["latte was great", "latte was smooth", "espresso was strong"]


class TestRetriever(unittest.TestCase):

    def setUp(self):
        patcher = patch.object(Embedder, "_load_local_model", return_value=FakeSentenceModel())
        patcher.start()
        self.addCleanup(patcher.stop)

        self.embedder = Embedder(model="local:fake")
        self.index = VectorIndex()
        self.index.upsert_many(
            [str(i) for i in range(len(CORPUS))],
            self.embedder.embed_batch(CORPUS),
            CORPUS,
        )

    def test_latte_query_returns_latte_reviews(self):
        retriever = Retriever(self.index, self.embedder)
        results = retriever.retrieve("latte", k=2)
        self.assertEqual(sorted(results), ["latte was great", "latte was smooth"])
        self.assertNotIn("espresso was strong", results)

    def test_default_top_k(self):
        retriever = Retriever(self.index, self.embedder, top_k=1)
        self.assertEqual(len(retriever.retrieve("espresso")), 1)
        self.assertEqual(retriever.retrieve("espresso"), ["espresso was strong"])

    def test_scores_are_sorted_descending(self):
        pairs = Retriever(self.index, self.embedder).retrieve_with_scores("latte smooth", k=3)
        scores = [score for _, score in pairs]
        self.assertEqual(scores, sorted(scores, reverse=True))
        self.assertEqual(pairs[0][0], "latte was smooth")

    def test_score_threshold_cuts_unrelated_reviews(self):
        retriever = Retriever(self.index, self.embedder, score_threshold=0.3)
        self.assertEqual(len(retriever.retrieve("latte", k=3)), 2)

    def test_query_is_embedded_on_every_call(self):
        embedder = MagicMock(wraps=self.embedder)
        retriever = Retriever(self.index, embedder)
        retriever.retrieve("latte", k=1)
        retriever.retrieve("latte", k=1)
        self.assertEqual(embedder.embed.call_count, 2)

    def test_index_errors_propagate_unchanged(self):
        index = MagicMock()
        index.search.side_effect = IndexUnavailable("disk gone")
        with self.assertRaises(IndexUnavailable):
            Retriever(index, self.embedder).retrieve("latte", k=1)

    def test_repr(self):
        self.assertIn("top_k=5", repr(Retriever(self.index, self.embedder)))


if __name__ == "__main__":
    unittest.main()
