"""
Tests for PromptBuilder.
"""

import unittest

from catalog_rag.prompt_builder import PromptBuilder


class TestPromptBuilder(unittest.TestCase):

    def setUp(self):
        self.builder = PromptBuilder()

    def test_contains_query_and_every_review_verbatim(self):
        reviews = ["latte was great", "  latte was smooth  ", "milk {foamed} well"]
        prompt = self.builder.compose("latte", reviews)
        self.assertIn("QUERY: latte", prompt)
        for review in reviews:
            self.assertIn(review, prompt)

    def test_ends_with_answer_cue(self):
        prompt = self.builder.compose("latte", ["latte was great"])
        self.assertTrue(prompt.endswith("ANSWER:"))

    def test_includes_two_examples_before_the_query(self):
        prompt = self.builder.compose("latte", ["latte was great"])
        self.assertIn("EXAMPLE 1", prompt)
        self.assertIn("EXAMPLE 2", prompt)
        self.assertLess(prompt.index("EXAMPLE 2"), prompt.index("QUERY: latte"))
        self.assertIn("item_name:", prompt)
        self.assertIn("common_themes:", prompt)

    def test_reviews_are_numbered(self):
        prompt = self.builder.compose("q", ["A", "B", "C"])
        self.assertIn("[1] A", prompt)
        self.assertIn("[3] C", prompt)

    def test_is_deterministic(self):
        self.assertEqual(
            self.builder.compose("latte", ["a", "b"]),
            self.builder.compose("latte", ["a", "b"]),
        )

    def test_empty_reviews(self):
        prompt = self.builder.compose("Query with no context?", [])
        self.assertIn("Query with no context?", prompt)

    def test_custom_template(self):
        builder = PromptBuilder(template="Context: {context}\nQ: {question}\nA:")
        prompt = builder.compose("test question", ["test context"])
        self.assertEqual(prompt, "Context: [1] test context\nQ: test question\nA:")

    def test_invalid_template_raises(self):
        with self.assertRaises(ValueError):
            PromptBuilder(template="This template has no placeholders")

    def test_rejects_non_string_input(self):
        with self.assertRaises(TypeError):
            self.builder.compose(None, ["a"])
        with self.assertRaises(TypeError):
            self.builder.compose("q", "a single string")
        with self.assertRaises(TypeError):
            self.builder.compose("q", ["ok", 3])


if __name__ == "__main__":
    unittest.main()
