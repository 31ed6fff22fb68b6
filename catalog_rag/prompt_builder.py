from typing import Optional, Sequence


_PREAMBLE = """You are a catalog assistant. You read customer reviews of items sold in a shop \
and describe the item the reviews are about.
Use ONLY the related reviews below. Answer with exactly two lines:
item_name: <the item the reviews talk about>
common_themes: <comma-separated themes that several reviews mention>"""

# Two fixed worked examples, shown to the model before the real question.
_EXAMPLES = """EXAMPLE 1
RELATED REVIEWS:
[1] The cold brew was smooth and not bitter at all.
[2] Great cold brew, very smooth, a bit pricey though.
[3] Cold brew tasted watered down this time, still smooth.
QUERY: cold brew
ANSWER:
item_name: cold brew
common_themes: smooth taste, low bitterness, price

EXAMPLE 2
RELATED REVIEWS:
[1] The blueberry muffin was dry and crumbly.
[2] Muffins were fresh in the morning but stale by the afternoon.
QUERY: muffin
ANSWER:
item_name: blueberry muffin
common_themes: dryness, freshness varies through the day"""

_DEFAULT_TEMPLATE = (
    _PREAMBLE
    + "\n\n"
    + _EXAMPLES
    + """

NOW YOUR TURN
RELATED REVIEWS:
{context}
QUERY: {question}
ANSWER:"""
)


class PromptBuilder:
    """
    Builds the generation prompt: fixed instructions, a fixed two-shot
    example block, the retrieved reviews and the query, ending with the
    ``ANSWER:`` cue.

    Retrieved texts and the query are inserted verbatim (no trimming), so
    each of them is a substring of the result.
    """

    def __init__(
        self,
        template: Optional[str] = None,
        context_separator: str = "\n",
    ):
        """
        Args:
            template: A format string with {context} and {question} placeholders.
                      Defaults to the built-in two-shot catalog template.
            context_separator: String used to join the numbered reviews.
        """
        self.template = template or _DEFAULT_TEMPLATE
        self.context_separator = context_separator

        # Validate placeholders at construction time so we fail fast
        if "{context}" not in self.template or "{question}" not in self.template:
            raise ValueError(
                "Prompt template must contain both {context} and {question} placeholders."
            )

    def compose(self, query_text: str, retrieved_texts: Sequence[str]) -> str:
        """
        Build the final prompt string.

        Args:
            query_text: The user's query.
            retrieved_texts: Reviews from the retriever, most similar first.

        Returns:
            A formatted prompt string ready to be sent to the model.
        """
        if not isinstance(query_text, str):
            raise TypeError(f"query_text must be str, not {type(query_text).__name__}")
        if isinstance(retrieved_texts, str):
            raise TypeError("retrieved_texts must be a sequence of str, not a single str")
        for text in retrieved_texts:
            if not isinstance(text, str):
                raise TypeError(f"retrieved texts must be str, not {type(text).__name__}")

        # Number each review like the examples do
        numbered = [f"[{i + 1}] {text}" for i, text in enumerate(retrieved_texts)]
        context_block = self.context_separator.join(numbered) if numbered else "(none)"

        return self.template.format(context=context_block, question=query_text)

    def __repr__(self) -> str:
        return f"PromptBuilder(context_separator={self.context_separator!r})"
