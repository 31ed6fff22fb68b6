from typing import List, Optional, Tuple

from .embedder import Embedder
from .vector_store import VectorIndex


class Retriever:
    """
    Retrieves the reviews most similar to a query.

    Every call re-embeds the query; nothing is cached between calls.
    Errors from the embedder or the index propagate unchanged.
    """

    def __init__(
        self,
        vector_index: VectorIndex,
        embedder: Embedder,
        top_k: int = 5,
        score_threshold: Optional[float] = None,
    ):
        """
        Args:
            vector_index: An opened/populated VectorIndex.
            embedder: The same Embedder used when building the index.
            top_k: Default number of results.
            score_threshold: If set, drop results with similarity below it.
        """
        self.vector_index = vector_index
        self.embedder = embedder
        self.top_k = top_k
        self.score_threshold = score_threshold

    def retrieve(self, query_text: str, k: Optional[int] = None) -> List[str]:
        """Texts of the k most similar reviews, most similar first."""
        return [text for text, _ in self.retrieve_with_scores(query_text, k)]

    def retrieve_with_scores(self, query_text: str, k: Optional[int] = None) -> List[Tuple[str, float]]:
        """
        Same as retrieve(), with the cosine similarity of each result.

        Returns:
            A list of (text, similarity_score) tuples sorted by score desc.
        """
        k = self.top_k if k is None else k

        query_embedding = self.embedder.embed(query_text)
        hits = self.vector_index.search(query_embedding, k)

        results: List[Tuple[str, float]] = []
        for hit in hits:
            if self.score_threshold is not None and hit.score < self.score_threshold:
                # Hits are sorted, nothing after this one passes either
                break
            results.append((hit.text, hit.score))
        return results

    def __repr__(self) -> str:
        return (
            f"Retriever(top_k={self.top_k}, "
            f"score_threshold={self.score_threshold}, "
            f"embedder={self.embedder.__class__.__name__})"
        )
