import logging
import os
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from typing import List, Optional, Sequence

import numpy as np
import openai

from .errors import ModelUnavailable

logger = logging.getLogger(__name__)


class Embedder:
    """
    Converts review texts into dense vector embeddings.

    Supports:
        - Any sentence-transformers model (local, no API key needed, default)
        - Any OpenAI-compatible embeddings endpoint

    The embeddings are L2-normalised before being returned so that a
    dot-product search is equivalent to cosine similarity.

    The underlying model is loaded once, on first use, and reused until
    :meth:`close` is called. Use the embedder as a context manager to scope
    the model's lifetime explicitly.

    Args:
        model:       'local:<model_name>' for sentence-transformers or
                     'openai:<model>' for an OpenAI-compatible API.
        batch_size:  Number of texts per model call / API request.
        max_workers: Batches embedded concurrently by embed_batch().
        api_key:     OpenAI API key. Falls back to OPENAI_API_KEY env var.
        base_url:    Alternative OpenAI-compatible server URL.
    """

    def __init__(
        self,
        model: str = "local:all-mpnet-base-v2",
        batch_size: int = 64,
        max_workers: int = 1,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
    ):
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        if max_workers < 1:
            raise ValueError("max_workers must be at least 1")

        self.model = model
        self.batch_size = batch_size
        self.max_workers = max_workers
        self.api_key = api_key or os.environ.get("OPENAI_API_KEY", "")
        self.base_url = base_url

        self._backend, self._model_name = self._parse_model(model)
        if self._backend not in ("local", "openai"):
            raise ValueError(f"Unknown backend: {self._backend}")

        self._local_model = None  # lazy-loaded on first use
        self._client = None
        self._dim: Optional[int] = None
        self._load_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def embed(self, text: str) -> np.ndarray:
        """Embed a single string. Returns a 1-D numpy array."""
        return self.embed_batch([text])[0]

    def embed_batch(self, texts: Sequence[str]) -> np.ndarray:
        """
        Embed a list of strings.

        Returns a numpy array of shape (len(texts), embedding_dim), rows in
        the same order as the input. Batches are spread over a thread pool
        when max_workers > 1; the pool is torn down once every batch is done.
        """
        texts = list(texts)
        if not texts:
            return np.empty((0, self._dim or 0), dtype=np.float32)

        self._ensure_loaded()
        batches = [texts[i : i + self.batch_size] for i in range(0, len(texts), self.batch_size)]

        if self.max_workers > 1 and len(batches) > 1:
            workers = min(self.max_workers, len(batches))
            logger.debug("Embedding %d batches on %d workers", len(batches), workers)
            with ThreadPoolExecutor(max_workers=workers) as pool:
                parts = list(pool.map(self._embed_one_batch, batches))
        else:
            parts = [self._embed_one_batch(batch) for batch in batches]

        vectors = np.vstack(parts).astype(np.float32)
        if self._dim is None:
            self._dim = int(vectors.shape[1])

        # L2-normalise so downstream cosine similarity is just a dot product
        norms = np.linalg.norm(vectors, axis=1, keepdims=True)
        norms = np.where(norms == 0, 1, norms)  # avoid divide-by-zero
        return vectors / norms

    @property
    def dimension(self) -> int:
        """Embedding size; loads the model (or probes the API) if needed."""
        if self._dim is None:
            self._ensure_loaded()
            if self._dim is None:
                self._dim = int(self._embed_one_batch(["dimension probe"]).shape[1])
        return self._dim

    def close(self) -> None:
        """Release the loaded model / API client."""
        if self._client is not None:
            self._client.close()
        if self._local_model is not None:
            logger.info("Releasing embedding model %s", self._model_name)
        self._local_model = None
        self._client = None

    def __enter__(self) -> "Embedder":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Backend implementations
    # ------------------------------------------------------------------

    def _ensure_loaded(self) -> None:
        with self._load_lock:
            if self._backend == "local" and self._local_model is None:
                logger.info("Loading embedding model: %s", self._model_name)
                try:
                    self._local_model = self._load_local_model()
                except (OSError, ValueError, RuntimeError, ImportError) as exc:
                    raise ModelUnavailable(
                        f"Cannot load embedding model {self._model_name!r}: {exc}"
                    ) from exc
                self._dim = self._local_model.get_sentence_embedding_dimension()
            elif self._backend == "openai" and self._client is None:
                try:
                    self._client = openai.OpenAI(
                        api_key=self.api_key or None, base_url=self.base_url
                    )
                except openai.OpenAIError as exc:
                    raise ModelUnavailable(f"Cannot create embeddings client: {exc}") from exc

    def _load_local_model(self):
        from sentence_transformers import SentenceTransformer

        return SentenceTransformer(self._model_name)

    def _embed_one_batch(self, batch: List[str]) -> np.ndarray:
        if self._backend == "local":
            vectors = self._local_model.encode(
                batch, convert_to_numpy=True, show_progress_bar=False
            )
            return np.asarray(vectors, dtype=np.float32)
        return self._embed_openai(batch)

    def _embed_openai(self, batch: List[str]) -> np.ndarray:
        # Retry once on rate-limit errors
        for attempt in range(2):
            try:
                response = self._client.embeddings.create(model=self._model_name, input=batch)
                break
            except openai.RateLimitError:
                if attempt == 0:
                    logger.warning("Embedding rate limit hit, retrying in 5s")
                    time.sleep(5)
                else:
                    raise
            except (openai.APIConnectionError, openai.NotFoundError, openai.AuthenticationError) as exc:
                raise ModelUnavailable(
                    f"Embedding model {self._model_name!r} unavailable: {exc}"
                ) from exc

        return np.array([item.embedding for item in response.data], dtype=np.float32)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _parse_model(model: str):
        """Split 'backend:model_name' into (backend, model_name)."""
        if ":" in model:
            backend, name = model.split(":", 1)
            return backend.lower(), name
        # Default to a local model if no prefix given
        return "local", model

    def __repr__(self) -> str:
        return (
            f"Embedder(model={self.model!r}, batch_size={self.batch_size}, "
            f"max_workers={self.max_workers})"
        )
