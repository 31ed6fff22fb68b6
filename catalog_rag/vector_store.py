import logging
import os
import pickle
import threading
from pathlib import Path
from typing import Dict, List, NamedTuple, Optional, Sequence, Tuple, Union

import faiss  # type: ignore
import numpy as np

from .errors import IndexUnavailable

logger = logging.getLogger(__name__)


class SearchHit(NamedTuple):
    id: str
    text: str
    score: float


class VectorIndex:
    """
    A persistent nearest-neighbour store backed by FAISS.

    Entries are (id, embedding, text) triples keyed by a string id. We use
    an IndexIDMap2 around IndexFlatIP (exact inner-product search), so on
    L2-normalised vectors scores are exact cosine similarities. Vectors are
    normalised on the way in, callers do not have to.

    Each string id maps to a FAISS label assigned at first insertion. An
    upsert on an existing id swaps the vector under the same label, so the
    entry keeps its place in insertion order, which is what ties are broken on.

    The whole collection is persisted to ``<directory>/<collection>.pkl``.
    Writers must be serialised by the caller (single writer); a re-entrant
    lock keeps each upsert atomic with respect to concurrent queries.
    """

    def __init__(self, path: Optional[Union[str, Path]] = None, collection: str = "catalog"):
        self.collection = collection
        self._path = Path(path) if path is not None else None
        self._index = None          # FAISS index, built on first upsert
        self._dim: Optional[int] = None
        self._labels: Dict[str, int] = {}             # id -> FAISS label
        self._entries: Dict[int, Tuple[str, str]] = {}  # label -> (id, text)
        self._next_label = 0
        self._dirty = False
        self._lock = threading.RLock()

    @classmethod
    def open(cls, directory: Union[str, Path], collection: str = "catalog") -> "VectorIndex":
        """Open (or create) the named collection stored under ``directory``."""
        directory = Path(directory)
        try:
            directory.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise IndexUnavailable(f"Cannot create index directory {directory}: {exc}") from exc

        store = cls(path=directory / f"{collection}.pkl", collection=collection)
        if store._path.exists():
            store._load()
            logger.info("Opened collection %r with %d entries from %s", collection, len(store), directory)
        else:
            logger.info("Created empty collection %r at %s", collection, directory)
        return store

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def upsert(self, id: str, embedding, text: str) -> None:
        """Insert the entry for ``id``, or replace its embedding and text."""
        self.upsert_many([id], [embedding], [text])

    def upsert_many(self, ids: Sequence[str], embeddings, texts: Sequence[str]) -> None:
        """Batch upsert. When an id repeats within one call the last one wins."""
        if len(ids) == 0 and len(texts) == 0 and len(embeddings) == 0:
            return
        vectors = self._as_matrix(embeddings)
        if not len(ids) == len(texts) == vectors.shape[0]:
            raise ValueError(
                f"ids ({len(ids)}), embeddings ({vectors.shape[0]}) and texts "
                f"({len(texts)}) must have the same length"
            )

        latest: Dict[str, int] = {}
        for row, entry_id in enumerate(ids):
            latest[str(entry_id)] = row
        rows = list(latest.values())
        vectors = vectors[rows]

        with self._lock:
            self._ensure_index(vectors.shape[1])

            replaced = [self._labels[i] for i in latest if i in self._labels]
            if replaced:
                self._index.remove_ids(np.array(replaced, dtype=np.int64))

            labels = []
            for entry_id, row in latest.items():
                label = self._labels.get(entry_id)
                if label is None:
                    label = self._next_label
                    self._next_label += 1
                    self._labels[entry_id] = label
                self._entries[label] = (entry_id, texts[row])
                labels.append(label)

            self._index.add_with_ids(vectors, np.array(labels, dtype=np.int64))
            self._dirty = True

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def query(self, embedding, k: int) -> List[str]:
        """Texts of the (at most) k entries closest to ``embedding``."""
        return [hit.text for hit in self.search(embedding, k)]

    def search(self, embedding, k: int) -> List[SearchHit]:
        """
        Find the k entries most similar to ``embedding``.

        Returns SearchHit tuples sorted by score descending. Scores are
        cosine similarities in the range [-1, 1].
        """
        if k <= 0:
            return []

        query = self._as_matrix(embedding)
        with self._lock:
            if self._index is None or self._index.ntotal == 0:
                return []
            if query.shape[1] != self._dim:
                raise ValueError(
                    f"Embedding dimension mismatch: index has {self._dim}, got {query.shape[1]}"
                )

            ntotal = self._index.ntotal
            n = min(k, ntotal)
            fetch = n
            while True:
                scores, labels = self._index.search(query[:1], fetch)
                # FAISS picks among equal scores by storage order, which an
                # upsert changes; widen until the tie at position n is complete.
                if fetch >= ntotal or scores[0][fetch - 1] < scores[0][n - 1]:
                    break
                fetch = min(fetch * 2, ntotal)

            ranked = sorted(
                ((float(score), int(label)) for score, label in zip(scores[0], labels[0]) if label != -1),
                key=lambda pair: (-pair[0], pair[1]),
            )[:n]
            hits = []
            for score, label in ranked:
                entry_id, text = self._entries[label]
                hits.append(SearchHit(id=entry_id, text=text, score=score))
        return hits

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def save(self) -> None:
        """Write the collection to disk; a no-op for in-memory indexes."""
        if self._path is None:
            return

        with self._lock:
            # FAISS indices can't be pickled directly; serialise separately
            payload = {
                "index_bytes": faiss.serialize_index(self._index) if self._index is not None else None,
                "dim": self._dim,
                "labels": self._labels,
                "entries": self._entries,
                "next_label": self._next_label,
            }
            tmp_path = self._path.with_name(self._path.name + ".tmp")
            try:
                with open(tmp_path, "wb") as fh:
                    pickle.dump(payload, fh)
                os.replace(tmp_path, self._path)
            except OSError as exc:
                raise IndexUnavailable(f"Cannot write index file {self._path}: {exc}") from exc
            self._dirty = False

        logger.info("Saved collection %r (%d entries) to %s", self.collection, len(self), self._path)

    def _load(self) -> None:
        try:
            with open(self._path, "rb") as fh:
                payload = pickle.load(fh)
            index_bytes = payload["index_bytes"]
            index = faiss.deserialize_index(index_bytes) if index_bytes is not None else None
            self._dim = payload["dim"]
            self._labels = payload["labels"]
            self._entries = payload["entries"]
            self._next_label = payload["next_label"]
        except (OSError, EOFError, KeyError, TypeError, RuntimeError, pickle.UnpicklingError) as exc:
            raise IndexUnavailable(f"Cannot read index file {self._path}: {exc}") from exc
        self._index = index

    def close(self) -> None:
        """Persist pending writes."""
        if self._dirty:
            self.save()

    def __enter__(self) -> "VectorIndex":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Utility
    # ------------------------------------------------------------------

    def _ensure_index(self, dim: int) -> None:
        if self._index is None:
            # First time: build the index
            self._dim = dim
            self._index = faiss.IndexIDMap2(faiss.IndexFlatIP(dim))
        elif dim != self._dim:
            raise ValueError(f"Embedding dimension mismatch: index has {self._dim}, got {dim}")

    @staticmethod
    def _as_matrix(embeddings) -> np.ndarray:
        matrix = np.array(embeddings, dtype=np.float32, copy=True)
        if matrix.ndim == 1:
            matrix = matrix.reshape(1, -1)
        if matrix.ndim != 2:
            raise ValueError(f"Expected 1-D or 2-D embeddings, got shape {matrix.shape}")
        matrix = np.ascontiguousarray(matrix)
        if matrix.shape[0]:
            faiss.normalize_L2(matrix)
        return matrix

    def __contains__(self, id: str) -> bool:
        return id in self._labels

    def __len__(self) -> int:
        return len(self._labels)

    def __repr__(self) -> str:
        return f"VectorIndex(collection={self.collection!r}, entries={len(self)}, dim={self._dim})"
