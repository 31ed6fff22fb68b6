import logging
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Union

from .config import RAGConfig
from .document_loader import CorpusLoader
from .embedder import Embedder
from .errors import PipelineError
from .generator import GenerationResult, Generator
from .prompt_builder import PromptBuilder
from .retriever import Retriever
from .vector_store import VectorIndex

logger = logging.getLogger(__name__)


class PipelineState(str, Enum):
    IDLE = "idle"
    RETRIEVING = "retrieving"
    COMPOSING = "composing"
    GENERATING = "generating"
    DONE = "done"
    FAILED = "failed"


@dataclass
class AnswerResult:
    answer: str
    sources: List[Dict[str, Any]] = field(default_factory=list)
    state: PipelineState = PipelineState.DONE
    metadata: Dict[str, Any] = field(default_factory=dict)


class RAGPipeline:
    """
    End-to-end RAG pipeline over the review catalog.

    Two modes of operation:
      1. Build mode: load the corpus, embed it, upsert and save the index.
      2. Query mode: retrieve similar reviews, compose the prompt, generate.

    A query walks IDLE -> RETRIEVING -> COMPOSING -> GENERATING -> DONE.
    Any collaborator error moves the pipeline to FAILED and is re-raised as
    a PipelineError naming the stage; there is no retry and no fallback
    answer.

    The components are long-lived handles: models are loaded once and kept
    until close(). Use from_config() to build them all from settings.
    """

    def __init__(
        self,
        embedder: Embedder,
        vector_index: VectorIndex,
        generator: Optional[Generator] = None,
        prompt_builder: Optional[PromptBuilder] = None,
        loader: Optional[CorpusLoader] = None,
        top_k: int = 5,
        score_threshold: Optional[float] = None,
        max_tokens: Optional[int] = None,
        generator_factory: Optional[Callable[[], Generator]] = None,
    ):
        """
        Args:
            embedder: Embedder shared by index builds and queries.
            vector_index: Opened VectorIndex.
            generator: Generator used to answer queries.
            prompt_builder: Defaults to the built-in two-shot template.
            loader: Defaults to a CorpusLoader reading the 'review_text' column.
            top_k: Default number of reviews retrieved per query.
            score_threshold: Minimum similarity for retrieved reviews.
            max_tokens: Per-answer output cap; defaults to the generator's.
            generator_factory: Builds the generator on the first query when
                               no generator is given, so index builds never
                               need model credentials.
        """
        if generator is None and generator_factory is None:
            raise ValueError("Pass either generator or generator_factory")

        self._embedder = embedder
        self._vector_index = vector_index
        self._generator = generator
        self._generator_factory = generator_factory
        self._prompt_builder = prompt_builder or PromptBuilder()
        self._loader = loader or CorpusLoader()
        self._retriever = Retriever(
            vector_index=vector_index,
            embedder=embedder,
            top_k=top_k,
            score_threshold=score_threshold,
        )
        self.max_tokens = max_tokens

        self.state = PipelineState.IDLE
        self._lock = threading.Lock()

        logger.info(
            "RAGPipeline initialized | embed=%s | llm=%s | top_k=%d",
            embedder.model,
            generator.model if generator is not None else "(on first query)",
            top_k,
        )

    @classmethod
    def from_config(cls, config: RAGConfig) -> "RAGPipeline":
        """Create and wire every component from a RAGConfig."""
        vector_index = VectorIndex.open(config.index_dir, collection=config.collection)
        embedder = Embedder(
            model=config.embedding_model,
            batch_size=config.embedding_batch_size,
            max_workers=config.embedding_workers,
            api_key=config.api_key,
            base_url=config.embedding_base_url,
        )

        def make_generator() -> Generator:
            return Generator(
                model=config.llm_model,
                temperature=config.temperature,
                max_tokens=config.max_tokens,
                api_key=config.api_key,
                base_url=config.llm_base_url,
                request_timeout=config.request_timeout,
                generation_timeout=config.generation_timeout,
            )

        return cls(
            embedder=embedder,
            vector_index=vector_index,
            generator_factory=make_generator,
            loader=CorpusLoader(column=config.text_column, delimiter=config.delimiter),
            top_k=config.top_k,
            score_threshold=config.score_threshold,
        )

    # ------------------------------------------------------------------
    # Build / Ingest
    # ------------------------------------------------------------------

    def build_index(self, source: str, column: Optional[Union[str, int]] = None) -> int:
        """
        Load the corpus, embed every review and upsert it under its row id.

        Loader, embedder and index errors propagate unchanged.

        Returns:
            Number of reviews indexed.
        """
        logger.info("Loading corpus from: %s", source)
        docs = self._loader.load(source, column=column)
        if not docs:
            logger.warning("Corpus %s has no records, nothing to index.", source)
            return 0

        texts = [doc.text for doc in docs]
        logger.info("Embedding %d reviews...", len(texts))
        embeddings = self._embedder.embed_batch(texts)

        # Queries wait while the index is being rewritten
        with self._lock:
            self._vector_index.upsert_many([doc.id for doc in docs], embeddings, texts)
            self._vector_index.save()
        logger.info("Indexed %d reviews into collection %r.", len(docs), self._vector_index.collection)
        return len(docs)

    # ------------------------------------------------------------------
    # Query
    # ------------------------------------------------------------------

    def answer(
        self,
        query_text: str,
        k: Optional[int] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> str:
        """Answer a query; returns only the generated text."""
        return self.run(query_text, k=k, cancel_event=cancel_event).answer

    def run(
        self,
        query_text: str,
        k: Optional[int] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> AnswerResult:
        """
        Answer a query using the RAG pipeline.

        Args:
            query_text: The natural language query.
            k: Override the default number of reviews to retrieve.
            cancel_event: Set from another thread to abort generation.

        Returns:
            An AnswerResult with the answer, the retrieved sources and
            generation metadata.

        Raises:
            PipelineError: tagged with the stage that failed.
        """
        with self._lock:
            self.state = PipelineState.IDLE
            logger.info("Query: %s", query_text)

            # Step 1: Retrieve relevant reviews
            retrieved = self._run_stage(
                PipelineState.RETRIEVING, self._retriever.retrieve_with_scores, query_text, k
            )
            if not retrieved:
                logger.warning("No reviews retrieved for the query.")

            # Step 2: Build the prompt
            prompt = self._run_stage(
                PipelineState.COMPOSING,
                self._prompt_builder.compose,
                query_text,
                [text for text, _ in retrieved],
            )

            # Step 3: Generate the answer
            result: GenerationResult = self._run_stage(
                PipelineState.GENERATING,
                self._generate,
                prompt,
                max_tokens=self.max_tokens,
                cancel_event=cancel_event,
            )

            self.state = PipelineState.DONE
            logger.info(
                "Generated answer | tokens=%d | latency=%.0fms",
                result.total_tokens,
                result.latency_ms,
            )

            return AnswerResult(
                answer=result.answer,
                sources=[{"text": t, "score": s} for t, s in retrieved],
                state=self.state,
                metadata={
                    "model": result.model,
                    "prompt_tokens": result.prompt_tokens,
                    "completion_tokens": result.completion_tokens,
                    "latency_ms": round(result.latency_ms, 2),
                    "truncated": result.truncated,
                },
            )

    @property
    def generator(self) -> Generator:
        """The generator, created from the factory on first use."""
        if self._generator is None:
            self._generator = self._generator_factory()
        return self._generator

    def _generate(self, prompt: str, **kwargs) -> GenerationResult:
        return self.generator.generate(prompt, **kwargs)

    def _run_stage(self, stage: PipelineState, step: Callable, *args, **kwargs):
        self.state = stage
        logger.debug("Pipeline stage: %s", stage.value)
        try:
            return step(*args, **kwargs)
        except Exception as exc:
            self.state = PipelineState.FAILED
            logger.error("Pipeline failed while %s: %s", stage.value, exc)
            raise PipelineError(stage.value, exc) from exc

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def close(self) -> None:
        """Release models and persist the index."""
        try:
            self._vector_index.close()
        finally:
            self._embedder.close()
            if self._generator is not None:
                self._generator.close()

    def __enter__(self) -> "RAGPipeline":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def __repr__(self) -> str:
        return (
            f"RAGPipeline("
            f"embed={self._embedder.model!r}, "
            f"llm={self._generator.model if self._generator is not None else None!r}, "
            f"top_k={self._retriever.top_k})"
        )
