"""Catalog RAG

Retrieval-augmented answers over customer reviews of catalog items:
embed the reviews, retrieve the closest ones for a query and let a
language model summarise them.
"""

__version__ = "1.0.0"

from catalog_rag.config import RAGConfig
from catalog_rag.document_loader import CorpusLoader, Document
from catalog_rag.embedder import Embedder
from catalog_rag.errors import (
    GenerationCancelled,
    GenerationTimeout,
    IndexUnavailable,
    MalformedRecord,
    ModelUnavailable,
    PipelineError,
    RAGError,
    SourceNotFound,
)
from catalog_rag.generator import GenerationResult, Generator
from catalog_rag.pipeline import AnswerResult, PipelineState, RAGPipeline
from catalog_rag.prompt_builder import PromptBuilder
from catalog_rag.retriever import Retriever
from catalog_rag.vector_store import SearchHit, VectorIndex

__all__ = [
    "AnswerResult",
    "CorpusLoader",
    "Document",
    "Embedder",
    "GenerationCancelled",
    "GenerationResult",
    "GenerationTimeout",
    "Generator",
    "IndexUnavailable",
    "MalformedRecord",
    "ModelUnavailable",
    "PipelineError",
    "PipelineState",
    "PromptBuilder",
    "RAGConfig",
    "RAGError",
    "RAGPipeline",
    "Retriever",
    "SearchHit",
    "SourceNotFound",
    "VectorIndex",
]
