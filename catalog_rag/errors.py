"""Typed failures raised by the catalog RAG components."""

from typing import Optional


class RAGError(Exception):
    """Base class for every failure the pipeline reports to callers."""

    code = "rag_error"


class SourceNotFound(RAGError):
    """The corpus source could not be opened."""

    code = "source_not_found"


class MalformedRecord(RAGError):
    """A corpus row is missing the expected text column."""

    code = "malformed_record"

    def __init__(self, message: str, line: Optional[int] = None):
        super().__init__(message)
        self.line = line


class IndexUnavailable(RAGError):
    """The vector index storage could not be opened or read."""

    code = "index_unavailable"


class ModelUnavailable(RAGError):
    """An embedding or generation model could not be loaded or reached."""

    code = "model_unavailable"


class GenerationTimeout(RAGError):
    """Generation exceeded its wall-clock budget."""

    code = "generation_timeout"


class GenerationCancelled(RAGError):
    """Generation was stopped by the caller's cancel signal."""

    code = "generation_cancelled"


class PipelineError(RAGError):
    """
    A collaborator failure, tagged with the pipeline stage it happened in.

    The original exception is kept on ``cause`` (and chained as
    ``__cause__``) so callers can still branch on its type.
    """

    code = "pipeline_error"

    def __init__(self, stage: str, cause: BaseException):
        super().__init__(f"{stage} failed: {cause}")
        self.stage = stage
        self.cause = cause

    @property
    def cause_code(self) -> str:
        return getattr(self.cause, "code", "internal_error")
