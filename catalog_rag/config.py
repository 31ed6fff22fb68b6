import os
from dataclasses import dataclass, fields
from typing import Mapping, Optional

ENV_PREFIX = "CATALOG_RAG_"


@dataclass
class RAGConfig:
    """
    Settings for every component of the pipeline.

    Defaults suit a local setup: sentence-transformers embeddings and an
    OpenAI-compatible chat server. Any field can be overridden from the
    environment with ``CATALOG_RAG_<FIELD_NAME>`` (upper case), see
    :meth:`from_env`.
    """

    # Corpus
    corpus_path: Optional[str] = None
    text_column: str = "review_text"
    delimiter: str = ","

    # Vector index
    index_dir: str = "catalog_index"
    collection: str = "catalog"

    # Embeddings
    embedding_model: str = "local:all-mpnet-base-v2"
    embedding_batch_size: int = 64
    embedding_workers: int = 1
    embedding_base_url: Optional[str] = None

    # Generation
    llm_model: str = "gpt-4o-mini"
    llm_base_url: Optional[str] = None
    api_key: Optional[str] = None
    temperature: float = 0.2
    max_tokens: int = 256
    request_timeout: float = 60.0
    generation_timeout: float = 120.0

    # Retrieval
    top_k: int = 5
    score_threshold: Optional[float] = None

    log_level: str = "INFO"

    def __post_init__(self):
        if self.top_k < 1:
            raise ValueError("top_k must be at least 1")
        if self.max_tokens < 1:
            raise ValueError("max_tokens must be at least 1")
        if self.embedding_batch_size < 1:
            raise ValueError("embedding_batch_size must be at least 1")
        if self.embedding_workers < 1:
            raise ValueError("embedding_workers must be at least 1")

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None, **overrides) -> "RAGConfig":
        """
        Build a config from ``CATALOG_RAG_*`` variables.

        Explicit keyword overrides win over the environment. The API key
        falls back to ``OPENAI_API_KEY`` when ``CATALOG_RAG_API_KEY`` is unset.
        """
        env = os.environ if environ is None else environ
        values = {}
        for f in fields(cls):
            raw = env.get(ENV_PREFIX + f.name.upper())
            if raw is None or raw == "":
                continue
            values[f.name] = _coerce(f.name, raw, f.default)

        if "api_key" not in values and env.get("OPENAI_API_KEY"):
            values["api_key"] = env["OPENAI_API_KEY"]

        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)


def _coerce(name: str, raw: str, default):
    # Optional fields default to None, so their target type is spelled out here.
    if name == "score_threshold" or isinstance(default, float):
        target = float
    elif isinstance(default, int):
        target = int
    else:
        return raw

    try:
        return target(raw)
    except ValueError:
        raise ValueError(
            f"Invalid value for {ENV_PREFIX}{name.upper()}: {raw!r} "
            f"(expected {target.__name__})"
        )
