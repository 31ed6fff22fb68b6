"""
HTTP front end for the pipeline.

One endpoint wraps RAGPipeline.answer():

    POST /answer  {"query_text": "...", "k": 5}  ->  {"answer_text": "..."}

Failures come back as {"detail": {"error", "stage", "message"}} with a
status code picked from the underlying error type.
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field

from .config import RAGConfig
from .errors import PipelineError
from .pipeline import RAGPipeline

logger = logging.getLogger(__name__)

_STATUS_BY_CODE = {
    "index_unavailable": 503,
    "model_unavailable": 503,
    "generation_timeout": 504,
    "generation_cancelled": 499,
}


class AnswerRequest(BaseModel):
    query_text: str = Field(..., min_length=1, description="Query to answer")
    k: Optional[int] = Field(
        None, ge=1, le=100, description="Number of reviews to retrieve; defaults to the configured top_k"
    )


class AnswerResponse(BaseModel):
    answer_text: str


def create_app(pipeline: Optional[RAGPipeline] = None, config: Optional[RAGConfig] = None) -> FastAPI:
    """
    Build the FastAPI app.

    Pass a ready pipeline (tests, embedding in a larger app), or let the app
    build one from ``config`` / the environment at startup and close it on
    shutdown.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = pipeline is None
        app.state.pipeline = pipeline or RAGPipeline.from_config(config or RAGConfig.from_env())
        try:
            yield
        finally:
            if owned:
                app.state.pipeline.close()

    app = FastAPI(title="Catalog RAG", version="1.0.0", lifespan=lifespan)
    if pipeline is not None:
        app.state.pipeline = pipeline

    @app.get("/health")
    def health_check():
        return {"status": "healthy"}

    @app.post("/answer", response_model=AnswerResponse)
    def answer(request: AnswerRequest):
        try:
            text = app.state.pipeline.answer(request.query_text, k=request.k)
        except PipelineError as exc:
            code = exc.cause_code
            raise HTTPException(
                status_code=_STATUS_BY_CODE.get(code, 500),
                detail={"error": code, "stage": exc.stage, "message": str(exc.cause)},
            ) from exc
        return AnswerResponse(answer_text=text)

    return app
