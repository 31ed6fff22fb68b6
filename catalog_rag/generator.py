import logging
import os
import threading
import time
from typing import Dict, List, Optional

import openai

from .errors import GenerationCancelled, GenerationTimeout, ModelUnavailable

logger = logging.getLogger(__name__)


class GenerationResult:
    """Simple container for the model response and metadata."""

    def __init__(
        self,
        answer: str,
        model: str,
        prompt_tokens: int = 0,
        completion_tokens: int = 0,
        latency_ms: float = 0.0,
        truncated: bool = False,
    ):
        self.answer = answer
        self.model = model
        self.prompt_tokens = prompt_tokens
        self.completion_tokens = completion_tokens
        self.total_tokens = prompt_tokens + completion_tokens
        self.latency_ms = latency_ms
        self.truncated = truncated

    def __repr__(self) -> str:
        return (
            f"GenerationResult(model={self.model!r}, "
            f"tokens={self.total_tokens}, "
            f"latency_ms={self.latency_ms:.1f}, "
            f"truncated={self.truncated})"
        )


class Generator:
    """
    Runs a chat model over a composed prompt.

    Works with any OpenAI-compatible chat-completions server: the OpenAI API
    itself, or a locally hosted model (Ollama, vLLM, llama.cpp server) via
    ``base_url``.

    The response is streamed so the call can be bounded: it stops once
    ``max_tokens`` pieces have been received, raises GenerationTimeout when
    ``generation_timeout`` seconds have passed, and raises
    GenerationCancelled as soon as the caller's cancel event is set.
    """

    def __init__(
        self,
        model: str = "gpt-4o-mini",
        temperature: float = 0.2,
        max_tokens: int = 256,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        system_message: Optional[str] = None,
        request_timeout: float = 60.0,
        generation_timeout: float = 120.0,
    ):
        """
        Args:
            model: Model name as known to the server.
            temperature: Sampling temperature (lower = more deterministic).
            max_tokens: Default cap on generated tokens.
            api_key: API key. Falls back to OPENAI_API_KEY env var.
            base_url: URL of an OpenAI-compatible server.
            system_message: Optional system-level instruction for the model.
            request_timeout: Timeout in seconds for each network read.
            generation_timeout: Wall-clock budget in seconds for one generate().
        """
        if max_tokens < 1:
            raise ValueError("max_tokens must be at least 1")

        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.base_url = base_url
        self.request_timeout = request_timeout
        self.generation_timeout = generation_timeout
        self.system_message = system_message or (
            "You are a precise assistant that describes catalog items "
            "strictly based on the provided customer reviews."
        )

        # Key resolution: explicit > env var. Local servers ignore the key.
        resolved_key = api_key or os.environ.get("OPENAI_API_KEY", "")
        if not resolved_key:
            if base_url is None:
                raise ValueError(
                    "No OpenAI API key found. Pass api_key=, set OPENAI_API_KEY, "
                    "or point base_url= at a local server."
                )
            resolved_key = "local"

        self._client = openai.OpenAI(
            api_key=resolved_key,
            base_url=base_url,
            timeout=request_timeout,
            max_retries=0,
        )

    def generate(
        self,
        prompt: str,
        max_tokens: Optional[int] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> GenerationResult:
        """
        Send the prompt to the model and return a structured result.

        Args:
            prompt: The full formatted prompt.
            max_tokens: Cap for this call; defaults to the configured cap.
            cancel_event: Set it from another thread to abort the call.

        Returns:
            A GenerationResult with the answer text and usage metadata.

        Raises:
            ModelUnavailable: the server or model cannot be reached.
            GenerationTimeout: the wall-clock budget ran out.
            GenerationCancelled: cancel_event was set.
        """
        cap = self.max_tokens if max_tokens is None else max_tokens
        if cap < 1:
            raise ValueError("max_tokens must be at least 1")

        messages: List[Dict[str, str]] = [
            {"role": "system", "content": self.system_message},
            {"role": "user", "content": prompt},
        ]

        start_time = time.monotonic()
        deadline = start_time + self.generation_timeout
        self._check_interrupt(cancel_event, deadline)

        try:
            stream = self._client.chat.completions.create(
                model=self.model,
                messages=messages,
                temperature=self.temperature,
                max_tokens=cap,
                stream=True,
                stream_options={"include_usage": True},
            )
        except openai.APITimeoutError as exc:
            raise GenerationTimeout(f"Model {self.model!r} did not respond in time") from exc
        except (
            openai.APIConnectionError,
            openai.NotFoundError,
            openai.AuthenticationError,
            openai.RateLimitError,
            openai.InternalServerError,
        ) as exc:
            raise ModelUnavailable(f"Model {self.model!r} unavailable: {exc}") from exc

        pieces: List[str] = []
        prompt_tokens = 0
        completion_tokens = 0
        truncated = False
        try:
            for chunk in stream:
                self._check_interrupt(cancel_event, deadline)
                if chunk.usage is not None:
                    prompt_tokens = chunk.usage.prompt_tokens or 0
                    completion_tokens = chunk.usage.completion_tokens or 0
                if not chunk.choices:
                    continue
                choice = chunk.choices[0]
                if choice.delta is not None and choice.delta.content:
                    pieces.append(choice.delta.content)
                if choice.finish_reason == "length":
                    truncated = True
                # Every streamed piece carries at least one token
                if len(pieces) >= cap:
                    truncated = True
                    break
        except openai.APITimeoutError as exc:
            raise GenerationTimeout(f"Model {self.model!r} stalled while streaming") from exc
        except openai.APIError as exc:
            raise ModelUnavailable(f"Model {self.model!r} failed while streaming: {exc}") from exc
        finally:
            stream.close()

        elapsed_ms = (time.monotonic() - start_time) * 1000
        if truncated:
            logger.warning("Generation hit the %d token cap", cap)

        return GenerationResult(
            answer="".join(pieces).strip(),
            model=self.model,
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens or len(pieces),
            latency_ms=elapsed_ms,
            truncated=truncated,
        )

    def close(self) -> None:
        """Release the HTTP client."""
        self._client.close()

    def __enter__(self) -> "Generator":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def _check_interrupt(self, cancel_event: Optional[threading.Event], deadline: float) -> None:
        if cancel_event is not None and cancel_event.is_set():
            raise GenerationCancelled("Generation cancelled by caller")
        if time.monotonic() > deadline:
            raise GenerationTimeout(
                f"Generation exceeded its {self.generation_timeout:.1f}s budget"
            )

    def __repr__(self) -> str:
        return (
            f"Generator(model={self.model!r}, "
            f"temperature={self.temperature}, "
            f"max_tokens={self.max_tokens})"
        )
