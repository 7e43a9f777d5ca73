"""LiteLLM client wrappers for text generation and embeddings.

All LLM + embedding calls route through this module. LiteLLM's built-in
retry handles transport-level failures (num_retries); item-level retries
for extraction live in llm_archive.extract.retry.

The core depends only on the ``Embedder`` and ``LanguageModel``
interfaces, so tests substitute deterministic fakes.
"""

from __future__ import annotations

import asyncio
import logging
import os
import time
from abc import ABC, abstractmethod
from collections.abc import Iterator, Sequence
from contextlib import contextmanager

import litellm
import numpy as np

from llm_archive.errors import ConfigurationError, ExternalServiceError, ValidationError

# Keep LiteLLM quiet; its debug banner goes to stdout.
litellm.suppress_debug_info = True
litellm.set_verbose = False  # type: ignore[assignment]

logger = logging.getLogger(__name__)


# ------------------------------------------------------------------
# Credentials
# ------------------------------------------------------------------

# Environment variable holding each provider's key; None means no key needed.
_PROVIDER_ENV: dict[str, str | None] = {
    "openai": "OPENAI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
    "azure": "AZURE_API_KEY",
    "cohere": "COHERE_API_KEY",
    "gemini": "GEMINI_API_KEY",
    "google": "GOOGLE_API_KEY",
    "mistral": "MISTRAL_API_KEY",
    "groq": "GROQ_API_KEY",
    "together_ai": "TOGETHERAI_API_KEY",
    "ollama": None,
    "ollama_chat": None,
}


def provider_of(model: str) -> str:
    """Provider prefix of a 'provider/model' string ('openai' when absent)."""
    return model.split("/")[0].lower() if "/" in model else "openai"


def required_key(model: str) -> str | None:
    """Env var that must hold the key for *model*; unknown providers get PROVIDER_API_KEY."""
    provider = provider_of(model)
    return _PROVIDER_ENV.get(provider, f"{provider.upper()}_API_KEY")


def validate_api_key(model: str) -> None:
    """Raise ConfigurationError unless the key *model* needs is in the environment."""
    env_var = required_key(model)
    if env_var is not None and not os.getenv(env_var):
        raise ConfigurationError(
            f"API key not found for provider '{provider_of(model)}'. "
            f"Set the {env_var} environment variable."
        )


# ------------------------------------------------------------------
# Thin call wrappers
# ------------------------------------------------------------------


def _chat_request(
    model: str, messages: list[dict], max_tokens: int, temperature: float, num_retries: int
) -> dict:
    return {
        "model": model,
        "messages": messages,
        "max_tokens": max_tokens,
        "temperature": temperature,
        "num_retries": num_retries,
    }


def _first_content(response) -> str:
    return response.choices[0].message.content or ""


def _vectors(response) -> list[list[float]]:
    return [item["embedding"] for item in response.data]


def complete(
    model: str,
    messages: list[dict],
    max_tokens: int = 2000,
    temperature: float = 0.7,
    num_retries: int = 3,
) -> str:
    """Blocking chat completion; returns the first choice's text ('' when empty).

    ``num_retries`` is LiteLLM's own transport retry count.
    """
    return _first_content(
        litellm.completion(**_chat_request(model, messages, max_tokens, temperature, num_retries))
    )


async def acomplete(
    model: str,
    messages: list[dict],
    max_tokens: int = 2000,
    temperature: float = 0.7,
    num_retries: int = 3,
) -> str:
    response = await litellm.acompletion(
        **_chat_request(model, messages, max_tokens, temperature, num_retries)
    )
    return _first_content(response)


def embed_batch(model: str, texts: list[str], num_retries: int = 3) -> list[list[float]]:
    """One litellm.embedding request for all *texts*, order preserved. No call for []."""
    if not texts:
        return []
    return _vectors(litellm.embedding(model=model, input=texts, num_retries=num_retries))


def embed(model: str, text: str, num_retries: int = 3) -> list[float]:
    return embed_batch(model, [text], num_retries=num_retries)[0]


async def aembed_batch(model: str, texts: list[str], num_retries: int = 3) -> list[list[float]]:
    if not texts:
        return []
    return _vectors(await litellm.aembedding(model=model, input=texts, num_retries=num_retries))


# ------------------------------------------------------------------
# Provider error mapping
# ------------------------------------------------------------------

# Retrying cannot fix these: bad key, no access, unknown model.
_SETUP_ERRORS: tuple[type[Exception], ...] = (
    litellm.exceptions.AuthenticationError,
    litellm.exceptions.PermissionDeniedError,
    litellm.exceptions.NotFoundError,
)
# The request itself was rejected (context window, malformed input).
_REQUEST_ERRORS: tuple[type[Exception], ...] = (
    litellm.exceptions.BadRequestError,
    litellm.exceptions.UnprocessableEntityError,
)
_TRANSIENT_ERRORS: tuple[type[Exception], ...] = (
    litellm.exceptions.RateLimitError,
    litellm.exceptions.Timeout,
    litellm.exceptions.APIConnectionError,
    litellm.exceptions.ServiceUnavailableError,
    litellm.exceptions.InternalServerError,
    litellm.exceptions.APIError,
)


@contextmanager
def provider_errors(action: str) -> Iterator[None]:
    """Re-raise LiteLLM exceptions as ConfigurationError, ValidationError or ExternalServiceError."""
    try:
        yield
    except _SETUP_ERRORS as exc:
        raise ConfigurationError(f"{action} rejected by the provider: {exc}") from exc
    except _REQUEST_ERRORS as exc:
        raise ValidationError(f"{action} refused as invalid: {exc}") from exc
    except _TRANSIENT_ERRORS as exc:
        raise ExternalServiceError(f"{action} failed: {exc}") from exc


# ------------------------------------------------------------------
# Collaborator interfaces
# ------------------------------------------------------------------


class Embedder(ABC):
    """Turns text into fixed-length float32 vectors.

    ``dimensions`` is the single source of truth handed to
    ``VectorStore.initialize``; every returned vector has that length.
    """

    @property
    @abstractmethod
    def dimensions(self) -> int: ...

    @abstractmethod
    def embed_batch(self, texts: Sequence[str]) -> list[np.ndarray]:
        """Embed *texts*. result[i] corresponds to texts[i]."""

    def embed(self, text: str) -> np.ndarray:
        return self.embed_batch([text])[0]

    async def aembed_batch(self, texts: Sequence[str]) -> list[np.ndarray]:
        """Async embed. Default implementation calls sync embed_batch()."""
        return self.embed_batch(texts)

    async def aembed(self, text: str) -> np.ndarray:
        return (await self.aembed_batch([text]))[0]


class LanguageModel(ABC):
    """Text generation. ``context``, when given, is appended after the prompt."""

    @abstractmethod
    def generate(
        self, prompt: str, context: str | None = None, temperature: float | None = None
    ) -> str: ...

    async def agenerate(
        self, prompt: str, context: str | None = None, temperature: float | None = None
    ) -> str:
        """Async generate. Default implementation calls sync generate()."""
        return self.generate(prompt, context, temperature)


def join_prompt(prompt: str, context: str | None) -> str:
    return f"{prompt}\n\n{context}" if context else prompt


# ------------------------------------------------------------------
# LiteLLM implementations
# ------------------------------------------------------------------


class LiteLLMEmbedder(Embedder):
    """Embedder over litellm.embedding / litellm.aembedding.

    Texts are sent in sub-batches of ``batch_size`` with a fixed
    ``rate_limit_delay`` (seconds) between consecutive sub-batches.
    """

    def __init__(
        self,
        model: str,
        dimensions: int = 768,
        batch_size: int = 100,
        rate_limit_delay: float = 0.1,
        num_retries: int = 3,
    ) -> None:
        if dimensions < 1:
            raise ValidationError(f"dimensions must be >= 1, got {dimensions}")
        if batch_size < 1:
            raise ValidationError(f"batch_size must be >= 1, got {batch_size}")
        self.model = model
        self._dimensions = dimensions
        self.batch_size = batch_size
        self.rate_limit_delay = rate_limit_delay
        self.num_retries = num_retries

    @property
    def dimensions(self) -> int:
        return self._dimensions

    def embed_batch(self, texts: Sequence[str]) -> list[np.ndarray]:
        vectors: list[np.ndarray] = []
        for n, batch in enumerate(self._batches(texts)):
            if n and self.rate_limit_delay > 0:
                time.sleep(self.rate_limit_delay)
            with provider_errors("Embedding request"):
                raw = embed_batch(self.model, batch, num_retries=self.num_retries)
            vectors.extend(self._checked(raw, len(batch)))
        return vectors

    async def aembed_batch(self, texts: Sequence[str]) -> list[np.ndarray]:
        vectors: list[np.ndarray] = []
        for n, batch in enumerate(self._batches(texts)):
            if n and self.rate_limit_delay > 0:
                await asyncio.sleep(self.rate_limit_delay)
            with provider_errors("Embedding request"):
                raw = await aembed_batch(self.model, batch, num_retries=self.num_retries)
            vectors.extend(self._checked(raw, len(batch)))
        return vectors

    def _batches(self, texts: Sequence[str]) -> list[list[str]]:
        items = list(texts)
        return [items[i : i + self.batch_size] for i in range(0, len(items), self.batch_size)]

    def _checked(self, raw: list[list[float]], expected: int) -> list[np.ndarray]:
        if len(raw) != expected:
            raise ExternalServiceError(
                f"Embedding provider returned {len(raw)} vectors for {expected} inputs"
            )
        vectors = [np.asarray(v, dtype=np.float32) for v in raw]
        for v in vectors:
            if v.shape != (self._dimensions,):
                raise ValidationError(
                    f"Model '{self.model}' returned {v.shape[0]}-dimensional vectors, "
                    f"expected {self._dimensions}"
                )
        logger.debug("Embedded %d texts with %s", expected, self.model)
        return vectors


class LiteLLMLanguageModel(LanguageModel):
    """LanguageModel over litellm.completion / litellm.acompletion."""

    def __init__(
        self,
        model: str,
        temperature: float = 0.7,
        max_tokens: int = 2000,
        num_retries: int = 3,
    ) -> None:
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.num_retries = num_retries

    def generate(
        self, prompt: str, context: str | None = None, temperature: float | None = None
    ) -> str:
        with provider_errors("Generation"):
            return complete(
                self.model,
                self._messages(prompt, context),
                max_tokens=self.max_tokens,
                temperature=self.temperature if temperature is None else temperature,
                num_retries=self.num_retries,
            )

    async def agenerate(
        self, prompt: str, context: str | None = None, temperature: float | None = None
    ) -> str:
        with provider_errors("Generation"):
            return await acomplete(
                self.model,
                self._messages(prompt, context),
                max_tokens=self.max_tokens,
                temperature=self.temperature if temperature is None else temperature,
                num_retries=self.num_retries,
            )

    @staticmethod
    def _messages(prompt: str, context: str | None) -> list[dict]:
        return [{"role": "user", "content": join_prompt(prompt, context)}]
