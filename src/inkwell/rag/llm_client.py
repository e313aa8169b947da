"""LiteLLM client wrapper: the embedding capability the engine consumes.

All embedding calls route through this module. LiteLLM's built-in retry is
used (``num_retries``, exponential backoff). Transport and provider errors
are re-raised as ``EmbeddingServiceError``; a response without a usable
vector is returned as-is for the caller to classify.
"""

from __future__ import annotations

import os
from typing import Any, Protocol, runtime_checkable

import litellm

# Disable LiteLLM verbose logging unless explicitly enabled
litellm.suppress_debug_info = True
litellm.set_verbose = False  # type: ignore[assignment]


class EmbeddingServiceError(RuntimeError):
    """The embedding endpoint was unreachable or answered with an error."""


# ------------------------------------------------------------------
# Provider → env var mapping for API key checks
# ------------------------------------------------------------------

_PROVIDER_ENV: dict[str, str | None] = {
    "openai": "OPENAI_API_KEY",
    "azure": "AZURE_API_KEY",
    "cohere": "COHERE_API_KEY",
    "gemini": "GEMINI_API_KEY",
    "mistral": "MISTRAL_API_KEY",
    "voyage": "VOYAGE_API_KEY",
    "ollama": None,  # Local, no key required
    "ollama_chat": None,
}


def provider_of(model: str) -> str:
    return model.split("/")[0].lower() if "/" in model else "openai"


def has_api_key(model: str) -> bool:
    """True when *model*'s provider needs no key or its key env var is set."""
    env_var = _PROVIDER_ENV.get(provider_of(model))
    return env_var is None or bool(os.getenv(env_var))


def _extract_vector(response: Any) -> Any:
    """Pull ``data[0].embedding`` out of a LiteLLM response, or None."""
    try:
        first = response.data[0]
    except (AttributeError, IndexError, KeyError, TypeError):
        return None
    if isinstance(first, dict):
        return first.get("embedding")
    return getattr(first, "embedding", None)


def embed(model: str, text: str, num_retries: int = 3) -> Any:
    """Call litellm.embedding() with retry/backoff and return the raw vector.

    Raises:
        EmbeddingServiceError: On persistent API or transport failure.
    """
    try:
        response = litellm.embedding(model=model, input=[text], num_retries=num_retries)
    except Exception as exc:
        raise EmbeddingServiceError(f"embedding request to '{model}' failed: {exc}") from exc
    return _extract_vector(response)


async def aembed(model: str, text: str, num_retries: int = 3) -> Any:
    """Async twin of embed() built on litellm.aembedding()."""
    try:
        response = await litellm.aembedding(model=model, input=[text], num_retries=num_retries)
    except Exception as exc:
        raise EmbeddingServiceError(f"embedding request to '{model}' failed: {exc}") from exc
    return _extract_vector(response)


def count_tokens(model: str, text: str) -> int:
    """Count tokens in *text* for *model* using LiteLLM's provider-aware counter.

    Falls back to character-based approximation (4 chars ≈ 1 token) if the model
    is not supported by litellm.token_counter().
    """
    try:
        return litellm.token_counter(model=model, text=text)
    except Exception:
        return max(1, len(text) // 4)


@runtime_checkable
class EmbeddingProvider(Protocol):
    """Anything that turns text into a vector for a named model."""

    def embed(self, text: str, model: str) -> Any: ...

    async def aembed(self, text: str, model: str) -> Any: ...


class LiteLLMEmbeddingProvider:
    """Default EmbeddingProvider backed by LiteLLM (Ollama, OpenAI, ...)."""

    def __init__(self, num_retries: int = 3) -> None:
        self.num_retries = num_retries

    def embed(self, text: str, model: str) -> Any:
        return embed(model, text, num_retries=self.num_retries)

    async def aembed(self, text: str, model: str) -> Any:
        return await aembed(model, text, num_retries=self.num_retries)
