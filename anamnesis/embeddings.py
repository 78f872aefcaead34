"""Embedding providers and the sticky fallback chain.

Three tiers are tried in order:

1. ``LocalModelEmbeddingProvider``: sentence-transformers, no network.
2. ``OpenAIEmbeddingProvider``: OpenAI-compatible API, needs an API key.
3. ``FallbackModelEmbeddingProvider``: fastembed ONNX model, last resort.

Every provider returns unit-length vectors with non-finite components
replaced by zero, so cosine similarity reduces to a dot product.
"""

from __future__ import annotations

import math
import threading
from collections.abc import Callable, Sequence
from typing import Any, Protocol, TypeVar, runtime_checkable

import structlog

from .config import MemorySettings
from .errors import EmbeddingExhaustedError, ProviderUnavailableError

logger = structlog.get_logger(__name__)

T = TypeVar("T")


@runtime_checkable
class EmbeddingProvider(Protocol):
    """Converts text into fixed-length float vectors."""

    @property
    def model(self) -> str: ...

    @property
    def dimensions(self) -> int: ...

    def embed_query(self, text: str) -> list[float]: ...

    def embed_batch(self, texts: list[str]) -> list[list[float]]: ...


def sanitize_and_normalize(vec: Sequence[float]) -> list[float]:
    """Zero out non-finite components and scale to unit length.

    A vector whose magnitude is (almost) zero is returned as-is after
    sanitizing, i.e. all zeros, rather than divided into NaN.
    """
    sanitized = [float(v) if math.isfinite(v) else 0.0 for v in vec]
    magnitude = math.sqrt(sum(v * v for v in sanitized))
    if magnitude < 1e-10:
        return [0.0] * len(sanitized)
    return [v / magnitude for v in sanitized]


class LocalModelEmbeddingProvider:
    """Local inference through sentence-transformers.

    The model is loaded on first use. A failed load is remembered, and every
    later call fails immediately instead of retrying the download.

    Args:
        model_name: Hugging Face model id.
        dimensions: Output size; larger model outputs are truncated to it.
        cache_dir: Where model files are stored.
    """

    def __init__(
        self,
        model_name: str = "google/embeddinggemma-300m",
        dimensions: int = 256,
        cache_dir: str | None = None,
    ) -> None:
        self._model_name = model_name
        self._dimensions = dimensions
        self._cache_dir = cache_dir
        self._encoder: Any = None
        self._failed = False
        self._lock = threading.Lock()

    @property
    def model(self) -> str:
        return self._model_name.rsplit("/", 1)[-1]

    @property
    def dimensions(self) -> int:
        return self._dimensions

    def _ensure_encoder(self) -> Any:
        with self._lock:
            if self._encoder is not None:
                return self._encoder
            if self._failed:
                raise ProviderUnavailableError(f"local model {self._model_name} failed to load earlier")
            try:
                from sentence_transformers import SentenceTransformer

                self._encoder = SentenceTransformer(
                    self._model_name,
                    truncate_dim=self._dimensions,
                    cache_folder=self._cache_dir,
                )
            except Exception as exc:
                self._failed = True
                raise ProviderUnavailableError(f"local model {self._model_name} unavailable: {exc}") from exc
            logger.info(f"local_model_ready model={self._model_name} dims={self._dimensions}")
            return self._encoder

    def embed_query(self, text: str) -> list[float]:
        return self.embed_batch([text])[0]

    def embed_batch(self, texts: list[str]) -> list[list[float]]:
        if not texts:
            return []
        encoder = self._ensure_encoder()
        vectors = encoder.encode(texts, convert_to_numpy=True)
        return [sanitize_and_normalize(list(vec)) for vec in vectors.tolist()]


class OpenAIEmbeddingProvider:
    """Embedding provider using the OpenAI client.

    Works with any OpenAI-compatible endpoint through ``base_url``. A missing
    API key is not an error at construction time; the provider simply reports
    itself unavailable when called.

    Args:
        api_key: API key, or None when no credential is configured.
        model: The deployment/model name for embeddings.
        dimensions: Dimensionality of the model output.
        base_url: Optional endpoint override.
    """

    def __init__(
        self,
        api_key: str | None,
        model: str = "text-embedding-3-small",
        dimensions: int = 1536,
        base_url: str | None = None,
    ) -> None:
        self._api_key = api_key
        self._model = model
        self._dimensions = dimensions
        self._base_url = base_url
        self._client: Any = None

    @property
    def model(self) -> str:
        return self._model

    @property
    def dimensions(self) -> int:
        return self._dimensions

    def _get_client(self) -> Any:
        if self._client is not None:
            return self._client
        if not self._api_key:
            raise ProviderUnavailableError("no API key configured for remote embeddings")
        from openai import OpenAI

        self._client = OpenAI(api_key=self._api_key, base_url=self._base_url)
        logger.info(f"embedding_provider_initialized model={self._model}")
        return self._client

    def embed_query(self, text: str) -> list[float]:
        return self.embed_batch([text])[0]

    def embed_batch(self, texts: list[str]) -> list[list[float]]:
        if not texts:
            return []
        client = self._get_client()
        logger.debug(f"embed_batch model={self._model} count={len(texts)}")
        resp = client.embeddings.create(model=self._model, input=texts)
        # The API may return items out of order
        items = sorted(resp.data, key=lambda item: item.index)
        return [sanitize_and_normalize(item.embedding) for item in items]


class FallbackModelEmbeddingProvider:
    """Last-resort local model through fastembed (ONNX runtime, no torch).

    Args:
        model_name: fastembed model id.
        dimensions: Dimensionality of the model output.
        cache_dir: Where model files are stored.
    """

    def __init__(
        self,
        model_name: str = "sentence-transformers/all-MiniLM-L6-v2",
        dimensions: int = 384,
        cache_dir: str | None = None,
    ) -> None:
        self._model_name = model_name
        self._dimensions = dimensions
        self._cache_dir = cache_dir
        self._encoder: Any = None
        self._lock = threading.Lock()

    @property
    def model(self) -> str:
        return self._model_name.rsplit("/", 1)[-1]

    @property
    def dimensions(self) -> int:
        return self._dimensions

    def _ensure_encoder(self) -> Any:
        with self._lock:
            if self._encoder is None:
                from fastembed import TextEmbedding

                self._encoder = TextEmbedding(model_name=self._model_name, cache_dir=self._cache_dir)
                logger.info(f"fallback_model_ready model={self._model_name}")
            return self._encoder

    def embed_query(self, text: str) -> list[float]:
        return self.embed_batch([text])[0]

    def embed_batch(self, texts: list[str]) -> list[list[float]]:
        if not texts:
            return []
        encoder = self._ensure_encoder()
        return [sanitize_and_normalize(vec.tolist()) for vec in encoder.embed(texts)]


class EmbeddingProviderChain:
    """Tries embedding tiers in order and sticks to the first one that works.

    Once a tier fails, the chain moves to the next tier and never goes back on
    its own; later calls start directly at the downgraded tier. The last tier
    is never skipped: when it fails the call raises EmbeddingExhaustedError and
    the chain stays on it. ``reset()`` returns to the first tier.

    Args:
        tiers: Providers in priority order.
    """

    def __init__(self, tiers: Sequence[EmbeddingProvider]) -> None:
        if not tiers:
            raise ValueError("EmbeddingProviderChain needs at least one tier")
        self._tiers = list(tiers)
        self._level = 0
        self._lock = threading.Lock()

    @property
    def level(self) -> int:
        """Index of the tier currently in use."""
        return self._level

    @property
    def active(self) -> EmbeddingProvider:
        return self._tiers[self._level]

    @property
    def model(self) -> str:
        return self.active.model

    @property
    def dimensions(self) -> int:
        return self.active.dimensions

    def reset(self) -> None:
        """Go back to the first tier."""
        with self._lock:
            self._level = 0
        logger.info("embedding_chain_reset")

    def embed_query(self, text: str) -> list[float]:
        return self._with_fallback("embed_query", lambda provider: provider.embed_query(text))

    def embed_batch(self, texts: list[str]) -> list[list[float]]:
        if not texts:
            return []
        return self._with_fallback("embed_batch", lambda provider: provider.embed_batch(texts))

    def _with_fallback(self, operation: str, call: Callable[[EmbeddingProvider], T]) -> T:
        while True:
            level = self._level
            provider = self._tiers[level]
            try:
                return call(provider)
            except Exception as exc:
                if level == len(self._tiers) - 1:
                    logger.error(f"embedding_exhausted operation={operation} model={provider.model} error={exc}")
                    raise EmbeddingExhaustedError(
                        f"all embedding providers failed; last error from {provider.model}: {exc}"
                    ) from exc
                with self._lock:
                    if self._level == level:
                        self._level = level + 1
                next_model = self._tiers[self._level].model
                logger.warning(
                    f"embedding_tier_failed operation={operation} model={provider.model} "
                    f"next={next_model} error={exc}"
                )


def create_default_embedding_provider(settings: MemorySettings) -> EmbeddingProviderChain:
    """Build the local model → remote API → fallback model chain from settings."""
    api_key = settings.openai_api_key()
    if api_key is None:
        logger.info(f"remote_embeddings_disabled reason=missing_env env={settings.openai_api_key_env}")
    return EmbeddingProviderChain(
        [
            LocalModelEmbeddingProvider(
                model_name=settings.local_model_name,
                dimensions=settings.local_model_dimensions,
                cache_dir=settings.models_cache_dir,
            ),
            OpenAIEmbeddingProvider(
                api_key=api_key,
                model=settings.openai_model,
                dimensions=settings.openai_dimensions,
                base_url=settings.openai_base_url,
            ),
            FallbackModelEmbeddingProvider(
                model_name=settings.fallback_model_name,
                dimensions=settings.fallback_model_dimensions,
                cache_dir=settings.models_cache_dir,
            ),
        ]
    )
