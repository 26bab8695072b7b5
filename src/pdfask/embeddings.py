"""Embedding gateway and the backends it can delegate to."""
from __future__ import annotations

import hashlib
import logging
import numbers
import random
import time
from abc import ABC, abstractmethod
from collections.abc import Mapping
from functools import lru_cache
from typing import Any, List, Optional, Sequence

from pdfask.config import Settings, get_settings
from pdfask.errors import EmbeddingProviderError
from pdfask.telemetry import emit_embeddings_event

LOGGER = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 8
HASH_DIMENSION = 384
_COLLECTION_KEYS = ("data", "result", "embeddings")


class EmbeddingBackend(ABC):
    """Maps a batch of texts to a provider-specific embedding response."""

    model_name: str = "unknown"

    @abstractmethod
    def encode(self, texts: Sequence[str]) -> Any:
        """Return raw embeddings for ``texts``; the gateway normalises the shape."""


class HashEmbeddingBackend(EmbeddingBackend):
    """Deterministic pseudo-embeddings seeded from each text's SHA-256 digest."""

    def __init__(self, dimension: int = HASH_DIMENSION) -> None:
        if dimension <= 0:
            raise ValueError("dimension must be a positive integer")
        self.dimension = dimension
        self.model_name = f"hash-{dimension}"

    def encode(self, texts: Sequence[str]) -> List[List[float]]:
        vectors: List[List[float]] = []
        for text in texts:
            seed = int.from_bytes(hashlib.sha256(str(text).encode("utf-8")).digest(), "big")
            rng = random.Random(seed)
            vectors.append([rng.uniform(-1.0, 1.0) for _ in range(self.dimension)])
        return vectors


class SentenceTransformerBackend(EmbeddingBackend):
    """Local sentence-transformers model, loaded on first use."""

    def __init__(self, model_name: str, *, device: Optional[str] = None) -> None:
        self.model_name = model_name
        self._device = device
        self._model = None

    def _load(self):
        if self._model is not None:
            return self._model
        try:
            from sentence_transformers import SentenceTransformer  # type: ignore import-not-found
        except ImportError as error:
            raise EmbeddingProviderError(
                "sentence-transformers is not installed",
                details="install the 'local' extra or set EMBEDDING_PROVIDER=inference",
                cause=error,
            ) from error

        LOGGER.info("Loading sentence-transformers model %s", self.model_name)
        self._model = SentenceTransformer(self.model_name, device=self._device)
        return self._model

    def encode(self, texts: Sequence[str]) -> Any:
        model = self._load()
        return model.encode(
            list(texts),
            convert_to_numpy=True,
            show_progress_bar=False,
            normalize_embeddings=False,
        )


class InferenceEmbeddingBackend(EmbeddingBackend):
    """Feature extraction through the Hugging Face Inference API."""

    def __init__(
        self,
        model_name: str,
        *,
        token: Optional[str] = None,
        provider: Optional[str] = None,
        client: Any = None,
    ) -> None:
        self.model_name = model_name
        if client is None:
            from huggingface_hub import InferenceClient

            kwargs: dict[str, Any] = {"api_key": token}
            if provider:
                kwargs["provider"] = provider
            client = InferenceClient(**kwargs)
        self._client = client

    def encode(self, texts: Sequence[str]) -> Any:
        return self._client.feature_extraction(list(texts), model=self.model_name)


def _is_number(value: Any) -> bool:
    return isinstance(value, numbers.Real) and not isinstance(value, bool)


def _as_python(value: Any) -> Any:
    if hasattr(value, "tolist"):
        return value.tolist()
    return value


def _shape_error(response: Any) -> EmbeddingProviderError:
    preview = repr(response)[:400]
    return EmbeddingProviderError(
        "Unexpected embedding provider response shape",
        details=preview,
    )


def _unwrap_item(item: Any) -> Any:
    item = _as_python(item)
    if isinstance(item, Mapping) and "embedding" in item:
        item = _as_python(item["embedding"])
    return item


def _rows_from_response(response: Any) -> List[Any]:
    response = _as_python(response)
    if isinstance(response, Mapping):
        for key in _COLLECTION_KEYS:
            value = _as_python(response.get(key))
            if isinstance(value, (list, tuple)):
                return [_unwrap_item(item) for item in value]
        if "embedding" in response:
            return [_as_python(response["embedding"])]
        raise _shape_error(response)
    if isinstance(response, (list, tuple)):
        if response and all(_is_number(value) for value in response):
            return [list(response)]
        return [_unwrap_item(item) for item in response]
    raise _shape_error(response)


def _flat_vector(row: Any) -> List[float]:
    if not isinstance(row, (list, tuple)) or not row:
        raise _shape_error(row)
    if not all(_is_number(value) for value in row):
        raise _shape_error(row)
    return [float(value) for value in row]


def normalize_embedding_response(response: Any, expected: int) -> List[List[float]]:
    """Coerce a provider response into ``expected`` flat float vectors.

    Providers disagree on shape: numpy arrays, bare vectors for a single
    input, lists of ``{"embedding": [...]}`` objects, or envelopes keyed by
    ``data`` / ``result``. Anything else raises :class:`EmbeddingProviderError`.
    """

    rows = _rows_from_response(response)
    if len(rows) != expected:
        raise EmbeddingProviderError(
            "Provider returned unexpected batch embedding size",
            details=f"expected {expected} vectors, received {len(rows)}",
        )
    return [_flat_vector(row) for row in rows]


class EmbeddingGateway:
    """Batches texts through an :class:`EmbeddingBackend` and validates the results."""

    def __init__(self, backend: EmbeddingBackend, *, batch_size: int = DEFAULT_BATCH_SIZE) -> None:
        if batch_size <= 0:
            raise ValueError("batch_size must be a positive integer")
        self._backend = backend
        self.batch_size = batch_size

    @property
    def model_name(self) -> str:
        return getattr(self._backend, "model_name", type(self._backend).__name__)

    def embed(self, texts: Sequence[str]) -> List[List[float]]:
        items = list(texts)
        vectors: List[List[float]] = []
        for start in range(0, len(items), self.batch_size):
            vectors.extend(self._embed_batch(items[start : start + self.batch_size]))
        return vectors

    def embed_one(self, text: str) -> List[float]:
        return self.embed([text])[0]

    def _embed_batch(self, batch: List[str]) -> List[List[float]]:
        started = time.perf_counter()
        try:
            response = self._backend.encode(batch)
            vectors = normalize_embedding_response(response, expected=len(batch))
        except EmbeddingProviderError as error:
            self._emit(batch, started, error)
            raise
        except Exception as error:
            self._emit(batch, started, error)
            raise EmbeddingProviderError(
                "Embedding provider call failed",
                details=str(error),
                cause=error,
            ) from error

        self._emit(batch, started)
        return vectors

    def _emit(self, batch: List[str], started: float, error: Exception | None = None) -> None:
        emit_embeddings_event(
            model=self.model_name,
            count=len(batch),
            duration_ms=(time.perf_counter() - started) * 1000.0,
            errors=[str(error)] if error else None,
        )


def build_embedding_backend(settings: Settings) -> EmbeddingBackend:
    """Instantiate the backend named by ``settings.embedding_provider``."""

    provider = settings.embedding_provider
    if provider == "hash":
        return HashEmbeddingBackend()
    if provider == "inference":
        return InferenceEmbeddingBackend(
            settings.embedding_model,
            token=settings.hf_token,
            provider=settings.embedding_inference_provider,
        )
    if provider in {"sentence-transformers", "sentence_transformers", "local"}:
        return SentenceTransformerBackend(settings.embedding_model, device=settings.embedding_device)
    raise ValueError(f"Unsupported embedding provider: {provider}")


@lru_cache()
def get_embedding_gateway() -> EmbeddingGateway:
    """Return a cached gateway configured from the environment."""

    settings = get_settings()
    backend = build_embedding_backend(settings)
    LOGGER.info("Embedding backend %s (%s)", type(backend).__name__, backend.model_name)
    return EmbeddingGateway(backend, batch_size=settings.embedding_batch_size)


def reset_embedding_gateway_cache() -> None:
    """Clear the cached gateway instance (primarily for testing)."""

    get_embedding_gateway.cache_clear()  # type: ignore[attr-defined]


__all__ = [
    "EmbeddingBackend",
    "EmbeddingGateway",
    "HashEmbeddingBackend",
    "InferenceEmbeddingBackend",
    "SentenceTransformerBackend",
    "build_embedding_backend",
    "get_embedding_gateway",
    "normalize_embedding_response",
    "reset_embedding_gateway_cache",
]
