"""Embedding providers for bylaw text.

Two hosted providers share one interface so the index can be built with
either; the choice is made once from Settings via build_embedder():

- nvidia: nvidia/nv-embedqa-e5-v5 (1024d) over the NIM API, with the
  passage/query input type distinction.
- openai: text-embedding-3-small (1536d).
- hash: deterministic local vectors for development without an API key.

Providers do not retry. The search path treats an embedding failure as a
search failure; ingestion wraps calls in retry_with_backoff.
"""

import hashlib
import logging
import math
from typing import Protocol

import httpx
import mlflow
from mlflow.entities import SpanType

from bylawqa.config import Settings
from bylawqa.core.errors import ConfigurationError, EmbeddingDimensionError

logger = logging.getLogger(__name__)

NVIDIA_MODEL_ID = "nvidia/nv-embedqa-e5-v5"
NVIDIA_API_URL = "https://integrate.api.nvidia.com/v1/embeddings"
NVIDIA_DIM = 1024
NVIDIA_BATCH_SIZE = 32

OPENAI_MODEL_ID = "text-embedding-3-small"
OPENAI_API_URL = "https://api.openai.com/v1/embeddings"
OPENAI_DIM = 1536
OPENAI_BATCH_SIZE = 10

MAX_INPUT_CHARS = 2000


class EmbeddingProvider(Protocol):
    dimension: int

    async def embed_query(self, text: str) -> list[float]: ...

    async def embed_queries(self, texts: list[str]) -> list[list[float]]: ...

    async def embed_documents(self, texts: list[str]) -> list[list[float]]: ...

    async def aclose(self) -> None: ...


def check_dimensions(vectors: list[list[float]], expected: int) -> list[list[float]]:
    """Raise EmbeddingDimensionError if any vector doesn't match the index size."""
    for vec in vectors:
        if len(vec) != expected:
            raise EmbeddingDimensionError(
                f"Embedding dimension {len(vec)} does not match index dimension {expected}",
                details={"got": len(vec), "expected": expected},
            )
    return vectors


class _HttpEmbeddings:
    """Shared batching and HTTP plumbing for OpenAI-compatible embedding APIs."""

    model_id: str
    api_url: str
    batch_size: int

    def __init__(self, api_key: str, dimension: int, client: httpx.AsyncClient | None = None):
        if not api_key:
            raise ConfigurationError(f"API key is required for {self.model_id} embeddings")
        self.dimension = dimension
        self._headers = {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }
        self._client = client or httpx.AsyncClient(timeout=60.0)

    def _payload(self, batch: list[str], input_type: str) -> dict:
        return {"input": batch, "model": self.model_id, "encoding_format": "float"}

    async def _embed(self, texts: list[str], input_type: str) -> list[list[float]]:
        if not texts:
            return []

        all_embeddings: list[list[float]] = []
        for batch_idx, i in enumerate(range(0, len(texts), self.batch_size)):
            batch = [t[:MAX_INPUT_CHARS] or " " for t in texts[i : i + self.batch_size]]

            with mlflow.start_span(name=f"embed_batch_{batch_idx}", span_type=SpanType.EMBEDDING) as span:
                span.set_inputs({"batch_size": len(batch), "input_type": input_type, "model": self.model_id})
                resp = await self._client.post(
                    self.api_url, json=self._payload(batch, input_type), headers=self._headers,
                )
                resp.raise_for_status()
                data = resp.json()
                vectors = [item["embedding"] for item in sorted(data["data"], key=lambda d: d.get("index", 0))]
                check_dimensions(vectors, self.dimension)
                all_embeddings.extend(vectors)
                span.set_outputs({"embedding_dim": self.dimension, "count": len(vectors)})

            logger.debug("Embedded batch %d-%d (%dd)", i, i + len(batch), self.dimension)

        return all_embeddings

    async def embed_query(self, text: str) -> list[float]:
        vectors = await self._embed([text.strip() or "empty query"], input_type="query")
        return vectors[0]

    async def embed_queries(self, texts: list[str]) -> list[list[float]]:
        return await self._embed([t.strip() or "empty query" for t in texts], input_type="query")

    async def embed_documents(self, texts: list[str]) -> list[list[float]]:
        return await self._embed(texts, input_type="passage")

    async def aclose(self) -> None:
        await self._client.aclose()


class NvidiaEmbeddings(_HttpEmbeddings):
    model_id = NVIDIA_MODEL_ID
    api_url = NVIDIA_API_URL
    batch_size = NVIDIA_BATCH_SIZE

    def _payload(self, batch: list[str], input_type: str) -> dict:
        return {
            "input": batch,
            "model": self.model_id,
            "input_type": input_type,
            "encoding_format": "float",
            "truncate": "END",
        }


class OpenAIEmbeddings(_HttpEmbeddings):
    model_id = OPENAI_MODEL_ID
    api_url = OPENAI_API_URL
    batch_size = OPENAI_BATCH_SIZE


class HashEmbeddings:
    """Deterministic unit vectors seeded from a SHA-256 of the text.

    Similar texts do not get similar vectors; this only keeps the pipeline
    runnable (and cacheable) offline.
    """

    def __init__(self, dimension: int = NVIDIA_DIM):
        self.dimension = dimension

    def _vector(self, text: str) -> list[float]:
        seed = int.from_bytes(hashlib.sha256(text.encode("utf-8")).digest()[:8], "big")
        raw = [math.sin(seed * (i + 1) * 1e-9 + i) for i in range(self.dimension)]
        norm = math.sqrt(sum(v * v for v in raw)) or 1.0
        return [v / norm for v in raw]

    async def embed_query(self, text: str) -> list[float]:
        return self._vector(text)

    async def embed_queries(self, texts: list[str]) -> list[list[float]]:
        return [self._vector(t) for t in texts]

    async def embed_documents(self, texts: list[str]) -> list[list[float]]:
        return [self._vector(t) for t in texts]

    async def aclose(self) -> None:
        return None


def build_embedder(settings: Settings, client: httpx.AsyncClient | None = None) -> EmbeddingProvider:
    """Pick the embedding provider named in settings and check it fits the index."""
    provider = settings.embedding_provider
    if provider == "nvidia":
        native = NVIDIA_DIM
    elif provider == "openai":
        native = OPENAI_DIM
    elif provider == "hash":
        return HashEmbeddings(settings.embedding_dim)
    else:
        raise ConfigurationError(f"Unknown embedding provider: {provider!r}")

    if settings.embedding_dim != native:
        raise EmbeddingDimensionError(
            f"{provider} embeddings are {native}d but the index is configured for {settings.embedding_dim}d",
            details={"provider": provider, "got": native, "expected": settings.embedding_dim},
        )

    if provider == "nvidia":
        return NvidiaEmbeddings(settings.nvidia_api_key, native, client=client)
    return OpenAIEmbeddings(settings.openai_api_key, native, client=client)
