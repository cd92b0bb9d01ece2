"""Query embeddings with dimension validation.

The corpus index is built with 384-dim vectors, so OpenAI embeddings are
requested with ``dimensions=EMBEDDING_DIM``. The deterministic provider hashes
the text into a stable vector and is used for local runs and tests.
"""

import asyncio
import hashlib

from openai import OpenAI

from askbrain.core.config import get_settings
from askbrain.core.errors import EmbeddingError
from askbrain.core.logging import get_logger

logger = get_logger(__name__)


def _get_client() -> OpenAI:
    """Get OpenAI client instance."""
    settings = get_settings()
    return OpenAI(api_key=settings.OPENAI_API_KEY)


def create_deterministic_embedding(text: str, dimension: int = 384) -> list[float]:
    """
    Build a reproducible pseudo-embedding from the SHA-256 digest chain of text.

    Each value is a digest byte scaled into [0, 1]; the digest is re-hashed every
    32 values so any dimension can be filled.
    """
    seed = hashlib.sha256(text.encode("utf-8")).digest()
    values: list[float] = []

    for i in range(dimension):
        values.append(round(seed[i % len(seed)] / 255, 6))
        if i % len(seed) == len(seed) - 1:
            seed = hashlib.sha256(seed).digest()

    return values


def embed_texts(texts: list[str]) -> list[list[float]]:
    """
    Generate embeddings for a list of texts.

    Args:
        texts: List of text strings to embed

    Returns:
        List of embedding vectors (each vector is list of floats)

    Raises:
        EmbeddingError: If the provider call fails or a vector has the wrong dimension
    """
    if not texts:
        return []

    settings = get_settings()

    if settings.EMBEDDING_PROVIDER == "deterministic":
        return [create_deterministic_embedding(t, settings.EMBEDDING_DIM) for t in texts]

    client = _get_client()

    try:
        response = client.embeddings.create(
            model=settings.EMBEDDING_MODEL,
            input=texts,
            dimensions=settings.EMBEDDING_DIM,
        )
    except Exception as e:
        logger.error(f"Failed to generate embeddings: {e}")
        raise EmbeddingError(f"Embedding provider call failed: {e}") from e

    embeddings = []
    for i, embedding_obj in enumerate(response.data):
        embedding = embedding_obj.embedding

        # Validate dimension
        if len(embedding) != settings.EMBEDDING_DIM:
            raise EmbeddingError(
                f"Embedding dimension mismatch for text {i}: "
                f"expected {settings.EMBEDDING_DIM}, got {len(embedding)}"
            )

        embeddings.append(embedding)

    logger.info(
        f"Generated {len(embeddings)} embeddings using {settings.EMBEDDING_MODEL}",
        extra={"model": settings.EMBEDDING_MODEL, "count": len(embeddings)},
    )

    return embeddings


async def embed_texts_async(texts: list[str]) -> list[list[float]]:
    """Async wrapper around embed_texts using thread pool."""
    return await asyncio.to_thread(embed_texts, texts)


async def embed_query(text: str) -> list[float]:
    """
    Embed a single RAG query under the embedding deadline.

    Raises:
        EmbeddingError: On provider failure, timeout, or empty input
    """
    if not text or not text.strip():
        raise EmbeddingError("Cannot create embedding for empty text")

    settings = get_settings()
    try:
        vectors = await asyncio.wait_for(
            embed_texts_async([text]),
            timeout=settings.EMBEDDING_TIMEOUT_SECONDS,
        )
    except asyncio.TimeoutError as e:
        raise EmbeddingError(
            f"Embedding timed out after {settings.EMBEDDING_TIMEOUT_SECONDS}s"
        ) from e

    return vectors[0]
