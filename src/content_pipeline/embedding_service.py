"""Embedding service for generating text embeddings via OpenAI-compatible APIs."""

import asyncio

from openai import AsyncOpenAI, OpenAIError

from src.utils.logging import get_logger

from .config import ContentPipelineConfig
from .errors import ExternalServiceError, short_reason

logger = get_logger(__name__)


class EmbeddingService:
    """Service for generating fixed-size text embeddings.

    Supports OpenAI, Ollama and other OpenAI-compatible providers. Every
    returned vector is checked against ``embedding_dimensions``; a mismatch is
    a hard error. Embedding is idempotent, so retrying is left to callers.
    """

    def __init__(self, config: ContentPipelineConfig, client: AsyncOpenAI | None = None):
        """Initialize embedding service with configuration.

        Args:
            config: Configuration object with embedding provider settings.
            client: Optional pre-built client, shared with the LLM service.
        """
        self.config = config
        self.dimensions = config.embedding_dimensions
        self.client = client or self._get_client()
        logger.info(
            "embedding_service_initialized",
            provider=config.embedding_provider,
            model=config.embedding_model,
            dimensions=config.embedding_dimensions,
        )

    def _get_client(self) -> AsyncOpenAI:
        """Initialize OpenAI-compatible client based on provider.

        Returns:
            Configured AsyncOpenAI client instance.
        """
        if self.config.embedding_provider == "ollama":
            # Ollama doesn't require a real API key
            return AsyncOpenAI(
                base_url=self.config.embedding_base_url,
                api_key="ollama",
            )
        return AsyncOpenAI(
            base_url=self.config.embedding_base_url,
            api_key=self.config.embedding_api_key,
        )

    async def embed_text(self, text: str) -> list[float]:
        """Generate embedding for a single text.

        Args:
            text: Text content to embed.

        Returns:
            Embedding vector with exactly ``dimensions`` floats.

        Raises:
            ExternalServiceError: If the call fails or the vector is empty or
                of the wrong length.
        """
        try:
            response = await self.client.embeddings.create(
                input=text,
                model=self.config.embedding_model,
                encoding_format="float",
            )
        except OpenAIError as e:
            logger.exception(
                "embedding_failed",
                text_length=len(text),
                error_type=type(e).__name__,
            )
            raise ExternalServiceError(
                f"Embedding request failed: {short_reason(str(e))}"
            ) from e

        if not response.data or not response.data[0].embedding:
            logger.error("embedding_empty", text_length=len(text))
            raise ExternalServiceError("Embedding response contained no vector")

        embedding = list(response.data[0].embedding)
        if len(embedding) != self.dimensions:
            logger.error(
                "embedding_dimension_mismatch",
                expected=self.dimensions,
                actual=len(embedding),
            )
            raise ExternalServiceError(
                f"Embedding has {len(embedding)} dimensions, expected {self.dimensions}"
            )

        logger.debug(
            "embedding_generated",
            text_length=len(text),
            embedding_dim=len(embedding),
        )
        return embedding

    async def embed_batch(
        self, texts: list[str], batch_size: int = 10
    ) -> list[list[float]]:
        """Generate embeddings for multiple texts with batching.

        Texts inside a batch are embedded in parallel; batches run one after
        another to stay under provider rate limits.

        Args:
            texts: List of text strings to embed.
            batch_size: Number of texts to embed in parallel (default: 10).

        Returns:
            List of embedding vectors in the same order as input texts.
        """
        embeddings: list[list[float]] = []

        for i in range(0, len(texts), batch_size):
            batch = texts[i : i + batch_size]
            batch_embeddings = await asyncio.gather(
                *[self.embed_text(text) for text in batch]
            )
            embeddings.extend(batch_embeddings)
            logger.debug(
                "batch_completed",
                batch_num=i // batch_size + 1,
                count=len(batch),
            )

        logger.info("batch_embedding_completed", total_embeddings=len(embeddings))
        return embeddings
