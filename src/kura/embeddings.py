"""LiteLLM-based embedding provider."""

import asyncio
import logging
from typing import Any

from litellm import aembedding
from litellm.exceptions import (
    APIConnectionError,
    APIError,
    AuthenticationError,
    RateLimitError,
    Timeout,
)

from kura.config import EmbeddingConfig
from kura.search.errors import (
    BackendError,
    EmbeddingAuthFailed,
    EmbeddingRateLimited,
    EmbeddingTimeout,
    EmbeddingUnavailable,
)

logger = logging.getLogger(__name__)

# Errors worth another attempt; auth failures and bad requests are not
_TRANSIENT = (EmbeddingRateLimited, EmbeddingTimeout, EmbeddingUnavailable)


class LiteLLMEmbeddingProvider:
    """Turns query text into an embedding vector via LiteLLM."""

    def __init__(
        self,
        model: str,
        api_key: str | None = None,
        api_base: str | None = None,
        config: EmbeddingConfig | None = None,
    ):
        """Initialize the embedding provider.

        Args:
            model: LiteLLM embedding model string (e.g. text-embedding-3-small).
            api_key: Provider API key. Without it the provider is unavailable.
            api_base: Optional OpenAI-compatible endpoint.
            config: Truncation and retry settings.
        """
        self.model = model
        self.api_key = api_key
        self.api_base = api_base
        self.config = config or EmbeddingConfig(
            max_text_length=8000, max_retries=3, retry_delay_seconds=1.0
        )

    @property
    def is_available(self) -> bool:
        """Whether the provider has credentials to call out."""
        return bool(self.api_key)

    async def embed(self, text: str) -> list[float]:
        """Embed one text, retrying transient provider failures.

        Args:
            text: Text to embed. Truncated to max_text_length characters.

        Returns:
            The embedding vector.

        Raises:
            EmbeddingUnavailable: If no API key is configured or the provider
                keeps failing.
            EmbeddingAuthFailed: If the provider rejects the API key.
            EmbeddingRateLimited: If the provider keeps rate limiting.
            EmbeddingTimeout: If the provider keeps timing out.
        """
        if not self.is_available:
            raise EmbeddingUnavailable("Embedding provider is not configured (no API key)")

        if len(text) > self.config.max_text_length:
            logger.debug(
                f"Truncating embedding input from {len(text)} to "
                f"{self.config.max_text_length} characters"
            )
            text = text[: self.config.max_text_length]

        delay = self.config.retry_delay_seconds
        for attempt in range(1, self.config.max_retries + 1):
            try:
                return await self._embed_once(text)
            except _TRANSIENT as e:
                if attempt == self.config.max_retries:
                    raise
                logger.warning(
                    f"Embedding attempt {attempt}/{self.config.max_retries} failed "
                    f"({type(e).__name__}), retrying in {delay:.1f}s"
                )
                await asyncio.sleep(delay)
                delay *= 2

        raise EmbeddingUnavailable("Embedding provider retries exhausted")

    async def _embed_once(self, text: str) -> list[float]:
        kwargs: dict[str, Any] = {
            "model": self.model,
            "input": [text],
            "api_key": self.api_key,
        }
        if self.api_base:
            kwargs["api_base"] = self.api_base

        try:
            response = await aembedding(**kwargs)
        except AuthenticationError as e:
            raise EmbeddingAuthFailed(f"Authentication failed: {e}") from e
        except RateLimitError as e:
            raise EmbeddingRateLimited(f"Rate limit exceeded: {e}") from e
        except Timeout as e:
            raise EmbeddingTimeout(f"Embedding request timed out: {e}") from e
        except APIConnectionError as e:
            raise EmbeddingUnavailable(f"Connection failed: {e}") from e
        except APIError as e:
            raise EmbeddingUnavailable(f"Embedding API error: {e}") from e

        return _first_embedding(response)


def _first_embedding(response: Any) -> list[float]:
    data = response["data"] if isinstance(response, dict) else response.data
    if not data:
        raise BackendError("Embedding provider returned no data")
    item = data[0]
    vector = item["embedding"] if isinstance(item, dict) else item.embedding
    return [float(v) for v in vector]
