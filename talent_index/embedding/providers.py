"""Embedding providers.

A provider exposes one operation, ``create_embedding(model, input,
dimensions)``, and reports every failure as ``ProviderUnavailableError``.
``OpenAIEmbeddingProvider`` talks to any OpenAI-compatible ``/embeddings``
endpoint over ``httpx``.
"""

from abc import ABC, abstractmethod
from typing import List, Optional

import httpx
import structlog

from ..common.errors import ProviderUnavailableError

logger = structlog.get_logger("embedding.providers")


class ProviderRejectedError(ProviderUnavailableError):
    """Provider refused the request (auth, bad request); retrying will not help."""
    pass


class EmbeddingProvider(ABC):
    """Abstract embedding provider."""

    @abstractmethod
    async def create_embedding(self, model: str, input: str, dimensions: int) -> List[float]:
        """Return the embedding vector of ``input``."""
        pass

    async def close(self) -> None:
        """Release provider resources."""
        pass


class OpenAIEmbeddingProvider(EmbeddingProvider):
    """OpenAI-compatible embeddings over HTTP."""

    def __init__(
        self,
        api_key: Optional[str],
        base_url: str = "https://api.openai.com/v1",
        timeout: float = 30.0,
        http_client: Optional[httpx.AsyncClient] = None
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.http_client = http_client or httpx.AsyncClient(timeout=timeout)

    async def create_embedding(self, model: str, input: str, dimensions: int) -> List[float]:
        if not self.api_key:
            raise ProviderRejectedError("Embedding API key is not configured")

        try:
            response = await self.http_client.post(
                f"{self.base_url}/embeddings",
                json={"model": model, "input": input, "dimensions": dimensions},
                headers={"Authorization": f"Bearer {self.api_key}"},
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            if status == 429 or status >= 500:
                raise ProviderUnavailableError(f"Embedding provider returned status {status}") from exc
            raise ProviderRejectedError(f"Embedding provider rejected request with status {status}") from exc
        except httpx.HTTPError as exc:
            raise ProviderUnavailableError(f"Embedding provider request failed: {exc}") from exc

        try:
            vector = response.json()["data"][0]["embedding"]
            return [float(v) for v in vector]
        except (ValueError, KeyError, IndexError, TypeError) as exc:
            raise ProviderUnavailableError("Malformed embedding provider response") from exc

    async def close(self) -> None:
        await self.http_client.aclose()
