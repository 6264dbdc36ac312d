"""Document text extraction collaborator.

CVs and generated competence files are stored outside the database; the
application exposes an ``/api/files/extract-text`` endpoint that returns
their plain text. Extraction is best effort: any failure is reported as
``EnrichmentUnavailableError`` and the record is indexed without it.
"""

from abc import ABC, abstractmethod
from typing import Optional

import httpx

from ..common.errors import EnrichmentUnavailableError


class DocumentExtractor(ABC):
    """Turns a stored file reference into plain text."""

    @abstractmethod
    async def extract(self, file_url: str) -> str:
        """Return the file's text; raises ``EnrichmentUnavailableError``."""
        pass

    async def close(self) -> None:
        pass


class HttpDocumentExtractor(DocumentExtractor):
    """Calls the application's text extraction endpoint."""

    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        http_client: Optional[httpx.AsyncClient] = None
    ):
        self.base_url = base_url.rstrip("/")
        self.http_client = http_client or httpx.AsyncClient(timeout=timeout)

    async def extract(self, file_url: str) -> str:
        if not file_url:
            raise EnrichmentUnavailableError("No file reference to extract")

        try:
            response = await self.http_client.post(
                f"{self.base_url}/api/files/extract-text",
                json={"fileUrl": file_url},
            )
            response.raise_for_status()
            text = response.json().get("text")
        except (httpx.HTTPError, ValueError, AttributeError) as exc:
            raise EnrichmentUnavailableError(f"Text extraction failed for {file_url}: {exc}") from exc

        if not isinstance(text, str) or not text.strip():
            raise EnrichmentUnavailableError(f"No text extracted from {file_url}")
        return text

    async def close(self) -> None:
        await self.http_client.aclose()
