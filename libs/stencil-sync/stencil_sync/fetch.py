"""HTTP download of source artifacts."""

from __future__ import annotations

import logging

import httpx
from stencil_core.errors import FetchError
from stencil_core.models import Source

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 60.0


class HttpFetcher:
    """Fetches source bytes: one GET per call, non-2xx is a FetchError."""

    def __init__(
        self,
        client: httpx.Client | None = None,
        *,
        transport: httpx.BaseTransport | None = None,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        self._owns_client = client is None
        self.client = client or httpx.Client(
            transport=transport, timeout=timeout, follow_redirects=True
        )

    def close(self) -> None:
        """Close the HTTP client if this fetcher created it."""
        if self._owns_client:
            self.client.close()

    def __enter__(self) -> HttpFetcher:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    def fetch(self, source: Source) -> bytes:
        logger.info(f"Downloading {source.url}")
        try:
            resp = self.client.get(source.url, headers=source.headers or None)
        except httpx.HTTPError as e:
            raise FetchError(source.url, reason=str(e)) from e
        if not resp.is_success:
            raise FetchError(source.url, resp.status_code)
        return resp.content
