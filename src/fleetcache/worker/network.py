"""
Network access for the asset worker.

Thin wrapper over httpx.AsyncClient that resolves relative paths against the
worker's origin and returns fully read AssetResponse objects. There are no
retries: a single transport failure is final for that request.
"""

from __future__ import annotations

from urllib.parse import urlsplit

import httpx

from fleetcache import __version__
from fleetcache.exceptions import FetchFailed
from fleetcache.logging import get_logger
from fleetcache.types import AssetResponse

logger = get_logger(__name__)

USER_AGENT = f"fleetcache/{__version__}"


class NetworkFetcher:
    """Fetches assets over HTTP.

    A non-success status is returned as a response, not raised; use
    fetch_ok() where only 2xx responses are acceptable.
    """

    def __init__(
        self,
        origin: str,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the fetcher.

        Args:
            origin: Base URL that relative paths resolve against.
            timeout: Request timeout in seconds. None keeps httpx's default.
            transport: Optional transport override (tests, proxies).
        """
        self.origin = origin.rstrip("/")
        self.timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            kwargs: dict = {
                "base_url": self.origin,
                "follow_redirects": True,
                "headers": {"User-Agent": USER_AGENT},
                "transport": self._transport,
            }
            if self.timeout is not None:
                kwargs["timeout"] = self.timeout
            self._client = httpx.AsyncClient(**kwargs)
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def fetch(self, url: str) -> AssetResponse:
        """GET ``url`` and read the whole body.

        Raises:
            FetchFailed: On any transport error or unusable URL.
        """
        scheme = urlsplit(url).scheme.lower()
        if scheme and scheme not in ("http", "https"):
            raise FetchFailed("Unsupported URL scheme", context={"url": url, "scheme": scheme})

        client = await self._get_client()
        try:
            response = await client.get(url)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise FetchFailed(
                "Network request failed", context={"url": url, "reason": str(e)}
            ) from e

        logger.debug("Fetched", url=url, status=response.status_code, size=len(response.content))
        return AssetResponse.from_httpx(response)

    async def fetch_ok(self, url: str) -> AssetResponse:
        """Like fetch(), but a non-2xx status also raises FetchFailed."""
        response = await self.fetch(url)
        if not response.ok:
            raise FetchFailed(
                f"Failed to fetch: {response.status}",
                context={"url": url, "status_code": response.status},
            )
        return response
