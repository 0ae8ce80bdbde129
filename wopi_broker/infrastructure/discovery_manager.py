"""
Discovery document cache.
The editor's capability manifest is fetched once and cached for an hour.
"""

import logging
from typing import Optional

import httpx

from ..domain.exceptions import DiscoveryFetchError
from ..domain.services import DistributedCache, ProxyStatus
from .config import WOPISettings
from .structured_logger import wopi_logger

logger = logging.getLogger(__name__)

CACHE_KEY = "discovery"


class DiscoveryManager:
    """Fetches and caches the remote editor's discovery XML."""

    def __init__(
        self,
        cache: DistributedCache,
        settings: WOPISettings,
        proxy_status: Optional[ProxyStatus] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.cache = cache
        self.settings = settings
        self.proxy_status = proxy_status
        self.transport = transport

    async def get(self) -> bytes:
        """Return the discovery document, fetching it on a cache miss."""
        discovery = await self.cache.get(CACHE_KEY)
        if discovery:
            return discovery

        discovery = await self.fetch_from_remote()
        await self.cache.set(CACHE_KEY, discovery, self.settings.discovery_ttl_seconds)
        return discovery

    async def fetch_from_remote(self) -> bytes:
        """GET <editor>/hosting/discovery; failures are raised, never cached."""
        url = self.settings.discovery_url
        timeout = self.settings.discovery_timeout
        if self.proxy_status is not None and await self.proxy_status.is_proxy_starting(url):
            timeout = self.settings.discovery_proxy_timeout

        verify = True
        if self.settings.disable_certificate_verification:
            logger.warning(f"Certificate verification disabled for discovery at {url}")
            verify = False

        try:
            async with httpx.AsyncClient(
                timeout=timeout,
                verify=verify,
                transport=self.transport
            ) as client:
                response = await client.get(url)
                response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise DiscoveryFetchError(
                f"Discovery returned HTTP {e.response.status_code}",
                details={"url": url, "status_code": e.response.status_code}
            ) from e
        except httpx.HTTPError as e:
            raise DiscoveryFetchError(
                f"Failed to fetch discovery: {e}",
                details={"url": url, "timeout": timeout}
            ) from e

        wopi_logger.log_discovery_fetched(url, len(response.content), timeout)
        return response.content

    async def refetch(self) -> None:
        """Forget the cached document so the next get() goes to the network."""
        await self.cache.remove(CACHE_KEY)
