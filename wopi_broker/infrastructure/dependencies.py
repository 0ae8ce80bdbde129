"""
Dependency injection configuration for the WOPI broker.
"""

import logging
from dataclasses import dataclass
from typing import Optional

import redis.asyncio as redis

from ..domain.services import (
    DistributedCache,
    EventDispatcher,
    FileSystem,
    PermissionManager,
    ProxyStatus,
    SessionCredentialProvider,
    ShareManager,
    TemplateMappingStore,
    WopiTokenStore,
)
from .cache import MemoryCache, RedisCache
from .cleanup import Cleanup
from .config import settings
from .discovery_manager import DiscoveryManager
from .initial_state import InitialStateService
from .logout_listener import UserLoggedOutListener
from .memory_store import (
    LoggingEventDispatcher,
    MemoryFileSystem,
    MemorySessionCredentialProvider,
    MemoryShareManager,
    MemoryTemplateMappingStore,
    MemoryWopiTokenStore,
    StaticPermissionManager,
)
from .redis_store import (
    RedisSessionCredentialProvider,
    RedisTemplateMappingStore,
    RedisWopiTokenStore,
)
from .token_manager import TokenManager

logger = logging.getLogger(__name__)


@dataclass
class HostServices:
    """File, share, permission and audit services provided by the host."""
    file_system: FileSystem
    share_manager: ShareManager
    permission_manager: PermissionManager
    event_dispatcher: EventDispatcher
    proxy_status: Optional[ProxyStatus] = None


# Singleton instances
_redis_pool = None
_host_services: Optional[HostServices] = None
_token_store: Optional[WopiTokenStore] = None
_credential_provider: Optional[SessionCredentialProvider] = None
_template_store: Optional[TemplateMappingStore] = None
_cache: Optional[DistributedCache] = None
_cleanup: Optional[Cleanup] = None


def _use_memory() -> bool:
    return settings.environment == "development"


def get_redis_pool() -> redis.ConnectionPool:
    """Get Redis connection pool singleton."""
    global _redis_pool
    if not _redis_pool:
        _redis_pool = redis.ConnectionPool.from_url(
            settings.redis_url,
            max_connections=settings.redis_pool_size,
            decode_responses=True,
            socket_keepalive=settings.redis_socket_keepalive,
        )
    return _redis_pool


def get_redis() -> redis.Redis:
    return redis.Redis(connection_pool=get_redis_pool())


def configure_host_services(services: HostServices) -> None:
    """Install the host's implementations of the file-side collaborators."""
    global _host_services
    _host_services = services
    logger.info("Host services configured")


def get_host_services() -> HostServices:
    global _host_services
    if _host_services is None:
        if not _use_memory():
            raise RuntimeError("Host services must be configured outside development")
        _host_services = HostServices(
            file_system=MemoryFileSystem(),
            share_manager=MemoryShareManager(),
            permission_manager=StaticPermissionManager(),
            event_dispatcher=LoggingEventDispatcher(),
        )
        logger.info("Using in-memory host services for development")
    return _host_services


def get_token_store() -> WopiTokenStore:
    """Get token store based on configuration."""
    global _token_store
    if not _token_store:
        if _use_memory():
            _token_store = MemoryWopiTokenStore()
            logger.info("Using in-memory token store for development")
        else:
            _token_store = RedisWopiTokenStore(get_redis())
            logger.info("Using Redis token store")
    return _token_store


def get_credential_provider() -> SessionCredentialProvider:
    global _credential_provider
    if not _credential_provider:
        if _use_memory():
            _credential_provider = MemorySessionCredentialProvider()
        else:
            _credential_provider = RedisSessionCredentialProvider(get_redis())
    return _credential_provider


def get_template_store() -> TemplateMappingStore:
    global _template_store
    if not _template_store:
        if _use_memory():
            _template_store = MemoryTemplateMappingStore()
        else:
            _template_store = RedisTemplateMappingStore(get_redis())
    return _template_store


def get_cache() -> DistributedCache:
    global _cache
    if not _cache:
        _cache = MemoryCache() if _use_memory() else RedisCache(get_redis())
    return _cache


def get_initial_state_service() -> InitialStateService:
    return InitialStateService(get_credential_provider(), settings)


def get_token_manager() -> TokenManager:
    host = get_host_services()
    return TokenManager(
        token_store=get_token_store(),
        file_system=host.file_system,
        share_manager=host.share_manager,
        permission_manager=host.permission_manager,
        event_dispatcher=host.event_dispatcher,
        initial_state=get_initial_state_service(),
        settings=settings,
    )


def get_discovery_manager() -> DiscoveryManager:
    return DiscoveryManager(get_cache(), settings, proxy_status=get_host_services().proxy_status)


def get_logout_listener() -> UserLoggedOutListener:
    return UserLoggedOutListener(get_credential_provider(), settings)


def get_cleanup() -> Cleanup:
    """Get the cleanup job singleton."""
    global _cleanup
    if not _cleanup:
        _cleanup = Cleanup(
            token_store=get_token_store(),
            credential_provider=get_credential_provider(),
            template_store=get_template_store(),
            interval_seconds=settings.cleanup_interval_seconds,
            batch_size=settings.cleanup_batch_size,
            template_grace_seconds=settings.template_mapping_grace_seconds,
        )
    return _cleanup


# Dependency injection functions
async def get_current_token_manager() -> TokenManager:
    """Dependency for the token broker."""
    return get_token_manager()


async def get_current_discovery_manager() -> DiscoveryManager:
    return get_discovery_manager()


async def get_current_logout_listener() -> UserLoggedOutListener:
    return get_logout_listener()


async def cleanup_services() -> None:
    """Release singletons on shutdown."""
    global _redis_pool, _host_services, _token_store, _credential_provider
    global _template_store, _cache, _cleanup

    if _cleanup:
        await _cleanup.stop()
        _cleanup = None

    if _redis_pool:
        await _redis_pool.disconnect()
        _redis_pool = None

    _host_services = None
    _token_store = None
    _credential_provider = None
    _template_store = None
    _cache = None

    logger.info("Services cleaned up")
