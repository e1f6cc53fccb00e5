"""
Service wiring for xhs-writer.

Builds every long-lived component explicitly and in dependency order so
that nothing is instantiated at import time:

    search client -> credential pools -> cache -> fetcher -> hot-post source
    -> chat client -> request orchestrator
"""

import logging
from dataclasses import dataclass
from typing import Optional

from .clients.chat_client import ChatClient, ChatClientConfig
from .clients.search_client import SearchClient, SearchClientConfig
from .config import CredentialConfig
from .orchestrator.cache_manager import CacheManager
from .orchestrator.credential_pool import CredentialPool
from .orchestrator.hot_posts import HotPostFetcher, HotPostSource
from .orchestrator.request_orchestrator import RequestOrchestrator
from .orchestrator.scheduler import MaintenanceScheduler

logger = logging.getLogger(__name__)


@dataclass
class Services:
    """
    Container for the wired application components.

    Attributes:
        search_client: Search API client, also the pools' prober
        search_pool: Credentials used for note search
        detail_pool: Credentials used for note detail requests
        cache: File-per-key hot-post cache
        fetcher: Live hot-post fetch through the search pool
        source: Cache -> fetch -> fallback pipeline
        chat_client: Chat-completion transport
        orchestrator: Multi-backend retry and failover controller

    Example:
        >>> async with Services.from_env() as services:
        ...     result = await services.source.analyze("防晒")
    """

    search_client: SearchClient
    search_pool: CredentialPool
    detail_pool: CredentialPool
    cache: CacheManager
    fetcher: HotPostFetcher
    source: HotPostSource
    chat_client: ChatClient
    orchestrator: RequestOrchestrator

    @classmethod
    def from_env(cls, environ: Optional[dict[str, str]] = None) -> "Services":
        """
        Build all services from environment configuration.

        Args:
            environ: Mapping read for credentials instead of os.environ
        """
        search_client = SearchClient(SearchClientConfig.from_env())

        search_pool = CredentialPool.from_env(
            CredentialConfig.SEARCH_PREFIX,
            "search",
            prober=search_client,
            environ=environ,
        )
        detail_pool = CredentialPool.from_env(
            CredentialConfig.DETAIL_PREFIX,
            "detail",
            fallback_prefix=CredentialConfig.SEARCH_PREFIX,
            prober=search_client,
            environ=environ,
        )

        cache = CacheManager()
        fetcher = HotPostFetcher.from_env(search_pool, search_client)

        source = HotPostSource(cache, fetcher)

        chat_client = ChatClient(ChatClientConfig.from_env())
        orchestrator = RequestOrchestrator.from_env(chat_client)
        source.orchestrator = orchestrator

        logger.info(
            "Services initialized",
            extra={
                "search_credentials": search_pool.size,
                "detail_credentials": detail_pool.size,
                "backends": orchestrator.backends,
            },
        )

        return cls(
            search_client=search_client,
            search_pool=search_pool,
            detail_pool=detail_pool,
            cache=cache,
            fetcher=fetcher,
            source=source,
            chat_client=chat_client,
            orchestrator=orchestrator,
        )

    @property
    def pools(self) -> list[CredentialPool]:
        return [self.search_pool, self.detail_pool]

    def create_scheduler(self, **kwargs) -> MaintenanceScheduler:
        """Maintenance scheduler over this instance's cache and pools."""
        return MaintenanceScheduler(self.cache, self.pools, **kwargs)

    async def close(self) -> None:
        """Close the HTTP sessions held by the clients."""
        await self.search_client.close()
        await self.chat_client.close()

    async def __aenter__(self) -> "Services":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
