"""
Service catalog: discovers and caches the CDS services a server advertises
"""
import asyncio
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from cds_hooks.core.cache import TTLCache
from cds_hooks.core.cds_client import CDSHooksHttpClient
from cds_hooks.core.cds_protocol import CDSService, CDSServicesResponse
from cds_hooks.core.config import get_settings
from cds_hooks.core.errors import CDSHooksClientError, DiscoveryFailure
from cds_hooks.core.logging_config import LoggingConfig
from cds_hooks.core.metrics import cds_discovery_requests_total

logger = LoggingConfig.get_logger(__name__)

DISCOVERY_PATH = "/cds-services"
_CATALOG_KEY = "services"


class ServiceCatalog:
    """
    Cached view of GET /cds-services

    The whole list is one cache entry, replaced on every successful
    refresh. A failed refresh keeps serving the previous list (even if
    expired); with no previous list it serves an empty one. discover()
    never raises.
    """

    def __init__(
        self,
        http: CDSHooksHttpClient,
        cache: Optional[TTLCache[List[CDSService]]] = None,
    ):
        self.http = http
        self.cache = cache or TTLCache(get_settings().discovery_cache_ttl_seconds)
        self._lock = asyncio.Lock()

    async def discover(self) -> List[CDSService]:
        """Return the service list, fetching it when the cache is stale"""
        cached = self.cache.get(_CATALOG_KEY)
        if cached is not None:
            cds_discovery_requests_total.labels(outcome="cached").inc()
            return list(cached)

        async with self._lock:
            # Another caller may have refreshed while we waited
            cached = self.cache.get(_CATALOG_KEY)
            if cached is not None:
                cds_discovery_requests_total.labels(outcome="cached").inc()
                return list(cached)

            try:
                services = await self._fetch()
            except DiscoveryFailure as failure:
                cds_discovery_requests_total.labels(outcome="failure").inc()
                previous = self.cache.peek(_CATALOG_KEY)
                logger.warning(
                    f"Failed to discover CDS services: {failure.message}",
                    extra={**failure.to_dict(), "fallback_services": len(previous or [])},
                )
                return list(previous) if previous is not None else []

            self.cache.set(_CATALOG_KEY, services)
            cds_discovery_requests_total.labels(outcome="success").inc()
            logger.info(f"Discovered {len(services)} CDS services")
            return list(services)

    async def _fetch(self) -> List[CDSService]:
        try:
            payload = await self.http.get_json(DISCOVERY_PATH)
        except CDSHooksClientError as e:
            raise DiscoveryFailure.from_error(e) from e
        try:
            return list(CDSServicesResponse.model_validate(payload or {}).services)
        except ValidationError as e:
            raise DiscoveryFailure(
                f"Malformed discovery response: {e.error_count()} invalid field(s)",
                details=str(e),
            ) from e

    async def by_hook_type(self, hook_type: str) -> List[CDSService]:
        """Services registered for a hook, in discovery order"""
        services = await self.discover()
        return [service for service in services if service.hook == hook_type]

    def cached_services(self) -> List[CDSService]:
        """Last known list without making a request"""
        return list(self.cache.peek(_CATALOG_KEY) or [])

    def is_cache_valid(self) -> bool:
        return self.cache.is_fresh(_CATALOG_KEY)

    def invalidate(self) -> None:
        """Drop the cached list; the next discover() fetches again"""
        self.cache.invalidate()
        logger.debug("Service catalog cache invalidated")

    def stats(self) -> Dict[str, Any]:
        age = self.cache.age(_CATALOG_KEY)
        return {
            "services_count": len(self.cached_services()),
            "services_cache_age_seconds": age.total_seconds() if age is not None else None,
            "services_cache_valid": self.is_cache_valid(),
        }
