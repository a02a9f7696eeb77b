"""
Tests for service discovery and the catalog cache
"""
import asyncio

import pytest

from cds_hooks.core.cache import TTLCache
from cds_hooks.services.service_catalog import ServiceCatalog


@pytest.fixture
def catalog(http_client, fake_clock):
    return ServiceCatalog(http_client, cache=TTLCache(300, clock=fake_clock))


@pytest.fixture
def populated_server(cds_server):
    cds_server.add_service("allergy-check", "patient-view", title="Allergy Check")
    cds_server.add_service("drug-interaction", "medication-prescribe")
    cds_server.add_service("care-gaps", "patient-view")
    return cds_server


def discovery_calls(server):
    return len(server.calls("GET", ""))


@pytest.mark.asyncio
async def test_discover_parses_services(catalog, populated_server):
    """Test the discovery response is parsed in order"""
    services = await catalog.discover()

    assert [s.id for s in services] == ["allergy-check", "drug-interaction", "care-gaps"]
    assert services[0].title == "Allergy Check"
    assert services[0].hook == "patient-view"


@pytest.mark.asyncio
async def test_discover_is_cached_within_ttl(catalog, populated_server, fake_clock):
    """Test repeated discovery within five minutes makes one request"""
    await catalog.discover()
    fake_clock.advance(299)
    await catalog.discover()

    assert discovery_calls(populated_server) == 1
    assert catalog.is_cache_valid()


@pytest.mark.asyncio
async def test_discover_refetches_after_ttl(catalog, populated_server, fake_clock):
    """Test an expired catalog is fetched again"""
    await catalog.discover()
    fake_clock.advance(300)
    await catalog.discover()

    assert discovery_calls(populated_server) == 2


@pytest.mark.asyncio
async def test_discover_failure_without_cache_returns_empty(catalog, cds_server):
    """Test discovery failure degrades to an empty list instead of raising"""
    cds_server.discovery_status = 503

    assert await catalog.discover() == []
    assert not catalog.is_cache_valid()


@pytest.mark.asyncio
async def test_discover_failure_falls_back_to_stale_list(catalog, populated_server, fake_clock):
    """Test a failed refresh keeps serving the previous list"""
    first = await catalog.discover()
    fake_clock.advance(600)
    populated_server.discovery_status = 500

    services = await catalog.discover()

    assert [s.id for s in services] == [s.id for s in first]
    assert discovery_calls(populated_server) == 2


@pytest.mark.asyncio
async def test_malformed_discovery_response_is_a_failure(catalog, cds_server):
    """Test services missing required fields degrade like a network failure"""
    cds_server.services = [{"hook": "patient-view"}]

    assert await catalog.discover() == []


@pytest.mark.asyncio
async def test_by_hook_type_filters_in_discovery_order(catalog, populated_server):
    services = await catalog.by_hook_type("patient-view")
    assert [s.id for s in services] == ["allergy-check", "care-gaps"]
    assert await catalog.by_hook_type("order-sign") == []


@pytest.mark.asyncio
async def test_invalidate_forces_refetch(catalog, populated_server):
    await catalog.discover()
    catalog.invalidate()
    await catalog.discover()

    assert discovery_calls(populated_server) == 2


@pytest.mark.asyncio
async def test_concurrent_discovery_shares_one_fetch(catalog, populated_server):
    """Test callers racing on an empty cache trigger a single request"""
    results = await asyncio.gather(catalog.discover(), catalog.discover(), catalog.discover())

    assert all(len(result) == 3 for result in results)
    assert discovery_calls(populated_server) == 1


@pytest.mark.asyncio
async def test_returned_list_does_not_alias_cache(catalog, populated_server):
    services = await catalog.discover()
    services.clear()

    assert len(await catalog.discover()) == 3


@pytest.mark.asyncio
async def test_stats_and_cached_services(catalog, populated_server, fake_clock):
    assert catalog.cached_services() == []
    assert catalog.stats()["services_cache_age_seconds"] is None

    await catalog.discover()
    fake_clock.advance(10)

    stats = catalog.stats()
    assert stats == {
        "services_count": 3,
        "services_cache_age_seconds": 10.0,
        "services_cache_valid": True,
    }
    assert len(catalog.cached_services()) == 3
