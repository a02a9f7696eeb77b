"""
Tests for the CDS Hooks HTTP transport
"""
import json

import httpx
import pytest

from cds_hooks.core.cds_client import CDSHooksHttpClient
from cds_hooks.core.errors import (CDSHooksClientError, DiscoveryFailure,
                                   ErrorCategory, ExecutionTimeout)

BASE_URL = "http://cds.test/cds-hooks"


def client_for(handler, **kwargs):
    return CDSHooksHttpClient(base_url=BASE_URL, transport=httpx.MockTransport(handler), **kwargs)


@pytest.mark.asyncio
async def test_requests_go_under_base_url_with_bearer():
    """Test paths are joined to the base URL and the bearer is attached"""
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json={"services": []})

    async with client_for(handler, bearer_token="opaque") as client:
        payload = await client.get_json("/cds-services")

    assert payload == {"services": []}
    assert str(seen[0].url) == "http://cds.test/cds-hooks/cds-services"
    assert seen[0].headers["Authorization"] == "Bearer opaque"
    assert seen[0].headers["Accept"] == "application/json"


@pytest.mark.asyncio
async def test_no_authorization_without_token():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json={})

    async with client_for(handler, bearer_token="") as client:
        await client.get_json("/cds-services")

    assert "Authorization" not in seen[0].headers


@pytest.mark.asyncio
async def test_post_sends_json_body():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json={"cards": []})

    async with client_for(handler) as client:
        await client.post_json("/cds-services/svc-1", {"hook": "patient-view"})

    assert seen[0].method == "POST"
    assert json.loads(seen[0].content) == {"hook": "patient-view"}


@pytest.mark.asyncio
async def test_http_status_error_carries_status_and_body():
    """Test non-2xx responses become CDSHooksClientError with the status"""
    async with client_for(lambda request: httpx.Response(404, json={"error": "no such service"})) as client:
        with pytest.raises(CDSHooksClientError) as exc_info:
            await client.post_json("/cds-services/missing", {})

    assert exc_info.value.status == 404
    assert exc_info.value.details == {"error": "no such service"}


@pytest.mark.asyncio
async def test_connection_error_is_wrapped():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    async with client_for(handler) as client:
        with pytest.raises(CDSHooksClientError) as exc_info:
            await client.get_json("/cds-services")

    assert exc_info.value.status is None


@pytest.mark.asyncio
async def test_non_json_body_is_an_error():
    async with client_for(lambda request: httpx.Response(200, content=b"not json")) as client:
        with pytest.raises(CDSHooksClientError):
            await client.get_json("/cds-services")


@pytest.mark.asyncio
async def test_empty_body_returns_none():
    async with client_for(lambda request: httpx.Response(204)) as client:
        assert await client.post_json("/cds-services/svc/feedback", {"feedback": []}) is None


def test_failures_wrap_client_errors_with_context():
    """Test taxonomy errors keep status and expose log-ready context"""
    cause = CDSHooksClientError("GET /cds-services returned 503", status=503)
    failure = DiscoveryFailure.from_error(cause)

    assert failure.status == 503
    assert failure.to_dict()["category"] == ErrorCategory.DISCOVERY.value
    assert failure.to_dict()["error_type"] == "DiscoveryFailure"

    timeout = ExecutionTimeout("too slow", service_id="svc-1", hook_type="patient-view")
    assert timeout.to_dict()["category"] == "timeout"
    assert timeout.to_dict()["service_id"] == "svc-1"


@pytest.mark.asyncio
async def test_invalid_url_is_wrapped():
    """Test a path httpx cannot turn into a URL never reaches the transport"""
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json={})

    async with client_for(handler) as client:
        with pytest.raises(CDSHooksClientError) as exc_info:
            await client.post_json("/cds-services/bad\x00id", {"hook": "patient-view"})

    assert exc_info.value.details == "InvalidURL"
    assert seen == []
