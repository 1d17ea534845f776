import json

import httpx
import pytest

from flowpilot.core.config import ToolSettings
from flowpilot.services.tools import HTTPToolAdapter, OperationSchema, _OperationCache
from flowpilot.tools.exceptions import (
    AuthenticationRequired,
    CapabilityUnavailable,
    InvocationFailed,
    ToolTimeoutError,
)


def _adapter(handler, **overrides) -> tuple[HTTPToolAdapter, httpx.AsyncClient]:
    settings = ToolSettings(endpoint="http://gateway.local", **overrides)
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="http://gateway.local")
    return HTTPToolAdapter(settings, http_client=client), client


@pytest.mark.asyncio
async def test_list_operations_parses_and_caches_schemas():
    calls = []

    async def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request.url.path)
        assert request.headers["X-Principal"] == "user-1"
        return httpx.Response(
            200,
            json={
                "tools": [
                    {"name": "find_docs", "description": "Search", "inputSchema": {"properties": {"query": {}}}},
                    {"description": "nameless entries are skipped"},
                ]
            },
        )

    adapter, client = _adapter(handler)
    async with client:
        first = await adapter.list_operations("search", "user-1")
        second = await adapter.list_operations("search", "user-1")

    assert [operation.name for operation in first] == ["find_docs"]
    assert first[0].property_names == ["query"]
    assert second == first
    assert calls == ["/capabilities/search/operations"]


@pytest.mark.asyncio
async def test_zero_ttl_disables_the_catalog_cache():
    calls = []

    async def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request.url.path)
        return httpx.Response(200, json=[{"name": "find_docs"}])

    adapter, client = _adapter(handler, catalog_cache_ttl_seconds=0)
    async with client:
        await adapter.list_operations("search")
        await adapter.list_operations("search")

    assert len(calls) == 2


@pytest.mark.asyncio
async def test_invoke_posts_arguments_and_unwraps_result():
    seen = {}

    async def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["body"] = request.read()
        seen["auth"] = request.headers.get("Authorization")
        return httpx.Response(200, json={"result": {"content": "alpha beta"}})

    adapter, client = _adapter(handler, api_key="secret")
    async with client:
        result = await adapter.invoke("search", "find_docs", {"query": "alpha"})

    assert result == {"content": "alpha beta"}
    assert seen["path"] == "/capabilities/search/operations/find_docs/invoke"
    assert json.loads(seen["body"]) == {"arguments": {"query": "alpha"}}
    assert seen["auth"] == "Bearer secret"


@pytest.mark.asyncio
async def test_invoke_reports_tool_level_errors():
    async def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"isError": True, "content": "quota exceeded"})

    adapter, client = _adapter(handler)
    async with client:
        with pytest.raises(InvocationFailed, match="quota exceeded"):
            await adapter.invoke("search", "find_docs", {})


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("status", "expected"),
    [
        (401, AuthenticationRequired),
        (403, AuthenticationRequired),
        (404, CapabilityUnavailable),
        (503, CapabilityUnavailable),
        (500, InvocationFailed),
        (422, InvocationFailed),
    ],
)
async def test_http_status_is_classified(status, expected):
    async def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status, text="nope")

    adapter, client = _adapter(handler)
    async with client:
        with pytest.raises(expected):
            await adapter.invoke("search", "find_docs", {})


@pytest.mark.asyncio
async def test_transport_errors_are_classified():
    async def timeout(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("slow", request=request)

    async def refused(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    adapter, client = _adapter(timeout)
    async with client:
        with pytest.raises(ToolTimeoutError):
            await adapter.invoke("search", "find_docs", {})

    adapter, client = _adapter(refused)
    async with client:
        with pytest.raises(CapabilityUnavailable):
            await adapter.list_operations("search")


@pytest.mark.asyncio
async def test_expired_catalog_entries_are_pruned_on_write():
    now = [0.0]
    cache = _OperationCache(10, clock=lambda: now[0])
    await cache.set("search::user-1", [OperationSchema(name="find_docs")])
    await cache.set("search::user-2", [OperationSchema(name="find_docs")])

    now[0] = 11.0
    await cache.set("search::user-3", [OperationSchema(name="find_docs")])

    assert list(cache._storage) == ["search::user-3"]
    assert await cache.get("search::user-3") is not None
