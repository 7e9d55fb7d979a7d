"""Tests for endpoint parsing and readiness probing."""
from __future__ import annotations

import asyncio

import httpx
import pytest

from neo4jctl.endpoints import (
    DEFAULT_ENDPOINTS,
    Endpoint,
    EndpointError,
    EndpointProber,
    EndpointSet,
)


def test_default_endpoints() -> None:
    """Without a mapping the stock HTTP and bolt ports are used."""
    endpoints = EndpointSet()
    assert endpoints.to_dict() == DEFAULT_ENDPOINTS
    assert endpoints["bolt"].port == 7687
    assert endpoints["http"].is_http is True


def test_empty_mapping_is_allowed() -> None:
    """An explicit empty mapping disables probing."""
    assert len(EndpointSet({})) == 0


@pytest.mark.parametrize(
    ("url", "message"),
    [
        ("ftp://localhost:21", "unsupported scheme"),
        ("localhost:7474", "unsupported scheme"),
        ("http://", "no host"),
        ("bolt://localhost", "explicit port"),
        ("http://localhost:notaport", "invalid port"),
    ],
)
def test_invalid_endpoints_rejected(url: str, message: str) -> None:
    """Unusable URLs raise EndpointError naming the endpoint."""
    with pytest.raises(EndpointError, match=message):
        Endpoint(name="server", url=url)


def test_http_port_defaults() -> None:
    """HTTP(S) endpoints without a port fall back to the scheme default."""
    assert Endpoint("a", "http://example.test").port == 80
    assert Endpoint("b", "https://example.test").port == 443


def _mock_transport(status_by_host: dict[str, int]) -> httpx.MockTransport:
    def handler(request: httpx.Request) -> httpx.Response:
        status = status_by_host.get(request.url.host)
        if status is None:
            raise httpx.ConnectError("connection refused", request=request)
        return httpx.Response(status)

    return httpx.MockTransport(handler)


def test_http_probe_requires_success_status() -> None:
    """Only 2xx answers count as ready."""
    prober = EndpointProber(transport=_mock_transport({"up.test": 200, "error.test": 503}))

    assert asyncio.run(prober.ready(EndpointSet({"http": "http://up.test:7474"}))) is True
    assert asyncio.run(prober.ready(EndpointSet({"http": "http://error.test:7474"}))) is False
    assert asyncio.run(prober.ready(EndpointSet({"http": "http://down.test:7474"}))) is False


def test_ready_requires_every_endpoint() -> None:
    """A single failing endpoint keeps the set not ready."""
    prober = EndpointProber(transport=_mock_transport({"up.test": 200}))
    endpoints = EndpointSet({"one": "http://up.test", "two": "http://down.test"})
    assert asyncio.run(prober.ready(endpoints)) is False


def test_empty_set_is_ready() -> None:
    """No endpoints means nothing to wait for."""
    assert asyncio.run(EndpointProber().ready(EndpointSet({}))) is True


def test_socket_probe_connects() -> None:
    """bolt/tcp endpoints are ready once a TCP connection succeeds."""

    async def scenario() -> tuple[bool, bool]:
        async def accept(reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
            writer.close()

        server = await asyncio.start_server(accept, "127.0.0.1", 0)
        port = server.sockets[0].getsockname()[1]
        prober = EndpointProber(timeout=1.0)
        async with server:
            up = await prober.ready(EndpointSet({"bolt": f"bolt://127.0.0.1:{port}"}))
        server.close()
        await server.wait_closed()
        down = await prober.ready(EndpointSet({"bolt": f"tcp://127.0.0.1:{port}"}))
        return up, down

    up, down = asyncio.run(scenario())
    assert up is True
    assert down is False
