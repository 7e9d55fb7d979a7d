"""Named server endpoints and the readiness prober that polls them."""
from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterator, Mapping
from dataclasses import dataclass
from urllib.parse import urlsplit

import httpx

LOGGER = logging.getLogger(__name__)

HTTP_SCHEMES = frozenset({"http", "https"})
SOCKET_SCHEMES = frozenset({"bolt", "tcp"})

DEFAULT_ENDPOINTS = {
    "http": "http://localhost:7474",
    "bolt": "bolt://localhost:7687",
}


class EndpointError(RuntimeError):
    """Raised when an endpoint definition is unusable."""


@dataclass(frozen=True, slots=True)
class Endpoint:
    """A named address used solely to probe readiness."""

    name: str
    url: str

    def __post_init__(self) -> None:
        """Validate the URL scheme and address."""
        parts = urlsplit(self.url)
        if parts.scheme not in HTTP_SCHEMES | SOCKET_SCHEMES:
            raise EndpointError(
                f"Endpoint '{self.name}' uses unsupported scheme {parts.scheme!r} ({self.url})."
            )
        if not parts.hostname:
            raise EndpointError(f"Endpoint '{self.name}' has no host ({self.url}).")
        try:
            port = parts.port
        except ValueError as exc:
            raise EndpointError(f"Endpoint '{self.name}' has an invalid port ({self.url}).") from exc
        if port is None and parts.scheme in SOCKET_SCHEMES:
            raise EndpointError(f"Endpoint '{self.name}' needs an explicit port ({self.url}).")

    @property
    def scheme(self) -> str:
        """Return the URL scheme."""
        return urlsplit(self.url).scheme

    @property
    def host(self) -> str:
        """Return the host name."""
        return urlsplit(self.url).hostname or ""

    @property
    def port(self) -> int:
        """Return the port, defaulting per scheme for HTTP(S)."""
        parts = urlsplit(self.url)
        if parts.port is not None:
            return parts.port
        return 443 if parts.scheme == "https" else 80

    @property
    def is_http(self) -> bool:
        """Return ``True`` for endpoints probed with an HTTP request."""
        return self.scheme in HTTP_SCHEMES


class EndpointSet(Mapping[str, Endpoint]):
    """Immutable, ordered collection of endpoints keyed by name."""

    def __init__(self, endpoints: Mapping[str, str] | None = None) -> None:
        """Build the set from a mapping of name to URL."""
        source = DEFAULT_ENDPOINTS if endpoints is None else endpoints
        self._endpoints = {
            name: Endpoint(name=name, url=url) for name, url in source.items()
        }

    def __getitem__(self, name: str) -> Endpoint:
        return self._endpoints[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._endpoints)

    def __len__(self) -> int:
        return len(self._endpoints)

    def __repr__(self) -> str:
        urls = {name: endpoint.url for name, endpoint in self._endpoints.items()}
        return f"EndpointSet({urls!r})"

    def to_dict(self) -> dict[str, str]:
        """Return a serialisable representation."""
        return {name: endpoint.url for name, endpoint in self._endpoints.items()}


@dataclass(slots=True)
class EndpointProber:
    """Check whether every endpoint in a set responds.

    HTTP(S) endpoints need a 2xx answer to a ``GET``; bolt/tcp endpoints only
    need to accept a TCP connection.
    """

    timeout: float = 1.0
    transport: httpx.AsyncBaseTransport | None = None

    async def ready(self, endpoints: EndpointSet) -> bool:
        """Return ``True`` when all *endpoints* respond successfully."""
        if not endpoints:
            return True
        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            results = await asyncio.gather(
                *(self.probe(endpoint, client) for endpoint in endpoints.values())
            )
        return all(results)

    async def probe(self, endpoint: Endpoint, client: httpx.AsyncClient) -> bool:
        """Probe a single *endpoint*."""
        if endpoint.is_http:
            return await self._probe_http(endpoint, client)
        return await self._probe_socket(endpoint)

    async def _probe_http(self, endpoint: Endpoint, client: httpx.AsyncClient) -> bool:
        try:
            response = await client.get(endpoint.url)
        except httpx.HTTPError as exc:
            LOGGER.debug("Endpoint %s not ready: %s", endpoint.name, exc)
            return False
        return response.is_success

    async def _probe_socket(self, endpoint: Endpoint) -> bool:
        try:
            _, writer = await asyncio.wait_for(
                asyncio.open_connection(endpoint.host, endpoint.port),
                timeout=self.timeout,
            )
        except (OSError, TimeoutError) as exc:
            LOGGER.debug("Endpoint %s not ready: %s", endpoint.name, exc)
            return False
        writer.close()
        try:
            await writer.wait_closed()
        except OSError:
            pass
        return True


__all__ = [
    "DEFAULT_ENDPOINTS",
    "Endpoint",
    "EndpointError",
    "EndpointProber",
    "EndpointSet",
]
