"""Shared pytest fixtures for local-tunnel-proxy tests."""

import socket
from dataclasses import dataclass, field
from unittest.mock import AsyncMock, Mock

import pytest
from aiohttp import web

from local_tunnel_proxy.config import TargetAddress, TunnelProxyConfig
from local_tunnel_proxy.tunnels import TunnelHandle


@dataclass
class RecordedRequest:
    method: str
    raw_path: str
    raw_headers: list[tuple[str, str]]
    body: bytes

    def header(self, name: str) -> str | None:
        for key, value in self.raw_headers:
            if key.lower() == name.lower():
                return value
        return None

    @property
    def header_names(self) -> list[str]:
        return [key for key, _ in self.raw_headers]


@dataclass
class Backend:
    """Small aiohttp app standing in for the developer's local server.

    Keeps its port across stop()/start() so a proxy pointed at it can be
    tested against a backend that goes away and comes back.
    """

    port: int = 0
    requests: list[RecordedRequest] = field(default_factory=list)
    _runner: web.AppRunner | None = None

    @property
    def target(self) -> TargetAddress:
        return TargetAddress(host="127.0.0.1", port=self.port)

    async def _handle(self, request: web.Request) -> web.StreamResponse:
        body = await request.read()
        self.requests.append(
            RecordedRequest(
                method=request.method,
                raw_path=request.raw_path,
                raw_headers=[
                    (k.decode("latin-1"), v.decode("latin-1"))
                    for k, v in request.raw_headers
                ],
                body=body,
            )
        )

        if request.path == "/health":
            return web.Response(text="ok")
        if request.path == "/status/418":
            return web.Response(status=418, reason="I'm a teapot", text="short and stout")
        if request.path == "/redirect":
            raise web.HTTPFound("/elsewhere")
        if request.path == "/stream":
            response = web.StreamResponse(headers={"Content-Type": "text/plain"})
            await response.prepare(request)
            for part in (b"one,", b"two,", b"three"):
                await response.write(part)
            await response.write_eof()
            return response
        if request.path == "/truncated":
            response = web.StreamResponse(
                headers={"Content-Type": "text/plain", "Content-Length": "100"}
            )
            await response.prepare(request)
            await response.write(b"partial")
            assert request.transport is not None
            request.transport.close()
            return response

        headers = {"X-Backend-Token": "abc123", "Content-Type": "application/octet-stream"}
        return web.Response(body=body or b"empty", headers=headers)

    async def start(self) -> None:
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.bind(("127.0.0.1", self.port))
        self.port = sock.getsockname()[1]

        app = web.Application(client_max_size=16 * 1024 * 1024)
        app.router.add_route("*", "/{tail:.*}", self._handle)
        self._runner = web.AppRunner(app, access_log=None, shutdown_timeout=0.5)
        await self._runner.setup()
        await web.SockSite(self._runner, sock).start()

    async def stop(self) -> None:
        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None


@pytest.fixture
async def backend():
    """A running backend on an ephemeral loopback port."""
    server = Backend()
    await server.start()
    yield server
    await server.stop()


@pytest.fixture
def unused_port():
    """A loopback port with nothing listening on it."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


@pytest.fixture
def make_config():
    """Factory for TunnelProxyConfig pointed at a target."""

    def factory(target: TargetAddress, **overrides) -> TunnelProxyConfig:
        values = {"target": target, "auth_token": "test_token_1234", "probe_timeout": 1.0}
        values.update(overrides)
        return TunnelProxyConfig(**values)

    return factory


@pytest.fixture
def fake_tunnel_provider():
    """Tunnel provider returning a handle whose release is an AsyncMock.

    Returns:
        Mock: provider with .start (AsyncMock) and .release (AsyncMock)
    """
    provider = Mock()
    provider.release = AsyncMock()

    async def start(auth_token: str, local_port: int) -> TunnelHandle:
        return TunnelHandle("https://example.ngrok.app", local_port, provider.release)

    provider.start = AsyncMock(side_effect=start)
    return provider
