"""Reverse proxy listener forwarding every request to a single local target."""

import asyncio
import socket
from dataclasses import dataclass, field
from types import TracebackType

import aiohttp
from aiohttp import web
from multidict import CIMultiDict
from yarl import URL

from .common.exceptions import BindFailure, ForwardingFailure, TeardownFailure
from .common.logging import get_logger
from .common.utils import LOOPBACK_HOST
from .config import DEFAULT_IDLE_TIMEOUT, DEFAULT_SHUTDOWN_TIMEOUT, TargetAddress

logger = get_logger(__name__)

UNAVAILABLE_MESSAGE = "Local target is unavailable. Check that your app is running."

# RFC 7230 section 6.1, plus the legacy Proxy-* family
HOP_BY_HOP_HEADERS = frozenset(
    {
        "connection",
        "keep-alive",
        "proxy-authenticate",
        "proxy-authorization",
        "proxy-connection",
        "te",
        "trailer",
        "transfer-encoding",
        "upgrade",
    }
)

# Headers aiohttp's client would otherwise add on its own
CLIENT_AUTO_HEADERS = ("Accept", "Accept-Encoding", "User-Agent", "Content-Type")


@dataclass(frozen=True)
class ProxyHandle:
    """A bound proxy listener. Only the owner may call close()."""

    bound_port: int
    _server: "ProxyServer" = field(repr=False, compare=False)

    @property
    def url(self) -> str:
        return f"http://{LOOPBACK_HOST}:{self.bound_port}"

    async def close(self) -> None:
        await self._server.close()


def _decode_raw_headers(
    raw_headers: tuple[tuple[bytes, bytes], ...],
) -> list[tuple[str, str]]:
    """Decode raw header pairs, keeping the names exactly as received."""
    return [
        (name.decode("latin-1"), value.decode("latin-1"))
        for name, value in raw_headers
    ]


class ProxyServer:
    """HTTP reverse proxy bound to an ephemeral loopback port."""

    def __init__(
        self,
        target: TargetAddress,
        idle_timeout: float = DEFAULT_IDLE_TIMEOUT,
        shutdown_timeout: float = DEFAULT_SHUTDOWN_TIMEOUT,
        host: str = LOOPBACK_HOST,
    ):
        """Initialize the proxy without binding anything.

        Args:
            target: Backend every request is forwarded to
            idle_timeout: Seconds a connection may stay idle before it is closed
            shutdown_timeout: Upper bound for releasing the listener on close
            host: Interface to bind (loopback only)
        """
        self.target = target
        self.idle_timeout = idle_timeout
        self.shutdown_timeout = shutdown_timeout
        self.host = host
        self._runner: web.AppRunner | None = None
        self._session: aiohttp.ClientSession | None = None
        self._handle: ProxyHandle | None = None

    @property
    def handle(self) -> ProxyHandle | None:
        return self._handle

    @property
    def is_running(self) -> bool:
        return self._handle is not None

    async def start(self) -> ProxyHandle:
        """Bind the listener and begin forwarding.

        Returns:
            ProxyHandle carrying the OS-assigned port

        Raises:
            BindFailure: If the listener cannot be started
        """
        if self._handle is not None:
            logger.debug("Proxy already running", port=self._handle.bound_port)
            return self._handle

        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        try:
            sock.bind((self.host, 0))
        except OSError as e:
            sock.close()
            logger.error("Failed to bind proxy listener", host=self.host, error=str(e))
            raise BindFailure(self.host, 0, e) from e

        port = sock.getsockname()[1]
        app = web.Application()
        app.router.add_route("*", "/{tail:.*}", self._forward)

        self._session = aiohttp.ClientSession(
            timeout=aiohttp.ClientTimeout(
                total=None,
                sock_connect=self.idle_timeout,
                sock_read=self.idle_timeout,
            ),
            auto_decompress=False,
            cookie_jar=aiohttp.DummyCookieJar(),
            skip_auto_headers=CLIENT_AUTO_HEADERS,
        )
        self._runner = web.AppRunner(
            app,
            access_log=None,
            keepalive_timeout=self.idle_timeout,
            shutdown_timeout=self.shutdown_timeout,
        )
        try:
            await self._runner.setup()
            site = web.SockSite(self._runner, sock)
            await site.start()
        except (OSError, RuntimeError) as e:
            logger.error("Failed to start proxy listener", port=port, error=str(e))
            sock.close()
            try:
                await self.close()
            except TeardownFailure as cleanup_error:
                logger.warning("Cleanup after failed start incomplete", error=str(cleanup_error))
            raise BindFailure(self.host, port, e) from e

        self._handle = ProxyHandle(bound_port=port, _server=self)
        logger.info(
            "Proxy listening",
            listen=f"http://{self.host}:{port}",
            target=self.target.url,
        )
        return self._handle

    async def close(self) -> None:
        """Stop accepting connections and release the port.

        Safe to call before start() or more than once.

        Raises:
            TeardownFailure: If the listener or client session failed to close
        """
        runner, session = self._runner, self._session
        self._runner = None
        self._session = None
        self._handle = None

        errors: list[BaseException] = []
        if runner is not None:
            try:
                await asyncio.wait_for(
                    runner.cleanup(), timeout=self.shutdown_timeout + 1.0
                )
            except (asyncio.TimeoutError, OSError, RuntimeError) as e:
                logger.warning("Error releasing proxy listener", error=str(e) or repr(e))
                errors.append(e)
        if session is not None:
            try:
                await session.close()
            except (aiohttp.ClientError, OSError) as e:
                logger.warning("Error closing upstream session", error=str(e))
                errors.append(e)

        if runner is not None:
            logger.info("Proxy listener closed")
        if errors:
            raise TeardownFailure("proxy listener", errors)

    async def _forward(self, request: web.Request) -> web.StreamResponse:
        """Forward one request to the target and relay the response back."""
        logger.info("Proxy request", method=request.method, path=request.raw_path)

        session = self._session
        if session is None:
            return web.Response(status=503, text="Proxy is shutting down.")

        url = URL(self.target.url + request.raw_path, encoded=True)
        headers = self._upstream_headers(request)
        data = request.content if request.body_exists else None

        response: web.StreamResponse | None = None
        try:
            async with session.request(
                request.method,
                url,
                headers=headers,
                data=data,
                allow_redirects=False,
            ) as upstream:
                response = web.StreamResponse(
                    status=upstream.status, reason=upstream.reason
                )
                for name, value in _decode_raw_headers(upstream.raw_headers):
                    if name.lower() not in HOP_BY_HOP_HEADERS:
                        response.headers.add(name, value)
                await response.prepare(request)
                async for chunk in upstream.content.iter_any():
                    await response.write(chunk)
                await response.write_eof()
                return response
        except (aiohttp.ClientError, OSError, asyncio.TimeoutError) as e:
            failure = ForwardingFailure(
                request.method, request.raw_path, self.target.url, e
            )
            logger.error(
                "Error forwarding request",
                method=failure.method,
                path=failure.path,
                error=str(failure),
            )
            if response is None or not response.prepared:
                return web.Response(status=502, text=UNAVAILABLE_MESSAGE)
            # Status line already sent; drop the connection instead of writing another
            if request.transport is not None:
                request.transport.close()
            return response

    def _upstream_headers(self, request: web.Request) -> CIMultiDict[str]:
        """Copy inbound headers for the target, rewriting Host."""
        headers: CIMultiDict[str] = CIMultiDict()
        host_name = "Host"
        for name, value in _decode_raw_headers(request.raw_headers):
            lowered = name.lower()
            if lowered == "host":
                host_name = name
            elif lowered not in HOP_BY_HOP_HEADERS:
                headers.add(name, value)
        headers[host_name] = self.target.netloc
        return headers

    async def __aenter__(self) -> "ProxyServer":
        await self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.close()
