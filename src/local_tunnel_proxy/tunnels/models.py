"""Tunnel models shared by every relay integration."""

from collections.abc import Awaitable, Callable
from enum import Enum

from ..common.logging import get_logger

logger = get_logger(__name__)


class TunnelStatus(str, Enum):
    """Relay-reported tunnel status."""

    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    DISCONNECTED = "disconnected"
    CLOSED = "closed"
    ERROR = "error"


class TunnelHandle:
    """An established tunnel with a fixed public URL.

    The handle never carries an empty URL. stop() runs the release callback
    at most once; later calls return immediately.
    """

    def __init__(
        self,
        public_url: str,
        local_port: int,
        release: Callable[[], Awaitable[None]],
    ):
        if not public_url:
            raise ValueError("Tunnel handle requires a public URL")
        self._public_url = public_url
        self._local_port = local_port
        self._release = release
        self._stopped = False

    @property
    def public_url(self) -> str:
        return self._public_url

    @property
    def local_port(self) -> int:
        return self._local_port

    @property
    def stopped(self) -> bool:
        return self._stopped

    async def stop(self) -> None:
        """Release the relay endpoint and local relay resources."""
        if self._stopped:
            logger.debug("Tunnel already stopped", public_url=self._public_url)
            return
        self._stopped = True
        await self._release()

    def __repr__(self) -> str:
        return (
            f"TunnelHandle(public_url={self._public_url!r}, "
            f"local_port={self._local_port}, stopped={self._stopped})"
        )
