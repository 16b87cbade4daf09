"""ngrok integration through pyngrok."""

import asyncio
from typing import Any

from pyngrok import conf, ngrok

from ..common.exceptions import RelayFailure, TeardownFailure
from ..common.logging import get_logger
from ..common.utils import LOOPBACK_HOST, mask_sensitive_data, validate_port
from .models import TunnelHandle, TunnelStatus
from .status import StatusBroadcaster

logger = get_logger(__name__)

# Substrings of ngrok agent log messages, checked in order
_LOG_STATUS_MARKERS: tuple[tuple[str, TunnelStatus], ...] = (
    ("reconnect", TunnelStatus.RECONNECTING),
    ("session established", TunnelStatus.CONNECTED),
    ("started tunnel", TunnelStatus.CONNECTED),
    ("session closed", TunnelStatus.DISCONNECTED),
)


def status_from_log(log: Any) -> TunnelStatus | None:
    """Map an ngrok agent log event to a status transition, if it is one."""
    message = (getattr(log, "msg", None) or "").lower()
    if not message:
        return None
    for marker, status in _LOG_STATUS_MARKERS:
        if marker in message:
            return status
    return None


class NgrokTunnelManager:
    """Opens HTTP tunnels on ngrok that forward to a local port.

    pyngrok's API is blocking, so every relay call runs in a worker thread.
    Log events from the ngrok agent arrive on pyngrok's monitor thread and
    are handed to the event loop before reaching status sinks.
    """

    def __init__(
        self,
        status: StatusBroadcaster | None = None,
        region: str | None = None,
        ngrok_path: str | None = None,
    ):
        """Initialize the manager.

        Args:
            status: Broadcaster receiving status transitions
            region: ngrok region (ngrok picks one if None)
            ngrok_path: Path to the ngrok binary (pyngrok installs it if None)
        """
        self.status = status or StatusBroadcaster()
        self.region = region
        self.ngrok_path = ngrok_path

    def _build_config(
        self, auth_token: str, loop: asyncio.AbstractEventLoop
    ) -> conf.PyngrokConfig:
        def on_log_event(log: Any) -> None:
            status = status_from_log(log)
            if status is None:
                return
            try:
                loop.call_soon_threadsafe(self.status.publish, status)
            except RuntimeError:
                logger.debug("Dropped status event after loop closed", status=status.value)

        options: dict[str, Any] = {
            "auth_token": auth_token,
            "log_event_callback": on_log_event,
        }
        if self.region:
            options["region"] = self.region
        if self.ngrok_path:
            options["ngrok_path"] = self.ngrok_path
        return conf.PyngrokConfig(**options)

    async def start(self, auth_token: str, local_port: int) -> TunnelHandle:
        """Open a public HTTP endpoint forwarding to 127.0.0.1:local_port.

        Args:
            auth_token: ngrok authtoken
            local_port: Port of the local proxy listener

        Returns:
            TunnelHandle with the relay-assigned public URL

        Raises:
            RelayFailure: If ngrok rejects the request or returns no URL
        """
        validate_port(local_port, "Local port")
        loop = asyncio.get_running_loop()
        pyngrok_config = self._build_config(auth_token, loop)
        addr = f"{LOOPBACK_HOST}:{local_port}"

        logger.info(
            "Starting ngrok tunnel",
            addr=addr,
            auth_token=mask_sensitive_data(auth_token),
        )
        self.status.publish(TunnelStatus.CONNECTING)
        try:
            tunnel = await asyncio.to_thread(
                ngrok.connect, addr, "http", pyngrok_config=pyngrok_config
            )
        except Exception as e:
            self.status.publish(TunnelStatus.ERROR)
            logger.error("ngrok tunnel failed to start", addr=addr, error=str(e))
            try:
                await self._release(None, pyngrok_config)
            except TeardownFailure as cleanup_error:
                logger.warning("Cleanup after failed start incomplete", error=str(cleanup_error))
            raise RelayFailure(local_port, str(e) or type(e).__name__, e) from e

        public_url = getattr(tunnel, "public_url", None)
        if not public_url:
            self.status.publish(TunnelStatus.ERROR)
            logger.error("ngrok returned no public URL", addr=addr)
            try:
                await self._release(None, pyngrok_config)
            except TeardownFailure as cleanup_error:
                logger.warning("Cleanup after missing URL incomplete", error=str(cleanup_error))
            raise RelayFailure(local_port, "failed to obtain tunnel URL")

        self.status.publish(TunnelStatus.CONNECTED)
        logger.info("ngrok tunnel established", public_url=public_url, addr=addr)

        async def release() -> None:
            await self._release(public_url, pyngrok_config)

        return TunnelHandle(public_url, local_port, release)

    async def _release(
        self, public_url: str | None, pyngrok_config: conf.PyngrokConfig
    ) -> None:
        """Disconnect the endpoint, then stop the local agent.

        Both steps always run. Failures are logged per step and raised
        together once both have been attempted.
        """
        errors: list[BaseException] = []

        if public_url:
            try:
                await asyncio.to_thread(ngrok.disconnect, public_url, pyngrok_config)
                logger.info("ngrok endpoint disconnected", public_url=public_url)
            except Exception as e:
                logger.warning(
                    "Failed to disconnect ngrok endpoint",
                    public_url=public_url,
                    error=str(e),
                )
                errors.append(e)

        try:
            await asyncio.to_thread(ngrok.kill, pyngrok_config)
            logger.info("ngrok agent stopped")
        except Exception as e:
            logger.warning("Failed to stop ngrok agent", error=str(e))
            errors.append(e)

        self.status.publish(TunnelStatus.CLOSED)
        if errors:
            raise TeardownFailure("ngrok tunnel", errors)
