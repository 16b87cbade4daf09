"""Startup sequencing and ordered teardown of the proxy and tunnel."""

import asyncio
import signal
from collections.abc import Callable
from enum import Enum
from typing import Protocol

from .common.logging import get_logger
from .config import TargetAddress, TunnelProxyConfig
from .probe import ensure_reachable
from .proxy import ProxyHandle, ProxyServer
from .tunnels import NgrokTunnelManager, TunnelHandle, TunnelProvider

logger = get_logger(__name__)


class LifecycleState(str, Enum):
    """Orchestrator lifecycle states."""

    IDLE = "idle"
    PROBING = "probing"
    PROXY_STARTING = "proxy_starting"
    TUNNEL_STARTING = "tunnel_starting"
    RUNNING = "running"
    SHUTTING_DOWN = "shutting_down"
    STOPPED = "stopped"
    FAILED = "failed"


_TERMINAL_STATES = frozenset({LifecycleState.STOPPED, LifecycleState.FAILED})

_TRANSITIONS: dict[LifecycleState, frozenset[LifecycleState]] = {
    LifecycleState.IDLE: frozenset({LifecycleState.PROBING}),
    LifecycleState.PROBING: frozenset({LifecycleState.PROXY_STARTING}),
    LifecycleState.PROXY_STARTING: frozenset({LifecycleState.TUNNEL_STARTING}),
    LifecycleState.TUNNEL_STARTING: frozenset({LifecycleState.RUNNING}),
    LifecycleState.RUNNING: frozenset({LifecycleState.SHUTTING_DOWN}),
    LifecycleState.SHUTTING_DOWN: frozenset({LifecycleState.STOPPED}),
}


class ShutdownLatch:
    """One-shot latch guarding the teardown sequence.

    try_acquire() checks and sets without awaiting, so under a single event
    loop only one caller ever sees True.
    """

    def __init__(self) -> None:
        self._set = False

    @property
    def is_set(self) -> bool:
        return self._set

    def try_acquire(self) -> bool:
        if self._set:
            return False
        self._set = True
        return True


class Announcer(Protocol):
    """Receives user-facing lifecycle milestones."""

    def probing(self, target: TargetAddress) -> None:
        ...

    def running(self, public_url: str, config: TunnelProxyConfig) -> None:
        ...

    def shutting_down(self) -> None:
        ...


class ProxyLike(Protocol):
    async def start(self) -> ProxyHandle:
        ...


ProxyFactory = Callable[[TunnelProxyConfig], ProxyLike]


def default_proxy_factory(config: TunnelProxyConfig) -> ProxyServer:
    return ProxyServer(
        config.target,
        idle_timeout=config.idle_timeout,
        shutdown_timeout=config.shutdown_timeout,
    )


class Orchestrator:
    """Runs probe, proxy and tunnel in order and owns both handles.

    Startup is strictly sequential and any failure moves the orchestrator
    to FAILED after closing whatever was already created. Shutdown stops
    the tunnel first and the proxy second; each step runs even if the other
    one failed, and the whole sequence runs at most once.
    """

    def __init__(
        self,
        config: TunnelProxyConfig,
        tunnel_provider: TunnelProvider | None = None,
        announcer: Announcer | None = None,
        proxy_factory: ProxyFactory | None = None,
    ):
        self.config = config
        self.tunnel_provider = tunnel_provider or NgrokTunnelManager()
        self.announcer = announcer
        self._proxy_factory = proxy_factory or default_proxy_factory
        self.latch = ShutdownLatch()
        self.proxy_handle: ProxyHandle | None = None
        self.tunnel_handle: TunnelHandle | None = None
        self._state = LifecycleState.IDLE
        self._stopped = asyncio.Event()
        self._shutdown_task: asyncio.Task[None] | None = None
        self._signal_handlers: list[tuple[signal.Signals, bool]] = []

    @property
    def state(self) -> LifecycleState:
        return self._state

    def _transition(self, new_state: LifecycleState) -> None:
        if new_state is LifecycleState.FAILED:
            if self._state in _TERMINAL_STATES:
                raise RuntimeError(f"Cannot fail from terminal state {self._state.value}")
        elif new_state not in _TRANSITIONS.get(self._state, frozenset()):
            raise RuntimeError(
                f"Invalid lifecycle transition {self._state.value} -> {new_state.value}"
            )
        logger.debug("Lifecycle transition", old=self._state.value, new=new_state.value)
        self._state = new_state

    async def start(self) -> TunnelHandle:
        """Probe the target, bind the proxy, open the tunnel.

        Returns:
            The established tunnel handle

        Raises:
            PreconditionFailure: Target not reachable; nothing was created
            BindFailure: Proxy could not bind; nothing was created
            RelayFailure: Tunnel failed; the proxy was closed before raising
        """
        target = self.config.target
        self._transition(LifecycleState.PROBING)
        try:
            if self.announcer is not None:
                self.announcer.probing(target)
            await ensure_reachable(target, self.config.probe_timeout)

            self._transition(LifecycleState.PROXY_STARTING)
            self.proxy_handle = await self._proxy_factory(self.config).start()

            self._transition(LifecycleState.TUNNEL_STARTING)
            self.tunnel_handle = await self.tunnel_provider.start(
                self.config.auth_token, self.proxy_handle.bound_port
            )
        except BaseException as e:
            logger.error(
                "Startup failed", stage=self._state.value, error=str(e) or repr(e)
            )
            self._transition(LifecycleState.FAILED)
            await self._discard_proxy()
            raise

        self._transition(LifecycleState.RUNNING)
        logger.info(
            "Tunnel running",
            public_url=self.tunnel_handle.public_url,
            proxy_port=self.proxy_handle.bound_port,
            target=target.url,
        )
        return self.tunnel_handle

    async def _discard_proxy(self) -> None:
        """Close the proxy after a failed startup, if it was created."""
        handle, self.proxy_handle = self.proxy_handle, None
        if handle is None:
            return
        try:
            await handle.close()
        except Exception as e:
            logger.error("Failed to stop proxy server cleanly", error=str(e))

    def request_shutdown(self, reason: str = "requested") -> bool:
        """Schedule the teardown sequence.

        Only the first call while RUNNING schedules anything. Must be called
        from the event loop thread.

        Returns:
            True if this call started the shutdown
        """
        if self._state is not LifecycleState.RUNNING:
            logger.debug("Shutdown ignored", reason=reason, state=self._state.value)
            return False
        if not self.latch.try_acquire():
            logger.debug("Shutdown already in progress", reason=reason)
            return False

        logger.info("Shutdown requested", reason=reason)
        self._shutdown_task = asyncio.get_running_loop().create_task(self._teardown())
        return True

    async def shutdown(self, reason: str = "requested") -> None:
        """Trigger shutdown (if not already triggered) and wait for it."""
        self.request_shutdown(reason)
        if self._shutdown_task is not None:
            await self._shutdown_task

    async def _teardown(self) -> None:
        self._transition(LifecycleState.SHUTTING_DOWN)
        if self.announcer is not None:
            self.announcer.shutting_down()

        tunnel, self.tunnel_handle = self.tunnel_handle, None
        if tunnel is not None:
            try:
                await tunnel.stop()
            except Exception as e:
                logger.error("Failed to stop tunnel cleanly", error=str(e))

        proxy, self.proxy_handle = self.proxy_handle, None
        if proxy is not None:
            try:
                await proxy.close()
            except Exception as e:
                logger.error("Failed to stop proxy server cleanly", error=str(e))

        self._transition(LifecycleState.STOPPED)
        self._stopped.set()
        logger.info("Shutdown complete")

    async def wait_stopped(self) -> None:
        await self._stopped.wait()

    def install_signal_handlers(self) -> None:
        """Route SIGINT and SIGTERM to request_shutdown()."""
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self.request_shutdown, sig.name)
                self._signal_handlers.append((sig, True))
            except (NotImplementedError, RuntimeError):
                # no loop signal support (Windows); hop back onto the loop
                def handler(signum: int, _frame: object, name: str = sig.name) -> None:
                    loop.call_soon_threadsafe(self.request_shutdown, name)

                signal.signal(sig, handler)
                self._signal_handlers.append((sig, False))

    def remove_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        while self._signal_handlers:
            sig, via_loop = self._signal_handlers.pop()
            if via_loop:
                loop.remove_signal_handler(sig)
            else:
                signal.signal(sig, signal.SIG_DFL)

    async def run(self) -> int:
        """Start, announce, serve until signalled, tear down.

        Returns:
            Process exit status (0 once teardown has been attempted)
        """
        tunnel = await self.start()
        if self.announcer is not None:
            self.announcer.running(tunnel.public_url, self.config)

        self.install_signal_handlers()
        try:
            await self.wait_stopped()
        finally:
            self.remove_signal_handlers()
            if self._state is LifecycleState.RUNNING or self._shutdown_task is not None:
                await self.shutdown("exit")
        return 0
