"""Protocol interfaces for tunnel providers and status observers."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from .models import TunnelHandle, TunnelStatus


class StatusSink(Protocol):
    """Receives tunnel status transitions. Purely observational."""

    def __call__(self, status: TunnelStatus) -> None:
        ...


class TunnelProvider(Protocol):
    """Anything that can open a public tunnel to a local port."""

    async def start(self, auth_token: str, local_port: int) -> TunnelHandle:
        """Open a tunnel forwarding to local_port.

        Raises:
            RelayFailure: If the relay cannot provide a public endpoint
        """
        ...
