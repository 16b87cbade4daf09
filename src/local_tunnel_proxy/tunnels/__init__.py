"""Tunnel lifecycle management.

The orchestrator only depends on :class:`TunnelProvider`; ngrok through
pyngrok is the provider shipped with the package.
"""

from .interfaces import StatusSink, TunnelProvider
from .models import TunnelHandle, TunnelStatus
from .ngrok_relay import NgrokTunnelManager, status_from_log
from .status import StatusBroadcaster

__all__ = [
    "NgrokTunnelManager",
    "StatusBroadcaster",
    "StatusSink",
    "TunnelHandle",
    "TunnelProvider",
    "TunnelStatus",
    "status_from_log",
]
