"""local-tunnel-proxy - expose a local HTTP app through ngrok for OAuth callbacks."""

from .common.exceptions import (
    BindFailure,
    ForwardingFailure,
    PreconditionFailure,
    RelayFailure,
    TeardownFailure,
    TunnelProxyError,
)
from .common.logging import get_logger, setup_logging
from .config import TargetAddress, TunnelProxyConfig
from .orchestrator import LifecycleState, Orchestrator, ShutdownLatch
from .probe import ProbeResult, ensure_reachable, probe
from .proxy import ProxyHandle, ProxyServer
from .tunnels import (
    NgrokTunnelManager,
    StatusBroadcaster,
    TunnelHandle,
    TunnelProvider,
    TunnelStatus,
)

__version__ = "0.1.0"

__all__ = [
    # Lifecycle
    "Orchestrator",
    "LifecycleState",
    "ShutdownLatch",
    # Components
    "probe",
    "ensure_reachable",
    "ProbeResult",
    "ProxyServer",
    "ProxyHandle",
    "NgrokTunnelManager",
    "StatusBroadcaster",
    "TunnelHandle",
    "TunnelProvider",
    "TunnelStatus",
    # Configuration
    "TargetAddress",
    "TunnelProxyConfig",
    # Exceptions
    "TunnelProxyError",
    "PreconditionFailure",
    "BindFailure",
    "RelayFailure",
    "ForwardingFailure",
    "TeardownFailure",
    # Logging
    "get_logger",
    "setup_logging",
]
