"""Custom exceptions for local-tunnel-proxy.

Each startup or teardown stage has its own exception type carrying structured
context, so callers can branch on the kind of failure instead of matching on
message text.
"""

from collections.abc import Sequence


class TunnelProxyError(Exception):
    """Base exception for all local-tunnel-proxy errors."""

    stage: str = "unknown"


class PreconditionFailure(TunnelProxyError):
    """Raised when the local target is not reachable before startup."""

    stage = "probe"

    def __init__(self, host: str, port: int, reason: str):
        self.host = host
        self.port = port
        self.reason = reason
        super().__init__(
            f"Unable to reach local target {host}:{port} ({reason}). "
            "Ensure your local app is running."
        )


class BindFailure(TunnelProxyError):
    """Raised when the reverse proxy listener cannot bind."""

    stage = "proxy"

    def __init__(self, host: str, port: int, cause: BaseException):
        self.host = host
        self.port = port
        self.cause = cause
        super().__init__(f"Failed to start proxy listener on {host}:{port}: {cause}")


class RelayFailure(TunnelProxyError):
    """Raised when the tunneling relay cannot provide a public endpoint."""

    stage = "tunnel"

    def __init__(
        self,
        local_port: int,
        reason: str,
        cause: BaseException | None = None,
    ):
        self.local_port = local_port
        self.reason = reason
        self.cause = cause
        super().__init__(f"Failed to start ngrok tunnel: {reason}")


class ForwardingFailure(TunnelProxyError):
    """Describes a single request that could not be forwarded to the target."""

    stage = "forward"

    def __init__(self, method: str, path: str, target: str, cause: BaseException):
        self.method = method
        self.path = path
        self.target = target
        self.cause = cause
        detail = str(cause) or type(cause).__name__
        super().__init__(f"Error forwarding {method} {path} to {target}: {detail}")


class TeardownFailure(TunnelProxyError):
    """Raised when releasing a resource during shutdown fails."""

    stage = "teardown"

    def __init__(self, resource: str, causes: Sequence[BaseException]):
        self.resource = resource
        self.causes = list(causes)
        details = "; ".join(str(c) or type(c).__name__ for c in self.causes)
        super().__init__(f"Failed to stop {resource} cleanly: {details}")
