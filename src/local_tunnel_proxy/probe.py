"""Reachability probe used as a startup precondition."""

import asyncio
from dataclasses import dataclass

from .common.exceptions import PreconditionFailure
from .common.logging import get_logger
from .config import DEFAULT_PROBE_TIMEOUT, TargetAddress

logger = get_logger(__name__)

TIMEOUT_REASON = "timed out, target likely not running"


@dataclass(frozen=True)
class ProbeResult:
    """Outcome of a single probe attempt."""

    ok: bool
    reason: str | None = None

    def __bool__(self) -> bool:
        return self.ok


def _describe_error(error: OSError) -> str:
    text = str(error) or type(error).__name__
    # asyncio reports refusals as "Connect call failed"
    if isinstance(error, ConnectionRefusedError) and "refused" not in text.lower():
        return f"connection refused: {text}"
    return text


async def probe(
    host: str, port: int, timeout: float = DEFAULT_PROBE_TIMEOUT
) -> ProbeResult:
    """Attempt one TCP connection to host:port.

    Exactly one attempt is made. The connection, if any, is closed before
    returning on every branch.

    Args:
        host: Host to connect to
        port: Port to connect to
        timeout: Seconds to wait before giving up

    Returns:
        ProbeResult with ok=True on connect, otherwise the failure reason
    """
    logger.debug("Probing target", host=host, port=port, timeout=timeout)
    try:
        _, writer = await asyncio.wait_for(
            asyncio.open_connection(host, port), timeout=timeout
        )
    except asyncio.TimeoutError:
        return ProbeResult(ok=False, reason=TIMEOUT_REASON)
    except OSError as e:
        return ProbeResult(ok=False, reason=_describe_error(e))

    writer.close()
    try:
        await writer.wait_closed()
    except OSError as e:
        logger.debug("Probe connection did not close cleanly", error=str(e))
    return ProbeResult(ok=True)


async def ensure_reachable(
    target: TargetAddress, timeout: float = DEFAULT_PROBE_TIMEOUT
) -> None:
    """Raise PreconditionFailure unless target accepts a TCP connection."""
    result = await probe(target.host, target.port, timeout)
    if not result:
        logger.error(
            "Local target unreachable",
            host=target.host,
            port=target.port,
            reason=result.reason,
        )
        raise PreconditionFailure(target.host, target.port, result.reason or "unknown")
    logger.info("Local target reachable", host=target.host, port=target.port)
