"""Fan-out of tunnel status transitions to registered sinks."""

from collections.abc import Callable

from ..common.logging import get_logger
from .interfaces import StatusSink
from .models import TunnelStatus

logger = get_logger(__name__)


class StatusBroadcaster:
    """Observer registry for tunnel status events.

    Only transitions are delivered: publishing the current status again is
    ignored. A sink that raises is logged and skipped; it never affects the
    other sinks or the caller.
    """

    def __init__(self) -> None:
        self._sinks: list[StatusSink] = []
        self._current: TunnelStatus | None = None

    @property
    def current(self) -> TunnelStatus | None:
        return self._current

    def subscribe(self, sink: StatusSink) -> Callable[[], None]:
        """Register a sink and return a function that removes it."""
        self._sinks.append(sink)

        def unsubscribe() -> None:
            if sink in self._sinks:
                self._sinks.remove(sink)

        return unsubscribe

    def publish(self, status: TunnelStatus) -> None:
        if status == self._current:
            return
        self._current = status
        logger.debug("Tunnel status changed", status=status.value)
        for sink in list(self._sinks):
            try:
                sink(status)
            except Exception as e:
                logger.warning(
                    "Tunnel status sink failed", status=status.value, error=str(e)
                )

    def __len__(self) -> int:
        return len(self._sinks)
