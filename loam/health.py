"""Health monitors backing the readiness and liveness endpoints.

Key components:
- **Monitor**: Anything with an ``async healthy() -> bool`` method. A monitor
  may also raise, which the health endpoints report as unhealthy
- **Binary**: A flag flipped by the application, e.g. unhealthy until a cache
  is warm or once shutdown has begun
- **AndMonitor / OrMonitor**: Combine monitors
"""

import threading
from typing import Protocol, runtime_checkable


@runtime_checkable
class Monitor(Protocol):
    """Reports whether a part of the service is healthy."""

    async def healthy(self) -> bool:
        """Return the current health; raise when it cannot be determined."""
        ...


class Binary:
    """A health flag, healthy until marked otherwise.

    Safe to flip from any thread.
    """

    def __init__(self, healthy: bool = True) -> None:
        self._healthy = threading.Event()
        if healthy:
            self._healthy.set()

    def mark_healthy(self) -> None:
        """Report healthy from now on."""
        self._healthy.set()

    def mark_unhealthy(self) -> None:
        """Report unhealthy from now on."""
        self._healthy.clear()

    async def healthy(self) -> bool:
        """Return the current state of the flag."""
        return self._healthy.is_set()


class AndMonitor:
    """Healthy when every monitor is healthy.

    Monitors are checked in order; the first unhealthy one or the first error
    ends the check.
    """

    def __init__(self, *monitors: Monitor) -> None:
        self.monitors = monitors

    async def healthy(self) -> bool:
        """Check the monitors in order."""
        for monitor in self.monitors:
            if not await monitor.healthy():
                return False
        return True


class OrMonitor:
    """Healthy when at least one monitor is healthy.

    Raises:
        ExceptionGroup: From ``healthy`` when no monitor is healthy and at
            least one of them raised.
    """

    def __init__(self, *monitors: Monitor) -> None:
        self.monitors = monitors

    async def healthy(self) -> bool:
        """Check the monitors until one is healthy."""
        errors: list[Exception] = []
        for monitor in self.monitors:
            try:
                if await monitor.healthy():
                    return True
            except Exception as exc:  # noqa: BLE001 - collected and re-raised as a group
                errors.append(exc)
        if errors:
            raise ExceptionGroup("no monitor is healthy", errors)
        return False
