"""Unit tests for loam/health.py."""

import threading

import pytest

from loam.health import AndMonitor, Binary, Monitor, OrMonitor


class Failing:
    def __init__(self, message: str = "probe failed") -> None:
        self.message = message

    async def healthy(self) -> bool:
        raise RuntimeError(self.message)


class Counting:
    def __init__(self, result: bool) -> None:
        self.result = result
        self.calls = 0

    async def healthy(self) -> bool:
        self.calls += 1
        return self.result


@pytest.mark.unit
class TestBinary:
    """Test the health flag."""

    async def test_healthy_by_default(self) -> None:
        """Test that a new flag reports healthy."""
        assert await Binary().healthy() is True
        assert await Binary(healthy=False).healthy() is False

    async def test_toggle(self) -> None:
        """Test flipping the flag both ways."""
        monitor = Binary()

        monitor.mark_unhealthy()
        assert await monitor.healthy() is False

        monitor.mark_healthy()
        assert await monitor.healthy() is True

    async def test_flip_from_thread(self) -> None:
        """Test that another thread can flip the flag."""
        monitor = Binary()

        thread = threading.Thread(target=monitor.mark_unhealthy)
        thread.start()
        thread.join()

        assert await monitor.healthy() is False

    def test_is_monitor(self) -> None:
        """Test that the flag satisfies the monitor protocol."""
        assert isinstance(Binary(), Monitor)


@pytest.mark.unit
class TestAndMonitor:
    """Test requiring every monitor to be healthy."""

    async def test_all_healthy(self) -> None:
        """Test that all healthy monitors are healthy together."""
        assert await AndMonitor(Binary(), Binary()).healthy() is True

    async def test_stops_at_first_unhealthy(self) -> None:
        """Test that checking ends at the first unhealthy monitor."""
        last = Counting(True)

        assert await AndMonitor(Binary(), Counting(False), last).healthy() is False
        assert last.calls == 0

    async def test_error_propagates(self) -> None:
        """Test that a failing monitor raises out of the check."""
        with pytest.raises(RuntimeError, match="probe failed"):
            await AndMonitor(Binary(), Failing()).healthy()

    async def test_empty_is_healthy(self) -> None:
        """Test that no monitors means healthy."""
        assert await AndMonitor().healthy() is True


@pytest.mark.unit
class TestOrMonitor:
    """Test requiring one healthy monitor."""

    async def test_one_healthy(self) -> None:
        """Test that one healthy monitor is enough, even after errors."""
        assert await OrMonitor(Failing(), Binary(healthy=False), Binary()).healthy() is True

    async def test_stops_at_first_healthy(self) -> None:
        """Test that checking ends at the first healthy monitor."""
        last = Counting(False)

        assert await OrMonitor(Binary(), last).healthy() is True
        assert last.calls == 0

    async def test_none_healthy(self) -> None:
        """Test that all unhealthy monitors are unhealthy."""
        assert await OrMonitor(Binary(healthy=False), Counting(False)).healthy() is False

    async def test_errors_grouped(self) -> None:
        """Test that errors are raised together when nothing is healthy."""
        with pytest.raises(ExceptionGroup) as exc_info:
            await OrMonitor(Failing("a"), Binary(healthy=False), Failing("b")).healthy()

        assert [str(e) for e in exc_info.value.exceptions] == ["a", "b"]
