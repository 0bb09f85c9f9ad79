"""Unit tests for loam/core/correlation.py."""

import asyncio
import uuid
from typing import Any

import pytest
from loguru import logger

from loam.core.correlation import correlation_scope, current_correlation_id, new_correlation_id


@pytest.mark.unit
class TestCorrelationScope:
    """Test binding correlation IDs to a block."""

    def test_outside_any_scope(self) -> None:
        """Test that no ID is bound by default."""
        assert current_correlation_id() is None

    def test_given_id_is_bound(self) -> None:
        """Test that the given ID is readable inside the scope only."""
        with correlation_scope("abc") as correlation_id:
            assert correlation_id == "abc"
            assert current_correlation_id() == "abc"

        assert current_correlation_id() is None

    @pytest.mark.parametrize("given", [None, ""])
    def test_missing_id_is_generated(self, given: str | None) -> None:
        """Test that a scope without an ID generates one."""
        with correlation_scope(given) as correlation_id:
            assert uuid.UUID(correlation_id).version == 4
            assert current_correlation_id() == correlation_id

    def test_nested_scopes_restore(self) -> None:
        """Test that leaving an inner scope restores the outer ID."""
        with correlation_scope("outer"):
            with correlation_scope("inner"):
                assert current_correlation_id() == "inner"
            assert current_correlation_id() == "outer"

    def test_reset_on_error(self) -> None:
        """Test that the ID is unbound when the block raises."""
        with pytest.raises(RuntimeError), correlation_scope("abc"):
            raise RuntimeError("boom")

        assert current_correlation_id() is None

    def test_log_records_carry_id(self, log_records: list[dict[str, Any]]) -> None:
        """Test that records logged inside the scope carry the ID."""
        with correlation_scope("abc"):
            logger.info("inside")
        logger.info("outside")

        assert log_records[0]["extra"]["correlation_id"] == "abc"
        assert "correlation_id" not in log_records[1]["extra"]

    async def test_tasks_are_isolated(self) -> None:
        """Test that concurrent tasks each see their own ID."""

        async def serve(correlation_id: str) -> str | None:
            with correlation_scope(correlation_id):
                await asyncio.sleep(0)
                return current_correlation_id()

        results = await asyncio.gather(serve("one"), serve("two"), serve("three"))

        assert results == ["one", "two", "three"]
        assert current_correlation_id() is None


@pytest.mark.unit
class TestNewCorrelationId:
    """Test correlation ID generation."""

    def test_is_uuid4(self) -> None:
        """Test that IDs are version 4 UUIDs."""
        assert uuid.UUID(new_correlation_id()).version == 4

    def test_unique(self) -> None:
        """Test that generated IDs do not repeat."""
        assert len({new_correlation_id() for _ in range(100)}) == 100
