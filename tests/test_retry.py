"""Tests for transient-failure retry."""

import asyncio
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError

from linkpulse.core.retry import backoff_delay, is_transient, retry_store_call, retry_transient
from linkpulse.errors import NotFound, TransientStoreError


def _op_error() -> OperationalError:
    return OperationalError("SELECT 1", {}, Exception("connection reset"))


class TestIsTransient:
    @pytest.mark.parametrize("exc", [
        _op_error(),
        asyncio.TimeoutError(),
        TransientStoreError("down"),
        DBAPIError("SELECT 1", {}, Exception("gone"), connection_invalidated=True),
    ])
    def test_transient(self, exc):
        assert is_transient(exc) is True

    @pytest.mark.parametrize("exc", [
        IntegrityError("INSERT", {}, Exception("duplicate key")),
        NotFound("nope"),
        ValueError("bad"),
    ])
    def test_not_transient(self, exc):
        assert is_transient(exc) is False


class TestBackoffDelay:
    def test_grows_and_is_capped(self):
        for attempt in range(1, 6):
            ceiling = 0.1 * 2 ** (attempt - 1)
            assert ceiling / 2 <= backoff_delay(attempt, 0.1) <= ceiling
        assert backoff_delay(30, 1.0) <= 5.0


class TestRetryTransient:
    def test_succeeds_after_transient_failures(self):
        op = AsyncMock(side_effect=[_op_error(), _op_error(), "ok"])
        result = asyncio.run(retry_transient(op, attempts=3, base_delay=0.001))
        assert result == "ok"
        assert op.await_count == 3

    def test_gives_up_as_transient_store_error(self):
        op = AsyncMock(side_effect=_op_error())
        with pytest.raises(TransientStoreError):
            asyncio.run(retry_transient(op, attempts=3, base_delay=0.001))
        assert op.await_count == 3

    def test_non_transient_propagates_immediately(self):
        op = AsyncMock(side_effect=NotFound("gone"))
        with pytest.raises(NotFound):
            asyncio.run(retry_transient(op, attempts=5, base_delay=0.001))
        assert op.await_count == 1


class TestRetryStoreCall:
    def test_rolls_back_between_attempts(self):
        db = AsyncMock()
        op = AsyncMock(side_effect=[_op_error(), 42])
        assert asyncio.run(retry_store_call(db, op)) == 42
        db.rollback.assert_awaited_once()

    def test_uses_configured_attempts(self, monkeypatch):
        from linkpulse.config import get_settings

        monkeypatch.setattr(get_settings(), "store_retry_attempts", 2)
        db = AsyncMock()
        op = AsyncMock(side_effect=_op_error())
        with patch("linkpulse.core.retry.asyncio.sleep", AsyncMock()):
            with pytest.raises(TransientStoreError):
                asyncio.run(retry_store_call(db, op))
        assert op.await_count == 2
