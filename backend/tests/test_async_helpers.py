"""
Tests for the async_helpers module.

Tests cover:
- run_async: Basic coroutine execution, exception propagation, cleanup
- run_async_with_db: Database session handling
- Engine disposal across event loops

Run with: pytest backend/tests/test_async_helpers.py -v
"""
import asyncio
import pytest
from unittest.mock import patch, AsyncMock


# Common patch targets - these are where the imports happen
ENGINE_PATCH = 'stackgo.core.database.engine'
SESSION_MAKER_PATCH = 'stackgo.core.database.async_session_maker'


class TestRunAsync:
    """Tests for run_async function."""

    def test_run_async_executes_coroutine(self):
        """Test that run_async executes a coroutine and returns its result."""
        from stackgo.core.async_helpers import run_async

        async def simple_coro():
            return "hello"

        with patch(ENGINE_PATCH) as mock_engine:
            mock_engine.dispose = AsyncMock()
            result = run_async(simple_coro())

        assert result == "hello"

    def test_run_async_propagates_exceptions(self):
        """Test that exceptions from coroutines are propagated."""
        from stackgo.core.async_helpers import run_async

        async def failing_coro():
            raise ValueError("Test error")

        with patch(ENGINE_PATCH) as mock_engine:
            mock_engine.dispose = AsyncMock()
            with pytest.raises(ValueError) as exc_info:
                run_async(failing_coro())

        assert "Test error" in str(exc_info.value)

    def test_run_async_disposes_engine(self):
        """Test that run_async disposes the database engine."""
        from stackgo.core.async_helpers import run_async

        async def simple_coro():
            return True

        with patch(ENGINE_PATCH) as mock_engine:
            mock_engine.dispose = AsyncMock()
            run_async(simple_coro())
            mock_engine.dispose.assert_called_once()

    def test_closed_loop_error_is_suppressed(self):
        """Pooled connections from a dead loop must not break the next task."""
        from stackgo.core.async_helpers import run_async

        async def simple_coro():
            return "ran"

        with patch(ENGINE_PATCH) as mock_engine:
            mock_engine.dispose = AsyncMock(side_effect=RuntimeError("Event loop is closed"))
            result = run_async(simple_coro())

        assert result == "ran"

    def test_other_dispose_errors_propagate(self):
        from stackgo.core.async_helpers import run_async

        async def simple_coro():
            return "ran"

        coro = simple_coro()
        with patch(ENGINE_PATCH) as mock_engine:
            mock_engine.dispose = AsyncMock(side_effect=RuntimeError("pool exploded"))
            with pytest.raises(RuntimeError):
                run_async(coro)
        coro.close()

    def test_run_async_with_async_generator_cleanup(self):
        """Test that async generators are properly cleaned up."""
        from stackgo.core.async_helpers import run_async

        cleanup_called = []

        async def coro_with_generator():
            async def gen():
                try:
                    yield 1
                    yield 2
                finally:
                    cleanup_called.append(True)

            async for _ in gen():
                break  # Exit early to test cleanup
            return "done"

        with patch(ENGINE_PATCH) as mock_engine:
            mock_engine.dispose = AsyncMock()
            result = run_async(coro_with_generator())

        assert result == "done"
        assert len(cleanup_called) == 1

    def test_run_async_can_be_called_multiple_times(self):
        """Test that run_async can be called multiple times sequentially."""
        from stackgo.core.async_helpers import run_async

        async def counter(n):
            await asyncio.sleep(0)
            return n

        with patch(ENGINE_PATCH) as mock_engine:
            mock_engine.dispose = AsyncMock()
            results = [run_async(counter(i)) for i in range(3)]

        assert results == [0, 1, 2]
        assert mock_engine.dispose.call_count == 3


class TestRunAsyncWithDb:
    """Tests for run_async_with_db function."""

    def _patch_session(self, mock_session_maker, mock_session):
        mock_session_maker.return_value.__aenter__ = AsyncMock(return_value=mock_session)
        mock_session_maker.return_value.__aexit__ = AsyncMock(return_value=None)

    def test_run_async_with_db_provides_session(self):
        """Test that run_async_with_db provides a database session."""
        from stackgo.core.async_helpers import run_async_with_db

        session_received = []

        async def db_operation(db):
            session_received.append(db)
            return "done"

        with patch(ENGINE_PATCH) as mock_engine, \
             patch(SESSION_MAKER_PATCH) as mock_session_maker:
            mock_engine.dispose = AsyncMock()
            mock_session = AsyncMock()
            self._patch_session(mock_session_maker, mock_session)

            result = run_async_with_db(db_operation)

        assert result == "done"
        assert session_received == [mock_session]

    def test_run_async_with_db_commits_when_requested(self):
        """Test that run_async_with_db commits session when commit=True."""
        from stackgo.core.async_helpers import run_async_with_db

        async def db_operation(db):
            return "committed"

        with patch(ENGINE_PATCH) as mock_engine, \
             patch(SESSION_MAKER_PATCH) as mock_session_maker:
            mock_engine.dispose = AsyncMock()
            mock_session = AsyncMock()
            self._patch_session(mock_session_maker, mock_session)

            run_async_with_db(db_operation, commit=True)

        mock_session.commit.assert_called_once()

    def test_run_async_with_db_no_commit_by_default(self):
        """Test that run_async_with_db doesn't commit by default."""
        from stackgo.core.async_helpers import run_async_with_db

        async def db_operation(db):
            return "not committed"

        with patch(ENGINE_PATCH) as mock_engine, \
             patch(SESSION_MAKER_PATCH) as mock_session_maker:
            mock_engine.dispose = AsyncMock()
            mock_session = AsyncMock()
            self._patch_session(mock_session_maker, mock_session)

            run_async_with_db(db_operation)

        mock_session.commit.assert_not_called()

    def test_run_async_with_db_propagates_exceptions(self):
        """Test that exceptions from db operations are propagated."""
        from stackgo.core.async_helpers import run_async_with_db

        async def failing_db_operation(db):
            raise ValueError("DB operation failed")

        with patch(ENGINE_PATCH) as mock_engine, \
             patch(SESSION_MAKER_PATCH) as mock_session_maker:
            mock_engine.dispose = AsyncMock()
            self._patch_session(mock_session_maker, AsyncMock())

            with pytest.raises(ValueError) as exc_info:
                run_async_with_db(failing_db_operation)

        assert "DB operation failed" in str(exc_info.value)
