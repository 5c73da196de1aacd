"""
Unit tests for the user access coordinator.
"""

import asyncio

import pytest
from unittest.mock import patch
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import SimpleSpanProcessor
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter
from opentelemetry.trace import StatusCode

import sys
import os
sys.path.append(os.path.join(os.path.dirname(__file__), '..', '..'))

from shared.errors import InternalError, NotFoundError, ValidationError
from shared.metrics import MetricsCollector
from service_users.app.coordinator import UserAccessCoordinator


class TestFetch:
    """Read-through behaviour of fetch."""

    @pytest.fixture
    def coordinator(self, cache, store):
        return UserAccessCoordinator(cache, store)

    @pytest.mark.asyncio
    async def test_cache_hit_skips_store(self, coordinator, cache, store, alice):
        """A cached user is returned without touching the store."""
        cache.entries[alice.user_id] = alice

        result = await coordinator.fetch(alice.user_id)

        assert result == alice
        assert store.get_calls == []
        assert cache.set_calls == []

    @pytest.mark.asyncio
    async def test_cache_miss_reads_store_and_populates_cache(self, coordinator, cache, store, alice):
        """A miss falls through to the store and writes the row back once."""
        store.rows[alice.user_id] = alice

        result = await coordinator.fetch(alice.user_id)

        assert result == alice
        assert store.get_calls == [alice.user_id]
        assert cache.set_calls == [(alice, None)]
        assert cache.entries[alice.user_id] == alice

    @pytest.mark.asyncio
    async def test_unreachable_cache_behaves_like_miss(self, coordinator, cache, store, alice):
        """Cache errors never fail a read the store can answer."""
        store.rows[alice.user_id] = alice
        cache.unreachable = True

        result = await coordinator.fetch(alice.user_id)

        assert result == alice
        assert cache.get_calls == [alice.user_id]
        assert store.get_calls == [alice.user_id]
        # Population was still attempted, and its failure swallowed
        assert len(cache.set_calls) == 1

    @pytest.mark.asyncio
    async def test_cache_write_failure_after_store_read_is_ignored(self, coordinator, cache, store, alice):
        store.rows[alice.user_id] = alice
        cache.fail_writes = True

        result = await coordinator.fetch(alice.user_id)

        assert result == alice

    @pytest.mark.asyncio
    async def test_missing_everywhere_raises_not_found(self, coordinator, cache, store):
        """Absent users raise NotFound and neither backend is mutated."""
        with pytest.raises(NotFoundError) as exc_info:
            await coordinator.fetch("ghost")

        assert exc_info.value.identity == "ghost"
        assert exc_info.value.code == "NOT_FOUND"
        assert cache.set_calls == []
        assert cache.entries == {}
        assert store.create_calls == []
        assert store.rows == {}

    @pytest.mark.asyncio
    async def test_store_failure_raises_internal(self, coordinator, cache, store):
        """Store failures are not mistaken for a missing user."""
        store.unavailable = True

        with pytest.raises(InternalError) as exc_info:
            await coordinator.fetch("user-123")

        assert not isinstance(exc_info.value, NotFoundError)
        assert cache.set_calls == []

    @pytest.mark.asyncio
    async def test_unexpected_store_exception_is_wrapped(self, cache, alice):
        class BrokenStore:
            async def get_user(self, user_id):
                raise RuntimeError("driver exploded")

            async def create_user(self, name, email):
                raise RuntimeError("driver exploded")

        coordinator = UserAccessCoordinator(cache, BrokenStore())

        with pytest.raises(InternalError) as exc_info:
            await coordinator.fetch(alice.user_id)

        assert exc_info.value.code == "INTERNAL_ERROR"
        assert isinstance(exc_info.value.__cause__, RuntimeError)

    @pytest.mark.asyncio
    async def test_fetch_is_idempotent(self, coordinator, store, alice):
        store.rows[alice.user_id] = alice

        first = await coordinator.fetch(alice.user_id)
        second = await coordinator.fetch(alice.user_id)

        assert first == second == alice
        # The second read is served from the cache
        assert store.get_calls == [alice.user_id]

    @pytest.mark.asyncio
    async def test_empty_id_rejected(self, coordinator, cache, store):
        with pytest.raises(ValidationError):
            await coordinator.fetch("")

        assert cache.get_calls == []
        assert store.get_calls == []


class TestCreate:
    """Write-through behaviour of create."""

    @pytest.mark.asyncio
    async def test_create_then_fetch_served_from_cache(self, cache, store):
        coordinator = UserAccessCoordinator(cache, store)

        created = await coordinator.create("A", "a@x.com")
        fetched = await coordinator.fetch(created.user_id)

        assert created.user_id
        assert (fetched.user_id, fetched.name, fetched.email) == (created.user_id, "A", "a@x.com")
        assert store.get_calls == []

    @pytest.mark.asyncio
    async def test_cache_failure_keeps_row_but_reports_internal(self, cache, store):
        """The durable insert survives a failed cache mirror, yet the caller sees an error."""
        coordinator = UserAccessCoordinator(cache, store)
        cache.unreachable = True

        with pytest.raises(InternalError) as exc_info:
            await coordinator.create("A", "a@x.com")

        assert len(store.rows) == 1
        (row,) = store.rows.values()
        assert (row.name, row.email) == ("A", "a@x.com")
        assert exc_info.value.details["user_id"] == row.user_id
        assert exc_info.value.details["persisted"] is True

    @pytest.mark.asyncio
    async def test_lenient_cache_writes_return_the_user(self, cache, store):
        coordinator = UserAccessCoordinator(cache, store, strict_cache_writes=False)
        cache.unreachable = True

        created = await coordinator.create("A", "a@x.com")

        assert store.rows[created.user_id] == created

    @pytest.mark.asyncio
    async def test_store_failure_leaves_cache_untouched(self, cache, store):
        coordinator = UserAccessCoordinator(cache, store)
        store.unavailable = True

        with pytest.raises(InternalError):
            await coordinator.create("A", "a@x.com")

        assert cache.set_calls == []

    @pytest.mark.asyncio
    async def test_create_is_not_idempotent(self, cache, store):
        coordinator = UserAccessCoordinator(cache, store)

        first = await coordinator.create("A", "a@x.com")
        second = await coordinator.create("A", "a@x.com")

        assert first.user_id != second.user_id
        assert len(store.rows) == 2

    @pytest.mark.asyncio
    @pytest.mark.parametrize("name,email", [("", "a@x.com"), ("A", ""), ("   ", "a@x.com")])
    async def test_incomplete_input_never_reaches_store(self, cache, store, name, email):
        coordinator = UserAccessCoordinator(cache, store)

        with pytest.raises(ValidationError):
            await coordinator.create(name, email)

        assert store.create_calls == []


class TestDeadlines:
    """Timeouts and cancellation."""

    @pytest.mark.asyncio
    async def test_slow_store_hits_deadline(self, cache, store, alice):
        coordinator = UserAccessCoordinator(cache, store)
        store.rows[alice.user_id] = alice
        store.get_delay = 1.0

        with pytest.raises(InternalError) as exc_info:
            await coordinator.fetch(alice.user_id, timeout=0.05)

        assert exc_info.value.code == "DEADLINE_EXCEEDED"
        assert cache.set_calls == []

    @pytest.mark.asyncio
    async def test_per_call_timeout_bounds_store(self, cache, store, alice):
        coordinator = UserAccessCoordinator(cache, store, call_timeout=0.05)
        store.rows[alice.user_id] = alice
        store.get_delay = 1.0

        with pytest.raises(InternalError) as exc_info:
            await coordinator.fetch(alice.user_id)

        assert exc_info.value.code == "DEADLINE_EXCEEDED"

    @pytest.mark.asyncio
    async def test_no_store_call_after_deadline_spent_on_cache(self, cache, store, alice):
        coordinator = UserAccessCoordinator(cache, store)
        store.rows[alice.user_id] = alice
        cache.get_delay = 1.0

        with pytest.raises(InternalError) as exc_info:
            await coordinator.fetch(alice.user_id, timeout=0.05)

        assert exc_info.value.code == "DEADLINE_EXCEEDED"
        assert store.get_calls == []

    @pytest.mark.asyncio
    async def test_cancellation_propagates_to_store_call(self, cache, store, alice):
        coordinator = UserAccessCoordinator(cache, store)
        store.rows[alice.user_id] = alice
        store.get_delay = 10.0

        task = asyncio.create_task(coordinator.fetch(alice.user_id))
        await asyncio.sleep(0.05)
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task

        assert store.cancelled is True
        assert cache.set_calls == []


class TestMetrics:
    """Coordinator metrics."""

    @pytest.mark.asyncio
    async def test_lookup_outcomes_are_counted(self, cache, store, alice):
        metrics = MetricsCollector("users")
        coordinator = UserAccessCoordinator(cache, store, metrics=metrics)
        store.rows[alice.user_id] = alice

        await coordinator.fetch(alice.user_id)
        await coordinator.fetch(alice.user_id)

        assert metrics.get_sample_value("cache_lookups_total", {"result": "miss"}) == 1.0
        assert metrics.get_sample_value("cache_lookups_total", {"result": "hit"}) == 1.0
        assert metrics.get_sample_value(
            "store_operations_total", {"operation": "get", "status": "ok"}
        ) == 1.0
        assert metrics.get_sample_value(
            "cache_writes_total", {"operation": "fetch", "status": "ok"}
        ) == 1.0

    @pytest.mark.asyncio
    async def test_cache_errors_are_counted(self, cache, store, alice):
        metrics = MetricsCollector("users")
        coordinator = UserAccessCoordinator(cache, store, metrics=metrics)
        store.rows[alice.user_id] = alice
        cache.unreachable = True

        await coordinator.fetch(alice.user_id)

        assert metrics.get_sample_value("cache_lookups_total", {"result": "error"}) == 1.0
        assert metrics.get_sample_value(
            "cache_writes_total", {"operation": "fetch", "status": "error"}
        ) == 1.0


class TestTracing:
    """Coordinator spans and span events."""

    @pytest.fixture
    def spans(self):
        exporter = InMemorySpanExporter()
        provider = TracerProvider()
        provider.add_span_processor(SimpleSpanProcessor(exporter))
        with patch("shared.tracing.get_tracer", side_effect=provider.get_tracer):
            yield exporter

    @pytest.mark.asyncio
    async def test_fetch_runs_in_a_span(self, spans, cache, store, alice):
        store.rows[alice.user_id] = alice

        await UserAccessCoordinator(cache, store).fetch(alice.user_id)

        (span,) = spans.get_finished_spans()
        assert span.name == "users.fetch"
        assert span.attributes["user_id"] == alice.user_id
        assert span.status.status_code == StatusCode.UNSET
        assert span.events == ()

    @pytest.mark.asyncio
    async def test_cache_fallback_is_recorded_as_event(self, spans, cache, store, alice):
        store.rows[alice.user_id] = alice
        cache.unreachable = True

        await UserAccessCoordinator(cache, store).fetch(alice.user_id)

        (span,) = spans.get_finished_spans()
        assert [event.name for event in span.events] == ["cache_fallback"]
        assert span.events[0].attributes["user_id"] == alice.user_id
        assert "TransientBackendError" in span.events[0].attributes["error"]

    @pytest.mark.asyncio
    async def test_not_found_marks_span_as_error(self, spans, cache, store):
        with pytest.raises(NotFoundError):
            await UserAccessCoordinator(cache, store).fetch("ghost")

        (span,) = spans.get_finished_spans()
        assert span.name == "users.fetch"
        assert span.status.status_code == StatusCode.ERROR

    @pytest.mark.asyncio
    async def test_create_runs_in_a_span(self, spans, cache, store):
        await UserAccessCoordinator(cache, store).create("Alice", "alice@example.com")

        (span,) = spans.get_finished_spans()
        assert span.name == "users.create"
        assert span.status.status_code == StatusCode.UNSET
