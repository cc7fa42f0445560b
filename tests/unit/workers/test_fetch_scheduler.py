"""
Unit tests for FetchScheduler.

The vendor API is replaced by an AsyncMock on the Dejong adapter.
"""
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest

from hub_worker.polling import FetchScheduler
from machinehub.domain.entities import DeliveryStatus
from machinehub.domain.exceptions import SupplierFetchException
from machinehub.suppliers import DejongAdapter, SupplierRegistry

from tests.factories import TelemetryRecordFactory

NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def dejong(registry):
    adapter = registry.resolve("dejong")
    adapter.fetch_since = AsyncMock(return_value=[])
    return adapter


@pytest.fixture
def scheduler(registry, mock_queue, telemetry_scope, fetch_log_scope, test_settings):
    return FetchScheduler(
        registry,
        mock_queue,
        telemetry_scope=telemetry_scope,
        fetch_log_scope=fetch_log_scope,
        settings=test_settings,
        clock=lambda: NOW,
    )


def dejong_record(event_id):
    return TelemetryRecordFactory(supplier="dejong", event_id=event_id, type="Consumption")


class TestFetchCycle:
    """Test the fetch loop body."""

    @pytest.mark.asyncio
    async def test_first_fetch_uses_lookback(self, scheduler, dejong, fetch_log_repository):
        dejong.fetch_since.return_value = [dejong_record("9001")]

        count = await scheduler.fetch_resource(dejong, "consumptions")

        assert count == 1
        dejong.fetch_since.assert_awaited_once_with(
            "consumptions", NOW - timedelta(minutes=60), NOW
        )
        watermark = await fetch_log_repository.get_watermark("dejong", "consumptions")
        assert watermark.last_fetched_at == NOW
        assert watermark.last_item_count == 1

    @pytest.mark.asyncio
    async def test_window_starts_after_watermark(self, scheduler, dejong, fetch_log_repository):
        last = NOW - timedelta(minutes=5)
        await fetch_log_repository.advance("dejong", "events", last, 3)

        await scheduler.fetch_resource(dejong, "events")

        dejong.fetch_since.assert_awaited_once_with("events", last + timedelta(seconds=1), NOW)

    @pytest.mark.asyncio
    async def test_fetched_records_are_pending(self, scheduler, dejong, telemetry_repository):
        dejong.fetch_since.return_value = [dejong_record("9001"), dejong_record("9002")]

        await scheduler.fetch_resource(dejong, "consumptions")

        stored = await telemetry_repository.list_pending("dejong")
        assert sorted(r.event_id for r in stored) == ["9001", "9002"]

    @pytest.mark.asyncio
    async def test_failed_resource_keeps_watermark(self, scheduler, dejong, fetch_log_repository):
        async def fetch(resource, start, end):
            if resource == "consumptions":
                raise SupplierFetchException("dejong", resource, "HTTP 503", status=503)
            return [dejong_record("evt-1")]

        dejong.fetch_since.side_effect = fetch

        results = await scheduler.run_fetch_cycle()

        assert results == {"dejong/events": 1}
        assert await fetch_log_repository.get_watermark("dejong", "consumptions") is None
        assert (await fetch_log_repository.get_watermark("dejong", "events")).last_fetched_at == NOW
        assert scheduler.get_stats()["fetch_errors"] == 1

    @pytest.mark.asyncio
    async def test_unexpected_error_is_isolated(self, scheduler, dejong):
        dejong.fetch_since.side_effect = [ValueError("bad page"), [dejong_record("evt-2")]]

        results = await scheduler.run_fetch_cycle()

        assert results == {"dejong/events": 1}

    @pytest.mark.asyncio
    async def test_webhook_suppliers_are_not_polled(self, scheduler, dejong):
        results = await scheduler.run_fetch_cycle()

        assert set(results) == {"dejong/consumptions", "dejong/events"}


class TestForwardSweep:
    """Test the forwarding sweep."""

    @pytest.mark.asyncio
    async def test_fan_out_to_every_tenant(self, scheduler, mock_queue, telemetry_repository):
        await telemetry_repository.upsert_pending(dejong_record("9001"))
        await telemetry_repository.upsert_pending(dejong_record("9002"))

        results = await scheduler.run_forward_sweep()

        assert results == {"dejong": 4}
        assert sorted((t.event_id, t.tenant) for t in mock_queue.enqueued) == [
            ("9001", "acme"), ("9001", "globex"),
            ("9002", "acme"), ("9002", "globex"),
        ]
        for event_id in ("9001", "9002"):
            record = await telemetry_repository.get("dejong", event_id)
            assert record.status == DeliveryStatus.PROCESSING

    @pytest.mark.asyncio
    async def test_swept_records_are_not_enqueued_again(self, scheduler, mock_queue, telemetry_repository):
        await telemetry_repository.upsert_pending(dejong_record("9001"))

        await scheduler.run_forward_sweep()
        results = await scheduler.run_forward_sweep()

        assert results == {"dejong": 0}
        assert len(mock_queue.enqueued) == 2

    @pytest.mark.asyncio
    async def test_webhook_records_are_left_alone(self, scheduler, mock_queue, telemetry_repository):
        await telemetry_repository.upsert_pending(TelemetryRecordFactory(supplier="wmf", event_id="e1"))

        await scheduler.run_forward_sweep()

        assert mock_queue.enqueued == []
        assert (await telemetry_repository.get("wmf", "e1")).status == DeliveryStatus.PENDING

    @pytest.mark.asyncio
    async def test_no_tenants_configured(
        self, dejong_config, mock_queue, telemetry_scope, fetch_log_scope, telemetry_repository, test_settings
    ):
        registry = SupplierRegistry([DejongAdapter(replace(dejong_config, tenants={}))])
        scheduler = FetchScheduler(
            registry,
            mock_queue,
            telemetry_scope=telemetry_scope,
            fetch_log_scope=fetch_log_scope,
            settings=test_settings,
        )
        await telemetry_repository.upsert_pending(dejong_record("9001"))

        assert await scheduler.run_forward_sweep() == {"dejong": 0}
        assert (await telemetry_repository.get("dejong", "9001")).status == DeliveryStatus.PENDING


class TestSchedulerLifecycle:
    @pytest.mark.asyncio
    async def test_start_and_stop(self, scheduler, dejong):
        await scheduler.start()
        assert scheduler.is_running is True

        await scheduler.stop()
        assert scheduler.is_running is False
        assert scheduler.get_stats()["running"] is False
