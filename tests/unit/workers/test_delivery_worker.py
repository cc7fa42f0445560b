"""
Unit tests for DeliveryWorker.

Runs delivery attempts against the in-memory repository and a mocked
destination.
"""
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest
import pytest_asyncio

from hub_worker.delivery import TenantForwarder
from hub_worker.workers import DeliveryWorker
from machinehub.domain.entities import DeliveryStatus, DeliveryTask
from machinehub.infrastructure.messaging import StreamMessage

from tests.factories import TelemetryRecordFactory


class Destination:
    """Mock destination answering with a queue of status codes."""

    def __init__(self, *status_codes):
        self.status_codes = list(status_codes) or [200]
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        code = self.status_codes.pop(0) if len(self.status_codes) > 1 else self.status_codes[0]
        return httpx.Response(code, text=f"status {code}")


def make_worker(registry, queue, scope, settings, destination):
    client = httpx.AsyncClient(transport=httpx.MockTransport(destination))
    forwarder = TenantForwarder(registry, client=client, settings=settings)
    return DeliveryWorker(
        queue,
        forwarder,
        repository_scope=scope,
        settings=settings,
        consumer_name="worker-test",
    )


@pytest_asyncio.fixture
async def record(telemetry_repository):
    return await telemetry_repository.upsert_pending(
        TelemetryRecordFactory(supplier="wmf", event_id="e1", device_id="d1")
    )


def task_for(tenant="acme", attempt=1):
    return DeliveryTask(supplier="wmf", tenant=tenant, event_id="e1", attempt=attempt)


class TestProcessTask:
    """Test DeliveryWorker.process_task."""

    @pytest.mark.asyncio
    async def test_success_marks_forwarded(
        self, registry, mock_queue, telemetry_scope, telemetry_repository, test_settings, record
    ):
        destination = Destination(200)
        worker = make_worker(registry, mock_queue, telemetry_scope, test_settings, destination)

        status = await worker.process_task(task_for())

        assert status == DeliveryStatus.FORWARDED
        stored = await telemetry_repository.get("wmf", "e1")
        assert stored.status == DeliveryStatus.FORWARDED
        assert stored.forwarded_at is not None
        assert stored.attempts == 1
        assert len(destination.requests) == 1
        mock_queue.schedule_retry.assert_not_called()
        assert worker.get_stats()["forwarded"] == 1

    @pytest.mark.asyncio
    async def test_server_error_schedules_retry(
        self, registry, mock_queue, telemetry_scope, telemetry_repository, test_settings, record, caplog
    ):
        worker = make_worker(registry, mock_queue, telemetry_scope, test_settings, Destination(500))

        status = await worker.process_task(task_for())

        assert status == DeliveryStatus.ERROR
        stored = await telemetry_repository.get("wmf", "e1")
        assert stored.status == DeliveryStatus.ERROR
        assert "500" in stored.last_error

        retry_task, delay = mock_queue.schedule_retry.call_args.args
        assert retry_task.attempt == 2
        assert retry_task.tenant == "acme"
        assert delay == 30.0
        assert "transient_error:" in caplog.text

    @pytest.mark.asyncio
    async def test_client_error_fails_without_retry(
        self, registry, mock_queue, telemetry_scope, telemetry_repository, test_settings, record
    ):
        worker = make_worker(registry, mock_queue, telemetry_scope, test_settings, Destination(400))

        status = await worker.process_task(task_for())

        assert status == DeliveryStatus.FAILED
        stored = await telemetry_repository.get("wmf", "e1")
        assert stored.status == DeliveryStatus.FAILED
        assert "400" in stored.last_error
        mock_queue.schedule_retry.assert_not_called()

    @pytest.mark.asyncio
    async def test_missing_destination_fails_without_request(
        self, registry, mock_queue, telemetry_scope, telemetry_repository, test_settings, record, caplog
    ):
        destination = Destination(200)
        worker = make_worker(registry, mock_queue, telemetry_scope, test_settings, destination)

        status = await worker.process_task(task_for("initech"))

        assert status == DeliveryStatus.FAILED
        assert destination.requests == []
        assert "configuration_error:" in caplog.text
        assert worker.get_stats()["configuration_errors"] == 1
        mock_queue.schedule_retry.assert_not_called()

    @pytest.mark.asyncio
    async def test_finished_delivery_is_not_repeated(
        self, registry, mock_queue, telemetry_scope, test_settings, record
    ):
        destination = Destination(200)
        worker = make_worker(registry, mock_queue, telemetry_scope, test_settings, destination)

        assert await worker.process_task(task_for()) == DeliveryStatus.FORWARDED
        assert await worker.process_task(task_for()) is None

        assert len(destination.requests) == 1
        assert worker.get_stats()["skipped"] == 1

    @pytest.mark.asyncio
    async def test_attempt_ceiling_fails_delivery(
        self, registry, mock_queue, telemetry_scope, telemetry_repository, test_settings, record
    ):
        worker = make_worker(registry, mock_queue, telemetry_scope, test_settings, Destination(503))

        statuses = [
            await worker.process_task(task_for(attempt=attempt))
            for attempt in (1, 2, 3)
        ]

        assert statuses == [DeliveryStatus.ERROR, DeliveryStatus.ERROR, DeliveryStatus.FAILED]
        delays = [call.args[1] for call in mock_queue.schedule_retry.call_args_list]
        assert delays == [30.0, 60.0]

        stored = await telemetry_repository.get("wmf", "e1")
        assert stored.status == DeliveryStatus.FAILED
        assert stored.attempts == 3
        delivery = await telemetry_repository.get_delivery("wmf", "e1", "acme")
        assert delivery.attempts == 3

    @pytest.mark.asyncio
    async def test_recovers_after_transient_error(
        self, registry, mock_queue, telemetry_scope, telemetry_repository, test_settings, record
    ):
        worker = make_worker(registry, mock_queue, telemetry_scope, test_settings, Destination(500, 200))

        assert await worker.process_task(task_for()) == DeliveryStatus.ERROR
        assert await worker.process_task(task_for(attempt=2)) == DeliveryStatus.FORWARDED

        stored = await telemetry_repository.get("wmf", "e1")
        assert stored.status == DeliveryStatus.FORWARDED
        assert stored.attempts == 2

    @pytest.mark.asyncio
    async def test_first_terminal_tenant_sets_record_status(
        self, registry, mock_queue, telemetry_scope, telemetry_repository, test_settings, record
    ):
        worker = make_worker(registry, mock_queue, telemetry_scope, test_settings, Destination(200, 500))

        await worker.process_task(task_for("acme"))
        await worker.process_task(task_for("globex"))

        stored = await telemetry_repository.get("wmf", "e1")
        assert stored.status == DeliveryStatus.FORWARDED
        deliveries = await telemetry_repository.list_deliveries("wmf", "e1")
        assert [(d.tenant, d.status) for d in deliveries] == [
            ("acme", DeliveryStatus.FORWARDED),
            ("globex", DeliveryStatus.ERROR),
        ]

    @pytest.mark.asyncio
    async def test_unknown_record_is_skipped(
        self, registry, mock_queue, telemetry_scope, test_settings
    ):
        destination = Destination(200)
        worker = make_worker(registry, mock_queue, telemetry_scope, test_settings, destination)

        assert await worker.process_task(task_for()) is None
        assert destination.requests == []

    @pytest.mark.asyncio
    async def test_log_only_skips_http(
        self, registry, mock_queue, telemetry_scope, telemetry_repository, test_settings, record
    ):
        settings = test_settings.model_copy(update={
            "delivery": test_settings.delivery.model_copy(update={"log_only": True}),
        })
        destination = Destination(500)
        worker = make_worker(registry, mock_queue, telemetry_scope, settings, destination)

        status = await worker.process_task(task_for())

        assert status == DeliveryStatus.FORWARDED
        assert destination.requests == []
        stored = await telemetry_repository.get("wmf", "e1")
        assert stored.status == DeliveryStatus.FORWARDED

    @pytest.mark.asyncio
    async def test_unexpected_forwarder_error_is_retried(
        self, registry, mock_queue, telemetry_scope, telemetry_repository, test_settings, record
    ):
        forwarder = MagicMock(spec=TenantForwarder)
        forwarder.forward = AsyncMock(side_effect=RuntimeError("boom"))
        worker = DeliveryWorker(
            mock_queue, forwarder, repository_scope=telemetry_scope, settings=test_settings
        )

        status = await worker.process_task(task_for())

        assert status == DeliveryStatus.ERROR
        stored = await telemetry_repository.get("wmf", "e1")
        assert "boom" in stored.last_error
        mock_queue.schedule_retry.assert_awaited_once()


class TestMessageHandling:
    @pytest.mark.asyncio
    async def test_handle_message_processes_task(
        self, registry, mock_queue, telemetry_scope, telemetry_repository, test_settings, record
    ):
        worker = make_worker(registry, mock_queue, telemetry_scope, test_settings, Destination(200))
        message = StreamMessage(
            stream="test:deliveries",
            message_id="1-0",
            data=task_for().to_message(),
            enqueued_at=datetime.now(timezone.utc),
        )

        await worker._handle_message(message)

        stored = await telemetry_repository.get("wmf", "e1")
        assert stored.status == DeliveryStatus.FORWARDED

    def test_stats_before_start(self, registry, mock_queue, telemetry_scope, test_settings):
        worker = make_worker(registry, mock_queue, telemetry_scope, test_settings, Destination())

        stats = worker.get_stats()

        assert stats["running"] is False
        assert stats["tasks_processed"] == 0
        assert stats["log_only"] is False
        assert worker.is_running is False

    def test_consumer_name_from_settings(self, registry, mock_queue, test_settings):
        settings = test_settings.model_copy(update={
            "redis": test_settings.redis.model_copy(update={"consumer_name": "worker-7"}),
        })
        forwarder = TenantForwarder(registry, client=MagicMock(), settings=settings)

        DeliveryWorker(mock_queue, forwarder, settings=settings)

        mock_queue.consumer.assert_called_once_with("worker-7")
