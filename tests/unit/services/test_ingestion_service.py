"""
Unit tests for IngestionService.

Tests the webhook flow from supplier resolution to enqueued deliveries.
"""
import pytest

from machinehub.application.services import IngestionService, VerificationChain
from machinehub.application.services.ingestion_service import extract_events
from machinehub.domain.entities import DeliveryStatus
from machinehub.domain.exceptions import SupplierModeException, UnknownSupplierException
from machinehub.suppliers import InboundRequest

from tests.factories import DispensingEventFactory, SubscriptionValidationEventFactory


@pytest.fixture
def service(registry, telemetry_repository, mock_queue, mock_redis):
    return IngestionService(
        registry=registry,
        verification=VerificationChain(client=mock_redis),
        repository=telemetry_repository,
        queue=mock_queue,
    )


def webhook(body, supplier="wmf", tenant="acme", method="POST", headers=None, client_ip="10.0.0.1"):
    path = f"/webhook/{supplier}/{tenant}" if tenant else f"/webhook/{supplier}"
    return InboundRequest(
        method=method,
        path=path,
        headers=headers or {},
        body=body,
        client_ip=client_ip,
    )


class TestExtractEvents:
    def test_single_object_is_one_event(self):
        assert extract_events({"id": "e1"}) == [{"id": "e1"}]

    def test_list_is_kept(self):
        assert extract_events([{"id": "a"}, {"id": "b"}]) == [{"id": "a"}, {"id": "b"}]

    def test_empty_shapes(self):
        assert extract_events({}) == []
        assert extract_events([]) == []
        assert extract_events("text") == []

    def test_validation_events_are_dropped(self):
        assert extract_events([SubscriptionValidationEventFactory(), {"id": "a"}]) == [{"id": "a"}]


class TestIngestionHandle:
    """Test IngestionService.handle."""

    @pytest.mark.asyncio
    async def test_single_dispensing_event(self, service, telemetry_repository, mock_queue):
        body = [{"id": "e1", "eventType": "Dispensing", "data": {"DeviceId": "d1"}}]

        response = await service.handle("wmf", webhook(body))

        assert response.status_code == 200
        assert response.body["processed_count"] == 1
        assert response.body["total_events"] == 1
        assert response.body["supplier"] == "wmf"
        assert response.body["tenant"] == "acme"
        assert response.body["message"] == "WMF webhook processed"
        assert "errors" not in response.body

        record = await telemetry_repository.get("wmf", "e1")
        assert record.type == "Dispensing"
        assert record.device_id == "d1"
        assert record.status == DeliveryStatus.PENDING

        assert [(t.supplier, t.tenant, t.event_id) for t in mock_queue.enqueued] == [("wmf", "acme", "e1")]

    @pytest.mark.asyncio
    async def test_same_event_twice_keeps_one_record(self, service, telemetry_repository):
        body = [{"id": "e1", "eventType": "Dispensing", "data": {"DeviceId": "d1"}}]

        await service.handle("wmf", webhook(body))
        await service.handle("wmf", webhook(body))

        assert list(telemetry_repository.records) == [("wmf", "e1")]

    @pytest.mark.asyncio
    async def test_partial_batch_reports_errors(self, service, telemetry_repository):
        body = [DispensingEventFactory(id="ok-1"), {"id": "no-type", "data": {}}, 5]

        response = await service.handle("wmf", webhook(body))

        assert response.status_code == 200
        assert response.body["processed_count"] == 1
        assert response.body["total_events"] == 3
        assert [e["index"] for e in response.body["errors"]] == [1, 2]
        assert response.body["errors"][0]["event_id"] == "no-type"
        assert list(telemetry_repository.records) == [("wmf", "ok-1")]

    @pytest.mark.asyncio
    async def test_mapping_exception_is_isolated(self, service, registry, telemetry_repository, monkeypatch):
        adapter = registry.resolve("wmf")
        original = adapter.handle_event

        def flaky(event):
            if event.get("id") == "boom":
                raise KeyError("DeviceId")
            return original(event)

        monkeypatch.setattr(adapter, "handle_event", flaky)

        response = await service.handle("wmf", webhook([{"id": "boom"}, DispensingEventFactory(id="fine")]))

        assert response.body["processed_count"] == 1
        assert response.body["errors"][0]["event_id"] == "boom"
        assert ("wmf", "fine") in telemetry_repository.records

    @pytest.mark.asyncio
    async def test_subscription_validation_creates_nothing(self, service, telemetry_repository, mock_queue):
        event = SubscriptionValidationEventFactory()

        response = await service.handle("wmf", webhook([event]))

        assert response.status_code == 200
        assert response.body == {"validationResponse": event["data"]["validationCode"]}
        assert telemetry_repository.records == {}
        mock_queue.enqueue_many.assert_not_called()

    @pytest.mark.asyncio
    async def test_options_without_origin(self, service):
        response = await service.handle("wmf", webhook(None, method="OPTIONS"))

        assert response.status_code == 400
        assert response.body == {"error": "Missing WebHook-Request-Origin header"}

    @pytest.mark.asyncio
    async def test_options_preflight_headers(self, service):
        response = await service.handle(
            "wmf", webhook(None, method="OPTIONS", headers={"WebHook-Request-Origin": "eventgrid.azure.net"})
        )

        assert response.status_code == 200
        assert response.headers["WebHook-Allowed-Origin"] == "eventgrid.azure.net"
        assert response.headers["Allow"] == "POST"

    @pytest.mark.asyncio
    async def test_unknown_supplier(self, service):
        with pytest.raises(UnknownSupplierException):
            await service.handle("nespresso", webhook([]))

    @pytest.mark.asyncio
    async def test_api_poll_supplier_rejects_webhooks(self, service):
        with pytest.raises(SupplierModeException) as exc_info:
            await service.handle("dejong", webhook([], supplier="dejong"))
        assert exc_info.value.status_code == 405

    @pytest.mark.asyncio
    async def test_missing_tenant(self, service):
        response = await service.handle("wmf", webhook([DispensingEventFactory()], tenant=None))

        assert response.status_code == 400
        assert response.body == {
            "error": "Tenant not found",
            "message": "Unable to determine tenant from request",
        }

    @pytest.mark.asyncio
    async def test_tenant_from_header(self, service, mock_queue):
        response = await service.handle(
            "wmf", webhook([DispensingEventFactory(id="h1")], tenant=None, headers={"X-Tenant": "Globex"})
        )

        assert response.body["tenant"] == "globex"
        assert mock_queue.enqueued[0].tenant == "globex"

    @pytest.mark.asyncio
    async def test_invalid_payload(self, service):
        response = await service.handle("wmf", webhook("not json"))

        assert response.status_code == 400
        assert response.body == {"error": "Invalid payload"}

    @pytest.mark.asyncio
    async def test_empty_batch(self, service, mock_queue):
        response = await service.handle("wmf", webhook([]))

        assert response.status_code == 200
        assert response.body["message"] == "No events to process"
        assert response.body["processed_count"] == 0
        assert response.body["total_events"] == 0
        mock_queue.enqueue_many.assert_not_called()

    @pytest.mark.asyncio
    async def test_guard_rejection_stops_before_adapter(self, service, telemetry_repository):
        response = await service.handle(
            "franke",
            webhook([{"id": "f1", "device_id": "FR-1"}], supplier="franke", client_ip="203.0.113.9"),
        )

        assert response.status_code == 403
        assert telemetry_repository.records == {}

    @pytest.mark.asyncio
    async def test_franke_with_valid_guards(self, service, telemetry_repository):
        response = await service.handle(
            "franke",
            webhook(
                {"id": "f1", "device_id": "FR-1"},
                supplier="franke",
                headers={"aeg-subscription-name": "franke-sub"},
            ),
        )

        assert response.status_code == 200
        assert response.body["message"] == "Franke webhook processed"
        assert ("franke", "f1") in telemetry_repository.records
