"""
Unit tests for the Franke webhook adapter and the Dejong polling adapter.
"""
import json
import pytest
from datetime import datetime, timezone

import httpx

from machinehub.domain.exceptions import SupplierFetchException
from machinehub.suppliers import DejongAdapter, FrankeAdapter, InboundRequest
from machinehub.suppliers.dejong import format_api_timestamp

from tests.factories import DejongItemFactory, FrankeEventFactory


START = datetime(2026, 10, 19, 6, 0, tzinfo=timezone.utc)
END = datetime(2026, 10, 19, 7, 0, tzinfo=timezone.utc)


class TestFrankeAdapter:
    def test_maps_flat_event(self, franke_config):
        adapter = FrankeAdapter(franke_config)
        event = FrankeEventFactory(id="fr-1")

        record = adapter.handle_event(event)

        assert record.type == "FrankeEvent"
        assert record.event_id == "fr-1"
        assert record.device_id == "FR-77"
        assert record.occurred_at == datetime(2026, 10, 19, 7, 0, tzinfo=timezone.utc)
        assert record.payload == event

    def test_event_without_type_is_still_mapped(self, franke_config):
        record = FrankeAdapter(franke_config).handle_event({"deviceId": "FR-1", "temp": 91})

        assert record is not None
        assert record.device_id == "FR-1"
        assert record.event_id.startswith("franke_")

    def test_options_preflight(self, franke_config):
        result = FrankeAdapter(franke_config, allowed_webhook_rate=10).verify(InboundRequest(
            method="OPTIONS",
            path="/webhook/franke/acme",
            headers={"webhook-request-origin": "franke.example"},
        ))

        assert result.is_handshake
        assert result.headers["WebHook-Allowed-Rate"] == "10"


def page(items, next_page_url=None):
    return {"data": items, "next_page_url": next_page_url}


class TestDejongAdapter:
    """Test Dejong API polling with a mocked transport."""

    @pytest.mark.asyncio
    async def test_fetch_follows_pages(self, dejong_config):
        requests = []
        pages = {
            "1": page([DejongItemFactory(id=1), DejongItemFactory(id=2)], "https://api.dejong.test/v1/consumptions?page=2"),
            "2": page([DejongItemFactory(id=3)], None),
        }

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, json=pages[request.url.params["page"]])

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        adapter = DejongAdapter(dejong_config, client=client, page_limit=2)

        records = await adapter.fetch_since("consumptions", START, END)

        assert [r.event_id for r in records] == ["1", "2", "3"]
        assert all(r.type == "Consumption" for r in records)
        assert records[0].device_id == "DJ-12"

        first = requests[0]
        assert first.url.path == "/v1/consumptions"
        assert first.url.params["filter[start_date]"] == format_api_timestamp(START)
        assert first.url.params["filter[end_date]"] == format_api_timestamp(END)
        assert first.url.params["limit"] == "2"
        assert first.url.params["sort"] == "timestamp"
        assert first.headers["authorization"] == "Bearer dejong-key"
        await client.aclose()

    @pytest.mark.asyncio
    async def test_fetch_stops_on_empty_page(self, dejong_config):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(200, json=page([], "https://api.dejong.test/v1/events?page=2"))

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        adapter = DejongAdapter(dejong_config, client=client)

        assert await adapter.fetch_since("events", START, END) == []
        assert len(calls) == 1
        await client.aclose()

    @pytest.mark.asyncio
    async def test_server_error_raises_fetch_exception(self, dejong_config):
        client = httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(503, text="down")))
        adapter = DejongAdapter(dejong_config, client=client)

        with pytest.raises(SupplierFetchException) as exc_info:
            await adapter.fetch_since("events", START, END)

        assert exc_info.value.status == 503
        assert exc_info.value.code == "SUPPLIER_FETCH_FAILED"
        await client.aclose()

    @pytest.mark.asyncio
    async def test_transport_error_raises_fetch_exception(self, dejong_config):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        adapter = DejongAdapter(dejong_config, client=client)

        with pytest.raises(SupplierFetchException):
            await adapter.fetch_since("consumptions", START, END)
        await client.aclose()

    @pytest.mark.asyncio
    async def test_page_limit_reached_raises(self, dejong_config):
        def handler(request):
            n = int(request.url.params["page"])
            return httpx.Response(200, json=page([DejongItemFactory()], f"?page={n + 1}"))

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        adapter = DejongAdapter(dejong_config, client=client, max_pages=3)

        with pytest.raises(SupplierFetchException):
            await adapter.fetch_since("consumptions", START, END)
        await client.aclose()

    @pytest.mark.asyncio
    async def test_unknown_resource(self, dejong_config):
        adapter = DejongAdapter(dejong_config)
        with pytest.raises(ValueError):
            await adapter.fetch_since("invoices", START, END)

    def test_webhook_not_supported(self, dejong_config):
        result = DejongAdapter(dejong_config).verify(
            InboundRequest(method="POST", path="/webhook/dejong/acme", body=[])
        )
        assert result.is_rejected
        assert result.status_code == 405

    def test_item_without_id_gets_stable_id(self, dejong_config):
        adapter = DejongAdapter(dejong_config)
        item = {"machine_id": "DJ-1", "timestamp": "2026-10-19T06:00:00Z"}

        first = adapter.handle_event({"event": "Event", "data": dict(item)})
        second = adapter.handle_event({"event": "Event", "data": json.loads(json.dumps(item))})

        assert first.event_id == second.event_id

    def test_format_api_timestamp(self):
        assert format_api_timestamp(START) == "2026-10-19T06:00:00.000000Z"
