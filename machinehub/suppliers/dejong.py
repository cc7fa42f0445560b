"""
Dejong supplier adapter.

Dejong does not push telemetry; it exposes a paginated REST API that is
polled per resource (``consumptions`` and ``events``) by the fetch
scheduler.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import httpx

from ..domain.entities import SupplierConfig, SupplierMode, TelemetryRecord
from ..domain.exceptions import SupplierFetchException
from .base import (
    InboundRequest,
    VerificationResult,
    dispatch_event,
    optional_str,
    parse_timestamp,
    synthesize_event_id,
)

logger = logging.getLogger(__name__)


def format_api_timestamp(value: datetime) -> str:
    """Render a datetime the way the Dejong filters expect it."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


class DejongAdapter:
    """
    API-polled supplier.

    Each resource maps to one record type. Items fetched from the API are
    wrapped as ``{"event": <type>, "data": <item>}`` so polling and
    ``handle_event`` share the same dispatch.
    """

    name = "dejong"
    mode = SupplierMode.API_POLL
    resources = ("consumptions", "events")
    resource_types = {
        "consumptions": "Consumption",
        "events": "Event",
    }

    def __init__(
        self,
        config: SupplierConfig,
        client: Optional[httpx.AsyncClient] = None,
        page_limit: int = 5000,
        max_pages: int = 200,
        timeout: float = 30.0,
    ):
        self.config = config
        self.name = config.name
        self.base_url = (config.options.get("base_url") or "").rstrip("/")
        self.api_key = config.options.get("api_key")
        self.page_limit = int(config.options.get("page_limit", page_limit))
        self.max_pages = max_pages
        self.timeout = timeout
        self._client = client
        self._owns_client = client is None
        self._handlers = {
            event_type: self._mapper(event_type)
            for event_type in self.resource_types.values()
        }

    async def connect(self) -> httpx.AsyncClient:
        """Create the HTTP client if none was injected."""
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
            self._owns_client = True
            logger.info(f"[{self.name}] API client initialized: {self.base_url}")
        return self._client

    async def disconnect(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    def verify(self, request: InboundRequest) -> VerificationResult:
        return VerificationResult.rejected(405, f"{self.config.label} does not support webhooks")

    def handle_event(self, event: Dict[str, Any]) -> Optional[TelemetryRecord]:
        return dispatch_event(self.name, self._handlers, event, self._map_unknown)

    async def fetch_since(
        self,
        resource: str,
        start: datetime,
        end: datetime,
    ) -> List[TelemetryRecord]:
        """
        Fetch every item of ``resource`` in ``[start, end]``.

        Pages are requested until one comes back empty or without a
        ``next_page_url``. Transport errors, non-2xx answers and
        undecodable pages raise SupplierFetchException; retrying is left
        to the next scheduled poll.
        """
        event_type = self.resource_types.get(resource)
        if event_type is None:
            raise ValueError(f"Unknown {self.name} resource: {resource}")
        if not self.base_url:
            raise SupplierFetchException(
                self.name, resource, f"No base_url configured for {self.name}"
            )

        client = await self.connect()
        url = f"{self.base_url}/{resource}"
        headers = {"Accept": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        records: List[TelemetryRecord] = []
        page = 1

        while True:
            if page > self.max_pages:
                raise SupplierFetchException(
                    self.name, resource,
                    f"Page limit {self.max_pages} reached for window {start} - {end}",
                )

            params = {
                "filter[start_date]": format_api_timestamp(start),
                "filter[end_date]": format_api_timestamp(end),
                "page": page,
                "limit": self.page_limit,
                "sort": "timestamp",
            }

            try:
                response = await client.get(url, params=params, headers=headers)
            except httpx.HTTPError as e:
                logger.error(f"[{self.name}] Request for {resource} page {page} failed: {e}")
                raise SupplierFetchException(
                    self.name, resource, f"Request failed: {e}"
                ) from e

            if not response.is_success:
                logger.error(
                    f"[{self.name}] {resource} page {page} returned "
                    f"{response.status_code}: {response.text[:200]}"
                )
                raise SupplierFetchException(
                    self.name, resource,
                    f"Unexpected status {response.status_code}",
                    status=response.status_code,
                )

            try:
                body = response.json()
            except ValueError as e:
                raise SupplierFetchException(
                    self.name, resource, f"Invalid JSON on page {page}"
                ) from e

            items = body.get("data") if isinstance(body, dict) else None
            if not items:
                break

            for item in items:
                record = self.handle_event({"event": event_type, "data": item})
                if record is not None:
                    records.append(record)

            logger.debug(f"[{self.name}] {resource} page {page}: {len(items)} items")

            if not body.get("next_page_url"):
                break
            page += 1

        logger.info(f"[{self.name}] Fetched {len(records)} {resource} between {start} and {end}")
        return records

    def _mapper(self, event_type: str):
        def handle(envelope: Dict[str, Any]) -> Optional[TelemetryRecord]:
            item = envelope.get("data")
            if not isinstance(item, dict):
                logger.warning(f"[{self.name}] {event_type} item is not an object, skipping")
                return None
            return self._map_item(event_type, item)
        return handle

    def _map_unknown(self, envelope: Dict[str, Any]) -> Optional[TelemetryRecord]:
        item = envelope.get("data")
        if not isinstance(item, dict):
            item = envelope
        return self._map_item(envelope.get("event") or "DejongEvent", item)

    def _map_item(self, event_type: str, item: Dict[str, Any]) -> TelemetryRecord:
        return TelemetryRecord(
            supplier=self.name,
            event_id=optional_str(item.get("id")) or synthesize_event_id(self.name, item),
            type=event_type,
            device_id=optional_str(item.get("machine_id")),
            occurred_at=parse_timestamp(item.get("timestamp")) or datetime.now(timezone.utc),
            payload=item,
        )
