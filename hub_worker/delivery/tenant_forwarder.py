"""
Tenant forwarder.

Posts canonical telemetry records to the destination URL configured for a
tenant and reports the result as a DeliveryOutcome.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import httpx

from machinehub.config import AppSettings, get_settings
from machinehub.domain.entities import DeliveryOutcome, TelemetryRecord
from machinehub.suppliers import SupplierRegistry

logger = logging.getLogger(__name__)

# Request timeout and throttling answers are worth another attempt
RETRYABLE_CLIENT_ERRORS = frozenset({408, 429})


class TenantForwarder:
    """
    Client for tenant destinations.

    Responsibilities:
    - Resolve the tenant's destination URL and credentials
    - Build the delivery envelope
    - Classify the destination's answer
    """

    def __init__(
        self,
        registry: SupplierRegistry,
        client: Optional[httpx.AsyncClient] = None,
        settings: Optional[AppSettings] = None,
    ):
        self.registry = registry
        self.settings = settings or get_settings()
        self._client = client
        self._owns_client = client is None

    async def connect(self) -> None:
        """Initialize HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.settings.delivery.timeout)
            self._owns_client = True
            logger.info("Tenant forwarder client initialized")

    async def disconnect(self) -> None:
        """Close HTTP client."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
            logger.info("Tenant forwarder client closed")

    def get_configured_tenants(self, supplier: str) -> List[str]:
        adapter = self.registry.get(supplier)
        if adapter is None:
            return []
        return list(adapter.config.tenant_names)

    def build_envelope(self, record: TelemetryRecord, tenant: str) -> Dict[str, Any]:
        return {
            "supplier": record.supplier,
            "tenant": tenant,
            "event": record.to_event_dict(),
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    async def forward(self, record: TelemetryRecord, tenant: str) -> DeliveryOutcome:
        """
        Deliver ``record`` to ``tenant``.

        Configuration problems are reported without any HTTP call.
        """
        tenant_config = self.registry.tenant_config(record.supplier, tenant)
        if tenant_config is None:
            return DeliveryOutcome.configuration_error(
                f"No configuration for tenant {tenant} of supplier {record.supplier}"
            )
        if not tenant_config.destination_url:
            return DeliveryOutcome.configuration_error(
                f"No destination URL configured for tenant {tenant} of supplier {record.supplier}"
            )

        if self._client is None:
            await self.connect()

        headers = {
            "Content-Type": "application/json",
            "User-Agent": self.settings.delivery.user_agent,
            "X-Supplier": record.supplier,
            "X-Tenant": tenant,
        }
        if tenant_config.api_key:
            headers["Authorization"] = f"Bearer {tenant_config.api_key}"

        try:
            response = await self._client.post(
                tenant_config.destination_url,
                json=self.build_envelope(record, tenant),
                headers=headers,
                timeout=self.settings.delivery.timeout,
            )
        except httpx.TimeoutException as e:
            return DeliveryOutcome.transient(f"Timeout posting to {tenant}: {e}")
        except httpx.HTTPError as e:
            return DeliveryOutcome.transient(f"HTTP error posting to {tenant}: {e}")

        return self.classify(response)

    @staticmethod
    def classify(response: httpx.Response) -> DeliveryOutcome:
        code = response.status_code
        if 200 <= code < 300:
            return DeliveryOutcome.success(code)

        error = f"Destination answered {code}: {response.text[:500]}"
        if code in RETRYABLE_CLIENT_ERRORS or code >= 500:
            return DeliveryOutcome.transient(error, status_code=code)
        return DeliveryOutcome.rejected(code, error)
