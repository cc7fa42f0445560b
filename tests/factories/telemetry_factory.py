"""
Telemetry record factory.
"""
from datetime import datetime, timezone

import factory

from machinehub.domain.entities import DeliveryStatus, TelemetryRecord


class TelemetryRecordFactory(factory.Factory):
    class Meta:
        model = TelemetryRecord

    supplier = "wmf"
    event_id = factory.Sequence(lambda n: f"rec-{n}")
    type = "Dispensing"
    device_id = "CM-1001"
    occurred_at = factory.LazyFunction(lambda: datetime(2026, 10, 19, 8, 0, tzinfo=timezone.utc))
    payload = factory.LazyFunction(lambda: {"DeviceId": "CM-1001", "Product": "Latte"})
    status = DeliveryStatus.PENDING
