"""
Test data factories for MachineHub.

Provides factory classes for generating vendor payloads and records.
"""
from .event_grid_factory import (
    DispensingEventFactory,
    EventGridEventFactory,
    SubscriptionValidationEventFactory,
)
from .supplier_payload_factory import DejongItemFactory, FrankeEventFactory
from .telemetry_factory import TelemetryRecordFactory

__all__ = [
    "DispensingEventFactory",
    "EventGridEventFactory",
    "SubscriptionValidationEventFactory",
    "DejongItemFactory",
    "FrankeEventFactory",
    "TelemetryRecordFactory",
]
