"""
Supplier adapters and registry.
"""
from .base import (
    InboundRequest,
    VerificationOutcome,
    VerificationResult,
    SupplierAdapter,
    PollingAdapter,
)
from .wmf import WMFAdapter
from .schaerer import SchaererAdapter
from .franke import FrankeAdapter
from .dejong import DejongAdapter
from .loader import SupplierConfigLoader
from .registry import ADAPTER_FACTORIES, SupplierRegistry

__all__ = [
    "InboundRequest",
    "VerificationOutcome",
    "VerificationResult",
    "SupplierAdapter",
    "PollingAdapter",
    "WMFAdapter",
    "SchaererAdapter",
    "FrankeAdapter",
    "DejongAdapter",
    "SupplierConfigLoader",
    "ADAPTER_FACTORIES",
    "SupplierRegistry",
]
