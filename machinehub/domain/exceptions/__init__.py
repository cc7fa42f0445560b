# Domain Exceptions
from .domain_exceptions import (
    DomainException,
    UnknownSupplierException,
    SupplierModeException,
    ConfigurationException,
    InvalidStatusTransitionException,
    SupplierFetchException,
)

__all__ = [
    'DomainException',
    'UnknownSupplierException',
    'SupplierModeException',
    'ConfigurationException',
    'InvalidStatusTransitionException',
    'SupplierFetchException',
]
