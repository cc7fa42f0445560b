"""
Outbound delivery to tenant destinations.
"""
from .tenant_forwarder import TenantForwarder

__all__ = ["TenantForwarder"]
