"""
Tenant resolution for inbound webhooks.
"""
import logging
from typing import Optional

from ...suppliers.base import InboundRequest

logger = logging.getLogger(__name__)


class TenantResolver:
    """
    Extracts the tenant identifier from a webhook request.

    Tried in order: the path segment after ``/webhook/{supplier}``, the
    ``tenant`` query parameter, the ``X-Tenant`` header.
    """

    path_marker = "webhook"
    query_param = "tenant"
    header = "X-Tenant"

    def resolve(self, request: InboundRequest) -> Optional[str]:
        tenant = (
            self._from_path(request.path)
            or request.query.get(self.query_param)
            or request.header(self.header)
        )
        if tenant is None:
            return None

        tenant = tenant.strip().lower()
        return tenant or None

    def _from_path(self, path: str) -> Optional[str]:
        segments = [segment for segment in path.split("/") if segment]
        try:
            marker = segments.index(self.path_marker)
        except ValueError:
            return None

        # /webhook/{supplier}/{tenant}
        if len(segments) > marker + 2:
            return segments[marker + 2]
        return None
