"""
Pydantic schemas for webhook endpoints.
"""
from typing import Any, List, Optional

from pydantic import BaseModel, Field


class EventError(BaseModel):
    """Why one event of a batch was not processed."""
    index: int
    event_id: Optional[Any] = None
    error: str


class WebhookResponse(BaseModel):
    """Response for a processed webhook batch."""
    message: str
    supplier: Optional[str] = None
    tenant: Optional[str] = None
    processed_count: int = 0
    total_events: int = 0
    errors: Optional[List[EventError]] = Field(default=None)
