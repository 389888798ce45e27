"""Schemas shared by several resources."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class PaginationMeta(BaseModel):
    """Pagination metadata included in every paginated response."""

    page: int = Field(ge=1, description="Current page number (1-indexed)")
    page_size: int = Field(ge=1, description="Number of items per page")
    total_items: int = Field(ge=0, description="Total number of matching items")
    total_pages: int = Field(ge=0, description="Total number of pages")


class AuditEntryOut(BaseModel):
    """One row of a booking or payment status history."""

    model_config = ConfigDict(from_attributes=True)

    entity_type: str
    from_status: Optional[str] = None
    to_status: str
    actor_id: Optional[uuid.UUID] = None
    actor_role: str
    note: Optional[str] = None
    created_at: datetime
