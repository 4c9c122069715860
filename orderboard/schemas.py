"""
Pydantic Schemas for Request/Response Validation

Request bodies for the admin forms and the JSON shapes returned by the
public API (orders, display snapshot, health).
"""

from datetime import datetime
from typing import Optional, List

from pydantic import BaseModel, EmailStr, Field, field_validator

from orderboard.models import Order, OrderStatus


# =============================================================================
# REQUEST SCHEMAS
# =============================================================================

class LoginRequest(BaseModel):
    """Credentials submitted on the sign-in page."""
    email: EmailStr
    password: str = Field(..., min_length=1)

    @field_validator("email", mode="before")
    @classmethod
    def normalize_email(cls, v):
        return v.strip().lower() if isinstance(v, str) else v


class StoreCreate(BaseModel):
    """Request schema for creating or renaming a store."""
    name: str = Field(..., min_length=1, max_length=100, examples=["Kedai Sudirman"])

    @field_validator("name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Store name must not be blank")
        return v


class OrderCreate(BaseModel):
    """Request schema for creating a new order."""
    customer_name: str = Field(..., min_length=1, max_length=100, examples=["Budi"])
    order_number: Optional[int] = Field(
        None,
        ge=1,
        le=9999,
        description="Receipt number; the next free number is used when omitted",
    )
    status: OrderStatus = Field(default=OrderStatus.PREPARING)

    @field_validator("customer_name")
    @classmethod
    def strip_customer_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Customer name must not be blank")
        return v


class OrderStatusUpdate(BaseModel):
    """Request to move an order to another status."""
    status: OrderStatus


# =============================================================================
# RESPONSE SCHEMAS
# =============================================================================

class OrderListResponse(BaseModel):
    """Response for listing the orders of a store."""
    store_id: str
    total: int
    orders: List[Order]


class DisplayResponse(BaseModel):
    """Snapshot of a store's customer display."""
    store_id: str
    preparing: List[Order]
    completed: List[Order]
    updated_at: Optional[datetime] = None
    seconds_since_update: Optional[int] = None
    is_stale: bool
    last_error: Optional[str] = None


class ErrorResponse(BaseModel):
    """Standard error response."""
    success: bool = False
    error: str
    detail: Optional[str] = None


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    backend: str
    backend_provider: str
    cached_queries: int
    active_pollers: int
    timestamp: datetime
