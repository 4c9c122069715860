"""
Domain Models

Rows owned by the hosted backend, as this application sees them:
- Stores and the orders they own
- Users and sessions issued by the auth service (read-only here)

Orders reference their store by id; nothing is embedded.
"""

import enum
from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class OrderStatus(str, enum.Enum):
    """Order status workflow."""
    PREPARING = "preparing"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class Store(BaseModel):
    """A location with its own order queue."""

    model_config = ConfigDict(from_attributes=True, coerce_numbers_to_str=True)

    id: str
    name: str
    owner_id: Optional[str] = None
    created_at: Optional[datetime] = None

    def __repr__(self):
        return f"<Store {self.id}: {self.name}>"


class Order(BaseModel):
    """
    A customer order tracked from preparation to completion.

    ``order_number`` is the short number printed on the customer's
    receipt and shown on the display; ``id`` is the backend row id.
    """

    model_config = ConfigDict(from_attributes=True, coerce_numbers_to_str=True)

    id: str
    store_id: str
    order_number: int = Field(..., ge=1)
    customer_name: str
    status: OrderStatus
    created_at: datetime
    updated_at: datetime

    @model_validator(mode="before")
    @classmethod
    def default_updated_at(cls, data: Any) -> Any:
        # Rows that were never updated carry a null updated_at
        if isinstance(data, dict) and not data.get("updated_at"):
            data = {**data, "updated_at": data.get("created_at")}
        return data

    def __repr__(self):
        return f"<Order #{self.order_number} - {self.customer_name} - {self.status.value}>"


class User(BaseModel):
    """Identity issued by the auth service."""
    id: str
    email: Optional[str] = None


class AuthSession(BaseModel):
    """Access/refresh token pair for a signed-in user."""
    access_token: str
    refresh_token: Optional[str] = None
    expires_at: Optional[datetime] = None
    user: User
