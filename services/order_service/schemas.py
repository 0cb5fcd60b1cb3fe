from datetime import datetime, timezone
from pydantic import BaseModel, Field, field_validator
from typing import Dict, List, Literal, Optional

from .models import OrderStatus, OrderType
from .state_machine import ACTIVE_STATUSES


class OrderItemCreate(BaseModel):
    name: str
    quantity: int = Field(gt=0)
    unit_price: float = Field(ge=0)
    line_total: Optional[float] = Field(default=None, ge=0) # defaults to unit_price * quantity
    food_type: str = "veg"

class OrderCreate(BaseModel):
    items: List[OrderItemCreate] = []
    order_type: str = "delivery" # delivery | pickup
    total_amount: Optional[float] = Field(default=None, ge=0) # defaults to the sum of line totals
    payment_method: str = "COD"
    restaurant_name: Optional[str] = None
    customer_name: Optional[str] = None
    customer_phone: Optional[str] = None

class OrderItemResponse(BaseModel):
    name: str
    quantity: int
    unit_price: float
    line_total: float
    food_type: str

    class Config:
        from_attributes = True

class OrderResponse(BaseModel):
    id: str
    tenant_id: str
    restaurant_name: Optional[str]
    status: OrderStatus
    order_type: OrderType
    items: List[OrderItemResponse] = []
    total_amount: float
    payment_method: str
    payment_status: str
    customer_name: Optional[str]
    customer_phone: Optional[str]
    created_at: datetime
    updated_at: datetime
    version: int

    class Config:
        from_attributes = True

    @field_validator("created_at", "updated_at")
    @classmethod
    def assume_utc(cls, value: datetime) -> datetime:
        # SQLite returns naive datetimes; everything is stored as UTC
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

class StatusUpdate(BaseModel):
    status: OrderStatus

class PageResponse(BaseModel):
    orders: List[OrderResponse]
    total_count: int
    page: int
    page_size: int
    total_pages: int
    next_cursor: Optional[str] = None # pass back as `after` to continue without offset drift

class CountsResponse(BaseModel):
    tenant_id: str
    counts: Dict[str, int]

    @property
    def active_total(self) -> int:
        return sum(self.counts.get(status.value, 0) for status in ACTIVE_STATUSES)

class ItemQuantity(BaseModel):
    name: str
    quantity: int

class ItemsToPackResponse(BaseModel):
    item_details: List[ItemQuantity]
    total_items: int

class PublicOrderItem(BaseModel):
    name: str
    quantity: int
    line_total: float

    class Config:
        from_attributes = True

class PublicOrderStatus(BaseModel):
    order_id: str
    status: OrderStatus
    restaurant_name: Optional[str]
    created_at: datetime
    total_amount: float
    order_type: OrderType
    payment_method: str
    items: List[PublicOrderItem]

class PopularItem(BaseModel):
    name: str
    total_sold: int

class DailyRevenue(BaseModel):
    date: str # YYYY-MM-DD in the business timezone
    revenue: float

class SummaryResponse(BaseModel):
    total_orders: int
    total_revenue: float
    total_items_sold: int
    popular_items: List[PopularItem]
    daily_revenue: List[DailyRevenue]
    recent_orders: List[OrderResponse]
    time_frame: str

class BroadcastEvent(BaseModel):
    """Pushed to every dashboard subscribed to `tenant_id`."""
    kind: Literal["created", "statusChanged"]
    tenant_id: str
    order: OrderResponse
    previous_status: Optional[OrderStatus] = None # set for statusChanged
