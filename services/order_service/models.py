import enum
from sqlalchemy import Column, DateTime, Enum, Float, ForeignKey, Index, Integer, String
from sqlalchemy.orm import relationship
from shared.config.database import Base


class OrderStatus(str, enum.Enum):
    ORDER_PLACED = "ORDER_PLACED"
    ACCEPTED = "ACCEPTED"
    ORDER_READY = "ORDER_READY"
    ORDER_PICKED_UP = "ORDER_PICKED_UP"
    ORDER_DELIVERED = "ORDER_DELIVERED"
    CANCELLED = "CANCELLED"


class OrderType(str, enum.Enum):
    DELIVERY = "delivery"
    PICKUP = "pickup"


class Order(Base):
    __tablename__ = "orders"
    __table_args__ = (
        # Serves the dashboard tabs: tenant + status, newest first
        Index("ix_orders_tenant_status_created", "tenant_id", "status", "created_at", "id"),
    )

    id = Column(String, primary_key=True) # UUID string
    tenant_id = Column(String, nullable=False, index=True)
    restaurant_name = Column(String, nullable=True)
    status = Column(Enum(OrderStatus, native_enum=False, length=32), nullable=False)
    order_type = Column(Enum(OrderType, native_enum=False, length=16), nullable=False)
    total_amount = Column(Float, nullable=False)
    payment_method = Column(String, nullable=False, default="COD")
    payment_status = Column(String, nullable=False) # PENDING for COD, COMPLETED otherwise
    customer_name = Column(String, nullable=True)
    customer_phone = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)
    version = Column(Integer, nullable=False, default=1) # bumped on every transition

    items = relationship(
        "OrderItem",
        back_populates="order",
        lazy="selectin",
        order_by="OrderItem.position",
    )


class OrderItem(Base):
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_id = Column(String, ForeignKey("orders.id"), nullable=False, index=True)
    position = Column(Integer, nullable=False)
    name = Column(String, nullable=False)
    quantity = Column(Integer, nullable=False)
    unit_price = Column(Float, nullable=False)
    line_total = Column(Float, nullable=False)
    food_type = Column(String, nullable=False, default="veg")

    order = relationship("Order", back_populates="items")


class OrderStatusCount(Base):
    """Cached per-tenant badge counts. Always rebuildable from `orders`."""
    __tablename__ = "order_status_counts"

    tenant_id = Column(String, primary_key=True)
    status = Column(Enum(OrderStatus, native_enum=False, length=32), primary_key=True)
    count = Column(Integer, nullable=False, default=0)
