import base64
import math
import time
import uuid
from collections import Counter, OrderedDict
from contextlib import asynccontextmanager
from datetime import date, datetime, time as dt_time, timedelta, timezone
from zoneinfo import ZoneInfo

import structlog
from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from shared.config.settings import ALLOWED_PAGE_SIZES, SUMMARY_TIMEZONE
from shared.observability import (
    order_cas_conflicts_total,
    order_transition_duration_seconds,
    order_transitions_total,
    orders_created_total,
)
from .broadcast import BroadcastChannel
from .counts import CountAggregator
from .exceptions import (
    ConflictError,
    ForbiddenError,
    InvalidTransitionError,
    NotFoundError,
    UnavailableError,
    ValidationError,
)
from .models import Order, OrderItem, OrderStatus, OrderType
from .repository import OrderRepository
from .schemas import (
    BroadcastEvent,
    DailyRevenue,
    ItemQuantity,
    ItemsToPackResponse,
    OrderCreate,
    OrderResponse,
    PageResponse,
    PopularItem,
    PublicOrderItem,
    PublicOrderStatus,
    SummaryResponse,
)
from .state_machine import TERMINAL_STATUSES, validate_transition

logger = structlog.get_logger(__name__)

TIME_FRAMES = ("1D", "1W", "1M", "3M", "6M")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    # SQLite hands datetimes back naive; they were written as UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _coerce_status(value) -> OrderStatus:
    try:
        return OrderStatus(value)
    except ValueError:
        raise ValidationError(f"Unknown order status: {value}") from None


def encode_cursor(order: Order) -> str:
    raw = f"{order.created_at.isoformat()}|{order.id}"
    return base64.urlsafe_b64encode(raw.encode()).decode()


def decode_cursor(cursor: str) -> tuple:
    try:
        raw = base64.urlsafe_b64decode(cursor.encode()).decode()
        created_at, order_id = raw.split("|", 1)
        return datetime.fromisoformat(created_at), order_id
    except ValueError:
        raise ValidationError("Malformed page cursor") from None


def _month_start(day: date, months_back: int = 0) -> date:
    month_index = day.year * 12 + (day.month - 1) - months_back
    return date(month_index // 12, month_index % 12 + 1, 1)


def _month_end(day: date) -> date:
    return _month_start(day, -1) - timedelta(days=1)


def summary_window(time_frame=None, start=None, end=None, today=None, tz_name=SUMMARY_TIMEZONE):
    """Resolves a time frame or an explicit date range to (start, end, label) in UTC.

    Dates are whole days in the business timezone. With neither a time frame nor
    both dates, the current month is used.
    """
    tz = ZoneInfo(tz_name)
    today = today or datetime.now(tz).date()

    if time_frame:
        if time_frame not in TIME_FRAMES:
            raise ValidationError(f"timeFrame must be one of {', '.join(TIME_FRAMES)}")
        if time_frame == "1D":
            first, last = today, today
        elif time_frame == "1W":
            first = today - timedelta(days=today.weekday()) # Monday
            last = first + timedelta(days=6)
        elif time_frame == "1M":
            first, last = _month_start(today), _month_end(today)
        elif time_frame == "3M":
            first, last = _month_start(today, 2), _month_end(today)
        else:
            first, last = _month_start(today, 5), _month_end(today)
        label = time_frame
    elif start or end:
        if not (start and end):
            raise ValidationError("Both start and end dates are required")
        if start > end:
            raise ValidationError("start must not be after end")
        first, last, label = start, end, "custom"
    else:
        first, last, label = _month_start(today), _month_end(today), "1M"

    window_start = datetime.combine(first, dt_time.min, tzinfo=tz).astimezone(timezone.utc)
    window_end = datetime.combine(last, dt_time.max, tzinfo=tz).astimezone(timezone.utc)
    return window_start, window_end, label


class OrderService:
    """
    Order Store + Status Transition Engine.

    Every write runs in one unit of work: the order row, its items and the
    count cache commit together or not at all. Events go out only after the
    commit, with no await in between, so a dashboard never hears about a
    change the database does not have.
    """

    def __init__(self, channel: BroadcastChannel):
        self.channel = channel

    @asynccontextmanager
    async def _unit_of_work(self, db: AsyncSession):
        try:
            yield
            await db.commit()
        except (OperationalError, InterfaceError, OSError) as e:
            await db.rollback()
            logger.error("order_store_unavailable", error=str(e))
            raise UnavailableError("Order store is unavailable, try again") from e
        except Exception:
            await db.rollback()
            raise

    # --- ORDER STORE ---

    async def create_order(self, db: AsyncSession, tenant_id: str, data: OrderCreate, now: datetime = None):
        if not tenant_id:
            raise ValidationError("tenant_id is required")
        if not data.items:
            raise ValidationError("Order must contain at least one item.")
        try:
            order_type = OrderType(data.order_type)
        except ValueError:
            raise ValidationError("Invalid order type. Must be either 'delivery' or 'pickup'") from None

        items = []
        for position, item in enumerate(data.items):
            line_total = item.line_total if item.line_total is not None else item.unit_price * item.quantity
            items.append(OrderItem(
                position=position,
                name=item.name,
                quantity=item.quantity,
                unit_price=item.unit_price,
                line_total=line_total,
                food_type=item.food_type or "veg",
            ))
        total = data.total_amount if data.total_amount is not None else sum(i.line_total for i in items)

        now = now or _utcnow()
        order = Order(
            id=str(uuid.uuid4()),
            tenant_id=tenant_id,
            restaurant_name=data.restaurant_name,
            status=OrderStatus.ORDER_PLACED,
            order_type=order_type,
            total_amount=total,
            payment_method=data.payment_method or "COD",
            payment_status="PENDING" if (data.payment_method or "COD") == "COD" else "COMPLETED",
            customer_name=data.customer_name,
            customer_phone=data.customer_phone,
            created_at=now,
            updated_at=now,
            version=1,
            items=items,
        )

        async with self._unit_of_work(db):
            await OrderRepository.add_order(db, order)
            await CountAggregator.increment(db, tenant_id, OrderStatus.ORDER_PLACED)
            response = OrderResponse.model_validate(order)

        self.channel.publish(BroadcastEvent(kind="created", tenant_id=tenant_id, order=response))
        orders_created_total.labels(order_type=order_type.value).inc()
        logger.info("order_created", order_id=response.id, tenant_id=tenant_id, order_type=order_type.value)
        return response

    async def get_order(self, db: AsyncSession, order_id: str, tenant_id: str) -> Order:
        order = await OrderRepository.get_order(db, order_id)
        if order is None:
            raise NotFoundError("Order not found")
        if order.tenant_id != tenant_id:
            raise ForbiddenError("You are not authorized to access this order")
        return order

    # --- STATUS TRANSITION ENGINE ---

    async def transition(self, db: AsyncSession, order_id: str, tenant_id: str, requested) -> OrderResponse:
        """
        Validate against the stored status, then compare-and-set.

        A lost race is retried once against the freshly read status. If the
        request no longer makes sense from there, or the retry loses too, the
        caller gets ConflictError and should refresh its view.
        """
        requested = _coerce_status(requested)
        started = time.perf_counter()

        for attempt in (1, 2):
            order = await self.get_order(db, order_id, tenant_id)
            current = OrderStatus(order.status)
            try:
                validate_transition(current, requested, order.order_type)
            except InvalidTransitionError:
                if attempt == 1:
                    order_transitions_total.labels(to_status=requested.value, outcome="invalid").inc()
                    raise
                order_transitions_total.labels(to_status=requested.value, outcome="conflict").inc()
                order_cas_conflicts_total.labels(retried="false").inc()
                logger.info("transition_conflict", order_id=order_id, tenant_id=tenant_id,
                            requested=requested.value, current=current.value)
                raise ConflictError(
                    f"Order is now {current.value}; refresh and try again"
                ) from None

            try:
                response = await self._apply_transition(db, order, current, requested)
            except ConflictError:
                if attempt == 2:
                    order_transitions_total.labels(to_status=requested.value, outcome="conflict").inc()
                    order_cas_conflicts_total.labels(retried="false").inc()
                    logger.info("transition_conflict", order_id=order_id, tenant_id=tenant_id,
                                requested=requested.value, current=current.value)
                    raise
                order_cas_conflicts_total.labels(retried="true").inc()
                logger.info("transition_retry", order_id=order_id, tenant_id=tenant_id,
                            requested=requested.value, expected=current.value)
                continue

            self.channel.publish(BroadcastEvent(
                kind="statusChanged",
                tenant_id=tenant_id,
                order=response,
                previous_status=current,
            ))
            order_transitions_total.labels(to_status=requested.value, outcome="applied").inc()
            order_transition_duration_seconds.observe(time.perf_counter() - started)
            logger.info("order_transitioned", order_id=order_id, tenant_id=tenant_id,
                        previous=current.value, status=requested.value, version=response.version)
            return response

    async def _apply_transition(self, db: AsyncSession, order: Order, current: OrderStatus, requested: OrderStatus):
        async with self._unit_of_work(db):
            applied = await OrderRepository.compare_and_set_status(
                db, order.id, order.tenant_id, current, requested, _utcnow()
            )
            if not applied:
                raise ConflictError(f"Order {order.id} changed while it was being updated")
            await CountAggregator.decrement(db, order.tenant_id, current)
            await CountAggregator.increment(db, order.tenant_id, requested)
            updated = await OrderRepository.get_order(db, order.id)
            response = OrderResponse.model_validate(updated)
        return response

    # --- PAGINATED QUERIES ---

    async def _page(self, db: AsyncSession, tenant_id: str, statuses, page: int, page_size: int, after: str = None):
        if page < 1:
            raise ValidationError("page must be 1 or greater")
        if page_size not in ALLOWED_PAGE_SIZES:
            raise ValidationError(f"pageSize must be one of {', '.join(map(str, ALLOWED_PAGE_SIZES))}")

        total = await OrderRepository.count_by_status(db, tenant_id, statuses)
        if after:
            rows = await OrderRepository.list_by_status(
                db, tenant_id, statuses, limit=page_size, after=decode_cursor(after)
            )
        else:
            rows = await OrderRepository.list_by_status(
                db, tenant_id, statuses, limit=page_size, offset=(page - 1) * page_size
            )

        return PageResponse(
            orders=[OrderResponse.model_validate(o) for o in rows],
            total_count=total,
            page=page,
            page_size=page_size,
            total_pages=math.ceil(total / page_size),
            next_cursor=encode_cursor(rows[-1]) if len(rows) == page_size else None,
        )

    async def query_by_status(self, db: AsyncSession, tenant_id: str, status, page: int = 1, page_size: int = 10, after: str = None):
        return await self._page(db, tenant_id, [_coerce_status(status)], page, page_size, after)

    async def history(self, db: AsyncSession, tenant_id: str, page: int = 1, page_size: int = 10, after: str = None):
        """Finished orders: delivered, picked up or cancelled."""
        return await self._page(db, tenant_id, sorted(TERMINAL_STATUSES), page, page_size, after)

    # --- COUNTS ---

    async def counts(self, db: AsyncSession, tenant_id: str):
        return await CountAggregator.snapshot(db, tenant_id)

    async def rebuild_counts(self, db: AsyncSession, tenant_id: str):
        async with self._unit_of_work(db):
            snapshot = await CountAggregator.rebuild(db, tenant_id)
        return snapshot

    # --- SUMMARIES ---

    async def items_to_pack(self, db: AsyncSession, tenant_id: str):
        rows = await OrderRepository.item_quantities(db, tenant_id, OrderStatus.ACCEPTED)
        details = [ItemQuantity(name=name, quantity=int(quantity)) for name, quantity in rows]
        return ItemsToPackResponse(item_details=details, total_items=sum(d.quantity for d in details))

    async def public_status(self, db: AsyncSession, order_id: str):
        order = await OrderRepository.get_order(db, order_id)
        if order is None:
            raise NotFoundError("Order not found")
        return PublicOrderStatus(
            order_id=order.id,
            status=order.status,
            restaurant_name=order.restaurant_name,
            created_at=_as_utc(order.created_at),
            total_amount=order.total_amount,
            order_type=order.order_type,
            payment_method=order.payment_method,
            items=[PublicOrderItem.model_validate(item) for item in order.items],
        )

    async def summary(self, db: AsyncSession, tenant_id: str, time_frame: str = None,
                      start: date = None, end: date = None, today: date = None):
        window_start, window_end, label = summary_window(time_frame, start, end, today)
        orders = await OrderRepository.orders_between(db, tenant_id, window_start, window_end)

        tz = ZoneInfo(SUMMARY_TIMEZONE)
        sold = Counter()
        daily = OrderedDict()
        for order in sorted(orders, key=lambda o: (_as_utc(o.created_at), o.id)):
            day = _as_utc(order.created_at).astimezone(tz).date().isoformat()
            daily[day] = daily.get(day, 0.0) + order.total_amount
            for item in order.items:
                sold[item.name] += item.quantity

        return SummaryResponse(
            total_orders=len(orders),
            total_revenue=sum(o.total_amount for o in orders),
            total_items_sold=sum(sold.values()),
            popular_items=[PopularItem(name=n, total_sold=q) for n, q in sold.most_common(5)],
            daily_revenue=[DailyRevenue(date=d, revenue=r) for d, r in daily.items()],
            recent_orders=[OrderResponse.model_validate(o) for o in orders[:5]],
            time_frame=label,
        )
