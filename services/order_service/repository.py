from datetime import datetime
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import and_, func, or_, select, update
from .models import Order, OrderItem, OrderStatus

class OrderRepository:
    """
    Data access for the orders table.

    Nothing here commits. The service owns the unit of work so an order write
    and its count update always land in the same transaction.
    """

    @staticmethod
    async def add_order(db: AsyncSession, order: Order):
        db.add(order)
        await db.flush()
        return order

    @staticmethod
    async def get_order(db: AsyncSession, order_id: str):
        # populate_existing: a retry after a lost race must see the fresh row,
        # not the copy cached in the session's identity map
        result = await db.execute(
            select(Order)
            .where(Order.id == order_id)
            .execution_options(populate_existing=True)
        )
        return result.scalars().first()

    @staticmethod
    async def compare_and_set_status(
        db: AsyncSession,
        order_id: str,
        tenant_id: str,
        expected: OrderStatus,
        next_status: OrderStatus,
        now: datetime,
    ) -> bool:
        """Single conditional UPDATE. False means another writer changed the status first."""
        result = await db.execute(
            update(Order)
            .where(
                Order.id == order_id,
                Order.tenant_id == tenant_id,
                Order.status == expected,
            )
            .values(status=next_status, updated_at=now, version=Order.version + 1)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    @staticmethod
    async def count_by_status(db: AsyncSession, tenant_id: str, statuses):
        result = await db.execute(
            select(func.count(Order.id)).where(
                Order.tenant_id == tenant_id,
                Order.status.in_(statuses),
            )
        )
        return result.scalar_one()

    @staticmethod
    async def list_by_status(
        db: AsyncSession,
        tenant_id: str,
        statuses,
        limit: int,
        offset: int = 0,
        after: tuple | None = None,
    ):
        """Newest first, ID breaks ties. `after` is a (created_at, id) keyset position."""
        stmt = select(Order).where(
            Order.tenant_id == tenant_id,
            Order.status.in_(statuses),
        )
        if after is not None:
            created_at, order_id = after
            stmt = stmt.where(
                or_(
                    Order.created_at < created_at,
                    and_(Order.created_at == created_at, Order.id < order_id),
                )
            )
        stmt = stmt.order_by(Order.created_at.desc(), Order.id.desc()).offset(offset).limit(limit)
        result = await db.execute(stmt)
        return result.scalars().all()

    @staticmethod
    async def status_totals(db: AsyncSession, tenant_id: str):
        """Full scan of a tenant's orders grouped by status."""
        result = await db.execute(
            select(Order.status, func.count(Order.id))
            .where(Order.tenant_id == tenant_id)
            .group_by(Order.status)
        )
        return {OrderStatus(status): count for status, count in result.all()}

    @staticmethod
    async def item_quantities(db: AsyncSession, tenant_id: str, status: OrderStatus):
        result = await db.execute(
            select(OrderItem.name, func.sum(OrderItem.quantity))
            .join(Order, Order.id == OrderItem.order_id)
            .where(Order.tenant_id == tenant_id, Order.status == status)
            .group_by(OrderItem.name)
            .order_by(func.sum(OrderItem.quantity).desc(), OrderItem.name)
        )
        return result.all()

    @staticmethod
    async def orders_between(db: AsyncSession, tenant_id: str, start: datetime, end: datetime):
        result = await db.execute(
            select(Order)
            .where(
                Order.tenant_id == tenant_id,
                Order.created_at >= start,
                Order.created_at <= end,
            )
            .order_by(Order.created_at.desc(), Order.id.desc())
        )
        return result.scalars().all()
