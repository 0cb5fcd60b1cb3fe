"""
Per-tenant status counts (dashboard badges).

The `order_status_counts` rows are a cache over `orders`. increment/decrement
run inside the caller's transaction, next to the status write they mirror, so
a committed reader never sees one without the other. `recompute` scans the
orders table and is the oracle the cache must always agree with.
"""
from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from .models import OrderStatus, OrderStatusCount
from .repository import OrderRepository
from .schemas import CountsResponse

logger = structlog.get_logger(__name__)


def _insert_for(db: AsyncSession):
    if db.bind.dialect.name == "postgresql":
        return pg_insert
    return sqlite_insert


def _snapshot(tenant_id: str, totals: dict) -> CountsResponse:
    return CountsResponse(
        tenant_id=tenant_id,
        counts={status.value: int(totals.get(status, 0)) for status in OrderStatus},
    )


class CountAggregator:

    @staticmethod
    async def _adjust(db: AsyncSession, tenant_id: str, status: OrderStatus, delta: int):
        insert = _insert_for(db)
        stmt = insert(OrderStatusCount).values(
            tenant_id=tenant_id, status=OrderStatus(status), count=delta
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["tenant_id", "status"],
            set_={"count": OrderStatusCount.count + delta},
        )
        await db.execute(stmt)

    @staticmethod
    async def increment(db: AsyncSession, tenant_id: str, status: OrderStatus):
        await CountAggregator._adjust(db, tenant_id, status, 1)

    @staticmethod
    async def decrement(db: AsyncSession, tenant_id: str, status: OrderStatus):
        await CountAggregator._adjust(db, tenant_id, status, -1)

    @staticmethod
    async def snapshot(db: AsyncSession, tenant_id: str) -> CountsResponse:
        result = await db.execute(
            select(OrderStatusCount.status, OrderStatusCount.count)
            .where(OrderStatusCount.tenant_id == tenant_id)
        )
        return _snapshot(tenant_id, {OrderStatus(status): count for status, count in result.all()})

    @staticmethod
    async def recompute(db: AsyncSession, tenant_id: str) -> CountsResponse:
        return _snapshot(tenant_id, await OrderRepository.status_totals(db, tenant_id))

    @staticmethod
    def lock_statement(tenant_id: str):
        """Row locks on a tenant's cached counts, held until the rebuild commits."""
        return (
            select(OrderStatusCount.status)
            .where(OrderStatusCount.tenant_id == tenant_id)
            .with_for_update()
        )

    @staticmethod
    async def rebuild(db: AsyncSession, tenant_id: str) -> CountsResponse:
        """Overwrite the cached rows with a full recompute. Caller commits.

        Every writer adjusts these rows in its own transaction, so locking them
        first makes in-flight transitions finish before the scan and holds new
        ones back until the rebuild commits. Rows are written for every status,
        zeros included, so later writers never insert a row the lock missed.
        """
        await db.execute(CountAggregator.lock_statement(tenant_id))
        fresh = await CountAggregator.recompute(db, tenant_id)
        insert = _insert_for(db)
        for status, count in fresh.counts.items():
            stmt = insert(OrderStatusCount).values(
                tenant_id=tenant_id, status=OrderStatus(status), count=count
            )
            stmt = stmt.on_conflict_do_update(
                index_elements=["tenant_id", "status"],
                set_={"count": count},
            )
            await db.execute(stmt)
        logger.info("counts_rebuilt", tenant_id=tenant_id, counts=fresh.counts)
        return fresh
