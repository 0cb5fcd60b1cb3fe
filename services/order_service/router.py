"""
Dashboard-facing routes. Every tenant-scoped route takes the tenant from the
bearer token (get_current_tenant); the body never names a tenant.

Static paths are declared before `/{order_id}` so they are not swallowed by it.
"""
import asyncio
from datetime import date
from typing import Optional

import structlog
from fastapi import APIRouter, Depends, Query, Request, WebSocket, WebSocketDisconnect, status
from sqlalchemy.ext.asyncio import AsyncSession

from shared.config.database import get_db
from shared.config.settings import DEFAULT_PAGE_SIZE, TRANSITION_RATE_LIMIT
from shared.security import get_current_tenant, get_websocket_tenant, limiter, verify_internal_api_key
from .schemas import (
    CountsResponse,
    ItemsToPackResponse,
    OrderCreate,
    OrderResponse,
    PageResponse,
    PublicOrderStatus,
    StatusUpdate,
    SummaryResponse,
)
from .service import OrderService

logger = structlog.get_logger(__name__)

router = APIRouter()
public_router = APIRouter()
internal_router = APIRouter(prefix="/internal", dependencies=[Depends(verify_internal_api_key)])


def get_order_service(request: Request) -> OrderService:
    return request.app.state.order_service


@public_router.get("/health")
async def health_check():
    return {"service": "order", "status": "running"}


@public_router.get("/public/{order_id}", response_model=PublicOrderStatus)
async def public_order_status(
    order_id: str,
    db: AsyncSession = Depends(get_db),
    service: OrderService = Depends(get_order_service),
):
    """Customer-facing tracking page: no tenant, no personal details."""
    return await service.public_status(db, order_id)


@public_router.websocket("/ws")
async def order_events(websocket: WebSocket, tenant_id: Optional[str] = Depends(get_websocket_tenant)):
    """One subscription per connected dashboard, scoped to the token's tenant."""
    if tenant_id is None:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    service: OrderService = websocket.app.state.order_service
    # Subscribe before accepting so nothing published after the handshake is missed
    subscription = service.channel.subscribe(tenant_id)
    try:
        await websocket.accept()
    except Exception:
        subscription.close()
        raise

    async def watch_disconnect():
        # Dashboards never send anything; we only read to learn about the close
        try:
            while True:
                message = await websocket.receive()
                if message["type"] == "websocket.disconnect":
                    break
        finally:
            subscription.close()

    watcher = asyncio.create_task(watch_disconnect())
    try:
        async for event in subscription:
            await websocket.send_json(event.model_dump(mode="json"))
    except (WebSocketDisconnect, RuntimeError):
        # Socket went away between two events; the watcher has or will close the subscription
        logger.info("websocket_send_after_disconnect", tenant_id=tenant_id)
    finally:
        subscription.close()
        watcher.cancel()
        try:
            await watcher
        except asyncio.CancelledError:
            pass
        except (WebSocketDisconnect, RuntimeError) as e:
            # receive() on a socket that is already gone
            logger.info("websocket_watcher_stopped", tenant_id=tenant_id, error=str(e))


@router.post("/", response_model=OrderResponse, status_code=201)
@limiter.limit(TRANSITION_RATE_LIMIT)
async def create_order(
    request: Request,
    order: OrderCreate,
    tenant_id: str = Depends(get_current_tenant),
    db: AsyncSession = Depends(get_db),
    service: OrderService = Depends(get_order_service),
):
    return await service.create_order(db, tenant_id, order)


@router.get("/counts", response_model=CountsResponse)
async def order_counts(
    tenant_id: str = Depends(get_current_tenant),
    db: AsyncSession = Depends(get_db),
    service: OrderService = Depends(get_order_service),
):
    return await service.counts(db, tenant_id)


@router.get("/history", response_model=PageResponse)
async def order_history(
    page: int = Query(1),
    page_size: int = Query(DEFAULT_PAGE_SIZE, alias="pageSize"),
    after: Optional[str] = Query(None),
    tenant_id: str = Depends(get_current_tenant),
    db: AsyncSession = Depends(get_db),
    service: OrderService = Depends(get_order_service),
):
    return await service.history(db, tenant_id, page, page_size, after)


@router.get("/summary/items-to-pack", response_model=ItemsToPackResponse)
async def items_to_pack(
    tenant_id: str = Depends(get_current_tenant),
    db: AsyncSession = Depends(get_db),
    service: OrderService = Depends(get_order_service),
):
    return await service.items_to_pack(db, tenant_id)


@router.get("/summary", response_model=SummaryResponse)
async def orders_summary(
    time_frame: Optional[str] = Query(None, alias="timeFrame"),
    start: Optional[date] = Query(None),
    end: Optional[date] = Query(None),
    tenant_id: str = Depends(get_current_tenant),
    db: AsyncSession = Depends(get_db),
    service: OrderService = Depends(get_order_service),
):
    return await service.summary(db, tenant_id, time_frame, start, end)


@router.get("/status/{order_status}", response_model=PageResponse)
async def orders_by_status(
    order_status: str,
    page: int = Query(1),
    page_size: int = Query(DEFAULT_PAGE_SIZE, alias="pageSize"),
    after: Optional[str] = Query(None),
    tenant_id: str = Depends(get_current_tenant),
    db: AsyncSession = Depends(get_db),
    service: OrderService = Depends(get_order_service),
):
    return await service.query_by_status(db, tenant_id, order_status, page, page_size, after)


@router.get("/{order_id}", response_model=OrderResponse)
async def get_order(
    order_id: str,
    tenant_id: str = Depends(get_current_tenant),
    db: AsyncSession = Depends(get_db),
    service: OrderService = Depends(get_order_service),
):
    return await service.get_order(db, order_id, tenant_id)


@router.post("/{order_id}/status", response_model=OrderResponse)
@limiter.limit(TRANSITION_RATE_LIMIT)
async def transition_order(
    request: Request,
    order_id: str,
    update: StatusUpdate,
    tenant_id: str = Depends(get_current_tenant),
    db: AsyncSession = Depends(get_db),
    service: OrderService = Depends(get_order_service),
):
    return await service.transition(db, order_id, tenant_id, update.status)


# Recovery: rebuild cached badge counts from the orders table
@internal_router.post("/counts/{tenant_id}/rebuild", response_model=CountsResponse)
async def rebuild_counts(
    tenant_id: str,
    db: AsyncSession = Depends(get_db),
    service: OrderService = Depends(get_order_service),
):
    return await service.rebuild_counts(db, tenant_id)
