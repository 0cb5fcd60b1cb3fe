from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from sqlalchemy.exc import InterfaceError, OperationalError
from shared.config.database import engine, Base
from shared.observability import setup_observability
from shared.security import limiter
from .broadcast import BroadcastChannel
from .exceptions import OrderServiceError
from .router import router, public_router, internal_router
from .models import Order, OrderItem, OrderStatusCount # Import to register with Base
from .service import OrderService

order_app = FastAPI(title="Order Service", version="2.0.0")

# --- OBSERVABILITY BOOTSTRAP ---
setup_observability(order_app, "order_service")

# --- SECURITY SETUP ---
order_app.state.limiter = limiter
order_app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# One channel per process: every dashboard of this instance subscribes here
order_app.state.order_service = OrderService(BroadcastChannel())

order_app.include_router(public_router)
order_app.include_router(internal_router)
order_app.include_router(router)


@order_app.exception_handler(OrderServiceError)
async def order_error_handler(request: Request, exc: OrderServiceError):
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail, "code": exc.code})


# Reads fail outside a unit of work; report them the same way as writes
@order_app.exception_handler(OperationalError)
@order_app.exception_handler(InterfaceError)
async def store_unavailable_handler(request: Request, exc: Exception):
    return JSONResponse(
        status_code=503,
        content={"detail": "Order store is unavailable, try again", "code": "unavailable"},
    )


@order_app.on_event("startup")
async def startup_event():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


@order_app.on_event("shutdown")
async def shutdown_event():
    order_app.state.order_service.channel.close()
