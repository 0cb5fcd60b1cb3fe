from fastapi import FastAPI
from shared.config.database import engine, Base

# IMPORTANT: import models so they register with Base
from services.order_service import models as order_models

from services.order_service.main import order_app

app = FastAPI(title="Restaurant Orders Cluster")

@app.on_event("startup")
async def startup_event():
    async with engine.begin() as conn:
        # Create all tables
        await conn.run_sync(Base.metadata.create_all)

@app.on_event("shutdown")
async def shutdown_event():
    order_app.state.order_service.channel.close()

# REST + WebSocket for restaurant dashboards
app.mount("/orders", order_app)
