import asyncio
from contextlib import asynccontextmanager

from fastapi import FastAPI
import uvicorn

import models  # noqa: F401  registers tables on Base
from crud import SqlTripStore
from database import AsyncSessionLocal, init_models
from sessions import TripSessionManager
from vehicles import VehicleConfigProvider
from webhook import router
from worker import consume, sweeper
from logging_config import get_logger

logger = get_logger("main", "main.log")


@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_models()

    vehicles = VehicleConfigProvider(AsyncSessionLocal)
    await vehicles.refresh()

    store = SqlTripStore()
    manager = TripSessionManager(store, vehicles)
    app.state.store = store
    app.state.manager = manager

    tasks = [
        asyncio.create_task(consume(manager)),
        asyncio.create_task(sweeper(manager, vehicles)),
    ]
    logger.info("Trip engine started")
    try:
        yield
    finally:
        for t in tasks:
            t.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        await manager.flush_pending()
        if manager.pending_count():
            logger.warning(f"Shutting down with {manager.pending_count()} trips pending persistence")


app = FastAPI(title="DriveLink-Trips", lifespan=lifespan)
app.include_router(router)

if __name__=="__main__":
    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=False)
