# file: main.py

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.config import SCHEDULER_ENABLED
from app.controllers.notification import router as notification_router
from app.controllers.schedules import router as schedules_router
from app.database.connection import init_db
from app.services.notification_scheduler import SweepScheduler

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)

app = FastAPI(title="FitRemind API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(schedules_router, prefix="/api/schedules", tags=["schedules"])
app.include_router(notification_router, prefix="/api/notifications", tags=["notifications"])

sweep_scheduler = SweepScheduler()


@app.get("/")
async def root():
    return {"message": "FitRemind API is running"}


@app.on_event("startup")
async def startup_event():
    await init_db()
    if SCHEDULER_ENABLED:
        sweep_scheduler.start()
    else:
        logger.info("Reminder sweep disabled (SCHEDULER_ENABLED=0)")


@app.on_event("shutdown")
async def shutdown_event():
    sweep_scheduler.shutdown()
