import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from starlette.middleware.cors import CORSMiddleware

from shared import config
from shared.auth import LoginRateLimiter
from shared.db import SessionLocal
from shared.errors import register_error_handlers
from shared.logging_config import setup_logging
from services.user_management.controllers.auth_service import router as auth_router
from services.user_management.controllers.student_service import router as student_router
from services.attendance_management_system.controllers.session_service import (
    router as session_router,
    complete_expired_sessions,
    generate_sessions_for_range,
)
from services.attendance_management_system.controllers.attendance_service import router as attendance_router
from services.face_recognition.controllers.face_service import router as face_router

logger = logging.getLogger(__name__)


async def run_session_sweep(session_factory=SessionLocal, interval: int = None):
    """Complete expired sessions forever; a failing pass is logged and retried next tick."""
    interval = config.SESSION_SWEEP_INTERVAL_SECONDS if interval is None else interval
    while True:
        await asyncio.sleep(interval)
        try:
            async with session_factory() as db:
                result = await complete_expired_sessions(db)
            if result.activated or result.completed:
                logger.info(f"Session sweep: {result.activated} activated, {result.completed} completed")
        except Exception:
            logger.exception("Session sweep failed")


async def pregenerate_sessions(session_factory=SessionLocal, days: int = None) -> int:
    days = config.SESSION_LOOKAHEAD_DAYS if days is None else days
    try:
        async with session_factory() as db:
            created = await generate_sessions_for_range(db, config.local_now().date(), days)
    except Exception:
        logger.exception("Session pre-generation failed")
        return 0
    logger.info(f"Pre-generated {created} sessions for the next {days} days")
    return created


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()

    await pregenerate_sessions()

    sweeper = None
    if config.SESSION_SWEEP_INTERVAL_SECONDS > 0:
        sweeper = asyncio.create_task(run_session_sweep())
    yield

    if sweeper is not None:
        sweeper.cancel()
        try:
            await sweeper
        except asyncio.CancelledError:
            pass


app = FastAPI(title="Attendance Check-in Backend", lifespan=lifespan)
app.state.login_limiter = LoginRateLimiter()

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_error_handlers(app)


@app.get("/")
def health_check():
    return {"status": "Attendance backend is running", "timezone": config.APP_TIMEZONE}


app.include_router(auth_router)
app.include_router(student_router)
app.include_router(session_router)
app.include_router(attendance_router)
app.include_router(face_router)
