import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from redis.asyncio import Redis

from config import settings
from models import async_session, engine, ensure_schema
from alerting.evaluator import EvaluationPolicy
from api.alerts import router as alerts_router
from api.tanks import router as tanks_router
from core.websocket import router as ws_router, alerts_to_ws_bridge
from services.alert_service import AlertService
from services.escalation_scheduler import EscalationScheduler
from services.reading_ingestor import ReadingIngestor
from services.repositories import SqlAlchemyAlertRepository, SqlAlchemyTankRepository

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL, logging.INFO),
    format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
)
logger = logging.getLogger("o2watch.main")

VERSION = "0.1.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("O2Watch backend starting... DEBUG=%s", settings.DEBUG)

    await ensure_schema()

    # Redis
    redis = Redis.from_url(settings.REDIS_URL, decode_responses=False)
    app.state.redis = redis
    logger.info("Redis connected: %s", settings.REDIS_URL)

    service = AlertService(
        SqlAlchemyAlertRepository(async_session),
        SqlAlchemyTankRepository(async_session),
        policy=EvaluationPolicy.from_settings(settings),
        redis=redis,
        channel=settings.ALERTS_CHANNEL,
    )
    app.state.alert_service = service

    # Sensor readings (Redis) → AlertService
    ingestor = ReadingIngestor(redis, service)
    app.state.reading_ingestor = ingestor
    ingestor_task = asyncio.create_task(ingestor.start())

    # Auto-escalation
    scheduler = EscalationScheduler(service)
    app.state.escalation_scheduler = scheduler
    scheduler_task = None
    if settings.AUTO_ESCALATION_ENABLED:
        scheduler_task = asyncio.create_task(scheduler.start())
    else:
        logger.info("Auto-escalation DISABLED (AUTO_ESCALATION_ENABLED=false)")

    # Alerts → WebSocket bridge
    ws_bridge_task = asyncio.create_task(alerts_to_ws_bridge(redis, settings.ALERTS_CHANNEL))

    yield

    # Shutdown
    logger.info("O2Watch backend shutting down...")
    await ingestor.stop()
    await scheduler.stop()

    all_tasks = [ingestor_task, ws_bridge_task]
    if scheduler_task:
        all_tasks.append(scheduler_task)
    for t in all_tasks:
        t.cancel()
    for t in all_tasks:
        try:
            await t
        except asyncio.CancelledError:
            pass

    await redis.close()
    await engine.dispose()
    logger.info("Shutdown complete")


app = FastAPI(
    title="O2Watch API",
    version=VERSION,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(tanks_router)
app.include_router(alerts_router)
app.include_router(ws_router)


@app.get("/health")
async def health():
    return {"status": "ok", "version": VERSION}
