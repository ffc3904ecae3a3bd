from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from shopwatch.api.v1 import api_v1
from shopwatch.core.config import settings
from shopwatch.core.logging import configure_logging
from shopwatch.db.session import SessionLocal, dispose_engine
from shopwatch.orchestration.job_processor import JobProcessor
from shopwatch.orchestration.scheduler import InProcessScheduler, ProcessorScheduler

logger = configure_logging(settings.LOG_LEVEL)


def build_scheduler() -> ProcessorScheduler:
    """
    JOBS_INLINE=true: passes run on a timer thread inside this process (dev, single box).
    Otherwise passes are Celery tasks, single-flighted through a Redis flag.
    """
    if settings.JOBS_INLINE:
        scheduler = InProcessScheduler(lambda: JobProcessor(SessionLocal, scheduler=scheduler).process_pending())
        return scheduler

    from shopwatch.core.celery_app import celery_app  # noqa: F401  binds shared tasks to our app
    from shopwatch.orchestration.tasks import celery_scheduler
    return celery_scheduler()


@asynccontextmanager
async def lifespan(app: FastAPI):
    app.state.scheduler = build_scheduler()
    logger.info("app.started scheduler=%s", type(app.state.scheduler).__name__)
    yield
    if isinstance(app.state.scheduler, InProcessScheduler):
        app.state.scheduler.cancel()
    dispose_engine()


app = FastAPI(title=settings.PROJECT_NAME, lifespan=lifespan)

# comma-separated browser origins for the ops/changes endpoints, e.g.
# BACKEND_CORS_ORIGINS=http://localhost:5173,https://admin.example.com
origins = [o.strip() for o in settings.BACKEND_CORS_ORIGINS.split(",") if o.strip()]


app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
)


# Origin check for mutating methods; server-to-server callbacks (webhooks) are exempt
TRUSTED = set(origins)
WEBHOOK_PATH_PREFIXES = (
    f"{settings.API_PREFIX}/webhooks/shopify",
)

@app.middleware("http")
async def origin_check(request: Request, call_next):
    p = request.url.path

    if p.startswith(WEBHOOK_PATH_PREFIXES):
        return await call_next(request)

    if request.method in {"POST", "PUT", "PATCH", "DELETE"}:
        origin = request.headers.get("origin")
        # no Origin (curl, cron, health checks): allowed
        if origin and origin not in TRUSTED:
            return JSONResponse(status_code=403, content={"detail": "Bad Origin"})

    return await call_next(request)


app.include_router(api_v1, prefix=settings.API_PREFIX)

# root liveness check (docker health check)
@app.get("/")
def root():
    return {
        "app": settings.PROJECT_NAME,
        "env": settings.ENVIRONMENT,
        "ok": True
    }
