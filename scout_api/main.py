from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address

from scout_api.api.deps import current_dataset_service
from scout_api.api.routes.analytics import router as analytics_router
from scout_api.api.routes.chat import router as chat_router
from scout_api.api.routes.dataset import router as dataset_router
from scout_api.api.routes.filters import router as filters_router
from scout_api.api.routes.health import router as health_router
from scout_api.core.config import settings
from scout_api.core.logging import setup_logging
from scout_api.db import models  # noqa: F401  registers tables
from scout_api.db.session import Base, SessionLocal, engine
from scout_api.services.scheduler import start_scheduler

setup_logging()
Base.metadata.create_all(bind=engine)


def _dataset_cache():
    svc = current_dataset_service()
    return svc.cache if svc is not None else None


@asynccontextmanager
async def lifespan(app: FastAPI):
    scheduler = None
    if settings.features.scheduled_cleanup:
        scheduler = start_scheduler(settings, SessionLocal, _dataset_cache)
    app.state.scheduler = scheduler
    try:
        yield
    finally:
        if scheduler is not None:
            scheduler.shutdown(wait=False)


limiter = Limiter(key_func=get_remote_address, default_limits=[settings.rate_limit])
app = FastAPI(title=settings.app_name, lifespan=lifespan)
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
app.add_middleware(SlowAPIMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(health_router, prefix=settings.api_prefix)
app.include_router(dataset_router, prefix=settings.api_prefix)
app.include_router(analytics_router, prefix=settings.api_prefix)
app.include_router(filters_router, prefix=settings.api_prefix)
app.include_router(chat_router, prefix=settings.api_prefix)
