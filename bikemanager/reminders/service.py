from contextlib import asynccontextmanager
from typing import Callable, Optional
import logging

from fastapi import FastAPI
from prometheus_fastapi_instrumentator import Instrumentator

from .api import router as reminders_router
from .config import ReminderSettings, settings as default_settings
from .pipeline import ReminderPipeline, build_pipeline

logger = logging.getLogger(__name__)


def create_app(
    settings: ReminderSettings = default_settings,
    pipeline_factory: Optional[Callable[[], ReminderPipeline]] = None,
) -> FastAPI:
    factory = pipeline_factory or (lambda: build_pipeline(settings=settings))

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        pipeline = factory()
        app.state.reminders = pipeline
        pipeline.start()
        try:
            yield
        finally:
            pipeline.close()
            app.state.reminders = None

    app = FastAPI(title="Maintenance Reminder Service", lifespan=lifespan)
    app.include_router(reminders_router, prefix="/api/jobs", tags=["jobs"])
    if settings.METRICS_ENABLED:
        Instrumentator().instrument(app).expose(app, endpoint="/metrics")
    return app
