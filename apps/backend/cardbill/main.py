import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .api import register_routers
from .core.config import settings
from .core.exceptions import register_exception_handlers
from .core.logging import setup_logging
from .core.scheduler import get_scheduler, start_invoice_scheduler

setup_logging(settings.LOG_LEVEL, json_format=settings.LOG_JSON)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if settings.SCHEDULER_ENABLED:
        start_invoice_scheduler()
    logger.info("%s started (env=%s)", settings.APP_NAME, settings.ENV)
    yield
    get_scheduler().shutdown(wait=False)


app = FastAPI(title=settings.APP_NAME, version="0.1.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Total-Count"],
)

register_exception_handlers(app)


@app.get("/health")
def health():
    return {"status": "ok"}


register_routers(app)
