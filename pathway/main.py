from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from prometheus_fastapi_instrumentator import Instrumentator

from pathway.config import Settings
from pathway.controllers import v1
from pathway.db import init_db
from pathway.logger import setup_logging

settings = Settings()
setup_logging(settings.log_level)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    await asyncio.to_thread(init_db, settings)
    logger.info("Pathway API started (env=%s)", settings.app_env)
    yield


app = FastAPI(
    title="Pathway API",
    version="1.0.0",
    lifespan=lifespan,
)

app.include_router(v1.router)

Instrumentator().instrument(app).expose(app)
