import logging
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .api.router import api_router
from .core.config import get_settings

settings = get_settings()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("attachkit starting (environment=%s)", settings.environment)
    app.state.upload_client = httpx.AsyncClient(timeout=settings.upload_timeout_seconds)
    try:
        yield
    finally:
        await app.state.upload_client.aclose()
        app.state.upload_client = None


app = FastAPI(title="attachkit API", docs_url="/api/docs", lifespan=lifespan)
app.include_router(api_router)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.frontend_origin_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/")
async def read_root() -> dict:
    return {"status": "ok", "service": "attachkit"}


@app.get("/health")
async def health_check() -> dict:
    return {"healthy": True}
