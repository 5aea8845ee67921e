import os

import httpx
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from pagebot.config import settings
from pagebot.logging_config import get_logger, setup_logging
from pagebot.routers import takeover, webhook
from pagebot.services.pipeline import build_pipeline
from pagebot.services.token_service import BotSettingsCache

setup_logging(settings.log_level)

logger = get_logger("main")

app = FastAPI(
    title="Pagebot API",
    description="Facebook Messenger webhook and reply pipeline",
    version="0.1.0",
    debug=settings.debug,
)

cors_env = os.environ.get("CORS_ALLOW_ORIGINS", "*")
cors_origins = [origin.strip() for origin in cors_env.split(",") if origin.strip()]
if not cors_origins:
    cors_origins = ["*"]

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(webhook.router)
app.include_router(takeover.router)

SHUTDOWN_DRAIN_SECONDS = 10.0


@app.on_event("startup")
async def start_pipeline() -> None:
    app.state.http_client = httpx.AsyncClient(timeout=settings.http_timeout_seconds)
    app.state.settings_cache = BotSettingsCache()
    app.state.pipeline = build_pipeline(app.state.http_client, settings_cache=app.state.settings_cache)
    logger.info(
        "Messenger pipeline started",
        extra={"context": {"batching": settings.batching_enabled, "batch_delay": settings.batch_delay_seconds}},
    )


@app.on_event("shutdown")
async def stop_pipeline() -> None:
    pipeline = getattr(app.state, "pipeline", None)
    if pipeline is not None:
        await pipeline.shutdown(timeout=SHUTDOWN_DRAIN_SECONDS)
    http_client = getattr(app.state, "http_client", None)
    if http_client is not None:
        await http_client.aclose()
    logger.info("Messenger pipeline stopped")


@app.get("/health")
async def health():
    return {"status": "ok"}
