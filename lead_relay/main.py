

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse

from lead_relay.config import get_settings
from lead_relay.api.routes import webhooks
from lead_relay.services.relay import close_relay


logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    settings = get_settings()
    logger.info(f"Starting {settings.app_name} v{settings.app_version}")
    logger.info(f"Pipedrive API: {settings.pipedrive_base_url}")
    logger.info(f"Property Finder API: {settings.pf_api_base_url}")
    logger.info(f"Dubizzle signature check: {'configured' if settings.dubizzle_secret else 'missing secret'}")
    yield
    await close_relay()
    logger.info("Shutting down application")


settings = get_settings()
app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc"
)


app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(webhooks.router)


@app.get("/", response_class=PlainTextResponse)
async def root():
    """Liveness probe."""
    return "Property Finder → Pipedrive relay is live"


@app.get("/health")
async def health_check():
    """Global health check endpoint."""
    return {
        "status": "healthy",
        "service": settings.app_name,
        "version": settings.app_version
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "lead_relay.main:app",
        host="0.0.0.0",
        port=settings.port,
    )
