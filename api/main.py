"""
FastAPI application entry point.

Configures the API server with CORS, routes, and lifecycle management.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import logfire

from config.settings import settings
from data_engine import exchange_manager
from data_engine.stream_manager import stream_manager
from api.routes import router

logger = logging.getLogger(__name__)


def configure_observability(app: FastAPI):
    """Configure logfire when a token is present."""
    if not settings.logfire_token:
        return

    logfire.configure(
        service_name=settings.logfire_service_name,
        token=settings.logfire_token,
        environment=settings.logfire_environment,
        scrubbing=logfire.ScrubbingOptions(
            extra_patterns=[
                r'api_?key', r'api_?secret',
                r'EXCHANGE_API_KEY', r'EXCHANGE_API_SECRET',
            ]
        ),
        console=logfire.ConsoleOptions(
            min_log_level=settings.logfire_console_level
        )
    )
    logfire.instrument_pydantic()
    logfire.instrument_aiohttp_client()
    logfire.instrument_fastapi(app, trace_sample_rate=settings.logfire_trace_sample_rate)
    logger.info("Logfire observability initialized.")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Handles startup and shutdown tasks.
    """
    configure_observability(app)

    logger.info("Starting Solidity Screener API (exchange=%s, quote=%s)",
                settings.default_exchange, settings.quote_asset)
    await exchange_manager.get_client()

    yield

    logger.info("Shutting down...")
    await stream_manager.stop_all()
    await exchange_manager.close_all()
    logger.info("All connections closed")


# Create FastAPI application
app = FastAPI(
    title="Solidity Screener",
    description="Order book concentration screening and live candlesticks for Binance spot",
    version="1.0.0",
    lifespan=lifespan,
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routes
app.include_router(router, prefix="/api/v1", tags=["screener"])


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "message": "Solidity Screener API",
        "docs": "/docs",
        "health": "/api/v1/health",
    }


def main():
    """Console entry point."""
    import uvicorn

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    uvicorn.run(
        "api.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.api_reload,
    )


if __name__ == "__main__":
    main()
