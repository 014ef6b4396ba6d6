"""
FastAPI Application Entry Point.

This module creates and configures the FastAPI application instance for
tts-relay. It sets up logging, routing and the lifespan that owns the
proxy's HTTP clients and background jobs.

Lifespan:
    startup:  build SpeechProxy from settings (one set of httpx clients)
    shutdown: drain persistence jobs (jobs.drain_timeout_s), close clients

Usage:
    # Run with uvicorn
    uvicorn tts_relay.main:app --host 0.0.0.0 --port 8000

    # Or use the module directly
    python -m uvicorn tts_relay.main:app --reload
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from tts_relay import __version__
from tts_relay.api.dependencies import get_settings
from tts_relay.api.routes import router
from tts_relay.core.config import Settings
from tts_relay.core.logging import configure_logging, get_logger, info, success
from tts_relay.services.speech_proxy import SpeechProxy

_LOG = get_logger("tts-relay.main")


def create_app(settings: Optional[Settings] = None, proxy: Optional[SpeechProxy] = None) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        settings: Settings to build the proxy from (default: get_settings()).
        proxy: Ready-made proxy to serve with. It is drained on shutdown
            but not closed; its owner closes it.

    Returns:
        FastAPI: Configured application instance ready to serve requests.
    """
    # Initialize structured logging (reads TTS_RELAY_LOG_LEVEL env var)
    configure_logging()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = proxy is None
        current = proxy
        if current is None:
            config = (settings or get_settings()).get_relay_config()
            current = SpeechProxy.from_config(config)
        app.state.proxy = current
        success(_LOG, "startup", storage=current.store.backend, generator=current.generator.model)
        try:
            yield
        finally:
            await current.drain()
            if owned:
                await current.aclose()
            info(_LOG, "shutdown")

    app = FastAPI(title="tts-relay", version=__version__, lifespan=lifespan)
    app.include_router(router)   # /v1/text-to-speech, /v1/blobs, /health, /metrics
    return app


# Global application instance for ASGI servers (uvicorn, gunicorn, etc.)
app = create_app()
