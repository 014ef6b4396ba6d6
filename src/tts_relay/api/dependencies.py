"""
FastAPI Dependency Injection Providers.

The proxy and its clients are built once in the application lifespan
(main.py) and stored on app.state; route handlers receive them through
Depends() instead of module globals, so tests can inject fakes by
passing a ready-made proxy to create_app().

Lifecycle:
    1. Application startup (main.py lifespan)
       └── SpeechProxy.from_config(get_settings().get_relay_config())
           └── stored as app.state.proxy

    2. Request handling
       └── get_proxy(request) returns app.state.proxy

    3. Shutdown
       └── proxy.drain() then proxy.aclose()

See Also:
    - core/config.py: Settings class and load_settings()
    - services/speech_proxy.py: SpeechProxy
"""
from __future__ import annotations

from functools import lru_cache

from fastapi import HTTPException, Request

from tts_relay.core.config import Settings, load_settings
from tts_relay.services.speech_proxy import SpeechProxy


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Load and cache application settings.

    The path comes from $TTS_RELAY_SETTINGS (default config/settings.yaml);
    a missing default file means built-in defaults plus environment
    overrides.
    """
    return load_settings()


def get_proxy(request: Request) -> SpeechProxy:
    """Return the SpeechProxy built by the application lifespan."""
    proxy = getattr(request.app.state, "proxy", None)
    if proxy is None:
        # Only reachable when the app is served without its lifespan
        raise HTTPException(status_code=503, detail="Service not ready")
    return proxy
