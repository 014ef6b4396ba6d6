"""
FastAPI REST API Layer for tts-relay.

This package defines all HTTP endpoints:
    - routes.py: /v1/text-to-speech, /v1/blobs/{name}, /health, /metrics
    - schemas.py: JSON response models
    - dependencies.py: FastAPI dependency injection
"""
