"""
Core Infrastructure for tts-relay.

This package provides foundational components:
    - config.py: Configuration loading and validation
    - errors.py: Error codes and caller-facing exceptions
    - logging/: Structured logging with numeric levels
    - metrics.py: Prometheus metrics collection
"""
