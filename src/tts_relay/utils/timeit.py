"""
Timing Utilities.

A small context manager used to time the I/O stages of a request
(signed URL lookup, cache fetch, generation start, upload). Works the
same inside sync and async code since it only reads perf_counter().

Example:
    with timeit("cache_lookup") as t:
        url = await store.signed_url(name, 60)
    info(_LOG, "lookup", seconds=t.seconds)
"""
from __future__ import annotations

from dataclasses import dataclass
from time import perf_counter
from typing import Any, Dict, Optional


@dataclass
class Timing:
    """
    Timing measurement result.

    Attributes:
        name: What was timed (e.g., "cache_lookup").
        seconds: Duration in seconds.
        meta: Optional metadata.
    """
    name: str
    seconds: float
    meta: Optional[Dict[str, Any]] = None


class timeit:
    """
    Context manager for timing code blocks.

    The result is available as `t.timing` after the block exits, and
    `t.seconds` is a rounded shortcut for log fields (-1.0 while running).
    """

    def __init__(self, name: str, meta: Optional[Dict[str, Any]] = None):
        self.name = name
        self.meta = meta
        self._t0: float | None = None
        self.timing: Timing | None = None

    def __enter__(self) -> "timeit":
        self._t0 = perf_counter()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        assert self._t0 is not None
        self.timing = Timing(name=self.name, seconds=perf_counter() - self._t0, meta=self.meta)

    @property
    def seconds(self) -> float:
        if self.timing is None:
            return -1.0
        return round(self.timing.seconds, 4)
