"""
Log Formatters for JSON and Console Output.

    JsonlFormatter: one JSON object per line, for the log file
    ColoredConsoleFormatter: human-readable colored line, for stdout

Output Examples:
    JSONL (file):
        {"ts":"2026-01-15T14:30:05+03:00","level":2,"tag":"INFO","message":"cache_hit","request_id":"abc123","extra":{"key":"5a2b..."}}

    Console:
        14:30:05 [ INFO  ] (abc123) cache_hit key=5a2b1c0d 0.012s

Timing values are green under 100ms, yellow under 1s and red above.
Cache outcomes (cache=hit/miss/stale) and byte counts get their own colors
so a miss storm stands out when tailing the console.
"""
from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import Any, Dict

from . import colors
from .colors import Colors, get_tag_color


def _paint(text: str, color: str) -> str:
    # Looked up at call time so configure_logging() and tests can flip it
    if not colors.USE_COLORS:
        return text
    return f"{color}{text}{Colors.RESET}"


class JsonlFormatter(logging.Formatter):
    """
    Format log records as JSON Lines.

    Output Format:
        {
            "ts": "...",            # ISO timestamp, local timezone
            "level": 2,             # Numeric level (1-4)
            "tag": "INFO",
            "message": "cache_hit",
            "request_id": "abc123",
            "event": "...",         # optional
            "seconds": 0.5,         # optional
            "extra": {...}          # optional keyword fields
        }
    """

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created).astimezone().isoformat(),
            "level": getattr(record, "numeric_level", 2),
            "tag": getattr(record, "tag", record.levelname),
            "message": record.getMessage(),
            "request_id": getattr(record, "request_id", "-"),
        }

        event = getattr(record, "event", None)
        if event:
            payload["event"] = event

        seconds = getattr(record, "seconds", None)
        if seconds is not None:
            payload["seconds"] = seconds

        extra_data = getattr(record, "extra_data", None)
        if extra_data:
            payload["extra"] = extra_data

        return json.dumps(payload, ensure_ascii=False, default=str)


class ColoredConsoleFormatter(logging.Formatter):
    """
    Format log records as colored console lines.

    Output Format:
        HH:MM:SS [ TAG   ] (rid) message key=value 0.123s
    """

    def format(self, record: logging.LogRecord) -> str:
        ts = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        tag = getattr(record, "tag", record.levelname)
        rid = getattr(record, "request_id", "-")

        parts = [
            _paint(ts, Colors.DIM),
            _paint(f"[{tag:^7}]", get_tag_color(tag)),
        ]
        if rid != "-":
            parts.append(_paint(f"({rid})", Colors.DIM + Colors.CYAN))
        parts.append(record.getMessage())

        event = getattr(record, "event", None)
        if event:
            parts.append(_paint(f"event={event}", Colors.BLUE))

        seconds = getattr(record, "seconds", None)
        if seconds is not None:
            if seconds < 0.1:
                time_color = Colors.GREEN
            elif seconds < 1.0:
                time_color = Colors.YELLOW
            else:
                time_color = Colors.RED
            parts.append(_paint(f"{seconds:.3f}s", time_color))

        extra_data = getattr(record, "extra_data", None)
        if extra_data:
            for k, v in extra_data.items():
                parts.append(_paint(f"{k}={v}", self._field_color(k, v)))

        line = " ".join(parts)
        if record.exc_info:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line

    @staticmethod
    def _field_color(key: str, value: Any) -> str:
        if key == "cache":
            return {
                "hit": Colors.GREEN,
                "miss": Colors.YELLOW,
                "stale": Colors.MAGENTA,
            }.get(str(value), Colors.DIM)
        if key == "status" and isinstance(value, int):
            return Colors.GREEN if value < 400 else Colors.RED
        if key == "bytes" and isinstance(value, int):
            return Colors.CYAN
        return Colors.DIM
