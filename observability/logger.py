"""
Observability Layer — Structured Logging & metrics.

Responsibility:
- Log events in a structured JSON format
- Track metrics (latency, tokens, lookup tier, action transitions)
- Contextual logging (session_id, trace_id)

This replaces standard logging for domain events.
"""

import json
import logging
import time
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any

logger = logging.getLogger("observability")


class Observability:
    """Structured logger for agent events."""

    def __init__(self, session_id: str | None = None):
        self.session_id = session_id or str(uuid.uuid4())
        self.trace_id = str(uuid.uuid4())

    def log_event(self, event_type: str, payload: dict[str, Any], level: str = "INFO") -> None:
        """Log a structured event."""
        entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "session_id": self.session_id,
            "trace_id": self.trace_id,
            "event": event_type,
            "level": level,
            **payload,
        }
        log_method = getattr(logger, level.lower(), logger.info)
        log_method(json.dumps(entry, ensure_ascii=False, default=str))

    @contextmanager
    def measure(self, operation: str, metadata: dict[str, Any] | None = None):
        """Context manager to measure execution time of an operation."""
        start_time = time.perf_counter()
        meta = metadata or {}
        success = True
        error = None
        try:
            yield
        except Exception as e:
            success = False
            error = str(e)
            raise
        finally:
            duration_ms = (time.perf_counter() - start_time) * 1000
            self.log_event(
                "execution_metric",
                {
                    "operation": operation,
                    "duration_ms": round(duration_ms, 2),
                    "success": success,
                    "error": error,
                    **meta,
                },
            )

    def span(self, trace_id: str) -> "Observability":
        """Create a new logger instance sharing the trace_id (for deep calls)."""
        obs = Observability(self.session_id)
        obs.trace_id = trace_id
        return obs

    # ─── Domain events ────────────────────────────────────────

    def log_routing(self, text: str, domains: list[str], confidences: list[float]) -> None:
        self.log_event(
            "routing_decision",
            {
                "input_chars": len(text or ""),
                "domains": domains,
                "confidences": [round(value, 3) for value in confidences],
            },
        )

    def log_action_transition(self, action_id: str, action_type: str, previous: str, current: str, error: str | None = None) -> None:
        self.log_event(
            "action_transition",
            {
                "action_id": action_id,
                "action_type": action_type,
                "from": previous,
                "to": current,
                "error": error,
            },
            level="WARNING" if current == "failed" else "INFO",
        )

    def log_lookup(self, query: str, source: str, found: bool) -> None:
        self.log_event("product_lookup", {"query": query, "source": source, "found": found})
