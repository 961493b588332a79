"""Thread-safe turn event collector and aggregate statistics."""

from __future__ import annotations

import statistics
import threading
import time
from collections import Counter
from datetime import datetime, timezone

from .types import SOURCE_NAMES, TurnResult


class TurnMetrics:
    """Collects one event per turn plus thread deletions.

    Aggregates are the only state shared across threads; events carry
    thread ids but never message text.
    """

    def __init__(self, max_events: int = 10_000) -> None:
        self.start_time: float = time.time()
        self.max_events = max_events
        self._events: list[dict] = []
        self._lock = threading.Lock()
        self._seq = 0

    def record(self, event: dict) -> None:
        """Append an event (thread-safe). Adds ``_seq`` and ``ts``."""
        with self._lock:
            event = dict(event)
            event["_seq"] = self._seq
            if "ts" not in event:
                event["ts"] = datetime.now(timezone.utc).isoformat()
            self._seq += 1
            self._events.append(event)
            if len(self._events) > self.max_events:
                del self._events[: len(self._events) - self.max_events]

    def record_turn(self, result: TurnResult, elapsed_ms: float = 0.0) -> None:
        verification = result.verification
        contamination = result.contamination
        self.record({
            "type": "turn",
            "thread_id": result.thread_id,
            "turn_id": result.turn_id,
            "state": result.state.value,
            "reset": result.reset,
            "reset_reason": result.reset_reason,
            "similarity": result.topic.similarity if result.topic else None,
            "confidence": verification.confidence_score if verification else None,
            "verification_substituted": bool(
                verification and verification.verified_response != result.raw_response
            ),
            "contamination_score": contamination.contamination_score if contamination else None,
            "contamination_substituted": result.contamination_substituted,
            "generation_failed": result.generation_failed,
            "sources": [n for n, on in (result.context.sources.items() if result.context else []) if on],
            "degraded": list(result.degraded),
            "elapsed_ms": round(elapsed_ms, 1),
        })

    def events_since(self, seq: int) -> list[dict]:
        """Return events with ``_seq`` > *seq*."""
        with self._lock:
            return [e for e in self._events if e["_seq"] > seq]

    def snapshot(self) -> dict:
        with self._lock:
            turns = [e for e in self._events if e.get("type") == "turn"]
            deletions = [e for e in self._events if e.get("type") == "thread_deleted"]

            confidences = [t["confidence"] for t in turns if t.get("confidence") is not None]
            elapsed = [t["elapsed_ms"] for t in turns if t.get("elapsed_ms")]
            resets = Counter(t["reset_reason"] for t in turns if t.get("reset"))
            source_usage = {
                name: sum(1 for t in turns if name in t.get("sources", []))
                for name in SOURCE_NAMES
            }
            degraded = Counter(step for t in turns for step in t.get("degraded", []))

            return {
                "type": "snapshot",
                "uptime_s": round(time.time() - self.start_time, 1),
                "total_turns": len(turns),
                "total_errors": sum(1 for t in turns if t.get("state") == "error"),
                "resets": dict(resets),
                "contamination_substitutions": sum(1 for t in turns if t.get("contamination_substituted")),
                "verification_substitutions": sum(1 for t in turns if t.get("verification_substituted")),
                "generation_failures": sum(1 for t in turns if t.get("generation_failed")),
                "avg_confidence": round(statistics.mean(confidences), 1) if confidences else 0,
                "avg_elapsed_ms": round(statistics.mean(elapsed), 1) if elapsed else 0,
                "source_usage": source_usage,
                "degraded_steps": dict(degraded),
                "threads_deleted": len(deletions),
                "recent_turns": list(turns[-50:]),
            }
