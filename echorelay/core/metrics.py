"""Relay observability metrics.

Thread-safe counters and a unit-size histogram for the echo relay.
Exposed via GET /api/v1/metrics (JSON snapshot).

Usage::

    from echorelay.core import metrics

    metrics.record_session_opened()
    metrics.record_unit_echoed(len(unit.data))
    metrics.snapshot()
"""

import bisect
import threading

# Upper bounds (bytes) for the unit-size histogram; the last bucket is +Inf
UNIT_BYTES_BUCKETS: tuple[int, ...] = (
    1_024,
    16_384,
    65_536,
    262_144,
    1_048_576,
    4_194_304,
    16_777_216,
)

# ----- Shared state (module-level for singleton behavior) -----
_lock = threading.Lock()
_counters: dict[str, int] = {}
_active_sessions = 0
_bucket_counts: list[int] = []
_unit_bytes_sum = 0


def reset() -> None:
    """Zero every counter (used by tests and at process start)."""
    global _active_sessions, _unit_bytes_sum, _counters, _bucket_counts
    with _lock:
        _counters = {
            "sessions_opened": 0,
            "sessions_closed": 0,
            "units_echoed": 0,
            "bytes_echoed": 0,
            "units_rejected": 0,
        }
        _active_sessions = 0
        _bucket_counts = [0] * (len(UNIT_BYTES_BUCKETS) + 1)
        _unit_bytes_sum = 0


reset()


def record_session_opened() -> None:
    """Call when a transport session is accepted."""
    global _active_sessions
    with _lock:
        _counters["sessions_opened"] += 1
        _active_sessions += 1


def record_session_closed() -> None:
    """Call when a transport session is torn down."""
    global _active_sessions
    with _lock:
        _counters["sessions_closed"] += 1
        _active_sessions = max(0, _active_sessions - 1)


def record_unit_echoed(size: int) -> None:
    """Count one echoed unit and add its size to the histogram."""
    global _unit_bytes_sum
    with _lock:
        _counters["units_echoed"] += 1
        _counters["bytes_echoed"] += size
        _bucket_counts[bisect.bisect_left(UNIT_BYTES_BUCKETS, size)] += 1
        _unit_bytes_sum += size


def record_unit_rejected() -> None:
    """Call when an incoming unit fails validation."""
    with _lock:
        _counters["units_rejected"] += 1


def snapshot() -> dict:
    """Return a JSON-serialisable copy of all metrics."""
    with _lock:
        buckets = {}
        cumulative = 0
        for bound, count in zip((*UNIT_BYTES_BUCKETS, None), _bucket_counts):
            cumulative += count
            buckets["+Inf" if bound is None else str(bound)] = cumulative
        return {
            "counters": dict(_counters),
            "active_sessions": _active_sessions,
            "unit_bytes": {
                "count": _counters["units_echoed"],
                "sum": _unit_bytes_sum,
                "buckets": buckets,
            },
        }
