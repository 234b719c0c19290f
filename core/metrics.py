"""Minimal in-memory metrics collector.

Core API:
    inc(name, labels=None, value=1)
    observe(name, value, labels=None)
    snapshot() -> dict (copy for safe reading)

Messaging metric names (documented for discoverability):
    - socket_state_transitions_total{from,to}
    - socket_connect_failures_total{error_type}
    - message_cache_total{result}                 # hit|miss
    - message_cache_appends_total{result}         # inserted|duplicate
    - history_fetch_errors_total{error_type}
    - history_fetch_stale_total
    - recent_chats_cache_total{result}            # hit|miss|shared
    - recent_chats_fetch_errors_total{error_type}
    - notifications_total{result}         # created|coalesced|suppressed
    - toasts_total{result}                        # shown|suppressed|clicked
    - messages_sent_total / message_send_errors_total{error_type}
    - inbound_payload_invalid_total{event}

Helper functions wrap ``inc`` for the label sets above to reduce spelling
drift between call sites.
"""
from __future__ import annotations

from threading import RLock
from time import time
from typing import Dict, Tuple, Any

_COUNTERS: Dict[Tuple[str, Tuple[Tuple[str, str], ...]], float] = {}
_HIST: Dict[Tuple[str, Tuple[Tuple[str, str], ...]], list] = {}
_LOCK = RLock()


def _norm_labels(labels: dict[str, Any] | None) -> Tuple[Tuple[str, str], ...]:
    if not labels:
        return tuple()
    return tuple(sorted((str(k), str(v)) for k, v in labels.items()))


def _key_str(name: str, labels: Tuple[Tuple[str, str], ...]) -> str:
    if not labels:
        return name
    return name + "{" + ",".join(f"{k}={v}" for k, v in labels) + "}"


def inc(
    name: str,
    labels: dict[str, Any] | None = None,
    value: float = 1.0,
) -> None:
    key = (name, _norm_labels(labels))
    with _LOCK:
        _COUNTERS[key] = _COUNTERS.get(key, 0.0) + value


def observe(
    name: str,
    value: float,
    labels: dict[str, Any] | None = None,
) -> None:
    key = (name, _norm_labels(labels))
    with _LOCK:
        _HIST.setdefault(key, []).append(value)


def get(name: str, labels: dict[str, Any] | None = None) -> float:
    """Current counter value (0 when never incremented)."""
    with _LOCK:
        return _COUNTERS.get((name, _norm_labels(labels)), 0.0)


def snapshot() -> dict[str, Any]:
    with _LOCK:
        counters = {
            _key_str(name, labels): v
            for (name, labels), v in _COUNTERS.items()
        }
        hist = {}
        for (name, labels), vals in _HIST.items():
            if not vals:
                continue
            ordered = sorted(vals)
            hist[_key_str(name, labels)] = {
                "count": len(vals),
                "min": ordered[0],
                "max": ordered[-1],
                "p50": ordered[len(ordered) // 2],
                "last": vals[-1],
            }
        return {"ts": time(), "counters": counters, "histograms": hist}


def reset_for_tests() -> None:  # pragma: no cover
    with _LOCK:
        _COUNTERS.clear()
        _HIST.clear()


__all__ = [
    "inc",
    "observe",
    "get",
    "snapshot",
    "reset_for_tests",
]


# ------------------- Connection -------------------

def inc_state_transition(old: str, new: str) -> None:
    inc("socket_state_transitions_total", {"from": old, "to": new})


def inc_connect_failure(error_type: str) -> None:
    inc("socket_connect_failures_total", {"error_type": error_type})


def inc_invalid_payload(event: str) -> None:
    inc("inbound_payload_invalid_total", {"event": event})


def inc_send(ok: bool, error_type: str | None = None) -> None:
    if ok:
        inc("messages_sent_total")
    else:
        inc(
            "message_send_errors_total",
            {"error_type": error_type or "send-rejected"},
        )


# ------------------- Caches -------------------

def inc_message_cache(result: str) -> None:
    """result: hit | miss"""
    inc("message_cache_total", {"result": result})


def inc_append(inserted: bool) -> None:
    inc(
        "message_cache_appends_total",
        {"result": "inserted" if inserted else "duplicate"},
    )


def inc_recent_cache(result: str) -> None:
    """result: hit | miss | shared (joined an in-flight fetch)"""
    inc("recent_chats_cache_total", {"result": result})


# ------------------- Notifications -------------------

def inc_notification(result: str) -> None:
    """result: created | coalesced | suppressed | evicted"""
    inc("notifications_total", {"result": result})


def inc_toast(result: str) -> None:
    inc("toasts_total", {"result": result})


__all__ += [
    "inc_state_transition",
    "inc_connect_failure",
    "inc_invalid_payload",
    "inc_send",
    "inc_message_cache",
    "inc_append",
    "inc_recent_cache",
    "inc_notification",
    "inc_toast",
]
