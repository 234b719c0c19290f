"""Measure EventBus overhead vs direct call baseline.

Simplistic micro-benchmark: appends N synthetic messages to a
MessageCacheStore with a subscribed listener and the metrics collector
attached (each append publishes ConversationUpdated), versus the same
appends on a store without a bus.
Outputs JSON with total_ms and per_event_us plus overhead_ratio.

Not a rigorous perf test.
"""
from __future__ import annotations

import json
import os
import sys
import time
from datetime import datetime, timedelta, timezone
from statistics import mean

# ensure repository root on path
ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from core.eventbus import EventBus  # noqa: E402
from core.events import attach_metrics  # noqa: E402
from core.messaging import Message, MessageCacheStore  # noqa: E402

N = 2000
_T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)


async def _no_fetch(counterpart_id: str):  # pragma: no cover - unused
    return []


def _messages(n: int) -> list[Message]:
    return [
        Message(
            id=f"m{i}",
            sender="bench-a",
            receiver="bench-b",
            content="x",
            created_at=_T0 + timedelta(seconds=i),
        )
        for i in range(n)
    ]


def bench_events(msgs: list[Message]) -> float:  # ms
    bus = EventBus("bench")
    attach_metrics(bus)
    store = MessageCacheStore(_no_fetch, events=bus)
    store.subscribe("bench-b", lambda entry: None)
    start = time.time()
    for m in msgs:
        store.append("bench-b", m)
    return (time.time() - start) * 1000


def bench_baseline(msgs: list[Message]) -> float:  # ms
    store = MessageCacheStore(_no_fetch)
    start = time.time()
    for m in msgs:
        store.append("bench-b", m)
    return (time.time() - start) * 1000


def main():  # noqa: D401
    runs = 5
    msgs = _messages(N)
    event_ms = []
    base_ms = []
    for _ in range(runs):
        event_ms.append(bench_events(msgs))
        base_ms.append(bench_baseline(msgs))
    ev_avg = mean(event_ms)
    base_avg = mean(base_ms)
    per_event_us = (ev_avg / N) * 1000
    overhead_ratio = (ev_avg - base_avg) / ev_avg if ev_avg else 0.0
    print(
        json.dumps(
            {
                "iterations": N,
                "event_avg_ms": round(ev_avg, 3),
                "baseline_avg_ms": round(base_avg, 3),
                "per_event_us": round(per_event_us, 3),
                "overhead_ratio": round(overhead_ratio, 4),
            },
            ensure_ascii=False,
        )
    )


if __name__ == "__main__":  # pragma: no cover
    main()
