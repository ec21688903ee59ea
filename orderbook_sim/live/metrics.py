"""Feed metrics: normalizer outcomes per venue and store-ingest latency.

Counters are keyed ``"<venue>.<outcome>"`` (``okx.book``, ``bybit.parse_failed``,
``deribit.rejected``...). Latency is measured from frame receipt to the
store write, in milliseconds, over a bounded window of recent samples.
"""
from __future__ import annotations

import time
from collections import Counter, deque
from typing import Any, Dict, Iterable, Optional

QUANTILES = (0.5, 0.9, 0.99)


class LatencyWindow:
    """Most recent ``size`` samples with nearest-rank quantiles."""

    def __init__(self, size: int = 4096):
        self._samples: deque = deque(maxlen=size)
        self.total_count = 0

    def observe(self, value_ms: float) -> None:
        self._samples.append(float(value_ms))
        self.total_count += 1

    def quantiles(self, qs: Iterable[float] = QUANTILES) -> Dict[float, float]:
        ordered = sorted(self._samples)
        if not ordered:
            return {}
        last = len(ordered) - 1
        return {q: ordered[int(q * last)] for q in qs}

    def summary(self) -> Dict[str, float]:
        if not self._samples:
            return {"count": 0}
        qs = self.quantiles()
        window = list(self._samples)
        return {
            "count": len(window),
            "sum": sum(window),
            "min": min(window),
            "max": max(window),
            **{f"p{int(q * 100)}": v for q, v in qs.items()},
        }


class FeedMetrics:
    def __init__(self) -> None:
        self.started = time.perf_counter()
        self.ingest_ms = LatencyWindow()
        self.counters: Counter = Counter()

    def inc(self, key: str, value: int = 1) -> None:
        self.counters[key] += int(value)

    def record_outcome(self, venue: str, outcome: str) -> None:
        self.inc(f"{venue}.{outcome}")

    def get(self, key: str) -> int:
        return self.counters.get(key, 0)

    def observe_ingest(self, received_ns: int, written_ns: Optional[int] = None) -> None:
        end = time.perf_counter_ns() if written_ns is None else written_ns
        self.ingest_ms.observe((end - int(received_ns)) / 1e6)

    def snapshot(self) -> Dict[str, Any]:
        return {
            "uptime_sec": round(time.perf_counter() - self.started, 1),
            "ingest_latency_ms": self.ingest_ms.summary(),
            "counters": dict(self.counters),
        }

    def to_prometheus(self) -> str:
        """Text exposition with venue / outcome labels."""
        out = ["# TYPE orderbook_frames_total counter"]
        for key in sorted(self.counters):
            venue, _, outcome = key.partition(".")
            out.append(f'orderbook_frames_total{{venue="{venue}",outcome="{outcome}"}} {self.counters[key]}')
        out.append("# TYPE orderbook_uptime_seconds gauge")
        out.append(f"orderbook_uptime_seconds {time.perf_counter() - self.started:.1f}")
        summary = self.ingest_ms.summary()
        if summary["count"]:
            out.append("# TYPE orderbook_ingest_latency_ms summary")
            for q, v in self.ingest_ms.quantiles().items():
                out.append(f'orderbook_ingest_latency_ms{{quantile="{q}"}} {v}')
            out.append(f"orderbook_ingest_latency_ms_sum {summary['sum']}")
            out.append(f"orderbook_ingest_latency_ms_count {summary['count']}")
        return "\n".join(out) + "\n"


__all__ = ["LatencyWindow", "FeedMetrics"]
