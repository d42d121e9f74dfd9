"""
In-process metrics, served at GET /metrics.

Counters are named "<area>.<event>" (render.claimed, generation.error,
grounding.below_threshold). Histograms keep a rolling window of samples:
collaborator latencies in ms and accepted grounding scores in [0, 1].
Per process only; each worker and API replica reports its own.
"""
from collections import defaultdict, deque
from typing import Any, Deque, Dict, List

WINDOW = 500

_counters: Dict[str, int] = defaultdict(int)
_samples: Dict[str, Deque[float]] = defaultdict(lambda: deque(maxlen=WINDOW))


def inc(name: str, value: int = 1) -> None:
    _counters[name] += value


def observe(name: str, value: float) -> None:
    _samples[name].append(float(value))


def _percentile(ordered: List[float], pct: float) -> float:
    # nearest rank
    index = max(0, min(len(ordered) - 1, int(round(pct * len(ordered))) - 1))
    return ordered[index]


def summarize(samples) -> Dict[str, float]:
    ordered = sorted(samples)
    return {
        "count": len(ordered),
        "mean": round(sum(ordered) / len(ordered), 4),
        "min": round(ordered[0], 4),
        "p50": round(_percentile(ordered, 0.50), 4),
        "p95": round(_percentile(ordered, 0.95), 4),
        "max": round(ordered[-1], 4),
    }


def get_snapshot() -> Dict[str, Any]:
    return {
        "counters": dict(sorted(_counters.items())),
        "histograms": {name: summarize(values) for name, values in sorted(_samples.items()) if values},
    }


def reset() -> None:
    _counters.clear()
    _samples.clear()
