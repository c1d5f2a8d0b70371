from __future__ import annotations

import time
import contextvars
from typing import Any, Dict, Optional, List

# Context-local aggregator for a single maintenance run (backfill, cache sweep)
metrics_ctx: contextvars.ContextVar[Optional[Dict[str, Any]]] = contextvars.ContextVar("lore_metrics", default=None)


def now() -> float:
    return time.perf_counter()


def elapsed_ms(t0: float) -> int:
    return int((time.perf_counter() - t0) * 1000)


def begin_run() -> None:
    metrics_ctx.set({"llm": {}, "fallbacks": {}})


def _percentile(values: List[int], p: float) -> Optional[int]:
    if not values:
        return None
    s = sorted(values)
    k = max(0, min(len(s) - 1, int(round((p / 100.0) * (len(s) - 1)))))
    return int(s[k])


def end_run() -> Dict[str, Any]:
    agg = metrics_ctx.get() or {}
    metrics_ctx.set(None)
    out: Dict[str, Any] = {"llm": {}, "fallbacks": dict(agg.get("fallbacks") or {})}
    for key, v in (agg.get("llm") or {}).items():
        lat = v.get("latency_ms") or []
        out["llm"][key] = {
            "calls": int(v.get("calls", 0)),
            "errors": int(v.get("errors", 0)),
            "latency": {"p50": _percentile(lat, 50), "p95": _percentile(lat, 95), "max": max(lat) if lat else None},
        }
    return out


def record_fallback(kind: str) -> None:
    agg = metrics_ctx.get()
    if agg is None:
        return
    agg["fallbacks"][kind] = int(agg["fallbacks"].get(kind, 0)) + 1


def record_llm(provider: str, model: str, *, latency_ms: int = 0, ok: bool = True) -> None:
    agg = metrics_ctx.get()
    if agg is None:
        return
    key = f"{provider}:{model}"
    llm = agg["llm"].setdefault(key, {"calls": 0, "latency_ms": [], "errors": 0})
    llm["calls"] += 1
    if latency_ms:
        llm["latency_ms"].append(int(latency_ms))
    if not ok:
        llm["errors"] += 1
