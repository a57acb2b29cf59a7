# vouali/infra/timings.py
from __future__ import annotations
import json
import logging
import os
import socket
import time
from typing import Dict, Optional, List
import statistics
from fastapi import FastAPI

import httpx

logger = logging.getLogger(__name__)

# one list per kind; no locks, single-threaded event loop
_TIMINGS: Dict[str, List[float]] = {}


def now_ts() -> float:
    # monotonic for durations
    return time.perf_counter()


def record_timing(kind: str, value: float) -> None:
    lst = _TIMINGS.get(kind)
    if lst is None:
        lst = []
        _TIMINGS[kind] = lst
    lst.append(float(value))


class timeit:
    """async usage:
        async with timeit("lots.activate"):
            await fn()
    """
    __slots__ = ("_kind", "_t0")

    def __init__(self, kind: str):
        self._kind = kind
        self._t0 = 0.0

    async def __aenter__(self):
        self._t0 = now_ts()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        record_timing(self._kind, now_ts() - self._t0)


def _mean_std(values: list[float]) -> tuple[float, float]:
    if not values:
        return 0.0, 0.0
    return (
        statistics.mean(values),
        statistics.stdev(values) if len(values) > 1 else 0.0
    )


def snapshot() -> List[Dict[str, float]]:
    """One aggregate per kind: {"kind", "n", "mean", "std"}."""
    out = []
    for kind, vals in sorted(_TIMINGS.items()):
        mean, std = _mean_std(vals)
        out.append({"kind": kind, "n": len(vals), "mean": mean, "std": std})
    return out


def reset() -> None:
    _TIMINGS.clear()


def _to_ndjson_aggregates() -> bytes:
    lines = [
        json.dumps(rec, separators=(",", ":")) + "\n" for rec in snapshot()
    ]
    return "".join(lines).encode("utf-8")


async def flush_to_collector(
    collector_url: str,
    run_id: str,
    worker_id: Optional[str] = None,
    timeout: float = 10.0,
) -> Dict[str, int]:
    """
    POST the aggregates as NDJSON to a metrics collector.
    Headers: x-run-id, x-worker-id
    Response expected: {"accepted": <int>}
    """
    if not _TIMINGS:
        return {"accepted": 0}

    worker_id = worker_id or f"{os.getpid()}@{socket.gethostname()}"
    headers = {
        "content-type": "application/x-ndjson",
        "x-run-id": run_id,
        "x-worker-id": worker_id,
    }

    async with httpx.AsyncClient(timeout=timeout) as client:
        r = await client.post(
            f"{collector_url.rstrip('/')}/v1/metric/flush",
            content=_to_ndjson_aggregates(),
            headers=headers,
        )
        r.raise_for_status()
        ack = r.json()

    # clear after successful send
    _TIMINGS.clear()
    return {"accepted": int(ack.get("accepted", 0))}


def install_shutdown_flush(
    app: FastAPI,
    url_env: str = "TIMINGS_URL",
    run_id_env: str = "TIMINGS_RUN_ID",
):
    """
    Env:
      TIMINGS_URL    = http://127.0.0.1:7071
      TIMINGS_RUN_ID = label for this process run (defaults to "default")
    """
    @app.on_event("shutdown")
    async def _flush_on_shutdown():
        url = os.getenv(url_env, "")
        if not url:
            return
        run_id = os.getenv(run_id_env, "default")
        try:
            ack = await flush_to_collector(collector_url=url, run_id=run_id)
            logger.info("timings flushed", extra={"accepted": ack["accepted"]})
        except httpx.HTTPError:
            logger.warning("timings flush to %s failed", url, exc_info=True)
