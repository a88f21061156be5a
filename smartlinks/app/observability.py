from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from threading import Lock

from fastapi import Request

logger = logging.getLogger("smartlinks")


@dataclass
class MetricsSnapshot:
    requests_total: int
    requests_5xx: int
    total_latency_ms: float


class MetricsRegistry:
    def __init__(self) -> None:
        self._lock = Lock()
        self._requests_total = 0
        self._requests_5xx = 0
        self._total_latency_ms = 0.0
        self._by_route_status: dict[tuple[str, int], int] = {}
        self._redirects_by_outcome: dict[str, int] = {}

    def record(self, *, route: str, status_code: int, latency_ms: float) -> None:
        with self._lock:
            self._requests_total += 1
            if status_code >= 500:
                self._requests_5xx += 1
            self._total_latency_ms += latency_ms
            key = (route, status_code)
            self._by_route_status[key] = self._by_route_status.get(key, 0) + 1

    def record_redirect(self, outcome: str) -> None:
        with self._lock:
            self._redirects_by_outcome[outcome] = self._redirects_by_outcome.get(outcome, 0) + 1

    def redirect_count(self, outcome: str) -> int:
        with self._lock:
            return self._redirects_by_outcome.get(outcome, 0)

    def snapshot(self) -> MetricsSnapshot:
        with self._lock:
            return MetricsSnapshot(
                requests_total=self._requests_total,
                requests_5xx=self._requests_5xx,
                total_latency_ms=self._total_latency_ms,
            )

    def to_prometheus(self) -> str:
        snap = self.snapshot()
        avg_latency = (
            snap.total_latency_ms / snap.requests_total if snap.requests_total else 0.0
        )
        lines = [
            "# HELP smartlinks_requests_total Total HTTP requests",
            "# TYPE smartlinks_requests_total counter",
            f"smartlinks_requests_total {snap.requests_total}",
            "# HELP smartlinks_requests_5xx_total Total 5xx HTTP requests",
            "# TYPE smartlinks_requests_5xx_total counter",
            f"smartlinks_requests_5xx_total {snap.requests_5xx}",
            "# HELP smartlinks_request_avg_latency_ms Average request latency ms",
            "# TYPE smartlinks_request_avg_latency_ms gauge",
            f"smartlinks_request_avg_latency_ms {avg_latency:.2f}",
            "# HELP smartlinks_redirects_total Smart link resolutions by outcome",
            "# TYPE smartlinks_redirects_total counter",
        ]
        with self._lock:
            for outcome, count in sorted(self._redirects_by_outcome.items()):
                lines.append(f'smartlinks_redirects_total{{outcome="{outcome}"}} {count}')
            for (route, status_code), count in sorted(self._by_route_status.items()):
                lines.append(
                    'smartlinks_route_requests_total'
                    f'{{route="{route}",status="{status_code}"}} {count}'
                )
        return "\n".join(lines) + "\n"


def configure_logging() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )


async def observe_request(
    request: Request,
    call_next,
    *,
    metrics: MetricsRegistry,
):
    start = time.perf_counter()
    path = request.url.path
    try:
        response = await call_next(request)
        latency_ms = (time.perf_counter() - start) * 1000.0
        metrics.record(route=path, status_code=response.status_code, latency_ms=latency_ms)
        logger.info(
            "request_complete method=%s path=%s status=%s latency_ms=%.2f",
            request.method,
            path,
            response.status_code,
            latency_ms,
        )
        return response
    except Exception:
        latency_ms = (time.perf_counter() - start) * 1000.0
        metrics.record(route=path, status_code=500, latency_ms=latency_ms)
        logger.exception(
            "request_failed method=%s path=%s latency_ms=%.2f",
            request.method,
            path,
            latency_ms,
        )
        raise
