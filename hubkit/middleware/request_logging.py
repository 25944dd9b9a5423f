"""
Request logging middleware - one line per served request.

Each line names the matched contract endpoint ("post:/users"), the status,
the duration and the correlation ID. Which requests get a line is decided by
the app config:
- REQUEST_LOG_ENABLED: master switch
- REQUEST_LOG_SAMPLE_RATE: fraction of ordinary requests to log
- REQUEST_LOG_ENDPOINTS: path prefixes that are always logged
Server errors are always logged, at WARNING.
"""

import logging
import random
import time
from dataclasses import dataclass
from typing import Mapping, Tuple

from flask import Flask, g, request


logger = logging.getLogger("hubkit.request")


@dataclass(frozen=True)
class RequestLogPolicy:
    enabled: bool = True
    sample_rate: float = 0.0
    watchlist: Tuple[str, ...] = ()

    @classmethod
    def from_config(cls, config: Mapping) -> "RequestLogPolicy":
        try:
            sample_rate = float(config.get("REQUEST_LOG_SAMPLE_RATE", 0.0))
        except (TypeError, ValueError):
            sample_rate = 0.0
        return cls(
            enabled=bool(config.get("REQUEST_LOG_ENABLED", True)),
            sample_rate=min(max(sample_rate, 0.0), 1.0),
            watchlist=tuple(config.get("REQUEST_LOG_ENDPOINTS") or ()),
        )

    def wants(self, path: str, status: int) -> bool:
        if status >= 500:
            return True
        if any(path.startswith(prefix) for prefix in self.watchlist):
            return True
        return random.random() < self.sample_rate


def setup_request_logging_middleware(app: Flask) -> None:
    """Attach request timing and the per-request log line to the app."""
    policy = RequestLogPolicy.from_config(app.config)
    if not policy.enabled:
        return

    @app.before_request
    def _start_timer():
        g.request_start = time.perf_counter()

    @app.after_request
    def _log_request(response):
        status = response.status_code
        if not policy.wants(request.path, status):
            return response

        started = getattr(g, "request_start", None)
        duration_ms = round((time.perf_counter() - started) * 1000, 2) if started is not None else None
        endpoint = request.endpoint or "-"
        correlation_id = getattr(g, "correlation_id", None)

        logger.log(
            logging.WARNING if status >= 500 else logging.INFO,
            "api_request method=%s path=%s endpoint=%s status=%s duration_ms=%s correlation_id=%s",
            request.method,
            request.path,
            endpoint,
            status,
            duration_ms,
            correlation_id,
            extra={
                "event": "api_request",
                "endpoint": endpoint,
                "status": status,
                "correlation_id": correlation_id,
            },
        )
        return response
