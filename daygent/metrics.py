"""
Metrics and observability for the Daygent proxy.

Provides structured logging and metrics collection for monitoring.
"""

import json
import logging
import statistics as stats
from collections import defaultdict, deque
from dataclasses import dataclass, asdict
from datetime import datetime, timezone
from pathlib import Path
from threading import Lock
from typing import Any, Deque, Optional


@dataclass
class MetricEvent:
    """A single metric event."""
    timestamp: str
    event_type: str  # request, rejection, outcome, error
    request_id: str
    workspace_id: str
    data: dict[str, Any]


def _p95(values: list[float]) -> float:
    if len(values) >= 20:
        return stats.quantiles(values, n=20)[18]
    return max(values) if values else 0


class MetricsCollector:
    """
    Collects and aggregates metrics from proxy calls.

    Keeps running counters plus a bounded window of recent events and
    cost/latency samples; percentiles are over that window.
    """

    def __init__(
        self,
        metrics_file: Optional[Path] = None,
        enable_logging: bool = True,
        max_events: int = 10_000,
        max_samples: int = 1_000,
    ):
        """
        Initialize metrics collector.

        Args:
            metrics_file: Optional file to write metrics to (JSONL format)
            enable_logging: Whether to enable structured logging
            max_events: How many recent events to keep in memory
            max_samples: How many recent cost and latency samples to keep
        """
        self.metrics_file = metrics_file
        self.enable_logging = enable_logging

        self.logger = logging.getLogger("daygent.metrics")
        if enable_logging and not self.logger.handlers:
            handler = logging.StreamHandler()
            handler.setFormatter(
                logging.Formatter(
                    "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
                )
            )
            self.logger.addHandler(handler)
            self.logger.setLevel(logging.INFO)

        self._lock = Lock()
        self._events: Deque[MetricEvent] = deque(maxlen=max_events)
        self._total_events = 0
        self._cost_total = 0.0
        self._counters: dict[str, int] = defaultdict(int)
        self._histograms: dict[str, Deque[float]] = defaultdict(
            lambda: deque(maxlen=max_samples)
        )

    def record_request(
        self,
        request_id: str,
        workspace_id: str,
        provider: str,
        model: str,
        endpoint: str,
        **extra: Any,
    ) -> None:
        """Record an incoming proxy call."""
        self._record_event(
            event_type="request",
            request_id=request_id,
            workspace_id=workspace_id,
            data={"provider": provider, "model": model, "endpoint": endpoint, **extra},
        )
        with self._lock:
            self._counters["requests_total"] += 1
            self._counters[f"requests_by_provider_{provider}"] += 1
            self._counters[f"requests_by_endpoint_{endpoint}"] += 1

    def record_rejection(
        self,
        request_id: str,
        workspace_id: str,
        kind: str,
        message: str,
        **extra: Any,
    ) -> None:
        """
        Record a call rejected before dispatch.

        Args:
            request_id: Request identifier
            workspace_id: Workspace identifier
            kind: Error kind (validation, rate_limited, quota_exceeded, ...)
            message: Human-readable reason
        """
        self._record_event(
            event_type="rejection",
            request_id=request_id,
            workspace_id=workspace_id,
            data={"kind": kind, "message": message, **extra},
        )
        with self._lock:
            self._counters["rejections_total"] += 1
            self._counters[f"rejections_{kind}"] += 1

    def record_outcome(
        self,
        request_id: str,
        workspace_id: str,
        cost: float,
        latency_ms: int,
        input_tokens: int,
        output_tokens: int,
        cached: bool = False,
        **extra: Any,
    ) -> None:
        """Record a successful call."""
        self._record_event(
            event_type="outcome",
            request_id=request_id,
            workspace_id=workspace_id,
            data={
                "cost_usd": cost,
                "latency_ms": latency_ms,
                "input_tokens": input_tokens,
                "output_tokens": output_tokens,
                "cached": cached,
                **extra,
            },
        )
        with self._lock:
            self._counters["outcomes_total"] += 1
            if cached:
                self._counters["outcomes_cached"] += 1
            self._cost_total += cost
            self._histograms["cost_usd"].append(cost)
            self._histograms["latency_ms"].append(latency_ms)

    def record_error(
        self,
        request_id: str,
        workspace_id: str,
        error_type: str,
        error_message: str,
        **extra: Any,
    ) -> None:
        """Record a failure after dispatch or an internal error."""
        self._record_event(
            event_type="error",
            request_id=request_id,
            workspace_id=workspace_id,
            data={"error_type": error_type, "error_message": error_message, **extra},
        )
        with self._lock:
            self._counters["errors_total"] += 1
            self._counters[f"errors_{error_type}"] += 1

        if self.enable_logging:
            self.logger.error(
                f"Error in request {request_id}: {error_type} - {error_message}"
            )

    def _record_event(
        self,
        event_type: str,
        request_id: str,
        workspace_id: str,
        data: dict,
    ) -> None:
        event = MetricEvent(
            timestamp=datetime.now(timezone.utc).isoformat(),
            event_type=event_type,
            request_id=request_id,
            workspace_id=workspace_id,
            data=data,
        )

        with self._lock:
            self._events.append(event)
            self._total_events += 1

        if self.metrics_file:
            with open(self.metrics_file, "a") as f:
                f.write(json.dumps(asdict(event)) + "\n")

        if self.enable_logging:
            self.logger.info(
                f"{event_type.upper()}: request_id={request_id}, "
                f"workspace_id={workspace_id}, data={data}"
            )

    def get_stats(self) -> dict:
        """
        Get aggregated statistics.

        Returns:
            Dictionary with metrics summary
        """
        with self._lock:
            cost_values = list(self._histograms.get("cost_usd", []))
            latency_values = list(self._histograms.get("latency_ms", []))
            counters = dict(self._counters)
            total_events = self._total_events
            cost_total = self._cost_total

        return {
            "counters": counters,
            "cost": {
                "total_usd": cost_total,
                "avg_usd": stats.mean(cost_values) if cost_values else 0,
                "p95_usd": _p95(cost_values),
            },
            "latency": {
                "avg_ms": stats.mean(latency_values) if latency_values else 0,
                "p50_ms": stats.median(latency_values) if latency_values else 0,
                "p95_ms": _p95(latency_values),
            },
            "total_events": total_events,
        }

    def reset(self) -> None:
        """Reset all metrics."""
        with self._lock:
            self._events.clear()
            self._total_events = 0
            self._cost_total = 0.0
            self._counters.clear()
            self._histograms.clear()
