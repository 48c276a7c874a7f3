import logging
import os
import sys
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import structlog


def _processor_chain(log_format: str) -> List[Any]:
    renderer = structlog.processors.JSONRenderer() if log_format == "json" else structlog.dev.ConsoleRenderer()
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.format_exc_info,
        renderer,
    ]


def setup_logging(
    log_level: str = "INFO",
    log_format: str = "json",
    service_name: str = "insight-worker"
) -> None:
    """Route structlog through stdlib logging on stdout"""

    level = logging.getLevelName(log_level.upper())
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=level if isinstance(level, int) else logging.INFO,
    )

    structlog.configure(
        processors=_processor_chain(log_format),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    structlog.contextvars.bind_contextvars(
        service=service_name,
        environment=os.getenv("ENVIRONMENT", "development"),
    )


class WorkerLogger:
    """Named events for pipeline stages, capability calls and recommendation status"""

    def __init__(self, name: str):
        self.logger = structlog.get_logger(name)

    def log_stage_transition(
        self,
        analysis_id: str,
        from_stage: str,
        to_stage: str,
        summary: Optional[Dict[str, Any]] = None
    ):
        self.logger.info(
            "stage_transition",
            analysis_id=analysis_id,
            stage=from_stage,
            next_stage=to_stage,
            **(summary or {})
        )

    def log_capability_execution(
        self,
        capability_name: str,
        correlation_id: str,
        success: bool = True,
        duration_ms: Optional[float] = None,
        error: Optional[str] = None
    ):
        log = self.logger.info if success else self.logger.warning
        log(
            "capability_executed" if success else "capability_execution_failed",
            capability=capability_name,
            correlation_id=correlation_id,
            duration_ms=duration_ms,
            error=error
        )

    def log_status_transition(
        self,
        recommendation_id: str,
        from_status: Optional[str],
        to_status: str,
        details: Optional[Dict[str, Any]] = None
    ):
        self.logger.info(
            "recommendation_status_changed",
            recommendation_id=recommendation_id,
            transition=f"{from_status or 'none'}->{to_status}",
            **(details or {})
        )


worker_logger = WorkerLogger("insight_worker")


@dataclass
class LatencyStats:
    count: int = 0
    total: float = 0.0
    minimum: Optional[float] = None
    maximum: float = 0.0

    def observe(self, duration_ms: float) -> None:
        self.count += 1
        self.total += duration_ms
        self.minimum = duration_ms if self.minimum is None else min(self.minimum, duration_ms)
        self.maximum = max(self.maximum, duration_ms)

    def summary(self) -> Dict[str, float]:
        return {
            "count": self.count,
            "avg": self.total / self.count if self.count else 0,
            "min": self.minimum or 0,
            "max": self.maximum,
        }


class MetricsCollector:
    """In-process stage latencies and run counters, mirrored to the log"""

    def __init__(self):
        self.latencies: Dict[str, LatencyStats] = {}
        self.counters: Dict[str, int] = {}

    def record_latency(self, operation: str, duration_ms: float, tags: Optional[Dict[str, str]] = None):
        self.latencies.setdefault(operation, LatencyStats()).observe(duration_ms)
        worker_logger.logger.debug("latency_recorded", operation=operation, duration_ms=round(duration_ms, 2), **(tags or {}))

    def increment_counter(self, name: str, value: int = 1, tags: Optional[Dict[str, str]] = None):
        self.counters[name] = self.counters.get(name, 0) + value
        worker_logger.logger.debug("counter_incremented", counter=name, value=self.counters[name], **(tags or {}))

    def get_metrics_summary(self) -> Dict[str, Any]:
        summary: Dict[str, Any] = {f"latency.{op}": stats.summary() for op, stats in self.latencies.items()}
        summary.update(self.counters)
        return summary


metrics = MetricsCollector()
