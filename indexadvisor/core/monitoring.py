"""Monitoring and observability utilities."""

import logging
import time
from contextlib import contextmanager
from typing import Optional

from indexadvisor.core.config import settings

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(level: Optional[str] = None) -> int:
    """Configure root logging from settings; returns the numeric level applied."""
    name = (level or settings.log_level).upper()
    numeric = getattr(logging, name, logging.INFO)
    logging.basicConfig(level=numeric, format=LOG_FORMAT)
    logging.getLogger("indexadvisor").setLevel(numeric)
    return numeric


@contextmanager
def track_execution_time(operation_name: str):
    """Context manager to track execution time."""
    start_time = time.time()
    try:
        yield
    finally:
        elapsed = time.time() - start_time
        logger.info(f"{operation_name} took {elapsed:.3f}s")


class MetricsCollector:
    """Collect analysis metrics."""

    def __init__(self):
        self.metrics = {
            "analyses_run": 0,
            "samples_analyzed": 0,
            "recommendations_emitted": 0,
            "diagnostics_reported": 0,
            "average_analysis_time": 0.0,
        }
        self._analysis_times = []

    def record_analysis(
        self, duration: float, samples: int, recommendations: int, diagnostics: int
    ):
        """Record one analysis run."""
        self.metrics["analyses_run"] += 1
        self.metrics["samples_analyzed"] += samples
        self.metrics["recommendations_emitted"] += recommendations
        self.metrics["diagnostics_reported"] += diagnostics
        self._analysis_times.append(duration)
        if len(self._analysis_times) > 100:
            self._analysis_times.pop(0)
        self.metrics["average_analysis_time"] = sum(self._analysis_times) / len(
            self._analysis_times
        )

    def get_metrics(self) -> dict:
        """Get current metrics."""
        return self.metrics.copy()


# Global metrics collector
metrics = MetricsCollector()
