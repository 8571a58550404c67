"""
Observability module: Metrics and structured logging.
"""

from countdownmesh.observability.metrics import Counter, Histogram, CoordinatorMetrics
from countdownmesh.observability.logging import StructuredLogger, LogLevel, setup_logging

__all__ = [
    "Counter",
    "Histogram",
    "CoordinatorMetrics",
    "StructuredLogger",
    "LogLevel",
    "setup_logging",
]
