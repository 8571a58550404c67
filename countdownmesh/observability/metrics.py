"""
Metrics: Prometheus-Style Counters and Histograms

Thread-safe, labelled, in-process metrics. Exposition is left to the
embedding service; collect() yields (labels, value) pairs.
"""

from __future__ import annotations

import threading
import time
from collections import defaultdict
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Iterator, Optional, Sequence


@dataclass(frozen=True)
class MetricLabels:
    """Immutable label set for metric dimensions."""
    labels: tuple[tuple[str, str], ...]

    @classmethod
    def from_dict(cls, d: dict[str, str]) -> MetricLabels:
        return cls(labels=tuple(sorted(d.items())))

    def to_dict(self) -> dict[str, str]:
        return dict(self.labels)


class Counter:
    """
    Monotonically increasing counter metric.

    Usage:
        commits = Counter("countdown_commits_total", ["action"])
        commits.inc(action="session.created")
    """

    __slots__ = ("_name", "_help", "_label_names", "_values", "_lock")

    def __init__(
        self,
        name: str,
        label_names: Sequence[str] = (),
        help_text: str = "",
    ) -> None:
        self._name = name
        self._help = help_text
        self._label_names = tuple(label_names)
        self._values: dict[MetricLabels, float] = defaultdict(float)
        self._lock = threading.Lock()

    def inc(self, value: float = 1.0, **labels: str) -> None:
        if value < 0:
            raise ValueError("Counter can only increase")
        key = self._make_key(labels)
        with self._lock:
            self._values[key] += value

    def get(self, **labels: str) -> float:
        key = self._make_key(labels)
        with self._lock:
            return self._values.get(key, 0.0)

    def total(self) -> float:
        with self._lock:
            return sum(self._values.values())

    def _make_key(self, labels: dict[str, str]) -> MetricLabels:
        filtered = {k: labels.get(k, "") for k in self._label_names}
        return MetricLabels.from_dict(filtered)

    def collect(self) -> Iterator[tuple[dict[str, str], float]]:
        with self._lock:
            items = list(self._values.items())
        for key, value in items:
            yield (key.to_dict(), value)

    @property
    def name(self) -> str:
        return self._name


class Histogram:
    """
    Histogram with configurable buckets.

    Usage:
        latency = Histogram("commit_latency_seconds", ["action"])

        with latency.time(action="session.created"):
            await persist()
    """

    __slots__ = (
        "_name", "_help", "_label_names", "_buckets",
        "_bucket_counts", "_sums", "_counts", "_lock",
    )

    DEFAULT_BUCKETS = (
        0.001, 0.005, 0.01, 0.025, 0.05, 0.1,
        0.25, 0.5, 1.0, 2.5, 5.0, float("inf"),
    )

    def __init__(
        self,
        name: str,
        label_names: Sequence[str] = (),
        help_text: str = "",
        buckets: Optional[Sequence[float]] = None,
    ) -> None:
        self._name = name
        self._help = help_text
        self._label_names = tuple(label_names)
        self._buckets = tuple(sorted(buckets or self.DEFAULT_BUCKETS))

        if self._buckets[-1] != float("inf"):
            self._buckets = self._buckets + (float("inf"),)

        self._bucket_counts: dict[MetricLabels, list[int]] = {}
        self._sums: dict[MetricLabels, float] = defaultdict(float)
        self._counts: dict[MetricLabels, int] = defaultdict(int)
        self._lock = threading.Lock()

    def observe(self, value: float, **labels: str) -> None:
        key = self._make_key(labels)
        with self._lock:
            counts = self._bucket_counts.setdefault(key, [0] * len(self._buckets))
            for i, bound in enumerate(self._buckets):
                if value <= bound:
                    counts[i] += 1
            self._sums[key] += value
            self._counts[key] += 1

    @contextmanager
    def time(self, **labels: str) -> Iterator[None]:
        start = time.perf_counter()
        try:
            yield
        finally:
            self.observe(time.perf_counter() - start, **labels)

    def count(self, **labels: str) -> int:
        key = self._make_key(labels)
        with self._lock:
            return self._counts.get(key, 0)

    def sum(self, **labels: str) -> float:
        key = self._make_key(labels)
        with self._lock:
            return self._sums.get(key, 0.0)

    def _make_key(self, labels: dict[str, str]) -> MetricLabels:
        filtered = {k: labels.get(k, "") for k in self._label_names}
        return MetricLabels.from_dict(filtered)

    @property
    def name(self) -> str:
        return self._name


class CoordinatorMetrics:
    """Metric set shared by the coordinators of one process."""

    __slots__ = ("commits", "rejections", "sink_failures", "commit_latency")

    def __init__(self) -> None:
        self.commits = Counter(
            "countdown_commits_total", ["action"],
            "Mutations durably committed",
        )
        self.rejections = Counter(
            "countdown_rejections_total", ["reason"],
            "Operations refused without a state change",
        )
        self.sink_failures = Counter(
            "countdown_sink_failures_total", ["sink"],
            "Best-effort snapshot or audit writes that failed",
        )
        self.commit_latency = Histogram(
            "countdown_commit_latency_seconds", ["action"],
            "Durable write latency per committed mutation",
        )

    def snapshot(self) -> dict[str, Any]:
        return {
            "commits": dict(
                (labels["action"], value) for labels, value in self.commits.collect()
            ),
            "rejections": dict(
                (labels["reason"], value) for labels, value in self.rejections.collect()
            ),
            "sink_failures": dict(
                (labels["sink"], value) for labels, value in self.sink_failures.collect()
            ),
        }
