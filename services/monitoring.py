"""Performance monitoring: rolling per-operation duration statistics."""
import threading
import time
import logging
from collections import defaultdict, deque
from contextlib import contextmanager
from typing import Deque, Dict, Any, Optional

logger = logging.getLogger(__name__)

MAX_SAMPLES = 100


class PerformanceMonitor:
    """Keeps the last MAX_SAMPLES durations (ms) for each operation name."""

    def __init__(self, max_samples: int = MAX_SAMPLES):
        self._samples: Dict[str, Deque[float]] = defaultdict(lambda: deque(maxlen=max_samples))
        self._lock = threading.Lock()

    def record(self, operation: str, duration_ms: float) -> None:
        with self._lock:
            self._samples[operation].append(duration_ms)
        logger.debug("Performance metric recorded", extra={"operation": operation, "duration_ms": round(duration_ms, 2)})

    @contextmanager
    def track(self, operation: str):
        """Record how long the block took, whether or not it raised."""
        start = time.perf_counter()
        try:
            yield
        finally:
            self.record(operation, (time.perf_counter() - start) * 1000)

    def get_stats(self, operation: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            samples = list(self._samples.get(operation, ()))
        if not samples:
            return None

        ordered = sorted(samples)

        def percentile(fraction: float) -> float:
            return round(ordered[min(len(ordered) - 1, int(len(ordered) * fraction))], 2)

        return {
            "count": len(samples),
            "avg": round(sum(samples) / len(samples), 2),
            "min": round(ordered[0], 2),
            "max": round(ordered[-1], 2),
            "p50": percentile(0.5),
            "p95": percentile(0.95),
            "p99": percentile(0.99),
        }

    def get_all_stats(self) -> Dict[str, Dict[str, Any]]:
        with self._lock:
            operations = list(self._samples)
        return {operation: self.get_stats(operation) for operation in operations if self._samples[operation]}

    def clear(self) -> None:
        with self._lock:
            self._samples.clear()
