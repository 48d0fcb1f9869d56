"""
In-memory metrics for the incremental loader.

Counters and histograms kept per process:
- units_enqueued_total: units handed to the scheduler
- unit_outcome_total: one increment per handled unit, labelled by outcome
  (loaded, skipped, interrupted, busy, failed)
- load_duration_seconds: histogram of load attempts, labelled by outcome
- session_finished_total: terminal scheduler states (drained, aborted)
"""
import re as _re
from collections import defaultdict
from typing import Any
import logging

logger = logging.getLogger("idleload.metrics")


class MetricsCollector:
    """Simple in-memory metrics collector."""

    def __init__(self):
        self.counters: dict[str, int] = defaultdict(int)
        self.histograms: dict[str, list[float]] = defaultdict(list)

    def increment_counter(self, name: str, value: int = 1, labels: dict[str, str] | None = None):
        key = self._build_key(name, labels)
        self.counters[key] += value

    def observe_histogram(self, name: str, value: float, labels: dict[str, str] | None = None):
        key = self._build_key(name, labels)
        self.histograms[key].append(value)

    def get_counter(self, name: str, labels: dict[str, str] | None = None) -> int:
        key = self._build_key(name, labels)
        return self.counters.get(key, 0)

    def get_histogram_stats(self, name: str, labels: dict[str, str] | None = None) -> dict[str, Any]:
        """Get histogram statistics (count, sum, min, max, avg, p95)."""
        key = self._build_key(name, labels)
        return self._stats(self.histograms.get(key, []))

    def get_all_metrics(self) -> dict[str, Any]:
        return {
            "counters": dict(self.counters),
            "histograms": {k: self._stats(v) for k, v in self.histograms.items()},
        }

    def reset(self):
        self.counters.clear()
        self.histograms.clear()

    @staticmethod
    def _stats(values: list[float]) -> dict[str, Any]:
        if not values:
            return {"count": 0, "sum": 0, "min": 0, "max": 0, "avg": 0, "p95": 0}

        sorted_vals = sorted(values)
        n = len(sorted_vals)
        p95_idx = max(0, int(n * 0.95) - 1)
        return {
            "count": n,
            "sum": sum(sorted_vals),
            "min": sorted_vals[0],
            "max": sorted_vals[-1],
            "avg": sum(sorted_vals) / n,
            "p95": sorted_vals[p95_idx],
        }

    @staticmethod
    def _build_key(name: str, labels: dict[str, str] | None) -> str:
        """Build metric key from name and labels."""
        if not labels:
            return name
        label_str = ",".join(f"{k}={v}" for k, v in sorted(labels.items()))
        return f"{name}{{{label_str}}}"


# Global metrics collector instance
metrics = MetricsCollector()


def record_enqueued(count: int):
    """Record units handed to the scheduler."""
    if count > 0:
        metrics.increment_counter("units_enqueued_total", value=count)


def record_unit_outcome(outcome: str):
    """Record how one unit was handled (loaded, skipped, interrupted, busy, failed)."""
    metrics.increment_counter("unit_outcome_total", labels={"outcome": outcome})


def record_load_duration(duration_seconds: float, outcome: str):
    """
    Record the wall time of a load attempt.

    Args:
        duration_seconds: Time from attempt to completion, interruption or failure
        outcome: loaded, interrupted or failed
    """
    metrics.observe_histogram("load_duration_seconds", duration_seconds, labels={"outcome": outcome})
    if outcome == "failed":
        logger.debug("Load failed after %.3fs", duration_seconds)


def record_session_finished(state: str):
    """Record the terminal scheduler state of a session."""
    metrics.increment_counter("session_finished_total", labels={"state": state})


def get_metrics_summary() -> dict:
    return metrics.get_all_metrics()


def _parse_metric_key(key: str) -> tuple[str, str]:
    """Split an internal metric key into (base_name, prometheus_label_string).

    ``unit_outcome_total{outcome=loaded}`` becomes
    ``("unit_outcome_total", '{outcome="loaded"}')``.
    """
    m = _re.match(r'^([^{]+)(?:\{(.+)\})?$', key)
    if not m:
        return key, ""
    base_name = m.group(1)
    raw_labels = m.group(2) or ""
    if not raw_labels:
        return base_name, ""
    label_parts: list[str] = []
    for pair in raw_labels.split(","):
        if "=" in pair:
            k, v = pair.split("=", 1)
            label_parts.append(f'{k.strip()}="{v.strip()}"')
    label_str = "{" + ",".join(label_parts) + "}" if label_parts else ""
    return base_name, label_str


def _append_quantile_label(label_str: str, quantile: str) -> str:
    q_pair = f'quantile="{quantile}"'
    if label_str:
        return label_str[:-1] + "," + q_pair + "}"
    return "{" + q_pair + "}"


def to_prometheus_text(prefix: str = "idleload_") -> str:
    """Render all in-memory metrics as Prometheus text exposition format.

    Each counter family gets one ``# TYPE`` line; histograms are rendered
    as summaries with ``_count``, ``_sum`` and the 0.95 / 1.0 quantiles.
    """
    summary = get_metrics_summary()
    lines: list[str] = []

    counter_families: dict[str, list[tuple[str, int]]] = defaultdict(list)
    for key, val in summary.get("counters", {}).items():
        base_name, label_str = _parse_metric_key(key)
        counter_families[prefix + base_name].append((label_str, val))
    for prom_name, entries in counter_families.items():
        lines.append(f"# TYPE {prom_name} counter")
        for label_str, val in entries:
            lines.append(f"{prom_name}{label_str} {val}")

    histogram_families: dict[str, list[tuple[str, dict]]] = defaultdict(list)
    for key, stats in summary.get("histograms", {}).items():
        base_name, label_str = _parse_metric_key(key)
        histogram_families[prefix + base_name].append((label_str, stats))
    for prom_name, entries in histogram_families.items():
        lines.append(f"# TYPE {prom_name} summary")
        for label_str, stats in entries:
            lines.append(f"{prom_name}_count{label_str} {stats['count']}")
            lines.append(f"{prom_name}_sum{label_str} {stats['sum']:.6f}")
            if stats["count"] > 0:
                lines.append(f"{prom_name}{_append_quantile_label(label_str, '0.95')} {stats['p95']:.6f}")
                lines.append(f"{prom_name}{_append_quantile_label(label_str, '1.0')} {stats['max']:.6f}")
    return "\n".join(lines) + "\n"
