"""Prometheus metrics for the gateway, rendered at ``/metrics``.

Series live in an in-process ``MetricsRegistry`` and are rendered in the
Prometheus text exposition format without a client library.  The module-level
helpers write to one shared registry.
"""

import threading
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field

from fastapi import APIRouter, Response

LabelSet = tuple[tuple[str, str], ...]

# Streams can run for minutes, so the upper buckets go well past ten seconds.
LATENCY_BUCKETS: tuple[float, ...] = (
    0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0,
)


def _label_set(labels: Mapping[str, str]) -> LabelSet:
    return tuple(sorted(labels.items()))


def _escape_label_value(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', '\\"').replace("\n", "\\n")


def _render_labels(labels: LabelSet, **extra: str) -> str:
    pairs = sorted((*labels, *extra.items()))
    if not pairs:
        return ""
    return "{" + ",".join(f'{key}="{_escape_label_value(value)}"' for key, value in pairs) + "}"


@dataclass
class _HistogramSeries:
    bucket_counts: list[int]
    total: float = 0.0
    count: int = 0

    def observe(self, bounds: Sequence[float], value: float) -> None:
        self.total += value
        self.count += 1
        for index, bound in enumerate(bounds):
            if value <= bound:
                self.bucket_counts[index] += 1
                break


@dataclass
class MetricsRegistry:
    buckets: Sequence[float] = LATENCY_BUCKETS
    _counters: dict[str, dict[LabelSet, float]] = field(default_factory=dict)
    _histograms: dict[str, dict[LabelSet, _HistogramSeries]] = field(default_factory=dict)
    _lock: threading.Lock = field(default_factory=threading.Lock)

    def inc(self, name: str, labels: Mapping[str, str], value: float = 1.0) -> None:
        key = _label_set(labels)
        with self._lock:
            series = self._counters.setdefault(name, {})
            series[key] = series.get(key, 0.0) + value

    def observe(self, name: str, labels: Mapping[str, str], value: float) -> None:
        key = _label_set(labels)
        with self._lock:
            family = self._histograms.setdefault(name, {})
            series = family.get(key)
            if series is None:
                series = family[key] = _HistogramSeries(bucket_counts=[0] * len(self.buckets))
            series.observe(self.buckets, value)

    def clear(self) -> None:
        with self._lock:
            self._counters.clear()
            self._histograms.clear()

    def render(self) -> str:
        lines: list[str] = []
        with self._lock:
            for name in sorted(self._counters):
                lines.append(f"# TYPE {name} counter")
                for labels, value in sorted(self._counters[name].items()):
                    lines.append(f"{name}{_render_labels(labels)} {value}")

            for name in sorted(self._histograms):
                lines.append(f"# TYPE {name} histogram")
                for labels, series in sorted(self._histograms[name].items()):
                    # Buckets are stored per interval and rendered cumulatively.
                    running = 0
                    for bound, hits in zip(self.buckets, series.bucket_counts):
                        running += hits
                        bucket_labels = _render_labels(labels, le=str(bound))
                        lines.append(f"{name}_bucket{bucket_labels} {running}")
                    inf_labels = _render_labels(labels, le="+Inf")
                    lines.append(f"{name}_bucket{inf_labels} {series.count}")
                    lines.append(f"{name}_sum{_render_labels(labels)} {series.total}")
                    lines.append(f"{name}_count{_render_labels(labels)} {series.count}")
        lines.append("")
        return "\n".join(lines)


REGISTRY = MetricsRegistry()


def render_metrics() -> str:
    return REGISTRY.render()


def reset_metrics() -> None:
    REGISTRY.clear()


def record_request(
    role: str,
    provider: str,
    model: str,
    streaming: bool,
    status_code: int,
    latency_s: float,
    tokens_in: int = 0,
    tokens_out: int = 0,
    cost_usd: float = 0.0,
) -> None:
    """Record all metrics for a completed request."""
    labels = {
        "role": role,
        "provider": provider,
        "model": model,
        "streaming": "true" if streaming else "false",
    }
    REGISTRY.inc("llmgw_requests_total", {**labels, "status": str(status_code)})
    REGISTRY.observe("llmgw_request_duration_seconds", labels, latency_s)
    for direction, tokens in (("input", tokens_in), ("output", tokens_out)):
        if tokens > 0:
            REGISTRY.inc("llmgw_tokens_total", {**labels, "direction": direction}, float(tokens))
    if cost_usd > 0:
        REGISTRY.inc("llmgw_cost_usd_total", labels, cost_usd)


def record_rate_limited(role: str) -> None:
    REGISTRY.inc("llmgw_rate_limited_total", {"role": role})


metrics_router = APIRouter()


@metrics_router.get("/metrics")
def prometheus_metrics() -> Response:
    return Response(content=render_metrics(), media_type="text/plain; charset=utf-8")
