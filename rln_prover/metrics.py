"""Prover metrics: an in-memory registry and a Prometheus text exporter."""

from __future__ import annotations

import ipaddress
import logging
import math
import socket
import threading
from dataclasses import dataclass, field
from enum import Enum
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Mapping

logger = logging.getLogger(__name__)


class MetricKind(Enum):
    COUNTER = "counter"
    GAUGE = "gauge"
    HISTOGRAM = "histogram"


@dataclass(frozen=True)
class Metric:
    name: str
    description: str


USER_REGISTERED_REQUESTS = Metric("user_registered_requests", "Number of RegisterUser grpc requests")
USER_REGISTERED = Metric("user_registered", "Number of registered users in the prover")
SEND_TRANSACTION_REQUESTS = Metric(
    "send_transaction_requests", "Number of SendTransaction grpc requests"
)
GET_USER_TIER_INFO_REQUESTS = Metric(
    "get_user_tier_info_requests", "Number of GetUserTierInfo grpc requests"
)
EPOCH_SERVICE_CURRENT_EPOCH = Metric(
    "epoch_service_current_epoch", "Current epoch in the epoch service"
)
EPOCH_SERVICE_CURRENT_EPOCH_SLICE = Metric(
    "epoch_service_current_epoch_slice", "Current epoch slice in the epoch service"
)
EPOCH_SERVICE_DRIFT_MILLIS = Metric(
    "epoch_service_drift_millis",
    "Drift in milliseconds (when epoch service is waiting for the next epoch slice)",
)
PROOF_SERVICE_PROOF_COMPUTED = Metric("proof_service_proof_computed", "Number of computed proofs")
PROOF_SERVICE_GEN_PROOF_TIME = Metric(
    "proof_service_gen_proof_time", "Generation time of a proof in seconds"
)
GET_PROOFS_LISTENERS = Metric(
    "get_proof_listeners",
    "Current number of active subscription to grpc get_proofs server streaming endpoint",
)
BROADCAST_CHANNEL_QUEUE_LEN = Metric("broadcast_channel_queue_len", "Number of queued values")
PROOF_SERVICES_CHANNEL_QUEUE_LEN = Metric(
    "proof_services_channel_queue_len", "Number of queued values"
)

COUNTERS = (
    USER_REGISTERED,
    USER_REGISTERED_REQUESTS,
    SEND_TRANSACTION_REQUESTS,
    GET_USER_TIER_INFO_REQUESTS,
    PROOF_SERVICE_PROOF_COMPUTED,
)
GAUGES = (
    EPOCH_SERVICE_CURRENT_EPOCH,
    EPOCH_SERVICE_CURRENT_EPOCH_SLICE,
    GET_PROOFS_LISTENERS,
)
HISTOGRAMS = (
    EPOCH_SERVICE_DRIFT_MILLIS,
    PROOF_SERVICE_GEN_PROOF_TIME,
    BROADCAST_CHANNEL_QUEUE_LEN,
)

Labels = Mapping[str, str] | None
_LabelKey = tuple[tuple[str, str], ...]


def _label_key(labels: Labels) -> _LabelKey:
    return tuple(sorted((str(k), str(v)) for k, v in (labels or {}).items()))


def _escape(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', '\\"').replace("\n", "\\n")


def _format_labels(key: _LabelKey) -> str:
    if not key:
        return ""
    return "{" + ",".join(f'{k}="{_escape(v)}"' for k, v in key) + "}"


def _format_value(value: float) -> str:
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "+Inf" if value > 0 else "-Inf"
    return repr(float(value))


@dataclass
class _Family:
    kind: MetricKind
    description: str
    samples: dict[_LabelKey, float | list[float]] = field(default_factory=dict)


class MetricsRegistry:
    """Thread-safe store of counters, gauges and histograms keyed by name and labels."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._families: dict[str, _Family] = {}

    def _family(self, name: str, kind: MetricKind) -> _Family:
        family = self._families.get(name)
        if family is None:
            family = self._families[name] = _Family(kind, "")
        elif family.kind is not kind:
            raise ValueError(f"metric {name!r} is a {family.kind.value}, not a {kind.value}")
        return family

    def register(self, metric: Metric, kind: MetricKind | str) -> None:
        """Declare a metric with its description and create its unlabelled series."""
        kind = MetricKind(kind)
        with self._lock:
            family = self._family(metric.name, kind)
            family.description = metric.description
            family.samples.setdefault((), [] if kind is MetricKind.HISTOGRAM else 0.0)

    def increment(self, name: str, amount: float = 1, labels: Labels = None) -> None:
        if amount < 0:
            raise ValueError("a counter cannot be decreased")
        key = _label_key(labels)
        with self._lock:
            samples = self._family(name, MetricKind.COUNTER).samples
            samples[key] = samples.get(key, 0.0) + amount

    def set_gauge(self, name: str, value: float, labels: Labels = None) -> None:
        key = _label_key(labels)
        with self._lock:
            self._family(name, MetricKind.GAUGE).samples[key] = float(value)

    def add_gauge(self, name: str, delta: float, labels: Labels = None) -> None:
        key = _label_key(labels)
        with self._lock:
            samples = self._family(name, MetricKind.GAUGE).samples
            samples[key] = samples.get(key, 0.0) + delta

    def observe(self, name: str, value: float, labels: Labels = None) -> None:
        key = _label_key(labels)
        with self._lock:
            samples = self._family(name, MetricKind.HISTOGRAM).samples
            samples.setdefault(key, []).append(float(value))

    def value(self, name: str, labels: Labels = None) -> float | tuple[float, ...]:
        """Current value of a counter or gauge, or the observations of a histogram."""
        key = _label_key(labels)
        with self._lock:
            family = self._families.get(name)
            if family is None:
                raise KeyError(name)
            sample = family.samples.get(key)
            if family.kind is MetricKind.HISTOGRAM:
                return tuple(sample or ())
            return float(sample or 0.0)

    def render(self) -> str:
        """Render all metrics in the Prometheus text exposition format."""
        lines: list[str] = []
        with self._lock:
            for name, family in self._families.items():
                if family.description:
                    lines.append(f"# HELP {name} {family.description}")
                if family.kind is MetricKind.HISTOGRAM:
                    lines.append(f"# TYPE {name} summary")
                    for key, observations in family.samples.items():
                        labels = _format_labels(key)
                        lines.append(f"{name}_sum{labels} {_format_value(sum(observations))}")
                        lines.append(f"{name}_count{labels} {len(observations)}")
                else:
                    lines.append(f"# TYPE {name} {family.kind.value}")
                    for key, value in family.samples.items():
                        lines.append(f"{name}{_format_labels(key)} {_format_value(value)}")
        return "\n".join(lines) + "\n"


DEFAULT_REGISTRY = MetricsRegistry()


class _IPv6HTTPServer(ThreadingHTTPServer):
    address_family = socket.AF_INET6


def _handler_for(registry: MetricsRegistry) -> type[BaseHTTPRequestHandler]:
    class _MetricsHandler(BaseHTTPRequestHandler):
        def do_GET(self) -> None:  # noqa: N802
            body = registry.render().encode("utf-8")
            self.send_response(200)
            self.send_header("Content-Type", "text/plain; version=0.0.4")
            self.send_header("Content-Length", str(len(body)))
            self.end_headers()
            self.wfile.write(body)

        def log_message(self, format: str, *args: object) -> None:  # noqa: A002
            logger.debug("metrics exporter: " + format, *args)

    return _MetricsHandler


def init_metrics(
    ip: str | ipaddress.IPv4Address | ipaddress.IPv6Address,
    port: int,
    registry: MetricsRegistry | None = None,
) -> ThreadingHTTPServer:
    """Register the prover metrics and serve them over HTTP in a background thread."""
    if registry is None:
        registry = DEFAULT_REGISTRY
    logger.info("Initializing metrics exporter (port: %s)", port)

    for metric in COUNTERS:
        registry.register(metric, MetricKind.COUNTER)
    for metric in GAUGES:
        registry.register(metric, MetricKind.GAUGE)
    for metric in HISTOGRAMS:
        registry.register(metric, MetricKind.HISTOGRAM)

    address = ipaddress.ip_address(str(ip))
    server_cls = _IPv6HTTPServer if address.version == 6 else ThreadingHTTPServer
    server = server_cls((str(address), port), _handler_for(registry))
    thread = threading.Thread(target=server.serve_forever, name="metrics-exporter", daemon=True)
    thread.start()
    return server


class GaugeWrapper:
    """Increments a labelled gauge on creation and decrements it once on close."""

    def __init__(
        self,
        gauge_name: str,
        gauge_app: str,
        gauge_label: str,
        registry: MetricsRegistry | None = None,
    ) -> None:
        self._registry = DEFAULT_REGISTRY if registry is None else registry
        self._name = gauge_name
        self._labels = {gauge_app: gauge_label}
        self._closed = False
        self._registry.add_gauge(self._name, 1.0, self._labels)

    def close(self) -> None:
        if not self._closed:
            self._closed = True
            self._registry.add_gauge(self._name, -1.0, self._labels)

    def __enter__(self) -> GaugeWrapper:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()