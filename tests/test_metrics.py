import urllib.request

import pytest

from rln_prover.metrics import (
    COUNTERS,
    GET_PROOFS_LISTENERS,
    SEND_TRANSACTION_REQUESTS,
    USER_REGISTERED,
    GaugeWrapper,
    MetricKind,
    MetricsRegistry,
    init_metrics,
)


def test_counter_increments():
    registry = MetricsRegistry()
    registry.register(SEND_TRANSACTION_REQUESTS, MetricKind.COUNTER)
    registry.increment(SEND_TRANSACTION_REQUESTS.name, 1, {"prover": "grpc"})
    registry.increment(SEND_TRANSACTION_REQUESTS.name, 1, {"prover": "grpc"})
    assert registry.value(SEND_TRANSACTION_REQUESTS.name, {"prover": "grpc"}) == 2.0
    assert registry.value(SEND_TRANSACTION_REQUESTS.name) == 0.0


def test_counter_cannot_decrease():
    registry = MetricsRegistry()
    with pytest.raises(ValueError):
        registry.increment("c", -1)


def test_kind_mismatch_raises():
    registry = MetricsRegistry()
    registry.set_gauge("g", 3)
    with pytest.raises(ValueError):
        registry.increment("g")


def test_unknown_metric_raises_key_error():
    with pytest.raises(KeyError):
        MetricsRegistry().value("absent")


def test_histogram_records_observations():
    registry = MetricsRegistry()
    registry.observe("h", 0.5)
    registry.observe("h", 1.5)
    assert registry.value("h") == (0.5, 1.5)


def test_gauge_wrapper_context():
    registry = MetricsRegistry()
    with GaugeWrapper(GET_PROOFS_LISTENERS.name, "prover", "grpc", registry):
        assert registry.value(GET_PROOFS_LISTENERS.name, {"prover": "grpc"}) == 1.0
    assert registry.value(GET_PROOFS_LISTENERS.name, {"prover": "grpc"}) == 0.0


def test_gauge_wrapper_close_is_idempotent():
    registry = MetricsRegistry()
    wrapper = GaugeWrapper("listeners", "prover", "grpc", registry)
    wrapper.close()
    wrapper.close()
    assert registry.value("listeners", {"prover": "grpc"}) == 0.0


def test_render_contains_help_type_and_samples():
    registry = MetricsRegistry()
    registry.register(USER_REGISTERED, MetricKind.COUNTER)
    registry.increment(USER_REGISTERED.name, 1, {"prover": "grpc"})
    text = registry.render()
    assert f"# HELP user_registered {USER_REGISTERED.description}" in text
    assert "# TYPE user_registered counter" in text
    assert 'user_registered{prover="grpc"} 1.0' in text


def test_init_metrics_serves_registry():
    registry = MetricsRegistry()
    server = init_metrics("127.0.0.1", 0, registry)
    try:
        port = server.server_address[1]
        with urllib.request.urlopen(f"http://127.0.0.1:{port}/metrics", timeout=5) as resp:
            body = resp.read().decode("utf-8")
    finally:
        server.shutdown()
        server.server_close()
    for metric in COUNTERS:
        assert f"# TYPE {metric.name} counter" in body
    assert "epoch_service_drift_millis_count 0" in body