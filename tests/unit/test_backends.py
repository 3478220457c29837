"""Tests for inference backends."""

import json

import httpx
import pytest
from dynabatch.backends import (
    CallableBackend,
    HttpBackend,
    SimulatedBackend,
    create_backend,
)
from dynabatch.config import BackendConfig, DynabatchConfig
from dynabatch.errors import BackendError, BackendTimeoutError, ConfigurationError
from dynabatch.utils.randfail import (
    FailureConfig,
    FailureInjectionError,
    FailureType,
    RandomFailureInjector,
)


def _http_backend(handler):
    client = httpx.Client(transport=httpx.MockTransport(handler))
    return HttpBackend("http://model.local/predict", client=client)


class TestCallableBackend:
    def test_predict(self):
        backend = CallableBackend(lambda xs: (x.upper() for x in xs), name="upper")
        assert backend.predict(["a", "b"], timeout=1.0) == ["A", "B"]
        assert backend.name == "upper"
        assert "upper" in repr(backend)


class TestSimulatedBackend:
    def test_identity_outputs(self):
        backend = SimulatedBackend(latency_ms=0, per_item_ms=0)
        assert backend.predict([1, 2, 3], timeout=1.0) == [1, 2, 3]
        assert backend.batch_sizes == [3]
        assert backend.calls == 1

    def test_transform(self):
        backend = SimulatedBackend(latency_ms=0, per_item_ms=0, transform=lambda x: x * 2)
        assert backend.predict([1, 2], timeout=1.0) == [2, 4]

    def test_latency_model(self):
        backend = SimulatedBackend(latency_ms=10, per_item_ms=2)
        assert backend.call_latency(5) == pytest.approx(0.02)

    def test_negative_latency_rejected(self):
        with pytest.raises(ValueError):
            SimulatedBackend(latency_ms=-1)

    def test_certain_crash(self):
        backend = SimulatedBackend.with_failure_rate(1.0, latency_ms=0, per_item_ms=0)
        with pytest.raises(FailureInjectionError):
            backend.predict([1], timeout=1.0)
        assert backend.batch_sizes == []

    def test_zero_failure_rate(self):
        backend = SimulatedBackend.with_failure_rate(0.0, latency_ms=0, per_item_ms=0)
        for _ in range(5):
            backend.predict([1], timeout=1.0)
        assert backend.failure_injector.get_injection_stats()["total_injections"] == 0

    def test_injected_timeout(self):
        injector = RandomFailureInjector(seed=1)
        injector.configure_failure(
            "predict", FailureConfig(FailureType.BACKEND_TIMEOUT, probability=1.0)
        )
        backend = SimulatedBackend(latency_ms=0, per_item_ms=0, failure_injector=injector)
        with pytest.raises(BackendTimeoutError):
            backend.predict([1, 2], timeout=0.5)

    def test_injected_output_mismatch(self):
        injector = RandomFailureInjector(seed=1)
        injector.configure_failure(
            "predict", FailureConfig(FailureType.OUTPUT_MISMATCH, probability=1.0)
        )
        backend = SimulatedBackend(latency_ms=0, per_item_ms=0, failure_injector=injector)
        assert backend.predict([1, 2, 3], timeout=1.0) == [1, 2]

    def test_reset(self):
        backend = SimulatedBackend(latency_ms=0, per_item_ms=0)
        backend.predict([1], timeout=1.0)
        backend.reset()
        assert backend.batch_sizes == []
        assert backend.calls == 0


class TestHttpBackend:
    def test_posts_inputs_and_returns_outputs(self):
        seen = {}

        def handler(request):
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"outputs": [x + 1 for x in seen["body"]["inputs"]]})

        backend = _http_backend(handler)
        assert backend.predict([1, 2, 3], timeout=1.0) == [2, 3, 4]
        assert seen["body"] == {"inputs": [1, 2, 3]}

    def test_server_error(self):
        backend = _http_backend(lambda request: httpx.Response(503, text="overloaded"))
        with pytest.raises(BackendError, match="HTTP 503"):
            backend.predict([1], timeout=1.0)

    def test_timeout(self):
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        backend = _http_backend(handler)
        with pytest.raises(BackendTimeoutError):
            backend.predict([1], timeout=0.2)

    def test_transport_error(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        backend = _http_backend(handler)
        with pytest.raises(BackendError, match="transport error"):
            backend.predict([1], timeout=1.0)

    def test_malformed_body(self):
        backend = _http_backend(lambda request: httpx.Response(200, text="not json"))
        with pytest.raises(BackendError, match="malformed"):
            backend.predict([1], timeout=1.0)

    def test_missing_outputs(self):
        backend = _http_backend(lambda request: httpx.Response(200, json={"result": 1}))
        with pytest.raises(BackendError, match="outputs"):
            backend.predict([1], timeout=1.0)

    def test_empty_url_rejected(self):
        with pytest.raises(ValueError):
            HttpBackend("")

    def test_close_leaves_injected_client_open(self):
        client = httpx.Client(transport=httpx.MockTransport(lambda r: httpx.Response(200)))
        backend = HttpBackend("http://model.local/predict", client=client)
        backend.close()
        assert not client.is_closed
        client.close()


class TestCreateBackend:
    def test_default_is_simulated(self):
        backend = create_backend()
        assert isinstance(backend, SimulatedBackend)

    def test_http(self):
        config = DynabatchConfig(
            backend=BackendConfig(kind="http", url="http://model.local/predict")
        )
        backend = create_backend(config)
        assert isinstance(backend, HttpBackend)
        assert backend.url == "http://model.local/predict"
        backend.close()

    def test_http_without_url(self):
        config = DynabatchConfig(backend=BackendConfig(kind="http"))
        with pytest.raises(ConfigurationError):
            create_backend(config)
