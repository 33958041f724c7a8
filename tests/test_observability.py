import threading

import pytest
import requests

from infra.healthcheck import HealthServer
from infra.metrics import EVENTS, CycleStats, MetricsRecorder


@pytest.fixture
def recorder():
    return MetricsRecorder(enabled=False)


class TestMetricsRecorder:
    def test_all_events_start_at_zero(self, recorder):
        assert recorder.counters() == {event: 0 for event in EVENTS}

    def test_events_reach_prometheus_registry(self, recorder):
        recorder.fee_claimed(0.01, "0xabc")
        recorder.fee_claimed(0.02, "0xdef")

        assert recorder.counters()["fee_claimed"] == 2
        assert recorder.registry.get_sample_value("autonomy_events_total", {"event": "fee_claimed"}) == 2.0
        assert recorder.registry.get_sample_value("autonomy_last_fee_claimed") == pytest.approx(0.02)

    def test_credit_gauge(self, recorder):
        recorder.credits_checked(12.5)
        assert recorder.gauges()["credit_balance"] == 12.5
        assert recorder.registry.get_sample_value("autonomy_credit_balance_usd") == 12.5

    def test_cycle_completion(self, recorder):
        recorder.cycle_started()
        recorder.cycle_completed(CycleStats(status="ok", actions=["claimed"], duration_seconds=1.5))

        assert recorder.counters()["cycle_completed"] == 1
        assert recorder.gauges()["last_cycle_duration_seconds"] == 1.5
        assert recorder.registry.get_sample_value("autonomy_cycle_duration_seconds_count") == 1.0

    def test_task_latency_by_skill(self, recorder):
        recorder.task_dispatched("trade", "Pro")
        recorder.task_completed("trade", 0.25)
        recorder.task_failed("balance", "boom")

        assert recorder.registry.get_sample_value(
            "autonomy_task_duration_seconds_count", {"skill": "trade"}
        ) == 1.0
        assert recorder.counters()["task_failed"] == 1

    def test_concurrent_events_are_all_counted(self, recorder):
        def emit_many():
            for _ in range(2000):
                recorder.credits_checked(1.0)

        workers = [threading.Thread(target=emit_many) for _ in range(4)]
        for worker in workers:
            worker.start()
        for worker in workers:
            worker.join()

        assert recorder.counters()["credits_checked"] == 8000
        assert recorder.registry.get_sample_value("autonomy_events_total", {"event": "credits_checked"}) == 8000.0

    def test_recorders_do_not_share_registries(self):
        first = MetricsRecorder(enabled=False)
        second = MetricsRecorder(enabled=False)
        first.cycle_failed("x")
        assert second.counters()["cycle_failed"] == 0

    def test_disabled_recorder_does_not_start_exporter(self, recorder, monkeypatch):
        calls = []
        monkeypatch.setattr("infra.metrics.start_http_server", lambda *a, **k: calls.append(a))
        recorder.start()
        assert calls == []

    def test_enabled_recorder_starts_once(self, monkeypatch):
        calls = []
        monkeypatch.setattr("infra.metrics.start_http_server", lambda *a, **k: calls.append(a))
        recorder = MetricsRecorder(enabled=True, port=9999)
        recorder.start()
        recorder.start()
        assert calls == [(9999,)]

    def test_summary_shape(self, recorder):
        summary = recorder.summary()
        assert set(summary) == {"counters", "gauges", "uptime"}


class TestHealthServer:
    @pytest.fixture
    def status(self):
        return {"ok": True, "mode": "DRY_RUN"}

    @pytest.fixture
    def server(self, status):
        server = HealthServer(port=0, status_provider=lambda: dict(status), host="127.0.0.1")
        server.start()
        yield server
        server.stop()

    def _get(self, server, path):
        return requests.get(f"http://127.0.0.1:{server.port}{path}", timeout=5)

    def test_health_reports_provider_status(self, server):
        response = self._get(server, "/health")
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["mode"] == "DRY_RUN"
        assert "timestamp" in body

    def test_unhealthy_status_is_503(self, server, status):
        status["ok"] = False
        response = self._get(server, "/")
        assert response.status_code == 503
        assert response.json()["status"] == "unhealthy"

    @pytest.mark.parametrize("path, payload", [("/ready", {"ready": True}), ("/live", {"alive": True})])
    def test_probes(self, server, path, payload):
        response = self._get(server, path)
        assert response.status_code == 200
        assert response.json() == payload

    def test_unknown_path_is_404(self, server):
        assert self._get(server, "/metrics").status_code == 404

    def test_query_string_ignored(self, server):
        assert self._get(server, "/live?source=k8s").status_code == 200

    def test_ready_check_controls_readiness(self):
        ready = {"value": False}
        server = HealthServer(port=0, status_provider=dict, ready_check=lambda: ready["value"], host="127.0.0.1")
        server.start()
        try:
            response = self._get(server, "/ready")
            assert response.status_code == 503
            assert response.json() == {"ready": False}

            ready["value"] = True
            assert self._get(server, "/ready").status_code == 200
        finally:
            server.stop()

    def test_stop_is_idempotent(self, server):
        assert server.running
        server.stop()
        server.stop()
        assert not server.running
        assert server.port is None
