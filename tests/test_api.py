"""
测试 REST API

覆盖：
- 工位注册/查询/注销（重复注册、产线冲突、未知工位）
- 目标值拉取失败返回 502
- 调度状态、事件、瓶颈确认与重置
- 管理员 Token 校验
"""

import httpx
import pytest
from fastapi.testclient import TestClient

from conftest import make_sample
from line_monitor import config as config_module
from line_monitor.api.app import create_app
from line_monitor.api.dependencies import get_line_monitor
from line_monitor.config import AppConfig
from line_monitor.monitor import LineMonitor
from line_monitor.source import MetricsSource


def targets_handler(request: httpx.Request):
    if request.url.path.endswith("/stations/9/targets"):
        return httpx.Response(500)
    return httpx.Response(200, json={"cycles": {"totalCycleTime": 12.0}})


@pytest.fixture
def monitor():
    source = MetricsSource("http://line.test/api", transport=httpx.MockTransport(targets_handler))
    return LineMonitor(AppConfig(), source)


@pytest.fixture
def app(monitor: LineMonitor):
    app = create_app()

    async def _override_monitor():
        return monitor

    app.dependency_overrides[get_line_monitor] = _override_monitor
    return app


@pytest.fixture
def client(app):
    return TestClient(app)


def test_register_station_with_targets(client: TestClient):
    resp = client.post("/api/stations", json={
        "line_id": 1,
        "station_id": 1,
        "targets": {"totalCycleTime": 10.0, "oee": 85.0},
    })
    assert resp.status_code == 200
    data = resp.json()
    assert data["station_id"] == 1
    assert data["targets"] == {"totalCycleTime": 10.0, "oee": 85.0}
    assert data["has_data"] is False

    resp = client.get("/api/stations")
    assert [s["station_id"] for s in resp.json()] == [1]


def test_register_station_from_source(client: TestClient, monitor: LineMonitor):
    resp = client.post("/api/stations", json={"line_id": 1, "station_id": 4})
    assert resp.status_code == 200
    assert resp.json()["targets"] == {"totalCycleTime": 12.0}
    assert monitor.registry.is_registered(4)


def test_register_is_idempotent(client: TestClient, monitor: LineMonitor):
    body = {"line_id": 1, "station_id": 1, "targets": {"oee": 85.0}}
    assert client.post("/api/stations", json=body).status_code == 200
    assert client.post("/api/stations", json=body).status_code == 200
    assert len(monitor.registry) == 1


def test_register_conflicting_line(client: TestClient):
    client.post("/api/stations", json={"line_id": 1, "station_id": 1, "targets": {"oee": 85.0}})

    resp = client.post("/api/stations", json={"line_id": 2, "station_id": 1, "targets": {"oee": 85.0}})
    assert resp.status_code == 409


def test_register_unknown_metric(client: TestClient):
    resp = client.post("/api/stations", json={"line_id": 1, "station_id": 1, "targets": {"speed": 1.0}})
    assert resp.status_code == 422


def test_register_targets_fetch_failure(client: TestClient, monitor: LineMonitor):
    resp = client.post("/api/stations", json={"line_id": 1, "station_id": 9})
    assert resp.status_code == 502
    assert not monitor.registry.is_registered(9)


def test_get_unknown_station(client: TestClient):
    assert client.get("/api/stations/42").status_code == 404


def test_unregister_station(client: TestClient, monitor: LineMonitor):
    client.post("/api/stations", json={"line_id": 1, "station_id": 1, "targets": {"oee": 85.0}})

    resp = client.delete("/api/stations/1")
    assert resp.status_code == 200
    assert resp.json() == {"message": "Station unregistered", "station_id": 1}
    assert not monitor.registry.is_registered(1)

    assert client.delete("/api/stations/1").status_code == 404


def test_status_and_refresh(client: TestClient):
    resp = client.get("/api/status")
    assert resp.status_code == 200
    data = resp.json()
    assert data["state"] == "idle"
    assert data["registered"] == []
    assert data["bottleneck"]["current_station_id"] is None

    resp = client.post("/api/refresh")
    assert resp.json() == {"dispatched": []}


def test_enable_disable(client: TestClient):
    resp = client.post("/api/monitoring/disable")
    assert resp.status_code == 200
    assert resp.json()["enabled"] is False

    resp = client.post("/api/monitoring/enable")
    assert resp.json()["enabled"] is True


def test_events_and_bottleneck(client: TestClient, monitor: LineMonitor):
    for sid in (1, 2):
        client.post("/api/stations", json={
            "line_id": 1, "station_id": sid, "targets": {"totalCycleTime": 10.0},
        })
    monitor.store.put(make_sample(1, "totalCycleTime", 11.0))
    monitor.store.put(make_sample(2, "totalCycleTime", 6.0))
    monitor.evaluate_now()

    resp = client.get("/api/events", params={"type": "severity_updated"})
    assert resp.status_code == 200
    events = resp.json()
    assert {e["station_id"] for e in events} == {1, 2}
    assert all(e["type"] == "severity_updated" for e in events)

    resp = client.get("/api/stations/2")
    assert resp.json()["groups"] == {"cycleTimes": 2}
    assert resp.json()["is_bottleneck"] is True

    resp = client.get("/api/bottleneck")
    assert resp.json()["current_station_id"] == 2
    assert resp.json()["state"] == "stable"

    resp = client.post("/api/bottleneck/acknowledge")
    assert resp.json()["previous_station_id"] == 2

    resp = client.post("/api/bottleneck/reset")
    assert resp.json()["previous_station_id"] is None


def test_events_limit(client: TestClient, monitor: LineMonitor):
    client.post("/api/stations", json={"line_id": 1, "station_id": 1, "targets": {"oee": 80.0, "fpy": 90.0}})
    monitor.store.put(make_sample(1, "oee", 80.0))
    monitor.store.put(make_sample(1, "fpy", 90.0))
    monitor.evaluate_now()

    assert len(client.get("/api/events", params={"limit": 1}).json()) == 1
    assert client.get("/api/events", params={"limit": 0}).status_code == 422


def test_admin_token_required(client: TestClient):
    config_module._config = AppConfig(api={"admin_token": "secret"})

    body = {"line_id": 1, "station_id": 1, "targets": {"oee": 85.0}}
    assert client.post("/api/stations", json=body).status_code == 401
    assert client.delete("/api/stations/1").status_code == 401
    assert client.post("/api/stations", json=body, headers={"X-Admin-Token": "secret"}).status_code == 200

    # 只读接口不需要 Token
    assert client.get("/api/stations").status_code == 200


def test_wrong_admin_token_rejected(client: TestClient, monitor: LineMonitor):
    config_module._config = AppConfig(api={"admin_token": "secret"})
    monitor.register_station(1, 1, {"oee": 85.0})

    assert client.delete("/api/stations/1", headers={"X-Admin-Token": "secre"}).status_code == 401
    assert client.delete("/api/stations/1", headers={"X-Admin-Token": ""}).status_code == 401
    assert monitor.registry.is_registered(1)

    # Token 正确但工位未注册
    resp = client.delete("/api/stations/7", headers={"X-Admin-Token": "secret"})
    assert resp.status_code == 404
    assert resp.json()["detail"] == "Station 7 not found"


def test_unknown_station_shared_lookup(client: TestClient, monitor: LineMonitor):
    """测试：查询与注销对未注册工位给出相同的 404"""
    monitor.register_station(1, 1, {"oee": 85.0})

    for resp in (client.get("/api/stations/42"), client.delete("/api/stations/42")):
        assert resp.status_code == 404
        assert resp.json()["detail"] == "Station 42 not found"

    assert monitor.registry.station_ids() == [1]
    assert client.get("/api/stations/1").json()["station_id"] == 1
