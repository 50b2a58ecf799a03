##pytest services/realtime/tests/test_realtime_api.py -q

from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

from libs.memory_store import create_memory_store
from services.realtime.main import create_app

pytestmark = pytest.mark.integration

VEHICLE = {
    "registration_number": "REG-100",
    "make": "Scania",
    "model": "R450",
    "year": 2021,
    "license_plate": "D-100",
    "current_location": {"latitude": 53.3498, "longitude": -6.2603},
}


@pytest.fixture
def app(clock, timers):
    return create_app(store=create_memory_store(clock), clock=clock, timer_factory=timers)


@pytest.fixture
def client(app):
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def vehicle_id(client):
    r = client.post("/v1/vehicles", json=VEHICLE)
    assert r.status_code == 201
    return r.json()["id"]


# ========== Service Endpoints ==========


def test_root_endpoint(client):
    r = client.get("/")
    assert r.status_code == 200
    assert r.json() == {"service": "realtime", "status": "running"}


def test_health_endpoint(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json() == {"status": "ok", "service": "realtime"}


def test_metrics_endpoint_exposes_business_counters(client, vehicle_id):
    client.patch(f"/v1/vehicles/{vehicle_id}/location", json={"latitude": 1.0, "longitude": 2.0})

    r = client.get("/metrics")

    assert r.status_code == 200
    assert "realtime_location_updates_total 1.0" in r.text
    assert "realtime_alerts_created_total" in r.text
    assert "service_requests_total" in r.text


# ========== Vehicles & Tracking ==========


def test_get_vehicle(client, vehicle_id):
    r = client.get(f"/v1/vehicles/{vehicle_id}")
    assert r.status_code == 200
    assert r.json()["registration_number"] == "REG-100"


def test_unknown_vehicle_is_404(client):
    r = client.get("/v1/vehicles/missing")
    assert r.status_code == 404
    assert r.json()["detail"] == "Vehicle not found: missing"


def test_tracking_lifecycle(client, vehicle_id, clock):
    r = client.post(f"/v1/tracking/{vehicle_id}/start")
    assert r.status_code == 200
    assert r.json()["status"] == "tracking"

    clock.advance(hours=1)
    r = client.patch(
        f"/v1/vehicles/{vehicle_id}/location", json={"latitude": 53.45, "longitude": -6.26}
    )
    assert r.status_code == 200
    assert r.json()["current_location"]["latitude"] == 53.45

    stats = client.get(f"/v1/tracking/{vehicle_id}/stats").json()
    assert stats["duration_seconds"] == 3600
    assert stats["distance"] == pytest.approx(stats["average_speed"])

    assert [s["vehicle_id"] for s in client.get("/v1/tracking").json()] == [vehicle_id]

    r = client.post(f"/v1/tracking/{vehicle_id}/stop")
    assert r.json()["status"] == "stopped"
    assert client.get(f"/v1/tracking/{vehicle_id}").json()["status"] == "stopped"


def test_tracking_unknown_vehicle(client):
    assert client.post("/v1/tracking/missing/start").status_code == 404
    assert client.get("/v1/tracking/missing").status_code == 404
    assert client.get("/v1/tracking/missing/stats").status_code == 404
    assert client.post("/v1/tracking/missing/stop").status_code == 404


# ========== Emergencies ==========


def test_emergency_endpoints(client, vehicle_id):
    r = client.post(
        "/v1/emergencies",
        json={
            "vehicle_id": vehicle_id,
            "emergency_type": "accident",
            "description": "Rear-ended at lights",
            "severity": "critical",
        },
    )
    assert r.status_code == 201
    emergency = r.json()
    assert emergency["vehicle"]["id"] == vehicle_id

    assert len(client.get("/v1/emergencies/severity/critical").json()) == 1
    assert len(client.get("/v1/emergencies/status/active").json()) == 1

    r = client.patch(f"/v1/emergencies/{emergency['id']}/status", json={"status": "resolved"})
    assert r.json()["status"] == "resolved"

    stats = client.get("/v1/emergencies/stats").json()
    assert stats["resolved"] == 1
    assert stats["resolution_rate"] == 100.0

    r = client.post(f"/v1/emergencies/{emergency['id']}/close")
    assert r.json()["status"] == "closed"
    assert client.get("/v1/emergencies/status/active").json() == []


def test_emergency_validation(client, vehicle_id):
    r = client.post(
        "/v1/emergencies",
        json={"vehicle_id": vehicle_id, "emergency_type": "volcano", "description": "x"},
    )
    assert r.status_code == 422

    r = client.post(
        "/v1/emergencies",
        json={"vehicle_id": "missing", "emergency_type": "other", "description": "x"},
    )
    assert r.status_code == 404


# ========== Services ==========


def test_service_endpoints(client, vehicle_id, clock, timers):
    when = clock() + timedelta(days=3)
    r = client.post(
        "/v1/services",
        json={
            "vehicle_id": vehicle_id,
            "service_type": "maintenance",
            "cost": 250.0,
            "service_date": when.isoformat(),
        },
    )
    assert r.status_code == 201
    service_id = r.json()["id"]
    assert len(timers.pending) == 1

    assert [s["id"] for s in client.get("/v1/services/upcoming").json()] == [service_id]
    assert client.get("/v1/services/upcoming", params={"days": 1}).json() == []
    assert client.get("/v1/services/upcoming", params={"days": -1}).status_code == 422
    assert client.get("/v1/services/upcoming", params={"days": 1e300}).status_code == 400
    assert client.get("/v1/services/overdue").json() == []
    assert len(client.get(f"/v1/services/vehicle/{vehicle_id}").json()) == 1

    r = client.patch(
        f"/v1/services/{service_id}/reschedule",
        json={"new_date": (when + timedelta(days=2)).isoformat()},
    )
    assert r.status_code == 200
    assert len(timers.pending) == 1

    r = client.post(f"/v1/services/{service_id}/complete")
    assert r.json()["status"] == "completed"
    assert timers.pending == []

    stats = client.get("/v1/services/stats").json()
    assert stats["completed"] == 1
    assert stats["total_cost"] == 250.0


def test_complete_unknown_service(client):
    assert client.post("/v1/services/missing/complete").status_code == 404


# ========== WebSocket ==========


def test_websocket_tracking_flow(client, vehicle_id):
    with client.websocket_connect("/ws") as ws:
        ws.send_json({"event": "subscribe-tracking", "data": vehicle_id})
        ws.send_json({"event": "start-tracking", "data": vehicle_id})

        pushed = ws.receive_json()
        assert pushed["event"] == "location-update"
        reply = ws.receive_json()
        assert reply["event"] == "tracking-started"
        assert reply["data"]["vehicle_id"] == vehicle_id


def test_websocket_errors_keep_connection_open(client):
    with client.websocket_connect("/ws") as ws:
        ws.send_text("not json")
        assert ws.receive_json() == {"event": "error", "data": {"message": "Malformed frame"}}

        ws.send_json({"event": "launch-rockets", "data": None})
        assert ws.receive_json()["data"] == {"message": "Unknown event: launch-rockets"}

        ws.send_json({"event": "start-tracking", "data": "missing"})
        assert ws.receive_json()["data"] == {"message": "Failed to start tracking"}


def test_websocket_binary_frames_keep_connection_open(client):
    with client.websocket_connect("/ws") as ws:
        ws.send_bytes(b'{"event": "get-all-tracking"}')
        assert ws.receive_json() == {"event": "all-tracking", "data": []}

        ws.send_bytes(b"\xff")
        assert ws.receive_json() == {"event": "error", "data": {"message": "Malformed frame"}}

        ws.send_json({"event": "get-all-tracking"})
        assert ws.receive_json()["event"] == "all-tracking"


def test_rest_mutations_reach_websocket_clients(client, vehicle_id):
    with client.websocket_connect("/ws") as ws:
        ws.send_json({"event": "subscribe-alerts", "data": "all"})
        assert ws.receive_json()["event"] == "active-alerts"

        client.post(
            "/v1/emergencies",
            json={
                "vehicle_id": vehicle_id,
                "emergency_type": "breakdown",
                "description": "Flat tyre",
                "severity": "low",
            },
        )

        frame = ws.receive_json()
        assert frame["event"] == "emergency-alert"
        assert frame["data"]["severity"] == "low"


def test_disconnect_purges_subscriptions(app):
    # no lifespan portal here, so leaving the socket waits for the server side to finish
    client = TestClient(app)
    with client.websocket_connect("/ws") as ws:
        ws.send_json({"event": "subscribe-alerts", "data": "high"})
        ws.receive_json()
        assert app.state.coordinators.alerts.subscribers_of("high") != []

    assert app.state.coordinators.alerts.subscribers_of("high") == []
