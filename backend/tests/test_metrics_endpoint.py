from __future__ import annotations

from fastapi.testclient import TestClient

from app.monitoring.metrics import call_transitions_total

from conftest import auth_headers


def test_health(client: TestClient) -> None:
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_metrics_exposes_realtime_and_call_series(client: TestClient, make_user, make_conversation) -> None:
    call_transitions_total.reset()
    alice, bob = make_user("alice"), make_user("bob")
    conversation = make_conversation(alice, bob)
    client.post(
        "/api/calls/initiate",
        json={"conversationId": conversation.id, "type": "video"},
        headers=auth_headers(alice),
    )

    response = client.get("/metrics")

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/plain")
    body = response.text
    assert "# TYPE realtime_sessions gauge" in body
    assert 'call_transitions_total{event="initiate",status="ongoing"} 1' in body
    assert "notification_dispatch_total" in body
