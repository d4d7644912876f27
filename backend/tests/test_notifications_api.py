from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from app.models import Notification, NotificationType

from conftest import auth_headers

START = datetime(2024, 10, 1, 9, 0, tzinfo=timezone.utc)


@pytest.fixture()
def inbox(make_user, db_session):
    alice, bob = make_user("alice"), make_user("bob")
    items = []
    for index in range(3):
        notification = Notification(
            recipient_id=alice.id,
            sender_id=bob.id,
            type=NotificationType.MESSAGE,
            title=f"Note {index}",
            message="body",
            created_at=START + timedelta(minutes=index),
        )
        db_session.add(notification)
        items.append(notification)
    db_session.add(
        Notification(recipient_id=bob.id, type=NotificationType.SYSTEM, title="Other", message="x")
    )
    db_session.commit()
    return alice, bob, [item.id for item in items]


def test_inbox_page_and_counts(client, inbox):
    alice, _, ids = inbox

    page = client.get("/api/notifications", params={"page": 1, "limit": 2}, headers=auth_headers(alice)).json()

    assert [item["title"] for item in page["notifications"]] == ["Note 2", "Note 1"]
    assert page["total"] == 3
    assert page["unreadCount"] == 3
    assert page["notifications"][0]["sender"]["username"] == "bob"

    count = client.get("/api/notifications/unread-count", headers=auth_headers(alice)).json()
    assert count == {"count": 3}


def test_mark_read_and_read_all(client, inbox):
    alice, _, ids = inbox

    marked = client.post(
        "/api/notifications/read", json={"notificationIds": [ids[0]]}, headers=auth_headers(alice)
    )
    assert marked.json() == {"modifiedCount": 1}

    rest = client.post("/api/notifications/read-all", headers=auth_headers(alice))
    assert rest.json() == {"modifiedCount": 2}
    assert client.get("/api/notifications/unread-count", headers=auth_headers(alice)).json() == {"count": 0}


def test_delete_only_own_notifications(client, inbox):
    alice, bob, ids = inbox

    assert client.delete(f"/api/notifications/{ids[0]}", headers=auth_headers(bob)).status_code == 404
    assert client.delete(f"/api/notifications/{ids[0]}", headers=auth_headers(alice)).status_code == 200
    page = client.get("/api/notifications", headers=auth_headers(alice)).json()
    assert page["total"] == 2


def test_push_token_registration(client, make_user, db_session):
    alice = make_user("alice")
    token = "t" * 120

    saved = client.put("/api/notifications/fcm-token", json={"fcmToken": token}, headers=auth_headers(alice))
    assert saved.status_code == 200
    db_session.refresh(alice)
    assert alice.fcm_token == token

    removed = client.delete("/api/notifications/fcm-token", headers=auth_headers(alice))
    assert removed.status_code == 200
    db_session.refresh(alice)
    assert alice.fcm_token is None


def test_create_notification_stores_and_pushes(client, make_user, push_client, notification_dispatcher):
    alice = make_user("alice")
    bob = make_user("bob", fcm_token="b" * 60)

    response = client.post(
        "/api/notifications",
        json={
            "recipientId": bob.id,
            "type": "announcement",
            "title": "Library hours",
            "message": "Open until midnight",
            "data": {"building": "main"},
            "route": "/announcements",
        },
        headers=auth_headers(alice),
    )
    client.portal.call(notification_dispatcher.drain)

    assert response.status_code == 201
    created = response.json()
    assert created["recipientId"] == bob.id
    assert created["sender"]["username"] == "alice"
    assert created["isRead"] is False

    assert len(push_client.sent) == 1
    pushed = push_client.sent[0]
    assert pushed.title == "Library hours"
    assert pushed.data == {
        "building": "main",
        "type": "announcement",
        "notificationId": created["id"],
        "route": "/announcements",
    }

    inbox = client.get("/api/notifications", headers=auth_headers(bob)).json()
    assert [item["id"] for item in inbox["notifications"]] == [created["id"]]


def test_create_notification_for_unknown_recipient(client, make_user):
    alice = make_user("alice")

    response = client.post(
        "/api/notifications",
        json={"recipientId": "nobody", "title": "Hi", "message": "there"},
        headers=auth_headers(alice),
    )

    assert response.status_code == 404
    assert response.json()["code"] == "not_found"
