"""Notifications API tests.

Covers:
1. Inbox — list shape, ordering, unread count
2. Read state + delete, scoped to the caller (404 for other users' ids)
3. Admin message — recipients, kinds, unknown ids, validation
4. Task assignment / deadline reminder / project update flows
5. Welcome email
6. Real JWT auth on the header path, including tracker-issued tokens
"""

from datetime import date, timedelta

import jwt
import pytest
import pytest_asyncio

from smartflow.auth.jwt import create_access_token
from smartflow.config import settings
from smartflow.db.models import Project, Task
from smartflow.main import app
from smartflow.services.broadcast import BroadcastCoordinator, BroadcastKind
from smartflow.services.email_service import EmailService, get_email_service
from smartflow.services.notification_store import NotificationStore


class RecordingEmail(EmailService):
    """Development-mode EmailService that keeps what it was asked to send."""

    def __init__(self):
        super().__init__(host="localhost", port=25)
        self.sent = []
        self.delivered = []

    async def send(self, to, subject, body):
        self.delivered.append((to, subject, body))
        return await super().send(to, subject, body)

    async def send_bulk(self, emails):
        emails = list(emails)
        self.sent.extend(emails)
        return await super().send_bulk(emails)


@pytest.fixture
def outbox():
    email = RecordingEmail()
    app.dependency_overrides[get_email_service] = lambda: email
    yield email
    app.dependency_overrides.pop(get_email_service, None)


async def _notify(db, registry, user_ids, title="Hello", kind=BroadcastKind.PERSONAL):
    await BroadcastCoordinator(db, registry).broadcast(
        sender_id=1,
        sender_name="Ada Admin",
        recipient_ids=user_ids,
        title=title,
        message=f"{title} body",
        kind=kind,
    )


@pytest_asyncio.fixture
async def project(db_session):
    """Project 'Apollo' with tasks for users 7 and 9; one of three done."""
    p = Project(name="Apollo", description="Moon", status="active", priority="high")
    db_session.add(p)
    await db_session.flush()
    tasks = [
        Task(title="Design", project_id=p.id, assigned_to=7, status="done",
             deadline=date.today() + timedelta(days=3)),
        Task(title="Build", project_id=p.id, assigned_to=9, status="in_progress",
             deadline=date.today() - timedelta(days=2)),
        Task(title="Unassigned", project_id=p.id, status="todo"),
    ]
    db_session.add_all(tasks)
    await db_session.commit()
    return p, tasks


# ═══════════════════════════════════════════════════════════
# Inbox
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_list_empty(client):
    r = await client.get("/api/v1/notifications")
    assert r.status_code == 200
    assert r.json() == []


@pytest.mark.asyncio
async def test_list_shape_and_order(client, db_session, registry):
    for title in ["A", "B", "C"]:
        await _notify(db_session, registry, [7], title=title)

    r = await client.get("/api/v1/notifications")
    assert r.status_code == 200
    data = r.json()
    assert [n["title"] for n in data] == ["📢 C", "📢 B", "📢 A"]

    first = data[0]
    assert set(first) == {"id", "title", "message", "type", "read", "timestamp", "senderName"}
    assert first["message"] == "C body"
    assert first["type"] == "personal"
    assert first["read"] is False
    assert first["senderName"] == "Ada Admin"


@pytest.mark.asyncio
async def test_list_only_callers_notifications(client, db_session, registry):
    await _notify(db_session, registry, [9], title="Not yours")
    r = await client.get("/api/v1/notifications")
    assert r.json() == []


@pytest.mark.asyncio
async def test_list_limit(client, db_session, registry):
    for title in ["A", "B", "C"]:
        await _notify(db_session, registry, [7], title=title)

    r = await client.get("/api/v1/notifications", params={"limit": 2})
    assert [n["title"] for n in r.json()] == ["📢 C", "📢 B"]

    r = await client.get("/api/v1/notifications", params={"limit": 0})
    assert r.status_code == 422


@pytest.mark.asyncio
async def test_unread_count(client, db_session, registry):
    await _notify(db_session, registry, [7], title="A")
    await _notify(db_session, registry, [7], title="B")

    r = await client.get("/api/v1/notifications/unread-count")
    assert r.status_code == 200
    assert r.json() == {"count": 2}


# ═══════════════════════════════════════════════════════════
# Read state + delete
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_mark_read(client, db_session, registry):
    await _notify(db_session, registry, [7])
    nid = (await client.get("/api/v1/notifications")).json()[0]["id"]

    r = await client.put(f"/api/v1/notifications/{nid}/read")
    assert r.status_code == 200

    data = (await client.get("/api/v1/notifications")).json()
    assert data[0]["read"] is True
    assert (await client.get("/api/v1/notifications/unread-count")).json()["count"] == 0


@pytest.mark.asyncio
async def test_mark_read_other_users_notification_is_404(client, db_session, registry):
    await _notify(db_session, registry, [9])
    theirs = (await NotificationStore(db_session).list_for_user(9))[0]

    r = await client.put(f"/api/v1/notifications/{theirs.id}/read")
    assert r.status_code == 404
    assert r.json()["detail"] == "Notification not found"

    r = await client.put("/api/v1/notifications/99999/read")
    assert r.status_code == 404
    assert r.json()["detail"] == "Notification not found"

    assert (await NotificationStore(db_session).list_for_user(9))[0].read is False


@pytest.mark.asyncio
async def test_mark_all_read(client, db_session, registry):
    for title in ["A", "B", "C"]:
        await _notify(db_session, registry, [7], title=title)
    await _notify(db_session, registry, [9])

    r = await client.put("/api/v1/notifications/read-all")
    assert r.status_code == 200
    assert r.json()["updated"] == 3
    assert "message" in r.json()

    r = await client.put("/api/v1/notifications/read-all")
    assert r.json()["updated"] == 0
    assert await NotificationStore(db_session).unread_count(9) == 1


@pytest.mark.asyncio
async def test_delete(client, db_session, registry):
    await _notify(db_session, registry, [7])
    nid = (await client.get("/api/v1/notifications")).json()[0]["id"]

    r = await client.delete(f"/api/v1/notifications/{nid}")
    assert r.status_code == 200
    assert (await client.get("/api/v1/notifications")).json() == []

    r = await client.delete(f"/api/v1/notifications/{nid}")
    assert r.status_code == 404


@pytest.mark.asyncio
async def test_delete_other_users_notification_is_404(client, db_session, registry):
    await _notify(db_session, registry, [9])
    theirs = (await NotificationStore(db_session).list_for_user(9))[0]

    r = await client.delete(f"/api/v1/notifications/{theirs.id}")
    assert r.status_code == 404
    assert len(await NotificationStore(db_session).list_for_user(9)) == 1


# ═══════════════════════════════════════════════════════════
# Admin message
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_admin_message_general(client, login_as, db_session, outbox):
    """Admin 1 sends a general announcement to 7 and 9."""
    login_as(1, "admin")

    r = await client.post("/api/v1/notifications/admin-message", json={
        "title": "Maintenance",
        "content": "Down at 2am",
        "userIds": [7, 9],
        "isGeneral": True,
    })
    assert r.status_code == 200
    data = r.json()
    assert data["sentTo"] == 2
    assert data["message"] == "Admin message sent (email + in-app)"
    assert data["users"] == [
        {"id": 7, "email": "seven@smartflow.test", "name": "Sam Seven"},
        {"id": 9, "email": "nine@smartflow.test", "name": "Nia Nine"},
    ]

    store = NotificationStore(db_session)
    for user_id in (7, 9):
        rows = await store.list_for_user(user_id)
        assert len(rows) == 1
        assert rows[0].title == "📣 Maintenance"
        assert rows[0].type == "general"
        assert rows[0].read is False
        assert rows[0].sender_name == "Ada Admin"

    assert [to for to, _, _ in outbox.sent] == [
        "seven@smartflow.test", "nine@smartflow.test",
    ]


@pytest.mark.asyncio
async def test_admin_message_pushes_to_connected_user(client, login_as, registry, outbox):
    login_as(1, "admin")
    session = registry.subscribe(9)

    r = await client.post("/api/v1/notifications/admin-message", json={
        "title": "Hi", "content": "Hello", "userIds": [9, 42],
    })
    assert r.status_code == 200
    assert r.json()["sentTo"] == 2

    payload = await session.next_event(timeout=1)
    assert payload["title"] == "📢 Hi"
    assert payload["type"] == "personal"
    assert payload["senderName"] == "Ada Admin"
    assert session.queue.empty()


@pytest.mark.asyncio
async def test_admin_message_skips_unknown_users(client, login_as, outbox):
    login_as(1, "admin")
    r = await client.post("/api/v1/notifications/admin-message", json={
        "title": "Hi", "content": "Hello", "userIds": [7, 5000, 7],
    })
    assert r.status_code == 200
    assert r.json()["sentTo"] == 1
    assert [u["id"] for u in r.json()["users"]] == [7]


@pytest.mark.asyncio
async def test_admin_message_validation(client, outbox):
    r = await client.post("/api/v1/notifications/admin-message", json={
        "title": "Hi", "content": "Hello", "userIds": [],
    })
    assert r.status_code == 422

    r = await client.post("/api/v1/notifications/admin-message", json={
        "title": "", "content": "Hello", "userIds": [7],
    })
    assert r.status_code == 422


@pytest.mark.asyncio
async def test_admin_message_unknown_sender(client, login_as, outbox):
    login_as(5000)
    r = await client.post("/api/v1/notifications/admin-message", json={
        "title": "Hi", "content": "Hello", "userIds": [7],
    })
    assert r.status_code == 404
    assert r.json()["detail"] == "Sender not found"


@pytest.mark.asyncio
async def test_admin_message_keeps_five(client, login_as, db_session, outbox):
    login_as(1, "admin")
    for i in range(6):
        r = await client.post("/api/v1/notifications/admin-message", json={
            "title": f"n{i}", "content": "c", "userIds": [7],
        })
        assert r.status_code == 200

    titles = [n.title for n in await NotificationStore(db_session).list_for_user(7)]
    assert len(titles) == 5
    assert "📢 n0" not in titles
    assert titles[0] == "📢 n5"


# ═══════════════════════════════════════════════════════════
# Tracker flows
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_task_assignment(client, login_as, db_session, project, outbox):
    login_as(1, "admin")
    _, tasks = project

    r = await client.post("/api/v1/notifications/task-assignment", json={
        "taskId": tasks[0].id, "userId": 7,
    })
    assert r.status_code == 200
    assert r.json()["sentTo"] == 1

    n = (await NotificationStore(db_session).list_for_user(7))[0]
    assert n.title == "📢 New Task Assignment: Design"
    assert "Apollo" in n.message
    assert n.type == "personal"

    to, subject, body = outbox.sent[0]
    assert to == "seven@smartflow.test"
    assert subject == "🎯 New Task Assignment: Design"
    assert "Project: Apollo" in body


@pytest.mark.asyncio
async def test_task_assignment_missing_entities(client, project, outbox):
    _, tasks = project
    r = await client.post("/api/v1/notifications/task-assignment", json={
        "taskId": 9999, "userId": 7,
    })
    assert r.status_code == 404
    assert r.json()["detail"] == "Task not found"

    r = await client.post("/api/v1/notifications/task-assignment", json={
        "taskId": tasks[0].id, "userId": 5000,
    })
    assert r.status_code == 404
    assert r.json()["detail"] == "User not found"


@pytest.mark.asyncio
async def test_deadline_reminder(client, db_session, project, outbox):
    _, tasks = project

    r = await client.post("/api/v1/notifications/deadline-reminder", json={
        "taskId": tasks[0].id,
    })
    assert r.status_code == 200
    assert r.json()["users"][0]["id"] == 7

    n = (await NotificationStore(db_session).list_for_user(7))[0]
    assert n.title == "📢 Deadline Reminder: Design"
    assert n.message.endswith("3 days remaining")
    assert "3 days remaining" in outbox.sent[0][2]


@pytest.mark.asyncio
async def test_deadline_reminder_overdue(client, db_session, project, outbox):
    _, tasks = project
    r = await client.post("/api/v1/notifications/deadline-reminder", json={
        "taskId": tasks[1].id,
    })
    assert r.status_code == 200
    n = (await NotificationStore(db_session).list_for_user(9))[0]
    assert n.message.endswith("2 days overdue!")


@pytest.mark.asyncio
async def test_deadline_reminder_unassigned_task_is_404(client, project, outbox):
    _, tasks = project
    r = await client.post("/api/v1/notifications/deadline-reminder", json={
        "taskId": tasks[2].id,
    })
    assert r.status_code == 404


@pytest.mark.asyncio
async def test_project_update(client, login_as, db_session, project, outbox):
    login_as(1, "admin")
    p, _ = project

    r = await client.post("/api/v1/notifications/project-update", json={
        "projectId": p.id,
    })
    assert r.status_code == 200
    data = r.json()
    assert data["sentTo"] == 2
    assert [u["id"] for u in data["users"]] == [7, 9]

    for user_id in (7, 9):
        n = (await NotificationStore(db_session).list_for_user(user_id))[0]
        assert n.title == "📣 Project Update: Apollo"
        assert n.type == "general"
        assert n.message == "Apollo is 33% complete (active)."
    assert len(outbox.sent) == 2


@pytest.mark.asyncio
async def test_project_update_missing_project(client, outbox):
    r = await client.post("/api/v1/notifications/project-update", json={
        "projectId": 9999,
    })
    assert r.status_code == 404
    assert r.json()["detail"] == "Project not found"


# ═══════════════════════════════════════════════════════════
# Welcome email
# ═══════════════════════════════════════════════════════════


class UnreachableSmtp(RecordingEmail):
    async def send(self, to, subject, body):
        raise ConnectionRefusedError("smtp down")


@pytest.mark.asyncio
async def test_welcome_email(client, outbox):
    r = await client.post("/api/v1/notifications/welcome-email", json={"userId": 9})
    assert r.status_code == 200
    assert r.json() == {
        "message": "Welcome email sent successfully",
        "userId": 9,
        "email": "nine@smartflow.test",
    }

    to, subject, body = outbox.delivered[0]
    assert to == "nine@smartflow.test"
    assert subject.startswith("🚀 Welcome to")
    assert "Hello Nia Nine!" in body
    assert "Username: nine" in body


@pytest.mark.asyncio
async def test_welcome_email_unknown_user(client, outbox):
    r = await client.post("/api/v1/notifications/welcome-email", json={"userId": 5000})
    assert r.status_code == 404
    assert r.json()["detail"] == "User not found"
    assert outbox.delivered == []


@pytest.mark.asyncio
async def test_welcome_email_validation(client, outbox):
    r = await client.post("/api/v1/notifications/welcome-email", json={})
    assert r.status_code == 422


@pytest.mark.asyncio
async def test_welcome_email_smtp_failure(client):
    app.dependency_overrides[get_email_service] = lambda: UnreachableSmtp()
    r = await client.post("/api/v1/notifications/welcome-email", json={"userId": 7})
    assert r.status_code == 500
    assert r.json()["detail"] == "Failed to send welcome email"


# ═══════════════════════════════════════════════════════════
# Email preferences + diagnostics
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_settings(client):
    r = await client.get("/api/v1/notifications/settings")
    assert r.status_code == 200
    data = r.json()
    assert data["email"] == "seven@smartflow.test"
    assert data["emailNotifications"] is True
    assert data["projectUpdates"] is True


@pytest.mark.asyncio
async def test_test_connection_in_development_mode(client, outbox):
    r = await client.get("/api/v1/notifications/test-connection")
    assert r.status_code == 200
    assert r.json()["status"] == "connected"
    assert r.json()["developmentMode"] is True


# ═══════════════════════════════════════════════════════════
# Authentication
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_requires_auth(unauthenticated_client):
    r = await unauthenticated_client.get("/api/v1/notifications")
    assert r.status_code == 401
    assert r.json()["detail"] == "Not authenticated"


@pytest.mark.asyncio
async def test_bad_tokens_all_look_the_same(unauthenticated_client):
    expired = create_access_token(7, expires_minutes=-1)
    for header in ["Bearer garbage", f"Bearer {expired}", "Basic abc", expired]:
        r = await unauthenticated_client.get(
            "/api/v1/notifications", headers={"Authorization": header}
        )
        assert r.status_code == 401
        assert r.json()["detail"] == "Not authenticated"


@pytest.mark.asyncio
async def test_real_token_scopes_to_subject(unauthenticated_client, db_session, registry):
    await _notify(db_session, registry, [9], title="For nine")
    token = create_access_token(9)

    r = await unauthenticated_client.get(
        "/api/v1/notifications", headers={"Authorization": f"Bearer {token}"}
    )
    assert r.status_code == 200
    assert [n["title"] for n in r.json()] == ["📢 For nine"]


@pytest.mark.asyncio
async def test_tracker_login_token_is_accepted(unauthenticated_client, db_session, registry):
    """The tracker's login route signs {id, username, role, full_name}, no sub."""
    await _notify(db_session, registry, [7], title="For seven")
    token = jwt.encode(
        {"id": 7, "username": "seven", "role": "member", "full_name": "Sam Seven"},
        settings.jwt_secret,
        algorithm=settings.jwt_algorithm,
    )

    r = await unauthenticated_client.get(
        "/api/v1/notifications", headers={"Authorization": f"Bearer {token}"}
    )
    assert r.status_code == 200
    assert [n["title"] for n in r.json()] == ["📢 For seven"]


@pytest.mark.asyncio
async def test_token_without_user_id_is_rejected(unauthenticated_client):
    token = jwt.encode({"username": "seven"}, settings.jwt_secret,
                       algorithm=settings.jwt_algorithm)
    r = await unauthenticated_client.get(
        "/api/v1/notifications", headers={"Authorization": f"Bearer {token}"}
    )
    assert r.status_code == 401
    assert r.json()["detail"] == "Not authenticated"
