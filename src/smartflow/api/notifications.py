"""Notifications API — inbox, read state, and broadcast entry points.

Routes (all scoped to the authenticated caller):
- GET    /notifications                    → newest first
- GET    /notifications/unread-count       → {count}
- PUT    /notifications/{id}/read          → mark one read
- PUT    /notifications/read-all           → mark all read
- DELETE /notifications/{id}               → delete one
- POST   /notifications/admin-message      → broadcast to chosen users
- POST   /notifications/task-assignment    → notify a task's new assignee
- POST   /notifications/deadline-reminder  → remind a task's assignee
- POST   /notifications/project-update     → notify a project's members
- POST   /notifications/welcome-email      → welcome email to a new user
- GET    /notifications/settings           → email preferences
- GET    /notifications/test-connection    → email transport status

The live stream (GET /notifications/stream) lives in realtime.stream
because it authenticates with a query parameter, not the header.

Broadcast routes collect everything they need from the ORM (recipients,
email bodies) before calling the coordinator; a per-recipient rollback
inside the coordinator expires loaded objects.
"""

import smtplib
from typing import Optional

import structlog
from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from smartflow.auth.dependencies import CurrentIdentity, get_current_user
from smartflow.db.engine import get_db
from smartflow.realtime.registry import PushRegistry, get_push_registry
from smartflow.schemas.notification import (
    AdminMessageCreate,
    BroadcastResult,
    DeadlineReminderCreate,
    NotificationRead,
    NotificationSettings,
    ProjectUpdateCreate,
    RecipientRead,
    TaskAssignmentCreate,
    UnreadCount,
    WelcomeEmailCreate,
)
from smartflow.services.broadcast import (
    BroadcastCoordinator,
    BroadcastFailedError,
    BroadcastKind,
)
from smartflow.services.email_service import (
    EmailService,
    get_email_service,
    time_remaining,
)
from smartflow.services.notification_store import (
    NotificationNotFoundError,
    NotificationStore,
)
from smartflow.services.user_directory import UserDirectory

logger = structlog.get_logger()
router = APIRouter(prefix="/notifications")


def _get_store(db: AsyncSession = Depends(get_db)) -> NotificationStore:
    return NotificationStore(db)


def _get_directory(db: AsyncSession = Depends(get_db)) -> UserDirectory:
    return UserDirectory(db)


def _get_coordinator(
    db: AsyncSession = Depends(get_db),
    push: PushRegistry = Depends(get_push_registry),
) -> BroadcastCoordinator:
    return BroadcastCoordinator(db=db, push=push)


def _not_found() -> HTTPException:
    # Same answer for "no such id" and "not yours".
    return HTTPException(status_code=404, detail="Notification not found")


async def _broadcast(coordinator: BroadcastCoordinator, **kwargs) -> list[int]:
    try:
        return await coordinator.broadcast(**kwargs)
    except BroadcastFailedError:
        raise HTTPException(
            status_code=500, detail="Failed to deliver notifications"
        )


def _recipient(user) -> RecipientRead:
    return RecipientRead(id=user.id, email=user.email, name=user.full_name)


# ─── Inbox ───────────────────────────────────────────────


@router.get("", response_model=list[NotificationRead])
async def list_notifications(
    limit: Optional[int] = Query(None, ge=1, le=100),
    identity: CurrentIdentity = Depends(get_current_user),
    store: NotificationStore = Depends(_get_store),
):
    """The caller's notifications, newest first."""
    return await store.list_for_user(identity.user_id, limit=limit)


@router.get("/unread-count", response_model=UnreadCount)
async def unread_count(
    identity: CurrentIdentity = Depends(get_current_user),
    store: NotificationStore = Depends(_get_store),
):
    return {"count": await store.unread_count(identity.user_id)}


@router.put("/read-all")
async def mark_all_read(
    identity: CurrentIdentity = Depends(get_current_user),
    store: NotificationStore = Depends(_get_store),
):
    updated = await store.mark_all_read(identity.user_id)
    return {"message": "All marked as read", "updated": updated}


@router.put("/{notification_id}/read")
async def mark_read(
    notification_id: int,
    identity: CurrentIdentity = Depends(get_current_user),
    store: NotificationStore = Depends(_get_store),
):
    try:
        await store.mark_read(notification_id, identity.user_id)
    except NotificationNotFoundError:
        raise _not_found()
    return {"message": "Marked as read"}


@router.delete("/{notification_id}")
async def delete_notification(
    notification_id: int,
    identity: CurrentIdentity = Depends(get_current_user),
    store: NotificationStore = Depends(_get_store),
):
    try:
        await store.delete(notification_id, identity.user_id)
    except NotificationNotFoundError:
        raise _not_found()
    return {"message": "Notification deleted"}


# ─── Broadcasts ──────────────────────────────────────────


@router.post("/admin-message", response_model=BroadcastResult)
async def send_admin_message(
    body: AdminMessageCreate,
    background_tasks: BackgroundTasks,
    identity: CurrentIdentity = Depends(get_current_user),
    directory: UserDirectory = Depends(_get_directory),
    coordinator: BroadcastCoordinator = Depends(_get_coordinator),
    email: EmailService = Depends(get_email_service),
):
    """In-app message (plus email) from the caller to a set of users."""
    sender = await directory.get_user(identity.user_id)
    if not sender:
        raise HTTPException(status_code=404, detail="Sender not found")

    users = await directory.resolve_recipients(body.user_ids)
    recipients = [_recipient(u) for u in users]
    outgoing = [
        email.admin_message(
            u, body.title, body.content, sender.full_name, sender.role
        )
        for u in users
    ]
    sender_id, sender_name = sender.id, sender.full_name

    notified = await _broadcast(
        coordinator,
        sender_id=sender_id,
        sender_name=sender_name,
        recipient_ids=[r.id for r in recipients],
        title=body.title,
        message=body.content,
        kind=BroadcastKind.GENERAL if body.is_general else BroadcastKind.PERSONAL,
    )
    background_tasks.add_task(email.send_bulk, outgoing)

    return BroadcastResult(
        message="Admin message sent (email + in-app)",
        sent_to=len(notified),
        users=[r for r in recipients if r.id in notified],
    )


@router.post("/task-assignment", response_model=BroadcastResult)
async def notify_task_assignment(
    body: TaskAssignmentCreate,
    background_tasks: BackgroundTasks,
    identity: CurrentIdentity = Depends(get_current_user),
    directory: UserDirectory = Depends(_get_directory),
    coordinator: BroadcastCoordinator = Depends(_get_coordinator),
    email: EmailService = Depends(get_email_service),
):
    task = await directory.get_task(body.task_id)
    if not task:
        raise HTTPException(status_code=404, detail="Task not found")
    user = await directory.get_user(body.user_id)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    project = await directory.get_project(task.project_id)
    if not project:
        raise HTTPException(status_code=404, detail="Project not found")
    sender = await directory.get_user(identity.user_id)

    recipient = _recipient(user)
    outgoing = [email.task_assignment(user, task, project)]
    title = f"New Task Assignment: {task.title}"
    message = f"You have been assigned to \"{task.title}\" in {project.name}."

    notified = await _broadcast(
        coordinator,
        sender_id=sender.id if sender else None,
        sender_name=sender.full_name if sender else None,
        recipient_ids=[recipient.id],
        title=title,
        message=message,
        kind=BroadcastKind.PERSONAL,
    )
    background_tasks.add_task(email.send_bulk, outgoing)

    return BroadcastResult(
        message="Task assignment notification sent",
        sent_to=len(notified),
        users=[recipient] if notified else [],
    )


@router.post("/deadline-reminder", response_model=BroadcastResult)
async def notify_deadline(
    body: DeadlineReminderCreate,
    background_tasks: BackgroundTasks,
    identity: CurrentIdentity = Depends(get_current_user),
    directory: UserDirectory = Depends(_get_directory),
    coordinator: BroadcastCoordinator = Depends(_get_coordinator),
    email: EmailService = Depends(get_email_service),
):
    task = await directory.get_task(body.task_id)
    user = await directory.get_user(task.assigned_to) if task and task.assigned_to else None
    if not task or not user:
        raise HTTPException(status_code=404, detail="Task not found")
    project = await directory.get_project(task.project_id)
    if not project:
        raise HTTPException(status_code=404, detail="Project not found")
    sender = await directory.get_user(identity.user_id)

    recipient = _recipient(user)
    outgoing = [email.deadline_reminder(user, task, project)]
    remaining = time_remaining(task.deadline) if task.deadline else "No deadline set"
    title = f"Deadline Reminder: {task.title}"
    message = f"\"{task.title}\" in {project.name}: {remaining}"

    notified = await _broadcast(
        coordinator,
        sender_id=sender.id if sender else None,
        sender_name=sender.full_name if sender else None,
        recipient_ids=[recipient.id],
        title=title,
        message=message,
        kind=BroadcastKind.PERSONAL,
    )
    background_tasks.add_task(email.send_bulk, outgoing)

    return BroadcastResult(
        message="Deadline reminder sent",
        sent_to=len(notified),
        users=[recipient] if notified else [],
    )


@router.post("/project-update", response_model=BroadcastResult)
async def notify_project_update(
    body: ProjectUpdateCreate,
    background_tasks: BackgroundTasks,
    identity: CurrentIdentity = Depends(get_current_user),
    directory: UserDirectory = Depends(_get_directory),
    coordinator: BroadcastCoordinator = Depends(_get_coordinator),
    email: EmailService = Depends(get_email_service),
):
    """Progress update to everyone with a task in the project."""
    project = await directory.get_project(body.project_id)
    if not project:
        raise HTTPException(status_code=404, detail="Project not found")
    members = await directory.project_members(project.id)
    progress = await directory.project_progress(project.id)
    sender = await directory.get_user(identity.user_id)

    recipients = [_recipient(u) for u in members]
    outgoing = [email.project_update(u, project, progress) for u in members]
    title = f"Project Update: {project.name}"
    message = f"{project.name} is {progress}% complete ({project.status})."

    notified = await _broadcast(
        coordinator,
        sender_id=sender.id if sender else None,
        sender_name=sender.full_name if sender else None,
        recipient_ids=[r.id for r in recipients],
        title=title,
        message=message,
        kind=BroadcastKind.GENERAL,
    )
    background_tasks.add_task(email.send_bulk, outgoing)

    return BroadcastResult(
        message="Project update sent",
        sent_to=len(notified),
        users=[r for r in recipients if r.id in notified],
    )


@router.post("/welcome-email")
async def send_welcome_email(
    body: WelcomeEmailCreate,
    directory: UserDirectory = Depends(_get_directory),
    email: EmailService = Depends(get_email_service),
):
    """Welcome email for a new account. Sent inline, failures are a 500."""
    user = await directory.get_user(body.user_id)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")

    to, subject, text = email.welcome(user)
    try:
        await email.send(to, subject, text)
    except (OSError, smtplib.SMTPException) as e:
        logger.warning("email.welcome_failed", user_id=user.id, error=str(e))
        raise HTTPException(status_code=500, detail="Failed to send welcome email")

    return {
        "message": "Welcome email sent successfully",
        "userId": user.id,
        "email": user.email,
    }


# ─── Email preferences / diagnostics ─────────────────────


@router.get("/settings", response_model=NotificationSettings)
async def notification_settings(
    identity: CurrentIdentity = Depends(get_current_user),
    directory: UserDirectory = Depends(_get_directory),
):
    user = await directory.get_user(identity.user_id)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return NotificationSettings(email=user.email)


@router.get("/test-connection")
async def test_email_connection(
    email: EmailService = Depends(get_email_service),
):
    if not await email.test_connection():
        raise HTTPException(
            status_code=500, detail="Email service connection failed"
        )
    return {
        "message": "Email service is connected and ready",
        "status": "connected",
        "developmentMode": email.development_mode,
    }
