"""Pydantic schemas for notifications.

The browser client speaks camelCase (senderName, userIds, isGeneral),
so these schemas alias their snake_case fields. FastAPI serializes
response models by alias; push payloads use the same NotificationRead
so the stream and GET /notifications share one JSON shape.
"""

from datetime import datetime
from typing import Any, Optional

from pydantic import AliasChoices, BaseModel, Field


# ─── Read (platform → client) ───────────────────────────


class NotificationRead(BaseModel):
    """One notification as the client renders it."""
    id: int
    title: str
    message: str
    type: str
    read: bool
    timestamp: datetime = Field(
        validation_alias=AliasChoices("created_at", "timestamp"),
    )
    sender_name: Optional[str] = Field(
        None,
        validation_alias=AliasChoices("sender_name", "senderName"),
        serialization_alias="senderName",
    )

    model_config = {"from_attributes": True}


def notification_payload(notification: Any) -> dict[str, Any]:
    """JSON-ready dict for the live stream."""
    return NotificationRead.model_validate(notification).model_dump(
        mode="json", by_alias=True
    )


class UnreadCount(BaseModel):
    count: int


# ─── Broadcast requests (collaborator → platform) ───────


class AdminMessageCreate(BaseModel):
    """Admin message to a set of users."""
    title: str = Field(..., min_length=1, max_length=400)
    content: str = Field(..., min_length=1)
    user_ids: list[int] = Field(
        ...,
        min_length=1,
        validation_alias=AliasChoices("userIds", "user_ids"),
        description="Recipient user ids; unknown ids are skipped",
    )
    is_general: bool = Field(
        False,
        validation_alias=AliasChoices("isGeneral", "is_general"),
        description="General announcement (📣) instead of personal message (📢)",
    )


class TaskAssignmentCreate(BaseModel):
    task_id: int = Field(..., validation_alias=AliasChoices("taskId", "task_id"))
    user_id: int = Field(..., validation_alias=AliasChoices("userId", "user_id"))


class DeadlineReminderCreate(BaseModel):
    task_id: int = Field(..., validation_alias=AliasChoices("taskId", "task_id"))


class ProjectUpdateCreate(BaseModel):
    project_id: int = Field(
        ..., validation_alias=AliasChoices("projectId", "project_id")
    )


class WelcomeEmailCreate(BaseModel):
    user_id: int = Field(..., validation_alias=AliasChoices("userId", "user_id"))


# ─── Broadcast responses ────────────────────────────────


class RecipientRead(BaseModel):
    id: int
    email: str
    name: str


class BroadcastResult(BaseModel):
    message: str
    sent_to: int = Field(alias="sentTo")
    users: list[RecipientRead] = Field(default_factory=list)

    model_config = {"populate_by_name": True}


class NotificationSettings(BaseModel):
    email_notifications: bool = Field(True, alias="emailNotifications")
    task_assignments: bool = Field(True, alias="taskAssignments")
    deadline_reminders: bool = Field(True, alias="deadlineReminders")
    admin_messages: bool = Field(True, alias="adminMessages")
    project_updates: bool = Field(True, alias="projectUpdates")
    email: str

    model_config = {"populate_by_name": True}
