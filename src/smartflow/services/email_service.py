"""Outbound email — companion to in-app notifications.

Fire-and-forget: routers schedule these sends as background tasks after
the in-app notifications are committed, so an SMTP failure is logged
and never reaches the caller.

Without SMTP credentials (SMARTFLOW_SMTP_USER unset) the service runs in
development mode: every email is logged instead of sent.
"""

import asyncio
import smtplib
import uuid
from datetime import date
from email.message import EmailMessage
from typing import Iterable, Optional

import structlog

from smartflow.config import settings
from smartflow.db.models import Project, Task, User

logger = structlog.get_logger()


def time_remaining(deadline: date, today: Optional[date] = None) -> str:
    """Human wording for a deadline relative to today."""
    days = (deadline - (today or date.today())).days
    if days == 0:
        return "Due today!"
    if days == 1:
        return "Due tomorrow!"
    if days < 0:
        return f"{abs(days)} days overdue!"
    return f"{days} days remaining"


class EmailService:
    """SMTP sender with plain-text templates for each notification flow."""

    def __init__(
        self,
        host: str,
        port: int,
        user: str = "",
        password: str = "",
        use_tls: bool = True,
        from_email: str = "noreply@smartflowai.com",
        from_name: str = "SmartFlow AI",
        frontend_url: str = "http://localhost:3000",
    ):
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.use_tls = use_tls
        self.from_email = from_email
        self.from_name = from_name
        self.frontend_url = frontend_url.rstrip("/")

    @classmethod
    def from_settings(cls) -> "EmailService":
        return cls(
            host=settings.smtp_host,
            port=settings.smtp_port,
            user=settings.smtp_user,
            password=settings.smtp_password,
            use_tls=settings.smtp_use_tls,
            from_email=settings.from_email,
            from_name=settings.from_name,
            frontend_url=settings.frontend_url,
        )

    @property
    def development_mode(self) -> bool:
        return not self.user

    # ─── Transport ─────────────────────────────────────────

    def _build(self, to: str, subject: str, body: str) -> EmailMessage:
        msg = EmailMessage()
        msg["From"] = f'"{self.from_name}" <{self.from_email}>'
        msg["To"] = to
        msg["Subject"] = subject
        msg.set_content(body)
        return msg

    def _send_smtp(self, msg: EmailMessage) -> None:
        with smtplib.SMTP(self.host, self.port, timeout=30) as server:
            if self.use_tls:
                server.starttls()
            server.login(self.user, self.password)
            server.send_message(msg)

    async def send(self, to: str, subject: str, body: str) -> str:
        """Send one email. Returns a message id."""
        message_id = uuid.uuid4().hex
        if self.development_mode:
            logger.info(
                "email.development_mode",
                to=to,
                subject=subject,
                message_id=f"dev-mode-{message_id}",
            )
            return f"dev-mode-{message_id}"

        msg = self._build(to, subject, body)
        msg["Message-ID"] = f"<{message_id}@{self.from_email.split('@')[-1]}>"
        # smtplib blocks: keep it off the event loop
        await asyncio.to_thread(self._send_smtp, msg)
        logger.info("email.sent", to=to, subject=subject)
        return message_id

    async def send_bulk(
        self, emails: Iterable[tuple[str, str, str]]
    ) -> dict[str, int]:
        """Send (to, subject, body) triples concurrently; never raises."""
        emails = list(emails)
        results = await asyncio.gather(
            *(self.send(to, subject, body) for to, subject, body in emails),
            return_exceptions=True,
        )
        failed = 0
        for (to, subject, _), result in zip(emails, results):
            if isinstance(result, Exception):
                failed += 1
                logger.warning(
                    "email.failed", to=to, subject=subject, error=str(result)
                )
        summary = {
            "successful": len(emails) - failed,
            "failed": failed,
            "total": len(emails),
        }
        logger.info("email.bulk_sent", **summary)
        return summary

    async def test_connection(self) -> bool:
        if self.development_mode:
            return True

        def _check() -> None:
            with smtplib.SMTP(self.host, self.port, timeout=10) as server:
                if self.use_tls:
                    server.starttls()
                server.login(self.user, self.password)

        try:
            await asyncio.to_thread(_check)
        except (OSError, smtplib.SMTPException) as e:
            logger.warning("email.connection_failed", host=self.host, error=str(e))
            return False
        return True

    # ─── Templates ─────────────────────────────────────────

    def admin_message(
        self, user: User, title: str, content: str, sender_name: str,
        sender_role: Optional[str] = None,
    ) -> tuple[str, str, str]:
        subject = f"📢 Admin Message: {title or 'New Message'}"
        body = (
            f"Hi {user.full_name},\n\n"
            f"{sender_name} ({sender_role or 'Administrator'}) sent you a message "
            f"on {date.today():%Y-%m-%d}:\n\n"
            f"{title}\n\n{content}\n\n"
            f"Open your dashboard: {self.frontend_url}/portal\n"
        )
        return user.email, subject, body

    def task_assignment(
        self, user: User, task: Task, project: Project
    ) -> tuple[str, str, str]:
        subject = f"🎯 New Task Assignment: {task.title}"
        deadline = f"{task.deadline:%Y-%m-%d}" if task.deadline else "No deadline"
        body = (
            f"Hi {user.full_name},\n\n"
            f"You have been assigned a new task in {self.from_name}.\n\n"
            f"Task: {task.title}\n"
            f"Project: {project.name}\n"
            f"Priority: {task.priority}\n"
            f"Deadline: {deadline}\n\n"
            f"{task.description or 'No description provided'}\n\n"
            f"View task: {self.frontend_url}/tasks/{task.id}\n"
        )
        return user.email, subject, body

    def deadline_reminder(
        self, user: User, task: Task, project: Project,
        today: Optional[date] = None,
    ) -> tuple[str, str, str]:
        subject = f"⏰ Deadline Reminder: {task.title}"
        remaining = (
            time_remaining(task.deadline, today) if task.deadline else "No deadline"
        )
        body = (
            f"Hi {user.full_name},\n\n"
            f"Task: {task.title}\n"
            f"Project: {project.name}\n"
            f"Priority: {task.priority}\n"
            f"Due: {task.deadline or '—'} ({remaining})\n\n"
            f"View task: {self.frontend_url}/tasks/{task.id}\n"
        )
        return user.email, subject, body

    def welcome(self, user: User) -> tuple[str, str, str]:
        subject = f"🚀 Welcome to {self.from_name}"
        body = (
            f"Hello {user.full_name}!\n\n"
            f"Welcome to {self.from_name}, your intelligent project management "
            f"platform. We're excited to have you on board!\n\n"
            f"Your role: {user.role}\n"
            f"Username: {user.username}\n\n"
            f"Get started: {self.frontend_url}/login\n"
        )
        return user.email, subject, body

    def project_update(
        self, user: User, project: Project, progress: int
    ) -> tuple[str, str, str]:
        subject = f"📈 Project Update: {project.name}"
        body = (
            f"Hi {user.full_name},\n\n"
            f"Project: {project.name}\n"
            f"Status: {project.status}\n"
            f"Priority: {project.priority}\n"
            f"Progress: {progress}%\n\n"
            f"{project.description or 'No description provided'}\n\n"
            f"View project: {self.frontend_url}/projects/{project.id}\n"
        )
        return user.email, subject, body


_email_service: Optional[EmailService] = None


def get_email_service() -> EmailService:
    """FastAPI dependency — process-wide EmailService built from settings."""
    global _email_service
    if _email_service is None:
        _email_service = EmailService.from_settings()
    return _email_service
