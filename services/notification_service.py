"""
Submission notification emails to form owners.

Runs detached from the intake request: ``dispatch`` schedules ``notify`` as
a background task and returns immediately. ``notify`` makes one delivery
attempt and writes one email log row, and never raises.
"""

import asyncio
import html
import json
import logging
import os
from typing import Any, Callable, Dict, List, Mapping, Optional, Set

from services.errors import NotificationError
from utils.email import render_email, sanitize_html, send_email_html

logger = logging.getLogger("backend.notify")

NOTIFY_MAIL_TIMEOUT = float(os.getenv("NOTIFY_MAIL_TIMEOUT_SECONDS", "15"))
NOTIFY_LOG_TIMEOUT = float(os.getenv("NOTIFY_LOG_TIMEOUT_SECONDS", "10"))

STATUS_SENT = "sent"
STATUS_FAILED = "failed"

NOTIFICATION_TEMPLATE = "submission_notification.html"


def notification_subject(form_name: str) -> str:
    return f"New submission for {form_name}"


def field_lines(payload: Mapping[str, Any]) -> List[Dict[str, str]]:
    """Flat key/value lines; values JSON-encoded, ``__``-prefixed keys skipped"""
    return [
        {"key": str(key), "value": json.dumps(value, ensure_ascii=False, default=str)}
        for key, value in payload.items()
        if not str(key).startswith("__")
    ]


def render_notification(form_name: str, payload: Mapping[str, Any], submission_id: str,
                        template: Optional[str] = None) -> str:
    lines = field_lines(payload)
    if not template:
        return render_email(NOTIFICATION_TEMPLATE, {
            "form_name": form_name,
            "field_lines": lines,
            "submission_id": submission_id,
        })
    # Owner-supplied template with {{formName}} / {{fields}} / {{submissionId}} placeholders
    fields_html = "".join(
        f"<p><strong>{html.escape(line['key'])}:</strong> {html.escape(line['value'])}</p>"
        for line in lines
    )
    body = (
        template.replace("{{formName}}", html.escape(form_name))
        .replace("{{fields}}", fields_html)
        .replace("{{submissionId}}", html.escape(submission_id))
    )
    return sanitize_html(body)


class NotificationDispatcher:
    """Sends owner notifications and records the outcome in email_logs"""

    def __init__(self, repository, send_email: Callable[..., Any] = send_email_html,
                 mail_timeout: float = NOTIFY_MAIL_TIMEOUT, log_timeout: float = NOTIFY_LOG_TIMEOUT):
        self.repository = repository
        self.send_email = send_email
        self.mail_timeout = mail_timeout
        self.log_timeout = log_timeout
        self._tasks: Set[asyncio.Task] = set()

    def dispatch(self, form_name: str, recipient: str, cleaned_payload: Mapping[str, Any],
                 submission_id: str, template: Optional[str] = None) -> asyncio.Task:
        """Schedule ``notify`` without waiting for it"""
        task = asyncio.create_task(
            self.notify(form_name, recipient, dict(cleaned_payload), submission_id, template=template),
            name=f"notify:{submission_id}",
        )
        # Hold a reference until done so the task is not garbage collected
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        """Wait for in-flight notifications (shutdown, tests)"""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def _write_log(self, submission_id: str, status: str, provider_response: Any) -> None:
        await asyncio.wait_for(
            self.repository.create_email_log(submission_id, status, provider_response),
            timeout=self.log_timeout,
        )

    async def notify(self, form_name: str, recipient: str, cleaned_payload: Mapping[str, Any],
                     submission_id: str, template: Optional[str] = None) -> None:
        try:
            subject = notification_subject(form_name)
            body = render_notification(form_name, cleaned_payload, submission_id, template=template)
            try:
                response = await asyncio.wait_for(
                    asyncio.to_thread(self.send_email, recipient, subject, body),
                    timeout=self.mail_timeout,
                )
            except asyncio.TimeoutError as e:
                raise NotificationError(f"Mail provider timed out after {self.mail_timeout}s") from e
            await self._write_log(submission_id, STATUS_SENT, response)
            logger.info("Notification email sent submission_id=%s to=%s", submission_id, recipient)
        except Exception as e:
            logger.exception("Notification failed submission_id=%s to=%s", submission_id, recipient)
            error = str(e) or e.__class__.__name__
            try:
                await self._write_log(submission_id, STATUS_FAILED, {"error": error})
            except Exception:
                logger.exception("Email log write failed submission_id=%s", submission_id)
