"""
Persistence for the intake pipeline: form lookup, submissions, spam signals and email logs
"""

import json
import logging
import uuid
from typing import Any, Dict, List, Optional

from sqlalchemy import text

from db.database import async_session_maker
from models.base import FormRecord, SpamSignal

logger = logging.getLogger("backend.repository")


def _is_uuid(value: str) -> bool:
    try:
        uuid.UUID(str(value))
        return True
    except (ValueError, TypeError):
        return False


class IntakeRepository:
    """Raw-SQL repository over the async session maker; one transaction per call"""

    def __init__(self, session_maker=None):
        self.session_maker = session_maker or async_session_maker

    async def get_form(self, form_id: str) -> Optional[FormRecord]:
        # Malformed ids cannot match a UUID primary key
        if not _is_uuid(form_id):
            return None
        async with self.session_maker() as session:
            res = await session.execute(
                text(
                    """
                    SELECT id, name, definition, is_active, notification_email,
                           email_template, created_at, updated_at
                    FROM forms
                    WHERE id = :form_id
                    LIMIT 1
                    """
                ),
                {"form_id": str(form_id)},
            )
            row = res.mappings().first()
        if not row:
            return None
        data = dict(row)
        definition = data.get("definition")
        if isinstance(definition, str):
            data["definition"] = json.loads(definition or "[]")
        elif definition is None:
            data["definition"] = []
        return FormRecord(**data)

    async def create_submission(
        self,
        form_id: str,
        payload: Dict[str, Any],
        ip: str,
        user_agent: str,
        is_spam: bool,
        spam_reason: str,
    ) -> str:
        submission_id = str(uuid.uuid4())
        async with self.session_maker() as session:
            await session.execute(
                text(
                    """
                    INSERT INTO submissions (
                        id, form_id, payload, ip, user_agent, is_spam, spam_reason
                    ) VALUES (
                        :id, :form_id, CAST(:payload AS JSONB), :ip, :user_agent, :is_spam, :spam_reason
                    )
                    """
                ),
                {
                    "id": submission_id,
                    "form_id": str(form_id),
                    "payload": json.dumps(payload, default=str),
                    "ip": ip,
                    "user_agent": user_agent,
                    "is_spam": bool(is_spam),
                    "spam_reason": spam_reason,
                },
            )
            await session.commit()
        return submission_id

    async def create_spam_signals(self, submission_id: str, signals: List[SpamSignal]) -> None:
        if not signals:
            return
        rows = [
            {
                "id": str(uuid.uuid4()),
                "submission_id": submission_id,
                "signal": s.signal,
                "score": int(s.score),
            }
            for s in signals
        ]
        async with self.session_maker() as session:
            await session.execute(
                text(
                    """
                    INSERT INTO spam_signals (id, submission_id, signal, score)
                    VALUES (:id, :submission_id, :signal, :score)
                    """
                ),
                rows,
            )
            await session.commit()

    async def create_email_log(self, submission_id: str, status: str, provider_response: Any) -> None:
        async with self.session_maker() as session:
            await session.execute(
                text(
                    """
                    INSERT INTO email_logs (id, submission_id, status, provider_response)
                    VALUES (:id, :submission_id, :status, CAST(:provider_response AS JSONB))
                    """
                ),
                {
                    "id": str(uuid.uuid4()),
                    "submission_id": submission_id,
                    "status": status,
                    "provider_response": json.dumps(provider_response, default=str),
                },
            )
            await session.commit()
