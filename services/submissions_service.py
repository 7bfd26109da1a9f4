"""
Submission intake: validate, classify, persist, notify
"""

import logging
from typing import Any, Mapping

from models.base import SubmissionResult
from services.errors import BadRequest, FormNotFound, PersistenceError, SignalPersistenceError
from services.notification_service import NotificationDispatcher
from services.spam_service import SpamEvaluator, strip_control_fields

logger = logging.getLogger("backend.intake")


class SubmissionIntake:
    """Orchestrates one inbound submission end to end"""

    def __init__(self, repository, evaluator: SpamEvaluator, dispatcher: NotificationDispatcher):
        self.repository = repository
        self.evaluator = evaluator
        self.dispatcher = dispatcher

    async def _persist_signals(self, submission_id: str, signals) -> None:
        try:
            await self.repository.create_spam_signals(submission_id, signals)
        except Exception as e:
            raise SignalPersistenceError() from e

    async def handle_submission(self, form_id: str, raw_payload: Mapping[str, Any],
                                origin_address: str, user_agent: str) -> SubmissionResult:
        """Accept a submission and return its id.

        The result is the same whether or not the submission was flagged as
        spam. Raises BadRequest, FormNotFound or PersistenceError; everything
        after the submission insert is best-effort.
        """
        form_id = str(form_id or "").strip()
        if not form_id:
            raise BadRequest("Form ID is required")
        if not isinstance(raw_payload, Mapping):
            raise BadRequest("Submission payload must be a JSON object")

        form = await self.repository.get_form(form_id)
        if form is None or not form.is_active:
            logger.info("intake rejected form_id=%s (absent or inactive)", form_id)
            raise FormNotFound()

        cleaned_payload = strip_control_fields(raw_payload)
        verdict = self.evaluator.evaluate(raw_payload, origin_address)

        try:
            submission_id = await self.repository.create_submission(
                form_id,
                cleaned_payload,
                origin_address,
                user_agent,
                verdict.is_spam,
                verdict.reason,
            )
        except Exception as e:
            logger.exception("Error inserting submission form_id=%s", form_id)
            raise PersistenceError() from e

        if verdict.signals:
            try:
                await self._persist_signals(submission_id, verdict.signals)
            except SignalPersistenceError:
                # Submission row is already durable; the caller still gets success
                logger.exception("Spam signal insert failed submission_id=%s", submission_id)

        if not verdict.is_spam and form.notification_email:
            self.dispatcher.dispatch(
                form.name,
                form.notification_email,
                cleaned_payload,
                submission_id,
                template=form.email_template,
            )

        logger.info(
            "submission accepted form_id=%s submission_id=%s spam=%s",
            form_id,
            submission_id,
            verdict.is_spam,
        )
        return SubmissionResult(submission_id=submission_id)
