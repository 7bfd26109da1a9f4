"""Unit tests for the submission intake orchestrator"""

import pytest

from conftest import FORM_ID, INACTIVE_FORM_ID, NOW, SILENT_FORM_ID
from services.errors import BadRequest, FormNotFound, PersistenceError

ORIGIN = "1.2.3.4"
UA = "Mozilla/5.0"


def _fresh_timestamp():
    return str(int((NOW - 5) * 1000))


class TestValidation:

    @pytest.mark.parametrize("form_id", ["", "   ", None])
    async def test_missing_form_id(self, intake, fake_repository, form_id):
        with pytest.raises(BadRequest, match="Form ID is required"):
            await intake.handle_submission(form_id, {"a": 1}, ORIGIN, UA)
        assert fake_repository.calls == []

    @pytest.mark.parametrize("payload", [None, ["a"], "text", 5])
    async def test_payload_must_be_mapping(self, intake, fake_repository, payload):
        with pytest.raises(BadRequest):
            await intake.handle_submission(FORM_ID, payload, ORIGIN, UA)
        assert fake_repository.submissions == {}

    async def test_unknown_form(self, intake, fake_repository):
        with pytest.raises(FormNotFound) as exc:
            await intake.handle_submission("not-a-form", {"a": 1}, ORIGIN, UA)
        assert exc.value.status_code == 404
        assert fake_repository.submissions == {}

    async def test_inactive_form_looks_like_unknown_form(self, intake, fake_repository):
        with pytest.raises(FormNotFound) as exc:
            await intake.handle_submission(INACTIVE_FORM_ID, {"a": 1}, ORIGIN, UA)
        assert exc.value.message == "Form not found or inactive"
        assert fake_repository.submissions == {}


class TestAcceptance:

    async def test_legitimate_submission(self, intake, fake_repository, fake_mailer, dispatcher):
        payload = {"name": "Bob", "__honeypot": "", "__timestamp": _fresh_timestamp()}

        result = await intake.handle_submission(FORM_ID, payload, ORIGIN, UA)
        await dispatcher.drain()

        stored = fake_repository.submissions[result.submission_id]
        assert stored == {
            "form_id": FORM_ID,
            "payload": {"name": "Bob"},
            "ip": ORIGIN,
            "user_agent": UA,
            "is_spam": False,
            "spam_reason": "",
        }
        assert fake_repository.signals == []
        assert len(fake_mailer.sent) == 1
        assert fake_repository.email_logs[0]["submission_id"] == result.submission_id
        assert fake_repository.email_logs[0]["status"] == "sent"

    async def test_raw_payload_is_not_mutated(self, intake):
        payload = {"name": "Bob", "__timestamp": _fresh_timestamp()}

        await intake.handle_submission(FORM_ID, payload, ORIGIN, UA)

        assert "__timestamp" in payload

    async def test_honeypot_spam_is_stored_and_flagged(self, intake, fake_repository, fake_mailer, dispatcher):
        result = await intake.handle_submission(FORM_ID, {"__honeypot": "spam"}, ORIGIN, UA)
        await dispatcher.drain()

        stored = fake_repository.submissions[result.submission_id]
        assert stored["is_spam"] is True
        assert stored["spam_reason"] == "Honeypot field was filled"
        assert stored["payload"] == {}
        assert fake_repository.signals == [
            {"submission_id": result.submission_id, "signal": "honeypot_filled", "score": 100}
        ]
        assert fake_mailer.sent == []
        assert fake_repository.email_logs == []

    async def test_non_spam_signals_are_still_persisted(self, intake, fake_repository, dispatcher):
        payload = {"msg": "http://a http://b http://c"}

        result = await intake.handle_submission(FORM_ID, payload, ORIGIN, UA)
        await dispatcher.drain()

        assert fake_repository.submissions[result.submission_id]["is_spam"] is False
        assert [s["signal"] for s in fake_repository.signals] == ["multiple_urls"]
        assert len(fake_repository.email_logs) == 1

    async def test_no_notification_without_address(self, intake, fake_mailer, dispatcher):
        await intake.handle_submission(SILENT_FORM_ID, {"a": 1}, ORIGIN, UA)
        await dispatcher.drain()

        assert fake_mailer.sent == []

    async def test_rate_limited_fourth_submission(self, intake, fake_repository, dispatcher):
        ids = [
            (await intake.handle_submission(SILENT_FORM_ID, {"n": i}, ORIGIN, UA)).submission_id
            for i in range(4)
        ]

        flags = [fake_repository.submissions[i]["is_spam"] for i in ids]
        assert flags == [False, False, False, True]
        assert fake_repository.submissions[ids[3]]["spam_reason"] == "Too many submissions from this IP"


class TestFailures:

    async def test_submission_insert_failure(self, intake, fake_repository, fake_mailer):
        fake_repository.fail_submission = True

        with pytest.raises(PersistenceError) as exc:
            await intake.handle_submission(FORM_ID, {"__honeypot": "x"}, ORIGIN, UA)

        assert exc.value.status_code == 500
        assert "create_spam_signals" not in fake_repository.calls
        assert fake_mailer.sent == []

    async def test_signal_insert_failure_is_not_fatal(self, intake, fake_repository):
        fake_repository.fail_signals = True

        result = await intake.handle_submission(FORM_ID, {"__honeypot": "x"}, ORIGIN, UA)

        assert result.submission_id in fake_repository.submissions
        assert fake_repository.signals == []

    async def test_notification_failure_is_not_fatal(self, intake, fake_repository, fake_mailer, dispatcher):
        fake_mailer.error = RuntimeError("provider down")

        result = await intake.handle_submission(FORM_ID, {"name": "Bob"}, ORIGIN, UA)
        await dispatcher.drain()

        assert result.submission_id in fake_repository.submissions
        assert fake_repository.email_logs[0]["status"] == "failed"

    async def test_steps_run_in_order(self, intake, fake_repository, dispatcher):
        await intake.handle_submission(FORM_ID, {"msg": "http://a http://b http://c"}, ORIGIN, UA)
        await dispatcher.drain()

        assert fake_repository.calls == [
            "get_form",
            "create_submission",
            "create_spam_signals",
            "create_email_log",
        ]


class TestResult:

    async def test_response_shape_hides_spam_verdict(self, intake):
        spam = await intake.handle_submission(SILENT_FORM_ID, {"__honeypot": "x"}, ORIGIN, UA)
        ham = await intake.handle_submission(SILENT_FORM_ID, {"name": "Bob"}, "9.9.9.9", UA)

        assert set(spam.to_response()) == set(ham.to_response())
        assert spam.to_response()["success"] is True
        assert spam.to_response()["submission_id"] == spam.submission_id
