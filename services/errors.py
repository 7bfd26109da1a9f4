"""
Error taxonomy for the submission intake pipeline.

Only BadRequest, FormNotFound and PersistenceError reach the caller; the
other two are raised and caught inside the pipeline so they can be logged
with a precise type.
"""


class IntakeError(Exception):
    """Base class for intake failures; carries an HTTP status and a public message"""

    status_code = 500
    public_message = "Internal server error"

    def __init__(self, message: str | None = None):
        super().__init__(message or self.public_message)
        self.message = message or self.public_message


class BadRequest(IntakeError):
    status_code = 400
    public_message = "Invalid request"


class FormNotFound(IntakeError):
    # Absent and inactive forms are indistinguishable to the caller
    status_code = 404
    public_message = "Form not found or inactive"


class PersistenceError(IntakeError):
    status_code = 500
    public_message = "Failed to save submission"


class SignalPersistenceError(IntakeError):
    public_message = "Failed to save spam signals"


class NotificationError(IntakeError):
    public_message = "Failed to deliver submission notification"
