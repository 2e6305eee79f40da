"""
Custom exceptions for the study submission pipeline.

These exceptions are intentionally simple and descriptive.
They are used across:

  - core/queue/
  - core/submission/
  - runtime/lifecycle/
  - runtime/api/

Placing them at the project root (exceptions/) avoids circular imports and
keeps the error taxonomy identical on the client side (which maps HTTP
outcomes onto these types) and the server side (which raises them).
"""


class StudyPipelineError(Exception):
    """Base class for every error raised by the pipeline."""


class RemoteCallError(StudyPipelineError):
    """
    Raised when the remote write endpoint could not be reached or answered
    with a server-side failure. Always considered transient: callers queue
    the command and retry in the background.
    """

    def __init__(self, operation, details=None, status_code=None):
        self.operation = operation
        self.details = details or "Remote call failed."
        self.status_code = status_code
        msg = f"Remote call '{operation}' failed: {self.details}"
        if status_code is not None:
            msg += f" (HTTP {status_code})"
        super().__init__(msg)


class PayloadValidationError(StudyPipelineError):
    """
    Raised when a payload is malformed and can never succeed on retry.

    These are surfaced to the caller immediately and never queued.
    """

    def __init__(self, details=None, operation=None):
        self.operation = operation
        self.details = details or "Invalid request data."
        super().__init__(self.details)


class SessionNotFoundError(StudyPipelineError):
    """
    Raised when a transition or write targets a session that does not exist.

    Clients react by abandoning local progress and restarting the study.
    """

    def __init__(self, session_id):
        self.session_id = session_id
        super().__init__(f"Session not found: {session_id}")


class InvalidTransitionError(StudyPipelineError):
    """
    Raised when the current lifecycle or validation state of a session does
    not allow the requested transition.
    """

    def __init__(self, session_id, current, target, details=None):
        self.session_id = session_id
        self.current = current
        self.target = target
        self.details = details
        msg = f"Invalid transition for session {session_id}: {current} -> {target}"
        if details:
            msg += f" ({details})"
        super().__init__(msg)


class AlreadyCompletedError(InvalidTransitionError):
    """
    Raised when completing a session that is already completed.

    Callers that only care about eventual completion treat this as success.
    """

    def __init__(self, session_id):
        super().__init__(
            session_id,
            current="completed",
            target="completed",
            details="session already completed",
        )


class ValidationPermissionError(StudyPipelineError):
    """Raised when a reviewing role is not allowed to make a validation change."""

    def __init__(self, role, details):
        self.role = role
        self.details = details
        super().__init__(f"Role '{role}' not permitted: {details}")


class SubmissionFailedError(StudyPipelineError):
    """
    Raised by blocking submissions once both the direct remote call and the
    fallback write have failed. This is the only submission error that is
    ever shown to a participant.
    """

    def __init__(self, operation, cause=None):
        self.operation = operation
        self.cause = cause
        msg = f"Submission '{operation}' could not be persisted"
        if cause is not None:
            msg += f": {cause}"
        super().__init__(msg)


class QueueStorageError(StudyPipelineError):
    """Raised by storage backends when the local durable medium is unusable."""
