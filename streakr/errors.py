"""
Error taxonomy for the STREAKr rules engine.

Every error here is a recoverable, caller-facing rule violation. Services
raise them; the app-level handler in ``streakr.register_error_handlers``
turns them into ``{"error": code, "message": ...}`` JSON responses.
"""


class StreakrError(Exception):
    """Base class for rule violations surfaced to API callers"""

    status_code = 400
    code = "streakr_error"
    default_message = "Request could not be processed"

    def __init__(self, message=None, **context):
        self.message = message or self.default_message
        self.context = context
        super().__init__(self.message)

    def to_dict(self):
        data = {"error": self.code, "message": self.message}
        if self.context:
            data.update(self.context)
        return data


class InvalidTransition(StreakrError):
    """Settlement action not permitted from the question's current status"""

    status_code = 409
    code = "invalid_transition"
    default_message = "Action not permitted from the current status"


class ConflictingTransition(StreakrError):
    """Compare-and-set lost against a concurrent change; refetch and retry"""

    status_code = 409
    code = "conflicting_transition"
    default_message = "Question changed concurrently, refetch and retry"


class PickRejected(StreakrError):
    status_code = 409
    code = "pick_rejected"
    default_message = "Picks are locked for this question"


class InsufficientCredit(StreakrError):
    status_code = 409
    code = "insufficient_credit"
    default_message = "No Free Kick credits remaining"


class QuotaExceeded(StreakrError):
    status_code = 409
    code = "quota_exceeded"
    default_message = "Panic already used for this round"


class NotFound(StreakrError):
    status_code = 404
    code = "not_found"
    default_message = "Resource not found"


class InvalidRequest(StreakrError):
    """Malformed command at the API boundary"""

    status_code = 400
    code = "invalid_request"
    default_message = "Invalid request"
