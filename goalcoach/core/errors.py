"""Error taxonomy for the coaching core.

Nothing here is fatal to the process: every error is recovered at the
granularity of a single conversation turn.
"""


class CoachError(Exception):
    def __init__(self, message: str, code: str = "COACH_ERROR", status_code: int | None = None):
        super().__init__(message)
        self.message = message
        self.code = code
        self.status_code = status_code


class ProviderError(CoachError):
    """An external collaborator (generation, detailing, verification) failed."""


class PersistenceError(CoachError):
    """The backing store rejected or could not complete an operation."""


class InputRejectedError(CoachError):
    """Free-text input arrived while the conversation cannot take it."""


class GoalPendingError(InputRejectedError):
    def __init__(self, message: str = "Please accept or decline the proposed goal first."):
        super().__init__(message, code="GOAL_PENDING")


class ConversationClosedError(InputRejectedError):
    def __init__(self, message: str = "This conversation has concluded. Start a new one to continue."):
        super().__init__(message, code="CONVERSATION_CLOSED")


class NoActiveConversationError(InputRejectedError):
    def __init__(self, message: str = "No conversation is active."):
        super().__init__(message, code="NO_CONVERSATION")
