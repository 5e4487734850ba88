"""Domain exceptions raised by the routing and moderation services."""

from fastapi import status


class ExpertDeskError(Exception):
    """Base exception for engine errors."""

    status_code: int = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str, error_type: str = "expertdesk_error"):
        self.message = message
        self.error_type = error_type
        super().__init__(message)


class ValidationError(ExpertDeskError):
    """Malformed input. Nothing is persisted."""

    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str, field: str | None = None):
        super().__init__(message, "validation_error")
        self.field = field


class PermissionDeniedError(ExpertDeskError):
    """Caller is not allowed to perform the action."""

    status_code = status.HTTP_403_FORBIDDEN

    def __init__(self, message: str = "Access denied", error_type: str = "permission_denied"):
        super().__init__(message, error_type)


class SuspendedUserError(PermissionDeniedError):
    """Caller is under an active suspension."""

    def __init__(self, user_id: int):
        super().__init__(f"User {user_id} is suspended", "user_suspended")
        self.user_id = user_id


class NotFoundError(ExpertDeskError):
    """A record owned by the engine does not exist."""

    status_code = status.HTTP_404_NOT_FOUND

    def __init__(self, entity: str, entity_id: int):
        super().__init__(f"{entity} {entity_id} not found", f"{entity.lower()}_not_found")
        self.entity = entity
        self.entity_id = entity_id


class UnknownUserError(ExpertDeskError):
    """The user directory has no record for the user."""

    status_code = status.HTTP_404_NOT_FOUND

    def __init__(self, user_id: int):
        super().__init__(f"User {user_id} not found in directory", "unknown_user")
        self.user_id = user_id


class ContentNotFoundError(ExpertDeskError):
    """The content store has no such content."""

    status_code = status.HTTP_404_NOT_FOUND

    def __init__(self, content_type: str, content_id: int):
        super().__init__(
            f"Content {content_type}:{content_id} not found",
            "content_not_found",
        )
        self.content_type = content_type
        self.content_id = content_id


class ConflictError(ExpertDeskError):
    """A conditional status transition lost a race."""

    status_code = status.HTTP_409_CONFLICT

    def __init__(self, message: str = "this question was already routed elsewhere"):
        super().__init__(message, "conflict")


class NoEligibleExpertError(ExpertDeskError):
    """No verified expert can take the question.

    Never surfaced to the asker as a failure; the question goes to triage.
    """

    status_code = status.HTTP_202_ACCEPTED

    def __init__(self, question_id: int, reason: str = "no_eligible_expert"):
        super().__init__(
            f"No eligible expert for question {question_id}",
            reason,
        )
        self.question_id = question_id
