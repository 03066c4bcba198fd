"""Typed domain exceptions for API error mapping.

These exceptions provide stronger API contract guarantees than
string-based error message matching. The API layer maps each type to an
HTTP status code in one place (src.api.main).

Usage:
    # In service layer
    raise NotFoundError("Confirmation", confirmation_id)

    # In route handler (or via the registered exception handlers)
    try:
        service.approve(confirmation_id, user_id)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
"""


class DomainError(Exception):
    """Base exception for all domain errors."""

    def __init__(self, message: str) -> None:
        super().__init__(message)


class NotFoundError(DomainError):
    """Resource was not found. Maps to HTTP 404."""

    def __init__(self, resource_type: str, identifier: str) -> None:
        super().__init__(f"{resource_type} '{identifier}' not found")
        self.resource_type = resource_type
        self.identifier = identifier


class ConflictError(DomainError):
    """Resource conflict (e.g., state already changed). Maps to HTTP 409."""

    def __init__(self, message: str) -> None:
        super().__init__(message)


class ValidationError(DomainError):
    """Validation failure. Maps to HTTP 400."""

    def __init__(self, message: str) -> None:
        super().__init__(message)


class InvalidVersionTransition(ConflictError):
    """Script batch version cannot move to the requested status."""

    def __init__(self, version: int, current: str, target: str) -> None:
        super().__init__(
            f"Cannot move version {version} from '{current}' to '{target}'"
        )
        self.version = version
        self.current = current
        self.target = target


class ConfirmationStateError(ConflictError):
    """Confirmation is no longer pending (decided or expired)."""

    def __init__(self, confirmation_id: str, status: str) -> None:
        super().__init__(f"Confirmation '{confirmation_id}' is {status}, not pending")
        self.confirmation_id = confirmation_id
        self.status = status


class RunStateError(ConflictError):
    """Run already reached a terminal status."""

    def __init__(self, run_id: str, status: str) -> None:
        super().__init__(f"Run '{run_id}' is already {status}")
        self.run_id = run_id
        self.status = status
