"""Custom exceptions for ChipIn."""


class ChipInError(Exception):
    """Base exception for all ChipIn errors."""

    pass


class ConfigurationError(ChipInError):
    """Raised when configuration is invalid or missing."""

    pass


class LedgerValidationError(ChipInError):
    """Raised when an expense, settlement or email fails validation."""

    pass


class PermissionDeniedError(ChipInError):
    """Raised when the acting participant may not perform an operation."""

    pass


class NotAuthenticatedError(PermissionDeniedError):
    """Raised when no current participant is available."""

    def __init__(self, message: str | None = None):
        super().__init__(
            message
            or "Not authenticated. Set CHIPIN_USER_EMAIL or pass --as <email>."
        )


class ConflictError(ChipInError):
    """Raised when a transactional mutation lost a race or is no longer applicable."""

    pass


class SettlementAlreadyTransitionedError(ConflictError):
    """Raised when confirming or rejecting a settlement that is no longer pending."""

    def __init__(self, settlement_id: str, status: str, message: str | None = None):
        self.settlement_id = settlement_id
        self.status = status
        super().__init__(
            message or f"Settlement {settlement_id} is already {status}"
        )


class DuplicateSettlementError(ConflictError):
    """Raised when an open settlement already exists for the same debt."""

    pass


class NotFoundError(ChipInError):
    """Raised when a referenced list, expense or settlement does not exist."""

    pass
