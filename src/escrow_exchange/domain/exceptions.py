"""Domain exceptions for the escrow exchange.

These exceptions are framework-agnostic and represent business rule violations.
They are caught and translated to HTTP responses by the API layer's middleware.

Only TransientStoreError is eligible for a retry by the caller; every other
error is final for the given inputs.
"""

from __future__ import annotations


class EscrowExchangeError(Exception):
    """Base exception for all domain errors."""

    def __init__(self, message: str, code: str = "ESCROW_EXCHANGE_ERROR") -> None:
        self.message = message
        self.code = code
        super().__init__(self.message)


# --- Validation Errors ---


class ValidationError(EscrowExchangeError):
    """Bad input, rejected before any lock is taken."""

    def __init__(self, message: str, code: str = "VALIDATION_ERROR") -> None:
        super().__init__(message=message, code=code)


class InvalidServiceTypeError(ValidationError):
    def __init__(self, service_type_id: str) -> None:
        super().__init__(
            message=f"Unknown or inactive service type: {service_type_id}",
            code="INVALID_SERVICE_TYPE",
        )
        self.service_type_id = service_type_id


class InvalidAmountError(ValidationError):
    def __init__(self, message: str) -> None:
        super().__init__(message=message, code="INVALID_AMOUNT")


class InvalidMetadataError(ValidationError):
    """Raised when the service-specific metadata does not fit its variant."""

    def __init__(self, service_type_id: str, errors: list | None = None) -> None:
        super().__init__(
            message=f"Invalid metadata for service type {service_type_id}",
            code="INVALID_METADATA",
        )
        self.service_type_id = service_type_id
        self.errors = errors or []


# --- Not Found Errors ---


class NotFoundError(EscrowExchangeError):
    def __init__(self, message: str, code: str = "NOT_FOUND") -> None:
        super().__init__(message=message, code=code)


class EscrowNotFoundError(NotFoundError):
    """Raised when an escrow ID does not exist."""

    def __init__(self, escrow_id: str) -> None:
        super().__init__(message=f"Escrow not found: {escrow_id}", code="ESCROW_NOT_FOUND")
        self.escrow_id = escrow_id


class AccountNotFoundError(NotFoundError):
    def __init__(self, account_id: str) -> None:
        super().__init__(message=f"Account not found: {account_id}", code="ACCOUNT_NOT_FOUND")
        self.account_id = account_id


class UserNotFoundError(NotFoundError):
    def __init__(self, user_id: str) -> None:
        super().__init__(message=f"User not found: {user_id}", code="USER_NOT_FOUND")
        self.user_id = user_id


class OrganizationNotFoundError(NotFoundError):
    def __init__(self, org_id: str) -> None:
        super().__init__(message=f"Organization not found: {org_id}", code="ORG_NOT_FOUND")
        self.org_id = org_id


class ProviderSettingNotFoundError(NotFoundError):
    def __init__(self, user_id: str, service_type_id: str) -> None:
        super().__init__(
            message=f"No provider setting for user {user_id} and service type {service_type_id}",
            code="PROVIDER_SETTING_NOT_FOUND",
        )


# --- Authorization Errors ---


class AuthorizationError(EscrowExchangeError):
    def __init__(self, message: str, code: str = "NOT_AUTHORIZED") -> None:
        super().__init__(message=message, code=code)


class NotAPartyError(AuthorizationError):
    """Raised when the actor is neither Party A nor Party B of the escrow."""

    def __init__(self, escrow_id: str, user_id: str, operation: str = "act on") -> None:
        super().__init__(
            message=f"User {user_id} is not a party allowed to {operation} escrow {escrow_id}",
            code="NOT_A_PARTY",
        )


class NotEligibleError(AuthorizationError):
    """Raised when the acceptance policy rejects the acceptor."""

    def __init__(self, escrow_id: str, reason: str) -> None:
        super().__init__(
            message=f"Not eligible to accept escrow {escrow_id}: {reason}",
            code="NOT_ELIGIBLE",
        )
        self.reason = reason


class UnauthorizedArbiterError(AuthorizationError):
    def __init__(self, escrow_id: str, user_id: str) -> None:
        super().__init__(
            message=f"User {user_id} is not authorized to arbitrate escrow {escrow_id}",
            code="UNAUTHORIZED",
        )


class NoPrimaryOrgError(AuthorizationError):
    def __init__(self, user_id: str) -> None:
        super().__init__(
            message=f"User {user_id} has no primary organization",
            code="NO_PRIMARY_ORG",
        )


# --- State Conflict Errors ---


class StateConflictError(EscrowExchangeError):
    """Raised when an operation's precondition is false against the locked row.

    Example: accepting an escrow that a racing request already accepted.
    """

    def __init__(
        self,
        current_status: str,
        operation: str,
        message: str | None = None,
        code: str = "STATE_CONFLICT",
    ) -> None:
        super().__init__(
            message=message or f"Cannot {operation} escrow in status {current_status}",
            code=code,
        )
        self.current_status = current_status
        self.operation = operation


class AlreadyConfirmedError(StateConflictError):
    def __init__(self, current_status: str, party: str) -> None:
        super().__init__(
            current_status=current_status,
            operation="confirm",
            message=f"Party {party} has already confirmed this escrow",
            code="ALREADY_CONFIRMED",
        )
        self.party = party


class SelfEscrowError(StateConflictError):
    """Raised when an organization tries to take both sides of an escrow."""

    def __init__(self, current_status: str) -> None:
        super().__init__(
            current_status=current_status,
            operation="accept",
            message="Cannot accept your own organization's escrow",
            code="SELF_ESCROW",
        )


# --- Funds Errors ---


class InsufficientFundsError(EscrowExchangeError):
    """Raised when an account's available balance cannot cover a debit."""

    def __init__(self, required: str, available: str, currency: str = "") -> None:
        suffix = f" {currency}" if currency else ""
        super().__init__(
            message=(
                f"Insufficient funds: required {required}{suffix}, "
                f"available {available}{suffix}"
            ),
            code="INSUFFICIENT_FUNDS",
        )
        self.required = required
        self.available = available


# --- Ledger Integrity Errors ---


class LedgerError(EscrowExchangeError):
    def __init__(self, message: str, code: str = "LEDGER_ERROR") -> None:
        super().__init__(message=message, code=code)


class AccountNotLockedError(LedgerError):
    """Raised when a balance mutation targets an account the unit of work has not locked."""

    def __init__(self, account_id: str) -> None:
        super().__init__(
            message=f"Account {account_id} must be locked before it is mutated",
            code="ACCOUNT_NOT_LOCKED",
        )


class CurrencyMismatchError(LedgerError):
    def __init__(self, account_currency: str, expected: str) -> None:
        super().__init__(
            message=f"Currency mismatch: account holds {account_currency}, expected {expected}",
            code="CURRENCY_MISMATCH",
        )


class LedgerImbalanceError(LedgerError):
    """Raised when the entries of an account do not sum to its stored balances."""

    def __init__(self, account_id: str, differences: dict[str, str]) -> None:
        super().__init__(
            message=f"Ledger imbalance on account {account_id}: {differences}",
            code="LEDGER_IMBALANCE",
        )
        self.differences = differences


# --- Infrastructure Errors ---


class TransientStoreError(EscrowExchangeError):
    """Lock timeout, deadlock, serialization failure or lost connection.

    The unit of work has been rolled back; the caller may retry.
    """

    def __init__(self, message: str) -> None:
        super().__init__(message=message, code="TRANSIENT_STORE_ERROR")


# --- Idempotency Errors ---


class DuplicateOperationError(EscrowExchangeError):
    """Raised when a duplicate idempotency key is detected."""

    def __init__(self, idempotency_key: str) -> None:
        super().__init__(
            message=f"Duplicate operation detected for key: {idempotency_key}",
            code="DUPLICATE_OPERATION",
        )
        self.idempotency_key = idempotency_key
