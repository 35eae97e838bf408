"""
Error Taxonomy Module

Every failure raised by the registry and the ledger derives from EscrowError
and carries a stable code plus structured details for rendering.
"""

from typing import Any, Dict, Optional


class EscrowError(Exception):
    """Base class for all escrow ledger errors"""

    code = "escrow_error"
    status_code = 500

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """Structured representation for API responses"""
        return {
            "error": self.code,
            "message": self.message,
            "details": self.details
        }


class ValidationError(EscrowError, ValueError):
    """Malformed input; the caller should correct it and retry"""
    code = "validation_error"
    status_code = 400


class AuthorizationError(EscrowError, PermissionError):
    """Caller lacks the required role or verification"""
    code = "authorization_error"
    status_code = 403


class NotFoundError(EscrowError, LookupError):
    """Unknown campaign id or identity holder"""
    code = "not_found"
    status_code = 404


class InvalidStateError(EscrowError):
    """Operation is not legal in the current lifecycle state"""
    code = "invalid_state"
    status_code = 409


class AlreadyVerifiedError(InvalidStateError):
    """A verified identity may not be resubmitted"""
    code = "already_verified"
    status_code = 409


class TransferError(EscrowError):
    """Value transfer to the campaign creator did not complete"""
    code = "transfer_failed"
    status_code = 502


class AuthenticationError(EscrowError):
    """Caller identity is missing or its credentials are invalid"""
    code = "authentication_error"
    status_code = 401


class TransferOutcomeUnknownError(TransferError):
    """The payout service may have moved the value; the withdrawal stays reserved"""
    code = "transfer_outcome_unknown"
    status_code = 504
