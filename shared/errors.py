"""
Shared error handling for the Click Ledger service.
"""

from typing import Dict, Any, Optional
from pydantic import BaseModel

from shared.logging import request_id_var


class ErrorResponse(BaseModel):
    """Standard error response format."""

    request_id: Optional[str] = None
    code: str
    message: str
    details: Dict[str, Any] = {}


class ClickLedgerException(Exception):
    """Base exception for Click Ledger services."""

    status_code: int = 500

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_response(self, include_details: bool = False) -> ErrorResponse:
        """Convert to error response.

        Internal details are only carried outward when explicitly enabled.
        """
        return ErrorResponse(
            request_id=request_id_var.get(),
            code=self.code,
            message=self.message,
            details=self.details if include_details else {}
        )


class AuthenticationError(ClickLedgerException):
    """Caller identity could not be established."""

    status_code = 401

    def __init__(self, message: str = "Invalid or expired token", details: Optional[Dict[str, Any]] = None,
                 code: str = "UNAUTHENTICATED"):
        super().__init__(code, message, details)


class MissingTokenError(AuthenticationError):
    """No Authorization header on the request."""

    def __init__(self, message: str = "Authentication token not provided", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details, code="MISSING_TOKEN")


class MalformedHeaderError(AuthenticationError):
    """Authorization header is not of the form 'Bearer <token>'."""

    def __init__(self, message: str = "Invalid token format. Use: Authorization: Bearer <token>",
                 details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details, code="MALFORMED_HEADER")


class MissingSubjectError(AuthenticationError):
    """Verified token carries no subject claim."""

    def __init__(self, message: str = "Token does not contain user information",
                 details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details, code="MISSING_SUBJECT")


class ValidationError(ClickLedgerException):
    """Validation-related errors."""

    status_code = 400

    def __init__(self, message: str = "Validation failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("VALIDATION_ERROR", message, details)


class NotFoundError(ClickLedgerException):
    """Requested record does not exist."""

    status_code = 404

    def __init__(self, message: str = "Not found", details: Optional[Dict[str, Any]] = None):
        super().__init__("NOT_FOUND", message, details)


class StorageError(ClickLedgerException):
    """Any failure of the underlying store."""

    status_code = 500

    def __init__(self, message: str = "Storage error", details: Optional[Dict[str, Any]] = None):
        super().__init__("STORAGE_ERROR", message, details)


class TokenVerificationError(ClickLedgerException):
    """Base for token verification failures.

    These never reach the client as-is; the identity middleware collapses
    them into a single AuthenticationError.
    """

    status_code = 401

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(code, message, details)


class InvalidSignatureError(TokenVerificationError):
    """Signature did not verify, or the token could not be parsed."""

    def __init__(self, message: str = "Token signature is invalid", details: Optional[Dict[str, Any]] = None):
        super().__init__("INVALID_SIGNATURE", message, details)


class IssuerMismatchError(TokenVerificationError):
    """Token issuer differs from the configured issuer."""

    def __init__(self, message: str = "Token issuer mismatch", details: Optional[Dict[str, Any]] = None):
        super().__init__("ISSUER_MISMATCH", message, details)


class AudienceMismatchError(TokenVerificationError):
    """Configured client id is not among the token audiences."""

    def __init__(self, message: str = "Token audience mismatch", details: Optional[Dict[str, Any]] = None):
        super().__init__("AUDIENCE_MISMATCH", message, details)


class TokenExpiredError(TokenVerificationError):
    """Token expiry is missing or in the past."""

    def __init__(self, message: str = "Token has expired", details: Optional[Dict[str, Any]] = None):
        super().__init__("TOKEN_EXPIRED", message, details)


class KeyNotFoundError(TokenVerificationError):
    """Signing key id absent from the key set even after a refresh."""

    def __init__(self, kid: str, details: Optional[Dict[str, Any]] = None):
        self.kid = kid
        super().__init__("KEY_NOT_FOUND", f"Signing key not found: {kid}", details or {"kid": kid})


class KeySourceUnreachableError(TokenVerificationError):
    """Key set could not be fetched from the issuer."""

    def __init__(self, message: str = "Key set endpoint unreachable", details: Optional[Dict[str, Any]] = None):
        super().__init__("KEY_SOURCE_UNREACHABLE", message, details)
