"""Error Hierarchy — typed, categorized exceptions for every registry failure mode.

Invariants:
    - Every error has a code (str), category (ErrorCategory), severity (ErrorSeverity)
    - Each error kind has a distinct code so callers never inspect message text
    - Account-level errors are 403, unknown ids 404, identity collisions 409,
      transport failures 500
    - to_response() produces the REST envelope

Design Decisions:
    - Single hierarchy with RegistryError base: FastAPI global handler catches all
    - AccountOperationError wraps an account-level error with the offending id and
      borrows the inner code/status so the API translates it 1:1
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


class ErrorSeverity(str, Enum):
    """Error severity for observability and client handling."""
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class ErrorCategory(str, Enum):
    """High-level error categories for routing and handling."""
    VALIDATION = "validation"
    AUTHENTICATION = "authentication"
    BUSINESS_RULE = "business_rule"
    RESOURCE_NOT_FOUND = "resource_not_found"
    CONFLICT = "conflict"
    DATABASE = "database"
    EXTERNAL_API = "external_api"


@dataclass
class ErrorContext:
    """Rich context for error observability and debugging."""
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    account_id: int | None = None
    debug_info: dict[str, Any] | None = None


class RegistryError(Exception):
    """Base exception for all account registry errors."""

    def __init__(
        self,
        message: str,
        code: str,
        category: ErrorCategory,
        severity: ErrorSeverity = ErrorSeverity.ERROR,
        context: ErrorContext | None = None,
        http_status: int = 500,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.category = category
        self.severity = severity
        self.context = context or ErrorContext()
        self.http_status = http_status

    def to_response(self) -> dict:
        """Convert to standardized REST error response."""
        account_id = self.context.account_id
        return {
            "error": {
                "code": self.code,
                "message": self.message,
                "category": self.category.value,
                "severity": self.severity.value,
                "timestamp": self.context.timestamp.isoformat(),
                "context": {
                    "account_id": str(account_id) if account_id is not None else None,
                },
            }
        }


# ─── Account Errors (403) ───────────────────────────────────────

class AccountError(RegistryError):
    """A transition was refused by the account state machine."""
    def __init__(
        self, message: str, code: str,
        category: ErrorCategory = ErrorCategory.BUSINESS_RULE,
        context: ErrorContext | None = None,
    ):
        super().__init__(
            message, code, category, ErrorSeverity.WARNING, context, 403,
        )


class VerificationCodeError(AccountError):
    def __init__(self, context: ErrorContext | None = None):
        super().__init__(
            "verification code not match", "VERIFICATION_CODE",
            ErrorCategory.AUTHENTICATION, context,
        )


class UserUnverifiedError(AccountError):
    def __init__(self, context: ErrorContext | None = None):
        super().__init__("user has not been verified", "USER_UNVERIFIED", context=context)


class UserRegisteredError(AccountError):
    def __init__(self, context: ErrorContext | None = None):
        super().__init__("user already registered", "USER_REGISTERED", context=context)


class PasswordIncorrectError(AccountError):
    def __init__(self, context: ErrorContext | None = None):
        super().__init__(
            "password incorrect", "PASSWORD_INCORRECT",
            ErrorCategory.AUTHENTICATION, context,
        )


class TokenIncorrectError(AccountError):
    def __init__(self, context: ErrorContext | None = None):
        super().__init__(
            "token incorrect", "TOKEN_INCORRECT",
            ErrorCategory.AUTHENTICATION, context,
        )


class EmailDomainNotInSchoolError(AccountError):
    """Registration attempted with an address outside the allowed domains."""
    def __init__(self, domain: str, context: ErrorContext | None = None):
        super().__init__(
            f"domain of email address is not from school: {domain}",
            "EMAIL_DOMAIN_NOT_IN_SCHOOL", context=context,
        )
        self.domain = domain


class DateOutOfRangeError(AccountError):
    def __init__(self, context: ErrorContext | None = None):
        super().__init__("date out of range", "DATE_OUT_OF_RANGE", context=context)


class PermissionDeniedError(AccountError):
    def __init__(self, context: ErrorContext | None = None):
        super().__init__("permission denied", "PERMISSION_DENIED", context=context)


class InvalidEmailError(RegistryError):
    """Address is not a syntactically valid email."""
    def __init__(self, reason: str, context: ErrorContext | None = None):
        super().__init__(
            f"invalid email address: {reason}", "INVALID_EMAIL",
            ErrorCategory.VALIDATION, ErrorSeverity.WARNING, context, 400,
        )


# ─── Store Errors ───────────────────────────────────────────────

class ConflictError(RegistryError):
    """An account with the same id already exists in the store."""
    def __init__(self, account_id: int, context: ErrorContext | None = None):
        ctx = context or ErrorContext()
        ctx.account_id = account_id
        super().__init__(
            "user with same id already exists", "CONFLICT",
            ErrorCategory.CONFLICT, ErrorSeverity.ERROR, ctx, 409,
        )
        self.account_id = account_id


class AccountNotFoundError(RegistryError):
    def __init__(self, account_id: int, context: ErrorContext | None = None):
        ctx = context or ErrorContext()
        ctx.account_id = account_id
        super().__init__(
            f"account {account_id} not found", "ACCOUNT_NOT_FOUND",
            ErrorCategory.RESOURCE_NOT_FOUND, ErrorSeverity.WARNING, ctx, 404,
        )
        self.account_id = account_id


class AccountOperationError(RegistryError):
    """Account-level failure tagged with the id it happened on."""
    def __init__(self, account_id: int, inner: RegistryError):
        ctx = ErrorContext(account_id=account_id)
        super().__init__(
            f"account {account_id} errored: {inner.message}", inner.code,
            inner.category, inner.severity, ctx, inner.http_status,
        )
        self.account_id = account_id
        self.inner = inner


# ─── Infrastructure Errors (500-level) ──────────────────────────

class MailSendError(RegistryError):
    """Mail transport failed to deliver a verification code."""
    def __init__(self, cause: Exception, context: ErrorContext | None = None):
        super().__init__(
            f"error while sending verification mail: {cause}", "MAIL_SEND",
            ErrorCategory.EXTERNAL_API, ErrorSeverity.CRITICAL, context, 500,
        )
        self.cause = cause


class DatabaseError(RegistryError):
    """Database operation failed."""
    def __init__(self, message: str, operation: str, context: ErrorContext | None = None):
        super().__init__(
            f"Database {operation} failed: {message}",
            "DATABASE_ERROR", ErrorCategory.DATABASE,
            ErrorSeverity.CRITICAL, context, 503,
        )
        self.operation = operation
