"""Exception hierarchy for notegraph.

Every error carries an ``ErrorCode`` and a ``details`` mapping so it can be
reported as JSON. Callers only need to tell two failure classes apart:
invariant violations (bad input, rejected before any write, see
``is_client_error``) and store failures (the persistence layer could not
complete an operation).
"""
from enum import Enum
from typing import Any, Dict, Optional


class ErrorCode(Enum):
    """Machine-readable error codes, grouped by area."""

    # Notes (1xxx)
    NOTE_NOT_FOUND = 1001
    NOTE_VALIDATION_FAILED = 1002
    NOTE_CONTENT_REQUIRED = 1005

    # Connections (2xxx)
    CONNECTION_INVALID = 2001
    CONNECTION_ALREADY_EXISTS = 2002
    CONNECTION_NOT_FOUND = 2003
    CONNECTION_SELF_REFERENCE = 2004

    # Categories (3xxx)
    CATEGORY_NOT_FOUND = 3001
    CATEGORY_INVALID = 3002

    # Stores (4xxx)
    STORAGE_READ_FAILED = 4001
    STORAGE_WRITE_FAILED = 4002
    STORAGE_DELETE_FAILED = 4003

    # LLM classifier (5xxx)
    LLM_UNAVAILABLE = 5001
    LLM_REQUEST_FAILED = 5002
    LLM_MALFORMED_RESPONSE = 5003

    # Configuration (6xxx)
    CONFIG_INVALID = 6001

    # Generic validation (7xxx)
    VALIDATION_FAILED = 7001


def _details(**values: Any) -> Dict[str, Any]:
    """Keep only the context values that were actually supplied."""
    return {key: value for key, value in values.items() if value not in (None, "")}


def _truncated(value: Any, limit: int) -> Optional[str]:
    return None if value is None else str(value)[:limit]


class NotegraphError(Exception):
    """Base class of every notegraph error.

    Attributes:
        message: Human-readable description.
        code: Machine-readable error code.
        details: Extra context, safe to serialize.
    """

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.VALIDATION_FAILED,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = dict(details or {})

    def to_dict(self) -> Dict[str, Any]:
        """JSON-ready representation used by the CLI."""
        return {
            "error": type(self).__name__,
            "code": self.code.value,
            "code_name": self.code.name,
            "message": self.message,
            "details": self.details,
        }

    def __str__(self) -> str:
        text = f"[{self.code.name}] {self.message}"
        if not self.details:
            return text
        context = ", ".join(f"{key}={value}" for key, value in self.details.items())
        return f"{text} ({context})"


class NoteNotFoundError(NotegraphError):
    """No note with the given id is stored."""

    def __init__(self, note_id: str, message: Optional[str] = None):
        super().__init__(
            message or f"Note with ID '{note_id}' not found",
            code=ErrorCode.NOTE_NOT_FOUND,
            details={"note_id": note_id},
        )
        self.note_id = note_id


class NoteValidationError(NotegraphError):
    """Note input was rejected, e.g. blank content."""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        value: Optional[Any] = None,
        code: ErrorCode = ErrorCode.NOTE_VALIDATION_FAILED,
    ):
        super().__init__(
            message, code=code, details=_details(field=field, value=_truncated(value, 100))
        )
        self.field = field
        self.value = value


class NoteConnectionError(NotegraphError):
    """A connection request was invalid: self link, duplicate or unknown id."""

    def __init__(
        self,
        message: str,
        source_id: Optional[str] = None,
        target_id: Optional[str] = None,
        connection_type: Optional[str] = None,
        code: ErrorCode = ErrorCode.CONNECTION_INVALID,
    ):
        super().__init__(
            message,
            code=code,
            details=_details(
                source_id=source_id,
                target_id=target_id,
                connection_type=connection_type,
            ),
        )
        self.source_id = source_id
        self.target_id = target_id
        self.connection_type = connection_type


class CategoryError(NotegraphError):
    """A category graph operation referred to an unknown or invalid category."""

    def __init__(
        self,
        message: str,
        category_id: Optional[str] = None,
        code: ErrorCode = ErrorCode.CATEGORY_INVALID,
    ):
        super().__init__(message, code=code, details=_details(category_id=category_id))
        self.category_id = category_id


class StorageError(NotegraphError):
    """A store could not complete a read or write."""

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        code: ErrorCode = ErrorCode.STORAGE_READ_FAILED,
        original_error: Optional[Exception] = None,
    ):
        super().__init__(
            message,
            code=code,
            details=_details(
                operation=operation,
                original_error=_truncated(original_error, 200),
            ),
        )
        self.operation = operation
        self.original_error = original_error


class LlmError(NotegraphError):
    """The LLM client could not produce usable text.

    The categorization services absorb this error; it never reaches callers
    of the engine facade.
    """

    def __init__(
        self,
        message: str,
        provider: Optional[str] = None,
        code: ErrorCode = ErrorCode.LLM_REQUEST_FAILED,
        original_error: Optional[Exception] = None,
    ):
        super().__init__(
            message,
            code=code,
            details=_details(
                provider=provider,
                original_error=_truncated(original_error, 200),
            ),
        )
        self.provider = provider
        self.original_error = original_error


class ConfigurationError(NotegraphError):
    """Settings failed validation."""

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        code: ErrorCode = ErrorCode.CONFIG_INVALID,
    ):
        super().__init__(message, code=code, details=_details(config_key=config_key))
        self.config_key = config_key


class ValidationError(NotegraphError):
    """Generic argument validation failure (paging parameters and the like)."""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        value: Optional[Any] = None,
        code: ErrorCode = ErrorCode.VALIDATION_FAILED,
    ):
        super().__init__(
            message, code=code, details=_details(field=field, value=_truncated(value, 100))
        )
        self.field = field
        self.value = value


_CLIENT_ERROR_TYPES = (
    NoteNotFoundError,
    NoteValidationError,
    NoteConnectionError,
    CategoryError,
    ValidationError,
)


def is_client_error(error: Exception) -> bool:
    """Return True if the error is an invariant violation caused by the caller.

    Invariant violations map to a 4xx-style response at an outer boundary;
    everything else (notably StorageError) maps to a 5xx-style response.
    """
    return isinstance(error, _CLIENT_ERROR_TYPES)
