"""Custom exceptions for the Eaiser notebook engine.

Provides a structured exception hierarchy with error codes and
machine-readable error information for better error handling.
"""
from enum import Enum
from typing import Any, Dict, Optional


class ErrorCode(Enum):
    """Error codes for machine-readable error identification."""

    # Lookup errors (1xxx)
    NOTE_NOT_FOUND = 1001
    CATEGORY_NOT_FOUND = 1002
    COLOR_PRESET_NOT_FOUND = 1003

    # Note type errors (2xxx)
    INVALID_NOTE_TYPE = 2001
    UNSUPPORTED_TYPE = 2002

    # Input errors (3xxx)
    EMPTY_INPUT = 3001
    SCRIPT_EMPTY = 3002
    MISSING_CREDENTIAL = 3003
    MALFORMED_INPUT = 3004
    PATH_TRAVERSAL_DETECTED = 3005

    # Storage errors (4xxx)
    STORAGE_READ_FAILED = 4001
    STORAGE_WRITE_FAILED = 4002
    STORAGE_DELETE_FAILED = 4003
    STORAGE_CONNECTION_FAILED = 4004
    FILE_MISSING = 4005

    # Remote API errors (5xxx)
    REMOTE_API_ERROR = 5001
    MALFORMED_RESPONSE = 5002
    EMPTY_RESPONSE = 5003
    TIMEOUT = 5004

    # Configuration errors (6xxx)
    CONFIG_INVALID = 6001
    CAPABILITY_DISABLED = 6002

    # Validation errors (7xxx)
    VALIDATION_FAILED = 7001
    CATEGORY_CYCLE = 7002


class EaiserError(Exception):
    """Base exception for all Eaiser errors.

    Attributes:
        message: Human-readable error message
        code: Machine-readable error code
        details: Additional context about the error
    """

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.VALIDATION_FAILED,
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to a dictionary for serialization."""
        return {
            "error": self.__class__.__name__,
            "code": self.code.value,
            "code_name": self.code.name,
            "message": self.message,
            "details": self.details
        }

    def __str__(self) -> str:
        if self.details:
            detail_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"[{self.code.name}] {self.message} ({detail_str})"
        return f"[{self.code.name}] {self.message}"


class NotFoundError(EaiserError):
    """Raised when an entity id does not exist."""

    def __init__(
        self,
        entity: str,
        entity_id: Any,
        code: ErrorCode = ErrorCode.NOTE_NOT_FOUND
    ):
        super().__init__(
            f"{entity} with ID '{entity_id}' not found",
            code=code,
            details={"entity": entity, "id": entity_id}
        )
        self.entity = entity
        self.entity_id = entity_id


class NoteNotFoundError(NotFoundError):
    def __init__(self, note_id: Any):
        super().__init__("Note", note_id, code=ErrorCode.NOTE_NOT_FOUND)
        self.note_id = note_id


class CategoryNotFoundError(NotFoundError):
    def __init__(self, category_id: Any):
        super().__init__("Category", category_id, code=ErrorCode.CATEGORY_NOT_FOUND)
        self.category_id = category_id


class ColorPresetNotFoundError(NotFoundError):
    def __init__(self, preset_id: Any):
        super().__init__(
            "Color preset", preset_id, code=ErrorCode.COLOR_PRESET_NOT_FOUND
        )
        self.preset_id = preset_id


class InvalidTypeError(EaiserError):
    """Raised when an operation is applied to the wrong note type."""

    def __init__(
        self,
        message: str,
        note_id: Optional[Any] = None,
        note_type: Optional[str] = None,
        code: ErrorCode = ErrorCode.INVALID_NOTE_TYPE
    ):
        details = {}
        if note_id is not None:
            details["note_id"] = note_id
        if note_type:
            details["note_type"] = note_type

        super().__init__(message, code=code, details=details)
        self.note_id = note_id
        self.note_type = note_type


class EmptyInputError(EaiserError):
    """Raised for blank scripts, paths or credentials."""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        code: ErrorCode = ErrorCode.EMPTY_INPUT
    ):
        details = {}
        if field:
            details["field"] = field

        super().__init__(message, code=code, details=details)
        self.field = field


class MissingCredentialError(EmptyInputError):
    """Raised when the AI endpoint has no API key configured."""

    def __init__(self, message: str = "AI API key is not configured"):
        super().__init__(
            message, field="apiKey", code=ErrorCode.MISSING_CREDENTIAL
        )


class MalformedInputError(EaiserError):
    """Raised for undecodable base64 / data-URI payloads or unsafe names."""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        code: ErrorCode = ErrorCode.MALFORMED_INPUT
    ):
        details = {}
        if field:
            details["field"] = field

        super().__init__(message, code=code, details=details)
        self.field = field


class StorageError(EaiserError):
    """Raised for storage/persistence errors."""

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        path: Optional[str] = None,
        code: ErrorCode = ErrorCode.STORAGE_READ_FAILED,
        original_error: Optional[Exception] = None
    ):
        details = {}
        if operation:
            details["operation"] = operation
        if path:
            # Don't expose full paths in error messages
            details["path_hint"] = path.replace("\\", "/").split("/")[-1]
        if original_error:
            details["original_error"] = str(original_error)[:200]

        super().__init__(message, code=code, details=details)
        self.operation = operation
        self.path = path
        self.original_error = original_error


class RemoteAPIError(EaiserError):
    """Raised for non-2xx replies or in-body errors from the chat endpoint."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        code: ErrorCode = ErrorCode.REMOTE_API_ERROR
    ):
        details = {}
        if status_code is not None:
            details["status_code"] = status_code

        super().__init__(message, code=code, details=details)
        self.status_code = status_code


class MalformedResponseError(RemoteAPIError):
    """Raised when the remote payload cannot be parsed."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(
            message, status_code=status_code, code=ErrorCode.MALFORMED_RESPONSE
        )


class EmptyResponseError(RemoteAPIError):
    """Raised when the remote reply carries no choices."""

    def __init__(self, message: str = "AI response contained no choices"):
        super().__init__(message, code=ErrorCode.EMPTY_RESPONSE)


class OperationTimeoutError(EaiserError):
    """Raised when a hard deadline is exceeded."""

    def __init__(self, message: str, timeout: Optional[float] = None):
        details = {}
        if timeout is not None:
            details["timeout_seconds"] = timeout

        super().__init__(message, code=ErrorCode.TIMEOUT, details=details)
        self.timeout = timeout


class CapabilityDisabledError(EaiserError):
    """Raised when a gated capability is switched off by configuration."""

    def __init__(self, capability: str):
        super().__init__(
            f"{capability} is disabled by configuration",
            code=ErrorCode.CAPABILITY_DISABLED,
            details={"capability": capability}
        )
        self.capability = capability


class ValidationError(EaiserError):
    """Raised for general validation errors."""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        value: Optional[Any] = None,
        code: ErrorCode = ErrorCode.VALIDATION_FAILED
    ):
        details = {}
        if field:
            details["field"] = field
        if value is not None:
            details["value"] = str(value)[:100]

        super().__init__(message, code=code, details=details)
        self.field = field
        self.value = value
