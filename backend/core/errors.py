"""
Pipeline error taxonomy.
Every stage failure crosses the pipeline boundary as exactly one ErrorKind.
The user-facing message is fixed per kind and never carries internal detail.
"""
from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    RATE_LIMIT_EXCEEDED = "RateLimitExceeded"
    TRANSLATION_UNAVAILABLE = "TranslationUnavailable"
    MALFORMED_MODEL_OUTPUT = "MalformedModelOutput"
    NOT_READ_ONLY = "NotReadOnly"
    MULTIPLE_STATEMENTS = "MultipleStatements"
    MISSING_TENANT_SCOPE = "MissingTenantScope"
    QUERY_TIMEOUT = "QueryTimeout"
    EXECUTION_PERMISSION_DENIED = "ExecutionPermissionDenied"
    INTERNAL_ERROR = "InternalError"


_QUERY_REJECTED = "Sorry, I couldn't run that query. Try rephrasing your question."

USER_MESSAGES: dict[ErrorKind, str] = {
    ErrorKind.RATE_LIMIT_EXCEEDED: "You've sent too many questions. Please wait a moment.",
    ErrorKind.TRANSLATION_UNAVAILABLE: "The assistant is temporarily unavailable. Please try again shortly.",
    ErrorKind.MALFORMED_MODEL_OUTPUT: "Sorry, I couldn't understand that question. Try rephrasing it.",
    ErrorKind.NOT_READ_ONLY: _QUERY_REJECTED,
    ErrorKind.MULTIPLE_STATEMENTS: _QUERY_REJECTED,
    ErrorKind.MISSING_TENANT_SCOPE: _QUERY_REJECTED,
    ErrorKind.QUERY_TIMEOUT: "That question took too long to answer. Try asking something simpler.",
    ErrorKind.EXECUTION_PERMISSION_DENIED: _QUERY_REJECTED,
    ErrorKind.INTERNAL_ERROR: "Something went wrong. Please try again.",
}

HTTP_STATUS: dict[ErrorKind, int] = {
    ErrorKind.RATE_LIMIT_EXCEEDED: 429,
    ErrorKind.TRANSLATION_UNAVAILABLE: 503,
    ErrorKind.MALFORMED_MODEL_OUTPUT: 502,
    ErrorKind.NOT_READ_ONLY: 422,
    ErrorKind.MULTIPLE_STATEMENTS: 422,
    ErrorKind.MISSING_TENANT_SCOPE: 422,
    ErrorKind.QUERY_TIMEOUT: 504,
    ErrorKind.EXECUTION_PERMISSION_DENIED: 500,
    ErrorKind.INTERNAL_ERROR: 500,
}


class PipelineError(Exception):
    """A terminal pipeline failure. `detail` is for logs only."""

    def __init__(self, kind: ErrorKind, detail: str = "", retry_after: Optional[int] = None):
        super().__init__(detail or kind.value)
        self.kind = kind
        self.detail = detail
        self.retry_after = retry_after

    @property
    def user_message(self) -> str:
        return USER_MESSAGES[self.kind]

    @property
    def status_code(self) -> int:
        return HTTP_STATUS[self.kind]

    def to_payload(self) -> dict:
        error: dict = {"code": self.kind.value, "message": self.user_message}
        if self.retry_after is not None:
            error["retryAfter"] = self.retry_after
        return {"success": False, "error": error}
