"""Error codes and exception types shared across the service."""

from __future__ import annotations

from enum import Enum


class ErrorCode(str, Enum):
    AGENT_NOT_FOUND = "AGENT_NOT_FOUND"
    DOCUMENT_NOT_FOUND = "DOCUMENT_NOT_FOUND"
    OPENAPI_NOT_FOUND = "OPENAPI_NOT_FOUND"
    TOOL_SERVER_NOT_FOUND = "TOOL_SERVER_NOT_FOUND"
    INTERNAL_SERVER_ERROR = "INTERNAL_SERVER_ERROR"
    INVALID_REQUEST = "INVALID_REQUEST"
    MODEL_NOT_CONFIGURED = "MODEL_NOT_CONFIGURED"
    NOT_FOUND = "NOT_FOUND"
    UNAUTHORIZED = "UNAUTHORIZED"


ERROR_STATUS: dict[ErrorCode, int] = {
    ErrorCode.AGENT_NOT_FOUND: 404,
    ErrorCode.DOCUMENT_NOT_FOUND: 404,
    ErrorCode.OPENAPI_NOT_FOUND: 404,
    ErrorCode.TOOL_SERVER_NOT_FOUND: 404,
    ErrorCode.INTERNAL_SERVER_ERROR: 500,
    ErrorCode.INVALID_REQUEST: 400,
    ErrorCode.MODEL_NOT_CONFIGURED: 503,
    ErrorCode.NOT_FOUND: 404,
    ErrorCode.UNAUTHORIZED: 401,
}


class APIError(Exception):
    """Request-level failure rendered as `{"error": <code>}`."""

    def __init__(self, code: ErrorCode, detail: str | None = None) -> None:
        super().__init__(detail or code.value)
        self.code = code
        self.detail = detail
        self.status_code = ERROR_STATUS[code]


class ConfigurationError(ValueError):
    """Invalid input supplied while configuring an agent capability."""


class InvalidOpenAPIDocument(ConfigurationError):
    pass


class UnsupportedDocumentType(ConfigurationError):
    pass


class UnsupportedTransport(ConfigurationError):
    pass


class InvalidDocument(ConfigurationError):
    pass
