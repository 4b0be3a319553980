"""Project error hierarchy and the OpenAI error envelope."""

from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorKind(str, Enum):
    INVALID_REQUEST = "invalid_request_error"
    AUTHENTICATION = "authentication_error"
    API = "api_error"
    TIMEOUT = "timeout"


_DEFAULT_STATUS = {
    ErrorKind.INVALID_REQUEST: 400,
    ErrorKind.AUTHENTICATION: 401,
    ErrorKind.API: 502,
    ErrorKind.TIMEOUT: 504,
}


def status_for_kind(kind: ErrorKind) -> int:
    return _DEFAULT_STATUS[kind]


def error_type_for_kind(kind: ErrorKind) -> str:
    # OpenAI clients only know api_error; timeouts are told apart by code.
    if kind is ErrorKind.TIMEOUT:
        return ErrorKind.API.value
    return kind.value


def error_envelope(message: str, error_type: str, code: str | None = None, param: str | None = None) -> dict[str, Any]:
    return {
        "error": {
            "message": message,
            "type": error_type,
            "param": param,
            "code": code,
        }
    }


class GatewayError(Exception):
    """Base error; carries everything needed to render the error envelope."""

    kind: ErrorKind = ErrorKind.API
    default_code: str | None = None

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        code: str | None = None,
        param: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self._status_code = status_code
        self.code = code if code is not None else self.default_code
        self.param = param

    @property
    def status_code(self) -> int:
        if self._status_code is not None:
            return self._status_code
        return status_for_kind(self.kind)

    @property
    def error_type(self) -> str:
        return error_type_for_kind(self.kind)

    def to_envelope(self) -> dict[str, Any]:
        return error_envelope(self.message, self.error_type, code=self.code, param=self.param)


class InvalidRequestError(GatewayError):
    """Bad or missing fields, unsupported features, unknown routes."""

    kind = ErrorKind.INVALID_REQUEST


class AuthenticationError(GatewayError):
    kind = ErrorKind.AUTHENTICATION
    default_code = "invalid_api_key"


class UpstreamError(GatewayError):
    """Upstream unreachable, non-2xx or malformed."""

    kind = ErrorKind.API


class UpstreamTimeoutError(UpstreamError):
    kind = ErrorKind.TIMEOUT
    default_code = "upstream_timeout"
