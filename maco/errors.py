"""Error codes and the structured error type shared by the master, minions and clients."""

from __future__ import annotations

import json
from enum import IntEnum
from http import HTTPStatus
from typing import Any

CLIENT_CLOSED_HTTP_STATUS = 499


class Code(IntEnum):
    """Application error codes."""

    OK = 0
    UNKNOWN = 1
    INTERNAL = 2
    BAD_REQUEST = 3
    UNAUTHORIZED = 4
    FORBIDDEN = 5
    NOT_FOUND = 6
    CONFLICT = 7
    TOO_MANY_REQUESTS = 8
    CLIENT_CLOSED = 9
    NOT_IMPLEMENTED = 10
    UNAVAILABLE = 11
    GATEWAY_TIMEOUT = 12

    @property
    def label(self) -> str:
        """The code's canonical name, used as an error's message."""
        return _LABELS[self]

    def to_http_code(self) -> int:
        """Return the HTTP status that corresponds to this code."""
        return _TO_HTTP.get(self, int(HTTPStatus.INTERNAL_SERVER_ERROR))

    def to_grpc_code(self) -> GrpcCode:
        """Return the gRPC status code that corresponds to this code."""
        return _TO_GRPC.get(self, GrpcCode.INTERNAL)


class GrpcCode(IntEnum):
    """gRPC status codes."""

    OK = 0
    CANCELLED = 1
    UNKNOWN = 2
    INVALID_ARGUMENT = 3
    DEADLINE_EXCEEDED = 4
    NOT_FOUND = 5
    ALREADY_EXISTS = 6
    PERMISSION_DENIED = 7
    RESOURCE_EXHAUSTED = 8
    FAILED_PRECONDITION = 9
    ABORTED = 10
    OUT_OF_RANGE = 11
    UNIMPLEMENTED = 12
    INTERNAL = 13
    UNAVAILABLE = 14
    DATA_LOSS = 15
    UNAUTHENTICATED = 16


_LABELS = {
    Code.OK: "Ok",
    Code.UNKNOWN: "Unknown",
    Code.INTERNAL: "Internal",
    Code.BAD_REQUEST: "BadRequest",
    Code.UNAUTHORIZED: "Unauthorized",
    Code.FORBIDDEN: "Forbidden",
    Code.NOT_FOUND: "NotFound",
    Code.CONFLICT: "Conflict",
    Code.TOO_MANY_REQUESTS: "TooManyRequests",
    Code.CLIENT_CLOSED: "ClientClosed",
    Code.NOT_IMPLEMENTED: "NotImplemented",
    Code.UNAVAILABLE: "Unavailable",
    Code.GATEWAY_TIMEOUT: "GatewayTimeout",
}

_TO_HTTP = {
    Code.OK: int(HTTPStatus.OK),
    Code.UNKNOWN: int(HTTPStatus.INTERNAL_SERVER_ERROR),
    Code.INTERNAL: int(HTTPStatus.INTERNAL_SERVER_ERROR),
    Code.BAD_REQUEST: int(HTTPStatus.BAD_REQUEST),
    Code.UNAUTHORIZED: int(HTTPStatus.UNAUTHORIZED),
    Code.FORBIDDEN: int(HTTPStatus.FORBIDDEN),
    Code.NOT_FOUND: int(HTTPStatus.NOT_FOUND),
    Code.CONFLICT: int(HTTPStatus.CONFLICT),
    Code.TOO_MANY_REQUESTS: int(HTTPStatus.TOO_MANY_REQUESTS),
    Code.CLIENT_CLOSED: CLIENT_CLOSED_HTTP_STATUS,
    Code.NOT_IMPLEMENTED: int(HTTPStatus.NOT_IMPLEMENTED),
    Code.UNAVAILABLE: int(HTTPStatus.SERVICE_UNAVAILABLE),
    Code.GATEWAY_TIMEOUT: int(HTTPStatus.GATEWAY_TIMEOUT),
}

_FROM_HTTP = {
    int(HTTPStatus.OK): Code.OK,
    int(HTTPStatus.BAD_REQUEST): Code.BAD_REQUEST,
    int(HTTPStatus.UNAUTHORIZED): Code.UNAUTHORIZED,
    int(HTTPStatus.FORBIDDEN): Code.FORBIDDEN,
    int(HTTPStatus.NOT_FOUND): Code.NOT_FOUND,
    int(HTTPStatus.CONFLICT): Code.CONFLICT,
    int(HTTPStatus.TOO_MANY_REQUESTS): Code.TOO_MANY_REQUESTS,
    CLIENT_CLOSED_HTTP_STATUS: Code.CLIENT_CLOSED,
    int(HTTPStatus.INTERNAL_SERVER_ERROR): Code.INTERNAL,
    int(HTTPStatus.SERVICE_UNAVAILABLE): Code.UNAVAILABLE,
    int(HTTPStatus.NOT_IMPLEMENTED): Code.NOT_IMPLEMENTED,
    int(HTTPStatus.GATEWAY_TIMEOUT): Code.GATEWAY_TIMEOUT,
}

_TO_GRPC = {
    Code.OK: GrpcCode.OK,
    Code.UNKNOWN: GrpcCode.UNKNOWN,
    Code.INTERNAL: GrpcCode.INTERNAL,
    Code.BAD_REQUEST: GrpcCode.INVALID_ARGUMENT,
    Code.UNAUTHORIZED: GrpcCode.UNAUTHENTICATED,
    Code.FORBIDDEN: GrpcCode.PERMISSION_DENIED,
    Code.NOT_FOUND: GrpcCode.NOT_FOUND,
    Code.CONFLICT: GrpcCode.ALREADY_EXISTS,
    Code.TOO_MANY_REQUESTS: GrpcCode.RESOURCE_EXHAUSTED,
    Code.CLIENT_CLOSED: GrpcCode.CANCELLED,
    Code.NOT_IMPLEMENTED: GrpcCode.UNIMPLEMENTED,
    Code.UNAVAILABLE: GrpcCode.UNAVAILABLE,
    Code.GATEWAY_TIMEOUT: GrpcCode.DEADLINE_EXCEEDED,
}

_FROM_GRPC = {
    GrpcCode.OK: Code.OK,
    GrpcCode.CANCELLED: Code.CLIENT_CLOSED,
    GrpcCode.UNKNOWN: Code.UNKNOWN,
    GrpcCode.INVALID_ARGUMENT: Code.BAD_REQUEST,
    GrpcCode.DEADLINE_EXCEEDED: Code.UNAVAILABLE,
    GrpcCode.NOT_FOUND: Code.NOT_FOUND,
    GrpcCode.ALREADY_EXISTS: Code.CONFLICT,
    GrpcCode.PERMISSION_DENIED: Code.FORBIDDEN,
    GrpcCode.RESOURCE_EXHAUSTED: Code.TOO_MANY_REQUESTS,
    GrpcCode.FAILED_PRECONDITION: Code.FORBIDDEN,
    GrpcCode.ABORTED: Code.CONFLICT,
    GrpcCode.OUT_OF_RANGE: Code.BAD_REQUEST,
    GrpcCode.UNIMPLEMENTED: Code.NOT_IMPLEMENTED,
    GrpcCode.INTERNAL: Code.INTERNAL,
    GrpcCode.UNAVAILABLE: Code.UNAVAILABLE,
    GrpcCode.DATA_LOSS: Code.INTERNAL,
    GrpcCode.UNAUTHENTICATED: Code.UNAUTHORIZED,
}


def from_http_code(code: int) -> Code:
    """Map an HTTP status to an application code."""
    return _FROM_HTTP.get(int(code), Code.UNKNOWN)


def from_grpc_code(code: int) -> Code:
    """Map a gRPC status code to an application code."""
    try:
        grpc_code = GrpcCode(int(code))
    except ValueError:
        return Code.UNKNOWN
    return _FROM_GRPC.get(grpc_code, Code.UNKNOWN)


class StatusError(Exception):
    """An RPC status carried as an exception."""

    def __init__(self, code: GrpcCode | int, message: str = "", details: list[Any] | None = None):
        super().__init__(message)
        try:
            self.code = GrpcCode(int(code))
        except ValueError:
            self.code = GrpcCode.UNKNOWN
        self.message = message
        self.details = list(details or [])

    def __str__(self) -> str:
        return f"rpc error: code = {self.code.name} desc = {self.message}"


class MacoError(Exception):
    """A structured application error with a code, a message and a detail."""

    def __init__(self, code: Code | int, message: str = "", detail: str = "", causes: list[Any] | None = None):
        super().__init__(detail)
        self.code = Code(code)
        self.message = message
        self.detail = detail
        self.causes = list(causes or [])

    def with_cause(self, value: Any) -> MacoError:
        """Attach a cause and return this error."""
        if value is not None:
            self.causes.append(value)
        return self

    def to_json(self) -> str:
        """Serialise the error as JSON, omitting empty fields."""
        data: dict[str, Any] = {}
        if self.code != Code.OK:
            data["code"] = int(self.code)
        if self.message:
            data["message"] = self.message
        if self.detail:
            data["detail"] = self.detail
        if self.causes:
            data["causes"] = self.causes
        return json.dumps(data, default=str, separators=(",", ":"))

    def to_status(self) -> StatusError:
        """Convert the error to an RPC status."""
        return StatusError(self.code.to_grpc_code(), self.detail, list(self.causes))

    def __str__(self) -> str:
        return self.to_json()

    def __repr__(self) -> str:
        return f"MacoError(code={self.code.name}, message={self.message!r}, detail={self.detail!r})"


def from_status(status: StatusError) -> MacoError:
    """Convert an RPC status to a MacoError."""
    error = new(from_grpc_code(status.code), status.message)
    for detail in status.details:
        error.with_cause(detail)
    return error


def new(code: Code | int, detail: str) -> MacoError:
    """Create an error whose message is the code's name."""
    code = Code(code)
    return MacoError(code, code.label, detail)


def new_ok() -> MacoError:
    return new(Code.OK, "")


def new_unknown(detail: str) -> MacoError:
    return new(Code.UNKNOWN, detail)


def new_internal(detail: str) -> MacoError:
    return new(Code.INTERNAL, detail)


def new_bad_request(detail: str) -> MacoError:
    return new(Code.BAD_REQUEST, detail)


def new_unauthorized(detail: str) -> MacoError:
    return new(Code.UNAUTHORIZED, detail)


def new_forbidden(detail: str) -> MacoError:
    return new(Code.FORBIDDEN, detail)


def new_not_found(detail: str) -> MacoError:
    return new(Code.NOT_FOUND, detail)


def new_conflict(detail: str) -> MacoError:
    return new(Code.CONFLICT, detail)


def new_too_many_requests(detail: str) -> MacoError:
    return new(Code.TOO_MANY_REQUESTS, detail)


def new_client_closed(detail: str) -> MacoError:
    return new(Code.CLIENT_CLOSED, detail)


def new_not_implemented(detail: str) -> MacoError:
    return new(Code.NOT_IMPLEMENTED, detail)


def new_unavailable(detail: str) -> MacoError:
    return new(Code.UNAVAILABLE, detail)


def new_gateway_timeout(detail: str) -> MacoError:
    return new(Code.GATEWAY_TIMEOUT, detail)


def _from_mapping(data: dict[str, Any]) -> MacoError | None:
    code = data.get("code", 0)
    message = data.get("message", "")
    detail = data.get("detail", "")
    causes = data.get("causes") or []
    if isinstance(code, bool) or not isinstance(code, int):
        return None
    if not isinstance(message, str) or not isinstance(detail, str) or not isinstance(causes, list):
        return None
    try:
        parsed_code = Code(code)
    except ValueError:
        parsed_code = Code.UNKNOWN
    return MacoError(parsed_code, message, detail, causes)


def parse(err: BaseException | None) -> MacoError | None:
    """Convert any exception to a MacoError; None stays None."""
    if err is None:
        return None
    if isinstance(err, StatusError):
        return from_status(err)
    if isinstance(err, MacoError):
        return err
    reason = getattr(err, "reason", None)
    if callable(reason):
        return new_bad_request(str(reason()))
    text = str(err)
    try:
        data = json.loads(text)
    except ValueError:
        data = None
    if isinstance(data, dict):
        parsed = _from_mapping(data)
        if parsed is not None:
            return parsed
    return new_unknown(text)


def _has_code(err: BaseException | None, code: Code) -> bool:
    parsed = parse(err)
    return parsed is not None and parsed.code == code


def is_ok(err: BaseException | None) -> bool:
    return _has_code(err, Code.OK)


def is_unknown(err: BaseException | None) -> bool:
    return _has_code(err, Code.UNKNOWN)


def is_internal(err: BaseException | None) -> bool:
    return _has_code(err, Code.INTERNAL)


def is_unauthorized(err: BaseException | None) -> bool:
    return _has_code(err, Code.UNAUTHORIZED)


def is_forbidden(err: BaseException | None) -> bool:
    return _has_code(err, Code.FORBIDDEN)


def is_not_found(err: BaseException | None) -> bool:
    return _has_code(err, Code.NOT_FOUND)


def is_conflict(err: BaseException | None) -> bool:
    return _has_code(err, Code.CONFLICT)


def is_too_many_requests(err: BaseException | None) -> bool:
    return _has_code(err, Code.TOO_MANY_REQUESTS)


def is_client_closed(err: BaseException | None) -> bool:
    return _has_code(err, Code.CLIENT_CLOSED)


def is_not_implemented(err: BaseException | None) -> bool:
    return _has_code(err, Code.NOT_IMPLEMENTED)


def is_unavailable(err: BaseException | None) -> bool:
    return _has_code(err, Code.UNAVAILABLE)


def is_gateway_timeout(err: BaseException | None) -> bool:
    return _has_code(err, Code.GATEWAY_TIMEOUT)