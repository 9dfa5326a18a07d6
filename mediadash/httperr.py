"""HTTP-facing error type and its constructors."""

from __future__ import annotations

from http import HTTPStatus
from typing import Any


class HTTPError(Exception):
    """An error that carries an HTTP status, a machine code and a message."""

    def __init__(
        self,
        status: int,
        code: str,
        message: str,
        details: Any = None,
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(message)
        self.status = int(status)
        self.code = code
        self.message = message
        self.details = details
        self.cause: BaseException | None = None
        if cause is not None:
            self.with_cause(cause)

    def __str__(self) -> str:
        return self.message

    def with_details(self, details: Any) -> HTTPError:
        """Attach details shown to the client and return ``self``."""
        self.details = details
        return self

    def with_cause(self, cause: BaseException | None) -> HTTPError:
        """Record the underlying error and return ``self``."""
        self.cause = cause
        self.__cause__ = cause
        return self

    def to_response(self) -> dict[str, Any]:
        """Return the JSON body sent to the client."""
        body: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details is not None:
            body["details"] = self.details
        return {"error": body}


def bad_request(message: str) -> HTTPError:
    return HTTPError(HTTPStatus.BAD_REQUEST, "BAD_REQUEST", message)


def unauthorized(message: str) -> HTTPError:
    return HTTPError(HTTPStatus.UNAUTHORIZED, "UNAUTHORIZED", message)


def not_found(message: str) -> HTTPError:
    return HTTPError(HTTPStatus.NOT_FOUND, "NOT_FOUND", message)


def validation(message: str) -> HTTPError:
    return HTTPError(HTTPStatus.UNPROCESSABLE_ENTITY, "VALIDATION_ERROR", message)


def conflict(message: str) -> HTTPError:
    return HTTPError(HTTPStatus.CONFLICT, "CONFLICT", message)


def payload_too_large(message: str) -> HTTPError:
    return HTTPError(HTTPStatus.REQUEST_ENTITY_TOO_LARGE, "PAYLOAD_TOO_LARGE", message)


def too_many_requests(message: str) -> HTTPError:
    return HTTPError(HTTPStatus.TOO_MANY_REQUESTS, "TOO_MANY_REQUESTS", message)


def internal(message: str) -> HTTPError:
    return HTTPError(HTTPStatus.INTERNAL_SERVER_ERROR, "INTERNAL_ERROR", message)


def from_exception(err: BaseException | None) -> HTTPError | None:
    """Find an ``HTTPError`` in the cause chain of ``err`` or wrap it as internal."""
    if err is None:
        return None
    seen: set[int] = set()
    current: BaseException | None = err
    while current is not None and id(current) not in seen:
        if isinstance(current, HTTPError):
            return current
        seen.add(id(current))
        current = current.__cause__
    return internal("Internal Server Error").with_cause(err)