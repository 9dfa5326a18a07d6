"""Request helpers: input errors, database error mapping, parsing, validation and rate limiting."""

from __future__ import annotations

import math
import re
import threading
import time
from collections.abc import Callable, Iterator
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from mediadash import httperr

UNIQUE_VIOLATION = "23505"
FOREIGN_KEY_VIOLATION = "23503"
CHECK_VIOLATION = "23514"

_INT64_MAX = 2**63 - 1
_INTEGER = re.compile(r"[+-]?[0-9]+")
_UUID4 = re.compile(r"[0-9a-f]{8}-[0-9a-f]{4}-4[0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}")


class InputError(ValueError):
    """Invalid client input; answered with a 400 response."""


class NoRowsError(LookupError):
    """A query that should return a row returned none."""

    def __init__(self, message: str = "no rows in result set") -> None:
        super().__init__(message)


class DatabaseError(Exception):
    """A database error carrying its SQLSTATE code."""

    def __init__(self, message: str, code: str = "") -> None:
        super().__init__(message)
        self.code = code


def _chain(err: BaseException) -> Iterator[BaseException]:
    seen: set[int] = set()
    current: BaseException | None = err
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        yield current
        current = current.__cause__


def _sqlstate(err: BaseException) -> str | None:
    for item in _chain(err):
        if isinstance(item, DatabaseError):
            return item.code
        orig = getattr(item, "orig", None)
        for attr in ("pgcode", "sqlstate"):
            code = getattr(orig, attr, None)
            if isinstance(code, str) and code:
                return code
    return None


def _is_no_rows(err: BaseException) -> bool:
    return any(isinstance(item, NoRowsError) for item in _chain(err))


def db_error(err: BaseException | None, internal_message: str) -> httperr.HTTPError | None:
    """Map a database error to the HTTP error answered to the client."""
    if err is None:
        return None
    if _is_no_rows(err):
        return httperr.not_found("resource not found").with_cause(err)
    code = _sqlstate(err)
    if code == UNIQUE_VIOLATION:
        return httperr.conflict("resource already exists").with_cause(err)
    if code in (FOREIGN_KEY_VIOLATION, CHECK_VIOLATION):
        return httperr.bad_request("invalid input").with_cause(err)
    return httperr.internal(internal_message).with_cause(err)


def db_error_not_found_message(
    err: BaseException | None, not_found_message: str, internal_message: str
) -> httperr.HTTPError | None:
    """Like :func:`db_error` but with a custom not-found message."""
    if err is None:
        return None
    if _is_no_rows(err):
        return httperr.not_found(not_found_message).with_cause(err)
    return db_error(err, internal_message)


def parse_positive_int(raw: str | None, fallback: int) -> int:
    """Parse a strictly formatted positive integer, returning ``fallback`` otherwise."""
    if raw is None or not raw.strip():
        return fallback
    if not _INTEGER.fullmatch(raw):
        return fallback
    parsed = int(raw)
    if parsed < 1 or parsed > _INT64_MAX:
        return fallback
    return parsed


def _has_value(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, (str, bytes, list, tuple, dict, set)):
        return len(value) > 0
    if isinstance(value, (int, float)):
        return value != 0
    return True


def _measure(value: Any) -> float:
    if isinstance(value, (str, bytes, list, tuple, dict, set)):
        return len(value)
    if isinstance(value, (int, float)):
        return value
    raise ValueError(f"cannot measure value of type {type(value).__name__}")


def _number(param: str) -> float:
    try:
        return int(param)
    except ValueError:
        return float(param)


_LAYOUT_TOKENS = (
    ("2006", "year", r"[0-9]{4}"),
    ("01", "month", r"[0-9]{2}"),
    ("02", "day", r"[0-9]{2}"),
    ("15", "hour", r"[0-9]{2}"),
    ("04", "minute", r"[0-9]{2}"),
    ("05", "second", r"[0-9]{2}"),
)


def _layout_pattern(layout: str) -> re.Pattern[str]:
    parts: list[str] = []
    position = 0
    while position < len(layout):
        for token, name, pattern in _LAYOUT_TOKENS:
            if layout.startswith(token, position):
                parts.append(f"(?P<{name}>{pattern})")
                position += len(token)
                break
        else:
            parts.append(re.escape(layout[position]))
            position += 1
    return re.compile("".join(parts))


def _matches_layout(value: str, layout: str) -> bool:
    match = _layout_pattern(layout).fullmatch(value)
    if match is None:
        return False
    fields = {key: int(number) for key, number in match.groupdict().items()}
    try:
        datetime(
            fields.get("year", 2000),
            fields.get("month", 1),
            fields.get("day", 1),
            fields.get("hour", 0),
            fields.get("minute", 0),
            fields.get("second", 0),
        )
    except ValueError:
        return False
    return True


_COMPARISONS: dict[str, Callable[[float, float], bool]] = {
    "gt": lambda a, b: a > b,
    "gte": lambda a, b: a >= b,
    "lt": lambda a, b: a < b,
    "lte": lambda a, b: a <= b,
    "min": lambda a, b: a >= b,
    "max": lambda a, b: a <= b,
}


def _check(value: Any, tag: str) -> bool:
    name, _, param = tag.strip().partition("=")
    if name == "required":
        return _has_value(value)
    if name == "uuid4":
        return isinstance(value, str) and _UUID4.fullmatch(value) is not None
    if name in _COMPARISONS:
        return _COMPARISONS[name](_measure(value), _number(param))
    if name == "oneof":
        return str(value) in param.split()
    if name == "datetime":
        return isinstance(value, str) and _matches_layout(value, param)
    raise ValueError(f"unsupported validation rule {name!r}")


def validate_var(value: Any, rule: str, message: str) -> None:
    """Check ``value`` against a comma-separated rule list, raising ``InputError(message)``."""
    for tag in rule.split(","):
        if not _check(value, tag):
            raise InputError(message)


def validate_optional_date(value: str | None, message: str) -> None:
    """Check an optional ``YYYY-MM-DD`` date."""
    if value is None:
        return
    validate_var(value, "datetime=2006-01-02", message)


@dataclass
class _Visitor:
    tokens: float
    updated: float
    last_seen: float


class IPRateLimiter:
    """Token-bucket rate limiter keyed by client IP with idle-entry expiry."""

    def __init__(
        self,
        limit: float,
        burst: int,
        ttl: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.limit = limit
        self.burst = burst
        self.ttl = ttl
        self._clock = clock
        self._visitors: dict[str, _Visitor] = {}
        self._lock = threading.Lock()

    def allow(self, ip: str) -> bool:
        """Consume one token for ``ip``; return whether the request may proceed."""
        now = self._clock()
        with self._lock:
            self._visitors = {
                key: visitor
                for key, visitor in self._visitors.items()
                if now - visitor.last_seen <= self.ttl
            }
            visitor = self._visitors.get(ip)
            if visitor is None:
                visitor = _Visitor(tokens=float(self.burst), updated=now, last_seen=now)
                self._visitors[ip] = visitor
            visitor.last_seen = now
            return self._take(visitor, now)

    def _take(self, visitor: _Visitor, now: float) -> bool:
        if math.isinf(self.limit):
            return True
        elapsed = max(0.0, now - visitor.updated)
        visitor.tokens = min(float(self.burst), visitor.tokens + elapsed * self.limit)
        visitor.updated = now
        if visitor.tokens >= 1:
            visitor.tokens -= 1
            return True
        return False