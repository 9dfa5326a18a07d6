import math
from http import HTTPStatus

import pytest

from mediadash.httpx import (
    DatabaseError,
    InputError,
    IPRateLimiter,
    NoRowsError,
    db_error,
    db_error_not_found_message,
    parse_positive_int,
    validate_optional_date,
    validate_var,
)


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


VALID_UUID4 = "123e4567-e89b-42d3-a456-426614174000"


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("", 7),
        ("   ", 7),
        (None, 7),
        ("12", 12),
        ("+3", 3),
        ("0", 7),
        ("-4", 7),
        (" 5", 7),
        ("abc", 7),
        ("1_000", 7),
        ("99999999999999999999", 7),
    ],
)
def test_parse_positive_int(raw, expected):
    assert parse_positive_int(raw, 7) == expected


def test_validate_uuid4():
    assert validate_var(VALID_UUID4, "required,uuid4", "id is invalid") is None
    with pytest.raises(InputError, match="id is invalid"):
        validate_var(VALID_UUID4.upper(), "required,uuid4", "id is invalid")
    with pytest.raises(InputError):
        validate_var("", "required,uuid4", "id is invalid")
    with pytest.raises(InputError):
        validate_var("123e4567-e89b-12d3-a456-426614174000", "uuid4", "id is invalid")


def test_validate_numeric_rules():
    assert validate_var(0, "gte=0", "n is invalid") is None
    with pytest.raises(InputError, match="n is invalid"):
        validate_var(-1, "gte=0", "n is invalid")
    with pytest.raises(InputError):
        validate_var(0, "gt=0", "n is invalid")


def test_validate_string_length():
    assert validate_var("a" * 500, "required,max=500", "title is invalid") is None
    with pytest.raises(InputError, match="title is invalid"):
        validate_var("a" * 501, "required,max=500", "title is invalid")
    with pytest.raises(InputError):
        validate_var("", "required,max=500", "title is invalid")


def test_validate_oneof():
    rule = "required,oneof=anime tv movie ova special"
    assert validate_var("ova", rule, "type is invalid") is None
    with pytest.raises(InputError, match="type is invalid"):
        validate_var("cartoon", rule, "type is invalid")


def test_validate_optional_date():
    assert validate_optional_date(None, "date is invalid") is None
    assert validate_optional_date("2024-02-29", "date is invalid") is None
    for bad in ("2023-02-29", "2024-1-05", "2024-13-01", "24-01-01", "2024-01-01T00:00"):
        with pytest.raises(InputError, match="date is invalid"):
            validate_optional_date(bad, "date is invalid")


def test_unknown_rule_is_programming_error():
    with pytest.raises(ValueError, match="unsupported"):
        validate_var("x", "email", "bad")


def test_db_error_none():
    assert db_error(None, "failed") is None
    assert db_error_not_found_message(None, "missing", "failed") is None


def test_db_error_no_rows():
    cause = NoRowsError()
    err = db_error(cause, "failed")
    assert err.status == HTTPStatus.NOT_FOUND
    assert err.message == "resource not found"
    assert err.cause is cause


def test_db_error_wrapped_no_rows():
    outer = RuntimeError("query failed")
    outer.__cause__ = NoRowsError()
    assert db_error(outer, "failed").status == HTTPStatus.NOT_FOUND


@pytest.mark.parametrize(
    "code, status, message",
    [
        ("23505", HTTPStatus.CONFLICT, "resource already exists"),
        ("23503", HTTPStatus.BAD_REQUEST, "invalid input"),
        ("23514", HTTPStatus.BAD_REQUEST, "invalid input"),
        ("42P01", HTTPStatus.INTERNAL_SERVER_ERROR, "failed to create"),
    ],
)
def test_db_error_sqlstate(code, status, message):
    err = db_error(DatabaseError("db", code=code), "failed to create")
    assert err.status == status
    assert err.message == message


def test_db_error_reads_driver_pgcode():
    class DriverError(Exception):
        pgcode = "23505"

    class WrappedError(Exception):
        def __init__(self, orig):
            super().__init__("wrapped")
            self.orig = orig

    err = db_error(WrappedError(DriverError()), "failed")
    assert err.status == HTTPStatus.CONFLICT


def test_db_error_plain_error_is_internal():
    err = db_error(RuntimeError("boom"), "failed to list shows")
    assert err.status == HTTPStatus.INTERNAL_SERVER_ERROR
    assert err.message == "failed to list shows"


def test_db_error_not_found_message():
    err = db_error_not_found_message(NoRowsError(), "show not found", "failed")
    assert err.status == HTTPStatus.NOT_FOUND
    assert err.message == "show not found"
    other = db_error_not_found_message(DatabaseError("dup", "23505"), "show not found", "failed")
    assert other.status == HTTPStatus.CONFLICT


def test_rate_limiter_burst_and_refill():
    clock = FakeClock()
    limiter = IPRateLimiter(limit=1.0, burst=2, ttl=300.0, clock=clock)
    assert limiter.allow("10.0.0.1") is True
    assert limiter.allow("10.0.0.1") is True
    assert limiter.allow("10.0.0.1") is False
    assert limiter.allow("10.0.0.2") is True
    clock.now += 1.0
    assert limiter.allow("10.0.0.1") is True
    assert limiter.allow("10.0.0.1") is False


def test_rate_limiter_expires_idle_visitors():
    clock = FakeClock()
    limiter = IPRateLimiter(limit=0.0, burst=1, ttl=10.0, clock=clock)
    assert limiter.allow("10.0.0.1") is True
    assert limiter.allow("10.0.0.1") is False
    clock.now += 11.0
    assert limiter.allow("10.0.0.1") is True


def test_rate_limiter_infinite_limit_always_allows():
    limiter = IPRateLimiter(limit=math.inf, burst=0, ttl=1.0, clock=FakeClock())
    assert all(limiter.allow("10.0.0.1") for _ in range(50))