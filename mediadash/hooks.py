"""Hook events, their stored target URLs and the dispatchers that call them."""

from __future__ import annotations

import base64
import dataclasses
import json
import logging
from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any

import requests
from sqlalchemy import DateTime, String, bindparam, text
from sqlalchemy.engine import Engine

from mediadash.httpx import NoRowsError

logger = logging.getLogger(__name__)

HOOK_REQUEST_TIMEOUT = 5.0


class Event(str, Enum):
    SHOW_CREATE_PRE = "show.create.pre"
    SHOW_CREATE_POST = "show.create.post"
    SHOW_UPDATE_PRE = "show.update.pre"
    SHOW_UPDATE_POST = "show.update.post"
    SHOW_DELETE_PRE = "show.delete.pre"
    SHOW_DELETE_POST = "show.delete.post"
    EPISODE_CREATE_PRE = "episode.create.pre"
    EPISODE_CREATE_POST = "episode.create.post"
    EPISODE_UPDATE_PRE = "episode.update.pre"
    EPISODE_UPDATE_POST = "episode.update.post"
    EPISODE_DELETE_PRE = "episode.delete.pre"
    EPISODE_DELETE_POST = "episode.delete.post"


_EVENT_VALUES = frozenset(event.value for event in Event)


def _event_value(event: Event | str) -> str:
    return event.value if isinstance(event, Event) else str(event)


def _as_event(name: str) -> Event | str:
    return Event(name) if name in _EVENT_VALUES else name


def all_events() -> list[Event]:
    """Return every predefined hook event, in declaration order."""
    return list(Event)


def is_valid_event(event: Event | str) -> bool:
    return _event_value(event) in _EVENT_VALUES


def _invalid_event(event: Event | str) -> ValueError:
    return ValueError(f"invalid hook event {json.dumps(_event_value(event))}")


class Dispatcher(ABC):
    """Sends lifecycle events to their configured hooks."""

    @abstractmethod
    def dispatch_pre(self, event: Event, payload: Any) -> None:
        """Send a pre-event; raising aborts the operation."""

    @abstractmethod
    def dispatch_post(self, event: Event, payload: Any) -> None:
        """Send a post-event; failures never propagate."""


class NoopDispatcher(Dispatcher):
    """A dispatcher that does nothing."""

    def dispatch_pre(self, event: Event, payload: Any) -> None:
        return None

    def dispatch_post(self, event: Event, payload: Any) -> None:
        return None


@dataclass
class HookConfig:
    event: Event | str
    url: str
    updated_at: datetime


def _format_time(value: datetime) -> str:
    stamp = value.strftime("%Y-%m-%dT%H:%M:%S")
    if value.microsecond:
        stamp += f".{value.microsecond:06d}".rstrip("0")
    offset = value.utcoffset()
    if offset is None or not offset:
        return stamp + "Z"
    minutes = int(offset.total_seconds()) // 60
    sign = "+" if minutes >= 0 else "-"
    hours, minutes = divmod(abs(minutes), 60)
    return f"{stamp}{sign}{hours:02d}:{minutes:02d}"


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part[:1].upper() + part[1:] for part in rest)


def to_jsonable(value: Any) -> Any:
    """Convert a payload into plain JSON-serialisable data."""
    if isinstance(value, Enum):
        return to_jsonable(value.value)
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, datetime):
        return _format_time(value)
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, (bytes, bytearray)):
        return base64.b64encode(bytes(value)).decode("ascii")
    to_dict = getattr(value, "to_dict", None)
    if callable(to_dict):
        return to_jsonable(to_dict())
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return {
            _camel(field.name): to_jsonable(getattr(value, field.name))
            for field in dataclasses.fields(value)
        }
    if isinstance(value, Mapping):
        return {str(key): to_jsonable(item) for key, item in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [to_jsonable(item) for item in value]
    raise TypeError(f"cannot serialise value of type {type(value).__name__}")


_CREATE_TABLE = text(
    """
CREATE TABLE IF NOT EXISTS hook_settings (
    event_name TEXT PRIMARY KEY,
    target_url TEXT NOT NULL DEFAULT '',
    updated_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP
)
"""
)

_SEED = text(
    """
INSERT INTO hook_settings (event_name, target_url, updated_at)
VALUES (:event_name, '', :now)
ON CONFLICT (event_name) DO NOTHING
"""
).bindparams(bindparam("now", type_=DateTime(timezone=True)))

_UPSERT = text(
    """
INSERT INTO hook_settings (event_name, target_url, updated_at)
VALUES (:event_name, :url, :now)
ON CONFLICT (event_name)
DO UPDATE SET target_url = excluded.target_url, updated_at = excluded.updated_at
"""
).bindparams(bindparam("now", type_=DateTime(timezone=True)))

_CONFIG_COLUMNS = {
    "event_name": String,
    "target_url": String,
    "updated_at": DateTime(timezone=True),
}

_LIST = text(
    """
SELECT event_name, target_url, updated_at
FROM hook_settings
ORDER BY event_name ASC
"""
).columns(**_CONFIG_COLUMNS)

_GET = text(
    """
SELECT event_name, target_url, updated_at
FROM hook_settings
WHERE event_name = :event_name
"""
).columns(**_CONFIG_COLUMNS)

_TARGET_URL = text("SELECT target_url FROM hook_settings WHERE event_name = :event_name")


def _aware(value: datetime) -> datetime:
    return value.replace(tzinfo=timezone.utc) if value.tzinfo is None else value


def _row_to_config(row: Any) -> HookConfig:
    return HookConfig(
        event=_as_event(row.event_name),
        url=row.target_url,
        updated_at=_aware(row.updated_at),
    )


def ensure_store(engine: Engine) -> None:
    """Create the settings table if needed and seed a row for every event."""
    now = datetime.now(timezone.utc)
    with engine.begin() as conn:
        conn.execute(_CREATE_TABLE)
        conn.execute(_SEED, [{"event_name": event.value, "now": now} for event in Event])


def list_configs(engine: Engine) -> list[HookConfig]:
    """Return every stored hook setting ordered by event name."""
    with engine.connect() as conn:
        return [_row_to_config(row) for row in conn.execute(_LIST)]


def upsert_config(engine: Engine, event: Event | str, raw_url: str) -> HookConfig:
    """Store the target URL for ``event`` and return the saved setting."""
    if not is_valid_event(event):
        raise _invalid_event(event)
    name = _event_value(event)
    with engine.begin() as conn:
        conn.execute(
            _UPSERT,
            {"event_name": name, "url": raw_url.strip(), "now": datetime.now(timezone.utc)},
        )
        row = conn.execute(_GET, {"event_name": name}).one()
    return _row_to_config(row)


class HTTPDispatcher(Dispatcher):
    """Posts events as JSON to the URL stored for them."""

    def __init__(
        self,
        engine: Engine,
        session: requests.Session | None = None,
        timeout: float = HOOK_REQUEST_TIMEOUT,
    ) -> None:
        ensure_store(engine)
        self._engine = engine
        self._session = session or requests.Session()
        self._timeout = timeout

    def dispatch_pre(self, event: Event, payload: Any) -> None:
        self._dispatch(event, payload)

    def dispatch_post(self, event: Event, payload: Any) -> None:
        try:
            self._dispatch(event, payload)
        except Exception as err:
            logger.error("hook dispatch failed event=%s err=%s", _event_value(event), err)

    def _dispatch(self, event: Event | str, payload: Any) -> None:
        if not is_valid_event(event):
            raise _invalid_event(event)
        name = _event_value(event)

        with self._engine.connect() as conn:
            row = conn.execute(_TARGET_URL, {"event_name": name}).first()
        if row is None:
            raise NoRowsError()
        target_url = (row[0] or "").strip()
        if not target_url:
            return

        body = json.dumps(
            {
                "event": name,
                "payload": to_jsonable(payload),
                "timestamp": _format_time(datetime.now(timezone.utc)),
            }
        ).encode("utf-8")
        response = self._session.post(
            target_url,
            data=body,
            headers={"Content-Type": "application/json", "X-Hook-Event": name},
            timeout=self._timeout,
        )
        with response:
            if not 200 <= response.status_code < 300:
                raise RuntimeError(f"hook endpoint returned status {response.status_code}")