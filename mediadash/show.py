"""Show model, normalisation, validation and the show service."""

from __future__ import annotations

import dataclasses
import json
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Protocol

from mediadash import normalize
from mediadash.hooks import Dispatcher, Event, NoopDispatcher, to_jsonable
from mediadash.httpx import InputError, validate_optional_date, validate_var

STATUS_ONGOING = "ongoing"
STATUS_FINISHED = "finished"

_ONGOING_ALIASES = frozenset(
    {"releasing", "continuing", "upcoming", "in production", "returning series", "current series"}
)
_FINISHED_ALIASES = frozenset({"ended", "completed", "cancelled", "canceled"})


def normalize_status(value: str) -> str:
    """Map a provider status onto ``ongoing``/``finished``, or ``""`` if unknown."""
    normalized = normalize.clean_lower(value)
    if normalized == STATUS_ONGOING or normalized in _ONGOING_ALIASES:
        return STATUS_ONGOING
    if normalized == STATUS_FINISHED or normalized in _FINISHED_ALIASES:
        return STATUS_FINISHED
    return ""


def normalize_status_or_default(value: str, fallback: str) -> str:
    """Like :func:`normalize_status` but returning ``fallback`` for unknown values."""
    return normalize_status(value) or fallback


@dataclass
class Show:
    """A show as sent by clients and metadata providers."""

    external_id: str = ""
    title_preferred: str = ""
    title_original: str | None = None
    alt_titles: list[str] = field(default_factory=list)
    type: str = ""
    status: str = ""
    synopsis: str | None = None
    start_date: str | None = None
    end_date: str | None = None
    poster_url: str | None = None
    banner_url: str | None = None
    season_count: int | None = None
    episode_count: int | None = None

    def to_dict(self) -> dict[str, Any]:
        """Return the JSON representation, leaving out empty optional fields."""
        body: dict[str, Any] = {}
        if self.external_id:
            body["externalId"] = self.external_id
        body["titlePreferred"] = self.title_preferred
        _put_optional(body, "titleOriginal", self.title_original)
        body["altTitles"] = list(self.alt_titles)
        body["type"] = self.type
        body["status"] = self.status
        _put_optional(body, "synopsis", self.synopsis)
        _put_optional(body, "startDate", self.start_date)
        _put_optional(body, "endDate", self.end_date)
        _put_optional(body, "posterUrl", self.poster_url)
        _put_optional(body, "bannerUrl", self.banner_url)
        _put_optional(body, "seasonCount", self.season_count)
        _put_optional(body, "episodeCount", self.episode_count)
        return body


def _put_optional(body: dict[str, Any], key: str, value: Any) -> None:
    if value is not None:
        body[key] = value


_STRING_FIELDS = {
    "externalId": "external_id",
    "titlePreferred": "title_preferred",
    "type": "type",
    "status": "status",
}
_OPTIONAL_STRING_FIELDS = {
    "titleOriginal": "title_original",
    "synopsis": "synopsis",
    "startDate": "start_date",
    "endDate": "end_date",
    "posterUrl": "poster_url",
    "bannerUrl": "banner_url",
}
_OPTIONAL_INT_FIELDS = {
    "seasonCount": "season_count",
    "episodeCount": "episode_count",
}


def _expect_str(key: str, value: Any) -> str:
    if not isinstance(value, str):
        raise InputError(f"{key} must be a string")
    return value


def _expect_int(key: str, value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise InputError(f"{key} must be an integer")
    return value


def show_from_dict(data: Any) -> Show:
    """Build a :class:`Show` from a decoded JSON body, raising ``InputError`` on bad types."""
    if not isinstance(data, Mapping):
        raise InputError("request body must be a JSON object")
    values: dict[str, Any] = {}
    for key, attr in _STRING_FIELDS.items():
        raw = data.get(key)
        if raw is not None:
            values[attr] = _expect_str(key, raw)
    for key, attr in _OPTIONAL_STRING_FIELDS.items():
        raw = data.get(key)
        if raw is not None:
            values[attr] = _expect_str(key, raw)
    for key, attr in _OPTIONAL_INT_FIELDS.items():
        raw = data.get(key)
        if raw is not None:
            values[attr] = _expect_int(key, raw)
    alt_titles = data.get("altTitles")
    if alt_titles is not None:
        if not isinstance(alt_titles, list):
            raise InputError("altTitles must be an array of strings")
        values["alt_titles"] = [_expect_str("altTitles", item) for item in alt_titles]
    return Show(**values)


@dataclass
class ShowRecord:
    """A stored show row."""

    internal_show_id: str
    title_preferred: str = ""
    title_original: str | None = None
    alt_titles: list[str] = field(default_factory=list)
    type: str = ""
    status: str = ""
    synopsis: str | None = None
    start_date: str | None = None
    end_date: str | None = None
    poster_url: str | None = None
    banner_url: str | None = None
    season_count: int | None = None
    episode_count: int | None = None
    external_ids: bytes = b""
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


def normalize_show(show: Show) -> Show:
    """Return a copy of ``show`` with strings stripped and blank optionals removed."""
    return dataclasses.replace(
        show,
        external_id=normalize.clean(show.external_id),
        title_preferred=normalize.clean(show.title_preferred),
        title_original=normalize.clean_optional(show.title_original),
        synopsis=normalize.clean_optional(show.synopsis),
        start_date=normalize.clean_optional(show.start_date),
        end_date=normalize.clean_optional(show.end_date),
        poster_url=normalize.clean_optional(show.poster_url),
        banner_url=normalize.clean_optional(show.banner_url),
        alt_titles=normalize.clean_list(show.alt_titles),
    )


def _validate_optional_int(value: int | None, rule: str, message: str) -> None:
    if value is not None:
        validate_var(value, rule, message)


def validate_show(show: Show) -> None:
    """Raise ``InputError`` naming the first invalid field of ``show``."""
    if show.external_id:
        validate_var(show.external_id, "max=128", "externalId is invalid")
    validate_var(show.title_preferred, "required,max=500", "titlePreferred is invalid")
    validate_var(show.type, "required,oneof=anime tv movie ova special", "type is invalid")
    validate_var(show.status, "required,oneof=ongoing finished", "status is invalid")
    validate_optional_date(show.start_date, "startDate is invalid")
    validate_optional_date(show.end_date, "endDate is invalid")
    _validate_optional_int(show.season_count, "gte=0", "seasonCount is invalid")
    _validate_optional_int(show.episode_count, "gte=0", "episodeCount is invalid")


def validate_show_id(value: str) -> None:
    """Raise ``InputError`` unless ``value`` is a UUID v4."""
    validate_var(value, "required,uuid4", "internalShowId is invalid")


_HTML_ESCAPES = (
    ("<", "\\u003c"),
    (">", "\\u003e"),
    ("&", "\\u0026"),
    ("\u2028", "\\u2028"),
    ("\u2029", "\\u2029"),
)


def _compact_json(value: Any) -> bytes:
    encoded = json.dumps(value, ensure_ascii=False, separators=(",", ":"))
    for char, escape in _HTML_ESCAPES:
        encoded = encoded.replace(char, escape)
    return encoded.encode("utf-8")


def marshal_external_id(external_id: str) -> bytes:
    """Encode the external id as the stored JSON document."""
    external_id = external_id.strip()
    if not external_id:
        return b"{}"
    return _compact_json({"externalId": external_id})


def unmarshal_external_id(raw: bytes | str | None) -> str:
    """Decode the stored JSON document back into the external id."""
    if not raw:
        return ""
    data = json.loads(raw)
    if data is None:
        return ""
    if not isinstance(data, dict):
        raise ValueError("external ids must be a JSON object")
    value = data.get("externalId")
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ValueError("externalId must be a string")
    return value.strip()


def to_show_response(record: ShowRecord) -> dict[str, Any]:
    """Return the client-facing JSON body for a stored show."""
    show = Show(
        external_id=unmarshal_external_id(record.external_ids),
        title_preferred=record.title_preferred,
        title_original=record.title_original,
        alt_titles=normalize.clean_list(record.alt_titles),
        type=record.type,
        status=record.status,
        synopsis=record.synopsis,
        start_date=record.start_date,
        end_date=record.end_date,
        poster_url=record.poster_url,
        banner_url=record.banner_url,
        season_count=record.season_count,
        episode_count=record.episode_count,
    )
    return {
        "internalShowId": record.internal_show_id,
        **show.to_dict(),
        "createdAt": to_jsonable(record.created_at),
        "updatedAt": to_jsonable(record.updated_at),
    }


class _EpisodeRow(Protocol):
    episode_number: int
    air_date: str | None


class _ShowQueries(Protocol):
    def create_show(self, **fields: Any) -> ShowRecord: ...

    def list_shows(self) -> list[ShowRecord]: ...

    def get_show_by_id(self, show_id: str) -> ShowRecord: ...

    def update_show(self, internal_show_id: str, **fields: Any) -> ShowRecord: ...

    def delete_show(self, show_id: str) -> Any: ...

    def list_episodes_by_show_id(self, show_id: str) -> Iterable[_EpisodeRow]: ...


def _show_fields(show: Show, external_ids: bytes) -> dict[str, Any]:
    return {
        "title_preferred": show.title_preferred,
        "title_original": show.title_original,
        "alt_titles": list(show.alt_titles),
        "type": show.type,
        "status": show.status,
        "synopsis": show.synopsis,
        "start_date": show.start_date,
        "end_date": show.end_date,
        "poster_url": show.poster_url,
        "banner_url": show.banner_url,
        "season_count": show.season_count,
        "episode_count": show.episode_count,
        "external_ids": external_ids,
    }


class ShowService:
    """Show operations over a query layer, firing hooks around every change.

    The query layer raises ``NoRowsError`` when a show does not exist.
    """

    def __init__(self, queries: _ShowQueries, dispatcher: Dispatcher | None = None) -> None:
        self._queries = queries
        self._hooks = dispatcher if dispatcher is not None else NoopDispatcher()

    def create_show(self, show: Show) -> ShowRecord:
        self._hooks.dispatch_pre(Event.SHOW_CREATE_PRE, show)
        external_ids = marshal_external_id(show.external_id)
        created = self._queries.create_show(**_show_fields(show, external_ids))
        self._hooks.dispatch_post(Event.SHOW_CREATE_POST, created)
        return created

    def list_shows(self) -> list[ShowRecord]:
        return list(self._queries.list_shows())

    def get_show(self, show_id: str) -> ShowRecord:
        return self._queries.get_show_by_id(show_id)

    def update_show(self, show_id: str, show: Show) -> ShowRecord:
        self._hooks.dispatch_pre(
            Event.SHOW_UPDATE_PRE, {"internalShowId": show_id, "request": show}
        )
        external_ids = marshal_external_id(show.external_id)
        updated = self._queries.update_show(
            internal_show_id=show_id, **_show_fields(show, external_ids)
        )
        self._hooks.dispatch_post(Event.SHOW_UPDATE_POST, updated)
        return updated

    def delete_show(self, show_id: str) -> None:
        self._hooks.dispatch_pre(Event.SHOW_DELETE_PRE, {"internalShowId": show_id})
        self._queries.delete_show(show_id)
        self._hooks.dispatch_post(Event.SHOW_DELETE_POST, {"internalShowId": show_id})

    def list_worker_data(self) -> list[dict[str, Any]]:
        """Return every show with its episodes in the worker payload format."""
        response: list[dict[str, Any]] = []
        for record in self._queries.list_shows():
            external_id = unmarshal_external_id(record.external_ids)
            episodes = self._queries.list_episodes_by_show_id(record.internal_show_id)
            response.append(
                {
                    "internalShowId": record.internal_show_id,
                    "show": {
                        "externalId": external_id,
                        "altTitles": normalize.clean_list(record.alt_titles),
                    },
                    "episodes": [
                        {"episodeNumber": episode.episode_number, "airDate": episode.air_date}
                        for episode in episodes
                    ],
                }
            )
        return response