"""Episode model, normalisation, validation and the episode service."""

from __future__ import annotations

import dataclasses
import json
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Protocol

from mediadash import normalize
from mediadash.hooks import Dispatcher, Event, NoopDispatcher, to_jsonable
from mediadash.httpx import InputError, validate_optional_date, validate_var

_INT64_MIN = -(2**63)
_INT64_MAX = 2**63 - 1


@dataclass(frozen=True)
class ExternalIds:
    """Provider ids that identify an episode."""

    anilist: int | None = None
    tvdb: int | None = None

    def to_dict(self) -> dict[str, int]:
        """Return the JSON representation, leaving out missing ids."""
        body: dict[str, int] = {}
        if self.anilist is not None:
            body["anilist"] = self.anilist
        if self.tvdb is not None:
            body["tvdb"] = self.tvdb
        return body


@dataclass
class EpisodeRequest:
    """An episode as sent by clients for create and update."""

    show_id: str = ""
    season_number: int = 0
    episode_number: int = 0
    title: str = ""
    air_date: str | None = None
    runtime_minutes: int | None = None
    external_ids: ExternalIds = field(default_factory=ExternalIds)

    def to_dict(self) -> dict[str, Any]:
        return {
            "showId": self.show_id,
            "seasonNumber": self.season_number,
            "episodeNumber": self.episode_number,
            "title": self.title,
            "airDate": self.air_date,
            "runtimeMinutes": self.runtime_minutes,
            "externalIds": self.external_ids.to_dict(),
        }


@dataclass
class EpisodeRecord:
    """A stored episode row."""

    internal_episode_id: str
    show_id: str = ""
    season_number: int = 0
    episode_number: int = 0
    title: str = ""
    air_date: str | None = None
    runtime_minutes: int | None = None
    external_ids: bytes = b""
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


ErrorFactory = Callable[[str], Exception]


def _expect_str(key: str, value: Any, error: ErrorFactory) -> str:
    if not isinstance(value, str):
        raise error(f"{key} must be a string")
    return value


def _expect_int(key: str, value: Any, error: ErrorFactory) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise error(f"{key} must be an integer")
    if not _INT64_MIN <= value <= _INT64_MAX:
        raise error(f"{key} is out of range")
    return value


def _external_ids_from(data: Any, error: ErrorFactory) -> ExternalIds:
    if data is None:
        return ExternalIds()
    if not isinstance(data, Mapping):
        raise error("externalIds must be a JSON object")
    values: dict[str, int] = {}
    for key in ("anilist", "tvdb"):
        raw = data.get(key)
        if raw is not None:
            values[key] = _expect_int(f"externalIds.{key}", raw, error)
    return ExternalIds(**values)


def episode_request_from_dict(data: Any) -> EpisodeRequest:
    """Build an :class:`EpisodeRequest` from a decoded JSON body.

    Missing fields take their zero values; wrongly typed fields raise ``InputError``.
    """
    if data is None:
        data = {}
    if not isinstance(data, Mapping):
        raise InputError("request body must be a JSON object")
    values: dict[str, Any] = {}
    for key, attr in (("showId", "show_id"), ("title", "title")):
        raw = data.get(key)
        if raw is not None:
            values[attr] = _expect_str(key, raw, InputError)
    for key, attr in (("seasonNumber", "season_number"), ("episodeNumber", "episode_number")):
        raw = data.get(key)
        if raw is not None:
            values[attr] = _expect_int(key, raw, InputError)
    air_date = data.get("airDate")
    if air_date is not None:
        values["air_date"] = _expect_str("airDate", air_date, InputError)
    runtime = data.get("runtimeMinutes")
    if runtime is not None:
        values["runtime_minutes"] = _expect_int("runtimeMinutes", runtime, InputError)
    values["external_ids"] = _external_ids_from(data.get("externalIds"), InputError)
    return EpisodeRequest(**values)


def normalize_episode_request(request: EpisodeRequest) -> EpisodeRequest:
    """Return a copy with strings stripped and a blank air date removed."""
    return dataclasses.replace(
        request,
        show_id=normalize.clean(request.show_id),
        title=normalize.clean(request.title),
        air_date=normalize.clean_optional(request.air_date),
    )


def validate_external_ids(ids: ExternalIds) -> None:
    """Raise ``InputError`` unless at least one valid provider id is present."""
    if ids.anilist is None and ids.tvdb is None:
        raise InputError("externalIds must include at least one provider id")
    if ids.anilist is not None:
        validate_var(ids.anilist, "gt=0", "externalIds.anilist is invalid")
    if ids.tvdb is not None:
        validate_var(ids.tvdb, "gt=0", "externalIds.tvdb is invalid")


def validate_episode_request(request: EpisodeRequest) -> None:
    """Raise ``InputError`` naming the first invalid field of ``request``."""
    validate_var(request.show_id, "required,uuid4", "showId is invalid")
    validate_var(request.season_number, "gte=0", "seasonNumber is invalid")
    validate_var(request.episode_number, "gte=0", "episodeNumber is invalid")
    validate_var(request.title, "required,max=500", "title is invalid")
    validate_optional_date(request.air_date, "airDate is invalid")
    if request.runtime_minutes is not None:
        validate_var(request.runtime_minutes, "gte=0", "runtimeMinutes is invalid")
    validate_external_ids(request.external_ids)


def validate_episode_id(value: str) -> None:
    """Raise ``InputError`` unless ``value`` is a UUID v4."""
    validate_var(value, "required,uuid4", "internalEpisodeId is invalid")


def marshal_external_ids(ids: ExternalIds) -> bytes:
    """Encode the provider ids as the stored JSON document."""
    return json.dumps(ids.to_dict(), separators=(",", ":")).encode("utf-8")


def unmarshal_external_ids(raw: bytes | str | None) -> ExternalIds:
    """Decode the stored JSON document; raise ``ValueError`` if it is malformed."""
    if not raw:
        return ExternalIds()
    return _external_ids_from(json.loads(raw), ValueError)


def to_episode_response(record: EpisodeRecord) -> dict[str, Any]:
    """Return the client-facing JSON body for a stored episode."""
    ids = unmarshal_external_ids(record.external_ids)
    body: dict[str, Any] = {
        "internalEpisodeId": record.internal_episode_id,
        "showId": record.show_id,
        "seasonNumber": record.season_number,
        "episodeNumber": record.episode_number,
        "title": record.title,
    }
    if record.air_date is not None:
        body["airDate"] = record.air_date
    if record.runtime_minutes is not None:
        body["runtimeMinutes"] = record.runtime_minutes
    body["externalIds"] = ids.to_dict()
    body["createdAt"] = to_jsonable(record.created_at)
    body["updatedAt"] = to_jsonable(record.updated_at)
    return body


class _EpisodeQueries(Protocol):
    def create_episode(self, **fields: Any) -> EpisodeRecord: ...

    def list_episodes(self) -> Iterable[EpisodeRecord]: ...

    def get_episode_by_id(self, episode_id: str) -> EpisodeRecord: ...

    def update_episode(self, internal_episode_id: str, **fields: Any) -> EpisodeRecord: ...

    def delete_episode(self, episode_id: str) -> Any: ...


def _episode_fields(request: EpisodeRequest, external_ids: bytes) -> dict[str, Any]:
    return {
        "show_id": request.show_id,
        "season_number": request.season_number,
        "episode_number": request.episode_number,
        "title": request.title,
        "air_date": request.air_date,
        "runtime_minutes": request.runtime_minutes,
        "external_ids": external_ids,
    }


class EpisodeService:
    """Episode operations over a query layer, firing hooks around every change.

    The query layer raises ``NoRowsError`` when an episode does not exist.
    """

    def __init__(self, queries: _EpisodeQueries, dispatcher: Dispatcher | None = None) -> None:
        self._queries = queries
        self._hooks = dispatcher if dispatcher is not None else NoopDispatcher()

    def create_episode(self, request: EpisodeRequest) -> EpisodeRecord:
        self._hooks.dispatch_pre(Event.EPISODE_CREATE_PRE, request)
        external_ids = marshal_external_ids(request.external_ids)
        created = self._queries.create_episode(**_episode_fields(request, external_ids))
        self._hooks.dispatch_post(Event.EPISODE_CREATE_POST, created)
        return created

    def list_episodes(self) -> list[EpisodeRecord]:
        return list(self._queries.list_episodes())

    def get_episode(self, episode_id: str) -> EpisodeRecord:
        return self._queries.get_episode_by_id(episode_id)

    def update_episode(self, episode_id: str, request: EpisodeRequest) -> EpisodeRecord:
        self._hooks.dispatch_pre(
            Event.EPISODE_UPDATE_PRE, {"internalEpisodeId": episode_id, "request": request}
        )
        external_ids = marshal_external_ids(request.external_ids)
        updated = self._queries.update_episode(
            internal_episode_id=episode_id, **_episode_fields(request, external_ids)
        )
        self._hooks.dispatch_post(Event.EPISODE_UPDATE_POST, updated)
        return updated

    def delete_episode(self, episode_id: str) -> None:
        self._hooks.dispatch_pre(Event.EPISODE_DELETE_PRE, {"internalEpisodeId": episode_id})
        self._queries.delete_episode(episode_id)
        self._hooks.dispatch_post(Event.EPISODE_DELETE_POST, {"internalEpisodeId": episode_id})