"""Service and HTTP routes for configuring hook target URLs."""

from __future__ import annotations

import json
from collections.abc import Iterable, Mapping
from typing import Any, Protocol

from flask import Blueprint, Response, jsonify, request

from mediadash import httperr
from mediadash.hooks import (
    Event,
    HookConfig,
    all_events,
    ensure_store,
    list_configs,
    to_jsonable,
    upsert_config,
)
from mediadash.httperr import HTTPError
from mediadash.httpx import InputError


class _HookStore(Protocol):
    def ensure(self) -> None: ...

    def list(self) -> list[HookConfig]: ...

    def upsert(self, event: Event, url: str) -> HookConfig: ...


class _SQLHookStore:
    """Hook settings kept in the ``hook_settings`` table."""

    def __init__(self, engine: Any) -> None:
        self._engine = engine

    def ensure(self) -> None:
        ensure_store(self._engine)

    def list(self) -> list[HookConfig]:
        return list(list_configs(self._engine))

    def upsert(self, event: Event, url: str) -> HookConfig:
        return upsert_config(self._engine, event, url)


def _event_value(event: Any) -> str:
    return str(getattr(event, "value", event))


def _to_event(raw: Any) -> Event:
    try:
        return Event(raw)
    except ValueError:
        raise ValueError(f"invalid hook event {json.dumps(str(raw))}") from None


def _config_to_dict(config: Any) -> dict[str, Any]:
    return {
        "event": _event_value(config.event),
        "url": config.url,
        "updatedAt": to_jsonable(config.updated_at),
    }


class HookSettingsService:
    """Lists and updates the target URL of every predefined hook event.

    Construction makes sure every event has a row, raising if the store fails.
    """

    def __init__(self, engine: Any = None, store: _HookStore | None = None) -> None:
        self._store: _HookStore = store if store is not None else _SQLHookStore(engine)
        self._store.ensure()

    def list(self) -> list[HookConfig]:
        return self._store.list()

    def list_keys(self) -> list[Event]:
        return all_events()

    def upsert(self, payload: Iterable[tuple[str, str]]) -> list[HookConfig]:
        """Set the URL of each ``(event, url)`` pair in order; raise ``ValueError`` on bad input."""
        items = list(payload)
        if not items:
            raise ValueError("hooks payload is required")
        return [self._store.upsert(_to_event(event), url.strip()) for event, url in items]


def _error_response(err: HTTPError) -> tuple[Response, int]:
    return jsonify(err.to_response()), err.status


def _string(value: Any, key: str) -> str:
    if value is None:
        return ""
    if not isinstance(value, str):
        raise InputError(f"{key} must be a string")
    return value


def _parse_updates(data: Any) -> list[tuple[str, str]]:
    if data is None:
        return []
    if not isinstance(data, Mapping):
        raise InputError("request body must be a JSON object")
    items = data.get("hooks")
    if items is None:
        return []
    if not isinstance(items, list):
        raise InputError("hooks must be an array")
    updates: list[tuple[str, str]] = []
    for item in items:
        if not isinstance(item, Mapping):
            raise InputError("hooks items must be JSON objects")
        updates.append((_string(item.get("event"), "event"), _string(item.get("url"), "url")))
    return updates


def create_blueprint(service: HookSettingsService) -> Blueprint:
    """Return a blueprint serving the ``/settings/hooks`` routes backed by ``service``."""
    bp = Blueprint("hook_settings", __name__)
    bp.register_error_handler(HTTPError, _error_response)

    @bp.get("/settings/hooks")
    def list_hooks() -> Any:
        try:
            items = service.list()
        except Exception as err:
            raise httperr.internal("failed to list hook settings").with_cause(err) from err
        return jsonify([_config_to_dict(item) for item in items]), 200

    @bp.get("/settings/hooks/keys")
    def list_hook_keys() -> Any:
        return jsonify([_event_value(event) for event in service.list_keys()]), 200

    @bp.put("/settings/hooks")
    def upsert_hooks() -> Any:
        try:
            updates = _parse_updates(json.loads(request.get_data(as_text=True)))
        except (ValueError, InputError) as err:
            raise httperr.bad_request(str(err)) from err
        try:
            items = service.upsert(updates)
        except Exception as err:
            raise httperr.bad_request(str(err)) from err
        return jsonify([_config_to_dict(item) for item in items]), 200

    return bp