"""HTTP routes for episodes."""

from __future__ import annotations

import json
from collections.abc import Callable
from typing import Any, TypeVar

from flask import Blueprint, Response, jsonify, request

from mediadash import httperr
from mediadash.episode import (
    EpisodeRecord,
    EpisodeRequest,
    EpisodeService,
    episode_request_from_dict,
    normalize_episode_request,
    to_episode_response,
    validate_episode_id,
    validate_episode_request,
)
from mediadash.httperr import HTTPError
from mediadash.httpx import InputError, db_error

T = TypeVar("T")


def _error_response(err: HTTPError) -> tuple[Response, int]:
    return jsonify(err.to_response()), err.status


def _bind_episode_id(episode_id: str) -> str:
    try:
        validate_episode_id(episode_id)
    except InputError as err:
        raise httperr.bad_request(str(err)) from err
    return episode_id


def _bind_request() -> EpisodeRequest:
    try:
        data = json.loads(request.get_data(as_text=True))
    except ValueError as err:
        raise httperr.bad_request(str(err)) from err
    try:
        episode = normalize_episode_request(episode_request_from_dict(data))
        validate_episode_request(episode)
    except InputError as err:
        raise httperr.bad_request(str(err)) from err
    return episode


def _call(message: str, func: Callable[..., T], *args: Any) -> T:
    try:
        return func(*args)
    except Exception as err:
        mapped = db_error(err, message) or httperr.internal(message).with_cause(err)
        raise mapped from err


def _format(record: EpisodeRecord) -> dict[str, Any]:
    try:
        return to_episode_response(record)
    except (ValueError, TypeError) as err:
        raise httperr.internal("failed to format episode response").with_cause(err) from err


def create_blueprint(service: EpisodeService) -> Blueprint:
    """Return a blueprint serving the ``/episodes`` routes backed by ``service``."""
    bp = Blueprint("episodes", __name__)
    bp.register_error_handler(HTTPError, _error_response)

    @bp.get("/episodes")
    def list_episodes() -> Any:
        items = _call("failed to list episodes", service.list_episodes)
        return jsonify([_format(item) for item in items]), 200

    @bp.get("/episodes/<internal_episode_id>")
    def get_episode(internal_episode_id: str) -> Any:
        episode_id = _bind_episode_id(internal_episode_id)
        item = _call("failed to get episode", service.get_episode, episode_id)
        return jsonify(_format(item)), 200

    @bp.post("/episodes")
    def create_episode() -> Any:
        episode = _bind_request()
        created = _call("failed to create episode", service.create_episode, episode)
        return jsonify(_format(created)), 201

    @bp.put("/episodes/<internal_episode_id>")
    def update_episode(internal_episode_id: str) -> Any:
        episode_id = _bind_episode_id(internal_episode_id)
        episode = _bind_request()
        updated = _call("failed to update episode", service.update_episode, episode_id, episode)
        return jsonify(_format(updated)), 200

    @bp.delete("/episodes/<internal_episode_id>")
    def delete_episode(internal_episode_id: str) -> Any:
        episode_id = _bind_episode_id(internal_episode_id)
        _call("failed to delete episode", service.delete_episode, episode_id)
        return Response(status=204)

    return bp