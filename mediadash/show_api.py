"""HTTP routes for shows."""

from __future__ import annotations

import json
from collections.abc import Callable
from typing import Any, TypeVar

from flask import Blueprint, Response, jsonify, request

from mediadash import httperr
from mediadash.httperr import HTTPError
from mediadash.httpx import InputError, db_error
from mediadash.show import (
    Show,
    ShowRecord,
    ShowService,
    normalize_show,
    show_from_dict,
    to_show_response,
    validate_show,
    validate_show_id,
)

T = TypeVar("T")


def _error_response(err: HTTPError) -> tuple[Response, int]:
    return jsonify(err.to_response()), err.status


def _bind_show_id(show_id: str) -> str:
    try:
        validate_show_id(show_id)
    except InputError as err:
        raise httperr.bad_request(str(err)) from err
    return show_id


def _bind_show() -> Show:
    try:
        data = json.loads(request.get_data(as_text=True))
    except ValueError as err:
        raise httperr.bad_request(str(err)) from err
    if data is None:
        data = {}
    try:
        show = normalize_show(show_from_dict(data))
        validate_show(show)
    except InputError as err:
        raise httperr.bad_request(str(err)) from err
    return show


def _call(message: str, func: Callable[..., T], *args: Any) -> T:
    try:
        return func(*args)
    except Exception as err:
        mapped = db_error(err, message) or httperr.internal(message).with_cause(err)
        raise mapped from err


def _format(record: ShowRecord) -> dict[str, Any]:
    try:
        return to_show_response(record)
    except (ValueError, TypeError) as err:
        raise httperr.internal("failed to format show response").with_cause(err) from err


def create_blueprint(service: ShowService) -> Blueprint:
    """Return a blueprint serving the ``/shows`` routes backed by ``service``."""
    bp = Blueprint("shows", __name__)
    bp.register_error_handler(HTTPError, _error_response)

    @bp.get("/shows")
    def list_shows() -> Any:
        items = _call("failed to list shows", service.list_shows)
        return jsonify([_format(item) for item in items]), 200

    @bp.get("/shows/worker")
    def list_worker_data() -> Any:
        data = _call("failed to list worker data", service.list_worker_data)
        return jsonify(data), 200

    @bp.get("/shows/<internal_show_id>")
    def get_show(internal_show_id: str) -> Any:
        show_id = _bind_show_id(internal_show_id)
        item = _call("failed to get show", service.get_show, show_id)
        return jsonify(_format(item)), 200

    @bp.post("/shows")
    def create_show() -> Any:
        show = _bind_show()
        created = _call("failed to create show", service.create_show, show)
        return jsonify(_format(created)), 201

    @bp.put("/shows/<internal_show_id>")
    def update_show(internal_show_id: str) -> Any:
        show_id = _bind_show_id(internal_show_id)
        show = _bind_show()
        updated = _call("failed to update show", service.update_show, show_id, show)
        return jsonify(_format(updated)), 200

    @bp.delete("/shows/<internal_show_id>")
    def delete_show(internal_show_id: str) -> Any:
        show_id = _bind_show_id(internal_show_id)
        _call("failed to delete show", service.delete_show, show_id)
        return Response(status=204)

    return bp