"""HTTP routes for provider metadata."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any, TypeVar

from flask import Blueprint, Response, jsonify, request

from mediadash import httperr, normalize
from mediadash.httperr import HTTPError
from mediadash.httpx import InputError, parse_positive_int
from mediadash.metadata import (
    CatalogService,
    parse_provider,
    provider_error,
    validate_external_id,
    validate_query,
)
from mediadash.provider import DiscoverOpts, ListEpisodesOpts, ProviderName, SearchOpts

T = TypeVar("T")


def _error_response(err: HTTPError) -> tuple[Response, int]:
    return jsonify(err.to_response()), err.status


def _bind(func: Callable[..., T], *args: Any) -> T:
    try:
        return func(*args)
    except InputError as err:
        raise httperr.bad_request(str(err)) from err


def _provider() -> ProviderName:
    return _bind(parse_provider, request.args.get("type", ""))


def _external_id(raw: str) -> str:
    external_id = normalize.clean(raw)
    _bind(validate_external_id, external_id)
    return external_id


def _paging(default_limit: int) -> tuple[int, int]:
    return (
        parse_positive_int(request.args.get("page", ""), 1),
        parse_positive_int(request.args.get("limit", ""), default_limit),
    )


def _call(message: str, func: Callable[..., T], *args: Any) -> T:
    try:
        return func(*args)
    except Exception as err:
        raise provider_error(message, err) from err


def create_blueprint(service: CatalogService) -> Blueprint:
    """Return a blueprint serving the ``/metadata`` routes backed by ``service``."""
    bp = Blueprint("metadata", __name__)
    bp.register_error_handler(HTTPError, _error_response)

    @bp.get("/metadata/search")
    def search() -> Any:
        provider = _provider()
        query = normalize.clean(request.args.get("query", ""))
        _bind(validate_query, query)
        page, limit = _paging(10)
        items = _call(
            "failed to search metadata",
            service.search,
            provider,
            query,
            SearchOpts(page=page, limit=limit),
        )
        return jsonify([item.to_dict() for item in items]), 200

    @bp.get("/metadata/discover")
    def discover() -> Any:
        provider = _provider()
        page, limit = _paging(25)
        result = _call(
            "failed to discover metadata",
            service.discover,
            provider,
            DiscoverOpts(page=page, limit=limit),
        )
        return jsonify(result.to_dict()), 200

    @bp.get("/metadata/show/<external_id>")
    def get_show(external_id: str) -> Any:
        provider = _provider()
        item_id = _external_id(external_id)
        item = _call("failed to get metadata show", service.get_show, provider, item_id)
        return jsonify(item.to_dict()), 200

    @bp.post("/metadata/show/<external_id>")
    def add_show(external_id: str) -> Any:
        provider = _provider()
        item_id = _external_id(external_id)
        created = _call(
            "failed to add metadata show", service.add_show_by_external_id, provider, item_id
        )
        return jsonify(created.to_dict()), 201

    @bp.get("/metadata/episodes/<external_id>")
    def list_episodes(external_id: str) -> Any:
        provider = _provider()
        item_id = _external_id(external_id)
        page, limit = _paging(25)
        items = _call(
            "failed to list metadata episodes",
            service.list_episodes,
            provider,
            item_id,
            ListEpisodesOpts(page=page, limit=limit),
        )
        return jsonify([item.to_dict() for item in items]), 200

    return bp