"""Application factory wiring every route together."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from flask import Flask, Response, jsonify, request

from mediadash import episode_api, hooksettings, httperr, metadata_api, show_api
from mediadash.anilist import AniListProvider
from mediadash.episode import EpisodeService
from mediadash.hooks import Dispatcher, HTTPDispatcher, NoopDispatcher
from mediadash.httperr import HTTPError
from mediadash.httpx import IPRateLimiter
from mediadash.metadata import CatalogService
from mediadash.provider import MetadataService, Provider, ProviderName, Registry
from mediadash.show import ShowService

log = logging.getLogger(__name__)

HEALTH_RATE = 10.0
HEALTH_BURST = 20
HEALTH_TTL_SECONDS = 300.0

_CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, POST, PUT, PATCH, DELETE, OPTIONS",
    "Access-Control-Allow-Headers": "Authorization, Content-Type",
    "Access-Control-Max-Age": "86400",
}


def _default_providers() -> dict[ProviderName, Provider]:
    anilist = AniListProvider()
    return {ProviderName.ANIDB: anilist, ProviderName.ANILIST: anilist}


def _hook_dispatcher(engine: Any) -> Dispatcher:
    if engine is None:
        return NoopDispatcher()
    try:
        return HTTPDispatcher(engine)
    except Exception as err:
        log.warning("failed to initialize hook dispatcher, using noop: %s", err)
        return NoopDispatcher()


def _is_framework_http_exception(err: Exception) -> bool:
    """True for the framework's own HTTP exceptions (404, 405 and the like)."""
    return isinstance(getattr(err, "code", None), int) and callable(
        getattr(err, "get_response", None)
    )


def _install_cors(app: Flask) -> None:
    @app.before_request
    def preflight() -> Response | None:
        if request.method == "OPTIONS":
            return Response(status=204)
        return None

    @app.after_request
    def add_headers(response: Response) -> Response:
        response.headers.update(_CORS_HEADERS)
        return response


def _install_error_handlers(app: Flask) -> None:
    @app.errorhandler(HTTPError)
    def handle_http_error(err: HTTPError) -> Any:
        return jsonify(err.to_response()), err.status

    @app.errorhandler(Exception)
    def handle_unexpected(err: Exception) -> Any:
        if _is_framework_http_exception(err):
            return err
        log.exception("panic recovered: %s", err)
        mapped = httperr.internal("Internal Server Error").with_cause(err)
        return jsonify(mapped.to_response()), mapped.status


def create_app(
    queries: Any,
    engine: Any = None,
    providers: Mapping[ProviderName | str, Provider] | None = None,
) -> Flask:
    """Build the Flask application over a query layer, a database engine and providers.

    Without an engine hooks are not dispatched and the hook settings routes are absent.
    """
    app = Flask(__name__)
    _install_error_handlers(app)
    _install_cors(app)

    dispatcher = _hook_dispatcher(engine)
    show_service = ShowService(queries, dispatcher)
    episode_service = EpisodeService(queries, dispatcher)
    registry = Registry(providers if providers is not None else _default_providers())
    catalog = CatalogService(MetadataService(registry), show_service)

    settings_service: hooksettings.HookSettingsService | None = None
    if engine is not None:
        try:
            settings_service = hooksettings.HookSettingsService(engine)
        except Exception as err:
            log.warning("failed to initialize hook settings handler: %s", err)

    limiter = IPRateLimiter(HEALTH_RATE, HEALTH_BURST, HEALTH_TTL_SECONDS)

    @app.get("/health")
    def health() -> Any:
        if not limiter.allow(request.remote_addr or ""):
            raise httperr.too_many_requests("rate limit exceeded")
        return jsonify({"ok": True}), 200

    app.register_blueprint(episode_api.create_blueprint(episode_service))
    app.register_blueprint(metadata_api.create_blueprint(catalog))
    app.register_blueprint(show_api.create_blueprint(show_service))
    if settings_service is not None:
        app.register_blueprint(hooksettings.create_blueprint(settings_service))
    return app