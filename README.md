# mediadash

A Flask HTTP API for keeping a catalogue of shows and their episodes. It
looks up show and episode metadata from providers, and it ships with an
AniList provider. It can also call webhooks before and after every change.

## Installation

```
pip install mediadash
```

To run the test suite:

```
pip install "mediadash[test]"
pytest
```

## Building the application

`mediadash.server.create_app(queries, engine=None, providers=None)` returns a
Flask application:

- `queries` is the data-access object for shows and episodes. You supply it
  (see below).
- `engine` is an optional SQLAlchemy engine. When you give one, the
  `hook_settings` table is created in it if it does not exist, and a row is
  seeded for every hook event. Hooks are then sent through
  `mediadash.hooks.HTTPDispatcher`, and the `/settings/hooks` routes are
  registered. Without an engine, hooks are not sent and those routes are
  absent.
- `providers` maps `mediadash.provider.ProviderName` values to
  `mediadash.provider.Provider` instances. By default, both `anidb` and
  `anilist` use `mediadash.anilist.AniListProvider`.

```python
from sqlalchemy import create_engine
from mediadash.server import create_app

app = create_app(my_queries, engine=create_engine("sqlite:///hooks.db"))
app.run(port=8080)
```

### The query object

`ShowService` and `EpisodeService` call these methods on `queries`:

- `create_show(**fields)`, `list_shows()`, `get_show_by_id(show_id)`,
  `update_show(internal_show_id=..., **fields)`, `delete_show(show_id)`,
  `list_episodes_by_show_id(show_id)`
- `create_episode(**fields)`, `list_episodes()`,
  `get_episode_by_id(episode_id)`,
  `update_episode(internal_episode_id=..., **fields)`,
  `delete_episode(episode_id)`

Shows come back as `mediadash.show.ShowRecord` and episodes as
`mediadash.episode.EpisodeRecord`. A query that finds no row raises
`mediadash.httpx.NoRowsError`, and the API answers it with 404. A
`mediadash.httpx.DatabaseError` carries a SQLSTATE code. Code `23505` is
answered with 409. Codes `23503` and `23514` are answered with 400.

## Endpoints

| Method | Path | Purpose |
| --- | --- | --- |
| GET | `/health` | Liveness check, limited to 10 requests/s per client IP with a burst of 20 |
| GET, POST | `/shows` | List or create shows |
| GET | `/shows/worker` | Shows and their episodes in worker format |
| GET, PUT, DELETE | `/shows/<internalShowId>` | Read, update or delete a show |
| GET, POST | `/episodes` | List or create episodes |
| GET, PUT, DELETE | `/episodes/<internalEpisodeId>` | Read, update or delete an episode |
| GET | `/metadata/search?query=&type=&page=&limit=` | Search a provider; results are filtered to titles containing the query |
| GET | `/metadata/discover?type=&page=&limit=` | Trending, popular, top rated, upcoming and currently airing feeds |
| GET, POST | `/metadata/show/<externalId>?type=` | Fetch a provider show, or store it as a local show |
| GET | `/metadata/episodes/<externalId>?type=&page=&limit=` | Provider episode list |
| GET, PUT | `/settings/hooks` | View or upsert webhook target URLs (only when an engine is given) |
| GET | `/settings/hooks/keys` | All hook event names (only when an engine is given) |

Internal ids must be UUID v4 values. The provider `type` is one of `anidb`,
`anilist` or `tvdb` and defaults to `anidb`. A provider name with nothing
registered under it is answered with 400.

Every response carries permissive CORS headers. `OPTIONS` requests are
answered with `204 No Content`.

## Errors

API errors share one shape:

```json
{"error": {"code": "BAD_REQUEST", "message": "showId is invalid"}}
```

`mediadash.httperr` defines these codes: `BAD_REQUEST`, `UNAUTHORIZED`,
`NOT_FOUND`, `VALIDATION_ERROR`, `CONFLICT`, `PAYLOAD_TOO_LARGE`,
`TOO_MANY_REQUESTS` and `INTERNAL_ERROR`.

## Hooks

`mediadash.hooks.all_events()` lists every event, such as `show.create.pre`
or `episode.delete.post`. Each event can have a target URL. When an event
fires and its URL is set, the server sends a JSON `POST` to that URL:

- The body has `event`, `payload` and `timestamp` fields.
- The request carries an `X-Hook-Event` header.
- The request times out after 5 seconds.

If a *pre* hook fails, the operation is cancelled. If a *post* hook fails, the
failure is only logged.

To set target URLs, send `PUT /settings/hooks` with
`{"hooks": [{"event": "show.create.post", "url": "http://localhost:9000/hook"}]}`.

## What this package does not do

- It has no storage for shows and episodes. You must supply the query object.
- It has no command to start the server. Build the app with `create_app` and
  run it with any WSGI server.
- It has no authentication.
- It has no TVDB provider.