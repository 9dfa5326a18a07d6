"""Metadata provider backed by the AniList GraphQL API."""

from __future__ import annotations

import json
import re
from collections.abc import Iterable, Mapping
from datetime import datetime, timezone
from typing import Any

import requests

from mediadash import normalize
from mediadash.provider import (
    DiscoverOpts,
    DiscoverResult,
    Episode,
    ListEpisodesOpts,
    Provider,
    ProviderName,
    SearchHit,
    SearchOpts,
)
from mediadash.show import STATUS_ONGOING, Show, normalize_status_or_default

DEFAULT_ENDPOINT = "https://graphql.anilist.co"
DEFAULT_PAGE = 1
DEFAULT_PAGE_SIZE = 10
MAX_PAGE_SIZE = 50
DISCOVER_PAGE_SIZE = 25
REQUEST_TIMEOUT = 15.0
ID_PREFIX = "anilist:"

_INT64_MAX = 2**63 - 1
_INTEGER = re.compile(r"[+-]?[0-9]+")

_TITLE_FIELDS = """title {
        romaji
        english
        native
      }"""

_DATE_FIELDS = "{\n        year\n        month\n        day\n      }"

_SEARCH_QUERY = f"""query ($query: String!, $page: Int!, $perPage: Int!) {{
  Page(page: $page, perPage: $perPage) {{
    media(search: $query, type: ANIME, sort: SEARCH_MATCH) {{
      id
      type
      status
      averageScore
      description(asHtml: false)
      bannerImage
      synonyms
      {_TITLE_FIELDS}
    }}
  }}
}}"""

_DISCOVER_MEDIA_FIELDS = f"""id
      type
      status
      description(asHtml: false)
      bannerImage
      synonyms
      episodes
      coverImage {{
        large
      }}
      startDate {_DATE_FIELDS}
      endDate {_DATE_FIELDS}
      {_TITLE_FIELDS}"""

# (alias, media filter, page-size variable)
_DISCOVER_SECTIONS = (
    ("trending", "type: ANIME, sort: TRENDING_DESC", "perPage"),
    ("popular", "type: ANIME, sort: POPULARITY_DESC", "perPage"),
    ("topRated", "type: ANIME, sort: SCORE_DESC", "perPage"),
    ("upcoming", "type: ANIME, status: NOT_YET_RELEASED, sort: POPULARITY_DESC", "perPage"),
    ("currentlyAiring", "type: ANIME, status: RELEASING, sort: POPULARITY_DESC", "currentlyPerPage"),
)


def _discover_query() -> str:
    sections = "\n".join(
        f"  {alias}: Page(page: $page, perPage: ${size}) {{\n"
        f"    media({media_filter}) {{\n      {_DISCOVER_MEDIA_FIELDS}\n    }}\n  }}"
        for alias, media_filter, size in _DISCOVER_SECTIONS
    )
    return (
        "query ($page: Int!, $perPage: Int!, $currentlyPerPage: Int!) {\n"
        f"{sections}\n}}"
    )


_DISCOVER_QUERY = _discover_query()

_SHOW_QUERY = f"""query ($id: Int!) {{
  Media(id: $id, type: ANIME) {{
    id
    status
    description(asHtml: false)
    bannerImage
    synonyms
    coverImage {{
      large
    }}
    startDate {_DATE_FIELDS}
    endDate {_DATE_FIELDS}
    {_TITLE_FIELDS}
  }}
}}"""

_EPISODES_QUERY = """query ($mediaId: Int!, $page: Int!, $perPage: Int!) {
  Page(page: $page, perPage: $perPage) {
    airingSchedules(mediaId: $mediaId, sort: EPISODE) {
      episode
      airingAt
    }
  }
}"""


def _mapping(value: Any, name: str = "object") -> Mapping[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ValueError(f"anilist {name} must be a JSON object")
    return value


def _items(value: Any, name: str) -> list[Any]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise ValueError(f"anilist {name} must be a JSON array")
    return value


def _str(value: Any) -> str:
    return value if isinstance(value, str) else ""


def _int(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        return 0
    return value


def _optional_int(value: Any) -> int | None:
    if isinstance(value, bool) or not isinstance(value, int):
        return None
    return value


def parse_external_id(value: str) -> int:
    """Parse ``anilist:<id>`` or ``<id>`` into a positive media id; raise ``ValueError`` otherwise."""
    normalized = value.strip().lower().removeprefix(ID_PREFIX).strip()
    if _INTEGER.fullmatch(normalized):
        media_id = int(normalized)
        if 0 < media_id <= _INT64_MAX:
            return media_id
    raise ValueError("anilist external id must be a positive integer")


def format_external_id(value: str) -> str:
    """Prefix ``value`` with ``anilist:`` unless it is blank or already prefixed."""
    value = value.strip()
    if not value:
        return ""
    if value.lower().startswith(ID_PREFIX):
        return value
    return ID_PREFIX + value


def _first_non_empty(*values: Any) -> str | None:
    for value in values:
        normalized = normalize.clean_optional(value if isinstance(value, str) else None)
        if normalized is not None:
            return normalized
    return None


def pick_titles(title: Mapping[str, Any] | None) -> tuple[str, str | None]:
    """Return the preferred title (English first) and the original title (native first)."""
    title = _mapping(title, "title")
    english, romaji, native = title.get("english"), title.get("romaji"), title.get("native")
    preferred = _first_non_empty(english, romaji, native) or "Untitled"
    original = _first_non_empty(native, romaji, english)
    return preferred, normalize.clean_optional(original)


def build_alt_titles(
    preferred: str,
    original: str | None,
    title: Mapping[str, Any] | None,
    synonyms: Iterable[str] | None,
) -> list[str]:
    """Collect distinct titles and synonyms other than the preferred and original ones."""
    title = _mapping(title, "title")
    excluded = {preferred.casefold()}
    if original is not None:
        excluded.add(original.casefold())
    candidates = [title.get(key) for key in ("english", "romaji", "native")]
    candidates.extend(synonyms or [])

    seen: set[str] = set()
    out: list[str] = []
    for candidate in candidates:
        if not isinstance(candidate, str):
            continue
        normalized = candidate.strip()
        if not normalized or normalized.casefold() in excluded:
            continue
        key = normalized.lower()
        if key in seen:
            continue
        seen.add(key)
        out.append(normalized)
    return out


def normalize_date(value: Mapping[str, Any] | None) -> str | None:
    """Format an AniList ``{year, month, day}`` date as ``YYYY-MM-DD``, or ``None`` if incomplete."""
    value = _mapping(value, "date")
    year, month, day = (_optional_int(value.get(key)) for key in ("year", "month", "day"))
    if year is None or month is None or day is None:
        return None
    return f"{year:04d}-{month:02d}-{day:02d}"


def normalize_unix_date(value: int | None) -> str | None:
    """Format a positive Unix timestamp as a UTC ``YYYY-MM-DD`` date."""
    if value is None or value <= 0:
        return None
    return datetime.fromtimestamp(value, tz=timezone.utc).strftime("%Y-%m-%d")


def map_type(value: str) -> str:
    """Map an AniList media type onto the local show type."""
    if value.casefold() == "anime":
        return "anime"
    return value.strip().lower()


def map_media_to_show(media: Mapping[str, Any]) -> Show:
    """Convert an AniList media object into a :class:`Show`."""
    media = _mapping(media, "media")
    title = _mapping(media.get("title"), "title")
    preferred, original = pick_titles(title)
    cover = _mapping(media.get("coverImage"), "coverImage")
    synonyms = [item for item in _items(media.get("synonyms"), "synonyms") if isinstance(item, str)]
    return Show(
        external_id=format_external_id(str(_int(media.get("id")))),
        title_preferred=preferred,
        title_original=original,
        alt_titles=build_alt_titles(preferred, original, title, synonyms),
        type=map_type(_str(media.get("type"))),
        status=normalize_status_or_default(_str(media.get("status")), STATUS_ONGOING),
        synopsis=normalize.clean_optional(media.get("description")),
        start_date=normalize_date(media.get("startDate")),
        end_date=normalize_date(media.get("endDate")),
        poster_url=normalize.clean_optional(cover.get("large")),
        banner_url=normalize.clean_optional(media.get("bannerImage")),
        episode_count=_optional_int(media.get("episodes")),
    )


def _map_media_list(section: Mapping[str, Any]) -> list[Show]:
    return [map_media_to_show(item) for item in _items(section.get("media"), "media")]


class AniListProvider(Provider):
    """Queries AniList for anime search, discovery, details and airing schedules."""

    def __init__(
        self,
        endpoint: str = DEFAULT_ENDPOINT,
        session: requests.Session | None = None,
        timeout: float = REQUEST_TIMEOUT,
    ) -> None:
        self.endpoint = endpoint
        self._session = session or requests.Session()
        self._timeout = timeout

    def search(self, query: str, opts: SearchOpts) -> list[SearchHit]:
        if not query.strip():
            return []
        data = self._execute(
            _SEARCH_QUERY,
            {
                "query": query,
                "page": normalize.page(opts.page, DEFAULT_PAGE),
                "perPage": normalize.limit(opts.limit, DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE),
            },
        )
        return _map_media_list(_mapping(data.get("Page"), "Page"))

    def discover(self, opts: DiscoverOpts) -> DiscoverResult:
        data = self._execute(
            _DISCOVER_QUERY,
            {
                "page": normalize.page(opts.page, DEFAULT_PAGE),
                "perPage": normalize.limit(opts.limit, DEFAULT_PAGE_SIZE, DISCOVER_PAGE_SIZE),
                "currentlyPerPage": normalize.limit(opts.limit, DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE),
            },
        )

        def section(alias: str) -> list[Show]:
            return _map_media_list(_mapping(data.get(alias), alias))

        return DiscoverResult(
            trending=section("trending"),
            popular=section("popular"),
            top_rated=section("topRated"),
            upcoming=section("upcoming"),
            currently_airing=section("currentlyAiring"),
        )

    def get_show(self, external_id: str) -> Show:
        media_id = parse_external_id(external_id)
        data = self._execute(_SHOW_QUERY, {"id": media_id})
        media = _mapping(data.get("Media"), "Media")
        if _int(media.get("id")) == 0:
            raise LookupError(f"anilist show {external_id} not found")

        title = _mapping(media.get("title"), "title")
        preferred, original = pick_titles(title)
        cover = _mapping(media.get("coverImage"), "coverImage")
        synonyms = [
            item for item in _items(media.get("synonyms"), "synonyms") if isinstance(item, str)
        ]
        return Show(
            external_id=format_external_id(str(_int(media.get("id")))),
            title_preferred=preferred,
            title_original=original,
            alt_titles=build_alt_titles(preferred, original, title, synonyms),
            synopsis=normalize.clean_optional(media.get("description")),
            start_date=normalize_date(media.get("startDate")),
            end_date=normalize_date(media.get("endDate")),
            poster_url=normalize.clean_optional(cover.get("large")),
            banner_url=normalize.clean_optional(media.get("bannerImage")),
            type="anime",
            status=normalize_status_or_default(_str(media.get("status")), STATUS_ONGOING),
        )

    def list_episodes(self, external_id: str, opts: ListEpisodesOpts) -> list[Episode]:
        media_id = parse_external_id(external_id)
        data = self._execute(
            _EPISODES_QUERY,
            {
                "mediaId": media_id,
                "page": normalize.page(opts.page, DEFAULT_PAGE),
                "perPage": normalize.limit(opts.limit, DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE),
            },
        )
        page = _mapping(data.get("Page"), "Page")
        season_number = opts.season_number if opts.season_number is not None else 1
        episodes: list[Episode] = []
        for item in _items(page.get("airingSchedules"), "airingSchedules"):
            schedule = _mapping(item, "airingSchedule")
            number = _int(schedule.get("episode"))
            episodes.append(
                Episode(
                    provider=ProviderName.ANILIST,
                    external_id=format_external_id(f"{media_id}:{number}"),
                    season_number=season_number,
                    episode_number=number,
                    title=f"Episode {number}",
                    air_date=normalize_unix_date(_optional_int(schedule.get("airingAt"))),
                )
            )
        return episodes

    def _execute(self, query: str, variables: dict[str, Any]) -> Mapping[str, Any]:
        payload = json.dumps({"query": query, "variables": variables}).encode("utf-8")
        response = self._session.post(
            self.endpoint,
            data=payload,
            headers={"Content-Type": "application/json", "Accept": "application/json"},
            timeout=self._timeout,
        )
        with response:
            status = response.status_code
            body = response.content
        if not 200 <= status < 300:
            raise RuntimeError(f"anilist request failed with status {status}")

        decoded = _mapping(json.loads(body), "response")
        data = _mapping(decoded.get("data"), "data")
        errors = _items(decoded.get("errors"), "errors")
        if errors:
            first = _mapping(errors[0], "error")
            raise RuntimeError(f"anilist graphql error: {_str(first.get('message'))}")
        return data