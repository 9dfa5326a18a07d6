"""Catalogue service over metadata providers and the local show store."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from mediadash import httperr, normalize
from mediadash.hooks import to_jsonable
from mediadash.httpx import InputError
from mediadash.provider import (
    DiscoverOpts,
    DiscoverResult,
    Episode,
    ListEpisodesOpts,
    MetadataService,
    ProviderName,
    SearchHit,
    SearchOpts,
)
from mediadash.show import Show, ShowService


@dataclass
class AddShowResponse:
    """A provider show that has just been stored locally."""

    internal_show_id: str
    show: Show
    created_at: datetime
    updated_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "internalShowId": self.internal_show_id,
            **self.show.to_dict(),
            "createdAt": to_jsonable(self.created_at),
            "updatedAt": to_jsonable(self.updated_at),
        }


def parse_provider(raw: str | None) -> ProviderName:
    """Parse the ``type`` query value; blank means AniDB."""
    value = normalize.clean_lower(raw or "")
    if not value:
        return ProviderName.ANIDB
    try:
        return ProviderName(value)
    except ValueError:
        raise InputError("type must be one of anidb|anilist|tvdb") from None


def validate_query(query: str) -> None:
    """Raise ``InputError`` if the search query is empty."""
    if not query:
        raise InputError("query is required")


def validate_external_id(external_id: str) -> None:
    """Raise ``InputError`` if the external id is empty."""
    if not external_id:
        raise InputError("externalId is required")


def _contains(text: str, needle: str) -> bool:
    return needle in normalize.clean_lower(text)


def _title_matches(item: SearchHit, needle: str) -> bool:
    if _contains(item.title_preferred, needle):
        return True
    if item.title_original is not None and _contains(item.title_original, needle):
        return True
    return any(_contains(alt, needle) for alt in item.alt_titles)


def filter_title_contains(query: str, items: Iterable[SearchHit]) -> list[SearchHit]:
    """Keep the hits whose preferred, original or alternative title contains ``query``."""
    needle = normalize.clean_lower(query)
    if not needle:
        return []
    return [item for item in items if _title_matches(item, needle)]


def provider_error(internal_message: str, err: BaseException) -> httperr.HTTPError:
    """Map a provider failure to a 400 for unsupported features, otherwise a 500."""
    message = str(err)
    lowered = message.lower()
    if "not implemented" in lowered or "not supported" in lowered:
        return httperr.bad_request(message)
    return httperr.internal(internal_message).with_cause(err)


class CatalogService:
    """Searches providers and imports provider shows into the local store."""

    def __init__(self, metadata: MetadataService, shows: ShowService) -> None:
        self._metadata = metadata
        self._shows = shows

    def search(
        self, provider: ProviderName | str, query: str, opts: SearchOpts
    ) -> list[SearchHit]:
        items = self._metadata.search(provider, query, opts)
        return filter_title_contains(query, items)

    def discover(self, provider: ProviderName | str, opts: DiscoverOpts) -> DiscoverResult:
        return self._metadata.discover(provider, opts)

    def get_show(self, provider: ProviderName | str, external_id: str) -> Show:
        return self._metadata.get_show(provider, external_id)

    def list_episodes(
        self, provider: ProviderName | str, external_id: str, opts: ListEpisodesOpts
    ) -> list[Episode]:
        return self._metadata.list_episodes(provider, external_id, opts)

    def add_show_by_external_id(
        self, provider: ProviderName | str, external_id: str
    ) -> AddShowResponse:
        """Fetch a show from the provider and create a local record for it."""
        item = self._metadata.get_show(provider, external_id)
        created = self._shows.create_show(item)
        return AddShowResponse(
            internal_show_id=created.internal_show_id,
            show=item,
            created_at=created.created_at,
            updated_at=created.updated_at,
        )