"""Metadata provider interface, registry and the service that routes to providers."""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from mediadash.show import Show

SearchHit = Show


class ProviderName(str, Enum):
    ANIDB = "anidb"
    ANILIST = "anilist"
    TVDB = "tvdb"


@dataclass(frozen=True)
class SearchOpts:
    page: int = 0
    limit: int = 0


@dataclass(frozen=True)
class DiscoverOpts:
    page: int = 0
    limit: int = 0


@dataclass(frozen=True)
class ListEpisodesOpts:
    page: int = 0
    limit: int = 0
    season_number: int | None = None


@dataclass
class DiscoverResult:
    """Homepage-style feeds of shows."""

    trending: list[Show] = field(default_factory=list)
    popular: list[Show] = field(default_factory=list)
    top_rated: list[Show] = field(default_factory=list)
    upcoming: list[Show] = field(default_factory=list)
    currently_airing: list[Show] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "trending": [show.to_dict() for show in self.trending],
            "popular": [show.to_dict() for show in self.popular],
            "topRated": [show.to_dict() for show in self.top_rated],
            "upcoming": [show.to_dict() for show in self.upcoming],
            "currentlyAiring": [show.to_dict() for show in self.currently_airing],
        }


@dataclass
class Episode:
    """An episode as reported by a metadata provider."""

    provider: ProviderName
    external_id: str
    season_number: int
    episode_number: int
    title: str
    air_date: str | None = None
    runtime_minutes: int | None = None

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {
            "provider": _name_value(self.provider),
            "externalId": self.external_id,
            "seasonNumber": self.season_number,
            "episodeNumber": self.episode_number,
            "title": self.title,
        }
        if self.air_date is not None:
            body["airDate"] = self.air_date
        if self.runtime_minutes is not None:
            body["runtimeMinutes"] = self.runtime_minutes
        return body


def _name_value(name: ProviderName | str) -> str:
    return name.value if isinstance(name, ProviderName) else str(name)


class Provider(ABC):
    """A source of show and episode metadata."""

    @abstractmethod
    def search(self, query: str, opts: SearchOpts) -> list[SearchHit]:
        """Return shows matching ``query``."""

    @abstractmethod
    def discover(self, opts: DiscoverOpts) -> DiscoverResult:
        """Return discovery feeds."""

    @abstractmethod
    def get_show(self, external_id: str) -> Show:
        """Return the show with the given provider id."""

    @abstractmethod
    def list_episodes(self, external_id: str, opts: ListEpisodesOpts) -> list[Episode]:
        """Return episodes of the show with the given provider id."""


class Registry:
    """Maps provider names to provider instances."""

    def __init__(self, providers: Mapping[ProviderName | str, Provider]) -> None:
        self._providers: dict[ProviderName | str, Provider] = dict(providers)

    def provider(self, name: ProviderName | str) -> Provider:
        """Return the provider registered under ``name``; raise ``LookupError`` if none."""
        try:
            return self._providers[name]
        except KeyError:
            quoted = json.dumps(_name_value(name))
            raise LookupError(f"metadata provider {quoted} is not supported") from None


class MetadataService:
    """Routes metadata requests to the provider named in each call."""

    def __init__(self, registry: Registry) -> None:
        self._registry = registry

    def search(
        self, provider_name: ProviderName | str, query: str, opts: SearchOpts
    ) -> list[SearchHit]:
        return self._registry.provider(provider_name).search(query, opts)

    def discover(self, provider_name: ProviderName | str, opts: DiscoverOpts) -> DiscoverResult:
        return self._registry.provider(provider_name).discover(opts)

    def get_show(self, provider_name: ProviderName | str, external_id: str) -> Show:
        return self._registry.provider(provider_name).get_show(external_id)

    def list_episodes(
        self, provider_name: ProviderName | str, external_id: str, opts: ListEpisodesOpts
    ) -> list[Episode]:
        return self._registry.provider(provider_name).list_episodes(external_id, opts)