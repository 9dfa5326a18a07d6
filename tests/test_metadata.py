from datetime import datetime, timezone

import pytest

from mediadash import httperr
from mediadash.hooks import to_jsonable
from mediadash.httpx import InputError
from mediadash.metadata import (
    AddShowResponse,
    CatalogService,
    filter_title_contains,
    parse_provider,
    provider_error,
    validate_external_id,
    validate_query,
)
from mediadash.provider import (
    DiscoverOpts,
    DiscoverResult,
    Episode,
    ListEpisodesOpts,
    MetadataService,
    Provider,
    ProviderName,
    Registry,
    SearchOpts,
)
from mediadash.show import Show, ShowRecord, ShowService


class FakeProvider(Provider):
    def __init__(self, hits=None, show=None):
        self.hits = hits or []
        self.show = show or Show(external_id="ext-1", title_preferred="Alpha", type="anime", status="ongoing")
        self.calls = []

    def search(self, query, opts):
        self.calls.append(("search", query, opts))
        return list(self.hits)

    def discover(self, opts):
        self.calls.append(("discover", opts))
        return DiscoverResult(trending=[self.show])

    def get_show(self, external_id):
        self.calls.append(("get_show", external_id))
        return self.show

    def list_episodes(self, external_id, opts):
        self.calls.append(("list_episodes", external_id, opts))
        return [
            Episode(
                provider=ProviderName.ANIDB,
                external_id=f"{external_id}:1",
                season_number=1,
                episode_number=1,
                title="Episode 1",
            )
        ]


class FakeQueries:
    def __init__(self):
        self.created = []

    def create_show(self, **fields):
        self.created.append(fields)
        return ShowRecord(
            internal_show_id="11111111-1111-4111-8111-111111111111",
            created_at=datetime(2024, 1, 2, tzinfo=timezone.utc),
            updated_at=datetime(2024, 1, 3, tzinfo=timezone.utc),
            **{k: v for k, v in fields.items() if k != "external_ids"},
        )


def make_service(provider):
    registry = Registry({ProviderName.ANIDB: provider})
    queries = FakeQueries()
    return CatalogService(MetadataService(registry), ShowService(queries)), queries


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("", ProviderName.ANIDB),
        (None, ProviderName.ANIDB),
        ("  ", ProviderName.ANIDB),
        (" TVDB ", ProviderName.TVDB),
        ("anilist", ProviderName.ANILIST),
        ("AniDB", ProviderName.ANIDB),
    ],
)
def test_parse_provider_accepts_known_names(raw, expected):
    assert parse_provider(raw) is expected


def test_parse_provider_rejects_unknown():
    with pytest.raises(InputError, match="type must be one of anidb\\|anilist\\|tvdb"):
        parse_provider("mal")


def test_validate_query_and_external_id():
    with pytest.raises(InputError, match="query is required"):
        validate_query("")
    with pytest.raises(InputError, match="externalId is required"):
        validate_external_id("")
    validate_query("x")
    validate_external_id("y")
    assert parse_provider("tvdb") is ProviderName.TVDB


def _hit(preferred, original=None, alts=()):
    return Show(title_preferred=preferred, title_original=original, alt_titles=list(alts))


def test_filter_title_contains_blank_query_returns_nothing():
    assert filter_title_contains("   ", [_hit("Alpha")]) == []


def test_filter_title_contains_matches_any_title_case_insensitively():
    preferred = _hit("Alpha Story")
    original = _hit("Other", original="ALPHA original")
    alt = _hit("Else", alts=["the alpha"])
    miss = _hit("Beta", original="Gamma", alts=["Delta"])
    result = filter_title_contains("  Alpha ", [preferred, original, alt, miss])
    assert result == [preferred, original, alt]


def test_provider_error_maps_unsupported_to_bad_request():
    err = provider_error("failed", LookupError('metadata provider "x" is not supported'))
    assert err.status == 400
    assert err.code == "BAD_REQUEST"
    assert err.message == 'metadata provider "x" is not supported'


def test_provider_error_maps_not_implemented_to_bad_request():
    err = provider_error("failed", RuntimeError("Not Implemented yet"))
    assert err.status == 400


def test_provider_error_maps_other_errors_to_internal():
    cause = RuntimeError("boom")
    err = provider_error("failed to search metadata", cause)
    assert isinstance(err, httperr.HTTPError)
    assert err.status == 500
    assert err.code == "INTERNAL_ERROR"
    assert err.message == "failed to search metadata"
    assert err.cause is cause


def test_search_filters_provider_results():
    keep = _hit("Naruto")
    drop = _hit("Bleach")
    provider = FakeProvider(hits=[keep, drop])
    service, _ = make_service(provider)
    opts = SearchOpts(page=1, limit=10)
    assert service.search(ProviderName.ANIDB, "naru", opts) == [keep]
    assert provider.calls == [("search", "naru", opts)]


def test_unregistered_provider_raises_lookup_error():
    service, _ = make_service(FakeProvider())
    with pytest.raises(LookupError, match="not supported"):
        service.get_show(ProviderName.TVDB, "1")


def test_discover_and_episodes_pass_through():
    provider = FakeProvider()
    service, _ = make_service(provider)
    result = service.discover(ProviderName.ANIDB, DiscoverOpts(page=1, limit=25))
    assert result.trending == [provider.show]
    episodes = service.list_episodes(ProviderName.ANIDB, "ext-9", ListEpisodesOpts(page=1, limit=25))
    assert [e.external_id for e in episodes] == ["ext-9:1"]


def test_add_show_by_external_id_stores_provider_show():
    provider = FakeProvider()
    service, queries = make_service(provider)
    response = service.add_show_by_external_id(ProviderName.ANIDB, "ext-1")
    assert isinstance(response, AddShowResponse)
    assert response.internal_show_id == "11111111-1111-4111-8111-111111111111"
    assert response.show is provider.show
    assert queries.created[0]["title_preferred"] == "Alpha"
    body = response.to_dict()
    assert body["internalShowId"] == response.internal_show_id
    assert body["externalId"] == "ext-1"
    assert body["titlePreferred"] == "Alpha"
    assert body["createdAt"] == to_jsonable(response.created_at)
    assert body["updatedAt"] == to_jsonable(response.updated_at)