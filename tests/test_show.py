import dataclasses
import uuid
from datetime import datetime, timezone
from types import SimpleNamespace

import pytest

from mediadash.hooks import Dispatcher, Event
from mediadash.httpx import InputError, NoRowsError
from mediadash.show import (
    STATUS_FINISHED,
    STATUS_ONGOING,
    Show,
    ShowRecord,
    ShowService,
    marshal_external_id,
    normalize_show,
    normalize_status,
    normalize_status_or_default,
    show_from_dict,
    to_show_response,
    unmarshal_external_id,
    validate_show,
    validate_show_id,
)

NOW = datetime(2024, 1, 1, tzinfo=timezone.utc)


class FakeQueries:
    def __init__(self):
        self.shows = {}
        self.episodes = {}
        self.calls = []

    def create_show(self, **fields):
        self.calls.append(("create", fields))
        record = ShowRecord(
            internal_show_id=str(uuid.uuid4()), created_at=NOW, updated_at=NOW, **fields
        )
        self.shows[record.internal_show_id] = record
        return record

    def list_shows(self):
        return list(self.shows.values())

    def get_show_by_id(self, show_id):
        try:
            return self.shows[show_id]
        except KeyError:
            raise NoRowsError() from None

    def update_show(self, internal_show_id, **fields):
        if internal_show_id not in self.shows:
            raise NoRowsError()
        record = dataclasses.replace(self.shows[internal_show_id], **fields)
        self.shows[internal_show_id] = record
        return record

    def delete_show(self, show_id):
        if show_id not in self.shows:
            raise NoRowsError()
        return self.shows.pop(show_id)

    def list_episodes_by_show_id(self, show_id):
        return self.episodes.get(show_id, [])


class RecordingDispatcher(Dispatcher):
    def __init__(self, fail_pre=False):
        self.events = []
        self.fail_pre = fail_pre

    def dispatch_pre(self, event, payload):
        self.events.append((event, payload))
        if self.fail_pre:
            raise RuntimeError("blocked by hook")

    def dispatch_post(self, event, payload):
        self.events.append((event, payload))


def valid_show(**overrides):
    base = Show(title_preferred="Frieren", type="anime", status="ongoing", alt_titles=["Sousou"])
    return dataclasses.replace(base, **overrides)


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("Releasing", STATUS_ONGOING),
        ("  continuing ", STATUS_ONGOING),
        ("Returning Series", STATUS_ONGOING),
        ("ongoing", STATUS_ONGOING),
        ("ENDED", STATUS_FINISHED),
        ("canceled", STATUS_FINISHED),
        ("Cancelled", STATUS_FINISHED),
        ("finished", STATUS_FINISHED),
        ("hiatus", ""),
        ("", ""),
    ],
)
def test_normalize_status(raw, expected):
    assert normalize_status(raw) == expected


def test_normalize_status_or_default():
    assert normalize_status_or_default("mystery", STATUS_FINISHED) == STATUS_FINISHED
    assert normalize_status_or_default("completed", STATUS_ONGOING) == STATUS_FINISHED


def test_normalize_show_strips_and_drops_blanks():
    show = Show(
        external_id="  x1 ",
        title_preferred=" Title ",
        title_original="   ",
        synopsis=" text ",
        alt_titles=[" a ", "", "  "],
    )
    result = normalize_show(show)
    assert result.external_id == "x1"
    assert result.title_preferred == "Title"
    assert result.title_original is None
    assert result.synopsis == "text"
    assert result.alt_titles == ["a"]
    assert show.title_preferred == " Title "


def test_validate_show_accepts_valid():
    show = valid_show(start_date="2023-09-29", season_count=0, episode_count=28)
    validate_show(show)
    assert show.status == "ongoing"


@pytest.mark.parametrize(
    "overrides, message",
    [
        ({"external_id": "x" * 129}, "externalId is invalid"),
        ({"title_preferred": ""}, "titlePreferred is invalid"),
        ({"title_preferred": "t" * 501}, "titlePreferred is invalid"),
        ({"type": "cartoon"}, "type is invalid"),
        ({"status": "paused"}, "status is invalid"),
        ({"start_date": "2023-13-01"}, "startDate is invalid"),
        ({"end_date": "yesterday"}, "endDate is invalid"),
        ({"season_count": -1}, "seasonCount is invalid"),
        ({"episode_count": -3}, "episodeCount is invalid"),
    ],
)
def test_validate_show_rejects(overrides, message):
    with pytest.raises(InputError) as info:
        validate_show(valid_show(**overrides))
    assert str(info.value) == message


def test_validate_show_id():
    validate_show_id(str(uuid.uuid4()))
    with pytest.raises(InputError, match="internalShowId is invalid"):
        validate_show_id("not-a-uuid")
    with pytest.raises(InputError, match="internalShowId is invalid"):
        validate_show_id("")


def test_marshal_external_id():
    assert marshal_external_id("   ") == b"{}"
    assert marshal_external_id("  abc ") == b'{"externalId":"abc"}'


@pytest.mark.parametrize("value", ["anilist:42", "tvdb-9", "a<b>&c", "ünï"])
def test_external_id_round_trip(value):
    assert unmarshal_external_id(marshal_external_id(value)) == value


def test_unmarshal_external_id_edge_cases():
    assert unmarshal_external_id(b"") == ""
    assert unmarshal_external_id(b"{}") == ""
    assert unmarshal_external_id(b"null") == ""
    with pytest.raises(ValueError):
        unmarshal_external_id(b"{broken")
    with pytest.raises(ValueError):
        unmarshal_external_id(b"[1]")


def test_show_dict_round_trip():
    show = valid_show(external_id="anilist:1", synopsis="s", season_count=2, poster_url="p")
    assert show_from_dict(show.to_dict()) == show


def test_to_dict_omits_empty_optionals():
    body = valid_show().to_dict()
    assert "externalId" not in body
    assert "synopsis" not in body
    assert body["altTitles"] == ["Sousou"]
    assert body["titlePreferred"] == "Frieren"


@pytest.mark.parametrize(
    "data",
    [
        [],
        {"titlePreferred": 5},
        {"seasonCount": "2"},
        {"episodeCount": 1.5},
        {"episodeCount": True},
        {"altTitles": "x"},
        {"altTitles": [1]},
    ],
)
def test_show_from_dict_rejects_bad_types(data):
    with pytest.raises(InputError):
        show_from_dict(data)


def test_to_show_response():
    record = ShowRecord(
        internal_show_id="id-1",
        title_preferred="T",
        alt_titles=[" a ", ""],
        type="tv",
        status="finished",
        external_ids=marshal_external_id("tvdb:3"),
        created_at=NOW,
        updated_at=NOW,
    )
    body = to_show_response(record)
    assert body["internalShowId"] == "id-1"
    assert body["externalId"] == "tvdb:3"
    assert body["altTitles"] == ["a"]
    assert body["createdAt"] == body["updatedAt"]
    assert list(body)[0] == "internalShowId"
    assert list(body)[-2:] == ["createdAt", "updatedAt"]


def test_create_show_dispatches_hooks():
    queries = FakeQueries()
    hooks = RecordingDispatcher()
    service = ShowService(queries, hooks)
    show = valid_show(external_id="anilist:5")
    created = service.create_show(show)
    assert created.title_preferred == "Frieren"
    assert unmarshal_external_id(created.external_ids) == "anilist:5"
    assert [event for event, _ in hooks.events] == [
        Event.SHOW_CREATE_PRE,
        Event.SHOW_CREATE_POST,
    ]
    assert hooks.events[0][1] is show
    assert hooks.events[1][1] is created


def test_pre_hook_failure_aborts_create():
    queries = FakeQueries()
    service = ShowService(queries, RecordingDispatcher(fail_pre=True))
    with pytest.raises(RuntimeError, match="blocked by hook"):
        service.create_show(valid_show())
    assert queries.calls == []


def test_update_and_delete():
    queries = FakeQueries()
    hooks = RecordingDispatcher()
    service = ShowService(queries, hooks)
    created = service.create_show(valid_show())
    updated = service.update_show(created.internal_show_id, valid_show(title_preferred="New"))
    assert updated.title_preferred == "New"
    assert service.get_show(created.internal_show_id).title_preferred == "New"
    update_pre = hooks.events[2]
    assert update_pre[0] == Event.SHOW_UPDATE_PRE
    assert update_pre[1]["internalShowId"] == created.internal_show_id

    service.delete_show(created.internal_show_id)
    assert hooks.events[-1] == (
        Event.SHOW_DELETE_POST,
        {"internalShowId": created.internal_show_id},
    )
    with pytest.raises(NoRowsError):
        service.get_show(created.internal_show_id)


def test_missing_show_errors_propagate():
    service = ShowService(FakeQueries())
    with pytest.raises(NoRowsError):
        service.update_show(str(uuid.uuid4()), valid_show())
    with pytest.raises(NoRowsError):
        service.delete_show(str(uuid.uuid4()))


def test_list_worker_data():
    queries = FakeQueries()
    service = ShowService(queries)
    created = service.create_show(valid_show(external_id="anilist:7", alt_titles=[" x ", ""]))
    queries.episodes[created.internal_show_id] = [
        SimpleNamespace(episode_number=1, air_date="2024-01-05"),
        SimpleNamespace(episode_number=2, air_date=None),
    ]
    data = service.list_worker_data()
    assert data == [
        {
            "internalShowId": created.internal_show_id,
            "show": {"externalId": "anilist:7", "altTitles": ["x"]},
            "episodes": [
                {"episodeNumber": 1, "airDate": "2024-01-05"},
                {"episodeNumber": 2, "airDate": None},
            ],
        }
    ]
    assert len(service.list_shows()) == 1