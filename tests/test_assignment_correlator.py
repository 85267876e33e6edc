import itertools
import threading
from datetime import UTC, datetime, timedelta

import pytest

from app.errors import InvalidArgumentError, NotFoundError
from app.store import store


@pytest.fixture
def ticking_clock(monkeypatch):
    base = datetime(2025, 3, 1, 12, 0, tzinfo=UTC)
    counter = itertools.count()
    monkeypatch.setattr(store, "_utcnow_iso", lambda: (base + timedelta(seconds=next(counter))).isoformat())


def _create(channel: str = "+573001112233", certificate_type: str = "employment"):
    return store.create_request(payload={"channel_identifier": channel, "certificate_type": certificate_type})


def _seed_user(user_id: str = "usr_1", number: str = "1.020.304"):
    return store.seed_identity(
        user_id=user_id,
        full_name="Ana Perez",
        email="ana@example.com",
        identification_number=number,
        position={"position_id": "pos_1", "name": "Analyst"},
    )


def test_assign_requester_user_sets_weak_reference():
    created = _create()
    updated = store.assign_requester_user(request_id=created["request_id"], user_id="usr_unknown")
    assert updated["requester_user_id"] == "usr_unknown"
    assert updated["status"] == "PENDING"


def test_assign_requester_user_validates_inputs():
    with pytest.raises(InvalidArgumentError):
        store.assign_requester_user(request_id="creq_missing", user_id="  ")
    with pytest.raises(NotFoundError):
        store.assign_requester_user(request_id="creq_missing", user_id="usr_1")


def test_identify_and_assign_attributes_all_requests_of_channel(ticking_clock):
    _seed_user()
    first = _create()
    second = _create(certificate_type="income")
    store.mark_completed(request_id=first["request_id"], document_path="/docs/a.pdf")
    other_channel = _create(channel="+573009998877")

    result = store.identify_and_assign(channel_identifier="+573001112233", identification_number="1020304")

    assert result["user"]["user_id"] == "usr_1"
    assert result["user"]["position"] == {"position_id": "pos_1", "name": "Analyst"}
    assert result["total_assigned"] == 2
    assert [x["request_id"] for x in result["assigned_requests"]] == [second["request_id"], first["request_id"]]
    assert all(x["requester_user_id"] == "usr_1" for x in result["assigned_requests"])
    assert store.get_request(request_id=first["request_id"])["status"] == "COMPLETED"
    assert store.get_request(request_id=other_channel["request_id"])["requester_user_id"] is None


def test_identify_and_assign_is_idempotent(ticking_clock):
    _seed_user()
    _create()
    _create()

    first = store.identify_and_assign(channel_identifier="+573001112233", identification_number="1020304")
    second = store.identify_and_assign(channel_identifier="+573001112233", identification_number="1020304")

    assert second["total_assigned"] == first["total_assigned"] == 2
    assert [x["request_id"] for x in second["assigned_requests"]] == [
        x["request_id"] for x in first["assigned_requests"]
    ]


def test_identify_and_assign_ignores_identifier_formatting():
    _seed_user(number="1020304")
    created = _create()

    result = store.identify_and_assign(
        channel_identifier="+57 300 111 2233",
        identification_number=" 1.020.304 ",
    )

    assert result["total_assigned"] == 1
    assert result["assigned_requests"][0]["request_id"] == created["request_id"]


def test_identify_and_assign_with_no_requests_returns_empty_assignment():
    _seed_user()
    result = store.identify_and_assign(channel_identifier="+573001112233", identification_number="1020304")
    assert result["total_assigned"] == 0
    assert result["assigned_requests"] == []
    assert result["user"]["user_id"] == "usr_1"


def test_identify_and_assign_unknown_identity_writes_nothing():
    created = _create()
    with pytest.raises(NotFoundError) as exc:
        store.identify_and_assign(channel_identifier="+573001112233", identification_number="999")
    assert exc.value.code == "IDENTITY_NOT_FOUND"
    assert store.get_request(request_id=created["request_id"]) == created


@pytest.mark.parametrize(
    ("channel", "number"),
    [("", "1020304"), ("+573001112233", ""), ("+573001112233", " . , ")],
)
def test_identify_and_assign_rejects_blank_inputs(channel, number):
    with pytest.raises(InvalidArgumentError):
        store.identify_and_assign(channel_identifier=channel, identification_number=number)


def test_assignment_replaces_previous_requester():
    _seed_user(user_id="usr_2", number="555")
    created = _create()
    store.assign_requester_user(request_id=created["request_id"], user_id="usr_1")

    result = store.identify_and_assign(channel_identifier="+573001112233", identification_number="555")

    assert result["assigned_requests"][0]["requester_user_id"] == "usr_2"


def test_list_requests_for_user_returns_newest_first(ticking_clock):
    older = _create()
    newer = _create(channel="+573009998877")
    store.assign_requester_user(request_id=older["request_id"], user_id="usr_1")
    store.assign_requester_user(request_id=newer["request_id"], user_id="usr_1")

    items = store.list_requests_for_user(user_id="usr_1")

    assert [x["request_id"] for x in items] == [newer["request_id"], older["request_id"]]
    assert store.list_requests_for_user(user_id="usr_other") == []


def test_identify_and_assign_with_concurrent_creates_never_half_assigns():
    _seed_user()
    for _ in range(20):
        _create()
    creates = 100
    barrier = threading.Barrier(2)
    results: list[dict] = []

    def _create_many() -> None:
        barrier.wait()
        for _ in range(creates):
            _create()

    def _identify() -> None:
        barrier.wait()
        results.append(store.identify_and_assign(channel_identifier="+573001112233", identification_number="1020304"))

    threads = [threading.Thread(target=_create_many), threading.Thread(target=_identify)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assigned_ids = {x["request_id"] for x in results[0]["assigned_requests"]}
    rows = store.list_requests_for_channel(channel_identifier="+573001112233")
    assert len(rows) == 20 + creates
    assert len(assigned_ids) >= 20
    for row in rows:
        assert (row["requester_user_id"] == "usr_1") == (row["request_id"] in assigned_ids)
