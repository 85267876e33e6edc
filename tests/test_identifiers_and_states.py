import pytest

from app.errors import InvalidArgumentError, InvalidTransitionError
from app.identifiers import (
    mask_channel_identifier,
    normalize_channel_identifier,
    normalize_identification_number,
)
from app.request_states import (
    ALL_STATUSES,
    ALLOWED_TRANSITIONS,
    COMPLETABLE_STATUSES,
    COMPLETED,
    FAILABLE_STATUSES,
    FAILED,
    IN_PROGRESS,
    PENDING,
    STARTABLE_STATUSES,
    can_begin_processing,
    can_complete,
    can_fail,
    is_allowed,
    is_terminal,
)
from app.store import store


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("+573001112233", "+573001112233"),
        ("+57 300 111 2233", "+573001112233"),
        ("(300) 111-2233", "3001112233"),
        (" 300.111.2233 ", "3001112233"),
    ],
)
def test_normalize_channel_identifier(raw, expected):
    assert normalize_channel_identifier(raw) == expected


@pytest.mark.parametrize("raw", [None, "", "   ", "abc", "12345", "+57300111223344556", "++573001112233"])
def test_normalize_channel_identifier_rejects(raw):
    with pytest.raises(InvalidArgumentError):
        normalize_channel_identifier(raw)


@pytest.mark.parametrize(
    ("raw", "expected"),
    [("1.020.304", "1020304"), (" 1,020,304 ", "1020304"), ("CE-99", "CE-99")],
)
def test_normalize_identification_number(raw, expected):
    assert normalize_identification_number(raw) == expected


def test_mask_channel_identifier_keeps_last_four():
    assert mask_channel_identifier("+573001112233") == "*********2233"
    assert mask_channel_identifier("123") == "***"
    assert mask_channel_identifier(None) == ""


def test_transition_policy():
    assert can_begin_processing(PENDING)
    assert not can_begin_processing(IN_PROGRESS)
    assert can_complete(PENDING) and can_complete(IN_PROGRESS)
    assert not can_complete(FAILED) and not can_complete(COMPLETED)
    assert can_fail(FAILED)
    assert not can_fail(COMPLETED)
    assert is_terminal(COMPLETED) and is_terminal(FAILED)
    assert not is_terminal(PENDING)


def test_completed_has_no_outgoing_transitions():
    for status in ALL_STATUSES:
        assert not is_allowed(COMPLETED, status)
    assert is_allowed(FAILED, FAILED)
    assert not is_allowed(FAILED, COMPLETED)
    assert is_allowed(PENDING, COMPLETED)


@pytest.mark.parametrize("status", sorted(ALL_STATUSES))
def test_guards_follow_transition_table(status):
    assert can_begin_processing(status) == is_allowed(status, IN_PROGRESS)
    assert can_complete(status) == is_allowed(status, COMPLETED)
    assert can_fail(status) == is_allowed(status, FAILED)


def test_policy_sets_are_derived_from_transition_table():
    assert STARTABLE_STATUSES == {PENDING}
    assert COMPLETABLE_STATUSES == {PENDING, IN_PROGRESS}
    assert FAILABLE_STATUSES == {PENDING, IN_PROGRESS, FAILED}


def test_lifecycle_guard_reads_transition_table(monkeypatch):
    created = store.create_request(
        payload={"channel_identifier": "+573001112233", "certificate_type": "employment"}
    )
    store.mark_failed(request_id=created["request_id"], error_message="renderer crashed")
    with pytest.raises(InvalidTransitionError):
        store.mark_completed(request_id=created["request_id"])

    monkeypatch.setitem(ALLOWED_TRANSITIONS, FAILED, {FAILED, COMPLETED})
    completed = store.mark_completed(request_id=created["request_id"])
    assert completed["status"] == "COMPLETED"
