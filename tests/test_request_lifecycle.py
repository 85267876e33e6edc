import threading

import pytest

from app.errors import ApiError, InvalidArgumentError, InvalidTransitionError, NotFoundError
from app.store import store


def _create(**overrides):
    payload = {
        "channel_identifier": "+573001112233",
        "certificate_type": "employment",
        "requester_name": "Ana Perez",
        "request_payload": {"purpose": "bank"},
        "interaction_transcript": [{"from": "user", "text": "hola"}],
    }
    payload.update(overrides)
    return store.create_request(payload=payload)


def test_create_request_starts_pending_with_no_outcome_fields():
    created = _create()

    assert created["request_id"].startswith("creq_")
    assert created["status"] == "PENDING"
    assert created["requester_user_id"] is None
    assert created["document_path"] is None
    assert created["completion_reason"] is None
    assert created["error_message"] is None
    assert created["document_sent_at"] is None
    assert created["created_at"] == created["updated_at"]
    assert store.get_request(request_id=created["request_id"]) == created


def test_create_request_normalizes_channel_identifier():
    created = _create(channel_identifier="+57 (300) 111-2233")
    assert created["channel_identifier"] == "+573001112233"


@pytest.mark.parametrize(
    "overrides",
    [
        {"channel_identifier": ""},
        {"channel_identifier": "   "},
        {"channel_identifier": "not-a-number"},
        {"certificate_type": ""},
        {"certificate_type": "  "},
    ],
)
def test_create_request_rejects_missing_required_fields(overrides):
    with pytest.raises(InvalidArgumentError):
        _create(**overrides)
    assert store.certificate_requests == {}


def test_get_request_unknown_id_raises_not_found():
    with pytest.raises(NotFoundError) as exc:
        store.get_request(request_id="creq_missing")
    assert exc.value.code == "CERTIFICATE_REQUEST_NOT_FOUND"
    assert exc.value.http_status == 404


def test_begin_processing_then_complete_sets_completion_fields():
    created = _create()
    started = store.begin_processing(request_id=created["request_id"], processed_by_user_id="op_7")
    assert started["status"] == "IN_PROGRESS"
    assert started["processing_started_at"] is not None
    assert started["processed_by_user_id"] == "op_7"

    completed = store.mark_completed(
        request_id=created["request_id"],
        document_path="/docs/cert.pdf",
        completion_reason="signed",
    )
    assert completed["status"] == "COMPLETED"
    assert completed["document_path"] == "/docs/cert.pdf"
    assert completed["completion_reason"] == "signed"
    assert completed["processing_ended_at"] is not None
    assert completed["error_message"] is None


def test_mark_completed_defaults_completion_reason():
    created = _create()
    completed = store.mark_completed(request_id=created["request_id"])
    assert completed["completion_reason"] == "Processed successfully"
    assert completed["document_path"] is None


def test_begin_processing_only_from_pending():
    created = _create()
    store.begin_processing(request_id=created["request_id"])

    with pytest.raises(InvalidTransitionError) as exc:
        store.begin_processing(request_id=created["request_id"])
    assert exc.value.code == "CR_STATE_TRANSITION_INVALID"
    assert exc.value.http_status == 409


def test_completed_request_rejects_every_status_change():
    created = _create()
    request_id = created["request_id"]
    store.mark_completed(request_id=request_id, document_path="/docs/a.pdf")
    snapshot = store.get_request(request_id=request_id)

    with pytest.raises(InvalidTransitionError, match="already completed"):
        store.mark_completed(request_id=request_id)
    with pytest.raises(InvalidTransitionError):
        store.mark_failed(request_id=request_id, error_message="late failure")
    with pytest.raises(InvalidTransitionError):
        store.begin_processing(request_id=request_id)

    assert store.get_request(request_id=request_id) == snapshot


def test_failed_request_cannot_be_completed():
    created = _create()
    request_id = created["request_id"]
    store.mark_failed(request_id=request_id, error_message="renderer crashed")

    with pytest.raises(InvalidTransitionError):
        store.mark_completed(request_id=request_id, document_path="/docs/a.pdf")

    current = store.get_request(request_id=request_id)
    assert current["status"] == "FAILED"
    assert current["document_path"] is None
    assert current["completion_reason"] is None


def test_repeated_failure_overwrites_error_message():
    created = _create()
    request_id = created["request_id"]
    store.mark_failed(request_id=request_id, error_message="first")
    again = store.mark_failed(request_id=request_id, error_message="second")

    assert again["status"] == "FAILED"
    assert again["error_message"] == "second"


def test_mark_failed_blank_message_is_rejected_before_lookup():
    with pytest.raises(InvalidArgumentError):
        store.mark_failed(request_id="creq_missing", error_message="   ")

    created = _create()
    with pytest.raises(InvalidArgumentError):
        store.mark_failed(request_id=created["request_id"], error_message="")
    assert store.get_request(request_id=created["request_id"]) == created


@pytest.mark.parametrize(
    "operation",
    [
        lambda rid: store.begin_processing(request_id=rid),
        lambda rid: store.mark_completed(request_id=rid),
        lambda rid: store.mark_failed(request_id=rid, error_message="boom"),
        lambda rid: store.mark_document_sent(request_id=rid),
        lambda rid: store.update_request(request_id=rid, changes={"requester_name": "x"}),
        lambda rid: store.delete_request(request_id=rid),
    ],
)
def test_operations_on_unknown_id_raise_not_found_without_writing(operation):
    with pytest.raises(NotFoundError):
        operation("creq_missing")
    assert store.certificate_requests == {}


def test_mark_document_sent_keeps_first_timestamp():
    created = _create()
    request_id = created["request_id"]
    store.mark_completed(request_id=request_id, document_path="/docs/a.pdf")

    first = store.mark_document_sent(request_id=request_id)
    second = store.mark_document_sent(request_id=request_id)

    assert first["document_sent_at"] is not None
    assert second == first
    assert second["status"] == "COMPLETED"


def test_mark_document_sent_does_not_change_status():
    created = _create()
    sent = store.mark_document_sent(request_id=created["request_id"])
    assert sent["status"] == "PENDING"
    assert sent["document_sent_at"] is not None


def test_update_request_merges_payload_and_keeps_transcript():
    created = _create()
    updated = store.update_request(
        request_id=created["request_id"],
        changes={"requester_document": "1.234.567", "request_payload": {"copies": 2}},
    )
    assert updated["requester_document"] == "1.234.567"
    assert updated["request_payload"] == {"purpose": "bank", "copies": 2}
    assert updated["interaction_transcript"] == created["interaction_transcript"]
    assert updated["status"] == "PENDING"


def test_update_request_rejects_transcript_and_terminal_requests():
    created = _create()
    with pytest.raises(InvalidArgumentError):
        store.update_request(request_id=created["request_id"], changes={"interaction_transcript": []})

    store.mark_failed(request_id=created["request_id"], error_message="boom")
    with pytest.raises(InvalidTransitionError):
        store.update_request(request_id=created["request_id"], changes={"requester_name": "Other"})


def test_delete_request_removes_record():
    created = _create()
    result = store.delete_request(request_id=created["request_id"])
    assert result == {"request_id": created["request_id"], "deleted": True}
    with pytest.raises(NotFoundError):
        store.get_request(request_id=created["request_id"])


def test_concurrent_mark_completed_yields_exactly_one_success():
    created = _create()
    request_id = created["request_id"]
    workers = 8
    barrier = threading.Barrier(workers)
    outcomes: list[object] = []
    outcomes_lock = threading.Lock()

    def _run(index: int) -> None:
        barrier.wait()
        try:
            result: object = store.mark_completed(request_id=request_id, document_path=f"/docs/{index}.pdf")
        except ApiError as exc:
            result = exc
        with outcomes_lock:
            outcomes.append(result)

    threads = [threading.Thread(target=_run, args=(i,)) for i in range(workers)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    successes = [x for x in outcomes if isinstance(x, dict)]
    failures = [x for x in outcomes if isinstance(x, InvalidTransitionError)]
    assert len(successes) == 1
    assert len(failures) == workers - 1
    assert store.get_request(request_id=request_id)["document_path"] == successes[0]["document_path"]


def test_list_requests_for_channel_matches_normalized_identifier():
    created = _create()
    _create(channel_identifier="+573009998877")
    items = store.list_requests_for_channel(channel_identifier="+57 300 111 2233")
    assert [x["request_id"] for x in items] == [created["request_id"]]
