import pytest

from quoteledger.errors import (
    CorruptPayload,
    EmptyAppend,
    IdempotencyConflict,
    InvalidAfterSeq,
    Status,
    StatusCode,
    StoreError,
)


def test_status_code_wire_values():
    assert StatusCode.INVALID_ARGUMENT == 3
    assert StatusCode.FAILED_PRECONDITION == 9
    assert StatusCode(16) is StatusCode.UNAUTHENTICATED


def test_status_carries_code_and_message():
    status = Status(StatusCode.DATA_LOSS, "append_commands stream was empty")
    assert status.code is StatusCode.DATA_LOSS
    assert status.message == "append_commands stream was empty"
    assert str(status) == "append_commands stream was empty"


def test_status_accepts_integer_code():
    status = Status(int(StatusCode.RESOURCE_EXHAUSTED), "limit")
    assert status.code is StatusCode.RESOURCE_EXHAUSTED


def test_status_rejects_unknown_code():
    with pytest.raises(ValueError):
        Status(999, "nope")


def test_status_is_an_exception_with_code():
    status = Status(StatusCode.INTERNAL, "boom")
    assert isinstance(status, Exception)
    assert status.code is StatusCode.INTERNAL
    assert str(status) == "boom"


def test_empty_append_message():
    err = EmptyAppend()
    assert str(err) == "append contained zero events"
    assert isinstance(err, StoreError)


def test_invalid_after_seq_message_and_fields():
    err = InvalidAfterSeq(999, 1)
    assert str(err) == "after_seq 999 is ahead of head 1"
    assert (err.after_seq, err.last_seq) == (999, 1)


def test_corrupt_payload_message():
    err = CorruptPayload("stored event missing payload")
    assert str(err) == "corrupt stored payload: stored event missing payload"
    assert err.detail == "stored event missing payload"


def test_idempotency_conflict_message():
    err = IdempotencyConflict("q-idem-1", "same-key")
    assert str(err) == (
        "idempotency key reused with different command payload "
        "(quote_id=q-idem-1, client_command_id=same-key)"
    )
    assert err.quote_id == "q-idem-1"
    assert err.client_command_id == "same-key"


@pytest.mark.parametrize(
    ("err", "message"),
    [
        (EmptyAppend(), "append contained zero events"),
        (InvalidAfterSeq(2, 1), "after_seq 2 is ahead of head 1"),
        (CorruptPayload("x"), "corrupt stored payload: x"),
        (
            IdempotencyConflict("q", "c"),
            "idempotency key reused with different command payload "
            "(quote_id=q, client_command_id=c)",
        ),
    ],
)
def test_store_errors_share_base(err, message):
    assert isinstance(err, StoreError)
    assert str(err) == message