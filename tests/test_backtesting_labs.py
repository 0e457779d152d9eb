"""
Tests for the lab lifecycle in src/backtesting/labs.py.

Runs against the in-memory FakeHaasServer from conftest. Polling tests use
a SteppingClock so no real time passes.
"""

from dataclasses import replace
from datetime import datetime, timezone

import pytest

from src.backtesting.labs import (
    LabUpdateOutcome,
    cancel_lab_execution,
    create_lab,
    get_lab_details,
    start_lab_execution,
    update_lab_details,
    update_multiple_lab_details,
    update_multiple_lab_details_each,
    update_multiple_labs_details,
    wait_for_lab_completion,
)
from src.data.schemas import (
    CreateLabRequest,
    LabStatus,
    StartLabExecutionRequest,
    UserLabConfig,
    UserLabDetails,
)
from src.utils.time import SteppingClock
from src.venues.haas_client import (
    LABS_API,
    ErrorKind,
    HaasBatchUpdateError,
    HaasDeserializationError,
    HaasInvalidReferenceError,
    HaasNotFoundError,
    HaasTimeoutError,
)


@pytest.fixture
def clock():
    return SteppingClock(datetime(2024, 1, 1, tzinfo=timezone.utc))


def make_request(name="L1", script_id="s1", account_id="a1"):
    return CreateLabRequest(script_id, name, account_id, "BINANCE_BTC_USDT_", 15)


def ghost_lab(lab_id="lab-missing"):
    return UserLabDetails(lab_id=lab_id, script_id="s1", name="ghost")


def update_calls(fake_server):
    return [call for call in fake_server.calls if call[2] == "UPDATE_LAB_DETAILS"]


def test_create_lab(session, fake_server):
    lab = create_lab(session, make_request())

    assert lab.lab_id == "lab-1"
    assert lab.status == LabStatus.CREATED
    assert lab.settings["marketTag"] == "BINANCE_BTC_USDT_"

    method, path, channel, params = fake_server.calls[-1]
    assert (method, path, channel) == ("POST", LABS_API, "CREATE_LAB")
    assert params["style"] == 300
    assert params["interval"] == 15


def test_create_then_get_returns_same_lab(session):
    created = create_lab(session, make_request())

    fetched = get_lab_details(session, created.id)

    assert fetched.same_configuration(created)
    assert fetched.status == LabStatus.CREATED
    assert fetched.created_at == created.created_at


def test_create_lab_distinct_ids(session):
    first = create_lab(session, make_request("A"))
    second = create_lab(session, make_request("B"))

    assert first.lab_id != second.lab_id


@pytest.mark.parametrize(
    "script_id, account_id",
    [
        ("unknown-script", "a1"),
        ("s1", "unknown-account"),
    ],
)
def test_create_lab_invalid_reference(session, script_id, account_id):
    with pytest.raises(HaasInvalidReferenceError) as exc_info:
        create_lab(session, make_request(script_id=script_id, account_id=account_id))

    assert exc_info.value.operation == "CREATE_LAB"
    assert exc_info.value.kind == ErrorKind.INVALID_REFERENCE


def test_get_lab_details_unknown_lab(session):
    with pytest.raises(HaasNotFoundError, match="lab-404"):
        get_lab_details(session, "lab-404")


def test_get_lab_details_requires_id(session):
    with pytest.raises(ValueError, match="lab_id cannot be empty"):
        get_lab_details(session, " ")


def test_noop_update_round_trips(session):
    lab = create_lab(session, make_request())

    updated = update_lab_details(session, lab)

    assert updated.same_configuration(lab)
    assert updated.updated_at > lab.updated_at
    assert get_lab_details(session, lab.lab_id).same_configuration(updated)


def test_update_sends_full_object(session, fake_server):
    lab = create_lab(session, make_request())
    lab.name = "L1 tuned"
    lab.config = UserLabConfig(max_population=50, max_generations=20)
    lab.parameters = [{"K": "Length", "O": [5, 10]}]

    updated = update_lab_details(session, lab)

    assert updated.name == "L1 tuned"
    assert updated.config.max_population == 50
    assert updated.parameters == [{"K": "Length", "O": [5, 10]}]

    params = update_calls(fake_server)[-1][3]
    assert set(params) >= {"labid", "name", "type", "config", "settings", "parameters"}


def test_update_rejects_non_lab_details(session):
    with pytest.raises(TypeError, match="expects UserLabDetails"):
        update_lab_details(session, {"LID": "lab-1"})


def test_update_unknown_lab(session):
    with pytest.raises(HaasNotFoundError):
        update_lab_details(session, ghost_lab())


def test_bulk_update_applies_in_order(session, fake_server):
    labs = [create_lab(session, make_request(f"L{i}")) for i in range(3)]
    edited = [replace(lab, name=lab.name + "-v2") for lab in labs]

    updated = update_multiple_lab_details(session, edited)

    assert [lab.name for lab in updated] == ["L0-v2", "L1-v2", "L2-v2"]
    assert [call[3]["labid"] for call in update_calls(fake_server)] == [lab.lab_id for lab in labs]


def test_bulk_update_empty(session):
    assert update_multiple_lab_details(session, []) == []


def test_bulk_update_stops_at_first_failure(session, fake_server):
    first = create_lab(session, make_request("A"))
    last = create_lab(session, make_request("C"))
    first.name = "A-v2"
    last.name = "C-v2"

    with pytest.raises(HaasBatchUpdateError) as exc_info:
        update_multiple_lab_details(session, [first, ghost_lab(), last])

    error = exc_info.value
    assert error.index == 1
    assert error.lab_id == "lab-missing"
    assert isinstance(error.cause, HaasNotFoundError)
    assert error.kind == ErrorKind.NOT_FOUND
    assert [lab.name for lab in error.applied] == ["A-v2"]

    # Earlier update is not rolled back, later one was never sent
    assert get_lab_details(session, first.lab_id).name == "A-v2"
    assert get_lab_details(session, last.lab_id).name == "C"
    assert len(update_calls(fake_server)) == 2


def test_bulk_update_alias():
    assert update_multiple_labs_details is update_multiple_lab_details


def test_bulk_update_each_reports_per_lab(session, fake_server):
    first = create_lab(session, make_request("A"))
    last = create_lab(session, make_request("C"))
    last.name = "C-v2"

    outcomes = update_multiple_lab_details_each(session, [first, ghost_lab(), last])

    assert [o.ok for o in outcomes] == [True, False, True]
    assert isinstance(outcomes[1].error, HaasNotFoundError)
    assert outcomes[1].details is None
    assert outcomes[2].details.name == "C-v2"
    assert len(update_calls(fake_server)) == 3


def test_lab_update_outcome_ok():
    assert LabUpdateOutcome(lab_id="lab-1").ok
    assert not LabUpdateOutcome(lab_id="lab-1", error=HaasNotFoundError("gone")).ok


def test_start_lab_execution(session, fake_server):
    lab = create_lab(session, make_request())

    started = start_lab_execution(
        session, StartLabExecutionRequest(lab.lab_id, 1704067200, 1706745600)
    )

    assert started.status == LabStatus.RUNNING
    params = fake_server.calls[-1][3]
    assert params["startunix"] == 1704067200
    assert params["endunix"] == 1706745600
    assert params["sendemail"] == "false"


def test_start_unknown_lab(session):
    with pytest.raises(HaasNotFoundError):
        start_lab_execution(session, StartLabExecutionRequest("lab-404", 1, 2))


def test_wait_for_lab_completion(session, fake_server, clock):
    lab = create_lab(session, make_request())
    start_lab_execution(session, StartLabExecutionRequest(lab.lab_id, 1, 2))

    finished = wait_for_lab_completion(session, lab.lab_id, poll_interval_seconds=5, clock=clock)

    assert finished.status == LabStatus.COMPLETED
    assert finished.completed_backtests == finished.scheduled_backtests
    assert clock.sleeps == [5]


def test_wait_returns_failed_lab(session, fake_server, clock):
    fake_server.final_status = LabStatus.FAILED
    lab = create_lab(session, make_request())
    start_lab_execution(session, StartLabExecutionRequest(lab.lab_id, 1, 2))

    finished = wait_for_lab_completion(session, lab.lab_id, clock=clock)

    assert finished.status == LabStatus.FAILED


def test_wait_times_out(session, fake_server, clock):
    fake_server.polls_until_complete = 1000
    lab = create_lab(session, make_request())
    start_lab_execution(session, StartLabExecutionRequest(lab.lab_id, 1, 2))

    with pytest.raises(HaasTimeoutError, match="still RUNNING") as exc_info:
        wait_for_lab_completion(
            session, lab.lab_id, poll_interval_seconds=10, timeout_seconds=30, clock=clock
        )

    assert exc_info.value.retryable is True
    assert clock.sleeps == [10, 10, 10]
    polls = [call for call in fake_server.calls if call[2] == "GET_LAB_DETAILS"]
    assert len(polls) == 4


@pytest.mark.parametrize("interval, timeout", [(0, 10), (5, 0), (-1, 10)])
def test_wait_rejects_bad_intervals(session, interval, timeout):
    with pytest.raises(ValueError, match="must be positive"):
        wait_for_lab_completion(session, "lab-1", poll_interval_seconds=interval, timeout_seconds=timeout)


def test_cancel_lab_execution(session, fake_server):
    lab = create_lab(session, make_request())
    start_lab_execution(session, StartLabExecutionRequest(lab.lab_id, 1, 2))

    assert cancel_lab_execution(session, lab.lab_id) is None

    cancelled = get_lab_details(session, lab.lab_id)
    assert cancelled.status == LabStatus.FAILED
    assert cancelled.cancel_reason == "Cancelled by user"


def test_update_sends_unmodelled_fields(session, fake_server):
    lab = create_lab(session, make_request())
    assert lab.extra == {"RS": 0}
    lab.extra["RS"] = 5

    updated = update_lab_details(session, lab)

    assert update_calls(fake_server)[-1][3]["RS"] == 5
    assert updated.extra == {"RS": 5}


def test_get_lab_details_malformed_config(session, fake_server):
    lab = create_lab(session, make_request())
    fake_server.labs[lab.lab_id]["C"]["MR"] = "abc"

    with pytest.raises(HaasDeserializationError, match="'MR' must be a number"):
        get_lab_details(session, lab.lab_id)


def test_bulk_update_wraps_malformed_response(session, fake_server):
    lab = create_lab(session, make_request())
    lab.settings = "not-an-object"

    with pytest.raises(HaasBatchUpdateError) as exc_info:
        update_multiple_lab_details(session, [lab])

    assert isinstance(exc_info.value.cause, HaasDeserializationError)
    assert exc_info.value.applied == []
