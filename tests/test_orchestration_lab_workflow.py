"""
Tests for the end-to-end lab workflow.
"""

from datetime import datetime, timezone

import pytest

from src.data.schemas import CreateLabRequest, LabStatus, UserLabConfig
from src.orchestration.lab_workflow import LabBacktestRun, run_lab_backtest
from src.utils.time import SteppingClock
from src.venues.haas_client import HaasInvalidReferenceError
from src.venues.haas_resources import get_accounts, get_all_markets, get_all_script_items


@pytest.fixture
def clock():
    return SteppingClock(datetime(2024, 1, 1, tzinfo=timezone.utc))


def build_request(session, name="BTC sweep"):
    script = get_all_script_items(session)[0]
    account = get_accounts(session)[0]
    market = get_all_markets(session)[0]
    return CreateLabRequest(script.id, name, account.id, market.as_market_tag(), 15)


def channels(fake_server):
    return [call[2] for call in fake_server.calls]


def test_run_lab_backtest(session, fake_server, clock):
    request = build_request(session)
    # Results appear once the lab exists on the server
    fake_server.add_results("lab-1", 12)

    run = run_lab_backtest(
        session, request, "2024-01-01", "2024-02-01", page_length=5, clock=clock
    )

    assert isinstance(run, LabBacktestRun)
    assert run.succeeded
    assert run.lab.status == LabStatus.COMPLETED
    assert len(run.results) == 12
    assert len(run.to_frame()) == 12

    sequence = [c for c in channels(fake_server) if c not in ("MARKETLIST", "GET_ALL_SCRIPT_ITEMS", "GET_ACCOUNTS")]
    assert sequence == [
        "CREATE_LAB",
        "START_LAB_EXECUTION",
        "GET_LAB_DETAILS",
        "GET_LAB_DETAILS",
        "GET_BACKTEST_RESULT_PAGE",
        "GET_BACKTEST_RESULT_PAGE",
        "GET_BACKTEST_RESULT_PAGE",
    ]

    start_params = next(call[3] for call in fake_server.calls if call[2] == "START_LAB_EXECUTION")
    assert start_params["startunix"] == 1704067200
    assert start_params["endunix"] == 1706745600


def test_run_lab_backtest_with_configure(session, fake_server, clock):
    def configure(lab):
        lab.config = UserLabConfig(max_population=30, max_generations=5)
        return lab

    run = run_lab_backtest(
        session, build_request(session), "2024-01-01", "2024-01-15", configure=configure, clock=clock
    )

    assert run.lab.config.max_population == 30
    assert "UPDATE_LAB_DETAILS" in channels(fake_server)
    assert run.results == []


def test_run_lab_backtest_failed_lab_still_collects(session, fake_server, clock):
    fake_server.final_status = LabStatus.FAILED
    fake_server.add_results("lab-1", 3)

    run = run_lab_backtest(session, build_request(session), "2024-01-01", "2024-01-15", clock=clock)

    assert not run.succeeded
    assert len(run.results) == 3


def test_run_lab_backtest_invalid_reference_stops_early(session, fake_server, clock):
    request = CreateLabRequest("missing-script", "L1", "a1", "BINANCE_BTC_USDT_", 15)

    with pytest.raises(HaasInvalidReferenceError):
        run_lab_backtest(session, request, "2024-01-01", "2024-01-15", clock=clock)

    assert "START_LAB_EXECUTION" not in channels(fake_server)
