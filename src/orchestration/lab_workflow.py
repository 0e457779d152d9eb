"""
End-to-end lab backtest workflow.

**Conceptual**: Ties the pieces together in the order a caller normally
uses them:
  1. create a lab from a script, account and market tag
  2. optionally apply configuration changes (read-modify-write)
  3. start execution over a date range
  4. poll until the lab completes or fails
  5. page through every backtest result

Each step is a plain call into the accessor/lab/result modules, so a caller
that needs a different sequence can compose those directly.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional, Type

import pandas as pd

from src.backtesting.labs import (
    create_lab,
    start_lab_execution,
    update_lab_details,
    wait_for_lab_completion,
)
from src.backtesting.results import backtest_results_to_frame, fetch_all_backtest_results
from src.data.schemas import (
    CreateLabRequest,
    LabStatus,
    RawReport,
    StartLabExecutionRequest,
    UserLabBacktestResult,
    UserLabDetails,
)
from src.utils.time import Clock
from src.venues.haas_session import HaasSession

logger = logging.getLogger(__name__)


@dataclass
class LabBacktestRun:
    """
    Outcome of run_lab_backtest.

    Attributes:
        lab: Lab details in their final (terminal) state.
        results: Every backtest result, in server order.
    """
    lab: UserLabDetails
    results: List[UserLabBacktestResult] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.lab.status == LabStatus.COMPLETED

    def to_frame(self) -> pd.DataFrame:
        return backtest_results_to_frame(self.results)


def run_lab_backtest(
    session: HaasSession,
    request: CreateLabRequest,
    start,
    end,
    configure: Optional[Callable[[UserLabDetails], UserLabDetails]] = None,
    report_type: Type[Any] = RawReport,
    page_length: int = 100,
    poll_interval_seconds: float = 5.0,
    timeout_seconds: float = 3600.0,
    clock: Optional[Clock] = None,
) -> LabBacktestRun:
    """
    Create a lab, run it over [start, end] and collect all results.

    Args:
        session: Authenticated session.
        request: Lab creation parameters.
        start / end: Backtest period (str, datetime or pd.Timestamp; naive = UTC).
        configure: Optional callback that receives the freshly created lab
                   and returns the edited copy to send to update_lab_details.
        report_type: Custom report class for result rows.
        page_length: Rows per result page.
        poll_interval_seconds / timeout_seconds / clock: Passed to
                   wait_for_lab_completion.

    Returns:
        LabBacktestRun with the terminal lab and its results. Results are
        still collected for a FAILED lab (whatever the server kept).

    Raises:
        HaasClientError: Any step failed (nothing is retried).

    Example:
        >>> req = CreateLabRequest(script.id, "BTC sweep", account.id, market.market_tag, 15)
        >>> run = run_lab_backtest(session, req, "2024-01-01", "2024-03-01")
        >>> run.to_frame().head()
    """
    lab = create_lab(session, request)

    if configure is not None:
        lab = update_lab_details(session, configure(lab))

    start_request = StartLabExecutionRequest.from_timestamps(lab.lab_id, start, end)
    start_lab_execution(session, start_request)

    lab = wait_for_lab_completion(
        session,
        lab.lab_id,
        poll_interval_seconds=poll_interval_seconds,
        timeout_seconds=timeout_seconds,
        clock=clock,
    )
    if lab.status == LabStatus.FAILED:
        logger.warning("Lab %s failed: %s", lab.lab_id, lab.cancel_reason or "no reason given")

    results = fetch_all_backtest_results(session, lab.lab_id, page_length, report_type)
    return LabBacktestRun(lab=lab, results=results)
