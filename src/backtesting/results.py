"""
Backtest result retrieval with cursor pagination.

**Conceptual**: A lab may produce thousands of backtests. The server hands
them out one page at a time: each call takes a cursor (`next_page_id`) and
a page length, and returns up to that many rows plus the cursor for the
next call. The client holds no state between calls; the caller threads the
cursor through (or uses iter_backtest_results, which does it for them).

**Cursor rules**:
  - Start from FIRST_PAGE_ID (0).
  - Pass `next_page_id` back unchanged; never compute it. It is opaque.
  - Stop when the returned cursor is negative (LAST_PAGE_ID) or the page
    is empty. Either one means "no more data".

**Custom reports**: Each row carries a script-specific report. The caller
passes `report_type` (any class with a `from_dict` classmethod); rows are
built as UserLabBacktestResult[report_type]. If one report fails to parse,
the whole page fails with HaasDeserializationError; rows are never dropped.

**Consistency**: Pages are snapshots. Reading pages while the lab is still
running is best effort; rows may shift between calls.
"""

import logging
from typing import Any, Dict, Iterator, List, Sequence, Type

import pandas as pd

from src.data.schemas import (
    FIRST_PAGE_ID,
    PaginatedResponse,
    RawReport,
    SchemaValidationError,
    UserLabBacktestResult,
)
from src.venues.haas_client import LABS_API, HaasProtocolError, deserialize
from src.venues.haas_session import HaasSession

logger = logging.getLogger(__name__)


RESULT_BASE_COLUMNS = [
    "record_id",
    "backtest_id",
    "generation_idx",
    "population_idx",
    "status",
]


def _parse_page(data: Any, report_type: Type[Any]) -> PaginatedResponse:
    if not isinstance(data, dict):
        raise SchemaValidationError(f"PaginatedResponse: expected an object, got {type(data).__name__}")
    if "I" not in data or "NP" not in data:
        raise SchemaValidationError(
            f"PaginatedResponse: missing 'I' or 'NP'. Available: {sorted(data.keys())}"
        )

    raw_items = data["I"] if data["I"] is not None else []
    if not isinstance(raw_items, list):
        raise SchemaValidationError("PaginatedResponse: field 'I' must be a list")

    items = []
    for position, raw in enumerate(raw_items):
        try:
            items.append(UserLabBacktestResult.from_dict(raw, report_type))
        except SchemaValidationError as e:
            raise SchemaValidationError(f"item {position}: {e}") from e

    try:
        next_page_id = int(data["NP"])
    except (TypeError, ValueError):
        raise SchemaValidationError(f"PaginatedResponse: 'NP' must be an integer, got {data['NP']!r}")

    return PaginatedResponse(items=items, next_page_id=next_page_id)


def get_backtest_result(
    session: HaasSession,
    lab_id: str,
    next_page_id: int,
    page_length: int,
    report_type: Type[Any] = RawReport,
) -> PaginatedResponse:
    """
    Fetch one page of backtest results.

    Args:
        session: Authenticated session.
        lab_id: Lab whose results to read.
        next_page_id: Cursor; FIRST_PAGE_ID for the first page, then the
                      value returned by the previous call.
        page_length: Maximum rows in this page (>= 1).
        report_type: Class used to parse each row's custom report.

    Returns:
        PaginatedResponse of UserLabBacktestResult[report_type].

    Raises:
        ValueError: Empty lab_id, page_length < 1 or negative cursor.
        HaasDeserializationError: A row or its report is malformed.
        HaasClientError: Transport or server failure.

    Example:
        >>> page = get_backtest_result(session, "lab-123", FIRST_PAGE_ID, 10)
        >>> len(page.items), page.next_page_id
        (10, 10)
    """
    if not lab_id or not lab_id.strip():
        raise ValueError("lab_id cannot be empty")
    if isinstance(page_length, bool) or not isinstance(page_length, int) or page_length < 1:
        raise ValueError(f"page_length must be a positive integer, got {page_length!r}")
    if isinstance(next_page_id, bool) or not isinstance(next_page_id, int) or next_page_id < 0:
        raise ValueError(f"next_page_id must be a non-negative integer, got {next_page_id!r}")

    data = session.execute("GET", LABS_API, {
        "channel": "GET_BACKTEST_RESULT_PAGE",
        "labid": lab_id,
        "nextpageid": next_page_id,
        "pagelength": page_length,
    })
    page = deserialize(lambda d: _parse_page(d, report_type), data, "GET_BACKTEST_RESULT_PAGE")
    logger.debug(
        "Lab %s page at cursor %s: %d rows, next cursor %s",
        lab_id, next_page_id, len(page.items), page.next_page_id,
    )
    return page


def iter_backtest_results(
    session: HaasSession,
    lab_id: str,
    page_length: int = 100,
    report_type: Type[Any] = RawReport,
    start_page_id: int = FIRST_PAGE_ID,
) -> Iterator[UserLabBacktestResult]:
    """
    Lazily yield every backtest result of a lab, page by page.

    Forward-only and not restartable: each page is fetched when the
    previous one is exhausted. Call again to start over.

    Raises:
        HaasProtocolError: The server returned the same cursor it was given
                           for a non-empty page (pagination would never end).
        HaasClientError: Any page fetch failure, raised at the point of iteration.
    """
    cursor = start_page_id
    while True:
        page = get_backtest_result(session, lab_id, cursor, page_length, report_type)
        yield from page.items

        if not page.has_more:
            return
        if page.next_page_id == cursor:
            raise HaasProtocolError(
                f"Server returned cursor {cursor} again for lab {lab_id}; refusing to loop",
                operation="GET_BACKTEST_RESULT_PAGE",
            )
        cursor = page.next_page_id


def fetch_all_backtest_results(
    session: HaasSession,
    lab_id: str,
    page_length: int = 100,
    report_type: Type[Any] = RawReport,
) -> List[UserLabBacktestResult]:
    """Collect every backtest result of a lab into a list."""
    results = list(iter_backtest_results(session, lab_id, page_length, report_type))
    logger.info("Fetched %d backtest results for lab %s", len(results), lab_id)
    return results


def _scalar_items(prefix: str, values: Dict[str, Any]) -> Dict[str, Any]:
    return {
        f"{prefix}.{key}": value
        for key, value in values.items()
        if value is None or isinstance(value, (str, int, float, bool))
    }


def backtest_results_to_frame(results: Sequence[UserLabBacktestResult]) -> pd.DataFrame:
    """
    Flatten backtest results into a DataFrame, one row per backtest.

    **Columns**:
      - record_id, backtest_id, generation_idx, population_idx, status
      - param.<name> for each script parameter
      - summary.<key> for each scalar summary value
      - report: the parsed custom report object

    Nested summary values are skipped; use the result objects for those.

    Example:
        >>> df = backtest_results_to_frame(fetch_all_backtest_results(session, lab_id))
        >>> df.sort_values("summary.profit", ascending=False).head()
    """
    if len(results) == 0:
        return pd.DataFrame(columns=RESULT_BASE_COLUMNS + ["report"])

    rows = []
    for result in results:
        row = {
            "record_id": result.record_id,
            "backtest_id": result.backtest_id,
            "generation_idx": result.generation_idx,
            "population_idx": result.population_idx,
            "status": result.status,
        }
        row.update(_scalar_items("param", result.parameters))
        row.update(_scalar_items("summary", result.summary))
        row["report"] = result.report
        rows.append(row)

    df = pd.DataFrame(rows)
    # Keep base columns first, then the rest in first-seen order
    ordered = RESULT_BASE_COLUMNS + [c for c in df.columns if c not in RESULT_BASE_COLUMNS and c != "report"] + ["report"]
    return df[ordered]
