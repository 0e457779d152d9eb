"""
Lab lifecycle: create, start, inspect, update and wait for backtest labs.

**Conceptual**: A lab is a server-side backtest unit (script + account +
market + interval + parameter ranges). This module is the only place that
talks to the LabsAPI channels that change lab state.

**Lab state machine** (observed only by polling get_lab_details):
    CREATED -> CONFIGURED -> RUNNING -> COMPLETED | FAILED

**Request shaping**:
  - Creation takes a CreateLabRequest: five required fields plus the chart
    style. Those are fixed at creation time.
  - Configuration changes are read-modify-write: fetch a UserLabDetails,
    edit it, send the whole object to update_lab_details. There is no
    partial patch. The returned object is the server's authoritative state.

**Bulk updates**: update_multiple_lab_details sends updates one by one in
input order and stops at the first failure with HaasBatchUpdateError. The
server does not roll back, so earlier labs in the batch stay updated.
update_multiple_lab_details_each keeps going and reports per-lab outcomes.

**Concurrency**: No client-side locking. Concurrent updates of the same lab
are resolved by the server (last write wins).
"""

import json
import logging
from dataclasses import dataclass
from typing import Iterable, List, Optional

from src.data.schemas import (
    CreateLabRequest,
    StartLabExecutionRequest,
    UserLabDetails,
)
from src.utils.time import Clock, RealClock
from src.venues.haas_client import (
    LABS_API,
    HaasBatchUpdateError,
    HaasClientError,
    HaasTimeoutError,
    deserialize,
)
from src.venues.haas_session import HaasSession

logger = logging.getLogger(__name__)


def _require_lab_id(lab_id: str) -> str:
    if not lab_id or not lab_id.strip():
        raise ValueError("lab_id cannot be empty")
    return lab_id


def create_lab(session: HaasSession, request: CreateLabRequest) -> UserLabDetails:
    """
    Create a new lab on the server.

    Args:
        session: Authenticated session.
        request: Script, name, account, market tag, interval and chart style.

    Returns:
        The created lab (status CREATED).

    Raises:
        HaasInvalidReferenceError: Script, account or market is not usable
                                   by this session.
        HaasClientError: Any other transport or server failure.

    Example:
        >>> req = CreateLabRequest("s1", "L1", "a1", "BINANCE_BTC_USDT_", 15)
        >>> lab = create_lab(session, req)
        >>> lab.status
        <LabStatus.CREATED: 0>
    """
    params = {"channel": "CREATE_LAB"}
    params.update(request.to_params())

    data = session.execute("POST", LABS_API, params)
    lab = deserialize(UserLabDetails.from_dict, data, "CREATE_LAB")
    logger.info("Created lab %s (%s) on %s", lab.lab_id, lab.name, request.market)
    return lab


def start_lab_execution(session: HaasSession, request: StartLabExecutionRequest) -> UserLabDetails:
    """
    Start running a configured lab over the requested period.

    Starting a lab that is already running is left to the server; the
    client does not check the current status first.

    Returns:
        The lab as reported right after the start call.
    """
    params = {"channel": "START_LAB_EXECUTION"}
    params.update(request.to_params())

    data = session.execute("POST", LABS_API, params)
    lab = deserialize(UserLabDetails.from_dict, data, "START_LAB_EXECUTION")
    logger.info("Started lab %s (status %s)", lab.lab_id, lab.status.name)
    return lab


def cancel_lab_execution(session: HaasSession, lab_id: str) -> None:
    """Ask the server to stop a running lab. Results computed so far are kept."""
    _require_lab_id(lab_id)
    session.execute("POST", LABS_API, {"channel": "CANCEL_LAB_EXECUTION", "labid": lab_id})
    logger.info("Cancelled lab %s", lab_id)


def get_lab_details(session: HaasSession, lab_id: str) -> UserLabDetails:
    """
    Fetch the current state of a lab.

    Used both to poll execution status and as the read step of every update.

    Raises:
        ValueError: If lab_id is empty.
        HaasNotFoundError: The lab does not exist.
    """
    _require_lab_id(lab_id)
    data = session.execute("GET", LABS_API, {"channel": "GET_LAB_DETAILS", "labid": lab_id})
    return deserialize(UserLabDetails.from_dict, data, "GET_LAB_DETAILS")


def update_lab_details(session: HaasSession, details: UserLabDetails) -> UserLabDetails:
    """
    Replace a lab's mutable configuration with `details`.

    The whole object is sent (name, type, config, settings, parameters),
    plus the unmodelled fields in `details.extra` under their wire keys.
    Build `details` from a value returned by create_lab or get_lab_details.

    Returns:
        The lab as stored by the server after the update. This may differ
        from `details` (server-side normalisation) and is the value to keep.

    Raises:
        TypeError: If details is not a UserLabDetails.
        HaasClientError: Transport or server failure.
    """
    if not isinstance(details, UserLabDetails):
        raise TypeError(
            f"update_lab_details expects UserLabDetails, got {type(details).__name__}"
        )
    _require_lab_id(details.lab_id)

    params = {
        "channel": "UPDATE_LAB_DETAILS",
        "labid": details.lab_id,
        "name": details.name,
        "type": details.lab_type,
        "config": json.dumps(details.config.to_dict()),
        "settings": json.dumps(details.settings),
        "parameters": json.dumps(details.parameters),
    }
    for key, value in details.extra.items():
        params.setdefault(key, json.dumps(value) if isinstance(value, (dict, list)) else value)

    data = session.execute("POST", LABS_API, params)
    updated = deserialize(UserLabDetails.from_dict, data, "UPDATE_LAB_DETAILS")
    logger.debug("Updated lab %s", updated.lab_id)
    return updated


def update_multiple_lab_details(
    session: HaasSession,
    details: Iterable[UserLabDetails],
) -> List[UserLabDetails]:
    """
    Update several labs, one request per lab, in input order.

    **All-or-nothing reporting, not atomicity**: the first failure stops
    the batch and raises HaasBatchUpdateError. Labs before the failing one
    were already updated on the server and are not rolled back; the error
    carries their results in `applied`.

    Returns:
        Updated labs, in input order.

    Raises:
        HaasBatchUpdateError: An update failed (see `index`, `cause`).
    """
    applied: List[UserLabDetails] = []

    for index, lab in enumerate(details):
        try:
            applied.append(update_lab_details(session, lab))
        except HaasClientError as e:
            lab_id = getattr(lab, "lab_id", "<unknown>")
            logger.warning("Batch update stopped at index %d (lab %s): %s", index, lab_id, e)
            raise HaasBatchUpdateError(index, lab_id, e, applied) from e

    return applied


# Name used by the server-side SDK for the same operation
update_multiple_labs_details = update_multiple_lab_details


@dataclass(frozen=True)
class LabUpdateOutcome:
    """
    Result of one update inside update_multiple_lab_details_each.

    Exactly one of `details` / `error` is set.
    """
    lab_id: str
    details: Optional[UserLabDetails] = None
    error: Optional[HaasClientError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def update_multiple_lab_details_each(
    session: HaasSession,
    details: Iterable[UserLabDetails],
) -> List[LabUpdateOutcome]:
    """
    Update several labs and report success or failure per lab.

    Unlike update_multiple_lab_details, a failing lab does not stop the
    batch: every lab is attempted, and the caller sees exactly which
    updates were applied.

    Returns:
        One LabUpdateOutcome per input lab, in input order.
    """
    outcomes: List[LabUpdateOutcome] = []

    for lab in details:
        try:
            outcomes.append(LabUpdateOutcome(lab_id=lab.lab_id, details=update_lab_details(session, lab)))
        except HaasClientError as e:
            logger.warning("Update of lab %s failed: %s", lab.lab_id, e)
            outcomes.append(LabUpdateOutcome(lab_id=lab.lab_id, error=e))

    return outcomes


def wait_for_lab_completion(
    session: HaasSession,
    lab_id: str,
    poll_interval_seconds: float = 5.0,
    timeout_seconds: float = 3600.0,
    clock: Optional[Clock] = None,
) -> UserLabDetails:
    """
    Poll get_lab_details until the lab reaches COMPLETED or FAILED.

    Args:
        session: Authenticated session.
        lab_id: Lab to watch.
        poll_interval_seconds: Delay between polls (> 0).
        timeout_seconds: Give up after this long (> 0).
        clock: Time source; defaults to RealClock. Tests pass a SteppingClock.

    Returns:
        The lab in its terminal state. A FAILED lab is returned, not raised;
        check `status` and `cancel_reason`.

    Raises:
        HaasTimeoutError: The lab did not finish within timeout_seconds.
        HaasClientError: A poll failed. Polling does not retry.
    """
    if poll_interval_seconds <= 0 or timeout_seconds <= 0:
        raise ValueError("poll_interval_seconds and timeout_seconds must be positive")

    clock = clock or RealClock()
    started = clock.now()

    while True:
        lab = get_lab_details(session, lab_id)
        logger.debug(
            "Lab %s status=%s (%d/%d backtests)",
            lab_id, lab.status.name, lab.completed_backtests, lab.scheduled_backtests,
        )
        if lab.status.is_terminal:
            logger.info("Lab %s finished with status %s", lab_id, lab.status.name)
            return lab

        elapsed = (clock.now() - started).total_seconds()
        if elapsed + poll_interval_seconds > timeout_seconds:
            raise HaasTimeoutError(
                f"Lab {lab_id} still {lab.status.name} after {elapsed:.0f}s "
                f"(timeout {timeout_seconds:.0f}s)",
                operation="GET_LAB_DETAILS",
            )
        clock.sleep(poll_interval_seconds)
