"""
Data contracts for every entity exchanged with the HaasOnline server.

**Conceptual**: The server speaks JSON with terse upper-case keys ("PS",
"LID", "NP", ...). This module defines one dataclass per entity, with a
`from_dict` that maps wire keys to readable attribute names and validates
required fields, plus `to_dict`/`to_params` where the entity is sent back.
Nothing here knows about HTTP; the venue and lab layers call these parsers
and translate SchemaValidationError into their own error taxonomy.

**Schema philosophy**:
  - Entities returned by the server are value objects (frozen), with no
    reference to the session that fetched them.
  - UserLabDetails is the one mutable entity: callers edit it locally and
    send the whole object back (read-modify-write, no partial patches).
  - Fields the client does not model are kept verbatim in `extra` so a full
    representation survives a fetch/update round-trip.
  - Any missing or mistyped field raises SchemaValidationError naming the
    entity and the key.
"""

from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Dict, Generic, List, Optional, Protocol, Type, TypeVar

from src.utils.time import to_unix_seconds


class SchemaValidationError(Exception):
    """
    Raised when a server payload does not conform to the expected schema.

    **Conceptual**: Signals a missing key, a wrong type, or an unknown enum
    value. The message names the entity and the offending key so a server
    version mismatch is quick to diagnose.
    """
    pass


# Cursor sent for the first page of backtest results
FIRST_PAGE_ID = 0

# Cursor returned by the server once the last page has been served
LAST_PAGE_ID = -1


def _require(data: Dict[str, Any], key: str, context: str) -> Any:
    if not isinstance(data, dict):
        raise SchemaValidationError(
            f"{context}: expected an object, got {type(data).__name__}"
        )
    if key not in data:
        raise SchemaValidationError(
            f"{context}: missing required field '{key}'. Available: {sorted(data.keys())}"
        )
    return data[key]


def _as_int(value: Any, key: str, context: str) -> int:
    if isinstance(value, bool):
        raise SchemaValidationError(f"{context}: field '{key}' must be an integer, got bool")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise SchemaValidationError(
            f"{context}: field '{key}' must be an integer, got {value!r}"
        )


def _as_float(value: Any, key: str, context: str) -> float:
    if isinstance(value, bool):
        raise SchemaValidationError(f"{context}: field '{key}' must be a number, got bool")
    try:
        return float(value)
    except (TypeError, ValueError):
        raise SchemaValidationError(
            f"{context}: field '{key}' must be a number, got {value!r}"
        )


def _as_dict(value: Any, key: str, context: str) -> Dict[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise SchemaValidationError(
            f"{context}: field '{key}' must be an object, got {type(value).__name__}"
        )
    return dict(value)


class ChartStyle(IntEnum):
    """Price plot style stored with a lab. The server default is candlestick."""
    CANDLESTICK = 300
    HEIKIN_ASHI = 301
    OHLC = 302
    LINE = 303


class LabStatus(IntEnum):
    """
    Lab execution state as reported by the server.

    Created -> Configured (queued) -> Running -> Completed | Failed.
    Transitions are only ever observed by polling get_lab_details.
    """
    CREATED = 0
    CONFIGURED = 1
    RUNNING = 2
    COMPLETED = 3
    FAILED = 4

    @property
    def is_terminal(self) -> bool:
        return self in (LabStatus.COMPLETED, LabStatus.FAILED)


@dataclass(frozen=True)
class CloudMarket:
    """
    A tradable pair on a price source.

    Attributes:
        price_source: Exchange / price feed name (e.g., "BINANCE").
        primary: Base coin (e.g., "BTC").
        secondary: Quote coin (e.g., "USDT").
    """
    price_source: str
    primary: str
    secondary: str

    @property
    def market_tag(self) -> str:
        """
        Canonical market identifier used in lab requests.

        The trailing underscore is the (empty) contract-type slot the server
        expects for spot markets, e.g. "BINANCE_BTC_USDT_".
        """
        return f"{self.price_source}_{self.primary}_{self.secondary}_".upper()

    def as_market_tag(self) -> str:
        return self.market_tag

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CloudMarket":
        context = "CloudMarket"
        return cls(
            price_source=str(_require(data, "PS", context)),
            primary=str(_require(data, "P", context)),
            secondary=str(_require(data, "S", context)),
        )


@dataclass(frozen=True)
class ScriptItem:
    """
    A HaasScript visible to the session, with its declared dependencies.

    Dependencies are carried through untouched; the client never resolves them.
    """
    script_id: str
    name: str = ""
    description: str = ""
    script_type: int = 0
    dependencies: tuple = ()

    @property
    def id(self) -> str:
        return self.script_id

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ScriptItem":
        context = "ScriptItem"
        dependencies = data.get("D", []) if isinstance(data, dict) else []
        if dependencies is None:
            dependencies = []
        if not isinstance(dependencies, list):
            raise SchemaValidationError(
                f"{context}: field 'D' must be a list, got {type(dependencies).__name__}"
            )
        return cls(
            script_id=str(_require(data, "SID", context)),
            name=str(data.get("SN", "")),
            description=str(data.get("SD", "")),
            script_type=_as_int(data.get("ST", 0), "ST", context),
            dependencies=tuple(dependencies),
        )


# The server's own name for a script listing entry
HaasScriptItemWithDependencies = ScriptItem


@dataclass(frozen=True)
class UserAccount:
    """A trading account (real or simulated) owned by the session's user."""
    account_id: str
    name: str = ""
    exchange_code: str = ""
    is_simulated: bool = False

    @property
    def id(self) -> str:
        return self.account_id

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "UserAccount":
        context = "UserAccount"
        return cls(
            account_id=str(_require(data, "AID", context)),
            name=str(data.get("N", "")),
            exchange_code=str(data.get("EC", "")),
            is_simulated=bool(data.get("S", False)),
        )


@dataclass(frozen=True)
class CreateLabRequest:
    """
    Input for create_lab. Used once to construct a lab, never persisted.

    Attributes:
        script_id: Script the lab will optimise.
        name: Display name of the lab.
        account_id: Account the lab's bots trade on.
        market: Market tag (see CloudMarket.market_tag).
        interval: Candle interval in minutes (>= 1).
        style: Chart style, defaults to candlestick.
    """
    script_id: str
    name: str
    account_id: str
    market: str
    interval: int
    style: ChartStyle = ChartStyle.CANDLESTICK

    def __post_init__(self):
        for attr in ("script_id", "name", "account_id", "market"):
            value = getattr(self, attr)
            if not value or not str(value).strip():
                raise ValueError(f"CreateLabRequest.{attr} cannot be empty")
        if isinstance(self.interval, bool) or not isinstance(self.interval, int) or self.interval < 1:
            raise ValueError(
                f"CreateLabRequest.interval must be a positive integer, got {self.interval!r}"
            )

    def to_params(self) -> Dict[str, Any]:
        return {
            "scriptid": self.script_id,
            "name": self.name,
            "accountid": self.account_id,
            "market": self.market,
            "interval": self.interval,
            "style": int(self.style),
        }


@dataclass(frozen=True)
class UserLabConfig:
    """Genetic search sizing for a lab."""
    max_population: int = 10
    max_generations: int = 100
    max_elites: int = 3
    mix_rate: float = 40.0
    adjust_rate: float = 25.0

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "UserLabConfig":
        context = "UserLabConfig"
        return cls(
            max_population=_as_int(_require(data, "MP", context), "MP", context),
            max_generations=_as_int(_require(data, "MG", context), "MG", context),
            max_elites=_as_int(_require(data, "ME", context), "ME", context),
            mix_rate=_as_float(_require(data, "MR", context), "MR", context),
            adjust_rate=_as_float(_require(data, "AR", context), "AR", context),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "MP": self.max_population,
            "MG": self.max_generations,
            "ME": self.max_elites,
            "MR": self.mix_rate,
            "AR": self.adjust_rate,
        }


# Wire keys modelled explicitly by UserLabDetails; everything else goes to `extra`
_LAB_DETAIL_KEYS = (
    "LID", "SID", "N", "T", "S", "C", "ST", "P",
    "CA", "UA", "SA", "SB", "CB", "CM",
)


@dataclass
class UserLabDetails:
    """
    A lab as stored on the server.

    **Conceptual**: Identity (lab_id, script_id) plus mutable configuration
    (name, config, settings, parameters) plus server-managed bookkeeping
    (timestamps, backtest counters, status). Mutable so callers can edit a
    fetched copy and send it back with update_lab_details.

    **Invariant**: An update always sends the full object. Build updates
    from a value returned by create_lab / get_lab_details, never from
    scratch.

    Attributes:
        lab_id: Server-assigned identifier.
        script_id: Script being optimised.
        name: Display name.
        lab_type: Server lab type code.
        status: Current LabStatus.
        config: Genetic search sizing.
        settings: Bot settings (account, market, interval, ...); opaque dict.
        parameters: Script parameter ranges; opaque list of dicts.
        created_at / updated_at / started_at: Unix seconds, server-managed.
        scheduled_backtests / completed_backtests: Progress counters.
        cancel_reason: Server message when the lab was cancelled or failed.
        extra: Unmodelled wire fields, preserved verbatim.
    """
    lab_id: str
    script_id: str
    name: str
    lab_type: int = 0
    status: LabStatus = LabStatus.CREATED
    config: UserLabConfig = field(default_factory=UserLabConfig)
    settings: Dict[str, Any] = field(default_factory=dict)
    parameters: List[Dict[str, Any]] = field(default_factory=list)
    created_at: int = 0
    updated_at: int = 0
    started_at: int = 0
    scheduled_backtests: int = 0
    completed_backtests: int = 0
    cancel_reason: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    @property
    def id(self) -> str:
        return self.lab_id

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "UserLabDetails":
        context = "UserLabDetails"
        raw_status = _as_int(_require(data, "S", context), "S", context)
        try:
            status = LabStatus(raw_status)
        except ValueError:
            raise SchemaValidationError(f"{context}: unknown lab status {raw_status}")

        settings = _as_dict(data.get("ST"), "ST", context)
        parameters = data.get("P") or []
        if not isinstance(parameters, list):
            raise SchemaValidationError(f"{context}: field 'P' must be a list")

        config_data = data.get("C")
        config = UserLabConfig.from_dict(config_data) if config_data else UserLabConfig()

        return cls(
            lab_id=str(_require(data, "LID", context)),
            script_id=str(_require(data, "SID", context)),
            name=str(_require(data, "N", context)),
            lab_type=_as_int(data.get("T", 0), "T", context),
            status=status,
            config=config,
            settings=settings,
            parameters=list(parameters),
            created_at=_as_int(data.get("CA", 0), "CA", context),
            updated_at=_as_int(data.get("UA", 0), "UA", context),
            started_at=_as_int(data.get("SA", 0), "SA", context),
            scheduled_backtests=_as_int(data.get("SB", 0), "SB", context),
            completed_backtests=_as_int(data.get("CB", 0), "CB", context),
            cancel_reason=data.get("CM") or None,
            extra={k: v for k, v in data.items() if k not in _LAB_DETAIL_KEYS},
        )

    def to_dict(self) -> Dict[str, Any]:
        data = dict(self.extra)
        data.update({
            "LID": self.lab_id,
            "SID": self.script_id,
            "N": self.name,
            "T": self.lab_type,
            "S": int(self.status),
            "C": self.config.to_dict(),
            "ST": dict(self.settings),
            "P": list(self.parameters),
            "CA": self.created_at,
            "UA": self.updated_at,
            "SA": self.started_at,
            "SB": self.scheduled_backtests,
            "CB": self.completed_backtests,
            "CM": self.cancel_reason or "",
        })
        return data

    def same_configuration(self, other: "UserLabDetails") -> bool:
        """True if both labs match on identity and mutable configuration (timestamps ignored)."""
        return (
            self.lab_id == other.lab_id
            and self.script_id == other.script_id
            and self.name == other.name
            and self.lab_type == other.lab_type
            and self.config == other.config
            and self.settings == other.settings
            and self.parameters == other.parameters
        )


@dataclass(frozen=True)
class StartLabExecutionRequest:
    """
    Input for start_lab_execution, bound to one lab.

    Attributes:
        lab_id: Lab to start.
        start_unix: Backtest period start (Unix seconds, UTC).
        end_unix: Backtest period end (Unix seconds, UTC).
        send_email: Ask the server to e-mail when the lab finishes.
    """
    lab_id: str
    start_unix: int
    end_unix: int
    send_email: bool = False

    def __post_init__(self):
        if not self.lab_id or not self.lab_id.strip():
            raise ValueError("StartLabExecutionRequest.lab_id cannot be empty")
        if self.start_unix >= self.end_unix:
            raise ValueError(
                f"start_unix ({self.start_unix}) must be before end_unix ({self.end_unix})"
            )

    @classmethod
    def from_timestamps(cls, lab_id: str, start, end, send_email: bool = False) -> "StartLabExecutionRequest":
        """
        Build a request from date-like values (str, datetime, pd.Timestamp).

        Example:
            >>> req = StartLabExecutionRequest.from_timestamps("lab-1", "2024-01-01", "2024-02-01")
            >>> req.start_unix
            1704067200
        """
        return cls(
            lab_id=lab_id,
            start_unix=to_unix_seconds(start),
            end_unix=to_unix_seconds(end),
            send_email=send_email,
        )

    def to_params(self) -> Dict[str, Any]:
        return {
            "labid": self.lab_id,
            "startunix": self.start_unix,
            "endunix": self.end_unix,
            "sendemail": "true" if self.send_email else "false",
        }


R = TypeVar("R", bound="CustomReport")
T = TypeVar("T")


class CustomReport(Protocol):
    """
    Caller-defined shape for the per-result report payload.

    **Conceptual**: Each backtest result carries a script-specific report
    under the generic "CR" field. The client never interprets it; it hands
    the payload to the caller's type. Any class with a `from_dict`
    classmethod satisfies this protocol (structural typing, no inheritance).

    **Example**:
        >>> @dataclass(frozen=True)
        ... class PnlReport:
        ...     profit: float
        ...     @classmethod
        ...     def from_dict(cls, payload):
        ...         return cls(profit=float(payload["profit"]))
    """

    @classmethod
    def from_dict(cls, payload: Any) -> "CustomReport":
        ...


@dataclass(frozen=True)
class RawReport:
    """Default report type: keeps the server payload untouched."""
    payload: Any = None

    @classmethod
    def from_dict(cls, payload: Any) -> "RawReport":
        return cls(payload=payload)


@dataclass(frozen=True)
class UserLabBacktestResult(Generic[R]):
    """
    One backtest row of a lab.

    Attributes:
        record_id: Row identifier within the lab.
        backtest_id: Server backtest identifier.
        generation_idx / population_idx: Position in the genetic search.
        status: Server status code of this backtest.
        settings: Bot settings used; opaque dict.
        parameters: Script parameter values used (name -> value).
        summary: Server-computed summary; opaque dict.
        report: The custom report, parsed by the caller's report type.
    """
    record_id: int
    backtest_id: str
    generation_idx: int
    population_idx: int
    status: int
    settings: Dict[str, Any]
    parameters: Dict[str, Any]
    summary: Dict[str, Any]
    report: R

    @classmethod
    def from_dict(cls, data: Dict[str, Any], report_type: Type[Any] = RawReport) -> "UserLabBacktestResult":
        context = "UserLabBacktestResult"
        raw_report = _require(data, "CR", context)
        try:
            report = report_type.from_dict(raw_report)
        except Exception as e:
            raise SchemaValidationError(
                f"{context}: custom report could not be parsed by "
                f"{getattr(report_type, '__name__', report_type)}: {e}"
            ) from e

        return cls(
            record_id=_as_int(_require(data, "RID", context), "RID", context),
            backtest_id=str(_require(data, "BID", context)),
            generation_idx=_as_int(data.get("NG", 0), "NG", context),
            population_idx=_as_int(data.get("NP", 0), "NP", context),
            status=_as_int(data.get("ST", 0), "ST", context),
            settings=_as_dict(data.get("SE"), "SE", context),
            parameters=_as_dict(data.get("P"), "P", context),
            summary=_as_dict(data.get("S"), "S", context),
            report=report,
        )


@dataclass(frozen=True)
class PaginatedResponse(Generic[T]):
    """
    One page of results plus the cursor for the next page.

    `next_page_id` is opaque: pass it back unchanged. A negative cursor
    (LAST_PAGE_ID) or an empty page both mean there is nothing left.
    """
    items: List[T]
    next_page_id: int

    @property
    def has_more(self) -> bool:
        return self.next_page_id >= 0 and len(self.items) > 0
