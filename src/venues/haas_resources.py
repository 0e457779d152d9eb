"""
Read-only resource accessors: markets, scripts and accounts.

**Conceptual**: These are the lookups a caller runs before creating a lab,
to collect a market tag, a script id and an account id. Each accessor sends
one authenticated request, parses the whole collection, and returns it as a
list of frozen entities.

**Guarantees**:
  - Idempotent and side-effect free.
  - All or nothing: a single malformed element fails the call with
    HaasDeserializationError; a truncated list is never returned.
  - Filtering by price source happens on the server (exact match as the
    server defines it); nothing is filtered locally.
"""

import logging
from typing import Any, Callable, List, Optional, Sequence, TypeVar

from src.data.schemas import CloudMarket, SchemaValidationError, ScriptItem, UserAccount
from src.venues.haas_client import (
    ACCOUNT_API,
    PRICE_API,
    SCRIPT_API,
    HaasDeserializationError,
    deserialize,
)
from src.venues.haas_session import HaasSession

logger = logging.getLogger(__name__)

E = TypeVar("E")


def _parse_collection(payload: Any, parse: Callable[[Any], E], operation: str) -> List[E]:
    if not isinstance(payload, list):
        raise HaasDeserializationError(
            f"Expected a list from {operation}, got {type(payload).__name__}",
            operation=operation,
        )

    def parse_all(items):
        parsed = []
        for position, item in enumerate(items):
            try:
                parsed.append(parse(item))
            except SchemaValidationError as e:
                raise SchemaValidationError(f"item {position}: {e}") from e
        return parsed

    return deserialize(parse_all, payload, operation)


def get_all_markets(session: HaasSession) -> List[CloudMarket]:
    """
    Fetch every market known to the server.

    Returns:
        List of CloudMarket (server order).

    Raises:
        HaasClientError: Transport, authentication or deserialization failure.
    """
    data = session.execute("GET", PRICE_API, {"channel": "MARKETLIST"})
    markets = _parse_collection(data, CloudMarket.from_dict, "MARKETLIST")
    logger.debug("Fetched %d markets", len(markets))
    return markets


def get_all_markets_by_price_source(session: HaasSession, price_source: str) -> List[CloudMarket]:
    """
    Fetch the markets of one price source, filtered by the server.

    Args:
        session: Authenticated session.
        price_source: Price source name, sent verbatim (e.g., "BINANCE").

    Raises:
        ValueError: If price_source is empty.
        HaasClientError: Transport, authentication or deserialization failure.
    """
    if not price_source or not price_source.strip():
        raise ValueError("price_source cannot be empty")

    data = session.execute("GET", PRICE_API, {"channel": "MARKETLIST", "pricesource": price_source})
    markets = _parse_collection(data, CloudMarket.from_dict, "MARKETLIST")
    logger.debug("Fetched %d markets for %s", len(markets), price_source)
    return markets


def get_all_script_items(session: HaasSession) -> List[ScriptItem]:
    """Fetch every script visible to the session, with declared dependencies."""
    data = session.execute("GET", SCRIPT_API, {"channel": "GET_ALL_SCRIPT_ITEMS"})
    return _parse_collection(data, ScriptItem.from_dict, "GET_ALL_SCRIPT_ITEMS")


def get_accounts(session: HaasSession) -> List[UserAccount]:
    """Fetch the accounts of the session's user."""
    data = session.execute("GET", ACCOUNT_API, {"channel": "GET_ACCOUNTS"})
    return _parse_collection(data, UserAccount.from_dict, "GET_ACCOUNTS")


def find_market(
    markets: Sequence[CloudMarket],
    primary: str,
    secondary: str,
    price_source: Optional[str] = None,
) -> Optional[CloudMarket]:
    """
    Pick a market out of an already-fetched list.

    Coin symbols and price source are compared case-insensitively.

    Returns:
        The first matching CloudMarket, or None.

    Example:
        >>> markets = get_all_markets_by_price_source(session, "BINANCE")
        >>> btc_usdt = find_market(markets, "BTC", "USDT")
        >>> btc_usdt.market_tag
        'BINANCE_BTC_USDT_'
    """
    primary = primary.upper()
    secondary = secondary.upper()
    source = price_source.upper() if price_source else None

    for market in markets:
        if market.primary.upper() != primary or market.secondary.upper() != secondary:
            continue
        if source is not None and market.price_source.upper() != source:
            continue
        return market
    return None
