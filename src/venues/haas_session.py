"""
Authenticated session for the HaasOnline server.

**Conceptual**: A HaasSession is the proof that `authenticate` succeeded:
the server address it is bound to, the user id, and the interface key the
server associated with the login. Every accessor, lab and result call takes
the session as its first argument; there is no global client.

**Login flow**: The server uses a two-step login. The client picks a random
interface key, posts the credentials with it (LOGIN_WITH_CREDENTIALS), then
confirms with a one-time code (LOGIN_WITH_ONE_TIME_CODE). The second step
returns the user id. Subsequent requests carry `interfacekey` and `userid`.

**Lifecycle**: The session is immutable and never written to disk. It ends
when the process exits or the server invalidates it; calls on an invalid
session raise HaasAuthenticationError.
"""

import logging
import secrets
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from src.config.settings import SUPPORTED_PROTOCOLS, HaasSettings
from src.venues.base import TransportExecutor
from src.venues.haas_client import (
    USER_API,
    HaasAuthenticationError,
    HaasClient,
    HaasInvalidReferenceError,
    HaasNotFoundError,
    HaasProtocolError,
    HaasRequestRejectedError,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class HaasSession:
    """
    Validated authentication context bound to one server and one user.

    Attributes:
        address / port / protocol: Server this session belongs to.
        email: User the session was opened for.
        user_id: Server user id returned by the login.
        interface_key: Key sent with every authenticated request.
        transport: TransportExecutor used for requests (not part of equality).
    """
    address: str
    port: int
    protocol: str
    email: str
    user_id: str
    interface_key: str = field(repr=False)
    transport: TransportExecutor = field(repr=False, compare=False)

    @property
    def base_url(self) -> str:
        return f"{self.protocol}://{self.address}:{self.port}"

    def auth_params(self) -> Dict[str, str]:
        """Query parameters that authenticate a request."""
        return {"interfacekey": self.interface_key, "userid": self.user_id}

    def execute(self, method: str, path: str, params: Dict[str, Any]) -> Any:
        """Send an authenticated request through the bound transport."""
        return self.transport.execute(self, method, path, params)


def _validate_login_inputs(address: str, port: int, protocol: str, email: str, password: str) -> None:
    if not address or not address.strip():
        raise ValueError("address cannot be empty")
    if not protocol or protocol.lower() not in SUPPORTED_PROTOCOLS:
        raise ValueError(f"protocol must be one of {SUPPORTED_PROTOCOLS}, got: {protocol!r}")
    if isinstance(port, bool) or not isinstance(port, int) or not 0 < port < 65536:
        raise ValueError(f"port must be an integer in 1..65535, got: {port!r}")
    if not email or not password:
        raise ValueError("email and password cannot be empty")


def authenticate(
    address: str,
    port: int,
    protocol: str,
    email: str,
    password: str,
    *,
    transport: Optional[TransportExecutor] = None,
    timeout_seconds: int = 30,
) -> HaasSession:
    """
    Log in to the server and return a session bound to it.

    **No retries, no caching**: a failed login raises; the password is not
    kept anywhere after this call returns.

    Args:
        address: Server host.
        port: Server port (1..65535).
        protocol: "http" or "https".
        email: Login email.
        password: Login password.
        transport: Optional transport (for testing/DI). Defaults to a new
                   HaasClient for protocol://address:port.
        timeout_seconds: Request timeout for the default transport.

    Returns:
        HaasSession bound to exactly this address/port/protocol.

    Raises:
        ValueError: If an input is empty or out of range.
        HaasAuthenticationError: Credentials were rejected.
        HaasUnreachableError / HaasTimeoutError: Server could not be reached.
        HaasProtocolError: The login response was malformed.

    Example:
        >>> session = authenticate("127.0.0.1", 8090, "http", "me@example.com", "secret")
        >>> markets = get_all_markets(session)
    """
    _validate_login_inputs(address, port, protocol, email, password)
    protocol = protocol.lower()

    if transport is None:
        transport = HaasClient(f"{protocol}://{address}:{port}", timeout_seconds=timeout_seconds)

    interface_key = uuid.uuid4().hex
    one_time_code = f"{secrets.randbelow(1_000_000):06d}"

    logger.info("Authenticating %s against %s://%s:%s", email, protocol, address, port)

    try:
        transport.execute(None, "POST", USER_API, {
            "channel": "LOGIN_WITH_CREDENTIALS",
            "email": email,
            "password": password,
            "interfacekey": interface_key,
        })
        data = transport.execute(None, "POST", USER_API, {
            "channel": "LOGIN_WITH_ONE_TIME_CODE",
            "email": email,
            "pincode": one_time_code,
            "interfacekey": interface_key,
        })
    except (HaasRequestRejectedError, HaasInvalidReferenceError, HaasNotFoundError) as e:
        # Only envelope refusals are credential failures; an HTTP 404 is a wrong address or path
        if e.status_code not in (None, 200):
            raise
        raise HaasAuthenticationError(
            f"Login rejected for {email}: {e}",
            status_code=e.status_code,
            operation=e.operation,
        ) from e

    if not isinstance(data, dict) or not data.get("UserId"):
        raise HaasProtocolError(
            f"Login response is missing 'UserId': {data!r}",
            operation="LOGIN_WITH_ONE_TIME_CODE",
        )

    session = HaasSession(
        address=address,
        port=port,
        protocol=protocol,
        email=email,
        user_id=str(data["UserId"]),
        interface_key=str(data.get("InterfaceKey") or interface_key),
        transport=transport,
    )
    logger.info("Authenticated %s as user %s", email, session.user_id)
    return session


def authenticate_from_settings(
    settings: HaasSettings,
    transport: Optional[TransportExecutor] = None,
) -> HaasSession:
    """
    Authenticate with connection details from HaasSettings.

    Example:
        >>> from src.config.settings import get_settings
        >>> session = authenticate_from_settings(get_settings(require_haas=True).haas)
    """
    if transport is None:
        transport = HaasClient.from_settings(settings)

    return authenticate(
        settings.address,
        settings.port,
        settings.protocol,
        settings.email,
        settings.password,
        transport=transport,
    )
