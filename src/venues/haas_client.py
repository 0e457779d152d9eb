"""
HTTP transport for the HaasOnline trade server API.

**Conceptual**: This module provides a thin wrapper around HTTP requests to
the server. It handles URL construction, session credentials on the query
string, HTTP error mapping, and unwrapping of the server's JSON envelope.
It does NOT turn payloads into entities; that's the job of the accessor,
lab and result modules, which call `HaasClient.execute` and parse `Data`.

**Server envelope**: Every endpoint answers with
    {"Success": true|false, "Error": "<message>", "Data": <payload>}
A 200 response with Success=false is a server-side rejection; the message is
classified into the error taxonomy below.

**Error taxonomy**: Every failure is raised as a HaasClientError subclass
with an ErrorKind, so callers can branch on the category instead of
string-matching messages:
  - Retryable: HaasUnreachableError, HaasTimeoutError, HaasServerError
  - Not retryable: HaasAuthenticationError, HaasInvalidReferenceError,
    HaasNotFoundError, HaasProtocolError, HaasDeserializationError,
    HaasRequestRejectedError
The client performs no retries itself.
"""

import logging
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

import requests

from src.config.settings import HaasSettings
from src.data.schemas import SchemaValidationError

logger = logging.getLogger(__name__)


# Endpoint paths (each takes a `channel` parameter naming the operation)
USER_API = "UserAPI.php"
PRICE_API = "PriceAPI.php"
SCRIPT_API = "HaasScriptAPI.php"
ACCOUNT_API = "AccountAPI.php"
LABS_API = "LabsAPI.php"


class ErrorKind(str, Enum):
    """Failure category carried by every HaasClientError."""
    AUTHENTICATION_FAILED = "authentication_failed"
    UNREACHABLE = "unreachable"
    TIMEOUT = "timeout"
    SERVER = "server"
    PROTOCOL = "protocol"
    INVALID_REFERENCE = "invalid_reference"
    NOT_FOUND = "not_found"
    DESERIALIZATION = "deserialization"
    REJECTED = "rejected"


RETRYABLE_KINDS = frozenset({ErrorKind.UNREACHABLE, ErrorKind.TIMEOUT, ErrorKind.SERVER})


class HaasClientError(Exception):
    """
    Base exception for HaasOnline client errors.

    **Conceptual**: Catch HaasClientError to handle every client failure,
    or a subclass for fine-grained handling. `kind` names the category and
    `retryable` tells the caller whether trying again can help.

    Attributes:
        kind: ErrorKind of this failure.
        status_code: HTTP status, when the failure came from an HTTP response.
        operation: Server channel (e.g., "CREATE_LAB") that failed, if known.
    """
    kind = ErrorKind.PROTOCOL

    def __init__(self, message: str, *, status_code: Optional[int] = None, operation: Optional[str] = None):
        super().__init__(message)
        self.status_code = status_code
        self.operation = operation

    @property
    def retryable(self) -> bool:
        return self.kind in RETRYABLE_KINDS


class HaasAuthenticationError(HaasClientError):
    """
    Bad credentials, or a session the server no longer accepts.

    **Recovery**: Do not retry with the same credentials; authenticate again.
    """
    kind = ErrorKind.AUTHENTICATION_FAILED


class HaasUnreachableError(HaasClientError):
    """
    The server could not be reached (DNS, refused connection, TLS, ...).

    **Recovery**: Retry later; check HAAS_ADDRESS / HAAS_PORT.
    """
    kind = ErrorKind.UNREACHABLE


class HaasTimeoutError(HaasClientError):
    """The request, or a wait on the server, exceeded its time budget."""
    kind = ErrorKind.TIMEOUT


class HaasServerError(HaasClientError):
    """The server answered with a 5xx status."""
    kind = ErrorKind.SERVER


class HaasProtocolError(HaasClientError):
    """The response was not a well-formed server envelope."""
    kind = ErrorKind.PROTOCOL


class HaasInvalidReferenceError(HaasClientError):
    """A request referenced a script, account, market or lab the session cannot use."""
    kind = ErrorKind.INVALID_REFERENCE


class HaasNotFoundError(HaasClientError):
    """The requested entity does not exist."""
    kind = ErrorKind.NOT_FOUND


class HaasDeserializationError(HaasClientError):
    """A payload (including a custom report) did not match the expected schema."""
    kind = ErrorKind.DESERIALIZATION


class HaasRequestRejectedError(HaasClientError):
    """The server refused the request for a reason not covered by another kind."""
    kind = ErrorKind.REJECTED


class HaasBatchUpdateError(HaasClientError):
    """
    Raised by update_multiple_lab_details when one update in the batch fails.

    Updates are sent one by one and are not rolled back: labs before `index`
    were already updated on the server (their results are in `applied`),
    and labs after it were never sent.

    Attributes:
        index: Position of the failing lab in the input sequence.
        lab_id: Identifier of the failing lab.
        cause: The underlying HaasClientError.
        applied: Server responses for the updates that succeeded before the failure.
    """

    def __init__(self, index: int, lab_id: str, cause: HaasClientError, applied: List[Any]):
        super().__init__(
            f"Batch update failed at index {index} (lab '{lab_id}'): {cause}. "
            f"{len(applied)} earlier update(s) were already applied.",
            status_code=cause.status_code,
            operation=cause.operation,
        )
        self.index = index
        self.lab_id = lab_id
        self.cause = cause
        self.applied = applied
        self.kind = cause.kind


# Lower-cased fragments of server error messages, checked in order
_AUTH_MARKERS = ("not logged in", "unauthorized", "authentication", "session expired", "invalid session", "interfacekey")
_NOT_FOUND_MARKERS = ("not found", "does not exist", "unknown lab")
_INVALID_REFERENCE_MARKERS = ("invalid script", "invalid account", "invalid market", "invalid lab", "invalid id", "no access")


def classify_server_error(message: str, operation: Optional[str] = None) -> HaasClientError:
    """
    Map a Success=false envelope message onto the error taxonomy.

    Example:
        >>> err = classify_server_error("Invalid account id", "CREATE_LAB")
        >>> type(err).__name__
        'HaasInvalidReferenceError'
    """
    text = (message or "").lower()
    full_message = f"Server rejected {operation or 'request'}: {message or '<no message>'}"

    if any(marker in text for marker in _AUTH_MARKERS):
        return HaasAuthenticationError(full_message, operation=operation)
    if any(marker in text for marker in _NOT_FOUND_MARKERS):
        return HaasNotFoundError(full_message, operation=operation)
    if any(marker in text for marker in _INVALID_REFERENCE_MARKERS):
        return HaasInvalidReferenceError(full_message, operation=operation)
    return HaasRequestRejectedError(full_message, operation=operation)


def deserialize(parse: Callable[[Any], Any], payload: Any, operation: str) -> Any:
    """
    Run a schema parser on a payload, reporting failures as HaasDeserializationError.

    Example:
        >>> lab = deserialize(UserLabDetails.from_dict, data, "GET_LAB_DETAILS")
    """
    try:
        return parse(payload)
    except SchemaValidationError as e:
        raise HaasDeserializationError(
            f"Malformed {operation} response: {e}",
            operation=operation,
        ) from e


class HaasClient:
    """
    Thin HTTP client (transport executor) for the HaasOnline API.

    **Responsibilities**:
      - Construct endpoint URLs
      - Attach session credentials (interfacekey, userid) to authenticated calls
      - Make HTTP requests with timeout
      - Map HTTP and envelope failures to HaasClientError subclasses
      - Return the envelope's `Data` payload

    **NOT responsible for**:
      - Parsing payloads into entities (accessors / labs / results do that)
      - Retrying (callers decide, using `HaasClientError.retryable`)

    **Example usage**:
        >>> client = HaasClient("http://127.0.0.1:8090")
        >>> data = client.execute(None, "GET", PRICE_API, {"channel": "MARKETLIST"})
    """

    def __init__(self, base_url: str, timeout_seconds: int = 30):
        """
        Args:
            base_url: Server root, e.g. "http://127.0.0.1:8090".
            timeout_seconds: Per-request timeout.
        """
        if not base_url:
            raise ValueError("base_url cannot be empty")

        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self.http = requests.Session()
        self.http.headers.update({
            "Accept": "application/json",
            "User-Agent": "haaslab/1.0",
        })

    @classmethod
    def from_settings(cls, settings: HaasSettings) -> "HaasClient":
        return cls(settings.base_url, timeout_seconds=settings.timeout_seconds)

    def execute(
        self,
        session: Optional[Any],
        method: str,
        path: str,
        params: Dict[str, Any],
    ) -> Any:
        """
        Send one request and return the envelope's `Data` field.

        Args:
            session: Authenticated HaasSession, or None for login calls.
                     Must provide `auth_params()`.
            method: "GET" (params on the query string) or "POST" (form body).
            path: Endpoint path, e.g. LABS_API.
            params: Request parameters, including `channel`.

        Returns:
            The `Data` payload (dict, list, scalar or None).

        Raises:
            HaasTimeoutError: Request exceeded timeout_seconds.
            HaasUnreachableError: Connection-level failure.
            HaasAuthenticationError: 401/403, or the server rejected the session.
            HaasNotFoundError: 404, or the server reported a missing entity.
            HaasServerError: 5xx.
            HaasProtocolError: Other 4xx, non-JSON body, or malformed envelope.
            HaasInvalidReferenceError / HaasRequestRejectedError: Success=false.
        """
        method = method.upper()
        operation = params.get("channel")
        request_params = dict(params)
        if session is not None:
            request_params.update(session.auth_params())

        url = f"{self.base_url}/{path}"
        logger.debug("%s %s channel=%s", method, path, operation)

        try:
            if method == "GET":
                response = self.http.request(method, url, params=request_params, timeout=self.timeout_seconds)
            else:
                response = self.http.request(method, url, data=request_params, timeout=self.timeout_seconds)

        except requests.Timeout as e:
            raise HaasTimeoutError(
                f"Request to {path} ({operation}) timed out after {self.timeout_seconds}s.",
                operation=operation,
            ) from e

        except requests.ConnectionError as e:
            raise HaasUnreachableError(
                f"Failed to connect to HaasOnline server at {self.base_url}. "
                f"Check network connection, address and port.",
                operation=operation,
            ) from e

        except requests.RequestException as e:
            raise HaasUnreachableError(
                f"HTTP request failed: {e}",
                operation=operation,
            ) from e

        status = response.status_code

        if status == 401 or status == 403:
            raise HaasAuthenticationError(
                f"Authentication failed (status {status}). Response: {response.text}",
                status_code=status,
                operation=operation,
            )

        if status == 404:
            raise HaasNotFoundError(
                f"Endpoint or entity not found (status 404) for {operation}. Response: {response.text}",
                status_code=status,
                operation=operation,
            )

        if status >= 500:
            raise HaasServerError(
                f"HaasOnline server error (status {status}). Response: {response.text}",
                status_code=status,
                operation=operation,
            )

        if 400 <= status < 500:
            raise HaasProtocolError(
                f"Client error (status {status}). Request may be malformed. Response: {response.text}",
                status_code=status,
                operation=operation,
            )

        try:
            envelope = response.json()
        except ValueError as e:
            raise HaasProtocolError(
                f"Failed to parse JSON response: {e}. Response: {response.text}",
                status_code=status,
                operation=operation,
            ) from e

        if not isinstance(envelope, dict) or "Success" not in envelope:
            raise HaasProtocolError(
                f"Response is not a server envelope for {operation}: {envelope!r}",
                status_code=status,
                operation=operation,
            )

        if not envelope["Success"]:
            error = classify_server_error(envelope.get("Error", ""), operation)
            error.status_code = status
            logger.debug("%s rejected: %s", operation, error)
            raise error

        return envelope.get("Data")

    def close(self) -> None:
        """Close the underlying HTTP session."""
        self.http.close()

    def __enter__(self):
        """Enable context manager support (with statement)."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Clean up session when exiting context manager."""
        self.close()
        return False
