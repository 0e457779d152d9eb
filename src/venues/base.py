"""
Base abstraction for the transport the lab client runs on.

**Conceptual**: Everything above the transport (sessions, accessors, labs,
results) depends only on the TransportExecutor protocol, not on requests or
on HaasClient. Any object with a matching `execute` method is a transport:
HaasClient in production, a Mock or an in-memory fake in tests.

**Contract**:
  - `execute(session_or_none, method, path, params)` sends one request.
  - It returns the server's `Data` payload on success.
  - It raises a HaasClientError subclass on any failure (transport, HTTP,
    envelope). It never retries.
"""

from typing import Any, Dict, Optional, Protocol


class TransportExecutor(Protocol):
    """
    Protocol for sending one request to the HaasOnline server.

    **Testing strategy**: Code under test receives a fake transport:
        >>> class FakeTransport:
        ...     def __init__(self, responses):
        ...         self.responses = list(responses)
        ...         self.calls = []
        ...     def execute(self, session, method, path, params):
        ...         self.calls.append((method, path, params))
        ...         return self.responses.pop(0)
    """

    def execute(
        self,
        session: Optional[Any],
        method: str,
        path: str,
        params: Dict[str, Any],
    ) -> Any:
        """
        Send a request and return the envelope `Data` payload.

        Args:
            session: Authenticated session (provides auth_params()), or None.
            method: HTTP method ("GET" or "POST").
            path: Endpoint path (e.g., "LabsAPI.php").
            params: Request parameters including `channel`.

        Returns:
            Decoded `Data` payload.

        Raises:
            HaasClientError: Any transport or server failure.
        """
        ...
