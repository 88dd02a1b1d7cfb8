"""
Synchronous HTTP client for the relay server's observability API.

Uses ``httpx.Client`` (sync) because the console client calls it from
plain command handlers.
"""

import logging

import httpx

logger = logging.getLogger(__name__)


class APIError(Exception):
    """User-friendly API error with categorized message.

    Categories: "connection", "timeout", "http", "network", "unknown".
    """

    def __init__(self, message: str, category: str = "unknown") -> None:
        self.message = message
        self.category = category
        super().__init__(message)


class APIClient:
    """Thin synchronous wrapper around httpx for the relay REST routes.

    All methods return parsed JSON or raise ``APIError`` with
    user-friendly messages.
    """

    def __init__(self, base_url: str = "http://localhost:3000", timeout: float = 10.0) -> None:
        """Initialize the HTTP client.

        Args:
            base_url: Base URL of the relay server (``ws://`` is accepted too).
            timeout: Per-request timeout in seconds.
        """
        if base_url.startswith("ws://"):
            base_url = "http://" + base_url[len("ws://") :]
        elif base_url.startswith("wss://"):
            base_url = "https://" + base_url[len("wss://") :]
        self._base_url = base_url.rstrip("/")
        self._client = httpx.Client(base_url=self._base_url, timeout=timeout)

    def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        """Execute an HTTP request with user-friendly error handling.

        Raises:
            APIError: On connection, timeout, HTTP status, or network errors.
        """
        try:
            resp = getattr(self._client, method)(path, **kwargs)
            resp.raise_for_status()
            return resp
        except httpx.ConnectError:
            raise APIError(
                "Relay server is not running. Start it with: `echorelay-server`",
                category="connection",
            ) from None
        except httpx.TimeoutException:
            raise APIError(
                "Request timed out. The server may be overloaded.",
                category="timeout",
            ) from None
        except httpx.HTTPStatusError as exc:
            try:
                detail = exc.response.json().get("detail", exc.response.text)
            except ValueError:
                detail = exc.response.text or str(exc)
            raise APIError(str(detail), category="http") from None
        except httpx.HTTPError as exc:
            raise APIError(f"Network error: {exc}", category="network") from None

    # -- health --

    def health_check(self) -> dict:
        return self._request("get", "/health").json()

    def check_connection(self) -> tuple[bool, str]:
        """Check if the server is reachable. Returns (ok, message)."""
        try:
            self.health_check()
            return True, "Connected"
        except APIError as exc:
            return False, exc.message

    # -- sessions --

    def list_sessions(self) -> list[dict]:
        return self._request("get", "/api/v1/sessions").json()

    def get_session(self, session_id: int) -> dict:
        return self._request("get", f"/api/v1/sessions/{session_id}").json()

    # -- metrics --

    def get_metrics(self) -> dict:
        return self._request("get", "/api/v1/metrics").json()

    def close(self) -> None:
        self._client.close()
