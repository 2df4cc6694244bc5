"""
HTTP building blocks shared by every journey.

Provides the identity of a virtual user, the credential material captured
at login, and a thin :class:`ApiClient` that works the same over a plain
``requests.Session`` (command-line executor) or a Locust ``HttpSession``
(Locust scenarios).  Keeping this glue in one module means the journey
and queue code never build URLs or headers by hand.

Key Concepts Demonstrated:
- Deterministic per-index identities so pre-registered accounts line up
  with virtual users
- Cookie-based credentials captured once and never mutated
- Transport errors folded into a status-0 response, matching Locust's own
  behaviour, so a dead endpoint fails a check instead of a journey
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import requests
from requests.cookies import RequestsCookieJar

from queue_loadtest.checks import CheckRecorder
from queue_loadtest.errors import AuthenticationFailure

logger = logging.getLogger(__name__)

ACCESS_COOKIE = "access"
REFRESH_COOKIE = "refresh"


@dataclass(frozen=True)
class VirtualUser:
    """Credentials of one simulated user, derived from its 1-based index."""

    index: int
    username: str
    password: str

    @classmethod
    def for_index(cls, index: int, *, prefix: str, password: str) -> VirtualUser:
        return cls(index=index, username=f"{prefix}{index}", password=password)


@dataclass(frozen=True)
class Session:
    """
    Credential material returned by ``POST /auth/login``.

    Attributes:
        access_token: Value of the ``access`` cookie.
        refresh_token: Value of the ``refresh`` cookie.
    """

    access_token: str
    refresh_token: str

    @property
    def cookie_header(self) -> str:
        return f"{ACCESS_COOKIE}={self.access_token}; {REFRESH_COOKIE}={self.refresh_token}"

    def headers(self, extra: dict[str, str] | None = None) -> dict[str, str]:
        """
        Build the header set attached to every authenticated request.

        Args:
            extra: Additional headers (e.g. the admission access key)
                merged on top of the session headers.

        Returns:
            A new dictionary; the session itself is never modified.
        """
        headers = {
            "Cookie": self.cookie_header,
            "Content-Type": "application/json",
        }
        if extra:
            headers.update(extra)
        return headers


class TransportFailure:
    """
    Stand-in response for a request that never got an HTTP answer.

    Mirrors what Locust's ``HttpSession`` returns on connection errors:
    ``status_code`` is ``0`` and the body is empty.
    """

    status_code = 0
    text = ""
    content = b""

    def __init__(self, error: Exception) -> None:
        self.error = error
        self.cookies = RequestsCookieJar()

    def json(self) -> Any:
        raise ValueError(f"No response body: {self.error}")


def safe_json(response: Any) -> Any:
    """Return the parsed response JSON, or ``None`` if the body is not JSON."""
    try:
        return response.json()
    except ValueError:
        return None


class ApiClient:
    """
    Issue requests relative to the service base URL.

    Args:
        http: A ``requests.Session`` or Locust ``HttpSession``.
        base_url: Service root, e.g. ``http://localhost:8080/api``.
        label_requests: Pass a stable ``name=`` with each request.  Only
            Locust's session understands it; it groups
            ``/concerts/search?query=...`` variants into one stats row.
        timeout: Per-request timeout in seconds.
    """

    def __init__(
        self,
        http: requests.Session,
        base_url: str,
        *,
        label_requests: bool = False,
        timeout: float = 30.0,
    ) -> None:
        self.http = http
        self.base_url = base_url.rstrip("/")
        self.label_requests = label_requests
        self.timeout = timeout

    def url(self, path: str) -> str:
        return f"{self.base_url}/{path.lstrip('/')}"

    def request(self, method: str, path: str, *, name: str | None = None, **kwargs: Any) -> Any:
        kwargs.setdefault("timeout", self.timeout)
        if self.label_requests:
            kwargs["name"] = name or path
        try:
            return self.http.request(method, self.url(path), **kwargs)
        except requests.RequestException as exc:
            logger.warning("%s %s failed without a response: %s", method, path, exc)
            return TransportFailure(exc)

    def get(self, path: str, **kwargs: Any) -> Any:
        return self.request("GET", path, **kwargs)

    def post(self, path: str, **kwargs: Any) -> Any:
        return self.request("POST", path, **kwargs)


def login(api: ApiClient, user: VirtualUser, checks: CheckRecorder) -> Session:
    """
    Log in with form-encoded credentials and capture the cookie pair.

    Args:
        api: Client bound to the service base URL.
        user: The virtual user to authenticate.
        checks: Recorder for the ``login succeeded`` check.

    Returns:
        The captured :class:`Session`.

    Raises:
        AuthenticationFailure: If the status is not 200 or either
            credential cookie is missing.
    """
    response = api.post(
        "/auth/login",
        data={"username": user.username, "password": user.password},
        headers={"Content-Type": "application/x-www-form-urlencoded"},
        name="/auth/login",
    )
    if not checks.check("login succeeded", response.status_code == 200, f"status={response.status_code}"):
        raise AuthenticationFailure(user.username, response.status_code)

    access = response.cookies.get(ACCESS_COOKIE)
    refresh = response.cookies.get(REFRESH_COOKIE)
    if not access or not refresh:
        raise AuthenticationFailure(
            user.username, response.status_code, "response missing access/refresh cookies"
        )
    return Session(access_token=access, refresh_token=refresh)
