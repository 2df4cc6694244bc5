"""
Bulk registration of the accounts that journeys log in with.

Virtual user *N* logs in as ``<prefix>N``, so the pool registered here
uses the same 1-based numbering.  Registering an account that already
exists simply fails its check; re-running the pool is safe.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass

from queue_loadtest.checks import CheckRecorder
from queue_loadtest.session import ApiClient

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RegistrationAccount:
    email: str
    username: str
    password: str
    name: str
    nickname: str
    phone: str
    address: str

    @classmethod
    def for_index(cls, index: int, *, prefix: str, password: str) -> RegistrationAccount:
        username = f"{prefix}{index}"
        return cls(
            email=f"{username}@example.com",
            username=username,
            password=password,
            name=username,
            nickname=username,
            phone=f"010-1234-{str(1000 + index)[-4:]}",
            address="test address",
        )


def registration_accounts(count: int, *, prefix: str, password: str) -> list[RegistrationAccount]:
    """Build accounts ``1..count`` with a shared password."""
    return [
        RegistrationAccount.for_index(index, prefix=prefix, password=password)
        for index in range(1, count + 1)
    ]


def register_account(
    api: ApiClient,
    account: RegistrationAccount,
    checks: CheckRecorder,
    *,
    encoding: str = "json",
) -> bool:
    """
    POST one account to ``/auth/register``.

    Args:
        api: Client bound to the service base URL.
        account: Account to create.
        checks: Recorder for the ``register status is 200`` check.
        encoding: ``"json"`` (default) or ``"form"`` for endpoints that
            bind a form model.

    Returns:
        ``True`` if the service answered 200.
    """
    payload = asdict(account)
    body = {"data": payload} if encoding == "form" else {"json": payload}
    response = api.post("/auth/register", name="/auth/register", **body)

    ok = checks.check("register status is 200", response.status_code == 200, f"status={response.status_code}")
    if not ok:
        logger.error("Failed to register %s (status %s)", account.email, response.status_code)
    return ok
