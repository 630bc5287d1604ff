from __future__ import annotations

import json
from collections.abc import Iterable
from typing import Any

from keyring.backend import KeyringBackend
from keyring.errors import KeyringError, PasswordDeleteError

from identity_pipeline.utils import CancellationToken


class FrozenClock:
    """Clock that only moves when told to."""

    def __init__(self, now: float = 1_700_000_000.0) -> None:
        self._now = float(now)

    def now(self) -> float:
        return self._now

    def advance(self, seconds: float) -> None:
        self._now += seconds


class RecordingSleeper:
    """Retry sleeper that records requested delays instead of waiting."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float, token: CancellationToken | None = None) -> None:
        if token is not None:
            token.raise_if_cancelled()
        self.delays.append(delay)


class StubPublicClientApplication:
    """Lightweight stand-in for msal.PublicClientApplication."""

    def __init__(
        self,
        client_id: str,
        authority: str | None = None,
        client_capabilities: list[str] | None = None,
        *,
        results: Iterable[dict[str, Any] | None] | None = None,
    ) -> None:
        self.client_id = client_id
        self.authority = authority
        self.client_capabilities = client_capabilities
        self._results = list(results or [])
        self.refresh_token_calls: list[tuple[str, tuple[str, ...], dict[str, Any]]] = []

    def acquire_token_by_refresh_token(
        self,
        refresh_token: str,
        scopes: Iterable[str],
        **kwargs: Any,
    ) -> dict[str, Any] | None:
        self.refresh_token_calls.append((refresh_token, tuple(scopes), kwargs))
        if not self._results:
            raise RuntimeError("No refresh token result configured")
        return self._results.pop(0)


class StubConfidentialClientApplication:
    """Lightweight stand-in for msal.ConfidentialClientApplication."""

    def __init__(
        self,
        client_id: str,
        client_credential: Any = None,
        authority: str | None = None,
        client_capabilities: list[str] | None = None,
        *,
        results: Iterable[dict[str, Any] | None] | None = None,
    ) -> None:
        self.client_id = client_id
        self.client_credential = client_credential
        self.authority = authority
        self.client_capabilities = client_capabilities
        self._results = list(results or [])
        self.on_behalf_of_calls: list[tuple[str, tuple[str, ...], str | None]] = []

    def acquire_token_on_behalf_of(
        self,
        user_assertion: str,
        scopes: Iterable[str],
        claims_challenge: str | None = None,
    ) -> dict[str, Any] | None:
        self.on_behalf_of_calls.append((user_assertion, tuple(scopes), claims_challenge))
        if not self._results:
            raise RuntimeError("No on-behalf-of result configured")
        return self._results.pop(0)


class RecordingAppFactory:
    """MSAL application factory that shares one result queue across apps."""

    def __init__(self, app_class: type, results: Iterable[dict[str, Any] | None] = ()) -> None:
        self._app_class = app_class
        self._results = list(results)
        self.apps: list[Any] = []

    def __call__(self, **kwargs: Any) -> Any:
        app = self._app_class(results=self._results, **kwargs)
        # Every app pops from the same list.
        app._results = self._results
        self.apps.append(app)
        return app


class MemoryKeyring(KeyringBackend):
    """In-memory keyring backend."""

    priority = 1

    def __init__(self, *, secure: bool = True, fail: bool = False) -> None:
        super().__init__()
        self._store: dict[tuple[str, str], str] = {}
        self.secure_storage = secure
        self._fail = fail

    def get_password(self, service: str, username: str) -> str | None:
        if self._fail:
            raise KeyringError("Keyring is locked")
        return self._store.get((service, username))

    def set_password(self, service: str, username: str, password: str) -> None:
        self._store[(service, username)] = password

    def delete_password(self, service: str, username: str) -> None:
        try:
            del self._store[(service, username)]
        except KeyError as exc:
            raise PasswordDeleteError("Secret missing") from exc


class MsalHttpResponse:
    """Just enough of a requests.Response for MSAL's HTTP layer."""

    def __init__(self, payload: dict[str, Any], status_code: int = 200) -> None:
        self.status_code = status_code
        self.text = json.dumps(payload)
        self.headers: dict[str, str] = {"Content-Type": "application/json"}

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise RuntimeError(f"HTTP {self.status_code}")


class MsalHttpRecorder:
    """``http_client`` for real MSAL applications: answers authority discovery
    and records the form posted to the token endpoint."""

    def __init__(self, token_response: dict[str, Any]) -> None:
        self._token_response = token_response
        self.token_requests: list[dict[str, Any]] = []

    def get(self, url: str, params: Any = None, headers: Any = None, **kwargs: Any) -> MsalHttpResponse:
        authority = url.split("/v2.0/", 1)[0]
        if "/discovery/instance" in url:
            authorize = (params or {}).get("authorization_endpoint", authority)
            tenant = authorize.split("/oauth2/", 1)[0]
            return MsalHttpResponse(
                {
                    "tenant_discovery_endpoint": f"{tenant}/v2.0/.well-known/openid-configuration",
                    "api-version": "1.1",
                    "metadata": [],
                }
            )
        return MsalHttpResponse(
            {
                "authorization_endpoint": f"{authority}/oauth2/v2.0/authorize",
                "token_endpoint": f"{authority}/oauth2/v2.0/token",
                "issuer": f"{authority}/v2.0",
            }
        )

    def post(
        self,
        url: str,
        params: Any = None,
        data: Any = None,
        headers: Any = None,
        **kwargs: Any,
    ) -> MsalHttpResponse:
        self.token_requests.append(dict(data or {}))
        return MsalHttpResponse(self._token_response)

    def close(self) -> None:
        return None
