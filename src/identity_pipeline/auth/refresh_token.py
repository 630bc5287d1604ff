from __future__ import annotations

import asyncio
import json
from typing import Any, Callable

import msal
from keyring.errors import KeyringError

from identity_pipeline.auth.app_cache import SingleFlightCache
from identity_pipeline.auth.credentials import TokenCredential
from identity_pipeline.auth.msal_client import CAE_CAPABILITIES, process_result
from identity_pipeline.auth.secret_store import InsecureKeyringError, SecretStore
from identity_pipeline.auth.types import AccessToken, TokenRequest
from identity_pipeline.config.settings import Settings
from identity_pipeline.pipeline.errors import CredentialUnavailableError
from identity_pipeline.utils import CancellationToken, Clock, await_with_cancellation, get_logger


logger = get_logger(__name__)

AppFactory = Callable[..., Any]


class RefreshTokenCredential(TokenCredential):
    """Redeems a refresh token stored in the OS keyring by a prior sign-in.

    The stored token is only read. When it is missing, revoked or requires
    the user to sign in again the credential is unavailable, not failed.
    """

    def __init__(
        self,
        client_id: str | None = None,
        *,
        tenant_id: str | None = None,
        settings: Settings | None = None,
        secret_store: SecretStore | None = None,
        clock: Clock | None = None,
        app_factory: AppFactory | None = None,
    ) -> None:
        super().__init__(clock=clock)
        self._settings = settings or Settings()
        client_id = client_id or self._settings.client_id
        if not client_id:
            raise ValueError("client_id is required")
        self._client_id = client_id
        self._tenant_id = tenant_id or self._settings.tenant_id
        self._secret_store = secret_store
        self._app_factory: AppFactory = app_factory or msal.PublicClientApplication
        self._apps: SingleFlightCache[tuple[bool, str], Any] = SingleFlightCache(
            "refresh-token-apps"
        )

    def _store(self) -> SecretStore:
        if self._secret_store is None:
            try:
                self._secret_store = SecretStore(self._settings.refresh_token_service)
            except InsecureKeyringError as exc:
                raise CredentialUnavailableError(str(exc), source=self.name, inner_error=exc) from exc
        return self._secret_store

    def _read_refresh_token(self) -> str:
        store = self._store()
        try:
            value = store.get_secret(self._settings.refresh_token_account)
        except KeyringError as exc:
            raise CredentialUnavailableError(
                f"{self.name} could not read the stored refresh token: {exc}",
                source=self.name,
                inner_error=exc,
            ) from exc
        if not value:
            raise CredentialUnavailableError(
                f"No refresh token is stored under {store.service_name}/"
                f"{self._settings.refresh_token_account}",
                source=self.name,
            )
        return value

    async def _get_app(
        self,
        enable_cae: bool,
        tenant_id: str | None,
        cancellation_token: CancellationToken | None,
    ) -> Any:
        authority = self._settings.derive_authority(tenant_id or self._tenant_id)

        async def build() -> Any:
            logger.info("Creating MSAL public client", authority=authority, cae=enable_cae)
            return await asyncio.to_thread(
                self._app_factory,
                client_id=self._client_id,
                authority=authority,
                client_capabilities=CAE_CAPABILITIES if enable_cae else None,
            )

        return await self._apps.get_or_create(
            (enable_cae, authority),
            build,
            cancellation_token=cancellation_token,
        )

    async def _acquire(
        self,
        request: TokenRequest,
        *,
        cancellation_token: CancellationToken | None = None,
    ) -> AccessToken:
        refresh_token = await asyncio.to_thread(self._read_refresh_token)
        app = await self._get_app(request.enable_cae, request.tenant_id, cancellation_token)
        kwargs: dict[str, Any] = {}
        # acquire_token_by_refresh_token ignores client_capabilities, so CP1
        # travels in the claims parameter.
        claims = _merge_claims(request.claims, request.enable_cae)
        if claims:
            kwargs["data"] = {"claims": claims}
        result = await await_with_cancellation(
            asyncio.to_thread(
                app.acquire_token_by_refresh_token,
                refresh_token,
                list(request.scopes),
                **kwargs,
            ),
            cancellation_token,
        )
        return process_result(result, credential=self.name, clock=self._clock)


def _merge_claims(claims: str | None, enable_cae: bool) -> str | None:
    """Combine a claims challenge with the CP1 client capability when CAE is on."""

    if not enable_cae:
        return claims
    if not claims:
        return json.dumps({"access_token": {"xms_cc": {"values": CAE_CAPABILITIES}}})
    try:
        parsed = json.loads(claims)
    except ValueError:
        return claims
    if not isinstance(parsed, dict):
        return claims
    access_token = parsed.setdefault("access_token", {})
    if isinstance(access_token, dict):
        access_token.setdefault("xms_cc", {"values": CAE_CAPABILITIES})
    return json.dumps(parsed)


__all__ = ["RefreshTokenCredential"]
