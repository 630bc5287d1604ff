from __future__ import annotations

import asyncio
from typing import Any, Callable, Iterable

import msal

from identity_pipeline.auth.app_cache import SingleFlightCache
from identity_pipeline.auth.credentials import TokenCredential
from identity_pipeline.auth.msal_client import CAE_CAPABILITIES, process_result
from identity_pipeline.auth.types import AccessToken, TokenRequest
from identity_pipeline.config.settings import Settings
from identity_pipeline.pipeline.errors import (
    AuthenticationFailedError,
    CredentialUnavailableError,
)
from identity_pipeline.utils import CancellationToken, Clock, await_with_cancellation, get_logger


logger = get_logger(__name__)

AppFactory = Callable[..., Any]


class OnBehalfOfCredential(TokenCredential):
    """Exchanges a user's token for one to call a downstream API as that user.

    The user assertion is either fixed at construction or passed per call on
    the request; there is no ambient per-task assertion. MSAL confidential
    client applications are built once per (CAE mode, tenant) and shared by
    concurrent callers.
    """

    def __init__(
        self,
        tenant_id: str,
        client_id: str,
        *,
        client_secret: str | None = None,
        client_certificate: dict[str, str] | None = None,
        user_assertion: str | None = None,
        additionally_allowed_tenants: Iterable[str] = (),
        settings: Settings | None = None,
        clock: Clock | None = None,
        app_factory: AppFactory | None = None,
    ) -> None:
        super().__init__(clock=clock)
        if not tenant_id:
            raise ValueError("tenant_id is required")
        if not client_id:
            raise ValueError("client_id is required")
        if (client_secret is None) == (client_certificate is None):
            raise ValueError("Specify exactly one of client_secret or client_certificate")
        self._tenant_id = tenant_id
        self._client_id = client_id
        self._client_credential: str | dict[str, str] = client_secret or client_certificate or ""
        self._user_assertion = user_assertion
        self._allowed_tenants = frozenset(additionally_allowed_tenants)
        self._settings = settings or Settings()
        self._app_factory: AppFactory = app_factory or msal.ConfidentialClientApplication
        self._apps: SingleFlightCache[tuple[bool, str], Any] = SingleFlightCache(
            "on-behalf-of-apps"
        )

    def resolve_tenant(self, requested: str | None) -> str:
        if not requested or requested == self._tenant_id:
            return self._tenant_id
        if "*" in self._allowed_tenants or requested in self._allowed_tenants:
            return requested
        raise AuthenticationFailedError(
            f"The current credential is not configured to acquire tokens for tenant {requested}. "
            "Add it to additionally_allowed_tenants to allow acquiring tokens for it.",
            source=self.name,
        )

    async def _get_app(
        self,
        enable_cae: bool,
        tenant_id: str,
        cancellation_token: CancellationToken | None,
    ) -> Any:
        async def build() -> Any:
            authority = self._settings.derive_authority(tenant_id)
            logger.info("Creating MSAL confidential client", authority=authority, cae=enable_cae)
            return await asyncio.to_thread(
                self._app_factory,
                client_id=self._client_id,
                client_credential=self._client_credential,
                authority=authority,
                client_capabilities=CAE_CAPABILITIES if enable_cae else None,
            )

        return await self._apps.get_or_create(
            (enable_cae, tenant_id),
            build,
            cancellation_token=cancellation_token,
        )

    async def _acquire(
        self,
        request: TokenRequest,
        *,
        cancellation_token: CancellationToken | None = None,
    ) -> AccessToken:
        assertion = request.user_assertion or self._user_assertion
        if not assertion:
            raise CredentialUnavailableError(
                "OnBehalfOfCredential requires a user assertion; pass user_assertion to get_token",
                source=self.name,
            )
        tenant_id = self.resolve_tenant(request.tenant_id)
        app = await self._get_app(request.enable_cae, tenant_id, cancellation_token)
        result = await await_with_cancellation(
            asyncio.to_thread(
                app.acquire_token_on_behalf_of,
                assertion,
                list(request.scopes),
                claims_challenge=request.claims,
            ),
            cancellation_token,
        )
        return process_result(result, credential=self.name, clock=self._clock)


__all__ = ["OnBehalfOfCredential"]
