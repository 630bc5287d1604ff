from __future__ import annotations

import asyncio
from dataclasses import dataclass, replace
from pathlib import Path

import httpx

from identity_pipeline.auth.app_cache import SingleFlightCache
from identity_pipeline.auth.credential_pipeline import CredentialPipeline, certificate_thumbprint
from identity_pipeline.auth.sources.base import (
    ManagedIdentityId,
    ManagedIdentitySource,
    SourceKind,
    scopes_to_resource,
)
from identity_pipeline.auth.sources.imds import API_VERSION, TOKEN_PATH, identity_parameters
from identity_pipeline.auth.types import AccessToken, PopBinding, TokenRequest
from identity_pipeline.config.environment import EnvironmentProbe
from identity_pipeline.config.settings import Settings
from identity_pipeline.pipeline.errors import CredentialUnavailableError
from identity_pipeline.utils import CancellationToken, Clock, get_logger, sanitize_url


logger = get_logger(__name__)

SLC_HOST = "https://169.254.169.254"
CAE_CAPABILITIES = ("CP1",)


@dataclass(frozen=True, slots=True)
class SlcClient:
    """Mutual-TLS client for one binding certificate and CAE mode."""

    pipeline: CredentialPipeline
    thumbprint: str
    capabilities: tuple[str, ...] = ()


class SlcSource(ManagedIdentitySource):
    """Certificate-bound managed identity.

    Available only where the host has provisioned a binding certificate.
    Requests authenticate with that certificate over mutual TLS and may ask
    for proof-of-possession tokens bound to it.
    """

    kind = SourceKind.SLC

    def __init__(
        self,
        pipeline: CredentialPipeline,
        identity: ManagedIdentityId | None = None,
        *,
        environment: EnvironmentProbe | None = None,
        clock: Clock | None = None,
        certificate: Path | None = None,
    ) -> None:
        super().__init__(pipeline, identity, environment=environment, clock=clock)
        certificate = certificate or self.environment.binding_certificate(
            pipeline.settings.binding_certificate_path
        )
        if certificate is None:
            raise CredentialUnavailableError(
                "No binding certificate is available on this host",
                source=self.name,
            )
        self._certificate = certificate
        self._endpoint = httpx.URL(SLC_HOST + TOKEN_PATH)
        self._clients: SingleFlightCache[tuple[bool, str], SlcClient] = SingleFlightCache("slc")

    @classmethod
    def is_eligible(
        cls,
        environment: EnvironmentProbe,
        settings: Settings,
        identity: ManagedIdentityId,
    ) -> bool:
        return environment.binding_certificate(settings.binding_certificate_path) is not None

    @property
    def certificate(self) -> Path:
        return self._certificate

    async def client(
        self,
        enable_cae: bool,
        *,
        cancellation_token: CancellationToken | None = None,
    ) -> SlcClient:
        # The thumbprint is part of the key so a rotated certificate gets a new client.
        thumbprint = await asyncio.to_thread(certificate_thumbprint, self._certificate)

        async def build() -> SlcClient:
            logger.info("Creating certificate-bound client", thumbprint=thumbprint, cae=enable_cae)
            return SlcClient(
                pipeline=self.pipeline.for_certificate(self._certificate, thumbprint),
                thumbprint=thumbprint,
                capabilities=CAE_CAPABILITIES if enable_cae else (),
            )

        return await self._clients.get_or_create(
            (enable_cae, thumbprint),
            build,
            cancellation_token=cancellation_token,
        )

    def create_request(self, request: TokenRequest) -> httpx.Request:
        params = {"api-version": API_VERSION, "resource": scopes_to_resource(request.scopes)}
        params.update(identity_parameters(self.identity))
        if request.enable_pop:
            if not request.nonce:
                raise ValueError("A nonce is required for proof-of-possession token requests")
            params["token_type"] = "pop"
            params["nonce"] = request.nonce
        if request.claims:
            params["claims"] = request.claims
        return httpx.Request("GET", self._endpoint, params=params, headers={"Metadata": "true"})

    async def authenticate(
        self,
        request: TokenRequest,
        *,
        cancellation_token: CancellationToken | None = None,
    ) -> AccessToken:
        client = await self.client(request.enable_cae, cancellation_token=cancellation_token)
        http_request = self.create_request(request)
        if client.capabilities:
            http_request.url = http_request.url.copy_merge_params(
                {"xms_cc": ",".join(client.capabilities)}
            )
        binding = request.properties.get(PopBinding)
        if request.enable_pop and binding is not None:
            logger.debug(
                "Requesting proof-of-possession token",
                method=binding.method,
                url=sanitize_url(binding.url),
            )
        response = await self.send(
            http_request,
            cancellation_token=cancellation_token,
            pipeline=client.pipeline,
        )
        token = self.parse_response(response)
        if request.enable_pop:
            return replace(token, token_type="PoP", binding_thumbprint=client.thumbprint)
        return token


__all__ = ["SlcClient", "SlcSource", "CAE_CAPABILITIES"]
