from __future__ import annotations

import httpx

from identity_pipeline.auth.credential_pipeline import CredentialPipeline
from identity_pipeline.auth.sources.base import (
    ManagedIdentityId,
    ManagedIdentitySource,
    SourceKind,
    scopes_to_resource,
    validated_endpoint,
)
from identity_pipeline.auth.types import TokenRequest
from identity_pipeline.config.environment import EnvironmentProbe
from identity_pipeline.config.settings import Settings
from identity_pipeline.pipeline.errors import CredentialUnavailableError
from identity_pipeline.utils import Clock, get_logger


logger = get_logger(__name__)

API_VERSION = "2019-07-01-preview"


class ServiceFabricSource(ManagedIdentitySource):
    """Service Fabric cluster managed identity.

    The local endpoint presents a self-signed certificate identified by
    ``IDENTITY_SERVER_THUMBPRINT``; requests go through a pipeline pinned to
    that thumbprint instead of the usual chain validation. User-assigned ids
    are fixed by the cluster configuration and ignored here.
    """

    kind = SourceKind.SERVICE_FABRIC

    def __init__(
        self,
        pipeline: CredentialPipeline,
        identity: ManagedIdentityId | None = None,
        *,
        environment: EnvironmentProbe | None = None,
        clock: Clock | None = None,
    ) -> None:
        super().__init__(pipeline, identity, environment=environment, clock=clock)
        endpoint = self.environment.identity_endpoint
        secret = self.environment.identity_header
        thumbprint = self.environment.identity_server_thumbprint
        if not endpoint or not secret or not thumbprint:
            raise CredentialUnavailableError(
                "Service Fabric managed identity configuration not found",
                source=self.name,
            )
        self._endpoint = validated_endpoint(endpoint, "IDENTITY_ENDPOINT", self.name)
        self._secret = secret
        self.pipeline = pipeline.with_pinned_certificate(thumbprint)
        if self.identity.is_user_assigned:
            logger.warning(
                "User-assigned identity ignored; Service Fabric identities are configured on the application",
                identity=self.identity.describe(),
            )

    @classmethod
    def is_eligible(
        cls,
        environment: EnvironmentProbe,
        settings: Settings,
        identity: ManagedIdentityId,
    ) -> bool:
        return environment.has_all(
            "IDENTITY_ENDPOINT", "IDENTITY_HEADER", "IDENTITY_SERVER_THUMBPRINT"
        )

    def create_request(self, request: TokenRequest) -> httpx.Request:
        return httpx.Request(
            "GET",
            self._endpoint,
            params={"api-version": API_VERSION, "resource": scopes_to_resource(request.scopes)},
            headers={"Secret": self._secret},
        )


__all__ = ["ServiceFabricSource", "API_VERSION"]
