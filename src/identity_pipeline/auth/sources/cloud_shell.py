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
from identity_pipeline.config.environment import MSI_ENDPOINT, EnvironmentProbe
from identity_pipeline.config.settings import Settings
from identity_pipeline.pipeline.errors import CredentialUnavailableError
from identity_pipeline.utils import Clock


class CloudShellSource(ManagedIdentitySource):
    kind = SourceKind.CLOUD_SHELL

    def __init__(
        self,
        pipeline: CredentialPipeline,
        identity: ManagedIdentityId | None = None,
        *,
        environment: EnvironmentProbe | None = None,
        clock: Clock | None = None,
    ) -> None:
        super().__init__(pipeline, identity, environment=environment, clock=clock)
        if self.identity.is_user_assigned:
            raise ValueError("Cloud Shell does not support user-assigned managed identities")
        endpoint = self.environment.msi_endpoint
        if not endpoint:
            raise CredentialUnavailableError(
                "Cloud Shell managed identity configuration not found",
                source=self.name,
            )
        self._endpoint = validated_endpoint(endpoint, MSI_ENDPOINT, self.name)

    @classmethod
    def is_eligible(
        cls,
        environment: EnvironmentProbe,
        settings: Settings,
        identity: ManagedIdentityId,
    ) -> bool:
        return environment.msi_endpoint is not None

    def create_request(self, request: TokenRequest) -> httpx.Request:
        return httpx.Request(
            "POST",
            self._endpoint,
            data={"resource": scopes_to_resource(request.scopes)},
            headers={"Metadata": "true"},
        )


__all__ = ["CloudShellSource"]
