from __future__ import annotations

from typing import ClassVar

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
from identity_pipeline.config.environment import (
    IDENTITY_ENDPOINT,
    IDENTITY_HEADER,
    MSI_ENDPOINT,
    MSI_SECRET,
    EnvironmentProbe,
)
from identity_pipeline.config.settings import Settings
from identity_pipeline.pipeline.errors import CredentialUnavailableError
from identity_pipeline.utils import Clock


class AppServiceSource(ManagedIdentitySource):
    """App Service / Functions local token endpoint.

    The two protocol revisions differ only in environment variable names,
    API version, secret header and the query parameters naming a
    user-assigned identity.
    """

    endpoint_variable: ClassVar[str]
    secret_variable: ClassVar[str]
    api_version: ClassVar[str]
    secret_header: ClassVar[str]
    client_id_parameter: ClassVar[str]
    resource_id_parameter: ClassVar[str | None] = None
    object_id_parameter: ClassVar[str | None] = None

    def __init__(
        self,
        pipeline: CredentialPipeline,
        identity: ManagedIdentityId | None = None,
        *,
        environment: EnvironmentProbe | None = None,
        clock: Clock | None = None,
    ) -> None:
        super().__init__(pipeline, identity, environment=environment, clock=clock)
        endpoint = self.environment.get(self.endpoint_variable)
        secret = self.environment.get(self.secret_variable)
        if not endpoint or not secret:
            raise CredentialUnavailableError(
                "App Service managed identity configuration not found",
                source=self.name,
            )
        self._endpoint = validated_endpoint(endpoint, self.endpoint_variable, self.name)
        self._secret = secret
        if self.identity.resource_id and self.resource_id_parameter is None:
            raise ValueError(
                f"{self.name} does not support user-assigned identities specified by resource id"
            )
        if self.identity.object_id and self.object_id_parameter is None:
            raise ValueError(
                f"{self.name} does not support user-assigned identities specified by object id"
            )

    @classmethod
    def is_eligible(
        cls,
        environment: EnvironmentProbe,
        settings: Settings,
        identity: ManagedIdentityId,
    ) -> bool:
        return environment.has_all(cls.endpoint_variable, cls.secret_variable)

    def create_request(self, request: TokenRequest) -> httpx.Request:
        params = {
            "api-version": self.api_version,
            "resource": scopes_to_resource(request.scopes),
        }
        if self.identity.client_id:
            params[self.client_id_parameter] = self.identity.client_id
        elif self.identity.resource_id and self.resource_id_parameter:
            params[self.resource_id_parameter] = self.identity.resource_id
        elif self.identity.object_id and self.object_id_parameter:
            params[self.object_id_parameter] = self.identity.object_id
        return httpx.Request(
            "GET",
            self._endpoint,
            params=params,
            headers={self.secret_header: self._secret},
        )


class AppService2019Source(AppServiceSource):
    kind = SourceKind.APP_SERVICE_2019
    endpoint_variable = IDENTITY_ENDPOINT
    secret_variable = IDENTITY_HEADER
    api_version = "2019-08-01"
    secret_header = "X-IDENTITY-HEADER"
    client_id_parameter = "client_id"
    resource_id_parameter = "mi_res_id"
    object_id_parameter = "object_id"


class AppService2017Source(AppServiceSource):
    """Legacy revision; its ``expires_on`` is a date string, not epoch seconds."""

    kind = SourceKind.APP_SERVICE_2017
    endpoint_variable = MSI_ENDPOINT
    secret_variable = MSI_SECRET
    api_version = "2017-09-01"
    secret_header = "secret"
    client_id_parameter = "clientid"


__all__ = ["AppServiceSource", "AppService2017Source", "AppService2019Source"]
