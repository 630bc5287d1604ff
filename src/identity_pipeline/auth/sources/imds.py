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
from identity_pipeline.auth.types import AccessToken, TokenRequest
from identity_pipeline.config.environment import POD_IDENTITY_AUTHORITY_HOST, EnvironmentProbe
from identity_pipeline.config.settings import Settings
from identity_pipeline.pipeline.classifier import ImdsResponseClassifier
from identity_pipeline.pipeline.errors import CredentialUnavailableError, TransportError
from identity_pipeline.pipeline.pipeline import PipelineResponse
from identity_pipeline.utils import CancellationToken, Clock, get_logger


logger = get_logger(__name__)

DEFAULT_IMDS_HOST = "http://169.254.169.254"
TOKEN_PATH = "/metadata/identity/oauth2/token"
API_VERSION = "2018-02-01"

IDENTITY_NOT_ASSIGNED = (
    "ManagedIdentityCredential authentication unavailable. "
    "The requested identity has not been assigned to this resource."
)
NO_RESPONSE = "ManagedIdentityCredential authentication unavailable. No Managed Identity endpoint found."
NETWORK_UNREACHABLE = (
    "ManagedIdentityCredential authentication unavailable. "
    "The network to the Managed Identity endpoint is unreachable."
)


def identity_parameters(identity: ManagedIdentityId) -> dict[str, str]:
    if identity.client_id:
        return {"client_id": identity.client_id}
    if identity.resource_id:
        return {"msi_res_id": identity.resource_id}
    if identity.object_id:
        return {"object_id": identity.object_id}
    return {}


class ImdsSource(ManagedIdentitySource):
    """Instance Metadata Service, the fallback when nothing more specific exists.

    IMDS answers 400 when the requested identity is not assigned to the VM
    and may not be reachable at all off Azure; both mean the credential is
    unavailable rather than failed.
    """

    kind = SourceKind.IMDS
    classifier = ImdsResponseClassifier()

    def __init__(
        self,
        pipeline: CredentialPipeline,
        identity: ManagedIdentityId | None = None,
        *,
        environment: EnvironmentProbe | None = None,
        clock: Clock | None = None,
    ) -> None:
        super().__init__(pipeline, identity, environment=environment, clock=clock)
        host = self.environment.pod_identity_authority_host
        if host:
            base = validated_endpoint(host, POD_IDENTITY_AUTHORITY_HOST, self.name)
            self._endpoint = base.copy_with(path=TOKEN_PATH)
        else:
            self._endpoint = httpx.URL(DEFAULT_IMDS_HOST + TOKEN_PATH)

    @classmethod
    def is_eligible(
        cls,
        environment: EnvironmentProbe,
        settings: Settings,
        identity: ManagedIdentityId,
    ) -> bool:
        return settings.allow_imds_fallback

    @property
    def endpoint(self) -> httpx.URL:
        return self._endpoint

    def create_request(self, request: TokenRequest) -> httpx.Request:
        params = {"api-version": API_VERSION, "resource": scopes_to_resource(request.scopes)}
        params.update(identity_parameters(self.identity))
        return httpx.Request("GET", self._endpoint, params=params, headers={"Metadata": "true"})

    async def authenticate(
        self,
        request: TokenRequest,
        *,
        cancellation_token: CancellationToken | None = None,
    ) -> AccessToken:
        try:
            return await super().authenticate(request, cancellation_token=cancellation_token)
        except TransportError as exc:
            logger.info("No response from the instance metadata service", retries=exc.retries)
            raise CredentialUnavailableError(
                NO_RESPONSE, source=self.name, inner_error=exc
            ) from exc

    async def handle_response(
        self,
        request: TokenRequest,
        response: PipelineResponse,
        *,
        cancellation_token: CancellationToken | None = None,
    ) -> AccessToken:
        if response.status_code == 400:
            raise CredentialUnavailableError(IDENTITY_NOT_ASSIGNED, source=self.name)
        if response.status_code == 403 and "unreachable" in response.http_response.text.lower():
            raise CredentialUnavailableError(NETWORK_UNREACHABLE, source=self.name)
        return self.parse_response(response)


__all__ = ["ImdsSource", "API_VERSION", "DEFAULT_IMDS_HOST", "TOKEN_PATH", "identity_parameters"]
