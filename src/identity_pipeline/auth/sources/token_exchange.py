from __future__ import annotations

import httpx

from identity_pipeline.auth.credential_pipeline import CredentialPipeline
from identity_pipeline.auth.sources.base import (
    ManagedIdentityId,
    ManagedIdentitySource,
    SourceKind,
)
from identity_pipeline.auth.types import TokenRequest
from identity_pipeline.config.environment import EnvironmentProbe
from identity_pipeline.config.settings import DEFAULT_AUTHORITY_HOST, Settings
from identity_pipeline.pipeline.classifier import ResponseClassifier
from identity_pipeline.pipeline.errors import CredentialUnavailableError
from identity_pipeline.utils import Clock, get_logger


logger = get_logger(__name__)

ASSERTION_REFRESH_SECONDS = 5 * 60
CLIENT_ASSERTION_TYPE = "urn:ietf:params:oauth:client-assertion-type:jwt-bearer"


def _authority_host(environment: EnvironmentProbe, settings: Settings) -> str:
    if settings.authority_host != DEFAULT_AUTHORITY_HOST:
        return settings.authority_host
    return environment.authority_host or DEFAULT_AUTHORITY_HOST


def _client_id(
    identity: ManagedIdentityId, environment: EnvironmentProbe, settings: Settings
) -> str | None:
    return identity.client_id or settings.client_id or environment.client_id


def _tenant_id(environment: EnvironmentProbe, settings: Settings) -> str | None:
    return settings.tenant_id or environment.tenant_id


class TokenExchangeSource(ManagedIdentitySource):
    """Workload identity federation (for example AKS workload identity).

    Exchanges the projected service account token found in
    ``AZURE_FEDERATED_TOKEN_FILE`` for an access token with the client
    credentials grant. The file is re-read at most every five minutes since
    the projected token is rotated in place.
    """

    kind = SourceKind.TOKEN_EXCHANGE
    classifier = ResponseClassifier()

    def __init__(
        self,
        pipeline: CredentialPipeline,
        identity: ManagedIdentityId | None = None,
        *,
        environment: EnvironmentProbe | None = None,
        clock: Clock | None = None,
    ) -> None:
        super().__init__(pipeline, identity, environment=environment, clock=clock)
        if self.identity.resource_id or self.identity.object_id:
            raise ValueError(
                "Workload identity federation only supports user-assigned identities specified by client id"
            )
        settings = pipeline.settings
        token_file = self.environment.federated_token_file
        client_id = _client_id(self.identity, self.environment, settings)
        tenant_id = _tenant_id(self.environment, settings)
        if not token_file or not client_id or not tenant_id:
            raise CredentialUnavailableError(
                "Workload identity federation configuration not found",
                source=self.name,
            )
        self._token_file = token_file
        self._client_id = client_id
        self._tenant_id = tenant_id
        self._authority_host = _authority_host(self.environment, settings).rstrip("/")
        self._assertion: str | None = None
        self._assertion_read_at = 0.0

    @classmethod
    def is_eligible(
        cls,
        environment: EnvironmentProbe,
        settings: Settings,
        identity: ManagedIdentityId,
    ) -> bool:
        if environment.federated_token_file is None:
            return False
        if identity.resource_id or identity.object_id:
            return False
        client_id = _client_id(identity, environment, settings)
        return bool(client_id and _tenant_id(environment, settings))

    def _client_assertion(self) -> str:
        now = self.clock.now()
        if self._assertion is None or now - self._assertion_read_at >= ASSERTION_REFRESH_SECONDS:
            try:
                assertion = self.environment.read_text(self._token_file).strip()
            except OSError as exc:
                raise CredentialUnavailableError(
                    f"Unable to read the federated token file {self._token_file}: {exc}",
                    source=self.name,
                    inner_error=exc,
                ) from exc
            if not assertion:
                raise CredentialUnavailableError(
                    f"The federated token file {self._token_file} is empty",
                    source=self.name,
                )
            self._assertion = assertion
            self._assertion_read_at = now
            logger.debug("Federated token file read", path=self._token_file)
        return self._assertion

    def create_request(self, request: TokenRequest) -> httpx.Request:
        tenant = request.tenant_id or self._tenant_id
        form = {
            "grant_type": "client_credentials",
            "client_id": self._client_id,
            "scope": " ".join(request.scopes),
            "client_assertion_type": CLIENT_ASSERTION_TYPE,
            "client_assertion": self._client_assertion(),
        }
        if request.claims:
            form["claims"] = request.claims
        return httpx.Request(
            "POST",
            f"{self._authority_host}/{tenant}/oauth2/v2.0/token",
            data=form,
        )


__all__ = ["TokenExchangeSource", "ASSERTION_REFRESH_SECONDS"]
