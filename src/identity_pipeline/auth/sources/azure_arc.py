from __future__ import annotations

import os
import sys
from pathlib import Path

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
from identity_pipeline.config.environment import IDENTITY_ENDPOINT, EnvironmentProbe
from identity_pipeline.config.settings import Settings
from identity_pipeline.pipeline.challenge import extract_basic_realm
from identity_pipeline.pipeline.errors import AuthenticationFailedError, CredentialUnavailableError
from identity_pipeline.pipeline.pipeline import PipelineResponse
from identity_pipeline.utils import CancellationToken, Clock, get_logger


logger = get_logger(__name__)

API_VERSION = "2020-06-01"
MAX_KEY_FILE_BYTES = 4096


def default_token_directory() -> Path:
    if sys.platform.startswith("win"):
        program_data = os.environ.get("ProgramData", r"C:\ProgramData")
        return Path(program_data) / "AzureConnectedMachineAgent" / "Tokens"
    return Path("/var/opt/azcmagent/tokens")


class AzureArcSource(ManagedIdentitySource):
    """Azure Arc enabled server (Hybrid Instance Metadata Service).

    The first request is answered with a 401 whose Basic realm names a key
    file written by the local agent; the request is sent again once with the
    file's contents as proof of local file system access.
    """

    kind = SourceKind.AZURE_ARC

    def __init__(
        self,
        pipeline: CredentialPipeline,
        identity: ManagedIdentityId | None = None,
        *,
        environment: EnvironmentProbe | None = None,
        clock: Clock | None = None,
        token_directory: Path | None = None,
    ) -> None:
        super().__init__(pipeline, identity, environment=environment, clock=clock)
        if self.identity.is_user_assigned:
            raise ValueError(
                "Azure Arc managed identity does not support user-assigned identities"
            )
        endpoint = self.environment.identity_endpoint
        if not endpoint or not self.environment.imds_endpoint:
            raise CredentialUnavailableError(
                "Azure Arc managed identity configuration not found",
                source=self.name,
            )
        self._endpoint = validated_endpoint(endpoint, IDENTITY_ENDPOINT, self.name)
        self._token_directory = token_directory or default_token_directory()

    @classmethod
    def is_eligible(
        cls,
        environment: EnvironmentProbe,
        settings: Settings,
        identity: ManagedIdentityId,
    ) -> bool:
        return environment.has_all("IDENTITY_ENDPOINT", "IMDS_ENDPOINT")

    def create_request(self, request: TokenRequest) -> httpx.Request:
        return httpx.Request(
            "GET",
            self._endpoint,
            params={"api-version": API_VERSION, "resource": scopes_to_resource(request.scopes)},
            headers={"Metadata": "true"},
        )

    async def handle_response(
        self,
        request: TokenRequest,
        response: PipelineResponse,
        *,
        cancellation_token: CancellationToken | None = None,
    ) -> AccessToken:
        if response.status_code != 401:
            return self.parse_response(response)

        realm = extract_basic_realm(response.headers)
        if not realm:
            return self.parse_response(response)

        key = self._read_key_file(realm)
        challenge_request = self.create_request(request)
        challenge_request.headers["Authorization"] = f"Basic {key}"
        logger.debug("Answering Azure Arc key file challenge")
        retried = await self.send(challenge_request, cancellation_token=cancellation_token)
        return self.parse_response(retried)

    def _read_key_file(self, realm: str) -> str:
        path = Path(realm)
        if path.suffix.lower() != ".key":
            raise AuthenticationFailedError(
                "Azure Arc challenge file must have a .key extension",
                source=self.name,
            )
        try:
            resolved = path.resolve()
            expected = self._token_directory.resolve()
        except OSError as exc:
            raise AuthenticationFailedError(
                f"Azure Arc challenge file could not be resolved: {exc}",
                source=self.name,
                inner_error=exc,
            ) from exc
        if resolved.parent != expected:
            raise AuthenticationFailedError(
                "Azure Arc challenge file is not in the expected agent token directory",
                source=self.name,
            )
        try:
            size = self.environment.file_size(resolved)
            if size > MAX_KEY_FILE_BYTES:
                raise AuthenticationFailedError(
                    f"Azure Arc challenge file is larger than {MAX_KEY_FILE_BYTES} bytes",
                    source=self.name,
                )
            return self.environment.read_text(resolved).strip()
        except OSError as exc:
            raise AuthenticationFailedError(
                f"Azure Arc challenge file could not be read: {exc}",
                source=self.name,
                inner_error=exc,
            ) from exc


__all__ = ["AzureArcSource", "API_VERSION", "MAX_KEY_FILE_BYTES", "default_token_directory"]
