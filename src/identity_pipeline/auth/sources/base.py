from __future__ import annotations

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, ClassVar, Sequence

import httpx

from identity_pipeline.auth.credential_pipeline import CredentialPipeline
from identity_pipeline.auth.lifecycle import parse_token
from identity_pipeline.auth.types import AccessToken, TokenRequest
from identity_pipeline.config.environment import EnvironmentProbe
from identity_pipeline.config.settings import Settings
from identity_pipeline.pipeline.classifier import (
    ManagedIdentityResponseClassifier,
    ResponseClassifier,
)
from identity_pipeline.pipeline.errors import (
    AuthenticationFailedError,
    CredentialUnavailableError,
    IdentityError,
    RequestFailedError,
)
from identity_pipeline.pipeline.pipeline import PipelineResponse
from identity_pipeline.pipeline.retry import retry_count
from identity_pipeline.utils import CancellationToken, Clock, get_logger, system_clock


logger = get_logger(__name__)

DEFAULT_SCOPE_SUFFIX = "/.default"
UNEXPECTED_RESPONSE = (
    "Managed Identity response was not in the expected format. See the inner exception for details."
)


class SourceKind(str, Enum):
    """Managed identity flavours, in the order they are probed."""

    SERVICE_FABRIC = "service-fabric"
    APP_SERVICE_2019 = "app-service-2019"
    APP_SERVICE_2017 = "app-service-2017"
    CLOUD_SHELL = "cloud-shell"
    AZURE_ARC = "azure-arc"
    TOKEN_EXCHANGE = "token-exchange"
    SLC = "slc"
    IMDS = "imds"


@dataclass(frozen=True, slots=True)
class ManagedIdentityId:
    """Which identity to request: system-assigned, or one user-assigned id."""

    client_id: str | None = None
    resource_id: str | None = None
    object_id: str | None = None

    def __post_init__(self) -> None:
        provided = [v for v in (self.client_id, self.resource_id, self.object_id) if v]
        if len(provided) > 1:
            raise ValueError(
                "Only one of client_id, resource_id or object_id can be specified"
            )

    @property
    def is_user_assigned(self) -> bool:
        return bool(self.client_id or self.resource_id or self.object_id)

    def describe(self) -> str:
        if self.client_id:
            return "client_id"
        if self.resource_id:
            return "resource_id"
        if self.object_id:
            return "object_id"
        return "system_assigned"


def scopes_to_resource(scopes: Sequence[str]) -> str:
    """Managed identity endpoints take a single resource, not a scope list."""

    if len(scopes) != 1:
        raise ValueError("Managed identity authentication supports exactly one scope")
    scope = scopes[0]
    if scope.endswith(DEFAULT_SCOPE_SUFFIX):
        return scope[: -len(DEFAULT_SCOPE_SUFFIX)]
    return scope


def validated_endpoint(value: str, variable: str, source: str) -> httpx.URL:
    """Parse an endpoint taken from the environment, rejecting malformed values."""

    try:
        url = httpx.URL(value)
    except (httpx.InvalidURL, TypeError) as exc:
        raise CredentialUnavailableError(
            f"The environment variable {variable} contains an invalid endpoint: {value!r}",
            source=source,
            inner_error=exc,
        ) from exc
    if url.scheme not in {"http", "https"} or not url.host:
        raise CredentialUnavailableError(
            f"The environment variable {variable} contains an invalid endpoint: {value!r}",
            source=source,
        )
    return url


def _error_details(data: Any) -> tuple[str | None, str | None]:
    if not isinstance(data, dict):
        return None, None
    error = data.get("error")
    if isinstance(error, dict):
        message = error.get("message") or error.get("Message")
        code = error.get("code")
        return (str(message) if message else None, str(code) if code else None)
    message = (
        data.get("error_description")
        or data.get("Message")
        or data.get("message")
    )
    code = error if isinstance(error, str) else None
    return (str(message) if message else None, code)


class ManagedIdentitySource(ABC):
    """One way of obtaining a managed identity token on the current host.

    Subclasses build the endpoint specific request; sending, response
    classification and token parsing are shared. Failing responses are not
    retried here: retries belong to the pipeline.
    """

    kind: ClassVar[SourceKind]
    classifier: ClassVar[ResponseClassifier] = ManagedIdentityResponseClassifier()

    def __init__(
        self,
        pipeline: CredentialPipeline,
        identity: ManagedIdentityId | None = None,
        *,
        environment: EnvironmentProbe | None = None,
        clock: Clock | None = None,
    ) -> None:
        self.pipeline = pipeline
        self.identity = identity or ManagedIdentityId()
        self.environment = environment or EnvironmentProbe()
        self.clock = clock or system_clock

    @property
    def name(self) -> str:
        return self.kind.value

    @classmethod
    def is_eligible(
        cls,
        environment: EnvironmentProbe,
        settings: Settings,
        identity: ManagedIdentityId,
    ) -> bool:
        """Whether this host provides the source; must not raise when it does not."""

        raise NotImplementedError

    @abstractmethod
    def create_request(self, request: TokenRequest) -> httpx.Request: ...

    async def authenticate(
        self,
        request: TokenRequest,
        *,
        cancellation_token: CancellationToken | None = None,
    ) -> AccessToken:
        http_request = self.create_request(request)
        response = await self.send(http_request, cancellation_token=cancellation_token)
        return await self.handle_response(
            request, response, cancellation_token=cancellation_token
        )

    async def send(
        self,
        http_request: httpx.Request,
        *,
        cancellation_token: CancellationToken | None = None,
        pipeline: CredentialPipeline | None = None,
    ) -> PipelineResponse:
        try:
            return await (pipeline or self.pipeline).send(
                http_request,
                classifier=self.classifier,
                cancellation_token=cancellation_token,
            )
        except IdentityError as exc:
            raise exc.with_context(source=self.name)

    async def handle_response(
        self,
        request: TokenRequest,
        response: PipelineResponse,
        *,
        cancellation_token: CancellationToken | None = None,
    ) -> AccessToken:
        return self.parse_response(response)

    def parse_response(self, response: PipelineResponse) -> AccessToken:
        status = response.status_code
        retries = retry_count(response.context)
        http_response = response.http_response
        if status == 200:
            try:
                return parse_token(http_response.content, clock=self.clock, status_code=status)
            except IdentityError as exc:
                raise exc.with_context(source=self.name, retries=retries)

        body = http_response.text
        try:
            data = json.loads(body) if body else None
        except ValueError as exc:
            raise RequestFailedError(
                f"{self.name} endpoint returned status {status}: {UNEXPECTED_RESPONSE}",
                status_code=status,
                retry_after=http_response.headers.get("retry-after"),
                response_body=body,
                inner_error=exc,
            ).with_context(source=self.name, retries=retries) from exc

        message, code = _error_details(data)
        if message is None:
            raise RequestFailedError(
                f"{self.name} endpoint returned status {status}",
                status_code=status,
                code=code,
                retry_after=http_response.headers.get("retry-after"),
                response_body=body,
            ).with_context(source=self.name, retries=retries)
        raise AuthenticationFailedError(
            f"{self.name} endpoint returned status {status}: {message}",
            status_code=status,
            code=code,
            response_body=body,
        ).with_context(source=self.name, retries=retries)


__all__ = [
    "ManagedIdentityId",
    "ManagedIdentitySource",
    "SourceKind",
    "UNEXPECTED_RESPONSE",
    "scopes_to_resource",
    "validated_endpoint",
]
