from __future__ import annotations

from abc import ABC, abstractmethod
from types import TracebackType

from identity_pipeline.auth.credential_pipeline import (
    CredentialPipeline,
    get_default_pipeline,
)
from identity_pipeline.auth.diagnostics import DiagnosticScope
from identity_pipeline.auth.selector import SourceSelector
from identity_pipeline.auth.sources.base import ManagedIdentityId, SourceKind
from identity_pipeline.auth.token_cache import AccessTokenCache
from identity_pipeline.auth.types import AccessToken, PropertyBag, TokenRequest
from identity_pipeline.config.environment import EnvironmentProbe
from identity_pipeline.config.settings import Settings
from identity_pipeline.pipeline.errors import CredentialUnavailableError
from identity_pipeline.utils import CancellationToken, Clock, get_logger, system_clock


logger = get_logger(__name__)


class TokenCredential(ABC):
    """Upward contract: an access token for a set of scopes.

    Tokens are reused from an in-memory cache until their refresh-on time;
    each trip to the underlying source runs inside a diagnostic scope that
    tags failures with the credential name.
    """

    def __init__(self, *, clock: Clock | None = None) -> None:
        self._clock = clock or system_clock
        self._token_cache = AccessTokenCache(self._clock)

    @property
    def name(self) -> str:
        return type(self).__name__

    async def get_token(
        self,
        *scopes: str,
        claims: str | None = None,
        tenant_id: str | None = None,
        enable_cae: bool = False,
        enable_pop: bool = False,
        nonce: str | None = None,
        parent_request_id: str | None = None,
        user_assertion: str | None = None,
        properties: PropertyBag | None = None,
        cancellation_token: CancellationToken | None = None,
    ) -> AccessToken:
        request = TokenRequest(
            scopes=tuple(scopes),
            parent_request_id=parent_request_id,
            claims=claims,
            tenant_id=tenant_id,
            enable_cae=enable_cae,
            enable_pop=enable_pop,
            nonce=nonce,
            user_assertion=user_assertion,
            properties=properties or PropertyBag(),
        )
        return await self.get_token_for_request(request, cancellation_token=cancellation_token)

    async def get_token_for_request(
        self,
        request: TokenRequest,
        *,
        cancellation_token: CancellationToken | None = None,
    ) -> AccessToken:
        if cancellation_token is not None:
            cancellation_token.raise_if_cancelled()

        async def acquire(token_request: TokenRequest) -> AccessToken:
            return await self._acquire_traced(token_request, cancellation_token)

        return await self._token_cache.get_token(request, acquire)

    async def _acquire_traced(
        self,
        request: TokenRequest,
        cancellation_token: CancellationToken | None,
    ) -> AccessToken:
        with DiagnosticScope(
            f"{self.name}.get_token",
            credential=self.name,
            scopes=list(request.scopes),
            tenant_id=request.tenant_id,
            cae=request.enable_cae,
            pop=request.enable_pop,
            parent_request_id=request.parent_request_id,
        ) as scope:
            try:
                access_token = await self._acquire(request, cancellation_token=cancellation_token)
            except Exception as exc:
                raise scope.fail_wrap(exc)
            scope.succeeded(access_token)
            return access_token

    @abstractmethod
    async def _acquire(
        self,
        request: TokenRequest,
        *,
        cancellation_token: CancellationToken | None = None,
    ) -> AccessToken: ...

    async def aclose(self) -> None:
        return None

    async def __aenter__(self) -> "TokenCredential":
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()


class ManagedIdentityCredential(TokenCredential):
    """Token credential for the managed identity of the current host.

    The hosting environment is detected on first use and never re-evaluated.
    A user-assigned identity may be selected by exactly one of ``client_id``,
    ``resource_id`` or ``object_id``; without one, the matching settings
    fields are used, and without those the system-assigned identity.
    """

    def __init__(
        self,
        *,
        client_id: str | None = None,
        resource_id: str | None = None,
        object_id: str | None = None,
        settings: Settings | None = None,
        pipeline: CredentialPipeline | None = None,
        environment: EnvironmentProbe | None = None,
        clock: Clock | None = None,
        selector: SourceSelector | None = None,
    ) -> None:
        super().__init__(clock=clock)
        if pipeline is None:
            pipeline = CredentialPipeline.build(settings) if settings else get_default_pipeline()
        settings = pipeline.settings
        if client_id or resource_id or object_id:
            identity = ManagedIdentityId(client_id, resource_id, object_id)
        else:
            identity = ManagedIdentityId(
                settings.managed_identity_client_id,
                settings.managed_identity_resource_id,
                settings.managed_identity_object_id,
            )
        self._pipeline = pipeline
        self._identity = identity
        self._selector = selector or SourceSelector(
            pipeline,
            identity,
            environment=environment,
            clock=self._clock,
        )

    @property
    def identity(self) -> ManagedIdentityId:
        return self._identity

    async def _acquire(
        self,
        request: TokenRequest,
        *,
        cancellation_token: CancellationToken | None = None,
    ) -> AccessToken:
        source = await self._selector.resolve(cancellation_token=cancellation_token)
        if request.enable_pop and source.kind is not SourceKind.SLC:
            raise CredentialUnavailableError(
                f"Proof-of-possession tokens are not supported by the {source.name} managed identity source",
                source=source.name,
            )
        return await source.authenticate(request, cancellation_token=cancellation_token)


__all__ = ["ManagedIdentityCredential", "TokenCredential"]
