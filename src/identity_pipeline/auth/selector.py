from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Sequence

from identity_pipeline.auth.app_cache import SingleFlightCache
from identity_pipeline.auth.credential_pipeline import CredentialPipeline
from identity_pipeline.auth.sources.app_service import AppService2017Source, AppService2019Source
from identity_pipeline.auth.sources.azure_arc import AzureArcSource
from identity_pipeline.auth.sources.base import ManagedIdentityId, ManagedIdentitySource, SourceKind
from identity_pipeline.auth.sources.cloud_shell import CloudShellSource
from identity_pipeline.auth.sources.imds import ImdsSource
from identity_pipeline.auth.sources.service_fabric import ServiceFabricSource
from identity_pipeline.auth.sources.slc import SlcSource
from identity_pipeline.auth.sources.token_exchange import TokenExchangeSource
from identity_pipeline.config.environment import EnvironmentProbe
from identity_pipeline.config.settings import Settings
from identity_pipeline.pipeline.errors import CredentialUnavailableError
from identity_pipeline.utils import CancellationToken, Clock, get_logger


logger = get_logger(__name__)

NO_SOURCE_AVAILABLE = (
    "ManagedIdentityCredential authentication unavailable. "
    "No managed identity endpoint found."
)

Eligibility = Callable[[EnvironmentProbe, Settings, ManagedIdentityId], bool]
SourceFactory = Callable[..., ManagedIdentitySource]


@dataclass(frozen=True, slots=True)
class SourceDescriptor:
    kind: SourceKind
    is_eligible: Eligibility
    create: SourceFactory


def _descriptor(source: type[ManagedIdentitySource]) -> SourceDescriptor:
    return SourceDescriptor(kind=source.kind, is_eligible=source.is_eligible, create=source)


# Most specific hosting environment first; IMDS last.
DEFAULT_DESCRIPTORS: tuple[SourceDescriptor, ...] = tuple(
    _descriptor(source)
    for source in (
        ServiceFabricSource,
        AppService2019Source,
        AppService2017Source,
        CloudShellSource,
        AzureArcSource,
        TokenExchangeSource,
        SlcSource,
        ImdsSource,
    )
)


class SourceSelector:
    """Chooses the managed identity source for this process, once.

    The first eligible descriptor wins and is kept for the selector's
    lifetime, even if the environment changes later. When nothing is
    eligible the failure is kept as well and every later call raises the
    same :class:`CredentialUnavailableError`.
    """

    def __init__(
        self,
        pipeline: CredentialPipeline,
        identity: ManagedIdentityId | None = None,
        *,
        environment: EnvironmentProbe | None = None,
        descriptors: Sequence[SourceDescriptor] = DEFAULT_DESCRIPTORS,
        clock: Clock | None = None,
    ) -> None:
        self._pipeline = pipeline
        self._identity = identity or ManagedIdentityId()
        self._environment = environment or EnvironmentProbe()
        self._descriptors = tuple(descriptors)
        self._clock = clock
        self._resolved: SingleFlightCache[str, ManagedIdentitySource] = SingleFlightCache(
            "source-selector"
        )
        self._unavailable: CredentialUnavailableError | None = None

    @property
    def descriptors(self) -> tuple[SourceDescriptor, ...]:
        return self._descriptors

    def select(self) -> SourceDescriptor | None:
        """Return the first eligible descriptor without constructing anything."""

        settings = self._pipeline.settings
        for descriptor in self._descriptors:
            if descriptor.is_eligible(self._environment, settings, self._identity):
                return descriptor
        return None

    async def resolve(
        self,
        *,
        cancellation_token: CancellationToken | None = None,
    ) -> ManagedIdentitySource:
        if self._unavailable is not None:
            raise self._unavailable
        return await self._resolved.get_or_create(
            "source",
            self._create,
            cancellation_token=cancellation_token,
        )

    async def _create(self) -> ManagedIdentitySource:
        if self._unavailable is not None:
            raise self._unavailable
        descriptor = self.select()
        if descriptor is None:
            self._unavailable = CredentialUnavailableError(NO_SOURCE_AVAILABLE)
            logger.warning("No managed identity source is available")
            raise self._unavailable
        try:
            source = descriptor.create(
                self._pipeline,
                self._identity,
                environment=self._environment,
                clock=self._clock,
            )
        except CredentialUnavailableError as exc:
            self._unavailable = exc
            raise
        logger.info("Managed identity source selected", source=descriptor.kind.value)
        return source


__all__ = ["DEFAULT_DESCRIPTORS", "SourceDescriptor", "SourceSelector", "NO_SOURCE_AVAILABLE"]
