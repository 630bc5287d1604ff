from __future__ import annotations

import asyncio

import pytest

from identity_pipeline.auth.selector import (
    DEFAULT_DESCRIPTORS,
    NO_SOURCE_AVAILABLE,
    SourceDescriptor,
    SourceSelector,
)
from identity_pipeline.auth.sources import (
    AppService2017Source,
    AppService2019Source,
    AzureArcSource,
    CloudShellSource,
    ImdsSource,
    ManagedIdentityId,
    ServiceFabricSource,
    SourceKind,
    TokenExchangeSource,
)
from identity_pipeline.config import environment as environment_module
from identity_pipeline.config.environment import EnvironmentProbe
from identity_pipeline.pipeline.errors import CredentialUnavailableError

from tests.factories import make_pipeline, make_settings


ENDPOINT = "http://127.0.0.1:41741/msi/token"


@pytest.fixture(autouse=True)
def _no_binding_certificate(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(environment_module, "DEFAULT_BINDING_CERTIFICATE_PATHS", ())


def test_descriptors_follow_priority_order() -> None:
    assert [descriptor.kind for descriptor in DEFAULT_DESCRIPTORS] == list(SourceKind)


@pytest.mark.parametrize(
    ("variables", "expected"),
    [
        (
            {
                "IDENTITY_ENDPOINT": ENDPOINT,
                "IDENTITY_HEADER": "header",
                "IDENTITY_SERVER_THUMBPRINT": "ABCDEF",
            },
            ServiceFabricSource,
        ),
        (
            {"IDENTITY_ENDPOINT": ENDPOINT, "IDENTITY_HEADER": "header", "IMDS_ENDPOINT": ENDPOINT},
            AppService2019Source,
        ),
        ({"MSI_ENDPOINT": ENDPOINT, "MSI_SECRET": "secret"}, AppService2017Source),
        ({"MSI_ENDPOINT": ENDPOINT}, CloudShellSource),
        ({"IDENTITY_ENDPOINT": ENDPOINT, "IMDS_ENDPOINT": "http://127.0.0.1:40342"}, AzureArcSource),
        (
            {
                "AZURE_FEDERATED_TOKEN_FILE": "/var/run/secrets/azure/tokens/azure-identity-token",
                "AZURE_CLIENT_ID": "client",
                "AZURE_TENANT_ID": "tenant",
            },
            TokenExchangeSource,
        ),
        ({}, ImdsSource),
    ],
)
@pytest.mark.asyncio
async def test_first_eligible_source_wins(variables: dict[str, str], expected: type) -> None:
    selector = SourceSelector(
        make_pipeline(make_settings(tenant_id=None, client_id=None)),
        environment=EnvironmentProbe(variables),
    )

    source = await selector.resolve()

    assert type(source) is expected
    assert selector.select() is not None


@pytest.mark.asyncio
async def test_selection_is_memoized_despite_environment_changes() -> None:
    variables: dict[str, str] = {}
    selector = SourceSelector(make_pipeline(), environment=EnvironmentProbe(variables))

    first = await selector.resolve()
    variables.update({"MSI_ENDPOINT": ENDPOINT, "MSI_SECRET": "secret"})
    second = await selector.resolve()

    assert isinstance(first, ImdsSource)
    assert second is first


@pytest.mark.asyncio
async def test_concurrent_resolution_converges_on_one_source() -> None:
    created: list[object] = []

    def _create(*args, **kwargs):
        source = ImdsSource(*args, **kwargs)
        created.append(source)
        return source

    descriptor = SourceDescriptor(SourceKind.IMDS, lambda *_: True, _create)
    selector = SourceSelector(make_pipeline(), environment=EnvironmentProbe({}), descriptors=[descriptor])

    sources = await asyncio.gather(*(selector.resolve() for _ in range(10)))

    assert len(created) == 1
    assert all(source is sources[0] for source in sources)


@pytest.mark.asyncio
async def test_no_eligible_source_is_permanent() -> None:
    variables: dict[str, str] = {}
    selector = SourceSelector(
        make_pipeline(make_settings(allow_imds_fallback=False)),
        environment=EnvironmentProbe(variables),
    )

    with pytest.raises(CredentialUnavailableError) as first:
        await selector.resolve()
    assert str(first.value) == NO_SOURCE_AVAILABLE

    variables.update({"MSI_ENDPOINT": ENDPOINT})
    with pytest.raises(CredentialUnavailableError) as second:
        await selector.resolve()
    assert second.value is first.value


@pytest.mark.asyncio
async def test_unavailable_during_construction_is_memoized() -> None:
    attempts: list[int] = []

    def _create(*args, **kwargs):
        attempts.append(1)
        raise CredentialUnavailableError("endpoint missing", source="imds")

    descriptor = SourceDescriptor(SourceKind.IMDS, lambda *_: True, _create)
    selector = SourceSelector(make_pipeline(), environment=EnvironmentProbe({}), descriptors=[descriptor])

    for _ in range(3):
        with pytest.raises(CredentialUnavailableError):
            await selector.resolve()

    assert len(attempts) == 1


@pytest.mark.asyncio
async def test_invalid_endpoint_makes_source_unavailable() -> None:
    selector = SourceSelector(
        make_pipeline(),
        environment=EnvironmentProbe({"MSI_ENDPOINT": "not a url", "MSI_SECRET": "secret"}),
    )

    with pytest.raises(CredentialUnavailableError, match="MSI_ENDPOINT"):
        await selector.resolve()


@pytest.mark.asyncio
async def test_argument_errors_are_not_memoized() -> None:
    selector = SourceSelector(
        make_pipeline(),
        ManagedIdentityId(client_id="user-assigned"),
        environment=EnvironmentProbe({"MSI_ENDPOINT": ENDPOINT}),
    )

    with pytest.raises(ValueError):
        await selector.resolve()
    with pytest.raises(ValueError):
        await selector.resolve()
