from __future__ import annotations

import httpx
import pytest

from identity_pipeline.auth.credentials import ManagedIdentityCredential, TokenCredential
from identity_pipeline.auth.types import AccessToken, TokenRequest
from identity_pipeline.config import environment as environment_module
from identity_pipeline.pipeline.errors import (
    AuthenticationFailedError,
    CredentialUnavailableError,
)
from identity_pipeline.utils import CancellationError, CancellationTokenSource

from tests.factories import (
    DEFAULT_NOW,
    IMDS_TOKEN_URL,
    MANAGEMENT_SCOPE,
    make_environment,
    make_pipeline,
    make_settings,
    token_body,
)
from tests.stubs import FrozenClock


@pytest.fixture(autouse=True)
def _no_binding_certificate(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(environment_module, "DEFAULT_BINDING_CERTIFICATE_PATHS", ())


def _credential(**kwargs) -> ManagedIdentityCredential:
    kwargs.setdefault("pipeline", make_pipeline())
    kwargs.setdefault("environment", make_environment())
    kwargs.setdefault("clock", FrozenClock(DEFAULT_NOW))
    return ManagedIdentityCredential(**kwargs)


def test_only_one_user_assigned_id() -> None:
    with pytest.raises(ValueError):
        _credential(client_id="client", resource_id="/subscriptions/x/identity")


@pytest.mark.asyncio
async def test_imds_token_is_cached(respx_mock) -> None:
    route = respx_mock.get(IMDS_TOKEN_URL).mock(
        return_value=httpx.Response(200, json=token_body())
    )
    credential = _credential()

    first = await credential.get_token(MANAGEMENT_SCOPE)
    second = await credential.get_token(MANAGEMENT_SCOPE)

    assert first.token == "abc"
    assert second is first
    assert route.call_count == 1


@pytest.mark.asyncio
async def test_claims_challenge_skips_cache(respx_mock) -> None:
    route = respx_mock.get(IMDS_TOKEN_URL).mock(
        return_value=httpx.Response(200, json=token_body())
    )
    credential = _credential()

    await credential.get_token(MANAGEMENT_SCOPE)
    await credential.get_token(MANAGEMENT_SCOPE, claims='{"access_token":{"nbf":{"essential":true}}}')

    assert route.call_count == 2


@pytest.mark.asyncio
async def test_identity_from_settings(respx_mock) -> None:
    route = respx_mock.get(IMDS_TOKEN_URL).mock(
        return_value=httpx.Response(200, json=token_body())
    )
    credential = _credential(
        pipeline=make_pipeline(make_settings(managed_identity_client_id="settings-client"))
    )

    await credential.get_token(MANAGEMENT_SCOPE)

    assert credential.identity.client_id == "settings-client"
    assert route.calls.last.request.url.params["client_id"] == "settings-client"


@pytest.mark.asyncio
async def test_explicit_identity_overrides_settings(respx_mock) -> None:
    route = respx_mock.get(IMDS_TOKEN_URL).mock(
        return_value=httpx.Response(200, json=token_body())
    )
    credential = _credential(
        object_id="explicit-object",
        pipeline=make_pipeline(make_settings(managed_identity_client_id="settings-client")),
    )

    await credential.get_token(MANAGEMENT_SCOPE)

    params = route.calls.last.request.url.params
    assert params["object_id"] == "explicit-object"
    assert "client_id" not in params


@pytest.mark.asyncio
async def test_pop_requires_certificate_bound_source(respx_mock) -> None:
    with pytest.raises(CredentialUnavailableError, match="Proof-of-possession"):
        await _credential().get_token(MANAGEMENT_SCOPE, enable_pop=True, nonce="nonce")

    assert respx_mock.calls.call_count == 0


@pytest.mark.asyncio
async def test_no_source_is_unavailable() -> None:
    credential = _credential(pipeline=make_pipeline(make_settings(allow_imds_fallback=False)))

    with pytest.raises(CredentialUnavailableError) as exc_info:
        await credential.get_token(MANAGEMENT_SCOPE)

    assert exc_info.value.source == "ManagedIdentityCredential"


@pytest.mark.asyncio
async def test_multiple_scopes_fail_with_wrapped_error() -> None:
    with pytest.raises(AuthenticationFailedError) as exc_info:
        await _credential().get_token(MANAGEMENT_SCOPE, "https://vault.azure.net/.default")

    assert isinstance(exc_info.value.__cause__, ValueError)
    assert exc_info.value.source == "ManagedIdentityCredential"


@pytest.mark.asyncio
async def test_cancelled_token_stops_before_acquiring(respx_mock) -> None:
    source = CancellationTokenSource()
    source.cancel(reason="shutting down")

    with pytest.raises(CancellationError):
        await _credential().get_token(MANAGEMENT_SCOPE, cancellation_token=source.token)

    assert respx_mock.calls.call_count == 0


class _ExplodingCredential(TokenCredential):
    def __init__(self) -> None:
        super().__init__(clock=FrozenClock(DEFAULT_NOW))
        self.closed = False

    async def _acquire(self, request: TokenRequest, *, cancellation_token=None) -> AccessToken:
        raise RuntimeError("socket closed unexpectedly")

    async def aclose(self) -> None:
        self.closed = True


@pytest.mark.asyncio
async def test_unexpected_errors_become_authentication_failures() -> None:
    async with _ExplodingCredential() as credential:
        with pytest.raises(AuthenticationFailedError) as exc_info:
            await credential.get_token("scope")

    assert isinstance(exc_info.value.__cause__, RuntimeError)
    assert exc_info.value.source == "_ExplodingCredential"
    assert "socket closed unexpectedly" in str(exc_info.value)
    assert credential.closed
