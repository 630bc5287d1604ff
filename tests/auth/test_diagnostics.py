from __future__ import annotations

import pytest
from structlog.contextvars import get_contextvars

from identity_pipeline.auth import diagnostics as diagnostics_module
from identity_pipeline.auth.diagnostics import DiagnosticScope
from identity_pipeline.auth.types import AccessToken
from identity_pipeline.pipeline.errors import (
    AuthenticationFailedError,
    CredentialUnavailableError,
)

from tests.factories import make_jwt


def test_scope_binds_operation_only_while_open() -> None:
    with DiagnosticScope("ManagedIdentityCredential.get_token", scopes=["a"]):
        assert get_contextvars()["operation"] == "ManagedIdentityCredential.get_token"

    assert "operation" not in get_contextvars()


def test_scope_unbinds_when_body_raises() -> None:
    with pytest.raises(KeyError):
        with DiagnosticScope("Credential.get_token"):
            raise KeyError("boom")

    assert "operation" not in get_contextvars()


def test_fail_wrap_tags_identity_errors() -> None:
    scope = DiagnosticScope("ManagedIdentityCredential.get_token")
    error = CredentialUnavailableError("nothing here")

    wrapped = scope.fail_wrap(error)

    assert wrapped is error
    assert wrapped.source == "ManagedIdentityCredential"


def test_fail_wrap_keeps_existing_source() -> None:
    scope = DiagnosticScope("ManagedIdentityCredential.get_token")
    error = CredentialUnavailableError("nothing here", source="imds")

    assert scope.fail_wrap(error).source == "imds"


def test_fail_wrap_chains_other_errors() -> None:
    scope = DiagnosticScope("OnBehalfOfCredential.get_token", credential="OnBehalfOfCredential")
    error = ValueError("bad scope")

    wrapped = scope.fail_wrap(error)

    assert isinstance(wrapped, AuthenticationFailedError)
    assert wrapped.__cause__ is error
    assert wrapped.inner_error is error
    assert wrapped.source == "OnBehalfOfCredential"
    assert str(wrapped) == "OnBehalfOfCredential authentication failed: bad scope"


class _RecordingLogger:
    def __init__(self) -> None:
        self.events: list[tuple[str, str, dict]] = []

    def _record(self, level: str, event: str, **kwargs) -> None:
        self.events.append((level, event, kwargs))

    def debug(self, event: str, **kwargs) -> None:
        self._record("debug", event, **kwargs)

    def info(self, event: str, **kwargs) -> None:
        self._record("info", event, **kwargs)

    def warning(self, event: str, **kwargs) -> None:
        self._record("warning", event, **kwargs)


def test_success_logs_issued_account(monkeypatch: pytest.MonkeyPatch) -> None:
    recorder = _RecordingLogger()
    monkeypatch.setattr(diagnostics_module, "logger", recorder)
    token = AccessToken(
        token=make_jwt(appid="app-id", tid="tenant-id", oid="object-id", upn="user@contoso.com"),
        expires_on=1_700_003_600,
        refresh_on=1_700_001_800,
    )

    with DiagnosticScope("ManagedIdentityCredential.get_token") as scope:
        scope.succeeded(token)

    successes = [fields for level, event, fields in recorder.events if event == "Operation succeeded"]
    assert len(successes) == 1
    fields = successes[0]
    assert fields["client_id"] == "app-id"
    assert fields["tenant_id"] == "tenant-id"
    assert fields["object_id"] == "object-id"
    assert fields["expires_on"] == 1_700_003_600
    assert "upn" not in fields and "user@contoso.com" not in fields.values()


def test_success_with_opaque_token_logs_expiry_only(monkeypatch: pytest.MonkeyPatch) -> None:
    recorder = _RecordingLogger()
    monkeypatch.setattr(diagnostics_module, "logger", recorder)

    with DiagnosticScope("ManagedIdentityCredential.get_token") as scope:
        scope.succeeded(AccessToken(token="opaque", expires_on=1_700_003_600))

    (fields,) = [fields for _, event, fields in recorder.events if event == "Operation succeeded"]
    assert fields["expires_on"] == 1_700_003_600
    assert "client_id" not in fields
