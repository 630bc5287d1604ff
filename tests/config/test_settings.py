from __future__ import annotations

from pathlib import Path

import pytest

from identity_pipeline.config.settings import (
    DEFAULT_AUTHORITY_HOST,
    ENV_PREFIX,
    RetryMode,
    RetryOptions,
    Settings,
    SettingsManager,
)


_VARIABLES = (
    "TENANT_ID",
    "CLIENT_ID",
    "AUTHORITY_HOST",
    "MANAGED_IDENTITY_CLIENT_ID",
    "SUPPORT_LOGGING",
    "ALLOW_IMDS_FALLBACK",
    "BINDING_CERTIFICATE",
    "RETRY_MODE",
    "MAX_RETRIES",
    "RETRY_DELAY",
    "MAX_RETRY_DELAY",
)


@pytest.fixture(autouse=True)
def _clean_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    # setenv first so monkeypatch restores anything load_dotenv writes.
    for name in _VARIABLES:
        monkeypatch.setenv(f"{ENV_PREFIX}{name}", "placeholder")
        monkeypatch.delenv(f"{ENV_PREFIX}{name}")


def test_defaults_without_environment(tmp_path: Path) -> None:
    settings = SettingsManager(tmp_path / "missing.env").load()

    assert settings.tenant_id is None
    assert settings.authority_host == DEFAULT_AUTHORITY_HOST
    assert settings.allow_imds_fallback is True
    assert settings.retry == RetryOptions()


def test_environment_values(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv(f"{ENV_PREFIX}TENANT_ID", "contoso")
    monkeypatch.setenv(f"{ENV_PREFIX}MANAGED_IDENTITY_CLIENT_ID", "mi-client")
    monkeypatch.setenv(f"{ENV_PREFIX}ALLOW_IMDS_FALLBACK", "false")
    monkeypatch.setenv(f"{ENV_PREFIX}SUPPORT_LOGGING", "1")
    monkeypatch.setenv(f"{ENV_PREFIX}RETRY_MODE", "Fixed")
    monkeypatch.setenv(f"{ENV_PREFIX}MAX_RETRIES", "5")
    monkeypatch.setenv(f"{ENV_PREFIX}RETRY_DELAY", "1.5")

    settings = SettingsManager(tmp_path / "missing.env").load()

    assert settings.tenant_id == "contoso"
    assert settings.managed_identity_client_id == "mi-client"
    assert settings.allow_imds_fallback is False
    assert settings.support_logging is True
    assert settings.retry.mode is RetryMode.FIXED
    assert settings.retry.max_retries == 5
    assert settings.retry.delay == 1.5


def test_dotenv_file_fills_gaps(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    env_file = tmp_path / "settings.env"
    env_file.write_text(
        f"{ENV_PREFIX}TENANT_ID=from-file\n"
        f"{ENV_PREFIX}CLIENT_ID=file-client\n"
        f"{ENV_PREFIX}BINDING_CERTIFICATE=/etc/identity/binding.pem\n",
        encoding="utf-8",
    )
    monkeypatch.setenv(f"{ENV_PREFIX}TENANT_ID", "from-environment")

    settings = SettingsManager(env_file).load()

    assert settings.tenant_id == "from-environment"
    assert settings.client_id == "file-client"
    assert settings.binding_certificate_path == Path("/etc/identity/binding.pem")


def test_invalid_retry_mode(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv(f"{ENV_PREFIX}RETRY_MODE", "linear")

    with pytest.raises(ValueError, match="RETRY_MODE"):
        SettingsManager(tmp_path / "missing.env").load()


def test_negative_retries_rejected(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv(f"{ENV_PREFIX}MAX_RETRIES", "-1")

    with pytest.raises(ValueError, match="max_retries"):
        SettingsManager(tmp_path / "missing.env").load()


@pytest.mark.parametrize(
    "kwargs",
    [{"max_retries": -1}, {"delay": -0.1}, {"max_delay": -1}, {"jitter": 1.0}],
)
def test_retry_options_validation(kwargs: dict[str, float]) -> None:
    with pytest.raises(ValueError):
        RetryOptions(**kwargs)  # type: ignore[arg-type]


def test_derive_authority() -> None:
    settings = Settings(tenant_id="contoso", authority_host="https://login.example.com/")

    assert settings.derive_authority() == "https://login.example.com/contoso"
    assert settings.derive_authority("fabrikam") == "https://login.example.com/fabrikam"
    assert Settings().derive_authority() == f"{DEFAULT_AUTHORITY_HOST}/organizations"
