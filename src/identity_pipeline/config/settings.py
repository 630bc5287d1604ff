from __future__ import annotations

import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from dotenv import load_dotenv
from platformdirs import user_cache_dir, user_config_dir

APP_NAME = "IdentityPipeline"
ENV_PREFIX = "IDENTITY_PIPELINE_"
ENV_FILE_NAME = "settings.env"

DEFAULT_AUTHORITY_HOST = "https://login.microsoftonline.com"
DEFAULT_USER_AGENT = "identity-pipeline-python"
DEFAULT_REFRESH_TOKEN_SERVICE = APP_NAME
DEFAULT_REFRESH_TOKEN_ACCOUNT = "refresh-token"


class RetryMode(str, Enum):
    EXPONENTIAL = "exponential"
    FIXED = "fixed"


def _config_dir() -> Path:
    path = Path(user_config_dir(APP_NAME, roaming=True))
    path.mkdir(parents=True, exist_ok=True)
    return path


def _cache_dir() -> Path:
    path = Path(user_cache_dir(APP_NAME))
    path.mkdir(parents=True, exist_ok=True)
    return path


def config_dir() -> Path:
    return _config_dir()


def cache_dir() -> Path:
    return _cache_dir()


def log_dir() -> Path:
    path = cache_dir() / "logs"
    path.mkdir(parents=True, exist_ok=True)
    return path


def _env_file_path(explicit: Path | None) -> Path:
    if explicit is not None:
        return explicit
    return _config_dir() / ENV_FILE_NAME


@dataclass(slots=True)
class RetryOptions:
    """Retry knobs applied by the credential pipeline's retry policy."""

    mode: RetryMode = RetryMode.EXPONENTIAL
    max_retries: int = 3
    delay: float = 0.8
    max_delay: float = 60.0
    jitter: float = 0.2

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if self.delay < 0 or self.max_delay < 0:
            raise ValueError("Retry delays must be non-negative")
        if not 0 <= self.jitter < 1:
            raise ValueError("jitter must be in [0, 1)")


@dataclass(slots=True)
class TransportOptions:
    connect_timeout: float = 10.0
    read_timeout: float = 60.0
    write_timeout: float = 30.0
    pool_timeout: float = 5.0


@dataclass(slots=True)
class Settings:
    """Configuration shared by every credential built from the same options.

    Values left unset fall back to the well-known platform environment
    variables (``AZURE_TENANT_ID``, ``AZURE_CLIENT_ID`` ...) at the point a
    source reads them.
    """

    tenant_id: str | None = None
    client_id: str | None = None
    authority_host: str = DEFAULT_AUTHORITY_HOST
    managed_identity_client_id: str | None = None
    managed_identity_resource_id: str | None = None
    managed_identity_object_id: str | None = None
    retry: RetryOptions = field(default_factory=RetryOptions)
    transport: TransportOptions = field(default_factory=TransportOptions)
    user_agent: str = DEFAULT_USER_AGENT
    support_logging: bool = False
    allow_imds_fallback: bool = True
    binding_certificate_path: Path | None = None
    refresh_token_service: str = DEFAULT_REFRESH_TOKEN_SERVICE
    refresh_token_account: str = DEFAULT_REFRESH_TOKEN_ACCOUNT

    def derive_authority(self, tenant_id: str | None = None) -> str:
        """Return the authority URL for ``tenant_id`` (or the configured tenant)."""
        tenant = tenant_id or self.tenant_id or "organizations"
        return f"{self.authority_host.rstrip('/')}/{tenant}"


class SettingsManager:
    """Load settings from environment variables with dotenv file fallback."""

    def __init__(self, env_file: Path | None = None) -> None:
        self._env_file = _env_file_path(env_file)

    @property
    def env_file(self) -> Path:
        return self._env_file

    def load(self) -> Settings:
        load_dotenv(self._env_file, override=False)

        settings = Settings(
            tenant_id=self._get_env("TENANT_ID"),
            client_id=self._get_env("CLIENT_ID"),
            managed_identity_client_id=self._get_env("MANAGED_IDENTITY_CLIENT_ID"),
            managed_identity_resource_id=self._get_env("MANAGED_IDENTITY_RESOURCE_ID"),
            managed_identity_object_id=self._get_env("MANAGED_IDENTITY_OBJECT_ID"),
        )

        authority_host = self._get_env("AUTHORITY_HOST")
        if authority_host:
            settings.authority_host = authority_host
        user_agent = self._get_env("USER_AGENT")
        if user_agent:
            settings.user_agent = user_agent

        settings.support_logging = self._get_bool("SUPPORT_LOGGING", default=False)
        settings.allow_imds_fallback = self._get_bool("ALLOW_IMDS_FALLBACK", default=True)

        certificate = self._get_env("BINDING_CERTIFICATE")
        if certificate:
            settings.binding_certificate_path = Path(certificate).expanduser()

        service = self._get_env("REFRESH_TOKEN_SERVICE")
        if service:
            settings.refresh_token_service = service
        account = self._get_env("REFRESH_TOKEN_ACCOUNT")
        if account:
            settings.refresh_token_account = account

        settings.retry = self._load_retry_options()
        return settings

    def _load_retry_options(self) -> RetryOptions:
        options = RetryOptions()
        mode = self._get_env("RETRY_MODE")
        if mode:
            try:
                options.mode = RetryMode(mode.strip().lower())
            except ValueError as exc:
                raise ValueError(
                    f"{ENV_PREFIX}RETRY_MODE must be one of "
                    f"{', '.join(m.value for m in RetryMode)}; got {mode!r}"
                ) from exc
        max_retries = self._get_env("MAX_RETRIES")
        if max_retries:
            options.max_retries = int(max_retries)
        delay = self._get_env("RETRY_DELAY")
        if delay:
            options.delay = float(delay)
        max_delay = self._get_env("MAX_RETRY_DELAY")
        if max_delay:
            options.max_delay = float(max_delay)
        options.__post_init__()
        return options

    def _get_env(self, name: str) -> str | None:
        return os.getenv(f"{ENV_PREFIX}{name}") or None

    def _get_bool(self, name: str, *, default: bool) -> bool:
        raw = self._get_env(name)
        if raw is None:
            return default
        return raw.strip().lower() in {"1", "true", "yes", "on"}


__all__ = [
    "APP_NAME",
    "DEFAULT_AUTHORITY_HOST",
    "RetryMode",
    "RetryOptions",
    "TransportOptions",
    "Settings",
    "SettingsManager",
    "cache_dir",
    "config_dir",
    "log_dir",
]
