from __future__ import annotations

import os
from typing import Final

import keyring
from keyring.backend import KeyringBackend
from keyring.errors import KeyringError

from identity_pipeline.config.settings import APP_NAME, ENV_PREFIX
from identity_pipeline.utils import get_logger


logger = get_logger(__name__)

ALLOW_INSECURE_ENV: Final[str] = f"{ENV_PREFIX}ALLOW_INSECURE_KEYRING"

_INSECURE_MARKERS = ("plaintext", "unencrypted", "insecure", "simplekeyring")
_INSECURE_MODULES = (
    "keyring.backends.file",
    "keyrings.alt.file",
    "keyring.backends.null",
    "keyring.backends.fail",
)


class InsecureKeyringError(RuntimeError):
    """Raised when the active keyring backend does not provide encryption."""


def describe_backend(backend: KeyringBackend) -> str:
    return f"{backend.__class__.__module__}.{backend.__class__.__name__}"


def is_secure_backend(backend: KeyringBackend) -> bool:
    flag = getattr(backend, "secure_storage", None)
    if isinstance(flag, bool):
        return flag

    name = backend.__class__.__name__.lower()
    module = backend.__class__.__module__
    if any(marker in name for marker in _INSECURE_MARKERS):
        return False
    if module.startswith("keyring.backends.chainer"):
        children = getattr(backend, "backends", ())
        return bool(children) and all(is_secure_backend(child) for child in children)
    return not module.startswith(_INSECURE_MODULES)


def _allow_insecure(flag: bool | None) -> bool:
    if flag is not None:
        return flag
    raw = os.getenv(ALLOW_INSECURE_ENV)
    if raw is None:
        return False
    return raw.strip().lower() in {"1", "true", "yes", "on"}


class SecretStore:
    """Read-only view of credential material kept in the OS keyring.

    Nothing here writes to the keyring; storing the material is the job of
    whatever signed the user in.
    """

    def __init__(
        self,
        service_name: str = APP_NAME,
        *,
        backend: KeyringBackend | None = None,
        allow_insecure: bool | None = None,
    ) -> None:
        self._service_name = service_name
        self._backend = backend or keyring.get_keyring()
        descriptor = describe_backend(self._backend)
        if not is_secure_backend(self._backend):
            if not _allow_insecure(allow_insecure):
                raise InsecureKeyringError(
                    f"Keyring backend {descriptor} does not provide encrypted storage. "
                    f"Set {ALLOW_INSECURE_ENV}=1 to read from it anyway."
                )
            logger.warning(
                "Reading from insecure keyring backend due to override",
                backend=descriptor,
                env=ALLOW_INSECURE_ENV,
            )
        logger.debug("Keyring backend selected", backend=descriptor, service=service_name)

    @property
    def service_name(self) -> str:
        return self._service_name

    def get_secret(self, key: str) -> str | None:
        try:
            return self._backend.get_password(self._service_name, key)
        except KeyringError as exc:
            logger.warning(
                "Keyring lookup failed",
                service=self._service_name,
                backend=describe_backend(self._backend),
                error=str(exc),
            )
            raise


__all__ = ["ALLOW_INSECURE_ENV", "InsecureKeyringError", "SecretStore", "is_secure_backend"]
