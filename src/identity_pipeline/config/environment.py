from __future__ import annotations

import os
from pathlib import Path
from typing import Mapping


IDENTITY_ENDPOINT = "IDENTITY_ENDPOINT"
IDENTITY_HEADER = "IDENTITY_HEADER"
IDENTITY_SERVER_THUMBPRINT = "IDENTITY_SERVER_THUMBPRINT"
MSI_ENDPOINT = "MSI_ENDPOINT"
MSI_SECRET = "MSI_SECRET"
IMDS_ENDPOINT = "IMDS_ENDPOINT"
POD_IDENTITY_AUTHORITY_HOST = "AZURE_POD_IDENTITY_AUTHORITY_HOST"
AZURE_TENANT_ID = "AZURE_TENANT_ID"
AZURE_CLIENT_ID = "AZURE_CLIENT_ID"
AZURE_FEDERATED_TOKEN_FILE = "AZURE_FEDERATED_TOKEN_FILE"
AZURE_AUTHORITY_HOST = "AZURE_AUTHORITY_HOST"
MSI_BINDING_CERTIFICATE = "MSI_BINDING_CERTIFICATE"

DEFAULT_BINDING_CERTIFICATE_PATHS: tuple[Path, ...] = (
    Path("/var/lib/azure/identity/binding_certificate.pem"),
)


class EnvironmentProbe:
    """Read-only view over environment variables and well-known local files.

    Sources consult the probe instead of ``os.environ`` so tests can hand in a
    plain mapping. Empty values are treated as absent.
    """

    def __init__(self, variables: Mapping[str, str] | None = None) -> None:
        self._variables = variables if variables is not None else os.environ

    def get(self, name: str) -> str | None:
        value = self._variables.get(name)
        if value is None:
            return None
        value = value.strip()
        return value or None

    def has_all(self, *names: str) -> bool:
        return all(self.get(name) for name in names)

    def path_exists(self, path: str | Path) -> bool:
        return Path(path).is_file()

    def read_text(self, path: str | Path) -> str:
        return Path(path).read_text(encoding="utf-8")

    def file_size(self, path: str | Path) -> int:
        return Path(path).stat().st_size

    @property
    def identity_endpoint(self) -> str | None:
        return self.get(IDENTITY_ENDPOINT)

    @property
    def identity_header(self) -> str | None:
        return self.get(IDENTITY_HEADER)

    @property
    def identity_server_thumbprint(self) -> str | None:
        return self.get(IDENTITY_SERVER_THUMBPRINT)

    @property
    def msi_endpoint(self) -> str | None:
        return self.get(MSI_ENDPOINT)

    @property
    def msi_secret(self) -> str | None:
        return self.get(MSI_SECRET)

    @property
    def imds_endpoint(self) -> str | None:
        return self.get(IMDS_ENDPOINT)

    @property
    def pod_identity_authority_host(self) -> str | None:
        return self.get(POD_IDENTITY_AUTHORITY_HOST)

    @property
    def tenant_id(self) -> str | None:
        return self.get(AZURE_TENANT_ID)

    @property
    def client_id(self) -> str | None:
        return self.get(AZURE_CLIENT_ID)

    @property
    def federated_token_file(self) -> str | None:
        return self.get(AZURE_FEDERATED_TOKEN_FILE)

    @property
    def authority_host(self) -> str | None:
        return self.get(AZURE_AUTHORITY_HOST)

    def binding_certificate(self, configured: Path | None = None) -> Path | None:
        """Locate the host binding certificate used by certificate-bound sources."""

        candidates: list[Path] = []
        if configured is not None:
            candidates.append(configured)
        explicit = self.get(MSI_BINDING_CERTIFICATE)
        if explicit:
            candidates.append(Path(explicit))
        candidates.extend(DEFAULT_BINDING_CERTIFICATE_PATHS)
        for candidate in candidates:
            if self.path_exists(candidate):
                return candidate
        return None


__all__ = [
    "EnvironmentProbe",
    "IDENTITY_ENDPOINT",
    "IDENTITY_HEADER",
    "IDENTITY_SERVER_THUMBPRINT",
    "MSI_ENDPOINT",
    "MSI_SECRET",
    "IMDS_ENDPOINT",
    "POD_IDENTITY_AUTHORITY_HOST",
    "AZURE_TENANT_ID",
    "AZURE_CLIENT_ID",
    "AZURE_FEDERATED_TOKEN_FILE",
    "AZURE_AUTHORITY_HOST",
    "MSI_BINDING_CERTIFICATE",
]
