"""Asyncio token acquisition for managed identities and delegated credentials."""

from __future__ import annotations

from identity_pipeline.auth import (
    AccessToken,
    CredentialPipeline,
    ManagedIdentityCredential,
    OnBehalfOfCredential,
    RefreshTokenCredential,
    TokenCredential,
    TokenRequest,
)
from identity_pipeline.config import Settings, SettingsManager
from identity_pipeline.pipeline import (
    AuthenticationFailedError,
    BearerTokenPolicy,
    CredentialUnavailableError,
    HttpPipeline,
    IdentityError,
    InvalidResponseFormatError,
    RequestFailedError,
    TransportError,
)
from identity_pipeline.utils import (
    CancellationError,
    CancellationTokenSource,
    configure_logging,
)

__version__ = "0.1.0"

__all__ = [
    "AccessToken",
    "AuthenticationFailedError",
    "BearerTokenPolicy",
    "CancellationError",
    "CancellationTokenSource",
    "CredentialPipeline",
    "CredentialUnavailableError",
    "HttpPipeline",
    "IdentityError",
    "InvalidResponseFormatError",
    "ManagedIdentityCredential",
    "OnBehalfOfCredential",
    "RefreshTokenCredential",
    "RequestFailedError",
    "Settings",
    "SettingsManager",
    "TokenCredential",
    "TokenRequest",
    "TransportError",
    "__version__",
    "configure_logging",
]
