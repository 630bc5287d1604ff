"""Credentials, token sources and token lifecycle."""

from .app_cache import SingleFlightCache
from .credential_pipeline import (
    CredentialPipeline,
    certificate_thumbprint,
    get_default_pipeline,
    reset_default_pipeline,
    set_default_pipeline,
)
from .credentials import ManagedIdentityCredential, TokenCredential
from .diagnostics import DiagnosticScope
from .lifecycle import TokenResponse, compute_refresh_on, parse_token
from .on_behalf_of import OnBehalfOfCredential
from .refresh_token import RefreshTokenCredential
from .secret_store import InsecureKeyringError, SecretStore
from .selector import DEFAULT_DESCRIPTORS, SourceDescriptor, SourceSelector
from .sources import ManagedIdentityId, ManagedIdentitySource, SourceKind
from .token_cache import AccessTokenCache
from .token_helper import AccountInfo, decode_jwt_payload, parse_account_info, try_parse_claim
from .types import AccessToken, PopBinding, PropertyBag, TokenRequest

__all__ = [
    "AccessToken",
    "AccessTokenCache",
    "AccountInfo",
    "CredentialPipeline",
    "DEFAULT_DESCRIPTORS",
    "DiagnosticScope",
    "InsecureKeyringError",
    "ManagedIdentityCredential",
    "ManagedIdentityId",
    "ManagedIdentitySource",
    "OnBehalfOfCredential",
    "PopBinding",
    "PropertyBag",
    "RefreshTokenCredential",
    "SecretStore",
    "SingleFlightCache",
    "SourceDescriptor",
    "SourceKind",
    "SourceSelector",
    "TokenCredential",
    "TokenRequest",
    "TokenResponse",
    "certificate_thumbprint",
    "compute_refresh_on",
    "decode_jwt_payload",
    "get_default_pipeline",
    "parse_account_info",
    "parse_token",
    "reset_default_pipeline",
    "set_default_pipeline",
    "try_parse_claim",
]
