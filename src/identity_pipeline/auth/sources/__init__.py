"""Managed identity token sources, one per hosting environment."""

from .app_service import AppService2017Source, AppService2019Source, AppServiceSource
from .azure_arc import AzureArcSource
from .base import ManagedIdentityId, ManagedIdentitySource, SourceKind, scopes_to_resource
from .cloud_shell import CloudShellSource
from .imds import ImdsSource
from .service_fabric import ServiceFabricSource
from .slc import SlcSource
from .token_exchange import TokenExchangeSource

__all__ = [
    "AppService2017Source",
    "AppService2019Source",
    "AppServiceSource",
    "AzureArcSource",
    "CloudShellSource",
    "ImdsSource",
    "ManagedIdentityId",
    "ManagedIdentitySource",
    "ServiceFabricSource",
    "SlcSource",
    "SourceKind",
    "TokenExchangeSource",
    "scopes_to_resource",
]
