from __future__ import annotations

import hashlib
import re
import ssl
import threading
from pathlib import Path
from typing import Any

import httpx

from identity_pipeline.config.settings import Settings
from identity_pipeline.pipeline.classifier import ResponseClassifier
from identity_pipeline.pipeline.pipeline import HttpPipeline, PipelineResponse
from identity_pipeline.pipeline.policies import (
    ClientRequestIdPolicy,
    TelemetryPolicy,
    UserAgentPolicy,
)
from identity_pipeline.pipeline.retry import RetryPolicy, Sleeper
from identity_pipeline.pipeline.transport import HttpTransport, normalize_thumbprint
from identity_pipeline.utils import CancellationToken, get_logger


logger = get_logger(__name__)

_PEM_CERTIFICATE = re.compile(
    r"-----BEGIN CERTIFICATE-----.+?-----END CERTIFICATE-----",
    re.DOTALL,
)


def certificate_thumbprint(certificate: Path) -> str:
    """SHA-1 thumbprint (upper-case hex) of the first certificate in a PEM file."""

    text = certificate.read_text(encoding="utf-8")
    match = _PEM_CERTIFICATE.search(text)
    if match is None:
        raise ValueError(f"No PEM certificate found in {certificate}")
    der = ssl.PEM_cert_to_DER_cert(match.group(0))
    return hashlib.sha1(der).hexdigest().upper()


class CredentialPipeline:
    """HTTP pipeline shared by every token source built from the same settings.

    Read-only once constructed. Variants for Service Fabric (a pinned
    self-signed server certificate) and certificate-bound sources (mutual
    TLS) are derived on demand and cached on the parent.
    """

    def __init__(
        self,
        http_pipeline: HttpPipeline,
        settings: Settings | None = None,
        *,
        sleep: Sleeper | None = None,
    ) -> None:
        self._http_pipeline = http_pipeline
        self._settings = settings or Settings()
        self._sleep = sleep
        self._derived: dict[str, CredentialPipeline] = {}
        self._derived_lock = threading.Lock()

    @classmethod
    def build(
        cls,
        settings: Settings | None = None,
        *,
        transport: HttpTransport | None = None,
        verify: bool = True,
        sleep: Sleeper | None = None,
    ) -> "CredentialPipeline":
        settings = settings or Settings()
        transport = transport or HttpTransport(options=settings.transport, verify=verify)
        return cls(cls._assemble(settings, transport, sleep), settings, sleep=sleep)

    @staticmethod
    def _assemble(
        settings: Settings,
        transport: HttpTransport,
        sleep: Sleeper | None,
    ) -> HttpPipeline:
        # Token requests are never themselves bearer-authorized.
        policies: list[Any] = [
            ClientRequestIdPolicy(),
            UserAgentPolicy(settings.user_agent),
            RetryPolicy.from_options(settings.retry, sleep=sleep),
            TelemetryPolicy(include_query=settings.support_logging),
        ]
        return HttpPipeline(transport, policies)

    @property
    def http_pipeline(self) -> HttpPipeline:
        return self._http_pipeline

    @property
    def settings(self) -> Settings:
        return self._settings

    async def send(
        self,
        request: httpx.Request,
        *,
        classifier: ResponseClassifier | None = None,
        cancellation_token: CancellationToken | None = None,
        context: dict[str, Any] | None = None,
    ) -> PipelineResponse:
        return await self._http_pipeline.run(
            request,
            context=context,
            classifier=classifier,
            cancellation_token=cancellation_token,
        )

    def _derive(self, key: str, transport: HttpTransport) -> "CredentialPipeline":
        with self._derived_lock:
            existing = self._derived.get(key)
            if existing is None:
                existing = CredentialPipeline(
                    self._assemble(self._settings, transport, self._sleep),
                    self._settings,
                    sleep=self._sleep,
                )
                self._derived[key] = existing
            return existing

    def with_pinned_certificate(self, thumbprint: str) -> "CredentialPipeline":
        """Return the pipeline that trusts only the server certificate with ``thumbprint``."""

        pinned = normalize_thumbprint(thumbprint)
        return self._derive(
            f"pinned:{pinned}",
            HttpTransport.with_pinned_certificate(pinned, options=self._settings.transport),
        )

    def for_certificate(self, certificate: Path, thumbprint: str | None = None) -> "CredentialPipeline":
        """Return the mutual-TLS pipeline presenting ``certificate``.

        Pipelines are cached per certificate thumbprint, so a rotated
        certificate at the same path gets a fresh pipeline.
        """

        thumbprint = thumbprint or certificate_thumbprint(certificate)
        key = f"cert:{thumbprint}"
        with self._derived_lock:
            existing = self._derived.get(key)
        if existing is not None:
            return existing
        logger.debug("Creating certificate-bound pipeline", thumbprint=thumbprint)
        return self._derive(
            key,
            HttpTransport.with_client_certificate(certificate, options=self._settings.transport),
        )

    async def aclose(self) -> None:
        with self._derived_lock:
            derived = list(self._derived.values())
            self._derived.clear()
        for pipeline in derived:
            await pipeline.aclose()
        await self._http_pipeline.aclose()


_default_pipeline: CredentialPipeline | None = None
_default_lock = threading.Lock()


def get_default_pipeline(settings: Settings | None = None) -> CredentialPipeline:
    """Process-wide pipeline, created on first use and reused afterwards.

    ``settings`` only matters for the call that creates it.
    """

    global _default_pipeline
    if _default_pipeline is None:
        with _default_lock:
            if _default_pipeline is None:
                _default_pipeline = CredentialPipeline.build(settings)
    return _default_pipeline


def set_default_pipeline(pipeline: CredentialPipeline | None) -> None:
    global _default_pipeline
    with _default_lock:
        _default_pipeline = pipeline


def reset_default_pipeline() -> None:
    set_default_pipeline(None)


__all__ = [
    "CredentialPipeline",
    "certificate_thumbprint",
    "get_default_pipeline",
    "reset_default_pipeline",
    "set_default_pipeline",
]
