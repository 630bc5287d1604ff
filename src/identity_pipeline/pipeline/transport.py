from __future__ import annotations

import hashlib
import ssl
from pathlib import Path

import httpx

from identity_pipeline.config.settings import TransportOptions
from identity_pipeline.pipeline.errors import AuthenticationFailedError, TransportError
from identity_pipeline.utils import CancellationToken, await_with_cancellation, get_logger


logger = get_logger(__name__)


def normalize_thumbprint(thumbprint: str) -> str:
    return thumbprint.replace(":", "").replace(" ", "").upper()


class CertificateThumbprintMismatch(ssl.SSLCertVerificationError):
    """The server presented a certificate other than the pinned one."""

    def __init__(self, expected: str, actual: str | None) -> None:
        super().__init__(
            1,
            f"server certificate thumbprint {actual or '<none>'} does not match {expected}",
        )
        self.expected = expected
        self.actual = actual


def verify_peer_thumbprint(certificate: bytes | None, expected: str) -> None:
    """Raise :class:`CertificateThumbprintMismatch` unless ``certificate`` hashes to ``expected``."""

    actual = hashlib.sha1(certificate).hexdigest().upper() if certificate else None
    if actual != normalize_thumbprint(expected):
        raise CertificateThumbprintMismatch(normalize_thumbprint(expected), actual)


class PinnedSSLObject(ssl.SSLObject):
    """Checks the peer certificate as soon as the handshake completes.

    Runs before any request bytes are written, so a mismatching server never
    sees the request headers.
    """

    expected_thumbprint = ""

    def do_handshake(self) -> None:
        super().do_handshake()
        verify_peer_thumbprint(self.getpeercert(binary_form=True), self.expected_thumbprint)


def pinned_ssl_context(thumbprint: str) -> ssl.SSLContext:
    """TLS context that trusts exactly one (possibly self-signed) server certificate."""

    context = ssl.create_default_context()
    context.check_hostname = False
    context.verify_mode = ssl.CERT_NONE
    context.sslobject_class = type(
        "PinnedSSLObject",
        (PinnedSSLObject,),
        {"expected_thumbprint": normalize_thumbprint(thumbprint)},
    )
    return context


def _thumbprint_mismatch(error: BaseException) -> CertificateThumbprintMismatch | None:
    seen: set[int] = set()
    current: BaseException | None = error
    while current is not None and id(current) not in seen:
        if isinstance(current, CertificateThumbprintMismatch):
            return current
        seen.add(id(current))
        current = current.__cause__ or current.__context__
    return None


class HttpTransport:
    """Terminal stage of the pipeline: one network send over httpx.

    Safe for concurrent use; the underlying ``httpx.AsyncClient`` is created
    lazily and shared by every request that goes through this transport.
    """

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        *,
        options: TransportOptions | None = None,
        verify: bool = True,
        cert: str | tuple[str, str] | None = None,
        pinned_thumbprint: str | None = None,
    ) -> None:
        self._client = client
        self._owns_client = client is None
        self._options = options or TransportOptions()
        self._verify = verify
        self._cert = cert
        self._pinned_thumbprint = (
            normalize_thumbprint(pinned_thumbprint) if pinned_thumbprint else None
        )

    @classmethod
    def with_client_certificate(
        cls,
        certificate: Path,
        key: Path | None = None,
        *,
        options: TransportOptions | None = None,
    ) -> "HttpTransport":
        cert: str | tuple[str, str] = (
            (str(certificate), str(key)) if key is not None else str(certificate)
        )
        return cls(options=options, cert=cert)

    @classmethod
    def with_pinned_certificate(
        cls,
        thumbprint: str,
        *,
        options: TransportOptions | None = None,
    ) -> "HttpTransport":
        return cls(options=options, pinned_thumbprint=thumbprint)

    @property
    def verify(self) -> bool:
        return self._verify

    @property
    def pinned_thumbprint(self) -> str | None:
        return self._pinned_thumbprint

    def _ssl_verify(self) -> bool | ssl.SSLContext:
        if self._pinned_thumbprint is not None:
            return pinned_ssl_context(self._pinned_thumbprint)
        if self._cert is None:
            return self._verify
        context = ssl.create_default_context()
        if not self._verify:
            context.check_hostname = False
            context.verify_mode = ssl.CERT_NONE
        if isinstance(self._cert, tuple):
            context.load_cert_chain(certfile=self._cert[0], keyfile=self._cert[1])
        else:
            context.load_cert_chain(certfile=self._cert)
        return context

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                verify=self._ssl_verify(),
                timeout=httpx.Timeout(
                    connect=self._options.connect_timeout,
                    read=self._options.read_timeout,
                    write=self._options.write_timeout,
                    pool=self._options.pool_timeout,
                ),
            )
        return self._client

    async def send(
        self,
        request: httpx.Request,
        *,
        cancellation_token: CancellationToken | None = None,
    ) -> httpx.Response:
        client = self._get_client()
        try:
            return await await_with_cancellation(client.send(request), cancellation_token)
        except httpx.TimeoutException as exc:
            logger.debug("Transport timeout", host=request.url.host)
            raise TransportError(
                f"Timed out contacting {request.url.host}",
                inner_error=exc,
            ) from exc
        except httpx.TransportError as exc:
            mismatch = _thumbprint_mismatch(exc)
            if mismatch is not None:
                logger.warning(
                    "Server certificate rejected",
                    host=request.url.host,
                    expected=mismatch.expected,
                    actual=mismatch.actual,
                )
                raise AuthenticationFailedError(
                    f"The certificate presented by {request.url.host} does not match "
                    f"the pinned thumbprint {mismatch.expected}",
                    code="certificate_thumbprint_mismatch",
                    inner_error=mismatch,
                ) from exc
            logger.debug("Transport failure", host=request.url.host, error=str(exc))
            raise TransportError(
                f"Network error contacting {request.url.host}: {exc}",
                inner_error=exc,
            ) from exc

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None


__all__ = [
    "CertificateThumbprintMismatch",
    "HttpTransport",
    "normalize_thumbprint",
    "pinned_ssl_context",
    "verify_peer_thumbprint",
]
