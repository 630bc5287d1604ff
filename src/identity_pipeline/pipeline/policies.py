from __future__ import annotations

import asyncio
import time
import uuid
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable, Protocol, Sequence

from identity_pipeline.pipeline.challenge import extract_claims_challenge
from identity_pipeline.pipeline.errors import IdentityErrorCategory
from identity_pipeline.pipeline.pipeline import (
    ALTERNATE_HOST_INDEX,
    CHALLENGE_HANDLED,
    CLIENT_REQUEST_ID,
    CLIENT_REQUEST_ID_HEADER_NAME,
    TELEMETRY_START,
    HTTPPolicy,
    PipelineRequest,
    PipelineResponse,
    SansIOPolicy,
)
from identity_pipeline.pipeline.retry import retry_count
from identity_pipeline.utils import CancellationToken, Clock, get_logger, sanitize_url, system_clock

if TYPE_CHECKING:
    from identity_pipeline.auth.types import AccessToken


logger = get_logger(__name__)

CLIENT_REQUEST_ID_HEADER = "x-ms-client-request-id"


class ClientRequestIdPolicy(SansIOPolicy):
    """Stamps every request with a client request id.

    An id already present on the request (header or context) wins; the header
    name itself can be overridden per request through the context.
    """

    def __init__(self, header_name: str = CLIENT_REQUEST_ID_HEADER) -> None:
        self._header_name = header_name

    def on_request(self, request: PipelineRequest) -> None:
        header_name = request.context.get(CLIENT_REQUEST_ID_HEADER_NAME, self._header_name)
        if not isinstance(header_name, str):
            raise ValueError(
                f"{CLIENT_REQUEST_ID_HEADER_NAME} must be a string but was {type(header_name)!r}"
            )
        headers = request.http_request.headers
        existing = headers.get(header_name)
        if existing:
            request.context[CLIENT_REQUEST_ID] = existing
            return
        configured = request.context.get(CLIENT_REQUEST_ID)
        if configured is not None and not isinstance(configured, str):
            raise ValueError(
                f"{CLIENT_REQUEST_ID} must be a string but was {type(configured)!r}"
            )
        value = configured or str(uuid.uuid4())
        request.context[CLIENT_REQUEST_ID] = value
        headers[header_name] = value


class UserAgentPolicy(SansIOPolicy):
    def __init__(self, user_agent: str) -> None:
        self._user_agent = user_agent

    def on_request(self, request: PipelineRequest) -> None:
        request.http_request.headers.setdefault("User-Agent", self._user_agent)


@dataclass(slots=True)
class PipelineTelemetryEvent:
    method: str
    url: str
    status_code: int | None
    duration_ms: float
    retries: int
    category: IdentityErrorCategory | None
    success: bool


class TelemetryPolicy(SansIOPolicy):
    """Publishes one event per network attempt."""

    def __init__(
        self,
        callback: Callable[[PipelineTelemetryEvent], None] | None = None,
        *,
        include_query: bool = False,
    ) -> None:
        self._callback = callback or self._default_callback
        self._include_query = include_query

    def on_request(self, request: PipelineRequest) -> None:
        request.context[TELEMETRY_START] = time.perf_counter()

    def on_response(self, request: PipelineRequest, response: PipelineResponse) -> None:
        status = response.status_code
        self._publish(
            request,
            status_code=status,
            success=status < 400,
            category=None if status < 400 else IdentityErrorCategory.REQUEST_FAILED,
        )

    def on_exception(self, request: PipelineRequest, error: BaseException) -> None:
        self._publish(
            request,
            status_code=None,
            success=False,
            category=IdentityErrorCategory.TRANSPORT,
        )

    def _publish(
        self,
        request: PipelineRequest,
        *,
        status_code: int | None,
        success: bool,
        category: IdentityErrorCategory | None,
    ) -> None:
        started = request.context.get(TELEMETRY_START, time.perf_counter())
        event = PipelineTelemetryEvent(
            method=request.http_request.method,
            url=sanitize_url(str(request.http_request.url), include_query=self._include_query),
            status_code=status_code,
            duration_ms=(time.perf_counter() - started) * 1000,
            retries=retry_count(request.context),
            category=category,
            success=success,
        )
        try:
            self._callback(event)
        except Exception:  # pragma: no cover - telemetry shouldn't break requests
            logger.warning("Telemetry callback raised an exception", exc_info=True)

    @staticmethod
    def _default_callback(event: PipelineTelemetryEvent) -> None:
        logger.debug(
            "HTTP request",
            method=event.method,
            url=event.url,
            status_code=event.status_code,
            duration_ms=round(event.duration_ms, 2),
            retries=event.retries,
            success=event.success,
            category=event.category.value if event.category else None,
        )


class AlternateHostPolicy(SansIOPolicy):
    """Rotates retries of a request across secondary hosts.

    The first attempt goes to the original host; each retry moves to the next
    alternate for the request's kind (read or write), cycling when retries
    outnumber hosts. Place it after the retry policy so it sees every attempt.
    """

    def __init__(
        self,
        read_hosts: Sequence[str] = (),
        write_hosts: Sequence[str] = (),
    ) -> None:
        self._read_hosts = tuple(read_hosts)
        self._write_hosts = tuple(write_hosts)

    def on_request(self, request: PipelineRequest) -> None:
        http_request = request.http_request
        is_write = http_request.method.upper() not in {"GET", "HEAD"}
        hosts = self._write_hosts if is_write else self._read_hosts
        if not hosts:
            return
        index = request.context.get(ALTERNATE_HOST_INDEX)
        if index is None:
            request.context[ALTERNATE_HOST_INDEX] = 0
            return
        request.context[ALTERNATE_HOST_INDEX] = index + 1
        host = hosts[index % len(hosts)]
        http_request.url = http_request.url.copy_with(host=host)
        http_request.headers["Host"] = http_request.url.netloc.decode("ascii")


class SupportsGetToken(Protocol):
    async def get_token(
        self,
        *scopes: str,
        claims: str | None = None,
        tenant_id: str | None = None,
        enable_cae: bool = False,
        parent_request_id: str | None = None,
        cancellation_token: CancellationToken | None = None,
    ) -> "AccessToken": ...


class BearerTokenPolicy(HTTPPolicy):
    """Authorizes outgoing requests with a bearer token from ``credential``.

    The token is reused until its refresh-on time. A 401 carrying an
    ``insufficient_claims`` challenge triggers exactly one re-request of a
    token with those claims and one re-send; any further 401 is returned.
    """

    def __init__(
        self,
        credential: SupportsGetToken,
        *scopes: str,
        enable_cae: bool = False,
        clock: Clock | None = None,
    ) -> None:
        if not scopes:
            raise ValueError("BearerTokenPolicy requires at least one scope")
        self._credential = credential
        self._scopes = scopes
        self._enable_cae = enable_cae
        self._clock = clock or system_clock
        self._token: "AccessToken | None" = None
        self._lock = asyncio.Lock()

    async def _current_token(
        self,
        request: PipelineRequest,
        *,
        claims: str | None = None,
    ) -> "AccessToken":
        token = self._token
        if claims is None and token is not None and not token.needs_refresh(self._clock.now()):
            return token
        async with self._lock:
            token = self._token
            if claims is not None or token is None or token.needs_refresh(self._clock.now()):
                token = await self._credential.get_token(
                    *self._scopes,
                    claims=claims,
                    enable_cae=self._enable_cae,
                    parent_request_id=request.context.get(CLIENT_REQUEST_ID),
                    cancellation_token=request.cancellation_token,
                )
                self._token = token
            return token

    async def _authorize(self, request: PipelineRequest, *, claims: str | None = None) -> None:
        token = await self._current_token(request, claims=claims)
        request.http_request.headers["Authorization"] = f"{token.token_type} {token.token}"

    async def send(self, request: PipelineRequest) -> PipelineResponse:
        if request.http_request.url.scheme != "https":
            raise ValueError(
                "Bearer token authentication is not permitted for non-TLS protected (non-https) URLs."
            )
        await self._authorize(request)
        response = await self.next.send(request)
        if response.status_code != 401 or request.context.get(CHALLENGE_HANDLED):
            return response

        claims = extract_claims_challenge(response.headers)
        if claims is None:
            return response

        request.context[CHALLENGE_HANDLED] = True
        logger.info(
            "Claims challenge received; requesting a new token",
            url=sanitize_url(str(request.http_request.url)),
        )
        await self._authorize(request, claims=claims)
        return await self.next.send(request)


__all__ = [
    "AlternateHostPolicy",
    "BearerTokenPolicy",
    "ClientRequestIdPolicy",
    "PipelineTelemetryEvent",
    "SupportsGetToken",
    "TelemetryPolicy",
    "UserAgentPolicy",
    "CLIENT_REQUEST_ID_HEADER",
]
