from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Sequence, Union

import httpx

from identity_pipeline.utils import CancellationToken

if TYPE_CHECKING:
    from identity_pipeline.pipeline.classifier import ResponseClassifier
    from identity_pipeline.pipeline.transport import HttpTransport


# Well-known keys in ``PipelineRequest.context``.
RETRY_CONTEXT = "retry_context"
CLIENT_REQUEST_ID = "client_request_id"
CLIENT_REQUEST_ID_HEADER_NAME = "client_request_id_header_name"
ALTERNATE_HOST_INDEX = "alternate_host_index"
CHALLENGE_HANDLED = "challenge_handled"
TELEMETRY_START = "telemetry_start"


@dataclass(slots=True)
class PipelineRequest:
    """One logical request travelling through the policy chain.

    ``context`` is the per-request property bag policies use to talk to each
    other (retry counters, request ids, host rotation state).
    """

    http_request: httpx.Request
    context: dict[str, Any] = field(default_factory=dict)
    cancellation_token: CancellationToken | None = None
    classifier: "ResponseClassifier | None" = None


@dataclass(slots=True)
class PipelineResponse:
    http_request: httpx.Request
    http_response: httpx.Response
    context: dict[str, Any]

    @property
    def status_code(self) -> int:
        return self.http_response.status_code

    @property
    def headers(self) -> httpx.Headers:
        return self.http_response.headers


class HTTPPolicy(ABC):
    """A policy that may suspend: it owns the call to ``self.next.send``."""

    next: "HTTPPolicy"

    @abstractmethod
    async def send(self, request: PipelineRequest) -> PipelineResponse: ...


class SansIOPolicy:
    """A purely observational policy run inline on both legs of a send.

    Hooks never suspend; they may mutate the outgoing request or inspect the
    response. Exceptions raised by hooks propagate to the caller.
    """

    def on_request(self, request: PipelineRequest) -> None:
        return None

    def on_response(self, request: PipelineRequest, response: PipelineResponse) -> None:
        return None

    def on_exception(self, request: PipelineRequest, error: BaseException) -> None:
        return None


class _SansIORunner(HTTPPolicy):
    def __init__(self, policy: SansIOPolicy) -> None:
        self.policy = policy

    async def send(self, request: PipelineRequest) -> PipelineResponse:
        self.policy.on_request(request)
        try:
            response = await self.next.send(request)
        except Exception as exc:
            self.policy.on_exception(request, exc)
            raise
        self.policy.on_response(request, response)
        return response


class _TransportRunner(HTTPPolicy):
    def __init__(self, transport: "HttpTransport") -> None:
        self.transport = transport

    async def send(self, request: PipelineRequest) -> PipelineResponse:
        http_response = await self.transport.send(
            request.http_request,
            cancellation_token=request.cancellation_token,
        )
        return PipelineResponse(
            http_request=request.http_request,
            http_response=http_response,
            context=request.context,
        )


PolicyInput = Union[HTTPPolicy, SansIOPolicy]


class HttpPipeline:
    """Immutable ordered chain of policies wrapped around a terminal transport."""

    def __init__(
        self,
        transport: "HttpTransport",
        policies: Sequence[PolicyInput] = (),
    ) -> None:
        self._transport = transport
        self._policies: tuple[PolicyInput, ...] = tuple(policies)

        runners: list[HTTPPolicy] = []
        for policy in self._policies:
            if isinstance(policy, HTTPPolicy):
                runners.append(policy)
            elif isinstance(policy, SansIOPolicy):
                runners.append(_SansIORunner(policy))
            else:
                raise TypeError(f"Unsupported pipeline policy: {policy!r}")
        runners.append(_TransportRunner(transport))
        for current, following in zip(runners, runners[1:]):
            current.next = following
        self._head: HTTPPolicy = runners[0]

    @property
    def policies(self) -> tuple[PolicyInput, ...]:
        return self._policies

    @property
    def transport(self) -> "HttpTransport":
        return self._transport

    async def run(
        self,
        http_request: httpx.Request,
        *,
        context: dict[str, Any] | None = None,
        classifier: "ResponseClassifier | None" = None,
        cancellation_token: CancellationToken | None = None,
    ) -> PipelineResponse:
        if cancellation_token is not None:
            cancellation_token.raise_if_cancelled()
        request = PipelineRequest(
            http_request=http_request,
            context=dict(context or {}),
            cancellation_token=cancellation_token,
            classifier=classifier,
        )
        return await self._head.send(request)

    async def aclose(self) -> None:
        await self._transport.aclose()


__all__ = [
    "HttpPipeline",
    "HTTPPolicy",
    "SansIOPolicy",
    "PipelineRequest",
    "PipelineResponse",
    "PolicyInput",
    "RETRY_CONTEXT",
    "CLIENT_REQUEST_ID",
    "CLIENT_REQUEST_ID_HEADER_NAME",
    "ALTERNATE_HOST_INDEX",
    "CHALLENGE_HANDLED",
    "TELEMETRY_START",
]
