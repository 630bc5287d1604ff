from __future__ import annotations

import httpx
import pytest

from identity_pipeline.pipeline.errors import TransportError
from identity_pipeline.pipeline.pipeline import (
    HttpPipeline,
    HTTPPolicy,
    PipelineRequest,
    PipelineResponse,
    SansIOPolicy,
)
from identity_pipeline.pipeline.retry import RetryPolicy, retry_count
from identity_pipeline.pipeline.transport import HttpTransport
from identity_pipeline.utils import CancellationError, CancellationTokenSource

from tests.stubs import RecordingSleeper


URL = "https://identity.example.com/token"


class _RecordingPolicy(SansIOPolicy):
    def __init__(self, name: str, journal: list[str]) -> None:
        self.name = name
        self.journal = journal
        self.errors: list[BaseException] = []

    def on_request(self, request: PipelineRequest) -> None:
        self.journal.append(f"{self.name}:request")
        request.http_request.headers[f"x-{self.name}"] = "1"

    def on_response(self, request: PipelineRequest, response: PipelineResponse) -> None:
        self.journal.append(f"{self.name}:response")

    def on_exception(self, request: PipelineRequest, error: BaseException) -> None:
        self.errors.append(error)


class _StampPolicy(HTTPPolicy):
    async def send(self, request: PipelineRequest) -> PipelineResponse:
        request.context["stamped"] = True
        response = await self.next.send(request)
        response.context["seen_status"] = response.status_code
        return response


@pytest.mark.asyncio
async def test_policies_run_in_order_on_both_legs(respx_mock) -> None:
    route = respx_mock.get(URL).mock(return_value=httpx.Response(200))
    journal: list[str] = []
    pipeline = HttpPipeline(
        HttpTransport(),
        [_RecordingPolicy("outer", journal), _StampPolicy(), _RecordingPolicy("inner", journal)],
    )

    response = await pipeline.run(httpx.Request("GET", URL))

    assert response.status_code == 200
    assert journal == ["outer:request", "inner:request", "inner:response", "outer:response"]
    assert response.context["stamped"] is True
    assert response.context["seen_status"] == 200
    sent = route.calls.last.request
    assert sent.headers["x-outer"] == "1"
    assert sent.headers["x-inner"] == "1"
    await pipeline.aclose()


@pytest.mark.asyncio
async def test_context_is_copied_per_run(respx_mock) -> None:
    respx_mock.get(URL).mock(return_value=httpx.Response(200))
    pipeline = HttpPipeline(HttpTransport(), [_StampPolicy()])
    context = {"caller": "value"}

    response = await pipeline.run(httpx.Request("GET", URL), context=context)

    assert response.context["caller"] == "value"
    assert "stamped" not in context


@pytest.mark.asyncio
async def test_exception_hook_sees_transport_failures(respx_mock) -> None:
    respx_mock.get(URL).mock(side_effect=httpx.ConnectError)
    recorder = _RecordingPolicy("observer", [])
    pipeline = HttpPipeline(HttpTransport(), [recorder])

    with pytest.raises(TransportError):
        await pipeline.run(httpx.Request("GET", URL))

    assert len(recorder.errors) == 1
    assert isinstance(recorder.errors[0], TransportError)


@pytest.mark.asyncio
async def test_policies_after_retry_see_every_attempt(respx_mock) -> None:
    respx_mock.get(URL).mock(
        side_effect=[httpx.Response(503), httpx.Response(503), httpx.Response(200)]
    )
    journal: list[str] = []
    pipeline = HttpPipeline(
        HttpTransport(),
        [RetryPolicy(max_retries=3, sleep=RecordingSleeper()), _RecordingPolicy("attempt", journal)],
    )

    response = await pipeline.run(httpx.Request("GET", URL))

    assert response.status_code == 200
    assert journal.count("attempt:request") == 3
    assert retry_count(response.context) == 2


@pytest.mark.asyncio
async def test_cancelled_token_prevents_send(respx_mock) -> None:
    source = CancellationTokenSource()
    source.cancel(reason="shutdown")
    pipeline = HttpPipeline(HttpTransport())

    with pytest.raises(CancellationError):
        await pipeline.run(httpx.Request("GET", URL), cancellation_token=source.token)

    assert respx_mock.calls.call_count == 0


def test_unknown_policy_type_rejected() -> None:
    with pytest.raises(TypeError):
        HttpPipeline(HttpTransport(), [object()])  # type: ignore[list-item]


def test_policies_are_exposed_read_only() -> None:
    policy = _StampPolicy()
    pipeline = HttpPipeline(HttpTransport(), [policy])
    assert pipeline.policies == (policy,)
