"""HTTP pipeline: transport, policies, retries and response classification."""

from .challenge import (
    AuthChallenge,
    extract_basic_realm,
    extract_claims_challenge,
    parse_challenges,
)
from .classifier import (
    ImdsResponseClassifier,
    ManagedIdentityResponseClassifier,
    ResponseClassifier,
)
from .delay import (
    DelayStrategy,
    ExponentialDelayStrategy,
    FixedDelayStrategy,
    parse_retry_after,
)
from .errors import (
    AuthenticationFailedError,
    CredentialUnavailableError,
    IdentityError,
    IdentityErrorCategory,
    InvalidResponseFormatError,
    RequestFailedError,
    TransportError,
)
from .pipeline import (
    CLIENT_REQUEST_ID,
    RETRY_CONTEXT,
    HttpPipeline,
    HTTPPolicy,
    PipelineRequest,
    PipelineResponse,
    SansIOPolicy,
)
from .policies import (
    AlternateHostPolicy,
    BearerTokenPolicy,
    ClientRequestIdPolicy,
    PipelineTelemetryEvent,
    TelemetryPolicy,
    UserAgentPolicy,
)
from .retry import RetryContext, RetryPolicy, retry_count
from .transport import HttpTransport

__all__ = [
    "AuthChallenge",
    "extract_basic_realm",
    "extract_claims_challenge",
    "parse_challenges",
    "ImdsResponseClassifier",
    "ManagedIdentityResponseClassifier",
    "ResponseClassifier",
    "DelayStrategy",
    "ExponentialDelayStrategy",
    "FixedDelayStrategy",
    "parse_retry_after",
    "AuthenticationFailedError",
    "CredentialUnavailableError",
    "IdentityError",
    "IdentityErrorCategory",
    "InvalidResponseFormatError",
    "RequestFailedError",
    "TransportError",
    "CLIENT_REQUEST_ID",
    "RETRY_CONTEXT",
    "HttpPipeline",
    "HTTPPolicy",
    "PipelineRequest",
    "PipelineResponse",
    "SansIOPolicy",
    "AlternateHostPolicy",
    "BearerTokenPolicy",
    "ClientRequestIdPolicy",
    "PipelineTelemetryEvent",
    "TelemetryPolicy",
    "UserAgentPolicy",
    "RetryContext",
    "RetryPolicy",
    "retry_count",
    "HttpTransport",
]
