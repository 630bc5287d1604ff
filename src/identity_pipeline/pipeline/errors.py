from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class IdentityErrorCategory(str, Enum):
    UNAVAILABLE = "unavailable"
    TRANSPORT = "transport"
    REQUEST_FAILED = "request_failed"
    INVALID_RESPONSE = "invalid_response"
    AUTHENTICATION = "authentication"
    UNKNOWN = "unknown"


@dataclass(slots=True, eq=False)
class IdentityError(Exception):
    message: str
    category: IdentityErrorCategory = IdentityErrorCategory.UNKNOWN
    status_code: int | None = None
    code: str | None = None
    retry_after: str | None = None
    source: str | None = None
    retries: int | None = None
    response_body: str | None = None
    inner_error: BaseException | None = None

    def __str__(self) -> str:  # pragma: no cover - trivial
        return self.message

    def with_context(
        self,
        *,
        source: str | None = None,
        retries: int | None = None,
    ) -> "IdentityError":
        """Attach the attempting source and retry count when not yet recorded."""

        if source is not None and self.source is None:
            self.source = source
        if retries is not None and self.retries is None:
            self.retries = retries
        return self

    def describe(self) -> str:
        parts = [self.message]
        if self.source:
            parts.append(f"source={self.source}")
        if self.status_code is not None:
            parts.append(f"status={self.status_code}")
        if self.code:
            parts.append(f"code={self.code}")
        if self.retries:
            parts.append(f"retries={self.retries}")
        return " | ".join(parts)

    @property
    def recovery_suggestion(self) -> str | None:
        if self.category is IdentityErrorCategory.UNAVAILABLE:
            return "Verify the host exposes a managed identity endpoint or configure another credential."
        if self.category is IdentityErrorCategory.TRANSPORT:
            return "Check network connectivity to the identity endpoint and try again."
        if self.category is IdentityErrorCategory.INVALID_RESPONSE:
            return "The identity endpoint returned an unexpected payload; retrying will not help."
        if self.category is IdentityErrorCategory.AUTHENTICATION:
            return "Verify the identity is assigned and has access to the requested resource."
        if self.category is IdentityErrorCategory.REQUEST_FAILED:
            if self.retry_after:
                return f"The identity endpoint asked callers to wait {self.retry_after} seconds."
            return "The identity endpoint rejected the request."
        return None

    @property
    def is_retriable(self) -> bool:
        if self.category is IdentityErrorCategory.TRANSPORT:
            return True
        if self.category is IdentityErrorCategory.REQUEST_FAILED and self.status_code:
            return self.status_code == 429 or 500 <= self.status_code <= 599
        return False


class CredentialUnavailableError(IdentityError):
    """No eligible source, or the source's environment is missing. Never retried."""

    def __init__(
        self,
        message: str = "Credential unavailable",
        *,
        source: str | None = None,
        inner_error: BaseException | None = None,
    ) -> None:
        super().__init__(
            message=message,
            category=IdentityErrorCategory.UNAVAILABLE,
            source=source,
            inner_error=inner_error,
        )


class TransportError(IdentityError):
    """Network-level failure (timeout, reset, DNS) before any response arrived."""

    def __init__(
        self,
        message: str = "Network error contacting the identity endpoint",
        *,
        inner_error: BaseException | None = None,
        retries: int | None = None,
    ) -> None:
        super().__init__(
            message=message,
            category=IdentityErrorCategory.TRANSPORT,
            inner_error=inner_error,
            retries=retries,
        )


class RequestFailedError(IdentityError):
    def __init__(
        self,
        message: str = "Request failed",
        *,
        status_code: int | None = None,
        code: str | None = None,
        retry_after: str | None = None,
        response_body: str | None = None,
        source: str | None = None,
        inner_error: BaseException | None = None,
        category: IdentityErrorCategory = IdentityErrorCategory.REQUEST_FAILED,
    ) -> None:
        super().__init__(
            message=message,
            category=category,
            status_code=status_code,
            code=code,
            retry_after=retry_after,
            response_body=response_body,
            source=source,
            inner_error=inner_error,
        )


class AuthenticationFailedError(RequestFailedError):
    """The identity endpoint answered with a well-formed error payload."""

    def __init__(
        self,
        message: str = "Authentication failed",
        *,
        status_code: int | None = None,
        code: str | None = None,
        response_body: str | None = None,
        source: str | None = None,
        inner_error: BaseException | None = None,
    ) -> None:
        super().__init__(
            message=message,
            status_code=status_code,
            code=code,
            response_body=response_body,
            source=source,
            inner_error=inner_error,
            category=IdentityErrorCategory.AUTHENTICATION,
        )


class InvalidResponseFormatError(IdentityError):
    def __init__(
        self,
        message: str = "Invalid response, the authentication response was not in the expected format.",
        *,
        status_code: int | None = None,
        response_body: str | None = None,
        inner_error: BaseException | None = None,
    ) -> None:
        super().__init__(
            message=message,
            category=IdentityErrorCategory.INVALID_RESPONSE,
            status_code=status_code,
            response_body=response_body,
            inner_error=inner_error,
        )


__all__ = [
    "IdentityError",
    "IdentityErrorCategory",
    "CredentialUnavailableError",
    "TransportError",
    "RequestFailedError",
    "AuthenticationFailedError",
    "InvalidResponseFormatError",
]
