from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from identity_pipeline.auth.token_helper import try_parse_claim
from identity_pipeline.auth.types import AccessToken
from identity_pipeline.pipeline.errors import InvalidResponseFormatError
from identity_pipeline.utils import Clock, system_clock


REFRESH_FLOOR_SECONDS = 2 * 60 * 60
EXPIRY_BUFFER_SECONDS = 5 * 60

# App Service 2017 reports ``expires_on`` as e.g. ``06/20/2019 02:57:58 +00:00``.
_APP_SERVICE_2017_FORMATS = ("%m/%d/%Y %I:%M:%S %p %z", "%m/%d/%Y %H:%M:%S %z")


def _parse_timestamp(value: Any) -> int:
    if isinstance(value, bool):
        raise ValueError("expires_on must be a timestamp")
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if not isinstance(value, str) or not value.strip():
        raise ValueError("expires_on must be a timestamp")

    text = value.strip()
    try:
        return int(text)
    except ValueError:
        pass
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        parsed = None
    if parsed is None:
        for fmt in _APP_SERVICE_2017_FORMATS:
            try:
                parsed = datetime.strptime(text, fmt)
                break
            except ValueError:
                continue
    if parsed is None:
        raise ValueError(f"Unrecognised expires_on value: {text!r}")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return int(parsed.timestamp())


def _parse_seconds(value: Any) -> int:
    if isinstance(value, bool):
        raise ValueError("expected a number of seconds")
    if isinstance(value, (int, float)):
        return int(value)
    if isinstance(value, str):
        return int(value.strip())
    raise ValueError("expected a number of seconds")


class TokenResponse(BaseModel):
    """Successful token endpoint payload.

    Managed identity endpoints report ``expires_on``; AAD style endpoints
    report ``expires_in`` relative to the time of the response.
    """

    model_config = ConfigDict(extra="ignore", frozen=True)

    access_token: str = Field(min_length=1)
    expires_on: int | None = None
    expires_in: int | None = None
    refresh_in: int | None = None
    token_type: str = "Bearer"

    @field_validator("expires_on", mode="before")
    @classmethod
    def _coerce_expires_on(cls, value: Any) -> Any:
        if value is None:
            return None
        return _parse_timestamp(value)

    @field_validator("expires_in", "refresh_in", mode="before")
    @classmethod
    def _coerce_seconds(cls, value: Any) -> Any:
        if value is None:
            return None
        return _parse_seconds(value)

    @field_validator("token_type", mode="before")
    @classmethod
    def _default_token_type(cls, value: Any) -> Any:
        return value or "Bearer"


def compute_refresh_on(
    access_token: str,
    expires_on: int,
    refresh_in: int | None,
    *,
    now: float,
) -> int:
    """Pick the proactive refresh time for a token expiring at ``expires_on``.

    ``iat + refresh_in`` wins when both are known. Otherwise half the remaining
    lifetime with a two hour floor, and when that lands past expiry, five
    minutes before expiry (never before ``now``, never after expiry).
    """

    if refresh_in is not None:
        issued_at = try_parse_claim(access_token, "iat")
        if issued_at is not None and issued_at + refresh_in <= expires_on:
            return issued_at + refresh_in

    candidate = int(now + max((expires_on - now) / 2, REFRESH_FLOOR_SECONDS))
    if candidate < expires_on:
        return candidate
    return min(max(expires_on - EXPIRY_BUFFER_SECONDS, int(now)), expires_on)


def parse_token(
    payload: bytes | str | dict[str, Any],
    *,
    clock: Clock | None = None,
    status_code: int | None = None,
) -> AccessToken:
    """Turn a token endpoint response body into an :class:`AccessToken`.

    Raises :class:`InvalidResponseFormatError` when the body is not JSON, or
    the token or its expiry is missing or unparseable.
    """

    now = (clock or system_clock).now()
    raw_text = payload.decode("utf-8", "replace") if isinstance(payload, bytes) else payload
    raw_text = raw_text if isinstance(raw_text, str) else None
    if isinstance(payload, (bytes, str)):
        try:
            data = json.loads(payload)
        except ValueError as exc:
            raise InvalidResponseFormatError(
                status_code=status_code,
                response_body=raw_text,
                inner_error=exc,
            ) from exc
    else:
        data = payload
    if not isinstance(data, dict):
        raise InvalidResponseFormatError(status_code=status_code, response_body=raw_text)

    try:
        response = TokenResponse.model_validate(data)
    except ValidationError as exc:
        raise InvalidResponseFormatError(
            status_code=status_code,
            inner_error=exc,
        ) from exc

    if response.expires_on is not None:
        expires_on = response.expires_on
    elif response.expires_in is not None:
        expires_on = int(now) + response.expires_in
    else:
        raise InvalidResponseFormatError(status_code=status_code)

    refresh_on = compute_refresh_on(
        response.access_token,
        expires_on,
        response.refresh_in,
        now=now,
    )
    return AccessToken(
        token=response.access_token,
        expires_on=expires_on,
        refresh_on=refresh_on,
        token_type=response.token_type,
    )


__all__ = ["TokenResponse", "compute_refresh_on", "parse_token"]
