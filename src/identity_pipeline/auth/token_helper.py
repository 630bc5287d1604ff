from __future__ import annotations

import base64
import binascii
import json
from dataclasses import dataclass
from typing import Any


def decode_jwt_payload(token: str) -> dict[str, Any] | None:
    """Return the claims of ``token`` without verifying its signature.

    Anything that is not a three-part JWT with a JSON object payload yields
    ``None``.
    """

    parts = token.split(".")
    if len(parts) != 3 or not parts[1]:
        return None
    padding = "=" * (-len(parts[1]) % 4)
    try:
        payload = base64.urlsafe_b64decode(parts[1] + padding)
        claims = json.loads(payload)
    except (binascii.Error, ValueError):
        return None
    return claims if isinstance(claims, dict) else None


def try_parse_claim(token: str, name: str) -> int | None:
    """Read an integer claim such as ``iat`` from the token payload."""

    claims = decode_jwt_payload(token)
    if claims is None:
        return None
    value = claims.get(name)
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str):
        try:
            return int(value)
        except ValueError:
            return None
    return None


@dataclass(frozen=True, slots=True)
class AccountInfo:
    client_id: str | None
    tenant_id: str | None
    user_principal_name: str | None
    object_id: str | None


def parse_account_info(token: str) -> AccountInfo | None:
    claims = decode_jwt_payload(token)
    if claims is None:
        return None
    return AccountInfo(
        client_id=claims.get("appid") or claims.get("azp"),
        tenant_id=claims.get("tid"),
        user_principal_name=claims.get("upn") or claims.get("preferred_username"),
        object_id=claims.get("oid"),
    )


__all__ = ["AccountInfo", "decode_jwt_payload", "parse_account_info", "try_parse_claim"]
