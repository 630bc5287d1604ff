from __future__ import annotations

import base64
import binascii
import re
from dataclasses import dataclass, field
from typing import Mapping


_CHALLENGE_START = re.compile(r"(?:^|,)\s*([A-Za-z][A-Za-z0-9!#$%&'*+\-.^_`|~]*)\s+(?=[A-Za-z0-9_\-]+\s*=)")
_PARAM = re.compile(r'\s*([A-Za-z0-9_\-]+)\s*=\s*(?:"((?:[^"\\]|\\.)*)"|([^,\s]*))\s*,?')


@dataclass(slots=True)
class AuthChallenge:
    scheme: str
    parameters: dict[str, str] = field(default_factory=dict)

    def get(self, name: str) -> str | None:
        return self.parameters.get(name.lower())


def parse_challenges(header: str | None) -> list[AuthChallenge]:
    """Split a ``WWW-Authenticate`` value into its challenges.

    ``Bearer realm="", error="insufficient_claims", claims="..." , Basic realm="x"``
    yields two challenges with lower-cased parameter names.
    """

    if not header:
        return []
    starts = list(_CHALLENGE_START.finditer(header))
    challenges: list[AuthChallenge] = []
    for index, match in enumerate(starts):
        end = starts[index + 1].start() if index + 1 < len(starts) else len(header)
        body = header[match.end() : end]
        parameters: dict[str, str] = {}
        for param in _PARAM.finditer(body):
            quoted, bare = param.group(2), param.group(3)
            value = quoted.replace('\\"', '"') if quoted is not None else bare
            parameters[param.group(1).lower()] = value or ""
        challenges.append(AuthChallenge(scheme=match.group(1), parameters=parameters))
    return challenges


def _decode_claims(encoded: str) -> str | None:
    padding = "=" * (-len(encoded) % 4)
    try:
        return base64.urlsafe_b64decode(encoded + padding).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError, ValueError):
        return None


def extract_claims_challenge(headers: Mapping[str, str]) -> str | None:
    """Return the decoded claims JSON from an ``insufficient_claims`` challenge."""

    header = headers.get("WWW-Authenticate") or headers.get("www-authenticate")
    for challenge in parse_challenges(header):
        if challenge.scheme.lower() not in {"bearer", "pop"}:
            continue
        if challenge.get("error") != "insufficient_claims":
            continue
        encoded = challenge.get("claims")
        if not encoded:
            continue
        decoded = _decode_claims(encoded)
        if decoded:
            return decoded
    return None


def extract_basic_realm(headers: Mapping[str, str]) -> str | None:
    header = headers.get("WWW-Authenticate") or headers.get("www-authenticate")
    if not header:
        return None
    for challenge in parse_challenges(header):
        if challenge.scheme.lower() == "basic":
            return challenge.get("realm")
    # Azure Arc sends ``Basic realm=<path>`` with an unquoted Windows path.
    prefix = "basic realm="
    if header.lower().startswith(prefix):
        return header[len(prefix) :].strip().strip('"')
    return None


__all__ = [
    "AuthChallenge",
    "parse_challenges",
    "extract_claims_challenge",
    "extract_basic_realm",
]
