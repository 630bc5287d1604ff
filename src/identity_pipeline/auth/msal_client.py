from __future__ import annotations

from typing import Any, Mapping

from identity_pipeline.auth.lifecycle import parse_token
from identity_pipeline.auth.types import AccessToken
from identity_pipeline.pipeline.errors import (
    AuthenticationFailedError,
    CredentialUnavailableError,
)
from identity_pipeline.utils import Clock, get_logger


logger = get_logger(__name__)

CAE_CAPABILITIES = ["CP1"]

# Errors meaning the stored grant can no longer be redeemed without a user.
INTERACTION_ERRORS = {"invalid_grant", "interaction_required", "consent_required", "login_required"}


def process_result(
    result: Mapping[str, Any] | None,
    *,
    credential: str,
    clock: Clock | None = None,
) -> AccessToken:
    """Convert an MSAL ``acquire_token_*`` result dict into an access token."""

    if not result:
        raise CredentialUnavailableError(
            f"{credential} did not receive a token from MSAL",
            source=credential,
        )
    if "error" in result:
        error_code = str(result.get("error"))
        error_desc = str(result.get("error_description") or error_code)
        if error_code in INTERACTION_ERRORS:
            logger.info("Stored grant requires user interaction", credential=credential, code=error_code)
            raise CredentialUnavailableError(
                f"{credential} requires user interaction: {error_desc}",
                source=credential,
            )
        raise AuthenticationFailedError(
            f"{credential} authentication failed: {error_desc}",
            code=error_code,
            source=credential,
        )
    return parse_token(dict(result), clock=clock)


__all__ = ["CAE_CAPABILITIES", "INTERACTION_ERRORS", "process_result"]
