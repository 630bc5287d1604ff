from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Optional

from identity_pipeline.auth.types import AccessToken, TokenRequest
from identity_pipeline.pipeline.errors import IdentityError
from identity_pipeline.utils import Clock, get_logger, system_clock


logger = get_logger(__name__)

CacheKey = tuple[tuple[str, ...], Optional[str], bool, Optional[str]]


class _KeyLock:
    __slots__ = ("lock", "users")

    def __init__(self) -> None:
        self.lock = asyncio.Lock()
        self.users = 0


class AccessTokenCache:
    """Keeps issued access tokens until their refresh-on time.

    Tokens are keyed by scopes, tenant, CAE mode and user assertion.
    Requests carrying claims or asking for a PoP token always go to the
    source. When a proactive refresh fails the previous token is served for
    as long as it is valid. Per-key locks live only while a request for the
    key is in flight, and expired tokens are dropped whenever a new one is
    stored.
    """

    def __init__(self, clock: Clock | None = None) -> None:
        self._clock = clock or system_clock
        self._tokens: dict[CacheKey, AccessToken] = {}
        self._locks: dict[CacheKey, _KeyLock] = {}

    async def get_token(
        self,
        request: TokenRequest,
        acquire: Callable[[TokenRequest], Awaitable[AccessToken]],
    ) -> AccessToken:
        if request.bypasses_cache:
            return await acquire(request)

        key = request.cache_key
        cached = self._fresh(key)
        if cached is not None:
            return cached

        entry = self._locks.get(key)
        if entry is None:
            entry = self._locks[key] = _KeyLock()
        entry.users += 1
        try:
            async with entry.lock:
                return await self._refresh(key, request, acquire)
        finally:
            entry.users -= 1
            if entry.users == 0:
                del self._locks[key]

    async def _refresh(
        self,
        key: CacheKey,
        request: TokenRequest,
        acquire: Callable[[TokenRequest], Awaitable[AccessToken]],
    ) -> AccessToken:
        cached = self._fresh(key)
        if cached is not None:
            return cached
        previous = self._tokens.get(key)
        try:
            token = await acquire(request)
        except IdentityError as exc:
            if previous is not None and not previous.is_expired(self._clock.now()):
                logger.warning(
                    "Token refresh failed; using cached token until it expires",
                    scopes=list(request.scopes),
                    expires_on=previous.expires_on,
                    error=str(exc),
                )
                return previous
            raise
        self._prune()
        self._tokens[key] = token
        return token

    def _prune(self) -> None:
        now = self._clock.now()
        expired = [key for key, token in self._tokens.items() if token.is_expired(now)]
        for key in expired:
            del self._tokens[key]

    def _fresh(self, key: CacheKey) -> AccessToken | None:
        cached = self._tokens.get(key)
        if cached is None or cached.needs_refresh(self._clock.now()):
            return None
        return cached

    @property
    def pending_keys(self) -> int:
        return len(self._locks)

    def clear(self) -> None:
        self._tokens.clear()

    def __len__(self) -> int:
        return len(self._tokens)


__all__ = ["AccessTokenCache"]
