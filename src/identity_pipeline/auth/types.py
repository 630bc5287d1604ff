"""Authentication type definitions."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Iterator, Mapping, TypeVar


T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class AccessToken:
    """Represents an OAuth access token.

    Immutable; a refresh produces a new instance instead of mutating this one.
    """

    token: str
    """The token string."""

    expires_on: int
    """The token's expiration time in Unix time."""

    refresh_on: int | None = None
    """When the token should be proactively reacquired, in Unix time."""

    token_type: str = "Bearer"

    binding_thumbprint: str | None = None
    """Thumbprint of the certificate a PoP token is bound to."""

    def __post_init__(self) -> None:
        if self.refresh_on is not None and self.refresh_on > self.expires_on:
            raise ValueError("refresh_on must not be later than expires_on")

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_on

    def needs_refresh(self, now: float) -> bool:
        if self.is_expired(now):
            return True
        refresh_on = self.refresh_on if self.refresh_on is not None else self.expires_on - 300
        return now >= refresh_on

    def __repr__(self) -> str:
        return (
            f"AccessToken(token=***, expires_on={self.expires_on}, "
            f"refresh_on={self.refresh_on}, token_type={self.token_type!r})"
        )


class PropertyBag:
    """Request properties keyed by type.

    Lets callers attach source-specific data (such as the request being bound
    by a PoP token) without widening ``TokenRequest`` itself.
    """

    __slots__ = ("_items",)

    def __init__(self, items: Mapping[type, Any] | None = None) -> None:
        self._items: dict[type, Any] = dict(items or {})

    def add(self, value: object, key: type | None = None) -> None:
        key = key or type(value)
        if key in self._items:
            raise ValueError("A property with the same key already exists.")
        self._items[key] = value

    def get(self, key: type[T]) -> T | None:
        return self._items.get(key)

    def __contains__(self, key: object) -> bool:
        return key in self._items

    def __iter__(self) -> Iterator[type]:
        return iter(self._items)

    def __len__(self) -> int:
        return len(self._items)

    def copy(self) -> "PropertyBag":
        return PropertyBag(self._items)


@dataclass(frozen=True, slots=True)
class PopBinding:
    """HTTP method and URL a proof-of-possession token is requested for."""

    method: str
    url: str


@dataclass(frozen=True, slots=True)
class TokenRequest:
    scopes: tuple[str, ...]
    parent_request_id: str | None = None
    claims: str | None = None
    tenant_id: str | None = None
    enable_cae: bool = False
    enable_pop: bool = False
    nonce: str | None = None
    user_assertion: str | None = None
    properties: PropertyBag = field(default_factory=PropertyBag, compare=False)

    def __post_init__(self) -> None:
        scopes = tuple(scope for scope in self.scopes if scope)
        if not scopes:
            raise ValueError("At least one scope must be specified")
        # Preserve order, drop duplicates.
        object.__setattr__(self, "scopes", tuple(dict.fromkeys(scopes)))

    def with_claims(self, claims: str | None) -> "TokenRequest":
        return replace(self, claims=claims)

    @property
    def cache_key(self) -> tuple[tuple[str, ...], str | None, bool, str | None]:
        return (self.scopes, self.tenant_id, self.enable_cae, self.user_assertion)

    @property
    def bypasses_cache(self) -> bool:
        return bool(self.claims) or self.enable_pop


__all__ = ["AccessToken", "PopBinding", "PropertyBag", "TokenRequest"]
