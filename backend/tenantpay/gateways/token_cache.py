"""
Access token cache for provider sessions.

Entries are immutable (token, expires_at) pairs replaced as a whole, so a
reader never sees a token paired with another token's expiry. Keys include the
tenant, so a token is never reused across tenants even when gateway clients
are short-lived or pooled.
"""
from dataclasses import dataclass
from typing import Dict, Hashable, Optional


@dataclass(frozen=True)
class CachedToken:
    """Bearer token and the absolute instant (epoch seconds) it expires."""
    token: str
    expires_at: float

    def is_fresh(self, now: float, safety_margin: float) -> bool:
        return now < self.expires_at - safety_margin


class AccessTokenCache:
    """In-process map of cache key -> CachedToken."""

    def __init__(self):
        self._entries: Dict[Hashable, CachedToken] = {}

    def get(self, key: Hashable) -> Optional[CachedToken]:
        return self._entries.get(key)

    def put(self, key: Hashable, token: CachedToken) -> None:
        self._entries[key] = token

    def invalidate(self, key: Hashable) -> None:
        self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()


# Shared by every Vipps client in the process
vipps_token_cache = AccessTokenCache()
