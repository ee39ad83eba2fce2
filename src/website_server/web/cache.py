"""In-memory store for full HTTP responses with per-entry expiration."""

import time
from dataclasses import dataclass, field

import structlog

logger = structlog.get_logger()


@dataclass
class CachedResponse:
    """A stored response and its expiry on the monotonic clock."""

    status_code: int
    headers: list[tuple[bytes, bytes]]
    body: bytes
    expires_at: float = field(default=0.0)

    def is_expired(self, now: float | None = None) -> bool:
        """Check if entry has expired."""
        return (now if now is not None else time.monotonic()) >= self.expires_at


class ResponseCache:
    """Response store keyed by request identity.

    Only touched from the event loop, so no locking is needed.
    """

    def __init__(self, ttl: float) -> None:
        """Initialize the cache.

        Args:
            ttl: Seconds a stored response stays valid.
        """
        self._ttl = ttl
        self._entries: dict[str, CachedResponse] = {}

    @property
    def ttl(self) -> float:
        return self._ttl

    def get(self, key: str) -> CachedResponse | None:
        """Return the live entry for ``key``, dropping it if expired."""
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.is_expired():
            del self._entries[key]
            logger.debug("Cache entry expired", key=key)
            return None
        return entry

    def set(self, key: str, status_code: int, headers: list[tuple[bytes, bytes]], body: bytes) -> None:
        """Store a response under ``key`` for the configured TTL."""
        self._purge_expired()
        self._entries[key] = CachedResponse(
            status_code=status_code,
            headers=headers,
            body=body,
            expires_at=time.monotonic() + self._ttl,
        )

    def _purge_expired(self) -> None:
        now = time.monotonic()
        for key in [k for k, entry in self._entries.items() if entry.is_expired(now)]:
            del self._entries[key]

    def __len__(self) -> int:
        return len(self._entries)
