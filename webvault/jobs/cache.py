import time
from typing import Callable, Dict, Generic, Optional, Tuple, TypeVar


V = TypeVar("V")


class TTLCache(Generic[V]):
    """In-memory cache whose entries expire a fixed time after being stored.

    Entries leave only by expiry or explicit invalidation; there is no size
    bound. Meant for use from one event loop, so lookups and stores never
    suspend and a check-then-store sequence cannot interleave with another task.
    """

    def __init__(self, ttl_seconds: float, clock: Callable[[], float] = time.monotonic) -> None:
        self.ttl_seconds = ttl_seconds
        self.clock = clock
        self._entries: Dict[str, Tuple[float, V]] = {}

    def get(self, key: str) -> Optional[V]:
        cached = self._entries.get(key)
        if cached is None:
            return None
        stored_at, value = cached
        if stored_at + self.ttl_seconds > self.clock():
            return value
        del self._entries[key]
        return None

    def set(self, key: str, value: V) -> None:
        self._entries[key] = (self.clock(), value)

    def invalidate(self, key: str) -> bool:
        return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        self._entries.clear()

    def purge_expired(self) -> int:
        now = self.clock()
        expired = [key for key, (stored_at, _) in self._entries.items() if stored_at + self.ttl_seconds <= now]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def __len__(self) -> int:
        return len(self._entries)
