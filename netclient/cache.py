"""Process-wide caches shared between the agent's workers."""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Any, Dict, Generic, Hashable, List, Optional, Tuple, TypeVar

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


@dataclass
class EndpointCacheValue:
    """Best local endpoint found for a peer, as (host, port)."""

    endpoint: Optional[Tuple[str, int]] = None


class SyncMap(Generic[K, V]):
    """A dictionary safe to share between threads."""

    def __init__(self) -> None:
        self._data: Dict[K, V] = {}
        self._lock = threading.Lock()

    def load(self, key: K) -> Optional[V]:
        """Return the value stored for key, or None."""
        with self._lock:
            return self._data.get(key)

    def store(self, key: K, value: V) -> None:
        """Set the value for key."""
        with self._lock:
            self._data[key] = value

    def delete(self, key: K) -> None:
        """Remove key; a missing key is ignored."""
        with self._lock:
            self._data.pop(key, None)

    def items(self) -> List[Tuple[K, V]]:
        """Return a snapshot of the stored pairs."""
        with self._lock:
            return list(self._data.items())

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._data

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)


# best found endpoints between peers, by public key
ENDPOINT_CACHE: SyncMap[str, EndpointCacheValue] = SyncMap()
# peers for which endpoint detection is skipped
SKIP_ENDPOINT_CACHE: SyncMap[str, Any] = SyncMap()
# server name -> list of server addresses
SERVER_ADDR_CACHE: SyncMap[str, List[str]] = SyncMap()
# egress routes held locally
EGRESS_ROUTE_CACHE: SyncMap[str, Any] = SyncMap()