from typing import Awaitable, Callable, Dict, Generic, Hashable, Optional, TypeVar
import logging

logger = logging.getLogger(__name__)

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


class WriteOnceCache(Generic[K, V]):
    """Process-lifetime key/value store where every key is written at most once.

    There is no eviction: keys are market identifiers, a small static set.
    Two coroutines racing on the first load of a key both read the same
    immutable on-chain configuration, so whichever stores first wins and the
    other result is dropped.
    """

    def __init__(self):
        self._entries: Dict[K, V] = {}

    def get(self, key: K) -> Optional[V]:
        return self._entries.get(key)

    def set_if_absent(self, key: K, value: V) -> V:
        """Store value unless the key already exists; return the stored value"""
        return self._entries.setdefault(key, value)

    async def get_or_load(self, key: K, loader: Callable[[], Awaitable[V]]) -> V:
        cached = self._entries.get(key)
        if cached is not None:
            return cached

        logger.debug(f"Cache miss for {key}, loading")
        value = await loader()
        return self.set_if_absent(key, value)

    def __contains__(self, key: K) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)
