import asyncio
import time
from collections import OrderedDict
from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable, Dict, List, Optional, Tuple

from .types import ConversationState


class TTLLRUCache:
    """Bounded mapping with idle-time expiry; least recently used keys go first."""

    def __init__(self, ttl_seconds: float, max_items: int, clock: Callable[[], float] = time.time) -> None:
        self.ttl_seconds = ttl_seconds
        self.max_items = max_items
        self._clock = clock
        self._store: "OrderedDict[str, Tuple[float, object]]" = OrderedDict()

    def get(self, key: str) -> Optional[object]:
        item = self._store.get(key)
        if not item:
            return None
        expires_at, value = item
        if expires_at < self._clock():
            self._store.pop(key, None)
            return None
        self._store.move_to_end(key)
        return value

    def set(self, key: str, value: object) -> List[str]:
        """Store value and return the keys evicted to make room."""
        expires_at = self._clock() + self.ttl_seconds
        self._store[key] = (expires_at, value)
        self._store.move_to_end(key)
        evicted = self.purge_expired()
        while len(self._store) > self.max_items:
            old_key, _ = self._store.popitem(last=False)
            evicted.append(old_key)
        return evicted

    def purge_expired(self) -> List[str]:
        now = self._clock()
        expired = [key for key, (expires_at, _) in self._store.items() if expires_at < now]
        for key in expired:
            del self._store[key]
        return expired

    def pop(self, key: str) -> None:
        self._store.pop(key, None)

    def __contains__(self, key: str) -> bool:
        item = self._store.get(key)
        return item is not None and item[0] >= self._clock()

    def __len__(self) -> int:
        return len(self._store)


class ConversationStateStore:
    """Per-conversation state arena with TTL/LRU eviction and per-key locks.

    Callers mutate a conversation only inside ``async with store.locked(cid) as state``;
    two messages for the same conversation are serialized, different conversations
    never contend.
    """

    def __init__(
        self,
        ttl_seconds: float = 3600.0,
        max_conversations: int = 10000,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._clock = clock
        self._states = TTLLRUCache(ttl_seconds, max_conversations, clock=clock)
        self._locks: Dict[str, asyncio.Lock] = {}
        self._users: Dict[str, int] = {}

    @asynccontextmanager
    async def locked(self, conversation_id: str) -> AsyncIterator[ConversationState]:
        lock = self._locks.setdefault(conversation_id, asyncio.Lock())
        # counts holders and waiters; a lock in use is never dropped
        self._users[conversation_id] = self._users.get(conversation_id, 0) + 1
        try:
            async with lock:
                state = self._states.get(conversation_id)
                if state is None:
                    now = self._clock()
                    state = ConversationState(conversation_id=conversation_id, start_time=now)
                state.last_activity = self._clock()
                try:
                    yield state
                finally:
                    for evicted in self._states.set(conversation_id, state):
                        self._drop_lock(evicted)
        finally:
            self._release(conversation_id)

    async def touch(self, conversation_id: str) -> ConversationState:
        async with self.locked(conversation_id) as state:
            return state

    def get(self, conversation_id: str) -> Optional[ConversationState]:
        state = self._states.get(conversation_id)
        return state if isinstance(state, ConversationState) else None

    def _release(self, conversation_id: str) -> None:
        users = self._users.get(conversation_id, 0) - 1
        if users > 0:
            self._users[conversation_id] = users
            return
        self._users.pop(conversation_id, None)
        if conversation_id not in self._states:
            self._locks.pop(conversation_id, None)

    def _drop_lock(self, conversation_id: str) -> None:
        if not self._users.get(conversation_id):
            self._locks.pop(conversation_id, None)

    def __len__(self) -> int:
        return len(self._states)
