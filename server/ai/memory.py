"""
Per-user conversational memory for the virtual participant.

Each user keeps the last few prompt/response pairs, oldest first. Queues
are cached in memory and written through to the store on every change.
"""

import asyncio
import hashlib
from collections import deque
from typing import Deque, Dict, List

from common.constants import AI_MEMORY_SIZE, MEMORY_KEY_PREFIX
from common.protocol_definitions import MemoryPair
from server.errors import PersistenceError
from server.storage.json_store import JsonStore
from server.utils.logger import logger


def memory_key(username: str) -> str:
    """Storage key for a user. The digest keeps distinct names in distinct files."""
    digest = hashlib.sha256(username.casefold().encode('utf-8')).hexdigest()
    return f"{MEMORY_KEY_PREFIX}/{digest}"


class AiMemory:
    """Bounded FIFO of memory pairs per user."""

    def __init__(self, store: JsonStore, max_entries: int = AI_MEMORY_SIZE):
        self.store = store
        self.max_entries = max_entries
        self._queues: Dict[str, Deque[MemoryPair]] = {}
        self.lock = asyncio.Lock()

    def _queue(self, username: str) -> Deque[MemoryPair]:
        key = username.casefold()
        queue = self._queues.get(key)
        if queue is None:
            queue = deque(self._read(username), maxlen=self.max_entries)
            self._queues[key] = queue
        return queue

    def _read(self, username: str) -> List[MemoryPair]:
        try:
            raw = self.store.read_value(memory_key(username), default=[])
        except PersistenceError as e:
            logger.log_error(f"memory load for {username}", e)
            return []
        if not isinstance(raw, list):
            logger.warning(f"Ignoring malformed memory for {username}")
            return []
        pairs = [MemoryPair.from_dict(item) for item in raw]
        return [p for p in pairs if p is not None][-self.max_entries:]

    async def load(self, username: str) -> List[MemoryPair]:
        """Return the user's pairs, oldest first."""
        async with self.lock:
            return list(self._queue(username))

    async def remember(self, username: str, prompt: str, response: str) -> List[MemoryPair]:
        """Append a pair, evicting the oldest beyond the limit."""
        async with self.lock:
            queue = self._queue(username)
            queue.append(MemoryPair(prompt, response))
            pairs = list(queue)
            try:
                self.store.write_value(memory_key(username), [p.to_dict() for p in pairs])
            except PersistenceError as e:
                logger.log_error(f"memory save for {username}", e)
            return pairs
