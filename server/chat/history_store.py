"""
Chat history store.

Append-only log of public envelopes. The in-memory sequence is authoritative
for the running session; every append is also written through to the
durable store so a restart replays the same sequence.
"""

import asyncio
import copy
from typing import Any, Dict, List

from common.constants import HISTORY_KEY, MessageTypes
from common.protocol_definitions import create_history_message
from server.chat.delivery import send_message
from server.chat.registry import ClientConnection
from server.errors import PersistenceError
from server.storage.json_store import JsonStore
from server.utils.logger import logger

PERSISTED_TYPES = frozenset({MessageTypes.MESSAGE, MessageTypes.ACTION, MessageTypes.SYSTEM})


class HistoryStore:
    """Ordered, append-only chat history with replay."""

    def __init__(self, store: JsonStore, key: str = HISTORY_KEY):
        self.store = store
        self.key = key
        self._history: List[Dict[str, Any]] = []
        self.lock = asyncio.Lock()

    def load(self) -> int:
        """Rebuild the in-memory sequence from storage. Never raises."""
        try:
            records = self.store.read_records(self.key)
        except PersistenceError as e:
            logger.log_error("history load", e)
            records = []

        self._history = [r for r in records if r.get('type') in PERSISTED_TYPES]
        logger.info(f"Loaded {len(self._history)} history entries")
        return len(self._history)

    async def append(self, envelope: Dict[str, Any]):
        """Record ``envelope`` in arrival order and write it through."""
        entry = copy.deepcopy(envelope)
        async with self.lock:
            self._history.append(entry)
            try:
                self.store.append_record(self.key, entry)
            except PersistenceError as e:
                logger.log_error("history append", e)

    async def entries(self) -> List[Dict[str, Any]]:
        """Copy of the full sequence."""
        async with self.lock:
            return copy.deepcopy(self._history)

    async def replay(self, connection: ClientConnection) -> bool:
        """Send the full history to one newly identified connection."""
        history = await self.entries()
        logger.debug(f"Replaying {len(history)} history entries to {connection.label()}")
        return await send_message(connection, create_history_message(history))

    def __len__(self):
        return len(self._history)
