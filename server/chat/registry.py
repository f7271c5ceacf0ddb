"""
Identity registry.

Owns every connection record and binds at most one identity to each. All
mutations go through the registry lock, so presence snapshots and lookups
never observe a half-applied claim or release.
"""

import asyncio
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from common.constants import AI_USERNAME
from common.protocol_definitions import Identity
from server.errors import InvalidNameError, NameTakenError, NameReservedError


class ConnectionState(Enum):
    UNIDENTIFIED = 'unidentified'
    IDENTIFIED = 'identified'
    CLOSED = 'closed'


@dataclass(eq=False)
class ClientConnection:
    """Per-socket record. Identity is set by ``IdentityRegistry.claim``."""
    uid: int
    transport: Any
    remote_address: str
    state: ConnectionState = ConnectionState.UNIDENTIFIED
    identity: Optional[Identity] = None
    alive: bool = True
    last_activity: float = field(default_factory=time.monotonic)

    @property
    def username(self) -> Optional[str]:
        return self.identity.username if self.identity else None

    @property
    def is_identified(self) -> bool:
        return self.state is ConnectionState.IDENTIFIED

    @property
    def is_open(self) -> bool:
        return self.state is not ConnectionState.CLOSED and self.transport.is_open

    def touch(self):
        """Record inbound activity."""
        self.last_activity = time.monotonic()

    def label(self) -> str:
        return self.username or f'uid={self.uid}'


def normalize_username(name: str) -> str:
    return name.casefold()


class IdentityRegistry:
    """Connection records and the case-insensitive username index."""

    def __init__(self):
        self._connections: Dict[int, ClientConnection] = {}  # uid -> record
        self._by_name: Dict[str, ClientConnection] = {}  # casefolded username -> record
        self._next_uid = 1
        self.lock = asyncio.Lock()

    async def register(self, transport, remote_address: str) -> ClientConnection:
        """Create the record for a newly opened socket."""
        async with self.lock:
            uid = self._next_uid
            self._next_uid += 1
            connection = ClientConnection(uid=uid, transport=transport, remote_address=remote_address)
            self._connections[uid] = connection
            return connection

    async def claim(self, connection: ClientConnection, proposed_name) -> Identity:
        """
        Bind ``proposed_name`` to ``connection``.

        Raises InvalidNameError, NameReservedError or NameTakenError.
        """
        if not isinstance(proposed_name, str) or not proposed_name.strip():
            raise InvalidNameError("Invalid username provided.")
        username = proposed_name.strip()
        key = normalize_username(username)

        if key == normalize_username(AI_USERNAME):
            raise NameReservedError(f'Username "{username}" is reserved.')

        async with self.lock:
            if connection.state is ConnectionState.CLOSED or connection.uid not in self._connections:
                raise InvalidNameError("Connection is closed.")
            if connection.identity is not None:
                raise InvalidNameError(f"Already identified as {connection.username}.")
            if key in self._by_name:
                raise NameTakenError(f'Username "{username}" is already taken.')

            identity = Identity(username=username, remote_address=connection.remote_address)
            connection.identity = identity
            connection.state = ConnectionState.IDENTIFIED
            self._by_name[key] = connection
            return identity

    async def release(self, connection: ClientConnection) -> Optional[Identity]:
        """
        Forget ``connection``. Idempotent.

        Returns the released identity the first time an identified connection
        is released, otherwise None.
        """
        async with self.lock:
            if connection.state is ConnectionState.CLOSED:
                return None
            connection.state = ConnectionState.CLOSED
            self._connections.pop(connection.uid, None)

            identity = connection.identity
            if identity is None:
                return None
            key = normalize_username(identity.username)
            if self._by_name.get(key) is connection:
                del self._by_name[key]
            return identity

    async def get_by_username(self, name: str) -> Optional[ClientConnection]:
        """Case-insensitive lookup of an identified connection."""
        if not isinstance(name, str):
            return None
        async with self.lock:
            return self._by_name.get(normalize_username(name.strip()))

    async def identity_of(self, connection: ClientConnection) -> Optional[Identity]:
        async with self.lock:
            if connection.state is ConnectionState.CLOSED:
                return None
            return connection.identity

    async def identified_connections(self) -> List[ClientConnection]:
        async with self.lock:
            return list(self._by_name.values())

    async def connections(self) -> List[ClientConnection]:
        async with self.lock:
            return list(self._connections.values())

    async def usernames(self) -> List[str]:
        async with self.lock:
            return [c.username for c in self._by_name.values()]

    def __len__(self):
        return len(self._connections)
