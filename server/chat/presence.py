"""
Presence broadcaster.

Computes the online-user snapshot and pushes it to clients.
"""

from typing import List

from common.constants import AI_USERNAME
from common.protocol_definitions import create_user_list_message
from server.chat.delivery import broadcast, send_message
from server.chat.registry import ClientConnection, IdentityRegistry
from server.utils.logger import logger


class PresenceBroadcaster:
    """Pushes the sorted participant list, virtual participant first."""

    def __init__(self, registry: IdentityRegistry):
        self.registry = registry

    async def snapshot(self) -> List[str]:
        usernames = await self.registry.usernames()
        return [AI_USERNAME] + sorted(usernames)

    async def notify_all(self):
        """Send the snapshot to every identified, open connection."""
        users = await self.snapshot()
        logger.debug(f"Broadcasting user list: {users}")
        await broadcast(create_user_list_message(users), await self.registry.identified_connections())

    async def notify_one(self, connection: ClientConnection) -> bool:
        """Send the snapshot to a single connection."""
        users = await self.snapshot()
        return await send_message(connection, create_user_list_message(users))
