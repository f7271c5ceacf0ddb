"""
Outbound delivery.

Single sends and concurrent fan-out. A failed or slow peer never blocks or
aborts delivery to the others.
"""

import asyncio
from typing import Iterable, List, Optional

from server.chat.registry import ClientConnection
from server.errors import TransportError
from server.utils.logger import logger


async def send_message(connection: ClientConnection, message: dict) -> bool:
    """Send a JSON message to a specific client."""
    if not connection.transport.is_open:
        logger.debug(f"Skipping send to closed connection {connection.label()}")
        return False

    try:
        await connection.transport.send(message)
        return True
    except TransportError as e:
        logger.error(f"Failed to send to {connection.label()}: {e}")
        return False


async def broadcast(message: dict, connections: Iterable[ClientConnection],
                    exclude: Optional[ClientConnection] = None) -> List[ClientConnection]:
    """
    Send a JSON message to every connection except ``exclude``.

    Returns the connections whose send failed.
    """
    targets = [c for c in connections if c is not exclude and c.is_open]
    if not targets:
        return []

    results = await asyncio.gather(*(send_message(c, message) for c in targets))
    failed = [c for c, ok in zip(targets, results) if not ok]
    if failed:
        logger.warning(f"Broadcast of type={message.get('type')} failed for "
                       f"{', '.join(c.label() for c in failed)}")
    return failed
