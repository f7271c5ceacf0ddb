"""
WebSocket transport adapter.

Wraps a ``websockets`` server connection with the small interface the relay
uses: JSON send, close with code and reason, ping, and an open flag.
"""

import json
from typing import Awaitable

from websockets.asyncio.server import ServerConnection
from websockets.exceptions import ConnectionClosed, WebSocketException
from websockets.protocol import State

from server.errors import TransportError


def format_address(remote_address) -> str:
    """Render a peer address tuple as ``host:port``."""
    if isinstance(remote_address, (tuple, list)) and len(remote_address) >= 2:
        return f"{remote_address[0]}:{remote_address[1]}"
    return str(remote_address) if remote_address else 'unknown'


class WebSocketTransport:
    """Relay-facing view of one WebSocket."""

    def __init__(self, websocket: ServerConnection):
        self.websocket = websocket
        self.remote_address = format_address(websocket.remote_address)

    @property
    def is_open(self) -> bool:
        return self.websocket.state is State.OPEN

    async def send(self, message: dict):
        """Serialize ``message`` as JSON and send it as a text frame."""
        try:
            await self.websocket.send(json.dumps(message, ensure_ascii=False))
        except (ConnectionClosed, WebSocketException, OSError) as e:
            raise TransportError(str(e)) from e

    async def close(self, code: int, reason: str = ''):
        try:
            await self.websocket.close(code, reason)
        except (WebSocketException, OSError) as e:
            raise TransportError(str(e)) from e

    async def ping(self) -> Awaitable[float]:
        """Send a ping. The returned awaitable completes when the pong arrives."""
        try:
            return await self.websocket.ping()
        except (ConnectionClosed, WebSocketException, OSError) as e:
            raise TransportError(str(e)) from e

    def __aiter__(self):
        return self.websocket.__aiter__()
