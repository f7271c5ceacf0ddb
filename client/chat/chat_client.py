"""
Chat client module.

This module handles client-side chat messaging functionality: turning typed
lines into envelopes and rendering inbound envelopes as text.
"""

import json
from typing import Callable, Optional

from websockets.exceptions import ConnectionClosed

from common.constants import MessageTypes
from common.protocol_definitions import (
    create_chat_message, create_command_message, create_set_username_message
)


def build_outbound(line: str) -> Optional[dict]:
    """Turn an input line into an envelope. ``/cmd args`` becomes a command."""
    line = line.strip()
    if not line:
        return None
    if line.startswith('/') and len(line) > 1:
        command, _, args = line[1:].partition(' ')
        return create_command_message(command, args.strip())
    return create_chat_message(line)


def _clock(timestamp: str) -> str:
    # ISO timestamps: keep HH:MM:SS
    return timestamp[11:19] if len(timestamp) >= 19 else ''


def format_envelope(message: dict) -> Optional[str]:
    """Render an inbound envelope for the terminal."""
    msg_type = message.get('type', '')
    stamp = _clock(message.get('timestamp', ''))
    prefix = f"[{stamp}] " if stamp else ''

    if msg_type == MessageTypes.MESSAGE:
        return f"{prefix}{message.get('username', 'unknown')}: {message.get('text', '')}"
    if msg_type == MessageTypes.ACTION:
        return f"{prefix}{message.get('text', '')}"
    if msg_type == MessageTypes.SYSTEM:
        return f"{prefix}*** {message.get('text', '')}"
    if msg_type == MessageTypes.PRIVATE_SYSTEM:
        return f"{prefix}(private) {message.get('text', '')}"
    if msg_type == MessageTypes.USER_LIST:
        return f"Online: {', '.join(message.get('users', []))}"
    if msg_type == MessageTypes.CHAT_HISTORY:
        history = message.get('history', [])
        if not history:
            return "[HISTORY] No previous messages"
        lines = [f"[HISTORY] {len(history)} previous message(s):", "-" * 50]
        for entry in history:
            rendered = format_envelope(entry)
            if rendered:
                lines.append(rendered)
        lines.append("-" * 50)
        return '\n'.join(lines)
    return None


class ChatClient:
    """Client-side chat functionality."""

    def __init__(self, websocket=None, output: Callable[[str], None] = print):
        self.websocket = websocket
        self.output = output

    def set_websocket(self, websocket):
        """Set the connection used for sending messages."""
        self.websocket = websocket

    async def send_message(self, message: dict) -> bool:
        """Send a JSON message to the server."""
        if not self.websocket:
            self.output("[ERROR] Not connected to server")
            return False

        try:
            await self.websocket.send(json.dumps(message))
            return True
        except ConnectionClosed as e:
            self.output(f"[ERROR] Failed to send message: {e}")
            return False

    async def send_login(self, username: str) -> bool:
        """Claim a username."""
        return await self.send_message(create_set_username_message(username))

    async def send_line(self, line: str) -> bool:
        """Send a typed line as chat or command."""
        message = build_outbound(line)
        if message is None:
            return False
        return await self.send_message(message)

    async def handle_message(self, raw):
        """Print an inbound frame."""
        try:
            message = json.loads(raw)
        except json.JSONDecodeError:
            self.output(f"[ERROR] Malformed message from server: {raw!r}")
            return
        if not isinstance(message, dict):
            return
        rendered = format_envelope(message)
        if rendered:
            self.output(rendered)
