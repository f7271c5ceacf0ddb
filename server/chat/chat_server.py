"""
Chat server module.

Routes inbound envelopes through the per-connection state machine
(UNIDENTIFIED -> IDENTIFIED -> CLOSED), handles identity claims, chat and
commands, and hands chat lines to the AI turn-taking engine.
"""

import json
from typing import Optional, Union

from common.constants import (
    MessageTypes, Commands, AI_USERNAME, CLOSE_NORMAL, CLOSE_GOING_AWAY, CLOSE_POLICY_VIOLATION
)
from common.protocol_definitions import (
    create_connected_message, create_user_joined_message, create_user_left_message,
    create_message_envelope, create_action_message, create_private_system_message,
    create_error_message
)
from server.chat.delivery import broadcast, send_message
from server.chat.history_store import HistoryStore
from server.chat.presence import PresenceBroadcaster
from server.chat.registry import ClientConnection, ConnectionState, IdentityRegistry
from server.errors import ChatServerError, CommandError, IdentityError, ProtocolError, TransportError
from server.utils.logger import logger

DEFAULT_QUIT_REASON = 'Client quit'
MAX_CLOSE_REASON_BYTES = 123


def close_reason(reason: str) -> str:
    """Clip ``reason`` to what fits in a WebSocket close frame."""
    encoded = reason.encode('utf-8')[:MAX_CLOSE_REASON_BYTES]
    return encoded.decode('utf-8', errors='ignore')


def parse_envelope(raw: Union[str, bytes]) -> dict:
    """Decode one inbound frame. Raises ProtocolError."""
    if isinstance(raw, (bytes, bytearray)):
        try:
            raw = raw.decode('utf-8')
        except UnicodeDecodeError as e:
            raise ProtocolError("Invalid message format.") from e
    try:
        message = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ProtocolError("Invalid message format.") from e

    if not isinstance(message, dict):
        raise ProtocolError("Invalid message format.")
    msg_type = message.get('type')
    if not isinstance(msg_type, str) or not msg_type:
        raise ProtocolError("Message type is missing.")
    return message


class ChatServer:
    """Server-side chat functionality."""

    def __init__(self, registry: IdentityRegistry, history: HistoryStore,
                 presence: PresenceBroadcaster, ai_engine=None):
        self.registry = registry
        self.history = history
        self.presence = presence
        self.ai_engine = ai_engine
        self.command_handlers = {
            Commands.ME: self.handle_me,
            Commands.QUIT: self.handle_quit,
            Commands.WHOIS: self.handle_whois,
        }

    async def send_error(self, connection: ClientConnection, error: ChatServerError):
        await send_message(connection, create_error_message(error.kind, str(error)))

    async def publish(self, envelope: dict, exclude: Optional[ClientConnection] = None):
        """Persist then broadcast a public envelope."""
        await self.history.append(envelope)
        await broadcast(envelope, await self.registry.identified_connections(), exclude=exclude)

    async def handle_raw(self, connection: ClientConnection, raw: Union[str, bytes]):
        """Process one inbound frame from ``connection``."""
        if connection.state is ConnectionState.CLOSED:
            return
        connection.touch()

        try:
            message = parse_envelope(raw)
        except ProtocolError as e:
            logger.warning(f"Malformed message from {connection.label()}: {e}")
            await self.send_error(connection, e)
            return

        await self.handle_message(connection, message)

    async def handle_message(self, connection: ClientConnection, message: dict):
        """Dispatch a decoded envelope according to the connection state."""
        msg_type = message['type']
        logger.debug(f"Received from {connection.label()}: {msg_type}")

        try:
            if not connection.is_identified:
                if msg_type != MessageTypes.SET_USERNAME:
                    raise ProtocolError("Cannot send message, not fully connected.")
                await self.handle_set_username(connection, message)
            elif msg_type == MessageTypes.MESSAGE:
                await self.handle_chat(connection, message)
            elif msg_type == MessageTypes.COMMAND:
                await self.handle_command(connection, message)
            elif msg_type == MessageTypes.SET_USERNAME:
                raise ProtocolError(f"Already identified as {connection.username}.")
            else:
                raise ProtocolError("Unknown message type.")
        except (ProtocolError, CommandError) as e:
            logger.warning(f"Rejected {msg_type} from {connection.label()}: {e}")
            await self.send_error(connection, e)

    async def handle_set_username(self, connection: ClientConnection, data: dict):
        """Process an identity claim."""
        proposed = data.get('username')
        try:
            identity = await self.registry.claim(connection, proposed)
        except IdentityError as e:
            logger.log_rejected_claim(str(proposed), connection.uid, e.kind)
            await self.send_error(connection, e)
            await self.close_connection(connection, CLOSE_POLICY_VIOLATION, str(e))
            await self.disconnect_client(connection)
            return

        username = identity.username
        logger.log_login(username, connection.uid)

        # Nothing may be awaited between the claim and the replay send, so the
        # replay is the first envelope this connection receives.
        await self.history.replay(connection)
        await send_message(connection, create_connected_message(username))
        await self.presence.notify_one(connection)
        await self.publish(create_user_joined_message(username), exclude=connection)
        await self.presence.notify_all()

    async def handle_chat(self, connection: ClientConnection, data: dict):
        """Process chat message and broadcast to all."""
        text = data.get('text')
        if not isinstance(text, str):
            raise ProtocolError("Message text must be a string.")
        text = text.strip()
        if not text:
            logger.debug(f"Dropping empty message from {connection.label()}")
            return

        identity = await self.registry.identity_of(connection)
        if identity is None:
            return
        username = identity.username
        logger.log_chat(username, connection.uid, text)
        await self.publish(create_message_envelope(username, text))

        if self.ai_engine is not None:
            await self.run_ai_turn(username, text)

    async def run_ai_turn(self, username: str, text: str):
        """Let the AI engine answer ``text``; the sender may be gone by then."""
        reply = await self.ai_engine.handle_message(username, text)
        if reply is not None:
            await self.publish(reply)

    async def handle_command(self, connection: ClientConnection, data: dict):
        """Dispatch a slash command."""
        command = data.get('command')
        args = data.get('args', '')
        if args is None:
            args = ''
        if not isinstance(command, str) or not isinstance(args, str):
            raise ProtocolError("Command and args must be strings.")

        name = command.strip().lstrip('/').lower()
        handler = self.command_handlers.get(name)
        if handler is None:
            raise CommandError(f"Unknown command: /{command.strip().lstrip('/')}")
        await handler(connection, args.strip())

    async def handle_me(self, connection: ClientConnection, args: str):
        """/me <text>: broadcast an action."""
        if not args:
            raise CommandError("Usage: /me <action>")
        identity = await self.registry.identity_of(connection)
        if identity is None:
            return
        logger.log_action(identity.username, connection.uid, args)
        await self.publish(create_action_message(identity.username, args))

    async def handle_quit(self, connection: ClientConnection, args: str):
        """/quit [reason]: leave and close normally."""
        reason = args or DEFAULT_QUIT_REASON
        logger.info(f"{connection.username} quit: {reason}")
        await self.disconnect_client(connection, reason=reason)
        await self.close_connection(connection, CLOSE_NORMAL, reason)

    async def handle_whois(self, connection: ClientConnection, args: str):
        """/whois <name>: privately resolve a participant."""
        if not args:
            raise CommandError("Usage: /whois <username>")

        if args.casefold() == AI_USERNAME.casefold():
            text = f"{AI_USERNAME} is the chat's virtual participant."
        else:
            target = await self.registry.get_by_username(args)
            if target is None:
                text = f"User {args} is not connected."
            else:
                text = f"{target.username} is connected from {target.remote_address}."
        await send_message(connection, create_private_system_message(text))

    async def close_connection(self, connection: ClientConnection, code: int, reason: str = ''):
        try:
            await connection.transport.close(code, close_reason(reason))
        except TransportError as e:
            logger.error(f"Failed to close {connection.label()}: {e}")

    async def disconnect_client(self, connection: ClientConnection, reason: Optional[str] = None):
        """Release the identity and notify others. Safe to call more than once."""
        identity = await self.registry.release(connection)
        if identity is None:
            return

        logger.log_disconnect(identity.username, connection.uid)
        await self.publish(create_user_left_message(identity.username, reason))
        await self.presence.notify_all()

    async def evict(self, connection: ClientConnection, reason: str):
        """Drop an unresponsive or idle connection."""
        logger.log_eviction(connection.username, connection.uid, reason)
        await self.disconnect_client(connection, reason=reason)
        await self.close_connection(connection, CLOSE_GOING_AWAY, reason)
