#!/usr/bin/env python3
"""
Group Chat Relay Server

Assembles the relay: storage, identity registry, history, presence, the AI
participant, the liveness supervisor, and the WebSocket listener.
"""

import asyncio
from typing import Optional

from websockets.asyncio.server import serve, ServerConnection
from websockets.exceptions import ConnectionClosedError

from server.ai.llm_client import OpenAIChatClient
from server.ai.memory import AiMemory
from server.ai.turn_taking import TurnTakingEngine
from server.chat.chat_server import ChatServer
from server.chat.history_store import HistoryStore
from server.chat.presence import PresenceBroadcaster
from server.chat.registry import IdentityRegistry
from server.liveness.liveness_supervisor import LivenessSupervisor
from server.storage.json_store import JsonStore
from server.transport.websocket_connection import WebSocketTransport
from server.utils.config import ServerConfig
from server.utils.logger import logger


class ChatRelayServer:
    """Main server class that integrates all functionality."""

    def __init__(self, config: Optional[ServerConfig] = None, store: Optional[JsonStore] = None,
                 ai_collaborator=None):
        self.config = config or ServerConfig()
        self.store = store or JsonStore(self.config.data_dir)

        self.registry = IdentityRegistry()
        self.history = HistoryStore(self.store)
        self.presence = PresenceBroadcaster(self.registry)

        # The AI participant needs credentials unless a collaborator is injected
        self.ai_engine = None
        if ai_collaborator is None and self.config.ai_enabled:
            ai_collaborator = OpenAIChatClient(self.config)
        if ai_collaborator is not None:
            self.ai_engine = TurnTakingEngine(ai_collaborator, AiMemory(self.store))
            logger.info(f"AI participant enabled: {self.config.get_ai_settings()}")
        else:
            logger.warning("AI participant disabled: OPENAI_API_KEY is not set")

        self.chat_server = ChatServer(self.registry, self.history, self.presence, self.ai_engine)
        self.supervisor = LivenessSupervisor(
            self.registry,
            self.chat_server.evict,
            ping_interval=self.config.ping_interval,
            idle_timeout=self.config.idle_timeout,
        )

    async def handle_client(self, websocket: ServerConnection):
        """Handle individual client connection."""
        transport = WebSocketTransport(websocket)
        connection = await self.registry.register(transport, transport.remote_address)
        logger.log_connection(connection.remote_address, connection.uid)

        try:
            async for raw in websocket:
                try:
                    await self.chat_server.handle_raw(connection, raw)
                except Exception as e:
                    logger.error(f"Error processing message from {connection.label()}: {e}")
        except ConnectionClosedError as e:
            logger.info(f"Connection {connection.label()} closed abnormally: {e}")
        except asyncio.CancelledError:
            logger.info(f"Connection cancelled for {connection.label()}")
            raise
        finally:
            await self.chat_server.disconnect_client(connection)

    async def start(self):
        """Start the server."""
        self.history.load()
        logger.info(f"Starting relay: {self.config.get_connection_info()}, "
                    f"liveness={self.config.get_liveness_settings()}")
        self.supervisor.start()

        try:
            # Liveness is handled by the supervisor, not by the library's keepalive
            async with serve(
                self.handle_client,
                self.config.host,
                self.config.port,
                ping_interval=None,
                close_timeout=self.config.close_timeout,
                max_size=self.config.max_message_size,
            ) as server:
                addr = ', '.join(str(sock.getsockname()) for sock in server.sockets)
                logger.info(f"Server listening on {addr}")
                await server.serve_forever()
        finally:
            await self.supervisor.stop()
