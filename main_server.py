#!/usr/bin/env python3
"""
Group Chat Relay - Main Entry Point

Starts the WebSocket chat relay with its AI participant.

Usage:
    python main_server.py

Optional arguments:
    --host HOST             Bind address (default: 0.0.0.0)
    --port PORT             WebSocket port (default: 8086)
    --data-dir DIR          Directory for history and AI memory (default: data)
    --ping-interval SEC     Seconds between liveness probes (default: 30)
    --idle-timeout SEC      Absolute idle ceiling in seconds (default: 1800)
    --log-level LEVEL       Console log level (default: INFO)

The AI participant is enabled when OPENAI_API_KEY is set. CHAT_AI_MODEL
selects the model.
"""

import argparse
import asyncio
import logging

from common.constants import DEFAULT_SERVER_HOST, DEFAULT_PORT, DATA_DIR, PING_INTERVAL, IDLE_TIMEOUT


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description='Group Chat Relay Server')
    parser.add_argument('--host', type=str, default=DEFAULT_SERVER_HOST,
                        help=f'Host to bind to (default: {DEFAULT_SERVER_HOST})')
    parser.add_argument('--port', type=int, default=DEFAULT_PORT,
                        help=f'WebSocket port (default: {DEFAULT_PORT})')
    parser.add_argument('--data-dir', type=str, default=DATA_DIR,
                        help=f'Directory for history and AI memory (default: {DATA_DIR})')
    parser.add_argument('--ping-interval', type=float, default=PING_INTERVAL,
                        help=f'Seconds between liveness probes (default: {PING_INTERVAL})')
    parser.add_argument('--idle-timeout', type=float, default=IDLE_TIMEOUT,
                        help=f'Absolute idle ceiling in seconds (default: {IDLE_TIMEOUT})')
    parser.add_argument('--log-level', type=str, default='INFO',
                        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
                        help='Console log level (default: INFO)')
    return parser


def main(argv=None):
    from server.main_server import ChatRelayServer
    from server.utils.config import ServerConfig
    from server.utils.logger import logger

    args = build_parser().parse_args(argv)
    logger.set_level(getattr(logging, args.log_level))

    config = ServerConfig(
        host=args.host,
        port=args.port,
        data_dir=args.data_dir,
        ping_interval=args.ping_interval,
        idle_timeout=args.idle_timeout
    )

    try:
        server = ChatRelayServer(config)
        logger.info(f"Server binding to {config.host}:{config.port}")
        asyncio.run(server.start())
    except KeyboardInterrupt:
        logger.info("Server shutting down...")


if __name__ == "__main__":
    main()
