#!/usr/bin/env python3
"""
Group Chat Relay - Terminal Client

Usage:
    python main_client.py --username Ann

Type messages and press Enter. Commands: /me <action>, /whois <name>,
/quit [reason]. Address the AI with "ai: <question>".
"""

import argparse
import asyncio
import sys
import threading

from websockets.asyncio.client import connect
from websockets.exceptions import ConnectionClosed

from client.chat.chat_client import ChatClient
from common.constants import DEFAULT_HOST, DEFAULT_PORT


async def _print_incoming(websocket, chat_client: ChatClient):
    try:
        async for raw in websocket:
            await chat_client.handle_message(raw)
    except ConnectionClosed:
        pass
    code = websocket.close_code
    reason = websocket.close_reason
    print(f"[INFO] Disconnected (code={code}{', ' + reason if reason else ''})")


def _read_stdin(loop: asyncio.AbstractEventLoop, lines: asyncio.Queue):
    """Blocking stdin reader. Runs in a daemon thread so it never holds up exit."""
    while True:
        line = sys.stdin.readline()
        try:
            loop.call_soon_threadsafe(lines.put_nowait, line)
        except RuntimeError:
            # event loop already closed
            return
        if not line:
            return


async def run_client(host: str, port: int, username: str):
    uri = f"ws://{host}:{port}"
    async with connect(uri) as websocket:
        chat_client = ChatClient(websocket)
        await chat_client.send_login(username)
        listener = asyncio.create_task(_print_incoming(websocket, chat_client))

        lines = asyncio.Queue()
        threading.Thread(target=_read_stdin, args=(asyncio.get_running_loop(), lines), daemon=True).start()

        while not listener.done():
            next_line = asyncio.ensure_future(lines.get())
            done, _ = await asyncio.wait({next_line, listener}, return_when=asyncio.FIRST_COMPLETED)
            if next_line not in done:
                # server closed the socket while we waited for input
                next_line.cancel()
                break
            line = next_line.result()
            if not line:
                await chat_client.send_line('/quit')
                break
            await chat_client.send_line(line)

        await listener


def main(argv=None):
    parser = argparse.ArgumentParser(description='Group Chat Relay Client')
    parser.add_argument('--host', type=str, default=DEFAULT_HOST,
                        help=f'Server host (default: {DEFAULT_HOST})')
    parser.add_argument('--port', type=int, default=DEFAULT_PORT,
                        help=f'Server port (default: {DEFAULT_PORT})')
    parser.add_argument('--username', type=str, required=True,
                        help='Username to claim')
    args = parser.parse_args(argv)

    try:
        asyncio.run(run_client(args.host, args.port, args.username))
    except KeyboardInterrupt:
        print("[INFO] Client shutting down...")
    except OSError as e:
        print(f"[ERROR] Could not connect to ws://{args.host}:{args.port}: {e}")


if __name__ == "__main__":
    main()
