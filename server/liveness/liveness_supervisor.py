"""
Liveness supervisor.

Every interval: evict connections that never answered the previous ping or
have been idle past the absolute ceiling, then ping the rest.
"""

import asyncio
import time
from typing import Awaitable, Callable, Optional, Set

from server.chat.registry import ClientConnection, IdentityRegistry
from server.errors import TransportError
from server.utils.logger import logger

EvictCallback = Callable[[ClientConnection, str], Awaitable[None]]

HEARTBEAT_TIMEOUT_REASON = 'Heartbeat timeout'
IDLE_TIMEOUT_REASON = 'Idle timeout'


class LivenessSupervisor:
    """Heartbeat probe and eviction sweep over all registered connections."""

    def __init__(self, registry: IdentityRegistry, evict: EvictCallback,
                 ping_interval: float, idle_timeout: float, clock: Callable[[], float] = time.monotonic):
        self.registry = registry
        self.evict = evict
        self.ping_interval = ping_interval
        self.idle_timeout = idle_timeout
        self.clock = clock
        self._pong_tasks: Set[asyncio.Task] = set()
        self._task: Optional[asyncio.Task] = None

    async def probe(self):
        """Mark every open connection not-alive and ping it."""
        for connection in await self.registry.connections():
            if not connection.is_open:
                continue
            connection.alive = False
            try:
                pong_waiter = await connection.transport.ping()
            except TransportError as e:
                logger.debug(f"Ping to {connection.label()} failed: {e}")
                continue
            task = asyncio.create_task(self._await_pong(connection, pong_waiter))
            self._pong_tasks.add(task)
            task.add_done_callback(self._pong_tasks.discard)

    async def _await_pong(self, connection: ClientConnection, pong_waiter):
        try:
            await pong_waiter
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.debug(f"No pong from {connection.label()}: {e}")
            return
        connection.alive = True

    async def sweep(self):
        """Evict unresponsive and idle connections."""
        now = self.clock()
        evictions = []
        for connection in await self.registry.connections():
            if not connection.alive:
                evictions.append(self.evict(connection, HEARTBEAT_TIMEOUT_REASON))
            elif now - connection.last_activity > self.idle_timeout:
                evictions.append(self.evict(connection, IDLE_TIMEOUT_REASON))
        if evictions:
            await asyncio.gather(*evictions)

    async def run(self):
        logger.info(f"Liveness supervisor started (ping every {self.ping_interval}s, "
                    f"idle ceiling {self.idle_timeout}s)")
        while True:
            await asyncio.sleep(self.ping_interval)
            try:
                await self.sweep()
                await self.probe()
            except Exception as e:
                logger.log_error("liveness supervisor", e)

    def start(self) -> asyncio.Task:
        self._task = asyncio.create_task(self.run())
        return self._task

    async def stop(self):
        tasks = list(self._pong_tasks)
        if self._task is not None:
            tasks.append(self._task)
            self._task = None
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
