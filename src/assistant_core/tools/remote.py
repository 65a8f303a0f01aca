"""Remote execution of client-hosted tools.

A connected client registers an async ``send`` callback (the transport, for
example a WebSocket ``send_json``). Tool requests are sent through it and
the client's reply is routed back to the waiting call via ``resolve``.
"""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable
from uuid import uuid4

from loguru import logger

from ..errors import ClientNotConnectedError, ToolTimeoutError
from ..models import ToolCall, ToolResult

SendCallback = Callable[[dict], Awaitable[None]]
ConnectionListener = Callable[[str], Awaitable[None]]


class ClientChannel:
    """Request/response channel to one connected client."""

    def __init__(
        self,
        client_id: str,
        send: SendCallback,
        pending: dict[str, tuple[str, asyncio.Future]],
    ):
        self.client_id = client_id
        self._send = send
        self._pending = pending

    async def dispatch(self, call: ToolCall, timeout: float) -> ToolResult:
        """Send ``call`` to the client and wait for its result.

        Raises:
            ClientNotConnectedError: If sending fails or the client drops
            ToolTimeoutError: If no reply arrives within ``timeout`` seconds
        """
        request_id = str(uuid4())
        future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._pending[request_id] = (self.client_id, future)
        try:
            try:
                await self._send(
                    {
                        "type": "tool_call_request",
                        "request_id": request_id,
                        "tool_call": call.model_dump(mode="json"),
                    }
                )
            except Exception as e:
                logger.warning(f"Failed to send tool call to {self.client_id}: {e}")
                raise ClientNotConnectedError(self.client_id) from e

            try:
                return await asyncio.wait_for(future, timeout)
            except asyncio.TimeoutError:
                raise ToolTimeoutError(call.name, timeout) from None
        finally:
            self._pending.pop(request_id, None)


class ClientConnectionManager:
    """Tracks connected clients and correlates tool requests with replies."""

    def __init__(self):
        self.active_connections: dict[str, SendCallback] = {}
        self._pending: dict[str, tuple[str, asyncio.Future]] = {}
        self._connect_listeners: list[ConnectionListener] = []
        self._disconnect_listeners: list[ConnectionListener] = []

    def add_connect_listener(self, listener: ConnectionListener) -> None:
        self._connect_listeners.append(listener)

    def add_disconnect_listener(self, listener: ConnectionListener) -> None:
        self._disconnect_listeners.append(listener)

    async def connect(self, client_id: str, send: SendCallback) -> None:
        self.active_connections[client_id] = send
        logger.info(
            f"Client {client_id} connected. Total connections: {len(self.active_connections)}"
        )
        await self._notify(self._connect_listeners, client_id)

    async def disconnect(self, client_id: str) -> None:
        """Drop a client and fail its in-flight requests."""
        if self.active_connections.pop(client_id, None) is None:
            return

        for request_id, (owner, future) in list(self._pending.items()):
            if owner == client_id and not future.done():
                future.set_exception(ClientNotConnectedError(client_id))
        logger.warning(
            f"Client {client_id} disconnected. Total connections: {len(self.active_connections)}"
        )
        await self._notify(self._disconnect_listeners, client_id)

    def is_connected(self, client_id: str | None) -> bool:
        return client_id is not None and client_id in self.active_connections

    def channel_for(self, client_id: str | None) -> ClientChannel | None:
        if not self.is_connected(client_id):
            return None
        return ClientChannel(client_id, self.active_connections[client_id], self._pending)

    def resolve(self, request_id: str, result: ToolResult | dict) -> bool:
        """Deliver a client's reply to the waiting request.

        Returns:
            False if no request with that id is waiting
        """
        entry = self._pending.get(request_id)
        if entry is None or entry[1].done():
            logger.debug(f"Ignoring reply for unknown request {request_id}")
            return False
        if isinstance(result, dict):
            result = ToolResult.model_validate(result)
        entry[1].set_result(result)
        return True

    def get_connection_count(self) -> int:
        return len(self.active_connections)

    @staticmethod
    async def _notify(listeners: list[ConnectionListener], client_id: str) -> None:
        for listener in listeners:
            try:
                await listener(client_id)
            except Exception as e:
                logger.warning(f"Connection listener failed for {client_id}: {e}")
