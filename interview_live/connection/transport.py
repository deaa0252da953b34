"""Socket transports for the live-generation endpoint."""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Dict, Optional, Union

import aiohttp

from ..errors import LiveConnectionError, TransmissionError

logger = logging.getLogger(__name__)


class AbstractTransport(ABC):
    """A bidirectional frame transport. One instance per connection attempt."""

    @abstractmethod
    async def open(self, url: str, headers: Optional[Dict[str, str]] = None) -> None:
        """Open the transport.

        Raises:
            LiveConnectionError: If the transport cannot be opened
        """

    @abstractmethod
    async def send(self, frame: str) -> None:
        """Send one text frame.

        Raises:
            TransmissionError: If the frame could not be written
        """

    @abstractmethod
    async def receive(self) -> Optional[Union[str, bytes]]:
        """Wait for the next frame. Returns None once the peer has closed.

        Raises:
            LiveConnectionError: On a transport-level failure
        """

    @abstractmethod
    async def close(self) -> None:
        """Close the transport. Idempotent."""


class AiohttpTransport(AbstractTransport):
    """WebSocket transport backed by aiohttp."""

    def __init__(self, max_msg_size: int = 16 * 1024 * 1024):
        self.max_msg_size = max_msg_size
        self._session: Optional[aiohttp.ClientSession] = None
        self._ws: Optional[aiohttp.ClientWebSocketResponse] = None

    async def open(self, url: str, headers: Optional[Dict[str, str]] = None) -> None:
        self._session = aiohttp.ClientSession()
        try:
            self._ws = await self._session.ws_connect(url, headers=headers, max_msg_size=self.max_msg_size)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            await self._session.close()
            self._session = None
            raise LiveConnectionError(f"WebSocket connection failed: {e}") from e
        logger.debug("WebSocket connection opened")

    async def send(self, frame: str) -> None:
        if self._ws is None or self._ws.closed:
            raise TransmissionError("WebSocket not connected")
        try:
            await self._ws.send_str(frame)
        except (aiohttp.ClientError, ConnectionResetError, RuntimeError) as e:
            raise TransmissionError(f"Failed to send frame: {e}") from e

    async def receive(self) -> Optional[Union[str, bytes]]:
        if self._ws is None:
            return None
        msg = await self._ws.receive()
        if msg.type in (aiohttp.WSMsgType.TEXT, aiohttp.WSMsgType.BINARY):
            return msg.data
        if msg.type == aiohttp.WSMsgType.ERROR:
            raise LiveConnectionError(f"WebSocket error: {self._ws.exception()}")
        logger.info(f"WebSocket closed by peer: code={self._ws.close_code}")
        return None

    async def close(self) -> None:
        if self._ws is not None:
            await self._ws.close()
            self._ws = None
        if self._session is not None:
            await self._session.close()
            self._session = None
