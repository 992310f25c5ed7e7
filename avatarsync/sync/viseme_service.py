"""WebSocket client for the viseme/subtitle transcription server."""

import asyncio
import json
import logging
from collections import deque
from typing import Deque, Optional

import aiohttp

from ..scheduling import Scheduler, TimerSlot
from .base import AbstractVisemeService, VisemeServiceError

logger = logging.getLogger(__name__)


class WebSocketVisemeService(AbstractVisemeService):
    """Streams combined turn audio to the viseme server and relays its cues."""

    def __init__(self,
                 scheduler: Scheduler,
                 server_url: str = "ws://localhost:8000/stream-audio",
                 connect_timeout_seconds: float = 5.0,
                 max_reconnect_attempts: int = 3):
        """Initialize viseme service client.

        Args:
            scheduler: Scheduler for the reader task and reconnect timer
            server_url: WebSocket URL of the viseme server
            connect_timeout_seconds: How long to wait for the server's
                                     "connected" handshake
            max_reconnect_attempts: Reconnect attempts after an unclean close
        """
        super().__init__()
        self.scheduler = scheduler
        self.server_url = server_url
        self.connect_timeout_seconds = connect_timeout_seconds
        self.max_reconnect_attempts = max_reconnect_attempts

        self.session_id: Optional[str] = None
        self._session: Optional[aiohttp.ClientSession] = None
        self._ws: Optional[aiohttp.ClientWebSocketResponse] = None
        self._handshake: Optional[asyncio.Future] = None
        self._connected = False
        self._connecting = False
        self._closing = False
        self._audio_queue: Deque[bytes] = deque()
        self._reconnect_attempts = 0
        self._reconnect_timer = TimerSlot(scheduler, "viseme-reconnect")

        logger.info(f"WebSocketVisemeService initialized for {server_url}")

    @property
    def connected(self) -> bool:
        return self._connected

    async def connect(self) -> bool:
        if self._connected:
            return True

        self._closing = False
        self._connecting = True
        try:
            if self._session is None or self._session.closed:
                self._session = aiohttp.ClientSession()
            self._ws = await self._session.ws_connect(self.server_url)
            logger.info("Viseme service WebSocket opened, waiting for handshake")

            self._handshake = self.scheduler.loop.create_future()
            self.scheduler.spawn(self._read_loop(self._ws))
            await asyncio.wait_for(asyncio.shield(self._handshake), self.connect_timeout_seconds)
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
            logger.error(f"Viseme service connection failed: {e!r}")
            await self._close_socket()
            return False
        finally:
            self._connecting = False

        await self._flush_queue()
        return True

    async def disconnect(self) -> None:
        self._closing = True
        self._reconnect_timer.cancel()
        await self._close_socket()
        if self._session and not self._session.closed:
            await self._session.close()
        self._session = None
        self._audio_queue.clear()
        self._reconnect_attempts = 0
        logger.info("Viseme service disconnected")

    async def send_audio_chunk(self, audio_data: bytes) -> None:
        if not self._connected or self._ws is None:
            if self._connecting or self._reconnect_timer.active:
                # Delivered once the handshake completes
                self._audio_queue.append(audio_data)
                logger.debug(f"Queued {len(audio_data)} bytes until viseme service connects")
                return
            raise VisemeServiceError("Viseme service is not connected")

        await self._flush_queue()
        try:
            await self._ws.send_bytes(audio_data)
        except (aiohttp.ClientError, ConnectionResetError, RuntimeError) as e:
            raise VisemeServiceError(f"Failed to send audio to viseme service: {e}") from e
        logger.debug(f"Sent {len(audio_data)} bytes to viseme service")

    async def request_final_results(self) -> None:
        if not self._connected or self._ws is None:
            return
        await self._ws.send_json({"type": "get_results"})

    async def _flush_queue(self) -> None:
        while self._audio_queue and self._ws is not None and self._connected:
            await self._ws.send_bytes(self._audio_queue.popleft())

    async def _read_loop(self, ws: aiohttp.ClientWebSocketResponse) -> None:
        """Receive server messages until the socket closes."""
        async for msg in ws:
            if msg.type == aiohttp.WSMsgType.TEXT:
                try:
                    message = json.loads(msg.data)
                except json.JSONDecodeError as e:
                    logger.error(f"Error parsing viseme service response: {e}")
                    if self.callbacks.on_error:
                        self.callbacks.on_error("Failed to parse server response")
                    continue
                if message.get("type") == "connected" and message.get("success"):
                    self._mark_connected(message.get("session_id"))
                self._dispatch_message(message)
            elif msg.type == aiohttp.WSMsgType.ERROR:
                logger.error(f"Viseme service WebSocket error: {ws.exception()}")
                if self.callbacks.on_error:
                    self.callbacks.on_error("WebSocket connection error")
                break

        logger.info(f"Viseme service WebSocket closed (code={ws.close_code})")
        if self._connecting and self._handshake is not None and not self._handshake.done():
            self._handshake.set_exception(aiohttp.ClientError("Closed before handshake"))
        if ws is not self._ws:
            # A newer socket (or an explicit close) already owns the state
            return
        self._connected = False
        self.session_id = None
        was_clean = ws.close_code == aiohttp.WSCloseCode.OK
        if not self._closing and not was_clean:
            self._schedule_reconnect()

    def _mark_connected(self, session_id: Optional[str]) -> None:
        self._connected = True
        self.session_id = session_id
        if self._handshake is not None and not self._handshake.done():
            self._handshake.set_result(True)
        logger.info(f"Viseme service connected with session ID: {session_id}")

    def _schedule_reconnect(self) -> None:
        if self._reconnect_attempts >= self.max_reconnect_attempts:
            logger.error("Viseme service: max reconnection attempts reached")
            if self.callbacks.on_error:
                self.callbacks.on_error("Connection lost and max reconnection attempts exceeded")
            return
        self._reconnect_attempts += 1
        delay = 1.0 * self._reconnect_attempts
        logger.info(f"Viseme service: reconnection attempt "
                    f"{self._reconnect_attempts}/{self.max_reconnect_attempts} in {delay:.0f}s")
        self._reconnect_timer.arm(delay, self._start_reconnect)

    def _start_reconnect(self) -> None:
        self.scheduler.spawn(self._reconnect())

    async def _reconnect(self) -> None:
        if await self.connect():
            self._reconnect_attempts = 0
        elif not self._closing:
            self._schedule_reconnect()

    async def _close_socket(self) -> None:
        self._connected = False
        self.session_id = None
        if self._ws is not None and not self._ws.closed:
            await self._ws.close()
        self._ws = None
