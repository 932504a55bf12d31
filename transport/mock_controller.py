"""Mock LED controller - asyncio TCP server speaking the controller protocol

Used by the test-suite and by `bridge.py mock-controller` for bench testing
without field hardware.
"""
import asyncio
import json
import logging
from datetime import datetime, timezone
from decimal import Decimal

from protocol.codec import STX, Frame, FrameError, decode_frame, encode_frame, frame_size
from protocol.commands import Command, parse_price_payload
from sources.base import FuelPrices

logger = logging.getLogger(__name__)


class MockController:
    """
    Simulated controller.

    Replies to PRICE_UPDATE with "OK", to STATUS_QUERY with a JSON status
    record, to PING with "PONG", and to anything else (including frames it
    cannot decode) with an ERROR frame.

    Behaviour switches for failure tests:
        silent: read the request but never answer.
        garbage: answer with bytes that are not a valid frame.
        response_delay: seconds to wait before answering.
    """

    def __init__(
        self,
        host: str = "127.0.0.1",
        port: int = 0,
        silent: bool = False,
        garbage: bool = False,
        response_delay: float = 0.0,
    ):
        self.host = host
        self.port = port
        self.silent = silent
        self.garbage = garbage
        self.response_delay = response_delay
        self.prices = FuelPrices(Decimal("3.45"), Decimal("3.65"), Decimal("3.25"))
        self.received: list[Frame] = []
        self._server: asyncio.Server | None = None

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.stop()

    @property
    def is_running(self) -> bool:
        return self._server is not None

    async def start(self) -> int:
        """Start listening; returns the bound port (useful with port=0)."""
        if self._server is not None:
            return self.port

        self._server = await asyncio.start_server(self._handle, self.host, self.port)
        self.port = self._server.sockets[0].getsockname()[1]
        logger.info(f"Mock controller: Listening on {self.host}:{self.port}")
        return self.port

    async def stop(self) -> None:
        if self._server is None:
            return
        self._server.close()
        await self._server.wait_closed()
        self._server = None
        logger.info(f"Mock controller: Stopped ({self.host}:{self.port})")

    async def _handle(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        peer = writer.get_extra_info("peername")
        try:
            raw = await self._read_request(reader)
            if raw is None:
                return

            if self.silent:
                # Hold the connection open until the client gives up
                await reader.read()
                return

            if self.response_delay:
                await asyncio.sleep(self.response_delay)

            if self.garbage:
                writer.write(b"\x7fNOT-A-FRAME\x00")
            else:
                writer.write(self._respond(raw))
            await writer.drain()
        except ConnectionError as e:
            logger.debug(f"Mock controller: Client {peer} went away: {e!r}")
        finally:
            writer.close()
            try:
                await writer.wait_closed()
            except ConnectionError as e:
                logger.debug(f"Mock controller: Error closing connection to {peer}: {e!r}")

    async def _read_request(self, reader: asyncio.StreamReader) -> bytes | None:
        buffer = b""
        while True:
            if buffer and buffer[0] != STX:
                return buffer
            expected = frame_size(buffer)
            if expected is not None and len(buffer) >= expected:
                return buffer[:expected]
            chunk = await reader.read(4096)
            if not chunk:
                return buffer or None
            buffer += chunk

    def _respond(self, raw: bytes) -> bytes:
        try:
            frame = decode_frame(raw)
        except FrameError as e:
            logger.warning(f"Mock controller: Invalid frame received: {e}")
            return encode_frame(Command.ERROR, b"ERROR")

        self.received.append(frame)
        logger.info(f"Mock controller: Received {frame!r}")

        if frame.command == Command.PRICE_UPDATE:
            update = parse_price_payload(frame.payload)
            self.prices = update.prices
            logger.info(f"Mock controller: Prices updated: {self.prices.as_dict()}")
            return encode_frame(Command.PRICE_UPDATE, b"OK")

        if frame.command == Command.STATUS_QUERY:
            status = {
                "online": True,
                "prices": self.prices.as_dict(),
                "timestamp": datetime.now(timezone.utc).isoformat(),
            }
            return encode_frame(Command.STATUS_QUERY, json.dumps(status).encode("utf-8"))

        if frame.command == Command.PING:
            return encode_frame(Command.PING, b"PONG")

        logger.warning(f"Mock controller: Unknown command 0x{frame.command:02X}")
        return encode_frame(Command.ERROR, b"ERROR")
