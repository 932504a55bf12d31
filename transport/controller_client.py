"""Controller TCP client - one frame out, one frame back, per connection"""
import asyncio
import logging
from dataclasses import dataclass

from protocol.codec import STX, Frame, FrameError, decode_frame, describe_frame, frame_size

logger = logging.getLogger(__name__)

DEFAULT_PORT = 5005
DEFAULT_TIMEOUT_MS = 5000
READ_CHUNK_SIZE = 4096
CLOSE_TIMEOUT = 1.0


class TransportError(Exception):
    """Base class for failures talking to a controller."""


class ConnectionRefused(TransportError):
    """The controller could not be reached (refused, unroutable, bad address)."""


class Timeout(TransportError):
    """No complete response within the time budget."""


class ProtocolError(TransportError):
    """The controller answered with bytes that are not a valid frame."""


@dataclass
class SendResult:
    """
    Outcome of one send_frame call.

    Attributes:
        success: True when a valid response frame was received.
        response: The decoded response frame, if any.
        error: The transport error when success is False.
    """
    success: bool
    response: Frame | None = None
    error: TransportError | None = None


class ControllerClient:
    """
    Sends frames to LED controllers over short-lived TCP connections.

    Every call opens its own connection and closes it on every exit path,
    so concurrent calls to different panels never share socket state.
    No retries are attempted here.
    """

    def __init__(self, port: int = DEFAULT_PORT, timeout_ms: int = DEFAULT_TIMEOUT_MS):
        """
        Args:
            port: Default controller port when a call does not give one.
            timeout_ms: Default time budget for a whole call (connect, write, read).
        """
        self.port = port
        self.timeout_ms = timeout_ms

    async def send_frame(
        self,
        address: str,
        port: int | None,
        frame: bytes,
        timeout_ms: int | None = None,
    ) -> SendResult:
        """
        Deliver one frame and wait for one response frame.

        Never raises for network or protocol problems; they come back in
        SendResult.error as ConnectionRefused, Timeout or ProtocolError.
        """
        port = port or self.port
        timeout_ms = timeout_ms or self.timeout_ms
        target = f"{address}:{port}"
        writer = None

        try:
            async with asyncio.timeout(timeout_ms / 1000):
                try:
                    reader, writer = await asyncio.open_connection(address, port)
                except OSError as e:
                    logger.warning(f"Controller {target}: Connection failed: {e}")
                    return SendResult(success=False, error=ConnectionRefused(f"{target}: {e}"))

                logger.debug(f"Controller {target}: Connected, sending {len(frame)} bytes")
                writer.write(frame)
                await writer.drain()

                raw = await self._read_frame(reader)

        except TimeoutError:
            logger.warning(f"Controller {target}: No response within {timeout_ms} ms")
            return SendResult(success=False, error=Timeout(f"{target}: no response within {timeout_ms} ms"))
        except OSError as e:
            # Connection dropped while writing or reading
            logger.warning(f"Controller {target}: Connection lost: {e}")
            return SendResult(success=False, error=ConnectionRefused(f"{target}: {e}"))
        finally:
            if writer is not None:
                await self._close(writer, target)

        if raw is None:
            logger.warning(f"Controller {target}: Connection closed without response")
            return SendResult(success=False, error=ProtocolError(f"{target}: connection closed without response"))

        try:
            response = decode_frame(raw)
        except FrameError as e:
            logger.warning(f"Controller {target}: Invalid response frame: {e}")
            logger.debug(f"Controller {target}: Response details: {describe_frame(raw)}")
            return SendResult(success=False, error=ProtocolError(f"{target}: {e}"))

        logger.debug(f"Controller {target}: Received {response!r}")
        return SendResult(success=True, response=response)

    async def check_reachable(
        self, address: str, port: int | None = None, timeout_ms: int | None = None
    ) -> bool:
        """Open and close a TCP connection; True if the controller accepted it."""
        port = port or self.port
        timeout_ms = timeout_ms or self.timeout_ms
        target = f"{address}:{port}"

        try:
            async with asyncio.timeout(timeout_ms / 1000):
                _, writer = await asyncio.open_connection(address, port)
        except (OSError, TimeoutError) as e:
            logger.debug(f"Controller {target}: Not reachable: {e!r}")
            return False

        await self._close(writer, target)
        return True

    async def _read_frame(self, reader: asyncio.StreamReader) -> bytes | None:
        """
        Read until one full frame arrived.

        Returns whatever was buffered if the peer closed early or the first
        byte is not a start marker, so the decoder can report why; None if
        the peer closed without sending anything.
        """
        buffer = b""
        while True:
            if buffer and buffer[0] != STX:
                return buffer
            expected = frame_size(buffer)
            if expected is not None and len(buffer) >= expected:
                return buffer[:expected]

            chunk = await reader.read(READ_CHUNK_SIZE)
            if not chunk:
                return buffer or None
            buffer += chunk

    async def _close(self, writer: asyncio.StreamWriter, target: str) -> None:
        writer.close()
        try:
            async with asyncio.timeout(CLOSE_TIMEOUT):
                await writer.wait_closed()
        except (OSError, TimeoutError) as e:
            logger.debug(f"Controller {target}: Error while closing: {e!r}")
