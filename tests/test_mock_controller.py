"""Tests for the simulated controller used on the bench"""
import asyncio
from decimal import Decimal

import pytest

from protocol.codec import decode_frame, encode_frame
from protocol.commands import Command, create_price_update_frame, create_status_query_frame
from sources.base import FuelPrices
from transport.mock_controller import MockController

pytestmark = pytest.mark.loopback


async def exchange(port: int, data: bytes) -> bytes:
    reader, writer = await asyncio.open_connection("127.0.0.1", port)
    writer.write(data)
    await writer.drain()
    response = await reader.read()
    writer.close()
    await writer.wait_closed()
    return response


@pytest.mark.asyncio
async def test_ping():
    async with MockController() as mock:
        response = decode_frame(await exchange(mock.port, encode_frame(Command.PING)))

    assert response.command == Command.PING
    assert response.payload == b"PONG"
    assert len(mock.received) == 1


@pytest.mark.asyncio
async def test_price_update_changes_prices():
    prices = FuelPrices(Decimal("6.09"), Decimal("6.49"), Decimal("5.89"))

    async with MockController() as mock:
        assert mock.prices.as_dict() == {"regular": "3.45", "premium": "3.65", "diesel": "3.25"}
        await exchange(mock.port, create_price_update_frame(prices))

    assert mock.prices == prices


@pytest.mark.asyncio
async def test_unstructured_price_payload_uses_defaults():
    async with MockController() as mock:
        await exchange(mock.port, encode_frame(Command.PRICE_UPDATE, b"3.45;3.65;3.25"))

    assert mock.prices.as_dict() == {"regular": "3.50", "premium": "3.70", "diesel": "3.30"}


@pytest.mark.asyncio
async def test_corrupt_frame_gets_error_reply():
    data = bytearray(create_status_query_frame())
    data[-2] = 0x00  # break the checksum

    async with MockController() as mock:
        response = decode_frame(await exchange(mock.port, bytes(data)))

    assert response.command == Command.ERROR
    assert mock.received == []


@pytest.mark.asyncio
async def test_start_and_stop():
    mock = MockController()
    port = await mock.start()

    assert mock.is_running
    assert port > 0
    assert await mock.start() == port

    await mock.stop()
    assert not mock.is_running
