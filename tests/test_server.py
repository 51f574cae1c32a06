"""Tests for the listening receiver over real sockets."""

import asyncio

import pytest

from sia_dc09.config import AckStyle, PollingStyle, SiaConfig
from sia_dc09.events import EventKind
from sia_dc09.message_helpers import ACK_PACKET_LENGTH, build_ack
from sia_dc09.protocol import encode_frame
from sia_dc09.server import SiaReceiver

TIMEOUT = 2.0


def make_config(**kwargs) -> SiaConfig:
    kwargs.setdefault("account", "1000")
    return SiaConfig(host="127.0.0.1", listen_port=0, **kwargs)


async def wait_until(predicate, timeout: float = TIMEOUT) -> None:
    async def poll():
        while not predicate():
            await asyncio.sleep(0.01)

    await asyncio.wait_for(poll(), timeout)


async def connect(receiver: SiaReceiver):
    return await asyncio.open_connection("127.0.0.1", receiver.port)


async def send(writer: asyncio.StreamWriter, data: bytes) -> None:
    writer.write(data)
    await writer.drain()


async def close(writer: asyncio.StreamWriter) -> None:
    writer.close()
    try:
        await writer.wait_closed()
    except ConnectionError:
        pass


class TestSiaReceiver:
    """Tests for SiaReceiver."""

    @pytest.mark.asyncio
    async def test_handshake_and_message(self):
        async with SiaReceiver(make_config()) as receiver:
            messages = []
            handshakes = []
            receiver.on_message(messages.append)
            receiver.on_handshake(handshakes.append)

            reader, writer = await connect(receiver)
            await send(writer, b"F#1000\r\n")
            ack = await asyncio.wait_for(reader.readexactly(ACK_PACKET_LENGTH), TIMEOUT)
            assert ack == build_ack("1000")

            await send(writer, encode_frame("Nri1#1000[03] BA Z01"))
            ack = await asyncio.wait_for(reader.readexactly(ACK_PACKET_LENGTH), TIMEOUT)
            assert ack == build_ack("1000", "03")

            await wait_until(lambda: messages)
            assert len(handshakes) == 1
            assert messages[0].kind == EventKind.MESSAGE
            assert messages[0].zone == 1
            await close(writer)

    @pytest.mark.asyncio
    async def test_config_dict_accepted(self):
        receiver = SiaReceiver({"account": "1000", "host": "127.0.0.1", "listenPort": 0})
        await receiver.start()
        try:
            assert receiver.is_running
            assert receiver.port
        finally:
            await receiver.stop()
        assert not receiver.is_running

    @pytest.mark.asyncio
    async def test_max_connections_refuses_extra(self):
        """With a limit of 1 the second connection is closed at once."""
        async with SiaReceiver(make_config(max_connections=1)) as receiver:
            reader1, writer1 = await connect(receiver)
            await send(writer1, b"F#1000\r\n")
            await asyncio.wait_for(reader1.readexactly(ACK_PACKET_LENGTH), TIMEOUT)
            assert receiver.connection_count == 1

            reader2, writer2 = await connect(receiver)
            assert await asyncio.wait_for(reader2.read(100), TIMEOUT) == b""
            await close(writer2)

            # The first connection is still served
            await send(writer1, encode_frame("Nri1#1000[04] BA"))
            ack = await asyncio.wait_for(reader1.readexactly(ACK_PACKET_LENGTH), TIMEOUT)
            assert ack == build_ack("1000", "04")
            assert receiver.connection_count == 1
            await close(writer1)

    @pytest.mark.asyncio
    async def test_sessions_are_independent(self):
        async with SiaReceiver(make_config(account="")) as receiver:
            handshakes = []
            receiver.on_handshake(handshakes.append)

            reader1, writer1 = await connect(receiver)
            reader2, writer2 = await connect(receiver)
            await send(writer1, b"F#1111\r\n")
            await asyncio.wait_for(reader1.readexactly(ACK_PACKET_LENGTH), TIMEOUT)
            await send(writer2, b"F#2222\r\n")
            await asyncio.wait_for(reader2.readexactly(ACK_PACKET_LENGTH), TIMEOUT)

            await wait_until(lambda: len(handshakes) == 2)
            assert {e.account for e in handshakes} == {"1111", "2222"}
            assert len({e.session_id for e in handshakes}) == 2
            accounts = {s.bound_account for s in receiver.sessions.values()}
            assert accounts == {"1111", "2222"}

            # Each session only accepts its own account
            await send(writer1, encode_frame("Nri1#2222[01] BA"))
            await send(writer2, encode_frame("Nri1#2222[01] BA"))
            ack = await asyncio.wait_for(reader2.readexactly(ACK_PACKET_LENGTH), TIMEOUT)
            assert ack == build_ack("2222", "01")

            await close(writer1)
            await close(writer2)

    @pytest.mark.asyncio
    async def test_closed_connections_leave_registry(self):
        async with SiaReceiver(make_config()) as receiver:
            reader, writer = await connect(receiver)
            await send(writer, b"F#1000\r\n")
            await asyncio.wait_for(reader.readexactly(ACK_PACKET_LENGTH), TIMEOUT)
            assert receiver.connection_count == 1

            await close(writer)
            await wait_until(lambda: receiver.connection_count == 0)

    @pytest.mark.asyncio
    async def test_stop_closes_live_connections(self):
        receiver = SiaReceiver(make_config())
        await receiver.start()
        reader, writer = await connect(receiver)
        await send(writer, b"F#1000\r\n")
        await asyncio.wait_for(reader.readexactly(ACK_PACKET_LENGTH), TIMEOUT)

        await receiver.stop()

        assert await asyncio.wait_for(reader.read(100), TIMEOUT) == b""
        await wait_until(lambda: receiver.connection_count == 0)
        await close(writer)

    @pytest.mark.asyncio
    async def test_idle_panel_is_polled(self):
        config = make_config(
            ack_style=AckStyle.PLAIN_A_CRLF,
            polling_style=PollingStyle.INQUIRY,
            polling_interval=0.05,
        )
        async with SiaReceiver(config) as receiver:
            reader, writer = await connect(receiver)
            await send(writer, b"F#1000\r\n")
            assert await asyncio.wait_for(reader.readline(), TIMEOUT) == b"A\r\n"
            assert await asyncio.wait_for(reader.readline(), TIMEOUT) == b"I1000,0001,00\r\n"
            assert await asyncio.wait_for(reader.readline(), TIMEOUT) == b"I1000,0002,00\r\n"
            await close(writer)

    @pytest.mark.asyncio
    async def test_bad_crc_keeps_connection_open(self):
        async with SiaReceiver(make_config()) as receiver:
            errors = []
            receiver.on_validation_error(errors.append)
            reader, writer = await connect(receiver)

            packet = bytearray(encode_frame("Nri1#1000[01] BA"))
            packet[-6] = ord("0") if packet[-6] != ord("0") else ord("1")
            await send(writer, bytes(packet))
            await wait_until(lambda: errors)
            assert errors[0].crc_valid is False

            await send(writer, encode_frame("Nri1#1000[01] BA"))
            ack = await asyncio.wait_for(reader.readexactly(ACK_PACKET_LENGTH), TIMEOUT)
            assert ack == build_ack("1000", "01")
            await close(writer)
