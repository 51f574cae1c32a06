"""Tests for the command-line interface."""

import asyncio
import json
import re

import pytest

from sia_dc09 import cli
from sia_dc09.config import AckStyle, PollingStyle
from sia_dc09.message_helpers import build_ack
from sia_dc09.protocol import crc16_hex, encode_frame


@pytest.fixture
def isolated(tmp_path, monkeypatch):
    """Keep config lookups away from real config files."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("HOME", str(tmp_path))
    return tmp_path


def parse(*argv):
    return cli.create_parser().parse_args(list(argv))


class TestLoadConfig:
    """Tests for config file lookup."""

    def test_explicit_path(self, isolated):
        path = isolated / "panel.json"
        path.write_text(json.dumps({"account": "1234"}))
        assert cli.load_config(path) == {"account": "1234"}

    def test_cwd_config(self, isolated):
        (isolated / "config.json").write_text(json.dumps({"account": "5678"}))
        assert cli.load_config() == {"account": "5678"}

    def test_home_config(self, isolated):
        home_dir = isolated / ".sia-dc09"
        home_dir.mkdir()
        (home_dir / "config.json").write_text(json.dumps({"account": "9999"}))
        assert cli.load_config() == {"account": "9999"}

    def test_invalid_json_ignored(self, isolated):
        (isolated / "config.json").write_text("{not json")
        assert cli.load_config() == {}


class TestBuildConfig:
    """Tests for merging config files and arguments."""

    def test_args_override_file(self):
        args = parse("--account", "1234", "listen", "--port", "10010", "--ack-style", "A_CRLF")
        config = cli.build_config(args, {"account": "0000", "listenPort": 9000, "maxConnections": 3})
        assert config.account == "1234"
        assert config.listen_port == 10010
        assert config.ack_style == AckStyle.PLAIN_A_CRLF
        assert config.max_connections == 3

    def test_listen_options(self):
        args = parse(
            "listen", "--polling", "heartbeat", "--interval", "30", "--max-connections", "2",
            "--discard-test", "--ack-style", "CUSTOM:OK",
        )
        config = cli.build_config(args, {})
        assert config.polling_style == PollingStyle.HEARTBEAT
        assert config.effective_polling_interval == 30.0
        assert config.max_connections == 2
        assert config.discard_test_messages is True
        assert config.ack_style == AckStyle.CUSTOM
        assert config.ack_custom == "OK"

    def test_key_enables_encryption(self):
        args = parse("--key", "000102030405060708090a0b0c0d0e0f", "--hex", "ack")
        config = cli.build_config(args, {})
        assert config.encryption_enabled
        assert config.key_is_hex
        assert config.active_encryption_key == "000102030405060708090a0b0c0d0e0f"

    def test_panel_options(self):
        args = parse("--panel-host", "10.0.0.5", "--panel-port", "10001", "bypass", "3")
        config = cli.build_config(args, {})
        assert config.panel_address == "10.0.0.5"
        assert config.panel_port == 10001
        assert args.zone == 3


class TestRunCommand:
    """Tests for run_command."""

    @pytest.mark.asyncio
    async def test_crc(self, isolated, capsys):
        assert await cli.run_command(parse("crc", "NULL#1234")) == 0
        out = capsys.readouterr().out
        assert f"CRC16:  {crc16_hex('NULL#1234')}" in out
        assert repr(encode_frame("NULL#1234")) in out

    @pytest.mark.asyncio
    async def test_ack(self, isolated, capsys):
        args = parse("--account", "1000", "ack", "--seq", "07")
        assert await cli.run_command(args) == 0
        out = capsys.readouterr().out
        assert "Body:   ACK07R0L0#1000" in out
        assert repr(build_ack("1000", "07")) in out
        assert "(26 bytes)" in out

    @pytest.mark.asyncio
    async def test_missing_account(self, isolated, capsys):
        assert await cli.run_command(parse("ack")) == 1
        assert "Missing required configuration: account" in capsys.readouterr().out

    @pytest.mark.asyncio
    async def test_panel_command_needs_address(self, isolated, capsys):
        assert await cli.run_command(parse("--account", "1", "restore", "2")) == 1
        assert "panel address" in capsys.readouterr().out

    @pytest.mark.asyncio
    async def test_panel_command_connection_error(self, isolated, capsys):
        args = parse("--account", "1", "--panel-host", "127.0.0.1", "--panel-port", "1", "output", "1", "on")
        assert await cli.run_command(args) == 1
        assert "Error:" in capsys.readouterr().out

    @pytest.mark.asyncio
    async def test_bad_pin_reported(self, isolated, capsys):
        async def accept(reader, writer):
            writer.close()

        server = await asyncio.start_server(accept, "127.0.0.1", 0)
        port = server.sockets[0].getsockname()[1]
        try:
            args = parse(
                "--account", "1", "--panel-host", "127.0.0.1", "--panel-port", str(port),
                "arm", "1", "--pin", "12",
            )
            assert await cli.run_command(args) == 1
            assert "PIN must be 4 to 6 digits" in capsys.readouterr().out
        finally:
            server.close()
            await server.wait_closed()

    @pytest.mark.asyncio
    async def test_listen_prints_events(self, isolated, capsys):
        args = parse("--account", "1000", "listen", "--host", "127.0.0.1", "--port", "0")
        task = asyncio.create_task(cli.run_command(args))
        try:
            port = None
            for _ in range(200):
                await asyncio.sleep(0.01)
                match = re.search(r"Listening on 127\.0\.0\.1:(\d+)", capsys.readouterr().out)
                if match:
                    port = int(match.group(1))
                    break
            assert port

            reader, writer = await asyncio.open_connection("127.0.0.1", port)
            writer.write(b"F#1000\r\n")
            await writer.drain()
            await asyncio.wait_for(reader.readexactly(26), 2.0)
            writer.close()

            line = ""
            for _ in range(200):
                await asyncio.sleep(0.01)
                line = capsys.readouterr().out.strip()
                if line:
                    break
            event = json.loads(line.splitlines()[0])
            assert event["type"] == "handshake"
            assert event["account"] == "1000"
        finally:
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)


class TestMain:
    """Tests for the entry point."""

    def test_no_command_prints_help(self, monkeypatch, capsys):
        monkeypatch.setattr("sys.argv", ["sia-dc09"])
        with pytest.raises(SystemExit) as exc_info:
            cli.main()
        assert exc_info.value.code == 0
        assert "usage: sia-dc09" in capsys.readouterr().out
