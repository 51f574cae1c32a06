#!/usr/bin/env python3
"""
SIA DC-09 CLI - Command-line interface for the receiver and dialer.

Usage:
    python -m sia_dc09.cli --account 1234 listen --port 10002
    sia-dc09 --account 1234 --panel-host 192.168.1.50 arm 1 --pin 1234
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import sys
from pathlib import Path
from typing import Any

from . import message_helpers
from .client import SiaClient
from .config import AckStyle, PollingStyle, SiaConfig, parse_ack_style
from .errors import SiaError
from .events import SiaEvent
from .protocol import crc16_hex, encode_frame
from .server import SiaReceiver


def setup_logging(debug: bool = False) -> None:
    """Configure logging based on debug flag or LOG_LEVEL env var."""
    level = logging.DEBUG if debug or os.environ.get("LOG_LEVEL") == "debug" else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
        datefmt="%H:%M:%S",
    )


def load_config(config_path: Path | None = None) -> dict[str, Any]:
    """Load configuration from config.json if it exists."""
    paths_to_try = []
    if config_path:
        paths_to_try.append(config_path)
    paths_to_try.extend([
        Path.cwd() / "config.json",
        Path.home() / ".sia-dc09" / "config.json",
    ])

    for path in paths_to_try:
        if path.exists():
            try:
                return json.loads(path.read_text())
            except (json.JSONDecodeError, OSError):
                pass
    return {}


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="sia-dc09",
        description="SIA DC-09 alarm receiver and panel dialer",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  sia-dc09 --account 1234 listen --port 10002
  sia-dc09 --account 1234 listen --ack-style A_CRLF --polling inquiry
  sia-dc09 --account 1234 --panel-host 192.168.1.50 arm 1 --pin 1234
  sia-dc09 --account 1234 --panel-host 192.168.1.50 bypass 12
  sia-dc09 --account 1234 --panel-host 192.168.1.50 output 3 on
  sia-dc09 --account 1234 ack --seq 07
  sia-dc09 crc "SIA-DCS0007R0L0#1234[07] BA Z01"
""",
    )

    # Shared options
    parser.add_argument("--account", help="Panel account number")
    parser.add_argument("--key", help="AES-128 encryption key (enables encryption)")
    parser.add_argument("--hex", action="store_true", help="Key is given as 32 hex characters")
    parser.add_argument("--panel-host", help="Panel address (dialer commands)")
    parser.add_argument("--panel-port", type=int, help="Panel port (dialer commands)")
    parser.add_argument("--config", type=Path, help="Path to config.json")
    parser.add_argument("--debug", action="store_true", help="Enable debug output")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # listen
    listen_parser = subparsers.add_parser("listen", help="Run the receiver and print events")
    listen_parser.add_argument("--host", help="Listen address (default: 0.0.0.0)")
    listen_parser.add_argument("--port", type=int, help="Listen port (default: 10002)")
    listen_parser.add_argument("--ack-style", help="Handshake ACK style (e.g. DC09_FRAMED, A_CRLF, CUSTOM:OK)")
    listen_parser.add_argument(
        "--polling",
        type=str.upper,
        choices=[style.value for style in PollingStyle],
        help="Polling style for idle panels",
    )
    listen_parser.add_argument("--interval", type=float, help="Polling interval in seconds")
    listen_parser.add_argument("--max-connections", type=int, help="Maximum concurrent panels")
    listen_parser.add_argument(
        "--discard-test", action="store_true", help="Do not print link-test (DUH) messages"
    )

    # arm / disarm
    for name, help_text in (("arm", "Arm a partition"), ("disarm", "Disarm a partition")):
        cmd_parser = subparsers.add_parser(name, help=help_text)
        cmd_parser.add_argument("partition", type=int, help="Partition number")
        cmd_parser.add_argument("--pin", required=True, help="User PIN (4-6 digits)")

    # bypass / restore
    for name, help_text in (("bypass", "Bypass a zone"), ("restore", "Restore a bypassed zone")):
        cmd_parser = subparsers.add_parser(name, help=help_text)
        cmd_parser.add_argument("zone", type=int, help="Zone number")

    # output
    output_parser = subparsers.add_parser("output", help="Switch an output on or off")
    output_parser.add_argument("output", type=int, help="Output number")
    output_parser.add_argument("state", choices=["on", "off"], help="Output state")

    # ack
    ack_parser = subparsers.add_parser("ack", help="Print the ACK packet for the account")
    ack_parser.add_argument("--seq", default="00", help="Sequence number (default: 00)")
    ack_parser.add_argument("--receiver", default="R0", help="Receiver token (default: R0)")
    ack_parser.add_argument("--line", default="L0", help="Line token (default: L0)")

    # crc
    crc_parser = subparsers.add_parser("crc", help="Print CRC16 and framed packet for a body")
    crc_parser.add_argument("body", help="Frame body")

    return parser


def build_config(args: argparse.Namespace, config_data: dict[str, Any]) -> SiaConfig:
    """Merge config file data with CLI args (CLI args win)."""
    data = dict(config_data)

    if args.account:
        data["account"] = args.account
    if args.key:
        data["encryption_key"] = args.key
        data["encryption_enabled"] = True
    if args.hex:
        data["key_is_hex"] = True
    if args.panel_host:
        data["panel_address"] = args.panel_host
    if args.panel_port:
        data["panel_port"] = args.panel_port

    if args.command == "listen":
        if args.host:
            data["host"] = args.host
        if args.port:
            data["listen_port"] = args.port
        if args.ack_style:
            data["ack_style"], data["ack_custom"] = parse_ack_style(args.ack_style)
        if args.polling:
            data["polling_style"] = args.polling
        if args.interval:
            data["polling_interval"] = args.interval
        if args.max_connections:
            data["max_connections"] = args.max_connections
        if args.discard_test:
            data["discard_test_messages"] = True

    return SiaConfig.from_dict(data)


def format_event(event: SiaEvent) -> str:
    """Render an event as a JSON line."""
    return json.dumps(event.to_dict())


async def cmd_listen(config: SiaConfig) -> None:
    """Run the receiver until interrupted."""
    receiver = SiaReceiver(config)
    receiver.on_event(lambda event: print(format_event(event), flush=True))

    await receiver.start()
    style = config.ack_style.value
    if config.ack_style == AckStyle.CUSTOM:
        style += f" ({config.ack_custom!r})"
    print(f"Listening on {config.host}:{receiver.port} (ACK style {style}, polling {config.polling_style.value})")
    print("Waiting for panels... (Ctrl+C to stop)\n")

    try:
        await receiver.serve_forever()
    except asyncio.CancelledError:
        pass
    finally:
        await receiver.stop()
        print("\n✓ Receiver stopped")


async def cmd_panel(config: SiaConfig, args: argparse.Namespace) -> None:
    """Dial the panel and send one command."""
    async with SiaClient(config) as client:
        if args.command == "arm":
            packet = await client.arm(args.partition, args.pin)
        elif args.command == "disarm":
            packet = await client.disarm(args.partition, args.pin)
        elif args.command == "bypass":
            packet = await client.bypass(args.zone)
        elif args.command == "restore":
            packet = await client.restore(args.zone)
        else:
            packet = await client.set_output(args.output, args.state == "on")
        print(f"✓ Sent {args.command}: {packet!r}")


def cmd_ack(config: SiaConfig, seq: str, receiver: str, line: str) -> None:
    """Print the ACK for the configured account."""
    packet = message_helpers.build_ack(config.account, seq, receiver, line)
    print(f"Body:   {packet[6:-6].decode('ascii')}")
    print(f"Packet: {packet!r} ({len(packet)} bytes)")


def cmd_crc(body: str) -> None:
    """Print the CRC and frame for a body."""
    print(f"CRC16:  {crc16_hex(body)}")
    print(f"Packet: {encode_frame(body)!r}")


PANEL_COMMANDS = {"arm", "disarm", "bypass", "restore", "output"}


async def run_command(args: argparse.Namespace) -> int:
    """Run the specified command."""
    debug = args.debug
    try:
        config = build_config(args, load_config(args.config))

        if args.command == "crc":
            cmd_crc(args.body)
            return 0

        if not config.account:
            print("Error: Missing required configuration: account")
            print("\nProvide via CLI args or config.json:")
            print("  --account <account>")
            return 1

        if args.command == "listen":
            await cmd_listen(config)
        elif args.command in PANEL_COMMANDS:
            if not config.panel_address:
                print("Error: Missing required configuration: panel address")
                print("\nProvide via CLI args or config.json:")
                print("  --panel-host <ip> [--panel-port <port>]")
                return 1
            await cmd_panel(config, args)
        elif args.command == "ack":
            cmd_ack(config, args.seq, args.receiver, args.line)
        else:
            print(f"Unknown command: {args.command}")
            return 1

        return 0

    except SiaError as e:
        print(f"\nError: {e}")
        return 1
    except ValueError as e:
        print(f"\nError: {e}")
        return 1
    except Exception as e:
        print(f"\nError: {e}")
        if debug:
            import traceback
            traceback.print_exc()
        return 1


def main() -> None:
    """Main entry point."""
    parser = create_parser()
    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(0)

    # Setup logging before running commands
    setup_logging(getattr(args, "debug", False))

    try:
        exit_code = asyncio.run(run_command(args))
    except KeyboardInterrupt:
        exit_code = 0
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
