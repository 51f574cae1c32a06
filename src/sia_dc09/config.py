"""
Configuration for SIA DC-09 receivers and dialers.
"""

from __future__ import annotations

from dataclasses import dataclass, fields
from enum import StrEnum
from typing import Any

DEFAULT_PORT = 10002
DEFAULT_MAX_CONNECTIONS = 20
DEFAULT_INQUIRY_INTERVAL = 10.0
DEFAULT_HEARTBEAT_INTERVAL = 60.0
DEFAULT_RECONNECT_INITIAL_DELAY = 1.0
DEFAULT_RECONNECT_MAX_DELAY = 60.0


class AckStyle(StrEnum):
    """How a handshake is acknowledged."""

    DC09_FRAMED = "DC09_FRAMED"
    PLAIN_A = "PLAIN_A"
    PLAIN_A_CRLF = "PLAIN_A_CRLF"
    ACK = "ACK"
    ACK_CRLF = "ACK_CRLF"
    ECHO = "ECHO"
    CUSTOM = "CUSTOM"


class PollingStyle(StrEnum):
    """What the receiver sends to an idle panel."""

    INQUIRY = "INQUIRY"
    HEARTBEAT = "HEARTBEAT"
    NONE = "NONE"


# Legacy ACK type names
_ACK_STYLE_ALIASES = {
    "A": AckStyle.PLAIN_A,
    "A_CRLF": AckStyle.PLAIN_A_CRLF,
    "SIA": AckStyle.DC09_FRAMED,
    "DC09": AckStyle.DC09_FRAMED,
}

_CAMEL_CASE_KEYS = {
    "panelIP": "panel_address",
    "panelAddress": "panel_address",
    "panelPort": "panel_port",
    "listenPort": "listen_port",
    "encryption": "encryption_enabled",
    "encryptionEnabled": "encryption_enabled",
    "encryptionKey": "encryption_key",
    "encryptionHex": "key_is_hex",
    "keyIsHex": "key_is_hex",
    "ackType": "ack_style",
    "ackStyle": "ack_style",
    "ackCustom": "ack_custom",
    "pollingStyle": "polling_style",
    "pollingIntervalSeconds": "polling_interval",
    "pollingInterval": "polling_interval",
    "discardTestMessages": "discard_test_messages",
    "maxConnections": "max_connections",
}

_TRUE_STRINGS = {"1", "true", "yes", "on"}
_FALSE_STRINGS = {"0", "false", "no", "off", ""}


def _parse_bool(name: str, value: Any) -> bool:
    """Parse a flag from a JSON value, accepting "true"/"false" style strings."""
    if isinstance(value, str):
        text = value.strip().lower()
        if text in _TRUE_STRINGS:
            return True
        if text in _FALSE_STRINGS:
            return False
        raise ValueError(f"Invalid boolean for {name}: {value!r}")
    return bool(value)


def parse_ack_style(value: str | AckStyle) -> tuple[AckStyle, str]:
    """
    Parse an ACK style setting.

    Accepts enum names, the legacy names (A, A_CRLF, ...) and the
    inline form "CUSTOM:<text>".

    Returns:
        Tuple of (AckStyle, custom text)
    """
    if isinstance(value, AckStyle):
        return value, ""
    if value.upper().startswith("CUSTOM:"):
        return AckStyle.CUSTOM, value[len("CUSTOM:") :]
    key = value.strip().upper()
    if key in _ACK_STYLE_ALIASES:
        return _ACK_STYLE_ALIASES[key], ""
    return AckStyle(key), ""


@dataclass(slots=True)
class SiaConfig:
    """Configuration shared read-only by every session."""

    account: str = ""
    host: str = "0.0.0.0"  # nosec B104 - panels connect from the alarm network
    listen_port: int = DEFAULT_PORT
    panel_address: str | None = None
    panel_port: int = DEFAULT_PORT
    encryption_enabled: bool = False
    encryption_key: str = ""
    key_is_hex: bool = False
    ack_style: AckStyle = AckStyle.DC09_FRAMED
    ack_custom: str = ""
    polling_style: PollingStyle = PollingStyle.NONE
    polling_interval: float | None = None
    discard_test_messages: bool = False
    max_connections: int = DEFAULT_MAX_CONNECTIONS
    reconnect_initial_delay: float = DEFAULT_RECONNECT_INITIAL_DELAY
    reconnect_max_delay: float = DEFAULT_RECONNECT_MAX_DELAY

    def __post_init__(self) -> None:
        if not isinstance(self.ack_style, AckStyle):
            style, custom = parse_ack_style(self.ack_style)
            self.ack_style = style
            self.ack_custom = self.ack_custom or custom
        if not isinstance(self.polling_style, PollingStyle):
            self.polling_style = PollingStyle(str(self.polling_style).upper())
        if self.max_connections < 1:
            raise ValueError("max_connections must be at least 1")

    @property
    def effective_polling_interval(self) -> float:
        """Polling interval in seconds, defaulting per polling style."""
        if self.polling_interval:
            return float(self.polling_interval)
        if self.polling_style == PollingStyle.HEARTBEAT:
            return DEFAULT_HEARTBEAT_INTERVAL
        return DEFAULT_INQUIRY_INTERVAL

    @property
    def active_encryption_key(self) -> str | None:
        """The configured key when encryption is enabled, else None."""
        if self.encryption_enabled and self.encryption_key:
            return self.encryption_key
        return None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SiaConfig:
        """
        Build a config from a dict.

        Accepts snake_case field names and the camelCase names used by the
        legacy configuration files. Unknown keys are ignored.
        """
        known = {f.name for f in fields(cls)}
        values: dict[str, Any] = {}
        for key, value in data.items():
            name = _CAMEL_CASE_KEYS.get(key, key)
            if name in known and value is not None:
                values[name] = value

        # A periodic report interval implies heartbeat polling
        report_interval = data.get("periodicReportInterval")
        if report_interval and "polling_style" not in values:
            values["polling_style"] = PollingStyle.HEARTBEAT
            values.setdefault("polling_interval", float(report_interval))

        for name in ("listen_port", "panel_port", "max_connections"):
            if name in values:
                values[name] = int(values[name])
        for name in ("encryption_enabled", "key_is_hex", "discard_test_messages"):
            if name in values:
                values[name] = _parse_bool(name, values[name])
        if "account" in values:
            values["account"] = str(values["account"])

        return cls(**values)
