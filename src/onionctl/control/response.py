"""
Control protocol replies.

A reply is one or more lines of the form ``<code><sep><text>`` where sep is
``-`` for a mid-reply line, ``+`` for a line followed by a data block that
ends with a lone ``.``, and a space for the final line.

See: https://spec.torproject.org/control-spec/protocol-outline.html
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import BinaryIO

from loguru import logger

from onionctl.errors import ProtocolParseError, ReplyError, TransportError

# Separators between status code and text
SEP_MID = "-"
SEP_DATA = "+"
SEP_END = " "


@dataclass(frozen=True)
class Response:
    """Result of a single control protocol exchange."""

    status_code: int
    reply: str  # Text of the final line
    data: tuple[str, ...] = ()  # Mid-reply lines and data blocks
    raw_lines: tuple[str, ...] = field(default=(), repr=False)

    @property
    def is_ok(self) -> bool:
        """True for 2xx replies."""
        return 200 <= self.status_code < 300

    @property
    def is_error(self) -> bool:
        """True for 4xx and 5xx replies."""
        return 400 <= self.status_code < 600

    @property
    def body(self) -> str:
        """All reply text, one line per reply line."""
        return "\n".join((*self.data, self.reply))

    @property
    def fields(self) -> dict[str, str]:
        """
        Key=Value pairs carried by the reply lines.

        Lines whose key part contains whitespace (e.g. PROTOCOLINFO's
        ``AUTH METHODS=...``) are not single fields and are skipped. The first
        occurrence of a key wins.
        """
        result: dict[str, str] = {}
        for entry in (*self.data, self.reply):
            key, sep, value = entry.partition("=")
            if not sep or not key or any(c.isspace() for c in key):
                continue
            result.setdefault(key, value.removeprefix("\n"))
        return result

    def raise_for_status(self, command: str = "command") -> None:
        """
        Raise ReplyError unless the reply is 2xx.

        Args:
            command: Command name used in the error message
        """
        if not self.is_ok:
            raise ReplyError(command, self)


def _split_line(line: str) -> tuple[str, str, str]:
    """Split a reply line into (code, separator, text)."""
    if len(line) < 4:
        raise ProtocolParseError(f"Reply line too short: {line!r}")
    code, sep, text = line[:3], line[3], line[4:]
    if not code.isdigit():
        raise ProtocolParseError(f"Invalid status code in reply line: {line!r}")
    if sep not in (SEP_MID, SEP_DATA, SEP_END):
        raise ProtocolParseError(f"Invalid separator in reply line: {line!r}")
    return code, sep, text


def _read_line(stream: BinaryIO) -> str:
    raw = stream.readline()
    if not raw:
        raise TransportError("Connection closed by Tor")
    if not raw.endswith(b"\n"):
        raise TransportError("Connection closed by Tor mid-line")
    return raw.decode("utf-8", errors="replace").rstrip("\r\n")


def _read_data_block(stream: BinaryIO, raw_lines: list[str]) -> str:
    """Read a dot-terminated data block, undoing dot-stuffing."""
    block: list[str] = []
    while True:
        line = _read_line(stream)
        raw_lines.append(line)
        if line == ".":
            return "\n".join(block)
        block.append(line[1:] if line.startswith("..") else line)


def read_response(stream: BinaryIO) -> Response:
    """
    Read one complete reply from the control connection.

    Asynchronous event replies (6xx) arriving ahead of the answer are skipped.

    Args:
        stream: Buffered binary stream positioned at the start of a reply

    Returns:
        Parsed Response

    Raises:
        TransportError: If the connection closes before the reply is complete
        ProtocolParseError: If a line does not follow the reply grammar
    """
    while True:
        raw_lines: list[str] = []
        data: list[str] = []

        while True:
            line = _read_line(stream)
            raw_lines.append(line)
            code, sep, text = _split_line(line)

            if sep == SEP_DATA:
                data.append(f"{text}\n{_read_data_block(stream, raw_lines)}")
            elif sep == SEP_MID:
                data.append(text)
            else:
                break

        if code.startswith("6"):
            logger.debug(f"Skipping asynchronous event: {raw_lines[0]}")
            continue

        return Response(
            status_code=int(code),
            reply=text,
            data=tuple(data),
            raw_lines=tuple(raw_lines),
        )
