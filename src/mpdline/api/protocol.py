"""MPD protocol grammar: command framing, response parsing and errors.

MPD uses a simple line-based text protocol:
- Commands are sent as one line terminated by a bare "\\n"
- Responses are key-value pairs: "key: value"
- Responses end with "OK" or "ACK [error@index] {command} message"

Every response is consumed by one ResponseParser. The parser kind decides
how the lines between the command and its terminator are interpreted.

Reference: https://mpd.readthedocs.io/en/stable/protocol.html
"""

import re
from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import Enum
from typing import NamedTuple

# Type alias for one server entity (a song, a status snapshot, a playlist)
Attrs = dict[str, str]

RESPONSE_OK = "OK"
ACK_PREFIX = "ACK "
SEPARATOR = ": "

# Pattern for ACK responses: ACK [error@command_listNum] {current_command} message_text
ACK_PATTERN = re.compile(r"ACK \[(\d+)@(\d+)\] \{([^}]*)\} ?(.*)")


class MpdError(Exception):
    """Base class for all MPD client errors."""


class MpdConnectionError(MpdError):
    """Read or write failure on an established connection.

    Always fatal: the connection must not be used afterwards.
    """


class MpdDialError(MpdConnectionError):
    """Failed to establish a connection to the MPD server."""


class MpdProtocolError(MpdError):
    """A response line violates the grammar expected by the active parser.

    Attributes:
        line: The offending raw line, if any.
    """

    def __init__(self, message: str, line: str | None = None) -> None:
        self.line = line
        if line is not None:
            message = f"{message}: {line}"
        super().__init__(message)


class MpdGreetingError(MpdDialError, MpdProtocolError):
    """The server's first line did not start with "OK MPD"."""

    def __init__(self, line: str) -> None:
        MpdProtocolError.__init__(self, "no greeting", line)


class MpdCommandError(MpdError):
    """The server rejected a command with an ACK line.

    The connection stays usable after this error.

    Attributes:
        code: MPD error code (e.g. 50 for "no such file").
        index: Position of the failing command inside a command list.
        command: Name of the failing command.
        message: Human readable message from the server.
        line: The raw ACK line.
    """

    def __init__(self, code: int, index: int, command: str, message: str, line: str = "") -> None:
        self.code = code
        self.index = index
        self.command = command
        self.message = message
        self.line = line
        super().__init__(f"MPD error {code} in {command}: {message}")


def parse_ack(line: str) -> MpdCommandError:
    """Build the error described by an ACK line.

    Args:
        line: A response line starting with "ACK ".

    Returns:
        MpdCommandError (not raised, so callers can raise it in context).
    """
    match = ACK_PATTERN.match(line)
    if match:
        return MpdCommandError(
            code=int(match.group(1)),
            index=int(match.group(2)),
            command=match.group(3),
            message=match.group(4),
            line=line,
        )
    return MpdCommandError(0, 0, "", line[len(ACK_PREFIX) :], line=line)


def split_line(line: str) -> tuple[str, str]:
    """Split a response line at the first ": ".

    Values may contain colons themselves; only the first separator counts.

    Raises:
        MpdProtocolError: If the line has no separator.
    """
    key, sep, value = line.partition(SEPARATOR)
    if not sep:
        raise MpdProtocolError("can't parse line", line)
    return key, value


# -----------------------------------------------------------------------------
# Command framing
# -----------------------------------------------------------------------------


class Range(NamedTuple):
    """A half-open position range argument, rendered as "start:end"."""

    start: int
    end: int

    def __str__(self) -> str:
        return f"{self.start}:{self.end}"


Argument = str | int | float | Range


def quote(arg: str) -> str:
    """Quote a string argument in the format understood by MPD.

    The string is wrapped in double quotes and embedded quotes are
    backslash-escaped. Nothing else is escaped.
    """
    return '"' + arg.replace('"', '\\"') + '"'


def unquote(token: str) -> str:
    """Reverse quote() following the server tokenizer's grammar.

    Raises:
        ValueError: If the token is not a complete quoted string.
    """
    if len(token) < 2 or token[0] != '"':
        raise ValueError(f"not a quoted string: {token!r}")

    chars: list[str] = []
    i = 1
    while i < len(token):
        c = token[i]
        if c == "\\" and i + 1 < len(token) and token[i + 1] == '"':
            chars.append('"')
            i += 2
            continue
        if c == '"':
            if i != len(token) - 1:
                raise ValueError(f"trailing data after closing quote: {token!r}")
            return "".join(chars)
        chars.append(c)
        i += 1
    raise ValueError(f"missing closing quote: {token!r}")


def format_argument(arg: Argument) -> str:
    """Render one command argument.

    Strings are always quoted; numbers and ranges are bare.
    """
    if isinstance(arg, str):
        return quote(arg)
    if isinstance(arg, bool):
        return "1" if arg else "0"
    if isinstance(arg, int | float | Range):
        return str(arg)
    raise TypeError(f"unsupported MPD argument type: {type(arg).__name__}")


def format_command(command: str, *args: Argument) -> str:
    """Format an MPD command with arguments.

    Args:
        command: The MPD command name.
        *args: Command arguments.

    Returns:
        Formatted command string (without newline).
    """
    if not args:
        return command
    return f"{command} {' '.join(format_argument(arg) for arg in args)}"


# -----------------------------------------------------------------------------
# Response parsing
# -----------------------------------------------------------------------------


class ResponseKind(Enum):
    """How the lines of a response are interpreted."""

    OK = "ok"  # a single OK line
    LIST = "list"  # "<key>: <value>" lines, values collected in order
    ATTRS_LIST = "attrs_list"  # records grouped by a repeating start key
    ATTRS = "attrs"  # one record up to a terminator


@dataclass
class ResponseParser:
    """Incremental parser for one MPD response.

    Lines are pushed in with feed() until it reports completion. The
    result is then available from `values`, `records` or `attrs`
    depending on the kind.

    Example:
        parser = ResponseParser.flat("file")
        for line in lines:
            if parser.feed(line):
                break
        files = parser.values
    """

    kind: ResponseKind
    keys: tuple[str, ...] = ()
    terminator: str = RESPONSE_OK
    values: list[str] = field(default_factory=list)
    records: list[Attrs] = field(default_factory=list)
    attrs: Attrs = field(default_factory=dict)

    @classmethod
    def ok(cls) -> "ResponseParser":
        """Expect a bare acknowledgement."""
        return cls(ResponseKind.OK)

    @classmethod
    def flat(cls, key: str) -> "ResponseParser":
        """Collect the values of a flat "<key>: <value>" list."""
        return cls(ResponseKind.LIST, keys=(key,))

    @classmethod
    def flat_any(cls) -> "ResponseParser":
        """Collect values of a flat list regardless of their key."""
        return cls(ResponseKind.LIST)

    @classmethod
    def grouped(cls, *start_keys: str) -> "ResponseParser":
        """Collect records, starting a new one at each start key."""
        if not start_keys:
            raise ValueError("grouped parser needs at least one start key")
        return cls(ResponseKind.ATTRS_LIST, keys=start_keys)

    @classmethod
    def block(cls, terminator: str = RESPONSE_OK) -> "ResponseParser":
        """Collect one record up to the terminator."""
        return cls(ResponseKind.ATTRS, terminator=terminator)

    def feed(self, line: str) -> bool:
        """Consume one response line.

        Returns:
            True once the terminator has been seen.

        Raises:
            MpdCommandError: If the line is an ACK.
            MpdProtocolError: If the line does not fit this parser.
        """
        if line.startswith(ACK_PREFIX):
            raise parse_ack(line)
        if line == self.terminator:
            return True

        if self.kind is ResponseKind.OK:
            raise MpdProtocolError("unexpected response", line)

        if self.kind is ResponseKind.LIST:
            if not self.keys:
                self.values.append(split_line(line)[1])
                return False
            prefix = self.keys[0] + SEPARATOR
            if not line.startswith(prefix):
                raise MpdProtocolError("unexpected", line)
            self.values.append(line[len(prefix) :])
            return False

        key, value = split_line(line)
        if self.kind is ResponseKind.ATTRS_LIST:
            if key in self.keys:
                self.records.append({})
            if not self.records:
                raise MpdProtocolError("unexpected", line)
            self.records[-1][key] = value
        else:
            self.attrs[key] = value
        return False


def parse_lines(lines: Iterable[str], parser: ResponseParser) -> ResponseParser:
    """Run a parser over already received lines.

    Raises:
        MpdProtocolError: If the lines end before the terminator.
    """
    for line in lines:
        if parser.feed(line):
            return parser
    raise MpdProtocolError("unexpected end of response")


def parse_list(lines: Iterable[str], key: str) -> list[str]:
    """Parse a flat "<key>: <value>" list response."""
    return parse_lines(lines, ResponseParser.flat(key)).values


def parse_attrs_list(lines: Iterable[str], *start_keys: str) -> list[Attrs]:
    """Parse a response of records grouped by start key."""
    return parse_lines(lines, ResponseParser.grouped(*start_keys)).records


def parse_attrs(lines: Iterable[str], terminator: str = RESPONSE_OK) -> Attrs:
    """Parse a single attribute block response."""
    return parse_lines(lines, ResponseParser.block(terminator)).attrs
