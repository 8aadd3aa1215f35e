"""One MPD connection: dial, command cycles and the idle state machine.

Every command runs as one cycle on the connection's RequestSequencer:
write the command line, read the response through a ResponseParser,
release the connection. The idle command is the one exception to the
"nobody else touches the connection" rule: noidle() may be called from
another task while idle() is blocked, and is delivered to the idle cycle
through an asyncio.Event rather than a second writer.
"""

import asyncio
import logging
import re
from enum import Enum
from typing import Self

from mpdline.api.protocol import (
    Argument,
    Attrs,
    MpdConnectionError,
    MpdDialError,
    MpdError,
    MpdGreetingError,
    ResponseParser,
    format_command,
)
from mpdline.api.transport import LineTransport, RequestSequencer

logger = logging.getLogger(__name__)

DEFAULT_PORT = 6600
CONNECT_TIMEOUT = 5.0
COMMAND_TIMEOUT = 10.0

GREETING_PREFIX = "OK MPD"

# Subsystem names are sent unquoted, so only accept plain identifiers
SUBSYSTEM_PATTERN = re.compile(r"[a-z_]+")


class IdleState(Enum):
    """Whether the connection is waiting for an idle response."""

    CONNECTED = "connected"
    AWAITING_IDLE = "awaiting_idle"


class MpdConnection:
    """A ready-to-use connection to an MPD server.

    Use dial() to create one. All commands go through the four
    primitives command_ok(), command_list(), command_attrs_list() and
    command_attrs(); responses come back in the order commands were
    issued, even when several tasks share the connection.

    Example:
        async with await MpdConnection.dial("localhost") as conn:
            status = await conn.command_attrs("status")
            files = await conn.command_list("list", "file", key="file")
    """

    def __init__(self, transport: LineTransport, version: str = "") -> None:
        """Wrap a transport whose greeting was already consumed.

        Args:
            transport: Open line transport.
            version: Protocol version announced in the greeting.
        """
        self._transport = transport
        self._version = version
        self._sequencer = RequestSequencer()
        self._idle_state = IdleState.CONNECTED
        self._idle_cancel = asyncio.Event()

    @classmethod
    async def dial(
        cls,
        host: str,
        port: int = DEFAULT_PORT,
        password: str = "",
        *,
        connect_timeout: float = CONNECT_TIMEOUT,
        timeout: float | None = COMMAND_TIMEOUT,
    ) -> "MpdConnection":
        """Connect to an MPD server and validate its greeting.

        Args:
            host: MPD server hostname or IP.
            port: MPD server port.
            password: Plaintext password, sent if not empty.
            connect_timeout: Seconds allowed to open the stream.
            timeout: Seconds allowed for each command response.

        Raises:
            MpdDialError: If the server is unreachable or silent.
            MpdGreetingError: If the first line is not an MPD greeting.
            MpdCommandError: If the password is rejected.
            ValueError: If the password contains a newline.
        """
        if "\n" in password:
            raise ValueError("password must not contain a newline")
        transport = await LineTransport.open(
            host, port, connect_timeout=connect_timeout, timeout=timeout
        )
        try:
            connection = await cls.handshake(transport)
            if password:
                await connection.command_ok("password", password)
        except BaseException:
            await transport.close()
            raise

        logger.info("Connected to MPD %s at %s:%d", connection.version, host, port)
        return connection

    @classmethod
    async def handshake(cls, transport: LineTransport) -> "MpdConnection":
        """Read and check the greeting on a freshly opened transport."""
        try:
            greeting = await transport.read_line()
        except MpdConnectionError as e:
            raise MpdDialError(f"No greeting from server: {e}") from e

        if not greeting.startswith(GREETING_PREFIX):
            raise MpdGreetingError(greeting)
        return cls(transport, greeting[len(GREETING_PREFIX) :].strip())

    @property
    def version(self) -> str:
        """Return MPD protocol version from initial handshake."""
        return self._version

    @property
    def is_connected(self) -> bool:
        """Return True until the connection is closed or broken."""
        return self._transport.is_open

    @property
    def idle_state(self) -> IdleState:
        """Return the idle state of the connection."""
        return self._idle_state

    async def __aenter__(self) -> Self:
        """Async context manager entry."""
        return self

    async def __aexit__(self, *_: object) -> None:
        """Async context manager exit."""
        await self.close()

    # -------------------------------------------------------------------------
    # Command cycles
    # -------------------------------------------------------------------------

    def _ensure_not_idle(self, command: str) -> None:
        if self._idle_state is IdleState.AWAITING_IDLE:
            raise RuntimeError(f"cannot send {command!r} while idling; call noidle() first")

    async def _read_response(
        self, parser: ResponseParser, timeout: float | None = -1.0
    ) -> ResponseParser:
        while True:
            line = await self._transport.read_line(timeout)
            if parser.feed(line):
                return parser

    async def execute(
        self, parser: ResponseParser, command: str, *args: Argument
    ) -> ResponseParser:
        """Run one command cycle and return the filled parser.

        Raises:
            MpdConnectionError: On I/O failure (the connection is then dead).
            MpdProtocolError: If the response does not fit the parser.
            MpdCommandError: If the server answers with ACK.
            ValueError: If the command line contains a newline.
            RuntimeError: If the connection is idling.
        """
        line = format_command(command, *args)
        self._ensure_not_idle(command)
        async with self._sequencer.request():
            logger.debug("MPD command: %s", line)
            try:
                await self._transport.write_line(line)
                return await self._read_response(parser)
            except asyncio.CancelledError:
                # The unread response would be taken as the next command's
                self._transport.abort()
                logger.warning("MPD command %r cancelled mid-response, connection dropped", command)
                raise

    async def command_ok(self, command: str, *args: Argument) -> None:
        """Run a command whose only response is OK."""
        await self.execute(ResponseParser.ok(), command, *args)

    async def command_list(self, command: str, *args: Argument, key: str | None) -> list[str]:
        """Run a command returning a flat list of values.

        Args:
            command: Command name.
            *args: Command arguments.
            key: Key every response line must carry, or None for any key.
        """
        parser = ResponseParser.flat_any() if key is None else ResponseParser.flat(key)
        return (await self.execute(parser, command, *args)).values

    async def command_attrs_list(
        self, command: str, *args: Argument, start_keys: tuple[str, ...] = ("file",)
    ) -> list[Attrs]:
        """Run a command returning records grouped by a start key."""
        parser = ResponseParser.grouped(*start_keys)
        return (await self.execute(parser, command, *args)).records

    async def command_attrs(self, command: str, *args: Argument, terminator: str = "OK") -> Attrs:
        """Run a command returning a single attribute block."""
        parser = ResponseParser.block(terminator)
        return (await self.execute(parser, command, *args)).attrs

    # -------------------------------------------------------------------------
    # Idle
    # -------------------------------------------------------------------------

    async def idle(self, *subsystems: str) -> list[str]:
        """Wait until one of the subsystems changes.

        Blocks without timeout until the server reports a change or
        noidle() is called. Cancelling the waiting task sends noidle and
        drains the response, so the connection stays usable.

        Args:
            *subsystems: Subsystems to watch (player, mixer, options, ...).
                         If empty, watches all subsystems.

        Returns:
            Changed subsystems; empty if the wait was cancelled by noidle().
        """
        for name in subsystems:
            if not SUBSYSTEM_PATTERN.fullmatch(name):
                raise ValueError(f"invalid idle subsystem: {name!r}")
        self._ensure_not_idle("idle")

        line = " ".join(("idle", *subsystems))
        self._idle_state = IdleState.AWAITING_IDLE
        try:
            async with self._sequencer.request():
                logger.debug("MPD command: %s", line)
                try:
                    await self._transport.write_line(line)
                except asyncio.CancelledError:
                    # Whether the server saw "idle" is unknown
                    self._transport.abort()
                    raise
                return await self._await_idle()
        finally:
            self._idle_state = IdleState.CONNECTED
            self._idle_cancel.clear()

    async def _await_idle(self) -> list[str]:
        parser = ResponseParser.flat("changed")
        read = asyncio.ensure_future(self._read_response(parser, timeout=None))
        cancel = asyncio.ensure_future(self._idle_cancel.wait())
        noidle_sent = False
        try:
            await asyncio.wait({read, cancel}, return_when=asyncio.FIRST_COMPLETED)
            if not read.done():
                noidle_sent = True
                await self._transport.write_line("noidle")
            await asyncio.shield(read)
            return parser.values
        except asyncio.CancelledError:
            if not read.done():
                await self._drain_idle(read, noidle_sent)
            raise
        finally:
            cancel.cancel()
            if read.done() and not read.cancelled():
                read.exception()  # mark as retrieved

    async def _drain_idle(self, read: "asyncio.Future[ResponseParser]", noidle_sent: bool) -> None:
        try:
            if not noidle_sent:
                await self._transport.write_line("noidle")
            await asyncio.wait_for(read, timeout=self._transport.timeout)
        except (MpdError, TimeoutError) as e:
            logger.warning("Could not end idle cleanly, dropping connection: %s", e)
            self._transport.abort()

    async def noidle(self) -> None:
        """Cancel a pending idle().

        While idle() is pending this only signals the idle cycle, which
        sends "noidle" itself and returns. Otherwise "noidle" is sent as
        its own cycle; MPD does not answer it in that case.
        """
        if self._idle_state is IdleState.AWAITING_IDLE:
            self._idle_cancel.set()
            return
        async with self._sequencer.request():
            logger.debug("MPD command: noidle")
            await self._transport.write_line("noidle")

    # -------------------------------------------------------------------------
    # Close
    # -------------------------------------------------------------------------

    async def close(self) -> None:
        """Send "close" and shut the stream down.

        Best effort: the server does not answer and write errors are
        ignored. Safe to call more than once.
        """
        if not self._transport.is_open:
            await self._transport.close()
            return
        try:
            await self._transport.write_line("close")
        except MpdConnectionError as e:
            logger.debug("Expected error sending close: %s", e)
        await self._transport.close()
        logger.info("Disconnected from MPD")
