"""Line transport and request sequencing for one MPD connection.

LineTransport owns the asyncio stream pair and speaks in whole lines.
RequestSequencer makes sure only one command/response cycle uses the
transport at a time: MPD has no request ids, so responses can only be
matched to commands by strict ordering.
"""

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from mpdline.api.protocol import MpdConnectionError, MpdDialError, MpdProtocolError

logger = logging.getLogger(__name__)

ENCODING = "utf-8"
STREAM_LIMIT = 1024 * 1024  # large playlists produce long "file:" lines
CLOSE_TIMEOUT = 1.0


class LineTransport:
    """Newline-delimited text stream to an MPD server.

    Any I/O failure breaks the transport for good; MPD offers no way to
    resynchronise a half-read response.

    Example:
        transport = await LineTransport.open("localhost", 6600)
        greeting = await transport.read_line()
        await transport.write_line("ping")
    """

    def __init__(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        timeout: float | None = None,
    ) -> None:
        """Wrap an already opened stream pair.

        Args:
            reader: Stream to read responses from.
            writer: Stream to write commands to.
            timeout: Default read timeout in seconds (None = wait forever).
        """
        self._reader: asyncio.StreamReader | None = reader
        self._writer: asyncio.StreamWriter | None = writer
        self._timeout = timeout

    @classmethod
    async def open(
        cls,
        host: str,
        port: int,
        *,
        connect_timeout: float = 5.0,
        timeout: float | None = None,
    ) -> "LineTransport":
        """Open a TCP stream to host:port.

        Raises:
            MpdDialError: If the stream cannot be opened in time.
        """
        try:
            reader, writer = await asyncio.wait_for(
                asyncio.open_connection(host, port, limit=STREAM_LIMIT),
                timeout=connect_timeout,
            )
        except TimeoutError as e:
            raise MpdDialError(f"Connection to {host}:{port} timed out") from e
        except OSError as e:
            raise MpdDialError(f"Failed to connect to {host}:{port}: {e}") from e
        return cls(reader, writer, timeout=timeout)

    @property
    def is_open(self) -> bool:
        """Return True while the transport can still be used."""
        return self._writer is not None and not self._writer.is_closing()

    @property
    def timeout(self) -> float | None:
        """Return the default read timeout."""
        return self._timeout

    def _streams(self) -> tuple[asyncio.StreamReader, asyncio.StreamWriter]:
        if self._reader is None or self._writer is None:
            raise MpdConnectionError("Not connected")
        return self._reader, self._writer

    async def write_line(self, text: str) -> None:
        """Send one line terminated by a bare newline.

        Raises:
            ValueError: If text spans more than one line.
            MpdConnectionError: If the write fails.
        """
        if "\n" in text:
            raise ValueError(f"command must be a single line: {text!r}")
        _, writer = self._streams()
        try:
            writer.write(text.encode(ENCODING) + b"\n")
            await writer.drain()
        except OSError as e:
            self.abort()
            raise MpdConnectionError(f"Write failed: {e}") from e

    async def read_line(self, timeout: float | None = -1.0) -> str:
        """Read one line without its terminator.

        Args:
            timeout: Seconds to wait; -1 uses the transport default and
                None waits forever.

        Raises:
            MpdConnectionError: On EOF, stream errors or timeout.
            MpdProtocolError: If the line is not valid UTF-8.
        """
        reader, _ = self._streams()
        if timeout is not None and timeout < 0:
            timeout = self._timeout

        try:
            raw = await asyncio.wait_for(reader.readline(), timeout=timeout)
        except TimeoutError as e:
            self.abort()
            raise MpdConnectionError("Timed out waiting for response") from e
        except (OSError, asyncio.IncompleteReadError, asyncio.LimitOverrunError, ValueError) as e:
            self.abort()
            raise MpdConnectionError(f"Read failed: {e}") from e

        if not raw.endswith(b"\n"):
            self.abort()
            raise MpdConnectionError("Connection closed by server")

        line = raw[:-1]
        if line.endswith(b"\r"):
            line = line[:-1]
        try:
            return line.decode(ENCODING)
        except UnicodeDecodeError as e:
            raise MpdProtocolError("invalid UTF-8 in response", repr(line)) from e

    def abort(self) -> None:
        """Close the stream immediately and refuse further I/O."""
        writer = self._writer
        self._writer = None
        self._reader = None
        if writer is not None:
            writer.close()
            logger.debug("Transport aborted")

    async def close(self) -> None:
        """Close the stream and wait for it to shut down."""
        writer = self._writer
        self.abort()
        if writer is None:
            return
        try:
            await asyncio.wait_for(writer.wait_closed(), timeout=CLOSE_TIMEOUT)
        except (OSError, TimeoutError) as e:
            logger.debug("Expected error while closing MPD stream: %s", e)


class RequestSequencer:
    """Grants one command/response cycle at a time on a connection.

    Each cycle gets a strictly increasing token. The token is never sent
    to the server; it only checks that begin/end calls pair up.

    Example:
        async with sequencer.request() as token:
            await transport.write_line("status")
            ...
    """

    def __init__(self) -> None:
        """Initialize the sequencer."""
        self._lock = asyncio.Lock()
        self._last_token = 0
        self._current: int | None = None

    @property
    def in_flight(self) -> int | None:
        """Return the token of the running cycle, if any."""
        return self._current

    async def begin(self) -> int:
        """Wait for the connection and start a new cycle.

        Returns:
            The token that must be passed to end().
        """
        await self._lock.acquire()
        self._last_token += 1
        self._current = self._last_token
        return self._current

    def end(self, token: int) -> None:
        """Finish the cycle identified by token.

        Raises:
            RuntimeError: If token is not the cycle in flight.
        """
        if token != self._current:
            raise RuntimeError(f"request {token} is not in flight (current: {self._current})")
        self._current = None
        self._lock.release()

    @asynccontextmanager
    async def request(self) -> AsyncIterator[int]:
        """Run one cycle; the cycle ends even if the body raises."""
        token = await self.begin()
        try:
            yield token
        finally:
            self.end(token)
