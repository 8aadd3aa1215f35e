"""Test fixtures for mpdline tests."""

import asyncio
import contextlib
from collections.abc import AsyncGenerator, Awaitable, Callable
from unittest.mock import patch

import pytest
import pytest_asyncio

from mpdline.api.client import MpdClient

GREETING = b"OK MPD 0.23.5\n"


class MockStreamReader:
    """Mock asyncio StreamReader for testing."""

    def __init__(self, responses: list[bytes]) -> None:
        self._responses = responses
        self._index = 0
        self._buffer = b""

    async def readline(self) -> bytes:
        """Read a line from mock data."""
        while b"\n" not in self._buffer:
            if self._index >= len(self._responses):
                # EOF: return whatever is left, like StreamReader does
                data, self._buffer = self._buffer, b""
                return data
            self._buffer += self._responses[self._index]
            self._index += 1

        line, self._buffer = self._buffer.split(b"\n", 1)
        return line + b"\n"


class MockStreamWriter:
    """Mock asyncio StreamWriter for testing."""

    def __init__(self) -> None:
        self.data: list[bytes] = []
        self._closed = False

    def write(self, data: bytes) -> None:
        """Record written data."""
        self.data.append(data)

    async def drain(self) -> None:
        """Mock drain."""
        pass

    def close(self) -> None:
        """Mark as closed."""
        self._closed = True

    async def wait_closed(self) -> None:
        """Mock wait_closed."""
        pass

    def is_closing(self) -> bool:
        """Check if closing."""
        return self._closed

    @property
    def lines(self) -> list[str]:
        """Return the written data split into lines."""
        return b"".join(self.data).decode().splitlines()


@pytest.fixture
def mock_connection() -> Callable[[list[bytes]], tuple[MockStreamReader, MockStreamWriter]]:
    """Create mock connection for testing."""

    def _mock_connection(responses: list[bytes]) -> tuple[MockStreamReader, MockStreamWriter]:
        reader = MockStreamReader(responses)
        writer = MockStreamWriter()
        return reader, writer

    return _mock_connection


@pytest.fixture
def connected_client(
    mock_connection: Callable[[list[bytes]], tuple[MockStreamReader, MockStreamWriter]],
) -> Callable[..., Awaitable[tuple[MpdClient, MockStreamWriter]]]:
    """Create an MpdClient connected to scripted responses.

    The greeting is prepended; the writer only records what follows it.
    """

    async def _connected_client(*responses: bytes) -> tuple[MpdClient, MockStreamWriter]:
        reader, writer = mock_connection([GREETING, *responses])
        with patch("asyncio.open_connection", return_value=(reader, writer)):
            client = MpdClient("localhost")
            await client.connect()
        return client, writer

    return _connected_client


# -----------------------------------------------------------------------------
# Scripted MPD server
# -----------------------------------------------------------------------------


class MockMpdServer:
    """In-process MPD server answering from a table of canned responses.

    Commands not in the table are answered with "OK". A response of None
    means the server never answers that command. "idle" blocks until
    notify() is called or the client sends "noidle".
    """

    def __init__(self, greeting: str = "OK MPD 0.23.5") -> None:
        self.greeting = greeting
        self.responses: dict[str, str | None] = {}
        self.received: list[str] = []
        self._changes: asyncio.Queue[tuple[str, ...]] = asyncio.Queue()
        self._writers: set[asyncio.StreamWriter] = set()
        self._server: asyncio.Server | None = None
        self.host = "127.0.0.1"
        self.port = 0

    async def start(self) -> None:
        """Start listening on a free local port."""
        self._server = await asyncio.start_server(self._handle, self.host, 0)
        self.port = self._server.sockets[0].getsockname()[1]

    async def stop(self) -> None:
        """Close the listener and every client connection."""
        for writer in list(self._writers):
            writer.close()
        if self._server is not None:
            self._server.close()
            await asyncio.wait_for(self._server.wait_closed(), timeout=2.0)

    def notify(self, *subsystems: str) -> None:
        """Report changed subsystems to the next (or pending) idle."""
        self._changes.put_nowait(subsystems)

    async def wait_for_command(self, command: str, timeout: float = 2.0) -> None:
        """Wait until the server has received a line starting with command."""

        async def _poll() -> None:
            while not any(line.startswith(command) for line in self.received):
                await asyncio.sleep(0.01)

        await asyncio.wait_for(_poll(), timeout=timeout)

    async def _handle(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        self._writers.add(writer)
        try:
            writer.write(f"{self.greeting}\n".encode())
            await writer.drain()
            while True:
                raw = await reader.readline()
                if not raw:
                    break
                line = raw.decode().rstrip("\n")
                self.received.append(line)
                if line == "close":
                    break
                if line.startswith("idle"):
                    await self._idle(reader, writer)
                    continue
                if line == "noidle":
                    continue
                response = self.responses.get(line, "OK\n")
                if response is None:
                    continue
                writer.write(response.encode())
                await writer.drain()
        except ConnectionError:
            pass
        finally:
            self._writers.discard(writer)
            writer.close()

    async def _idle(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        read = asyncio.ensure_future(reader.readline())
        change = asyncio.ensure_future(self._changes.get())
        await asyncio.wait({read, change}, return_when=asyncio.FIRST_COMPLETED)
        if change.done():
            read.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await read
            body = "".join(f"changed: {name}\n" for name in change.result())
            writer.write(f"{body}OK\n".encode())
        else:
            change.cancel()
            self.received.append(read.result().decode().rstrip("\n"))
            writer.write(b"OK\n")
        await writer.drain()


@pytest_asyncio.fixture
async def mpd_server() -> AsyncGenerator[MockMpdServer, None]:
    """Provide a running scripted MPD server."""
    server = MockMpdServer()
    await server.start()
    yield server
    await server.stop()
