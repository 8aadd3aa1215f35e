"""Tests for MPD connections against a scripted server."""

import asyncio
from unittest.mock import patch

import pytest

from mpdline.api.connection import IdleState, MpdConnection
from mpdline.api.protocol import (
    MpdCommandError,
    MpdConnectionError,
    MpdGreetingError,
    MpdProtocolError,
)
from mpdline.api.transport import LineTransport

from conftest import GREETING, MockMpdServer, MockStreamReader, MockStreamWriter


async def dial(server: MockMpdServer, **kwargs: object) -> MpdConnection:
    return await MpdConnection.dial(server.host, server.port, **kwargs)  # type: ignore[arg-type]


class StalledStreamWriter(MockStreamWriter):
    """Writer whose drain never completes."""

    def __init__(self) -> None:
        super().__init__()
        self.draining = asyncio.Event()

    async def drain(self) -> None:
        """Block until cancelled."""
        self.draining.set()
        await asyncio.Event().wait()


class TestDial:
    """Tests for dialing and the greeting."""

    @pytest.mark.asyncio
    async def test_dial_reads_version(self, mpd_server: MockMpdServer) -> None:
        """Test the version is taken from the greeting."""
        conn = await dial(mpd_server)
        try:
            assert conn.is_connected
            assert conn.version == "0.23.5"
            assert conn.idle_state is IdleState.CONNECTED
        finally:
            await conn.close()

    @pytest.mark.asyncio
    async def test_dial_rejects_non_mpd_greeting(self, mpd_server: MockMpdServer) -> None:
        """Test a server that is not MPD fails with MpdGreetingError."""
        mpd_server.greeting = "SSH-2.0-OpenSSH_9.6"
        with pytest.raises(MpdGreetingError) as excinfo:
            await dial(mpd_server)
        assert excinfo.value.line == "SSH-2.0-OpenSSH_9.6"

    @pytest.mark.asyncio
    async def test_dial_sends_password(self, mpd_server: MockMpdServer) -> None:
        """Test the password is sent right after the greeting."""
        conn = await dial(mpd_server, password="secret")
        try:
            await conn.command_ok("ping")
            assert mpd_server.received[:2] == ['password "secret"', "ping"]
        finally:
            await conn.close()

    @pytest.mark.asyncio
    async def test_dial_wrong_password(self, mpd_server: MockMpdServer) -> None:
        """Test a rejected password raises MpdCommandError."""
        mpd_server.responses['password "wrong"'] = "ACK [3@0] {password} incorrect password\n"
        with pytest.raises(MpdCommandError) as excinfo:
            await dial(mpd_server, password="wrong")
        assert excinfo.value.code == 3

    @pytest.mark.asyncio
    async def test_dial_rejects_newline_in_password(self) -> None:
        """Test a multi-line password is refused before connecting."""
        with patch("asyncio.open_connection") as open_connection:
            with pytest.raises(ValueError):
                await MpdConnection.dial("localhost", password="a\nb")
        open_connection.assert_not_called()

    @pytest.mark.asyncio
    async def test_dial_closes_stream_on_unexpected_error(self) -> None:
        """Test the stream is closed when the handshake fails with a non-MPD error."""
        reader, writer = MockStreamReader([GREETING]), MockStreamWriter()
        with (
            patch("asyncio.open_connection", return_value=(reader, writer)),
            patch.object(MpdConnection, "handshake", side_effect=RuntimeError("boom")),
            pytest.raises(RuntimeError),
        ):
            await MpdConnection.dial("localhost")
        assert writer.is_closing()

    @pytest.mark.asyncio
    async def test_close_sends_close(self, mpd_server: MockMpdServer) -> None:
        """Test close() says goodbye and can be repeated."""
        conn = await dial(mpd_server)
        await conn.close()
        await conn.close()
        assert not conn.is_connected
        await mpd_server.wait_for_command("close")


class TestCommands:
    """Tests for command cycles."""

    @pytest.mark.asyncio
    async def test_command_attrs(self, mpd_server: MockMpdServer) -> None:
        """Test an attribute block is returned as a dict."""
        mpd_server.responses["status"] = "volume: 50\nstate: play\nOK\n"
        async with await dial(mpd_server) as conn:
            assert await conn.command_attrs("status") == {"volume": "50", "state": "play"}

    @pytest.mark.asyncio
    async def test_command_list(self, mpd_server: MockMpdServer) -> None:
        """Test a flat list is returned in order."""
        mpd_server.responses['list "file"'] = "file: a.mp3\nfile: b.mp3\nOK\n"
        async with await dial(mpd_server) as conn:
            assert await conn.command_list("list", "file", key="file") == ["a.mp3", "b.mp3"]

    @pytest.mark.asyncio
    async def test_command_attrs_list(self, mpd_server: MockMpdServer) -> None:
        """Test records are grouped by the start key."""
        mpd_server.responses["playlistinfo"] = (
            "file: a.mp3\nPos: 0\nfile: b.mp3\nPos: 1\nOK\n"
        )
        async with await dial(mpd_server) as conn:
            records = await conn.command_attrs_list("playlistinfo")
        assert records == [{"file": "a.mp3", "Pos": "0"}, {"file": "b.mp3", "Pos": "1"}]

    @pytest.mark.asyncio
    async def test_ack_keeps_connection(self, mpd_server: MockMpdServer) -> None:
        """Test the connection is usable after a command error."""
        mpd_server.responses["play 99"] = "ACK [2@0] {play} Bad song index\n"
        async with await dial(mpd_server) as conn:
            with pytest.raises(MpdCommandError):
                await conn.command_ok("play", 99)
            assert conn.is_connected
            await conn.command_ok("ping")

    @pytest.mark.asyncio
    async def test_unexpected_response(self, mpd_server: MockMpdServer) -> None:
        """Test data where only OK is expected raises MpdProtocolError."""
        mpd_server.responses["stop"] = "volume: 10\nOK\n"
        async with await dial(mpd_server) as conn:
            with pytest.raises(MpdProtocolError):
                await conn.command_ok("stop")

    @pytest.mark.asyncio
    async def test_timeout_breaks_connection(self, mpd_server: MockMpdServer) -> None:
        """Test a command without answer times out and kills the connection."""
        mpd_server.responses["stats"] = None
        conn = await dial(mpd_server, timeout=0.1)
        with pytest.raises(MpdConnectionError):
            await conn.command_attrs("stats")
        assert not conn.is_connected
        with pytest.raises(MpdConnectionError):
            await conn.command_ok("ping")
        await conn.close()

    @pytest.mark.asyncio
    async def test_cancelled_command_drops_connection(self, mpd_server: MockMpdServer) -> None:
        """Test cancelling a command mid-response closes the connection."""
        mpd_server.responses["stats"] = None
        conn = await dial(mpd_server)
        task = asyncio.create_task(conn.command_attrs("stats"))
        await mpd_server.wait_for_command("stats")
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert not conn.is_connected
        await conn.close()

    @pytest.mark.asyncio
    async def test_cancelled_write_drops_connection(self) -> None:
        """Test cancelling a command while its write is draining closes the connection."""
        writer = StalledStreamWriter()
        transport = LineTransport(MockStreamReader([]), writer)  # type: ignore[arg-type]
        conn = MpdConnection(transport, "0.23.5")
        task = asyncio.create_task(conn.command_ok("ping"))
        await writer.draining.wait()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert writer.lines == ["ping"]
        assert not conn.is_connected

    @pytest.mark.asyncio
    async def test_cancelled_idle_write_drops_connection(self) -> None:
        """Test cancelling idle while its write is draining closes the connection."""
        writer = StalledStreamWriter()
        transport = LineTransport(MockStreamReader([]), writer)  # type: ignore[arg-type]
        conn = MpdConnection(transport, "0.23.5")
        task = asyncio.create_task(conn.idle("player"))
        await writer.draining.wait()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert not conn.is_connected
        assert conn.idle_state is IdleState.CONNECTED

    @pytest.mark.asyncio
    async def test_concurrent_commands_get_own_responses(
        self, mpd_server: MockMpdServer
    ) -> None:
        """Test N concurrent commands each receive their own response."""
        count = 20
        for i in range(count):
            mpd_server.responses[f"playlistid {i}"] = f"file: song{i}.mp3\nId: {i}\nOK\n"
        async with await dial(mpd_server) as conn:
            results = await asyncio.gather(
                *(conn.command_attrs_list("playlistid", i) for i in range(count))
            )
        for i, records in enumerate(results):
            assert records == [{"file": f"song{i}.mp3", "Id": str(i)}]


class TestIdle:
    """Tests for idle and noidle."""

    @pytest.mark.asyncio
    async def test_idle_returns_changes(self, mpd_server: MockMpdServer) -> None:
        """Test idle returns the changed subsystems."""
        async with await dial(mpd_server) as conn:
            task = asyncio.create_task(conn.idle("player", "mixer"))
            await mpd_server.wait_for_command("idle")
            assert conn.idle_state is IdleState.AWAITING_IDLE
            mpd_server.notify("player", "mixer")
            assert await asyncio.wait_for(task, timeout=2.0) == ["player", "mixer"]
            assert conn.idle_state is IdleState.CONNECTED
        assert "idle player mixer" in mpd_server.received

    @pytest.mark.asyncio
    async def test_idle_blocks_until_change(self, mpd_server: MockMpdServer) -> None:
        """Test idle does not time out on its own."""
        async with await dial(mpd_server, timeout=0.05) as conn:
            task = asyncio.create_task(conn.idle())
            await asyncio.sleep(0.2)
            assert not task.done()
            mpd_server.notify("database")
            assert await asyncio.wait_for(task, timeout=2.0) == ["database"]

    @pytest.mark.asyncio
    async def test_noidle_from_other_task(self, mpd_server: MockMpdServer) -> None:
        """Test noidle makes a pending idle return."""
        async with await dial(mpd_server) as conn:
            task = asyncio.create_task(conn.idle())
            await mpd_server.wait_for_command("idle")
            await conn.noidle()
            assert await asyncio.wait_for(task, timeout=2.0) == []
            assert mpd_server.received[-1] == "noidle"
            await conn.command_ok("ping")
        await mpd_server.wait_for_command("close")
        assert mpd_server.received[-2:] == ["ping", "close"]

    @pytest.mark.asyncio
    async def test_no_command_while_idle(self, mpd_server: MockMpdServer) -> None:
        """Test other commands are refused while idling."""
        async with await dial(mpd_server) as conn:
            task = asyncio.create_task(conn.idle())
            await mpd_server.wait_for_command("idle")
            with pytest.raises(RuntimeError):
                await conn.command_ok("ping")
            with pytest.raises(RuntimeError):
                await conn.idle()
            await conn.noidle()
            await asyncio.wait_for(task, timeout=2.0)
        assert "ping" not in mpd_server.received

    @pytest.mark.asyncio
    async def test_cancel_idle_task_keeps_connection(self, mpd_server: MockMpdServer) -> None:
        """Test cancelling the idling task ends idle cleanly."""
        async with await dial(mpd_server) as conn:
            task = asyncio.create_task(conn.idle())
            await mpd_server.wait_for_command("idle")
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task
            assert conn.is_connected
            assert conn.idle_state is IdleState.CONNECTED
            await conn.command_ok("ping")
        assert "noidle" in mpd_server.received

    @pytest.mark.asyncio
    async def test_noidle_without_idle(self, mpd_server: MockMpdServer) -> None:
        """Test noidle outside idle is sent without waiting for an answer."""
        async with await dial(mpd_server) as conn:
            await conn.noidle()
            await conn.command_ok("ping")
        assert mpd_server.received[:2] == ["noidle", "ping"]

    @pytest.mark.asyncio
    async def test_idle_rejects_bad_subsystem(self, mpd_server: MockMpdServer) -> None:
        """Test subsystem names are validated before sending."""
        async with await dial(mpd_server) as conn:
            with pytest.raises(ValueError):
                await conn.idle("player\nstop")
            assert conn.idle_state is IdleState.CONNECTED
