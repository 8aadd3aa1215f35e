"""Async MPD client.

MpdClient wraps one MpdConnection and exposes the MPD commands as typed
coroutines. Each method formats one command and hands it to one of the
connection's four primitives.

Example:
    async with MpdClient("192.168.1.100") as client:
        status = await client.status()
        if status.is_playing:
            track = await client.currentsong()
            print(f"Playing: {track.title} by {track.artist}")
"""

import logging
from typing import Self

from mpdline.api.connection import (
    COMMAND_TIMEOUT,
    CONNECT_TIMEOUT,
    DEFAULT_PORT,
    MpdConnection,
)
from mpdline.api.protocol import Attrs, MpdConnectionError, MpdProtocolError, Range
from mpdline.api.types import (
    MpdStatus,
    MpdStoredPlaylist,
    MpdTrack,
    parse_status,
    parse_stored_playlist,
    parse_track,
)

logger = logging.getLogger(__name__)

# Entry types returned by lsinfo/listallinfo
_ENTRY_KEYS = ("file", "directory", "playlist")


class MpdClient:
    """Async MPD client.

    Attributes:
        host: MPD server hostname or IP.
        port: MPD server port (default 6600).
        password: Optional password for authentication.
    """

    def __init__(
        self,
        host: str,
        port: int = DEFAULT_PORT,
        password: str = "",
        *,
        connect_timeout: float = CONNECT_TIMEOUT,
        timeout: float | None = COMMAND_TIMEOUT,
    ) -> None:
        """Initialize MPD client.

        Args:
            host: MPD server hostname or IP.
            port: MPD server port.
            password: Optional password for authentication.
            connect_timeout: Seconds allowed to connect.
            timeout: Seconds allowed for each command response.
        """
        self.host = host
        self.port = port
        self.password = password
        self._connect_timeout = connect_timeout
        self._timeout = timeout
        self._connection: MpdConnection | None = None

    @property
    def is_connected(self) -> bool:
        """Return True if connected to MPD."""
        return self._connection is not None and self._connection.is_connected

    @property
    def version(self) -> str:
        """Return MPD protocol version from initial handshake."""
        return self._connection.version if self._connection else ""

    @property
    def connection(self) -> MpdConnection:
        """Return the underlying connection.

        Raises:
            MpdConnectionError: If not connected.
        """
        if self._connection is None:
            raise MpdConnectionError("Not connected")
        return self._connection

    async def connect(self) -> None:
        """Connect to MPD server.

        Does nothing while connected; a broken connection is replaced.

        Raises:
            MpdDialError: If connection fails.
            MpdCommandError: If authentication fails.
        """
        if self._connection is not None:
            if self._connection.is_connected:
                return
            # Broken by an I/O error or timeout; replace it
            logger.debug("Discarding broken MPD connection before reconnecting")
            await self.disconnect()
        self._connection = await MpdConnection.dial(
            self.host,
            self.port,
            self.password,
            connect_timeout=self._connect_timeout,
            timeout=self._timeout,
        )

    async def disconnect(self) -> None:
        """Disconnect from MPD server."""
        connection = self._connection
        self._connection = None
        if connection is not None:
            await connection.close()

    close = disconnect

    async def __aenter__(self) -> Self:
        """Async context manager entry."""
        await self.connect()
        return self

    async def __aexit__(self, *_: object) -> None:
        """Async context manager exit."""
        await self.disconnect()

    # -------------------------------------------------------------------------
    # Status & Info Commands
    # -------------------------------------------------------------------------

    async def status(self) -> MpdStatus:
        """Get current player status."""
        return parse_status(await self.connection.command_attrs("status"))

    async def currentsong(self) -> MpdTrack | None:
        """Get current song information.

        Returns:
            MpdTrack if a song is loaded, None otherwise.
        """
        data = await self.connection.command_attrs("currentsong")
        if "file" not in data:
            return None
        return parse_track(data)

    async def stats(self) -> Attrs:
        """Get database statistics (artists, albums, songs, uptime, etc.)."""
        return await self.connection.command_attrs("stats")

    async def ping(self) -> None:
        """Ping MPD server to check connection."""
        await self.connection.command_ok("ping")

    async def idle(self, *subsystems: str) -> list[str]:
        """Wait for changes in specified subsystems.

        Args:
            *subsystems: Subsystems to watch (player, mixer, options, etc.).
                         If empty, watches all subsystems.

        Returns:
            List of changed subsystems (empty if cancelled by noidle()).
        """
        return await self.connection.idle(*subsystems)

    async def noidle(self) -> None:
        """Cancel a pending idle()."""
        await self.connection.noidle()

    # -------------------------------------------------------------------------
    # Playback Control
    # -------------------------------------------------------------------------

    async def play(self, pos: int = -1) -> None:
        """Start playback.

        Args:
            pos: Position in playlist to start from, or -1 for current.
        """
        if pos >= 0:
            await self.connection.command_ok("play", pos)
        else:
            await self.connection.command_ok("play")

    async def playid(self, song_id: int = -1) -> None:
        """Start playback at the song with the given id, or -1 for current."""
        if song_id >= 0:
            await self.connection.command_ok("playid", song_id)
        else:
            await self.connection.command_ok("playid")

    async def pause(self, state: bool | None = None) -> None:
        """Pause or resume playback.

        Args:
            state: True to pause, False to resume, None to toggle.
        """
        if state is None:
            await self.connection.command_ok("pause")
        else:
            await self.connection.command_ok("pause", state)

    async def stop(self) -> None:
        """Stop playback."""
        await self.connection.command_ok("stop")

    async def next(self) -> None:
        """Skip to next track."""
        await self.connection.command_ok("next")

    async def previous(self) -> None:
        """Skip to previous track."""
        await self.connection.command_ok("previous")

    async def seek(self, pos: int, time: float) -> None:
        """Seek to time (seconds) in the song at playlist position pos."""
        await self.connection.command_ok("seek", pos, time)

    async def seekid(self, song_id: int, time: float) -> None:
        """Seek to time (seconds) in the song with the given id."""
        await self.connection.command_ok("seekid", song_id, time)

    async def seekcur(self, time: float, relative: bool = False) -> None:
        """Seek in the current track.

        Args:
            time: Position in seconds, or offset if relative.
            relative: Seek relative to the current position.
        """
        if relative:
            await self.connection.command_ok("seekcur", f"{time:+g}")
        else:
            await self.connection.command_ok("seekcur", time)

    async def setvol(self, volume: int) -> None:
        """Set volume.

        Args:
            volume: Volume level (0-100).
        """
        await self.connection.command_ok("setvol", max(0, min(100, volume)))

    async def random(self, state: bool) -> None:
        """Enable or disable random playback."""
        await self.connection.command_ok("random", state)

    async def repeat(self, state: bool) -> None:
        """Enable or disable repeat mode."""
        await self.connection.command_ok("repeat", state)

    async def single(self, state: bool) -> None:
        """Stop after the current song (or repeat it, with repeat on)."""
        await self.connection.command_ok("single", state)

    async def consume(self, state: bool) -> None:
        """Remove songs from the queue once played."""
        await self.connection.command_ok("consume", state)

    # -------------------------------------------------------------------------
    # Queue
    # -------------------------------------------------------------------------

    async def _tracks(self, command: str, *args: str | int | Range) -> list[MpdTrack]:
        records = await self.connection.command_attrs_list(command, *args, start_keys=("file",))
        return [parse_track(record) for record in records]

    async def playlistinfo(self, start: int = -1, end: int = -1) -> list[MpdTrack]:
        """List songs in the queue.

        Both negative lists the whole queue; only end negative lists the
        song at start; otherwise songs in [start, end).

        Raises:
            ValueError: If start is negative but end is not.
        """
        if start < 0 and end >= 0:
            raise ValueError("negative start index")
        if start < 0:
            return await self._tracks("playlistinfo")
        if end < 0:
            return await self._tracks("playlistinfo", start)
        return await self._tracks("playlistinfo", Range(start, end))

    async def playlistid(self, song_id: int = -1) -> list[MpdTrack]:
        """List the song with the given id, or the whole queue if negative."""
        if song_id >= 0:
            return await self._tracks("playlistid", song_id)
        return await self._tracks("playlistid")

    async def playlistfind(self, tag: str, needle: str) -> list[MpdTrack]:
        """Find queue songs whose tag matches needle exactly."""
        return await self._tracks("playlistfind", tag, needle)

    async def playlistsearch(self, tag: str, needle: str) -> list[MpdTrack]:
        """Find queue songs whose tag contains needle (case-insensitive)."""
        return await self._tracks("playlistsearch", tag, needle)

    async def plchanges(self, version: int) -> list[MpdTrack]:
        """List queue songs changed since playlist version."""
        return await self._tracks("plchanges", version)

    async def add(self, uri: str) -> None:
        """Add a file or directory (recursively) to the queue."""
        await self.connection.command_ok("add", uri)

    async def addid(self, uri: str, pos: int = -1) -> int:
        """Add a song to the queue and return its id.

        Args:
            uri: Song to add.
            pos: Queue position to insert at, or -1 to append.

        Raises:
            MpdProtocolError: If the server does not return an Id.
        """
        if pos >= 0:
            attrs = await self.connection.command_attrs("addid", uri, pos)
        else:
            attrs = await self.connection.command_attrs("addid", uri)
        if "Id" not in attrs:
            raise MpdProtocolError("addid did not return Id")
        return int(attrs["Id"])

    async def delete(self, start: int, end: int = -1) -> None:
        """Delete the song at start, or songs in [start, end).

        Raises:
            ValueError: If start is negative.
        """
        if start < 0:
            raise ValueError("negative start index")
        if end < 0:
            await self.connection.command_ok("delete", start)
        else:
            await self.connection.command_ok("delete", Range(start, end))

    async def deleteid(self, song_id: int) -> None:
        """Delete the song with the given id from the queue."""
        await self.connection.command_ok("deleteid", song_id)

    async def move(self, start: int, end: int, position: int) -> None:
        """Move the song at start (or songs in [start, end)) to position.

        Raises:
            ValueError: If start is negative.
        """
        if start < 0:
            raise ValueError("negative start index")
        if end < 0:
            await self.connection.command_ok("move", start, position)
        else:
            await self.connection.command_ok("move", Range(start, end), position)

    async def moveid(self, song_id: int, position: int) -> None:
        """Move the song with the given id to position."""
        await self.connection.command_ok("moveid", song_id, position)

    async def clear(self) -> None:
        """Clear the queue."""
        await self.connection.command_ok("clear")

    async def shuffle(self, start: int = -1, end: int = -1) -> None:
        """Shuffle songs in [start, end), or the whole queue if either is negative."""
        if start < 0 or end < 0:
            await self.connection.command_ok("shuffle")
        else:
            await self.connection.command_ok("shuffle", Range(start, end))

    # -------------------------------------------------------------------------
    # Database
    # -------------------------------------------------------------------------

    async def list_files(self) -> list[str]:
        """Return every file URI in the database."""
        return await self.connection.command_list("list", "file", key="file")

    async def list_tag(self, tag: str, *query: str) -> list[str]:
        """List unique values of tag, optionally filtered.

        Example:
            albums = await client.list_tag("album", "artist", "Miles Davis")
        """
        return await self.connection.command_list("list", tag, *query, key=None)

    async def find(self, *query: str) -> list[MpdTrack]:
        """Find songs matching exactly, e.g. find("artist", "X", "album", "Y")."""
        return await self._tracks("find", *query)

    async def search(self, *query: str) -> list[MpdTrack]:
        """Find songs matching case-insensitively by substring."""
        return await self._tracks("search", *query)

    async def lsinfo(self, uri: str = "") -> list[Attrs]:
        """List the contents of a directory (files, subdirectories, playlists)."""
        if uri:
            return await self.connection.command_attrs_list("lsinfo", uri, start_keys=_ENTRY_KEYS)
        return await self.connection.command_attrs_list("lsinfo", start_keys=_ENTRY_KEYS)

    async def listallinfo(self, uri: str = "/") -> list[MpdTrack]:
        """Return songs inside (or matching) uri, recursively.

        Directory and playlist entries are skipped.
        """
        records = await self.connection.command_attrs_list(
            "listallinfo", uri, start_keys=_ENTRY_KEYS
        )
        return [parse_track(record) for record in records if "file" in record]

    async def update(self, uri: str = "") -> int:
        """Start a database update and return its job id.

        Args:
            uri: Directory or file to update; empty updates everything.

        Raises:
            MpdProtocolError: If the server does not report a job id.
        """
        if uri:
            attrs = await self.connection.command_attrs("update", uri)
        else:
            attrs = await self.connection.command_attrs("update")
        job = attrs.get("updating_db")
        if job is None:
            raise MpdProtocolError("update did not return updating_db")
        try:
            return int(job)
        except ValueError as e:
            raise MpdProtocolError("invalid job id", f"updating_db: {job}") from e

    # -------------------------------------------------------------------------
    # Stored Playlists
    # -------------------------------------------------------------------------

    async def listplaylists(self) -> list[MpdStoredPlaylist]:
        """List stored playlists."""
        records = await self.connection.command_attrs_list(
            "listplaylists", start_keys=("playlist",)
        )
        return [parse_stored_playlist(record) for record in records]

    async def listplaylistinfo(self, name: str) -> list[MpdTrack]:
        """List the songs of a stored playlist."""
        return await self._tracks("listplaylistinfo", name)

    async def load(self, name: str, start: int = -1, end: int = -1) -> None:
        """Load a stored playlist into the queue, optionally only [start, end)."""
        if start < 0 or end < 0:
            await self.connection.command_ok("load", name)
        else:
            await self.connection.command_ok("load", name, Range(start, end))

    async def playlistadd(self, name: str, uri: str) -> None:
        """Add uri to a stored playlist."""
        await self.connection.command_ok("playlistadd", name, uri)

    async def playlistclear(self, name: str) -> None:
        """Remove all songs from a stored playlist."""
        await self.connection.command_ok("playlistclear", name)

    async def playlistdelete(self, name: str, pos: int) -> None:
        """Delete the song at pos from a stored playlist."""
        await self.connection.command_ok("playlistdelete", name, pos)

    async def playlistmove(self, name: str, song_id: int, pos: int) -> None:
        """Move a song within a stored playlist."""
        await self.connection.command_ok("playlistmove", name, song_id, pos)

    async def rename(self, name: str, new_name: str) -> None:
        """Rename a stored playlist."""
        await self.connection.command_ok("rename", name, new_name)

    async def rm(self, name: str) -> None:
        """Delete a stored playlist."""
        await self.connection.command_ok("rm", name)

    async def save(self, name: str) -> None:
        """Save the queue as a stored playlist."""
        await self.connection.command_ok("save", name)
