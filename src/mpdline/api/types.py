"""Typed views of MPD attribute records.

MPD answers with flat "key: value" records. The dataclasses here give the
commonly used keys proper types; the raw record stays available where
callers may need tags the dataclass does not model.
"""

from dataclasses import dataclass, field, fields
from typing import Any

from mpdline.api.protocol import Attrs, MpdProtocolError

# MPD key name mappings to dataclass field names (keys compared lowercased)
_TRACK_KEY_MAP: dict[str, str] = {
    "file": "file",
    "title": "title",
    "artist": "artist",
    "album": "album",
    "albumartist": "album_artist",
    "time": "duration",
    "duration": "duration",
    "track": "track",
    "date": "date",
    "genre": "genre",
    "pos": "pos",
    "id": "id",
}

_STATUS_KEY_MAP: dict[str, str] = {
    "state": "state",
    "volume": "volume",
    "repeat": "repeat",
    "random": "random",
    "single": "single",
    "consume": "consume",
    "playlist": "playlist_version",
    "playlistlength": "playlist_length",
    "song": "song",
    "songid": "song_id",
    "nextsong": "next_song",
    "nextsongid": "next_song_id",
    "elapsed": "elapsed",
    "duration": "duration",
    "time": "_time",  # Special: "elapsed:duration" format
    "bitrate": "bitrate",
    "xfade": "xfade",
    "audio": "audio",
    "updating_db": "updating_db",
    "error": "error",
}


@dataclass(frozen=True)
class MpdTrack:
    """A song as returned by currentsong, playlistinfo, find, etc.

    Attributes:
        file: Path to the audio file in MPD's music directory.
        title: Track title from tags.
        artist: Artist name(s) from tags.
        album: Album name from tags.
        album_artist: Album artist (if different from track artist).
        duration: Track duration in seconds.
        track: Track number (e.g., "3" or "3/12").
        date: Release date/year.
        genre: Genre tag.
        pos: Position in the current playlist, -1 outside the queue.
        id: MPD song ID in the current playlist, -1 outside the queue.
        attrs: The raw attribute record the track was parsed from.
    """

    file: str
    title: str = ""
    artist: str = ""
    album: str = ""
    album_artist: str = ""
    duration: float = 0.0
    track: str = ""
    date: str = ""
    genre: str = ""
    pos: int = -1
    id: int = -1
    attrs: Attrs = field(default_factory=dict, compare=False, repr=False)

    @property
    def display_title(self) -> str:
        """Return title for display, with filename fallback."""
        if self.title:
            return self.title
        # Extract filename without path and extension
        name = self.file.rsplit("/", 1)[-1]
        if "." in name:
            name = name.rsplit(".", 1)[0]
        return name

    @property
    def display_artist(self) -> str:
        """Return artist for display, falling back to album_artist if empty."""
        return self.artist or self.album_artist or ""


@dataclass(frozen=True)
class MpdStatus:
    """MPD player status.

    Attributes:
        state: Player state - "play", "pause", or "stop".
        volume: Volume level (0-100), or -1 if not available.
        repeat: Repeat mode enabled.
        random: Random/shuffle mode enabled.
        single: Single mode (stop after current track).
        consume: Consume mode (remove tracks after playing).
        playlist_version: Version of the queue, bumped on every change.
        playlist_length: Number of songs in the queue.
        song: Current song position in playlist.
        song_id: Current song ID.
        next_song: Position of the next song.
        next_song_id: ID of the next song.
        elapsed: Elapsed time in seconds.
        duration: Total duration of current track in seconds.
        bitrate: Current audio bitrate in kbps.
        xfade: Crossfade in seconds.
        audio: Audio format string (e.g., "44100:16:2").
        updating_db: Job id of a running database update, or -1.
        error: Error message if any.
    """

    state: str = "stop"
    volume: int = -1
    repeat: bool = False
    random: bool = False
    single: bool = False
    consume: bool = False
    playlist_version: int = 0
    playlist_length: int = 0
    song: int = -1
    song_id: int = -1
    next_song: int = -1
    next_song_id: int = -1
    elapsed: float = 0.0
    duration: float = 0.0
    bitrate: int = 0
    xfade: int = 0
    audio: str = ""
    updating_db: int = -1
    error: str = ""

    @property
    def is_playing(self) -> bool:
        """Return True if currently playing."""
        return self.state == "play"

    @property
    def is_paused(self) -> bool:
        """Return True if paused."""
        return self.state == "pause"

    @property
    def is_stopped(self) -> bool:
        """Return True if stopped."""
        return self.state == "stop"

    @property
    def progress(self) -> float:
        """Return playback progress as a fraction (0.0 to 1.0)."""
        if self.duration <= 0:
            return 0.0
        return min(1.0, self.elapsed / self.duration)


@dataclass(frozen=True)
class MpdStoredPlaylist:
    """A stored playlist from listplaylists."""

    name: str
    last_modified: str = ""


def _convert(key: str, value: str, field_type: Any) -> Any:
    try:
        if field_type is int:
            return int(value)
        if field_type is float:
            return float(value)
    except ValueError as e:
        raise MpdProtocolError("invalid value", f"{key}: {value}") from e
    if field_type is bool:
        return value == "1"
    return value


def parse_track(data: Attrs) -> MpdTrack:
    """Parse an attribute record into MpdTrack.

    Args:
        data: Record as returned by the response parser.

    Returns:
        MpdTrack instance.

    Raises:
        MpdProtocolError: If a numeric field does not parse.
    """
    kwargs: dict[str, Any] = {}
    field_types = {f.name: f.type for f in fields(MpdTrack)}
    lowered = {key.lower(): value for key, value in data.items()}

    for mpd_key, field_name in _TRACK_KEY_MAP.items():
        if mpd_key not in lowered:
            continue
        kwargs[field_name] = _convert(mpd_key, lowered[mpd_key], field_types.get(field_name))

    # file is required
    if "file" not in kwargs:
        kwargs["file"] = ""

    return MpdTrack(**kwargs, attrs=dict(data))


def parse_status(data: Attrs) -> MpdStatus:
    """Parse status data into MpdStatus.

    Args:
        data: Record as returned by the response parser.

    Returns:
        MpdStatus instance.

    Raises:
        MpdProtocolError: If a numeric field does not parse.
    """
    kwargs: dict[str, Any] = {}
    field_types = {f.name: f.type for f in fields(MpdStatus)}

    for mpd_key, field_name in _STATUS_KEY_MAP.items():
        if mpd_key not in data:
            continue

        value = data[mpd_key]

        # Special handling for "time" which is "elapsed:duration"
        if field_name == "_time":
            if ":" in value:
                elapsed_str, duration_str = value.split(":", 1)
                if "elapsed" not in data:
                    kwargs["elapsed"] = _convert(mpd_key, elapsed_str, float)
                if "duration" not in data:
                    kwargs["duration"] = _convert(mpd_key, duration_str, float)
            continue

        kwargs[field_name] = _convert(mpd_key, value, field_types.get(field_name))

    return MpdStatus(**kwargs)


def parse_stored_playlist(data: Attrs) -> MpdStoredPlaylist:
    """Parse a listplaylists record into MpdStoredPlaylist."""
    return MpdStoredPlaylist(
        name=data.get("playlist", ""),
        last_modified=data.get("Last-Modified", ""),
    )
