"""MPD protocol client.

This package implements the client side of the MPD control protocol:
line transport, request sequencing, response parsing and the typed
command façade built on top of them.

Example:
    from mpdline.api import MpdClient

    async with MpdClient("192.168.1.100") as client:
        status = await client.status()
        track = await client.currentsong()
"""

from mpdline.api.client import MpdClient
from mpdline.api.connection import IdleState, MpdConnection
from mpdline.api.protocol import (
    Attrs,
    MpdCommandError,
    MpdConnectionError,
    MpdDialError,
    MpdError,
    MpdGreetingError,
    MpdProtocolError,
    Range,
    ResponseKind,
    ResponseParser,
)
from mpdline.api.types import MpdStatus, MpdStoredPlaylist, MpdTrack

__all__ = [
    "Attrs",
    "IdleState",
    "MpdClient",
    "MpdCommandError",
    "MpdConnection",
    "MpdConnectionError",
    "MpdDialError",
    "MpdError",
    "MpdGreetingError",
    "MpdProtocolError",
    "MpdStatus",
    "MpdStoredPlaylist",
    "MpdTrack",
    "Range",
    "ResponseKind",
    "ResponseParser",
]
