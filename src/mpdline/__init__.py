"""mpdline - asyncio client for the Music Player Daemon protocol."""

from mpdline.api import (
    MpdClient,
    MpdCommandError,
    MpdConnection,
    MpdConnectionError,
    MpdDialError,
    MpdError,
    MpdProtocolError,
)

__version__ = "0.1.0"

__all__ = [
    "MpdClient",
    "MpdCommandError",
    "MpdConnection",
    "MpdConnectionError",
    "MpdDialError",
    "MpdError",
    "MpdProtocolError",
    "__version__",
]
