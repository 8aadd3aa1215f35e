"""Command-line entry point for mpdline."""

import argparse
import asyncio
import logging
import sys
from collections.abc import Awaitable, Callable

from mpdline import __version__
from mpdline.api.client import MpdClient
from mpdline.api.protocol import MpdError
from mpdline.api.types import MpdStatus, MpdTrack
from mpdline.core.config import ClientConfig
from mpdline.core.discovery import ServerDiscovery

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

Command = Callable[[MpdClient, argparse.Namespace], Awaitable[None]]


def format_track(track: MpdTrack) -> str:
    """Format a track as "Artist - Title" with a filename fallback."""
    artist = track.display_artist
    if artist:
        return f"{artist} - {track.display_title}"
    return track.display_title


def format_status(status: MpdStatus) -> str:
    """Format the player status like mpc's status line."""
    flags = " ".join(
        f"{name}: {'on' if value else 'off'}"
        for name, value in (
            ("repeat", status.repeat),
            ("random", status.random),
            ("single", status.single),
            ("consume", status.consume),
        )
    )
    volume = "n/a" if status.volume < 0 else f"{status.volume}%"
    position = ""
    if not status.is_stopped:
        position = f" #{status.song + 1}/{status.playlist_length}"
        position += f" {_format_time(status.elapsed)}/{_format_time(status.duration)}"
    return f"[{status.state}]{position}\nvolume: {volume}   {flags}"


def _format_time(seconds: float) -> str:
    minutes, secs = divmod(int(seconds), 60)
    return f"{minutes}:{secs:02d}"


# -----------------------------------------------------------------------------
# Sub-commands
# -----------------------------------------------------------------------------


async def _cmd_status(client: MpdClient, _: argparse.Namespace) -> None:
    track = await client.currentsong()
    if track is not None:
        print(format_track(track))
    print(format_status(await client.status()))


async def _cmd_current(client: MpdClient, _: argparse.Namespace) -> None:
    track = await client.currentsong()
    if track is not None:
        print(format_track(track))


async def _cmd_play(client: MpdClient, args: argparse.Namespace) -> None:
    await client.play(args.position - 1 if args.position else -1)


async def _cmd_pause(client: MpdClient, _: argparse.Namespace) -> None:
    await client.pause(True)


async def _cmd_resume(client: MpdClient, _: argparse.Namespace) -> None:
    await client.pause(False)


async def _cmd_stop(client: MpdClient, _: argparse.Namespace) -> None:
    await client.stop()


async def _cmd_next(client: MpdClient, _: argparse.Namespace) -> None:
    await client.next()


async def _cmd_prev(client: MpdClient, _: argparse.Namespace) -> None:
    await client.previous()


async def _cmd_volume(client: MpdClient, args: argparse.Namespace) -> None:
    await client.setvol(args.volume)


async def _cmd_queue(client: MpdClient, _: argparse.Namespace) -> None:
    for track in await client.playlistinfo():
        print(f"{track.pos + 1:>4}  {format_track(track)}")


async def _cmd_add(client: MpdClient, args: argparse.Namespace) -> None:
    await client.add(args.uri)


async def _cmd_clear(client: MpdClient, _: argparse.Namespace) -> None:
    await client.clear()


async def _cmd_find(client: MpdClient, args: argparse.Namespace) -> None:
    for track in await client.find(*args.query):
        print(track.file)


async def _cmd_list(client: MpdClient, args: argparse.Namespace) -> None:
    for value in await client.list_tag(args.tag, *args.query):
        print(value)


async def _cmd_playlists(client: MpdClient, _: argparse.Namespace) -> None:
    for playlist in await client.listplaylists():
        print(playlist.name)


async def _cmd_update(client: MpdClient, args: argparse.Namespace) -> None:
    job = await client.update(args.uri)
    print(f"Updating DB (#{job}) ...")


async def _cmd_idle(client: MpdClient, args: argparse.Namespace) -> None:
    while True:
        changed = await client.idle(*args.subsystems)
        for subsystem in changed:
            print(subsystem)
        sys.stdout.flush()
        if args.once:
            return


COMMANDS: dict[str, Command] = {
    "status": _cmd_status,
    "current": _cmd_current,
    "play": _cmd_play,
    "pause": _cmd_pause,
    "resume": _cmd_resume,
    "stop": _cmd_stop,
    "next": _cmd_next,
    "prev": _cmd_prev,
    "volume": _cmd_volume,
    "queue": _cmd_queue,
    "add": _cmd_add,
    "clear": _cmd_clear,
    "find": _cmd_find,
    "list": _cmd_list,
    "playlists": _cmd_playlists,
    "update": _cmd_update,
    "idle": _cmd_idle,
}


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser."""
    parser = argparse.ArgumentParser(
        prog="mpdline",
        description="Control a Music Player Daemon from the command line",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--host", default=None, help="server host, optionally password@host")
    parser.add_argument("--port", type=int, default=None, help="TCP port (default: 6600)")
    parser.add_argument("--password", default=None, help="server password")
    parser.add_argument("--timeout", type=float, default=None, help="command timeout in seconds")
    parser.add_argument(
        "--discover", action="store_true", help="find the server via mDNS instead of MPD_HOST"
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="enable debug logging")

    sub = parser.add_subparsers(dest="command", metavar="command")
    sub.required = True

    sub.add_parser("status", help="show current song and player status")
    sub.add_parser("current", help="show the current song")
    play = sub.add_parser("play", help="start playback")
    play.add_argument("position", nargs="?", type=int, default=0, help="1-based queue position")
    sub.add_parser("pause", help="pause playback")
    sub.add_parser("resume", help="resume playback")
    sub.add_parser("stop", help="stop playback")
    sub.add_parser("next", help="play the next song")
    sub.add_parser("prev", help="play the previous song")
    volume = sub.add_parser("volume", help="set the volume")
    volume.add_argument("volume", type=int, help="volume 0-100")
    sub.add_parser("queue", help="list the queue")
    add = sub.add_parser("add", help="add a song or directory to the queue")
    add.add_argument("uri")
    sub.add_parser("clear", help="clear the queue")
    find = sub.add_parser("find", help="find songs, e.g. find artist 'Miles Davis'")
    find.add_argument("query", nargs="+")
    list_ = sub.add_parser("list", help="list tag values, e.g. list album artist X")
    list_.add_argument("tag")
    list_.add_argument("query", nargs="*")
    sub.add_parser("playlists", help="list stored playlists")
    update = sub.add_parser("update", help="update the music database")
    update.add_argument("uri", nargs="?", default="")
    idle = sub.add_parser("idle", help="print changed subsystems as they happen")
    idle.add_argument("subsystems", nargs="*")
    idle.add_argument("--once", action="store_true", help="exit after the first change")
    discover = sub.add_parser("discover", help="list MPD servers announced via mDNS")
    discover.add_argument("--wait", type=float, default=3.0, help="seconds to listen")
    return parser


def resolve_config(args: argparse.Namespace) -> ClientConfig | None:
    """Merge environment, discovery and flags into one config."""
    config = ClientConfig.from_env().override(
        host=args.host, port=args.port, password=args.password, timeout=args.timeout
    )
    if args.discover and not args.host:
        logger.info("Searching for MPD servers via mDNS...")
        server = ServerDiscovery.discover_one(timeout=5.0)
        if server is None:
            return None
        config = config.override(host=server.host, port=args.port or server.port)
    return config


async def run_command(config: ClientConfig, args: argparse.Namespace) -> None:
    """Connect and run one sub-command."""
    client = MpdClient(
        config.host,
        config.port,
        config.password,
        connect_timeout=config.connect_timeout,
        timeout=config.timeout,
    )
    async with client:
        await COMMANDS[args.command](client, args)


def main(argv: list[str] | None = None) -> int:
    """Run the mpdline command line.

    Returns:
        Exit code (0 for success).
    """
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format=LOG_FORMAT,
    )

    if args.command == "discover":
        for server in ServerDiscovery.discover_all(timeout=args.wait):
            print(f"{server.display_name}\t{server.host}:{server.port}")
        return 0

    config = resolve_config(args)
    if config is None:
        print("mpdline: no MPD server found on the network", file=sys.stderr)
        return 1

    try:
        asyncio.run(run_command(config, args))
    except MpdError as e:
        print(f"mpdline: {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        return 130
    return 0


if __name__ == "__main__":
    sys.exit(main())
