"""Idle-driven MPD monitor.

Keeps one connection in idle mode and reports changes through callbacks.
Player status and the current song are refreshed when the subsystems
that affect them change.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Iterable

from mpdline.api.client import MpdClient
from mpdline.api.connection import DEFAULT_PORT, IdleState
from mpdline.api.protocol import MpdCommandError, MpdError
from mpdline.api.types import MpdStatus, MpdTrack

logger = logging.getLogger(__name__)

# Subsystems whose changes can alter status() or currentsong()
REFRESH_SUBSYSTEMS = frozenset({"player", "mixer", "options", "playlist"})

STOP_TIMEOUT = 5.0

ChangeHandler = Callable[[list[str]], None]
StatusHandler = Callable[[MpdStatus], None]
TrackHandler = Callable[[MpdTrack | None], None]
ErrorHandler = Callable[[Exception], None]


class IdleMonitor:
    """Monitor an MPD server for changes.

    There is no reconnection: a connection error is reported through
    on_error and ends the monitor.

    Example:
        monitor = IdleMonitor("192.168.1.100", on_track=lambda t: print(t))
        await monitor.start()
        ...
        await monitor.stop()
    """

    def __init__(
        self,
        host: str,
        port: int = DEFAULT_PORT,
        password: str = "",
        subsystems: Iterable[str] = (),
        *,
        on_change: ChangeHandler | None = None,
        on_status: StatusHandler | None = None,
        on_track: TrackHandler | None = None,
        on_error: ErrorHandler | None = None,
    ) -> None:
        """Initialize the monitor.

        Args:
            host: MPD server hostname or IP.
            port: MPD server port.
            password: Optional password for authentication.
            subsystems: Subsystems to watch; empty watches all of them.
            on_change: Called with the changed subsystems.
            on_status: Called when the player status changes.
            on_track: Called when the current song changes.
            on_error: Called with the error that ended the monitor.
        """
        self._client = MpdClient(host, port, password)
        self._subsystems = tuple(subsystems)
        self._on_change = on_change
        self._on_status = on_status
        self._on_track = on_track
        self._on_error = on_error

        self._running = False
        self._task: asyncio.Task[None] | None = None

        # Track state for change detection
        self._last_status: MpdStatus | None = None
        self._last_track: MpdTrack | None = None

    @property
    def client(self) -> MpdClient:
        """Return the client used by the monitor."""
        return self._client

    @property
    def is_running(self) -> bool:
        """Return True while the monitor task is alive."""
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        """Connect and start watching in a background task.

        Raises:
            MpdError: If the initial connection fails.
        """
        if self.is_running:
            return
        await self._client.connect()
        self._running = True
        self._task = asyncio.create_task(self._run())
        logger.info("IdleMonitor started for %s:%d", self._client.host, self._client.port)

    async def stop(self) -> None:
        """Stop watching and disconnect."""
        self._running = False
        task = self._task
        self._task = None
        if task is not None and not task.done():
            connection = self._client.connection
            if connection.idle_state is IdleState.AWAITING_IDLE:
                await connection.noidle()
            try:
                await asyncio.wait_for(task, timeout=STOP_TIMEOUT)
            except TimeoutError:
                logger.warning("IdleMonitor did not stop in time")
        await self._client.disconnect()
        logger.info("IdleMonitor stopped")

    async def _run(self) -> None:
        try:
            await self._refresh()
            while self._running:
                changed = await self._client.idle(*self._subsystems)
                if not changed:
                    continue
                logger.debug("MPD changed: %s", ", ".join(changed))
                if self._on_change:
                    self._on_change(changed)
                if REFRESH_SUBSYSTEMS.intersection(changed):
                    await self._refresh()
        except MpdError as e:
            logger.warning("IdleMonitor stopped by MPD error: %s", e)
            self._running = False
            if self._on_error:
                self._on_error(e)

    async def _refresh(self) -> None:
        """Fetch status and current song, reporting what changed."""
        try:
            status = await self._client.status()
            track = await self._client.currentsong()
        except MpdCommandError as e:
            logger.warning("Error refreshing MPD state: %s", e)
            return
        self._emit_if_status_changed(status)
        self._emit_if_track_changed(track)

    def _emit_if_status_changed(self, status: MpdStatus) -> bool:
        """Report status if it differs from the last one."""
        if status == self._last_status:
            return False
        self._last_status = status
        if self._on_status:
            self._on_status(status)
        return True

    def _emit_if_track_changed(self, track: MpdTrack | None) -> bool:
        """Report track if it differs from the last one."""
        last = self._last_track
        if track is None and last is None:
            return False
        if track is not None and last is not None:
            # Compare by file and ID, then by tags (same file, updated tags)
            same_song = track.file == last.file and track.id == last.id
            same_tags = (
                track.title == last.title
                and track.artist == last.artist
                and track.album == last.album
            )
            if same_song and same_tags:
                return False
        self._last_track = track
        if self._on_track:
            self._on_track(track)
        return True
