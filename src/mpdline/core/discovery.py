"""Find MPD servers on the local network.

MPD announces itself as "_mpd._tcp" when built with zeroconf support
(zeroconf_enabled in mpd.conf). Browsing runs on zeroconf's own thread,
so listener callbacks are invoked from that thread.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass
from typing import Self

from zeroconf import ServiceBrowser, ServiceInfo, ServiceListener, Zeroconf

from mpdline.api.connection import DEFAULT_PORT

logger = logging.getLogger(__name__)

MPD_SERVICE_TYPE = "_mpd._tcp.local."

# How long get_service_info() may wait for the SRV/A records
RESOLVE_TIMEOUT_MS = 3000

FoundCallback = Callable[["DiscoveredServer"], None]
RemovedCallback = Callable[[str], None]


@dataclass(frozen=True)
class DiscoveredServer:
    """An MPD server announced via mDNS.

    Attributes:
        name: Full service name ("Living Room._mpd._tcp.local.").
        host: Address to connect to, IPv4 preferred.
        port: Control port.
        addresses: Every announced address, IPv4 first.
        hostname: mDNS host name without the trailing dot.
    """

    name: str
    host: str
    port: int = DEFAULT_PORT
    addresses: tuple[str, ...] = ()
    hostname: str = ""

    @property
    def display_name(self) -> str:
        """Return the instance name without the service type."""
        return self.name.removesuffix(f".{MPD_SERVICE_TYPE}") or self.host

    @classmethod
    def from_service_info(cls, name: str, info: ServiceInfo) -> DiscoveredServer | None:
        """Build a server from resolved service info.

        Returns:
            The server, or None if the service has no usable address.
        """
        # False sorts first: IPv4 before IPv6
        addresses = sorted(info.parsed_addresses(), key=lambda addr: ":" in addr)
        if not addresses:
            return None
        return cls(
            name=name,
            host=addresses[0],
            port=info.port or DEFAULT_PORT,
            addresses=tuple(addresses),
            hostname=(info.server or "").rstrip("."),
        )


class MpdServiceListener(ServiceListener):
    """Keeps the set of announced MPD services up to date."""

    def __init__(
        self,
        on_found: FoundCallback | None = None,
        on_removed: RemovedCallback | None = None,
    ) -> None:
        """Initialize the listener.

        Args:
            on_found: Called for new servers and servers whose record changed.
            on_removed: Called with the service name when a server leaves.
        """
        self._on_found = on_found
        self._on_removed = on_removed
        self._servers: dict[str, DiscoveredServer] = {}
        self._lock = threading.Lock()

    @property
    def servers(self) -> list[DiscoveredServer]:
        """Return the servers currently announced."""
        with self._lock:
            return list(self._servers.values())

    def add_service(self, zc: Zeroconf, type_: str, name: str) -> None:
        """Resolve a new service and record it."""
        info = zc.get_service_info(type_, name, timeout=RESOLVE_TIMEOUT_MS)
        server = DiscoveredServer.from_service_info(name, info) if info else None
        if server is None:
            logger.debug("Could not resolve MPD service %s", name)
            return

        with self._lock:
            previous = self._servers.get(name)
            self._servers[name] = server
        if previous == server:
            return

        logger.info("Found MPD server %s at %s:%d", server.display_name, server.host, server.port)
        if self._on_found:
            self._on_found(server)

    def update_service(self, zc: Zeroconf, type_: str, name: str) -> None:
        """Re-resolve a service whose records changed."""
        self.add_service(zc, type_, name)

    def remove_service(self, zc: Zeroconf, type_: str, name: str) -> None:  # noqa: ARG002
        """Forget a service that left the network."""
        with self._lock:
            removed = self._servers.pop(name, None)
        if removed is None:
            return
        logger.info("MPD server gone: %s", removed.display_name)
        if self._on_removed:
            self._on_removed(name)


class ServerDiscovery:
    """Browse for MPD servers in the background.

    Example:
        # First server, blocking
        server = ServerDiscovery.discover_one(timeout=5.0)
        if server:
            async with MpdClient(server.host, server.port) as client:
                ...

        # Continuous browsing
        with ServerDiscovery(on_found=lambda s: print(s.display_name)) as discovery:
            ...
            servers = discovery.servers
    """

    def __init__(
        self,
        on_found: FoundCallback | None = None,
        on_removed: RemovedCallback | None = None,
    ) -> None:
        """Initialize discovery; nothing is sent until start()."""
        self._listener = MpdServiceListener(on_found=on_found, on_removed=on_removed)
        self._zeroconf: Zeroconf | None = None
        self._browser: ServiceBrowser | None = None

    @property
    def servers(self) -> list[DiscoveredServer]:
        """Return the servers found so far."""
        return self._listener.servers

    @property
    def is_running(self) -> bool:
        """Return True while browsing."""
        return self._zeroconf is not None

    def start(self) -> None:
        """Start browsing (no-op if already running)."""
        if self._zeroconf is not None:
            return
        self._zeroconf = Zeroconf()
        self._browser = ServiceBrowser(self._zeroconf, MPD_SERVICE_TYPE, self._listener)
        logger.debug("Browsing for %s", MPD_SERVICE_TYPE)

    def stop(self) -> None:
        """Stop browsing and release the mDNS socket."""
        browser, zeroconf = self._browser, self._zeroconf
        self._browser = None
        self._zeroconf = None
        if browser is not None:
            browser.cancel()
        if zeroconf is not None:
            zeroconf.close()
            logger.debug("Stopped browsing for %s", MPD_SERVICE_TYPE)

    def __enter__(self) -> Self:
        """Start browsing."""
        self.start()
        return self

    def __exit__(self, *_: object) -> None:
        """Stop browsing."""
        self.stop()

    @classmethod
    def discover_one(cls, timeout: float = 5.0) -> DiscoveredServer | None:
        """Return the first server announced within timeout seconds, or None."""
        found = threading.Event()
        with cls(on_found=lambda _: found.set()) as discovery:
            found.wait(timeout)
            servers = discovery.servers
        return servers[0] if servers else None

    @classmethod
    def discover_all(cls, timeout: float = 5.0) -> list[DiscoveredServer]:
        """Browse for timeout seconds and return every server seen."""
        with cls() as discovery:
            threading.Event().wait(timeout)
            return discovery.servers
