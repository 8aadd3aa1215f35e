"""Services built on the MPD client.

Classes:
    ClientConfig: Connection settings from the environment.
    ServerDiscovery: mDNS discovery of MPD servers.
    IdleMonitor: Idle-driven change monitor with callbacks.
"""

from mpdline.core.config import ClientConfig
from mpdline.core.discovery import DiscoveredServer, ServerDiscovery
from mpdline.core.monitor import IdleMonitor

__all__ = ["ClientConfig", "DiscoveredServer", "IdleMonitor", "ServerDiscovery"]
