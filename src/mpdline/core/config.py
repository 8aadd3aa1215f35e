"""Client configuration from the environment.

Follows the conventions shared by MPD clients such as mpc:
- MPD_HOST: hostname, optionally prefixed with "password@"
- MPD_PORT: TCP port (default 6600)
- MPD_TIMEOUT: per-command timeout in seconds (mpdline specific)

Nothing is persisted; command-line flags override these values.
"""

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass, replace

from mpdline.api.connection import COMMAND_TIMEOUT, CONNECT_TIMEOUT, DEFAULT_PORT

logger = logging.getLogger(__name__)

DEFAULT_HOST = "localhost"

# Environment keys
_ENV_HOST = "MPD_HOST"
_ENV_PORT = "MPD_PORT"
_ENV_TIMEOUT = "MPD_TIMEOUT"


@dataclass(frozen=True)
class ClientConfig:
    """Connection settings for an MPD client.

    Attributes:
        host: MPD server hostname or IP.
        port: MPD server port.
        password: Plaintext password, empty for none.
        connect_timeout: Seconds allowed to connect.
        timeout: Seconds allowed for each command response.
    """

    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    password: str = ""
    connect_timeout: float = CONNECT_TIMEOUT
    timeout: float = COMMAND_TIMEOUT

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "ClientConfig":
        """Build a config from MPD_HOST, MPD_PORT and MPD_TIMEOUT.

        Invalid numbers are logged and replaced by defaults.

        Args:
            environ: Mapping to read from (defaults to os.environ).
        """
        env = os.environ if environ is None else environ
        host, password = parse_host(env.get(_ENV_HOST, ""))

        port = DEFAULT_PORT
        raw_port = env.get(_ENV_PORT, "")
        if raw_port:
            try:
                port = int(raw_port)
                if not 0 < port < 65536:
                    raise ValueError(f"out of range: {port}")
            except ValueError as e:
                logger.warning("Ignoring invalid %s=%r: %s", _ENV_PORT, raw_port, e)
                port = DEFAULT_PORT

        timeout = COMMAND_TIMEOUT
        raw_timeout = env.get(_ENV_TIMEOUT, "")
        if raw_timeout:
            try:
                timeout = float(raw_timeout)
                if timeout <= 0:
                    raise ValueError(f"must be positive: {timeout}")
            except ValueError as e:
                logger.warning("Ignoring invalid %s=%r: %s", _ENV_TIMEOUT, raw_timeout, e)
                timeout = COMMAND_TIMEOUT

        return cls(host=host or DEFAULT_HOST, port=port, password=password, timeout=timeout)

    def override(
        self,
        host: str | None = None,
        port: int | None = None,
        password: str | None = None,
        timeout: float | None = None,
    ) -> "ClientConfig":
        """Return a copy with the given values replaced (None keeps the current one)."""
        changes: dict[str, object] = {}
        if host:
            host, host_password = parse_host(host)
            changes["host"] = host
            if host_password and password is None:
                changes["password"] = host_password
        if port is not None:
            changes["port"] = port
        if password is not None:
            changes["password"] = password
        if timeout is not None:
            changes["timeout"] = timeout
        return replace(self, **changes)  # type: ignore[arg-type]


def parse_host(value: str) -> tuple[str, str]:
    """Split "password@host" into (host, password).

    The last "@" separates them, so passwords may contain "@".
    """
    password, sep, host = value.rpartition("@")
    if not sep:
        return value, ""
    return host, password
