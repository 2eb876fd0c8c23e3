"""Remote path naming convention.

Remote paths carry a connection prefix in front of the path as understood on
the remote host::

    /ssh:host:/data/locate.db
    /ssh:alice@host#2222:/data/locate.db
"""

import re
from dataclasses import dataclass
from typing import Optional

from ..exceptions import RemotePathError

_REMOTE_PATH_RE = re.compile(
    r"^/(?P<method>[A-Za-z0-9_-]+):"
    r"(?:(?P<user>[^@:/]+)@)?"
    r"(?P<host>[^:#/]+)"
    r"(?:#(?P<port>\d+))?"
    r":(?P<path>.*)$"
)


@dataclass(frozen=True)
class RemotePath:
    """A remote-tagged path split into connection and local parts."""

    method: str
    host: str
    path: str
    user: Optional[str] = None
    port: Optional[int] = None

    @property
    def prefix(self) -> str:
        """Connection prefix, e.g. ``/ssh:host:``."""
        user = f"{self.user}@" if self.user else ""
        port = f"#{self.port}" if self.port is not None else ""
        return f"/{self.method}:{user}{self.host}{port}:"

    @property
    def connection_key(self):
        return (self.user, self.host, self.port)


def is_remote(path: str) -> bool:
    """True if ``path`` carries a remote-connection prefix."""
    return _REMOTE_PATH_RE.match(path) is not None


def parse_remote_path(path: str) -> RemotePath:
    """Split a remote-tagged path.

    Raises:
        RemotePathError: If ``path`` has no remote-connection prefix
    """
    match = _REMOTE_PATH_RE.match(path)
    if match is None:
        raise RemotePathError("Not a remote path", path)
    port = match.group("port")
    return RemotePath(
        method=match.group("method"),
        host=match.group("host"),
        path=match.group("path") or "/",
        user=match.group("user"),
        port=int(port) if port else None,
    )


def to_local_form(path: str) -> str:
    """Path as understood inside its own execution context.

    Remote paths lose their connection prefix; local paths are returned as is.
    """
    if not is_remote(path):
        return path
    return parse_remote_path(path).path
