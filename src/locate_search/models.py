"""Data model for index databases and search requests."""

from dataclasses import dataclass
from enum import Enum

# Index file name, stored directly under the indexed root directory
INDEX_FILENAME = "locate.db"


class SurfaceState(Enum):
    """Pipeline state of a result surface."""

    IDLE = "idle"
    BUILDING = "building"
    SEARCHING = "searching"
    DONE = "done"
    TOOL_MISSING = "tool_missing"


@dataclass(frozen=True)
class IndexDatabase:
    """A locate database file, identified by its (possibly remote) path.

    Existence is deliberately not stored here; it is checked through the
    execution context each time a request is made.
    """

    path: str

    @property
    def directory_root(self) -> str:
        """Parent directory of the database, with a trailing slash."""
        return self.path[: self.path.rfind("/") + 1]

    @classmethod
    def for_root(cls, root_directory: str) -> "IndexDatabase":
        """Database stored directly under ``root_directory``."""
        if not root_directory.endswith("/"):
            root_directory += "/"
        return cls(root_directory + INDEX_FILENAME)


@dataclass(frozen=True)
class SearchRequest:
    """One locate query against one database."""

    database: IndexDatabase
    pattern: str

    def __post_init__(self):
        if not self.pattern:
            raise ValueError("Search pattern must not be empty")

    @property
    def identity_key(self):
        return (self.database.path, self.pattern)
