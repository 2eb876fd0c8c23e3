"""Configuration management for Locate Search."""

import json
import logging
from pathlib import Path
from typing import List, Optional, Any

from pydantic import BaseModel, Field, ValidationError, field_validator

from .exceptions import ConfigurationError

logger = logging.getLogger(__name__)

CONFIG_DIR_NAME = ".locate-search"

# Version-control metadata directories, never worth indexing
DEFAULT_PRUNEPATHS = [
    "SCCS",
    "RCS",
    "CVS",
    "MCVS",
    ".src",
    ".svn",
    ".git",
    ".hg",
    ".bzr",
    "_MTN",
    "_darcs",
    "{arch}",
]


class SshConfig(BaseModel):
    """Configuration for the ssh command channel used with remote paths.

    Connections are multiplexed through an OpenSSH control master so that
    executable lookups and spawned searches reuse one connection per host.
    """

    executable: str = Field(default="ssh", description="ssh client executable")
    control_persist: int = Field(
        default=600,
        description="Seconds the control master stays open after its last client",
    )
    connect_timeout: int = Field(
        default=15, description="Connection timeout in seconds"
    )
    control_dir: Path = Field(
        default=Path("~/.ssh"), description="Directory holding control sockets"
    )

    @field_validator("control_dir", mode="before")
    @classmethod
    def convert_path(cls, v: Any) -> Path:
        """Convert string paths to Path objects."""
        if isinstance(v, str):
            return Path(v)
        if isinstance(v, Path):
            return v
        raise ValueError(f"Expected str or Path, got {type(v)}")


class LocateConfig(BaseModel):
    """Main configuration for Locate Search."""

    switches: str = Field(
        default="-dilsb", description="Switches passed to ls for each match"
    )
    prunepaths: List[str] = Field(
        default_factory=lambda: list(DEFAULT_PRUNEPATHS),
        description="Directories below the index root excluded from indexing",
    )
    locate_executable: str = Field(
        default="locate", description="Search executable name or path"
    )
    updatedb_executable: str = Field(
        default="updatedb", description="Index-build executable name or path"
    )
    shell: str = Field(
        default="/bin/sh", description="Shell used to run local command lines"
    )
    chunk_size: int = Field(
        default=4096, gt=0, description="Maximum bytes read per output chunk"
    )
    ssh: SshConfig = Field(default_factory=SshConfig)

    @field_validator("switches")
    @classmethod
    def strip_switches(cls, v: str) -> str:
        return v.strip()

    @field_validator("prunepaths")
    @classmethod
    def normalize_prunepaths(cls, v: List[str]) -> List[str]:
        """Make prune entries relative to the index root."""
        return [entry.lstrip("/") for entry in v if entry.strip("/")]


class ConfigManager:
    """Loads configuration from a JSON file, falling back to defaults."""

    DEFAULT_CONFIG_PATH = Path(CONFIG_DIR_NAME) / "config.json"

    def __init__(self, config_path: Optional[Path] = None):
        self.config_path = config_path or self.DEFAULT_CONFIG_PATH
        self._config: Optional[LocateConfig] = None

    def load(self) -> LocateConfig:
        """Load configuration from file or create default."""
        if self.config_path.exists():
            try:
                with open(self.config_path, "r") as f:
                    data = json.load(f)
                self._config = LocateConfig(**data)
            except (OSError, ValueError, TypeError, ValidationError) as e:
                raise ConfigurationError(
                    f"Failed to load config from {self.config_path}", str(e)
                )
            logger.debug(f"Loaded configuration from {self.config_path}")
        else:
            self._config = LocateConfig()

        return self._config

    def get_config(self) -> LocateConfig:
        """Get current configuration, loading if necessary."""
        if self._config is None:
            self.load()
        if self._config is None:
            raise RuntimeError("Failed to load configuration")
        return self._config

    @staticmethod
    def find_config_path(start_dir: Optional[Path] = None) -> Optional[Path]:
        """Find .locate-search/config.json by walking up the directory tree.

        Args:
            start_dir: Directory to start searching from (default: current directory)

        Returns:
            Path to config.json if found, None otherwise
        """
        current = start_dir or Path.cwd()

        for path in [current] + list(current.parents):
            config_path = path / CONFIG_DIR_NAME / "config.json"
            if config_path.exists():
                return config_path

        return None

    @classmethod
    def create_with_backtrack(cls, start_dir: Optional[Path] = None) -> "ConfigManager":
        """Create ConfigManager by finding config through directory backtracking.

        Args:
            start_dir: Directory to start searching from (default: current directory)

        Returns:
            ConfigManager instance with found config path or default path
        """
        config_path = cls.find_config_path(start_dir)
        if config_path is None:
            start = start_dir or Path.cwd()
            config_path = start / CONFIG_DIR_NAME / "config.json"
        return cls(config_path)
