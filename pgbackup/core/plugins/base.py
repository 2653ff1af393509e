"""Base classes for the external collaborators: dump engine and artifact stores."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, List, Optional

from pgbackup.domain.artifacts import ListingEntry
from pgbackup.domain.enums import Location


@dataclass(frozen=True)
class ConnectionParams:
    """Connection information for one PostgreSQL server and database."""

    host: str
    port: int
    user: str
    database: str
    password: Optional[str] = None


class DumpPlugin(ABC):
    """Base class for dump/restore engines."""

    def __init__(self, name: str, version: str = "1.0.0"):
        """Initialize plugin with name and version."""
        self.name = name
        self.version = version

    @abstractmethod
    def required_binaries(self, *, backup: bool, restore: bool) -> List[str]:
        """Executables that must be on PATH for the requested operations."""
        pass

    @abstractmethod
    async def create_dump(self, connection: ConnectionParams, output_path: str) -> Dict[str, object]:
        """Write an archive of `connection.database` to `output_path`."""
        pass

    @abstractmethod
    async def restore_dump(self, connection: ConnectionParams, input_path: str) -> Dict[str, object]:
        """Restore the archive at `input_path` into `connection.database`."""
        pass

    def get_info(self) -> Dict[str, str]:
        """Get plugin information."""
        return {
            "name": self.name,
            "version": self.version,
            "type": self.__class__.__name__,
        }


class ArtifactStore(ABC):
    """A namespace holding backup artifacts: a local directory or a bucket prefix."""

    location: Location

    @abstractmethod
    def describe(self) -> str:
        """Human-readable namespace, used in log lines and error messages."""
        pass

    @abstractmethod
    def exists(self) -> bool:
        pass

    @abstractmethod
    def list_entries(self) -> List[ListingEntry]:
        pass

    @abstractmethod
    def delete(self, entry: ListingEntry) -> None:
        pass


class RemoteStore(ArtifactStore):
    """Object storage namespace that can also transfer artifacts."""

    location = Location.REMOTE

    @abstractmethod
    def key_for(self, name: str) -> str:
        pass

    @abstractmethod
    def download(self, name: str, local_path: str) -> Dict[str, object]:
        pass

    @abstractmethod
    def upload(self, local_path: str, name: str) -> Dict[str, object]:
        pass
