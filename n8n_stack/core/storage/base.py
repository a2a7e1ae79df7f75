"""Abstract base class for volume stores."""

from abc import ABC, abstractmethod
from pathlib import Path

import structlog

logger = structlog.get_logger()


class VolumeStore(ABC):
    """Capability over the named persistent volumes owned by the container runtime.

    Implementations never delete volumes.
    """

    def __init__(self):
        self.logger = logger.bind(component=self.__class__.__name__.lower())

    async def ping(self) -> bool:
        """Check the backing runtime answers."""
        return True

    @abstractmethod
    async def exists(self, name: str) -> bool:
        """Check whether a volume exists.

        Args:
            name: Volume name

        Returns:
            True if the runtime knows the volume

        Raises:
            VolumeStoreError: If the runtime refuses the lookup
        """
        pass

    @abstractmethod
    async def create(self, name: str) -> None:
        """Create an empty volume.

        Args:
            name: Volume name

        Raises:
            VolumeStoreError: If the runtime refuses to create it
        """
        pass

    @abstractmethod
    async def snapshot(self, name: str, output_dir: Path) -> Path:
        """Archive the full file tree at the volume root without writing to the volume.

        Args:
            name: Volume name (must exist)
            output_dir: Directory receiving `<name>.tgz`

        Returns:
            Path to the written archive

        Raises:
            SnapshotFailed: If the volume is missing or archiving fails
        """
        pass

    @abstractmethod
    async def replay(self, name: str, archive_path: Path) -> None:
        """Extract a snapshot archive at the volume root, overwriting existing files.

        Args:
            name: Volume name (must exist)
            archive_path: Snapshot archive produced by `snapshot`

        Raises:
            RestoreInterrupted: If extraction fails; the volume may be partially written
        """
        pass
