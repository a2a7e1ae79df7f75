"""
Archive utilities for bundle export and import.

Everything the bundle procedure writes to disk is a gzip-compressed tar:
project packages, the bundle itself and (through the helper container)
volume snapshots. The `Archiver` interface keeps the bundle components
independent of how archives are produced so they can be exercised against
plain directories in tests.
"""

import asyncio
import tarfile
from abc import ABC, abstractmethod
from pathlib import Path

import structlog

from ..exceptions import StackError

logger = structlog.get_logger()


class ArchiveError(StackError):
    """Archive operation failed."""

    pass


def _normalize_member(name: str) -> str:
    while name.startswith("./"):
        name = name[2:]
    return name.rstrip("/")


class Archiver(ABC):
    """Capability for creating and reading compressed archives."""

    @abstractmethod
    async def create(self, archive_path: Path, root_dir: Path, members: list[str]) -> Path:
        """Archive `members` (relative to `root_dir`) into `archive_path`, in the given order.

        Directories are added recursively.
        """

    @abstractmethod
    async def extract(self, archive_path: Path, dest_dir: Path) -> None:
        """Extract the whole archive into `dest_dir`, overwriting existing files."""

    @abstractmethod
    async def read_member(self, archive_path: Path, member: str) -> bytes | None:
        """Return the content of one regular file member, or None if absent."""


class TarArchiver(Archiver):
    """Archiver producing .tgz files with the standard library tarfile module."""

    def __init__(self):
        self.logger = logger.bind(component="tar_archiver")

    async def create(self, archive_path: Path, root_dir: Path, members: list[str]) -> Path:
        if not members:
            raise ArchiveError("Nothing to archive")
        self.logger.debug(
            "Creating archive", archive=str(archive_path), root=str(root_dir), members=members
        )
        try:
            await asyncio.to_thread(self._create, archive_path, root_dir, members)
        except (tarfile.TarError, OSError) as e:
            raise ArchiveError(f"Failed to create archive {archive_path}: {e}") from e
        return archive_path

    @staticmethod
    def _create(archive_path: Path, root_dir: Path, members: list[str]) -> None:
        archive_path.parent.mkdir(parents=True, exist_ok=True)
        with tarfile.open(archive_path, "w:gz") as tar:
            for member in members:
                tar.add(root_dir / member, arcname=member, recursive=True)

    async def extract(self, archive_path: Path, dest_dir: Path) -> None:
        self.logger.debug("Extracting archive", archive=str(archive_path), destination=str(dest_dir))
        try:
            await asyncio.to_thread(self._extract, archive_path, dest_dir)
        except (tarfile.TarError, OSError) as e:
            raise ArchiveError(f"Failed to extract archive {archive_path}: {e}") from e

    @staticmethod
    def _extract(archive_path: Path, dest_dir: Path) -> None:
        dest_dir.mkdir(parents=True, exist_ok=True)
        with tarfile.open(archive_path, "r:*") as tar:
            tar.extractall(dest_dir, filter="data")

    async def read_member(self, archive_path: Path, member: str) -> bytes | None:
        try:
            return await asyncio.to_thread(self._read, archive_path, _normalize_member(member))
        except (tarfile.TarError, OSError) as e:
            raise ArchiveError(f"Failed to read {member} from {archive_path}: {e}") from e

    @staticmethod
    def _read(archive_path: Path, member: str) -> bytes | None:
        with tarfile.open(archive_path, "r:*") as tar:
            for info in tar.getmembers():
                if _normalize_member(info.name) == member and info.isfile():
                    handle = tar.extractfile(info)
                    if handle is None:
                        return None
                    with handle:
                        return handle.read()
        return None
