"""Volume snapshots."""

from datetime import UTC, datetime
from pathlib import Path

import structlog

from ...models.bundle import Snapshot
from ...utils import file_size, format_size
from ..exceptions import SnapshotFailed
from ..storage.base import VolumeStore

logger = structlog.get_logger()


class VolumeSnapshotter:
    """Captures the content of named volumes into archives, one volume at a time."""

    def __init__(self, volume_store: VolumeStore):
        self.volume_store = volume_store
        self.logger = logger.bind(component="volume_snapshotter")

    async def snapshot(self, volume: str, output_dir: Path) -> Snapshot:
        """Archive one volume into `output_dir`.

        The volume must already exist; it is never created here.

        Raises:
            SnapshotFailed: volume missing or archiving failed
        """
        output_dir.mkdir(parents=True, exist_ok=True)
        archive_path = await self.volume_store.snapshot(volume, output_dir)
        if not archive_path.is_file():
            raise SnapshotFailed(volume, f"archive {archive_path} missing after snapshot")

        snapshot = Snapshot(
            volume=volume,
            archive_path=archive_path,
            created_at=datetime.now(UTC),
            size_bytes=file_size(archive_path),
        )
        self.logger.info(
            "Volume snapshot created",
            volume=volume,
            archive=str(archive_path),
            size=format_size(snapshot.size_bytes),
        )
        return snapshot

    async def snapshot_all(self, volumes: list[str] | tuple[str, ...], output_dir: Path) -> list[Snapshot]:
        """Snapshot each volume in order; the first failure aborts the rest."""
        return [await self.snapshot(volume, output_dir) for volume in volumes]
