"""Bundle assembly: one project package plus every volume snapshot in a single file."""

import shutil
import tempfile
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import UTC, datetime
from pathlib import Path

import structlog

from ...constants import BUNDLE_PREFIX, EXPORT_DIR_PREFIX, PROJECT_ARCHIVE
from ...models.bundle import BundleInfo, Snapshot
from ...utils import bundle_timestamp, file_size, format_size, snapshot_filename
from ..exceptions import PreconditionFailure, StackError
from ..storage.archive import Archiver

logger = structlog.get_logger()


def default_bundle_name(timestamp: str | None = None) -> str:
    return f"{BUNDLE_PREFIX}{timestamp or bundle_timestamp()}.tgz"


class BundleAssembler:
    """Merges a project archive and volume snapshots into one transportable bundle.

    Bundle layout::

        export-<timestamp>/
            project.tgz
            <volume>.tgz    (one per volume)
    """

    def __init__(self, archiver: Archiver, scratch_root: Path | None = None):
        self.archiver = archiver
        self.scratch_root = scratch_root
        self.logger = logger.bind(component="bundle_assembler")

    def _mkdtemp(self, prefix: str) -> Path:
        if self.scratch_root is not None:
            self.scratch_root.mkdir(parents=True, exist_ok=True)
        return Path(tempfile.mkdtemp(prefix=prefix, dir=self.scratch_root))

    def _remove(self, path: Path) -> None:
        try:
            shutil.rmtree(path)
        except OSError as e:
            self.logger.warning("Failed to remove scratch directory", path=str(path), error=str(e))

    @contextmanager
    def workspace(self) -> Iterator[Path]:
        """Scratch directory for snapshot and project archives, removed on every exit path."""
        path = self._mkdtemp("n8n-export-")
        self.logger.debug("Created export workspace", path=str(path))
        try:
            yield path
        finally:
            self._remove(path)

    async def assemble(
        self,
        project_archive: Path,
        snapshots: list[Snapshot],
        destination: Path,
        timestamp: str | None = None,
    ) -> BundleInfo:
        """Write the bundle to `destination`.

        The input archives are moved into a private staging directory that is
        removed whether or not assembly succeeds. The bundle is written under
        a temporary name and renamed into place, so a failed run never leaves
        a partial bundle behind.

        Raises:
            PreconditionFailure: destination already exists or an input is missing
        """
        if destination.exists():
            raise PreconditionFailure(f"Refusing to overwrite existing bundle: {destination}")
        for path in [project_archive, *(s.archive_path for s in snapshots)]:
            if not path.is_file():
                raise PreconditionFailure(f"Bundle input missing: {path}")

        volumes = [s.volume for s in snapshots]
        if len(set(volumes)) != len(volumes):
            raise StackError(f"Duplicate volume snapshots: {volumes}")

        inner_dir = f"{EXPORT_DIR_PREFIX}{timestamp or bundle_timestamp()}"
        staging = self._mkdtemp("n8n-assemble-")
        partial = destination.with_name(destination.name + ".partial")
        try:
            inner = staging / inner_dir
            inner.mkdir()
            shutil.move(project_archive, inner / PROJECT_ARCHIVE)
            for snapshot in snapshots:
                shutil.move(snapshot.archive_path, inner / snapshot_filename(snapshot.volume))

            self.logger.info("Creating single bundle", bundle=str(destination), volumes=volumes)
            await self.archiver.create(partial, staging, [inner_dir])
            partial.replace(destination)
        finally:
            try:
                partial.unlink(missing_ok=True)
            except OSError as e:
                self.logger.warning("Failed to remove partial bundle", path=str(partial), error=str(e))
            self._remove(staging)

        size = file_size(destination)
        info = BundleInfo(
            bundle_path=destination,
            inner_dir=inner_dir,
            volumes=volumes,
            size_bytes=size,
            size_human=format_size(size),
            created_at=datetime.now(UTC),
        )
        self.logger.info("Bundle created", bundle=str(destination), size=info.size_human)
        return info
