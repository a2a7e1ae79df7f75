"""Docker-backed volume store.

Volumes are read and written through a throwaway helper container
(`busybox` by default) that mounts the volume at /data and a host directory
at /backup, mirroring how the stack's data has always been moved around.
"""

import asyncio
import shlex
from pathlib import Path

import docker
import structlog
from docker.errors import APIError, ContainerError, DockerException, ImageNotFound, NotFound

from ...constants import BACKUP_MOUNT, DEFAULT_HELPER_IMAGE, VOLUME_MOUNT
from ...utils import snapshot_filename
from ..exceptions import PreconditionFailure, RestoreInterrupted, SnapshotFailed, VolumeStoreError
from .base import VolumeStore

logger = structlog.get_logger()


def _container_error_detail(error: ContainerError) -> str:
    stderr = error.stderr
    if isinstance(stderr, bytes):
        stderr = stderr.decode(errors="replace")
    return f"exit status {error.exit_status}: {(stderr or '').strip()}"


class DockerVolumeStore(VolumeStore):
    """Volume store talking to the local Docker daemon through the docker SDK."""

    def __init__(self, client: docker.DockerClient | None = None, helper_image: str = DEFAULT_HELPER_IMAGE):
        super().__init__()
        self._client = client
        self.helper_image = helper_image

    @property
    def client(self) -> docker.DockerClient:
        if self._client is None:
            try:
                self._client = docker.from_env()
            except DockerException as e:
                raise PreconditionFailure(f"Docker daemon not reachable: {e}") from e
        return self._client

    async def exists(self, name: str) -> bool:
        try:
            await asyncio.to_thread(self.client.volumes.get, name)
        except NotFound:
            return False
        except DockerException as e:
            raise VolumeStoreError(name, f"lookup failed: {e}") from e
        return True

    async def create(self, name: str) -> None:
        self.logger.info("Creating volume", volume=name)
        try:
            await asyncio.to_thread(self.client.volumes.create, name=name)
        except DockerException as e:
            raise VolumeStoreError(name, f"create failed: {e}") from e

    async def snapshot(self, name: str, output_dir: Path) -> Path:
        try:
            present = await self.exists(name)
        except VolumeStoreError as e:
            raise SnapshotFailed(name, str(e)) from e
        if not present:
            raise SnapshotFailed(name, "volume does not exist")

        output_dir = output_dir.resolve()
        filename = snapshot_filename(name)
        archive_path = output_dir / filename
        command = ["tar", "czf", f"{BACKUP_MOUNT}/{filename}", "-C", VOLUME_MOUNT, "."]

        self.logger.info("Snapshotting volume", volume=name, archive=str(archive_path))
        try:
            await asyncio.to_thread(
                self.client.containers.run,
                self.helper_image,
                command=command,
                volumes={
                    name: {"bind": VOLUME_MOUNT, "mode": "ro"},
                    str(output_dir): {"bind": BACKUP_MOUNT, "mode": "rw"},
                },
                remove=True,
            )
        except ContainerError as e:
            raise SnapshotFailed(name, _container_error_detail(e)) from e
        except (ImageNotFound, APIError) as e:
            raise SnapshotFailed(name, str(e)) from e

        if not archive_path.is_file():
            raise SnapshotFailed(name, f"archive {archive_path} was not written")
        return archive_path

    async def replay(self, name: str, archive_path: Path) -> None:
        archive_path = archive_path.resolve()
        script = f"cd {VOLUME_MOUNT} && tar xzf {BACKUP_MOUNT}/{shlex.quote(archive_path.name)}"

        self.logger.info("Replaying snapshot into volume", volume=name, archive=str(archive_path))
        try:
            await asyncio.to_thread(
                self.client.containers.run,
                self.helper_image,
                command=["sh", "-c", script],
                volumes={
                    name: {"bind": VOLUME_MOUNT, "mode": "rw"},
                    str(archive_path.parent): {"bind": BACKUP_MOUNT, "mode": "ro"},
                },
                remove=True,
            )
        except ContainerError as e:
            raise RestoreInterrupted(name, _container_error_detail(e)) from e
        except (ImageNotFound, APIError) as e:
            raise RestoreInterrupted(name, str(e)) from e

    async def ping(self) -> bool:
        """Check the daemon answers."""
        try:
            return bool(await asyncio.to_thread(self.client.ping))
        except (DockerException, PreconditionFailure) as e:
            self.logger.debug("Docker ping failed", error=str(e))
            return False
