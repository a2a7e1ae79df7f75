"""Storage capabilities used by the bundle procedure."""

from .archive import Archiver, ArchiveError, TarArchiver  # noqa: F401
from .base import VolumeStore  # noqa: F401
from .docker_volumes import DockerVolumeStore  # noqa: F401

__all__ = [
    "Archiver",
    "ArchiveError",
    "DockerVolumeStore",
    "TarArchiver",
    "VolumeStore",
]
