"""Backup and migration bundle components."""

from .assembler import BundleAssembler, default_bundle_name  # noqa: F401
from .packager import ProjectPackager, default_entries  # noqa: F401
from .restorer import BundleRestorer  # noqa: F401
from .snapshot import VolumeSnapshotter  # noqa: F401

__all__ = [
    "BundleAssembler",
    "BundleRestorer",
    "ProjectPackager",
    "VolumeSnapshotter",
    "default_bundle_name",
    "default_entries",
]
