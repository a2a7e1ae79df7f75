"""Backup and migration bundle data models."""

from datetime import datetime
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field


class StackModel(BaseModel):
    """Base model with common settings."""

    def model_dump(self, **kwargs) -> dict[str, Any]:
        """Convert to dict with exclude_none by default."""
        kwargs.setdefault("exclude_none", True)
        return super().model_dump(**kwargs)


class Snapshot(StackModel):
    """Point-in-time archive of one volume."""

    volume: str = Field(description="Source volume name")
    archive_path: Path = Field(description="Archive written by the snapshotter")
    created_at: datetime = Field(description="When the snapshot was taken")
    size_bytes: int = 0


class ProjectEntry(StackModel):
    """One file or directory of the configuration surface, relative to the project root."""

    path: str
    required: bool = False
    description: str = ""


class ProjectPackage(StackModel):
    """Archive of the configuration surface."""

    archive_path: Path
    included: list[str] = Field(default_factory=list)
    skipped: list[str] = Field(default_factory=list, description="Optional entries not present")
    size_bytes: int = 0


class BundleInfo(StackModel):
    """Single-file artifact holding the project package and every volume snapshot."""

    bundle_path: Path
    inner_dir: str = Field(description="Top-level directory inside the bundle")
    volumes: list[str] = Field(default_factory=list)
    size_bytes: int = 0
    size_human: str = "0 B"
    created_at: datetime


class RestoreOptions(StackModel):
    """Switches for importing a bundle."""

    start: bool = Field(default=False, description="Bring the stack up after restoring")
    force_extract_project: bool = Field(
        default=False, description="Extract project files even if a compose file exists"
    )


class RestoreResult(StackModel):
    """Outcome of a successful restore."""

    bundle_path: Path
    volumes_restored: list[str] = Field(default_factory=list)
    volumes_created: list[str] = Field(default_factory=list)
    project_extracted: bool = False
    started: bool = False
    warnings: list[str] = Field(default_factory=list)
