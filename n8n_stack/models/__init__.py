"""Data models for the n8n stack tooling."""

from .bundle import (  # noqa: F401
    BundleInfo,
    ProjectEntry,
    ProjectPackage,
    RestoreOptions,
    RestoreResult,
    Snapshot,
    StackModel,
)
from .stack import DoctorCheck, DoctorReport, ServiceStatus  # noqa: F401

__all__ = [
    # Bundle models
    "BundleInfo",
    "ProjectEntry",
    "ProjectPackage",
    "RestoreOptions",
    "RestoreResult",
    "Snapshot",
    "StackModel",
    # Stack models
    "DoctorCheck",
    "DoctorReport",
    "ServiceStatus",
]
