"""Packaging of the project configuration surface."""

from pathlib import Path

import structlog

from ...constants import LOCAL_FILES_DIR, NGINX_DIR, PROJECT_ARCHIVE
from ...models.bundle import ProjectEntry, ProjectPackage
from ...utils import file_size, format_size
from ..exceptions import MissingRequiredFile, PreconditionFailure
from ..settings import DeploymentContext
from ..storage.archive import Archiver

logger = structlog.get_logger()


def project_relative(context: DeploymentContext, path: Path) -> str:
    """Express a deployment path relative to the project root, as stored in project.tgz."""
    try:
        return path.resolve().relative_to(context.project_dir.resolve()).as_posix()
    except ValueError as e:
        raise PreconditionFailure(
            f"{path} is outside the project root {context.project_dir}"
        ) from e


def default_entries(context: DeploymentContext) -> list[ProjectEntry]:
    """Files that make up a deployment, in archive order."""
    return [
        ProjectEntry(
            path=project_relative(context, context.compose_path),
            required=True,
            description="compose stack definition",
        ),
        ProjectEntry(
            path=project_relative(context, context.env_path),
            required=True,
            description=".env with configuration",
        ),
        ProjectEntry(path="manage.sh", description="legacy management script"),
        ProjectEntry(path="README.md", description="operator notes"),
        ProjectEntry(path=NGINX_DIR, description="reverse proxy playbook and assets"),
        ProjectEntry(path=LOCAL_FILES_DIR, description="n8n local workspace files"),
    ]


class ProjectPackager:
    """Archives the files needed to reconstruct the deployment."""

    def __init__(self, context: DeploymentContext, archiver: Archiver):
        self.context = context
        self.archiver = archiver
        self.logger = logger.bind(component="project_packager")

    async def package(
        self, entries: list[ProjectEntry] | None, output_dir: Path
    ) -> ProjectPackage:
        """Write `project.tgz` into `output_dir`.

        Every required entry is checked before anything is written. Optional
        entries that are absent are skipped.

        Raises:
            MissingRequiredFile: a required entry does not exist
        """
        if entries is None:
            entries = default_entries(self.context)

        root = self.context.project_dir
        for entry in entries:
            if entry.required and not (root / entry.path).exists():
                raise MissingRequiredFile(entry.path, entry.description)

        included: list[str] = []
        skipped: list[str] = []
        for entry in entries:
            if (root / entry.path).exists():
                included.append(entry.path)
            else:
                skipped.append(entry.path)
                self.logger.info("Optional project entry not present, skipping", entry=entry.path)

        archive_path = output_dir / PROJECT_ARCHIVE
        await self.archiver.create(archive_path, root, included)

        package = ProjectPackage(
            archive_path=archive_path,
            included=included,
            skipped=skipped,
            size_bytes=file_size(archive_path),
        )
        self.logger.info(
            "Project files packaged",
            archive=str(archive_path),
            included=included,
            size=format_size(package.size_bytes),
        )
        return package
