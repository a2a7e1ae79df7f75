"""
Stack Service

Business logic behind every n8n-stack command: compose lifecycle, preflight
checks and the bundle export/import procedure.
"""

import shutil
from pathlib import Path

import structlog

from ..constants import N8N_SERVICE, POSTGRES_SERVICE
from ..core.bundle import (
    BundleAssembler,
    BundleRestorer,
    ProjectPackager,
    VolumeSnapshotter,
    default_bundle_name,
    default_entries,
)
from ..core.compose import ComposeRunner, StackController
from ..core.doctor import Doctor
from ..core.exceptions import MissingRequiredFile, PreconditionFailure
from ..core.proxy import ProxyBootstrap
from ..core.settings import DeploymentContext
from ..core.storage import Archiver, DockerVolumeStore, TarArchiver, VolumeStore
from ..models import (
    BundleInfo,
    DoctorReport,
    ProjectEntry,
    RestoreOptions,
    RestoreResult,
    ServiceStatus,
)
from ..utils import bundle_timestamp

PSQL_DEFAULT = 'psql -U "$POSTGRES_USER" "$POSTGRES_DB"'


class StackService:
    """Service for managing the n8n + postgres compose stack and its bundles."""

    def __init__(
        self,
        context: DeploymentContext,
        volume_store: VolumeStore | None = None,
        archiver: Archiver | None = None,
        runner: ComposeRunner | None = None,
    ):
        self.context = context
        self.volume_store = volume_store or DockerVolumeStore(helper_image=context.helper_image)
        self.archiver = archiver or TarArchiver()
        self.runner = runner or ComposeRunner(context)
        self.controller = StackController(self.runner)
        self.snapshotter = VolumeSnapshotter(self.volume_store)
        self.packager = ProjectPackager(context, self.archiver)
        self.assembler = BundleAssembler(self.archiver, context.scratch_dir)
        self.restorer = BundleRestorer(context, self.volume_store, self.archiver, self.controller)
        self.logger = structlog.get_logger().bind(component="stack_service")

    # Preconditions

    def require_config(self) -> None:
        """Both the compose definition and the env file must exist."""
        if not self.context.compose_path.is_file():
            raise MissingRequiredFile(self.context.compose_file, "compose stack definition")
        if not self.context.env_path.is_file():
            raise MissingRequiredFile(self.context.env_file, ".env with configuration")

    def require_docker(self) -> None:
        if shutil.which(self.context.docker_bin) is None:
            raise PreconditionFailure(f"Missing required command: {self.context.docker_bin}")

    # Lifecycle

    async def init(self) -> dict[str, list[str]]:
        """Create the external data volumes if they do not exist yet."""
        self.require_config()
        self.require_docker()

        created: list[str] = []
        existing: list[str] = []
        self.logger.info("Initializing external volumes", volumes=list(self.context.volumes))
        for volume in self.context.volumes:
            if await self.volume_store.exists(volume):
                self.logger.info("Volume already exists", volume=volume)
                existing.append(volume)
            else:
                await self.volume_store.create(volume)
                created.append(volume)
        return {"created": created, "existing": existing}

    async def doctor(self) -> DoctorReport:
        return await Doctor(self.context, self.runner, self.volume_store).run()

    async def pull(self) -> None:
        self.require_config()
        await self.runner.compose("pull", capture=False)

    async def start(self) -> None:
        self.require_config()
        await self.controller.resume()
        await self.runner.compose("ps", capture=False)

    async def stop(self) -> None:
        self.require_config()
        await self.controller.quiesce()

    async def down(self) -> None:
        """Stop and remove containers and the network; volumes are kept."""
        self.require_config()
        await self.runner.compose("down", capture=False)

    async def restart(self) -> None:
        self.require_config()
        await self.runner.compose("restart", capture=False)
        await self.runner.compose("ps", capture=False)

    async def status(self) -> list[ServiceStatus]:
        self.require_config()
        return await self.controller.status()

    async def logs(self, args: list[str]) -> int:
        self.require_config()
        log_args = args or ["-f", "--tail=100"]
        result = await self.runner.compose("logs", *log_args, capture=False, check=False)
        return result.returncode

    async def upgrade(self) -> None:
        """Pull images, recreate containers and prune unused images."""
        self.require_config()
        self.logger.info("Pulling images")
        await self.runner.compose("pull", capture=False)
        self.logger.info("Recreating containers")
        await self.controller.resume()
        self.logger.info("Pruning unused images")
        prune = await self.runner.docker("image", "prune", "-f", check=False)
        if prune.returncode != 0:
            self.logger.warning("Image prune failed", stderr=prune.stderr.strip())
        await self.runner.compose("ps", capture=False)

    # Interactive access

    async def exec(self, service: str, command: list[str]) -> int:
        self.require_config()
        tty = await self._tty_flags()
        result = await self.runner.compose(
            "exec", *tty, service, *(command or ["/bin/sh"]), capture=False, check=False
        )
        return result.returncode

    async def _tty_flags(self) -> list[str]:
        # docker-compose v1 exec allocates a TTY by default and rejects -i/-t
        return [] if await self.runner.is_legacy() else ["-it"]

    async def _require_running(self, service: str) -> None:
        if not await self.controller.service_running(service):
            raise PreconditionFailure(
                f"Service '{service}' is not running. "
                "Start the stack with 'n8n-stack start' then retry."
            )

    async def _has_bash(self, service: str) -> bool:
        check = await self.runner.compose(
            "exec", "-T", service, "/bin/bash", "-c", "exit 0", check=False
        )
        return check.returncode == 0

    async def console(self, service: str = N8N_SERVICE) -> int:
        """Interactive shell in a running service, bash when available."""
        self.require_config()
        await self._require_running(service)
        shell = "/bin/bash" if await self._has_bash(service) else "/bin/sh"
        tty = await self._tty_flags()
        result = await self.runner.compose("exec", *tty, service, shell, capture=False, check=False)
        return result.returncode

    async def psql(self, args: list[str]) -> int:
        """psql in the postgres service; without args, connect with the container's own credentials."""
        self.require_config()
        await self._require_running(POSTGRES_SERVICE)
        if args:
            command = ["psql", *args]
        else:
            shell = "bash" if await self._has_bash(POSTGRES_SERVICE) else "sh"
            command = [shell, "-lc", PSQL_DEFAULT]
        tty = await self._tty_flags()
        result = await self.runner.compose(
            "exec", *tty, POSTGRES_SERVICE, *command, capture=False, check=False
        )
        return result.returncode

    # Bundles

    async def export_bundle(self, out: str | None = None, live: bool = False) -> BundleInfo:
        """Quiesce, snapshot every volume, package the project, assemble, then resume.

        Services that were running are brought back up even if the export fails.
        With live=True the stack is left running and the database snapshot may
        be inconsistent.
        """
        self.require_config()
        entries = default_entries(self.context)
        timestamp = bundle_timestamp()
        destination = self.context.resolve(out) if out else self.context.project_dir / default_bundle_name(timestamp)
        if destination.exists():
            raise PreconditionFailure(f"Refusing to overwrite existing bundle: {destination}")

        was_running = False
        if live:
            self.logger.warning(
                "Snapshotting while services may be running; the database snapshot may be inconsistent"
            )
        else:
            was_running = await self.controller.is_running()
            if was_running:
                await self.controller.quiesce()

        try:
            info = await self._export(entries, destination, timestamp)
        except Exception:
            if was_running:
                await self._resume_quietly()
            raise

        if was_running:
            await self.controller.resume()

        self.logger.info(
            "Transfer the bundle to the target and import it",
            bundle=str(info.bundle_path),
            command=f"n8n-stack import-bundle {info.bundle_path.name}",
        )
        return info

    async def _export(
        self, entries: list[ProjectEntry], destination: Path, timestamp: str
    ) -> BundleInfo:
        with self.assembler.workspace() as workspace:
            self.logger.info("Snapshotting volumes", volumes=list(self.context.volumes))
            snapshots = await self.snapshotter.snapshot_all(self.context.volumes, workspace)
            self.logger.info("Bundling project files")
            package = await self.packager.package(entries, workspace)
            return await self.assembler.assemble(
                package.archive_path, snapshots, destination, timestamp
            )

    async def _resume_quietly(self) -> None:
        try:
            await self.controller.resume()
        except Exception as e:
            self.logger.warning("Failed to resume services after a failed export", error=str(e))

    async def import_bundle(
        self, bundle: str, start: bool = False, force_extract: bool = False
    ) -> RestoreResult:
        options = RestoreOptions(start=start, force_extract_project=force_extract)
        return await self.restorer.restore(Path(bundle).expanduser().resolve(), options)

    # Reverse proxy

    async def proxy(self, ansible_args: list[str], dry_run: bool = False) -> dict:
        return await ProxyBootstrap(self.context).run(ansible_args, dry_run=dry_run)
