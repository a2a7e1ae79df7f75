"""Bundle restore: the inverse of assembly."""

import shutil
import tempfile
from pathlib import Path

import structlog

from ...constants import ENCRYPTION_KEY_VAR, IMPORT_SCRATCH_PREFIX, PROJECT_ARCHIVE
from ...models.bundle import RestoreOptions, RestoreResult
from ...utils import snapshot_filename
from ..compose import StackController
from ..env_file import encryption_key, load_env_file, parse_env_content
from ..exceptions import MalformedBundle, PreconditionFailure, RestoreInterrupted, StackError
from ..settings import DeploymentContext
from ..storage.archive import ArchiveError, Archiver
from ..storage.base import VolumeStore
from .packager import project_relative

logger = structlog.get_logger()


class BundleRestorer:
    """Unpacks a bundle, replays each snapshot into its volume and restores project files.

    Volume replay is not transactional: a failure part way through leaves the
    volume partially overwritten. Recovery is re-running the restore from a
    known-good bundle.
    """

    def __init__(
        self,
        context: DeploymentContext,
        volume_store: VolumeStore,
        archiver: Archiver,
        controller: StackController | None = None,
    ):
        self.context = context
        self.volume_store = volume_store
        self.archiver = archiver
        self.controller = controller
        self.logger = logger.bind(component="bundle_restorer")

    def _mkdtemp(self) -> Path:
        scratch_root = self.context.scratch_dir
        if scratch_root is not None:
            scratch_root.mkdir(parents=True, exist_ok=True)
        return Path(tempfile.mkdtemp(prefix=IMPORT_SCRATCH_PREFIX, dir=scratch_root))

    async def restore(
        self, bundle_path: Path, options: RestoreOptions | None = None
    ) -> RestoreResult:
        """Restore volumes (and, when appropriate, project files) from a bundle.

        The scratch directory is removed after a successful restore and kept
        after a failed one so the extracted content can be inspected.

        Raises:
            PreconditionFailure: bundle file not found
            MalformedBundle: bundle structure invalid (no volume touched)
            RestoreInterrupted: a volume replay failed
        """
        options = options or RestoreOptions()
        if not bundle_path.is_file():
            raise PreconditionFailure(f"Bundle not found: {bundle_path}")

        result = RestoreResult(bundle_path=bundle_path)
        scratch = self._mkdtemp()
        self.logger.info("Extracting bundle", bundle=str(bundle_path), scratch=str(scratch))
        try:
            inner = await self._unpack(bundle_path, scratch)
            await self._replay_volumes(inner, result)
            await self._restore_project(inner / PROJECT_ARCHIVE, options, result)
        except Exception:
            self.logger.error(
                "Restore failed; scratch directory kept for inspection", scratch=str(scratch)
            )
            raise

        try:
            shutil.rmtree(scratch)
        except OSError as e:
            self.logger.warning("Failed to remove scratch directory", path=str(scratch), error=str(e))

        if options.start:
            if self.controller is None:
                raise StackError("Cannot start the stack: no stack controller configured")
            await self.controller.resume()
            result.started = True

        self.logger.info(
            "Import complete",
            volumes=result.volumes_restored,
            project_extracted=result.project_extracted,
            started=result.started,
        )
        return result

    async def _unpack(self, bundle_path: Path, scratch: Path) -> Path:
        """Extract the bundle and validate its layout before any volume is touched."""
        try:
            await self.archiver.extract(bundle_path, scratch)
        except ArchiveError as e:
            raise MalformedBundle(f"Bundle could not be extracted: {e}") from e

        directories = sorted(p for p in scratch.iterdir() if p.is_dir())
        if not directories:
            raise MalformedBundle("Bundle is missing the inner export directory")
        if len(directories) > 1:
            names = ", ".join(p.name for p in directories)
            raise MalformedBundle(f"Bundle has more than one top-level directory: {names}")

        inner = directories[0]
        expected = [PROJECT_ARCHIVE] + [snapshot_filename(v) for v in self.context.volumes]
        missing = [name for name in expected if not (inner / name).is_file()]
        if missing:
            raise MalformedBundle(
                f"Bundle directory {inner.name} is missing: {', '.join(missing)}"
            )
        return inner

    async def _replay_volumes(self, inner: Path, result: RestoreResult) -> None:
        for volume in self.context.volumes:
            try:
                if not await self.volume_store.exists(volume):
                    await self.volume_store.create(volume)
                    result.volumes_created.append(volume)

                self.logger.info("Restoring volume", volume=volume)
                await self.volume_store.replay(volume, inner / snapshot_filename(volume))
            except RestoreInterrupted:
                raise
            except (StackError, OSError) as e:
                raise RestoreInterrupted(volume, str(e)) from e
            result.volumes_restored.append(volume)

    async def _restore_project(
        self, project_archive: Path, options: RestoreOptions, result: RestoreResult
    ) -> None:
        project_dir = self.context.project_dir
        compose_present = self.context.compose_path.is_file()

        if compose_present and not options.force_extract_project:
            message = (
                f"{self.context.compose_file} exists; skipping project extraction. "
                "Use --force-extract to override."
            )
            self.logger.warning(message)
            result.warnings.append(message)
            await self._compare_encryption_keys(project_archive, result)
            return

        self.logger.info("Extracting project files", destination=str(project_dir))
        await self.archiver.extract(project_archive, project_dir)
        result.project_extracted = True

        if encryption_key(load_env_file(self.context.env_path)) is None:
            message = (
                f"{ENCRYPTION_KEY_VAR} is not set in {self.context.env_file}; "
                "restored credentials cannot be decrypted without the original key"
            )
            self.logger.warning(message)
            result.warnings.append(message)

    async def _compare_encryption_keys(self, project_archive: Path, result: RestoreResult) -> None:
        """Warn when the live env file carries a different key than the restored data expects."""
        member = project_relative(self.context, self.context.env_path)
        content = await self.archiver.read_member(project_archive, member)
        if content is None:
            return

        bundled = encryption_key(parse_env_content(content))
        live = encryption_key(load_env_file(self.context.env_path))
        if bundled and bundled != live:
            message = (
                f"{ENCRYPTION_KEY_VAR} in {self.context.env_file} differs from the bundled one; "
                "restored credentials will only decrypt with the bundled key"
            )
            self.logger.warning(message)
            result.warnings.append(message)
