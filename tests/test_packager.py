"""Tests for project packaging and volume snapshots."""

import tarfile

import pytest

from n8n_stack.core.bundle import ProjectPackager, VolumeSnapshotter, default_entries
from n8n_stack.core.exceptions import MissingRequiredFile, PreconditionFailure, SnapshotFailed
from n8n_stack.core.settings import DeploymentContext
from n8n_stack.models import ProjectEntry
from tests.conftest import InMemoryVolumeStore


def top_level_order(archive) -> list[str]:
    """Top-level names in the order they appear in the archive."""
    seen: list[str] = []
    with tarfile.open(archive, "r:gz") as tar:
        for name in tar.getnames():
            top = name.split("/")[0]
            if top not in seen:
                seen.append(top)
    return seen


class TestDefaultEntries:
    def test_required_and_optional(self, context):
        entries = default_entries(context)

        assert [(e.path, e.required) for e in entries] == [
            ("compose.yml", True),
            (".env", True),
            ("manage.sh", False),
            ("README.md", False),
            ("nginx", False),
            ("local-files", False),
        ]

    def test_custom_file_names(self, project_dir, scratch_dir):
        context = DeploymentContext(
            project_dir=project_dir,
            compose_file="deploy/compose.prod.yml",
            env_file="deploy/prod.env",
            scratch_dir=scratch_dir,
        )

        paths = [e.path for e in default_entries(context) if e.required]

        assert paths == ["deploy/compose.prod.yml", "deploy/prod.env"]

    def test_env_file_outside_project_rejected(self, project_dir, tmp_path):
        context = DeploymentContext(project_dir=project_dir, env_file=str(tmp_path / "elsewhere.env"))

        with pytest.raises(PreconditionFailure, match="outside the project root"):
            default_entries(context)


class TestProjectPackager:
    @pytest.mark.asyncio
    async def test_package_includes_present_entries_in_order(self, context, archiver, tmp_path):
        out = tmp_path / "out"

        package = await ProjectPackager(context, archiver).package(None, out)

        assert package.archive_path == out / "project.tgz"
        assert package.included == ["compose.yml", ".env", "README.md", "nginx", "local-files"]
        assert package.skipped == ["manage.sh"]
        assert top_level_order(package.archive_path) == package.included

    @pytest.mark.asyncio
    async def test_directories_are_recursive(self, context, archiver, tmp_path):
        package = await ProjectPackager(context, archiver).package(None, tmp_path)

        with tarfile.open(package.archive_path, "r:gz") as tar:
            members = tar.getnames()

        assert "nginx/templates/n8n.conf.j2" in members
        assert "local-files/workflow.json" in members

    @pytest.mark.asyncio
    @pytest.mark.parametrize("missing", ["compose.yml", ".env"])
    async def test_missing_required_file_fails(self, context, archiver, tmp_path, missing):
        """A missing required file is an error, not a silently smaller archive."""
        (context.project_dir / missing).unlink()

        with pytest.raises(MissingRequiredFile) as exc_info:
            await ProjectPackager(context, archiver).package(None, tmp_path)

        assert exc_info.value.path == missing
        assert not (tmp_path / "project.tgz").exists()

    @pytest.mark.asyncio
    async def test_explicit_entry_list(self, context, archiver, tmp_path):
        entries = [
            ProjectEntry(path="compose.yml", required=True),
            ProjectEntry(path="does-not-exist", required=False),
        ]

        package = await ProjectPackager(context, archiver).package(entries, tmp_path)

        assert package.included == ["compose.yml"]
        assert package.skipped == ["does-not-exist"]

    @pytest.mark.asyncio
    async def test_env_file_archived_verbatim(self, context, archiver, tmp_path):
        package = await ProjectPackager(context, archiver).package(None, tmp_path)

        content = await archiver.read_member(package.archive_path, ".env")

        assert content == context.env_path.read_bytes()


class TestVolumeSnapshotter:
    @pytest.mark.asyncio
    async def test_snapshot(self, volume_store, tmp_path):
        snapshot = await VolumeSnapshotter(volume_store).snapshot("n8n-data", tmp_path / "ws")

        assert snapshot.volume == "n8n-data"
        assert snapshot.archive_path == tmp_path / "ws" / "n8n-data.tgz"
        assert snapshot.size_bytes > 0
        assert volume_store.mutations == []

    @pytest.mark.asyncio
    async def test_missing_volume_is_not_created(self, tmp_path):
        store = InMemoryVolumeStore()

        with pytest.raises(SnapshotFailed, match="does not exist"):
            await VolumeSnapshotter(store).snapshot("n8n-data", tmp_path)

        assert store.volumes == {}
        assert store.mutations == []

    @pytest.mark.asyncio
    async def test_snapshot_all_stops_at_first_failure(self, volume_store, tmp_path):
        volume_store.fail_snapshot["n8n-data"] = "tar exited 2"

        with pytest.raises(SnapshotFailed) as exc_info:
            await VolumeSnapshotter(volume_store).snapshot_all(["n8n-data", "postgres-data"], tmp_path)

        assert exc_info.value.volume == "n8n-data"
        assert not (tmp_path / "postgres-data.tgz").exists()
