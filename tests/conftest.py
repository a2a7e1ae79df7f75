"""Shared pytest fixtures for n8n stack tests."""

import io
import subprocess
import tarfile
from pathlib import Path

import pytest

from n8n_stack.core.bundle import BundleAssembler, ProjectPackager, VolumeSnapshotter
from n8n_stack.core.compose import ComposeRunner, parse_ps_output
from n8n_stack.core.exceptions import ComposeCommandError, RestoreInterrupted, SnapshotFailed
from n8n_stack.core.settings import DeploymentContext
from n8n_stack.core.storage import TarArchiver, VolumeStore
from n8n_stack.services import StackService
from n8n_stack.utils import snapshot_filename

ENCRYPTION_KEY = "0123456789abcdef0123456789abcdef"

RUNNING_PS = (
    '[{"Service":"n8n","Name":"n8n-n8n-1","State":"running","Health":""},'
    '{"Service":"postgres","Name":"n8n-postgres-1","State":"running","Health":"healthy"}]'
)
STOPPED_PS = (
    '{"Service":"n8n","Name":"n8n-n8n-1","State":"exited","Health":""}\n'
    '{"Service":"postgres","Name":"n8n-postgres-1","State":"exited","Health":""}\n'
)

COMPOSE_YML = """services:
  n8n:
    image: docker.n8n.io/n8nio/n8n
    volumes:
      - n8n-data:/home/node/.n8n
  postgres:
    image: postgres:16-alpine
    volumes:
      - postgres-data:/var/lib/postgresql/data
volumes:
  n8n-data:
    external: true
  postgres-data:
    external: true
"""

NGINX_TEMPLATE = """server {
    location / {
        proxy_pass http://{{ n8n_upstream }};
    }
}
"""


class InMemoryVolumeStore(VolumeStore):
    """Volume store keeping each volume as a {relative path: bytes} mapping."""

    def __init__(self, volumes: dict[str, dict[str, bytes]] | None = None):
        super().__init__()
        self.volumes: dict[str, dict[str, bytes]] = volumes or {}
        self.mutations: list[tuple[str, str]] = []
        self.fail_snapshot: dict[str, str] = {}
        self.fail_replay: dict[str, str] = {}

    async def exists(self, name: str) -> bool:
        return name in self.volumes

    async def create(self, name: str) -> None:
        self.mutations.append(("create", name))
        self.volumes[name] = {}

    async def snapshot(self, name: str, output_dir: Path) -> Path:
        if name not in self.volumes:
            raise SnapshotFailed(name, "volume does not exist")
        if name in self.fail_snapshot:
            raise SnapshotFailed(name, self.fail_snapshot[name])

        archive_path = output_dir / snapshot_filename(name)
        with tarfile.open(archive_path, "w:gz") as tar:
            root = tarfile.TarInfo("./")
            root.type = tarfile.DIRTYPE
            root.mode = 0o755
            tar.addfile(root)
            for relative, content in sorted(self.volumes[name].items()):
                info = tarfile.TarInfo(f"./{relative}")
                info.size = len(content)
                tar.addfile(info, io.BytesIO(content))
        return archive_path

    async def replay(self, name: str, archive_path: Path) -> None:
        self.mutations.append(("replay", name))
        with tarfile.open(archive_path, "r:gz") as tar:
            for info in tar.getmembers():
                if not info.isfile():
                    continue
                handle = tar.extractfile(info)
                self.volumes[name][info.name.removeprefix("./")] = handle.read()
                if name in self.fail_replay:
                    raise RestoreInterrupted(name, self.fail_replay[name])


class FakeComposeRunner(ComposeRunner):
    """Compose runner recording calls instead of running docker."""

    def __init__(self, context: DeploymentContext, ps_output: str = STOPPED_PS, legacy: bool = False):
        super().__init__(context)
        self.ps_output = ps_output
        self.legacy = legacy
        self.calls: list[tuple[str, ...]] = []
        self.fail_on: dict[str, int] = {}
        self.returncodes: dict[str, int] = {}

    async def compose_command(self) -> list[str]:
        return ["/usr/local/bin/docker-compose"] if self.legacy else ["docker", "compose"]

    def _services_listing(self, args: tuple[str, ...]) -> str:
        """What `ps --services [--filter status=running]` prints for the current ps_output."""
        statuses = parse_ps_output(self.ps_output)
        if "status=running" in args:
            statuses = [s for s in statuses if s.running]
        return "".join(f"{s.service}\n" for s in statuses)

    async def compose(self, *args: str, capture: bool = True, check: bool = True):
        self.calls.append(args)
        cmd = ["docker", "compose", *args]
        if args and args[0] in self.fail_on:
            if check:
                raise ComposeCommandError(cmd, self.fail_on[args[0]], "simulated failure")
            return subprocess.CompletedProcess(cmd, self.fail_on[args[0]], "", "simulated failure")
        stdout = ""
        if args[:2] == ("ps", "--services"):
            stdout = self._services_listing(args)
        elif args[:1] == ("ps",) and "--format" in args:
            if self.legacy:
                raise ComposeCommandError(cmd, 1, "No such option: --all")
            stdout = self.ps_output
        returncode = self.returncodes.get(args[0], 0) if args else 0
        return subprocess.CompletedProcess(cmd, returncode, stdout, "")

    async def docker(self, *args: str, capture: bool = True, check: bool = True):
        self.calls.append(("docker", *args))
        return subprocess.CompletedProcess(["docker", *args], 0, "", "")

    def commands(self) -> list[str]:
        """First word of each recorded call, e.g. ['ps', 'stop', 'up']."""
        return [call[0] for call in self.calls]


async def build_bundle(context, volume_store, archiver, destination: Path, timestamp="2024-09-02-120000"):
    """Snapshot every volume, package the project and assemble, like an export does."""
    assembler = BundleAssembler(archiver, context.scratch_dir)
    with assembler.workspace() as workspace:
        snapshots = await VolumeSnapshotter(volume_store).snapshot_all(context.volumes, workspace)
        package = await ProjectPackager(context, archiver).package(None, workspace)
        return await assembler.assemble(package.archive_path, snapshots, destination, timestamp)


def write_project(project_dir: Path, encryption_key: str | None = ENCRYPTION_KEY) -> Path:
    """Lay out a deployment directory like the one the tooling manages."""
    project_dir.mkdir(parents=True, exist_ok=True)
    (project_dir / "compose.yml").write_text(COMPOSE_YML)
    env = "N8N_DOMAIN=n8n.example.com\nTIMEZONE=Europe/Berlin\nPOSTGRES_USER=n8n\n"
    if encryption_key is not None:
        env += f"N8N_ENCRYPTION_KEY={encryption_key}\n"
    (project_dir / ".env").write_text(env)
    (project_dir / "README.md").write_text("# n8n deployment\n")
    template = project_dir / "nginx" / "templates" / "n8n.conf.j2"
    template.parent.mkdir(parents=True)
    template.write_text(NGINX_TEMPLATE)
    (project_dir / "local-files").mkdir()
    (project_dir / "local-files" / "workflow.json").write_text('{"name": "demo"}')
    return project_dir


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    """Keep the host's deployment variables out of DeploymentContext."""
    for var in (
        "COMPOSE_FILE",
        "ENV_FILE",
        "DOCKER_BIN",
        "N8N_STACK_PROJECT_DIR",
        "N8N_STACK_HELPER_IMAGE",
        "N8N_STACK_SCRATCH_DIR",
        "N8N_STACK_VOLUMES",
        "ANSIBLE_PLAYBOOK",
        "LOG_LEVEL",
    ):
        monkeypatch.delenv(var, raising=False)


@pytest.fixture
def project_dir(tmp_path: Path) -> Path:
    return write_project(tmp_path / "project")


@pytest.fixture
def scratch_dir(tmp_path: Path) -> Path:
    path = tmp_path / "scratch"
    path.mkdir()
    return path


@pytest.fixture
def context(project_dir: Path, scratch_dir: Path) -> DeploymentContext:
    return DeploymentContext(project_dir=project_dir, scratch_dir=scratch_dir)


@pytest.fixture
def volume_store() -> InMemoryVolumeStore:
    return InMemoryVolumeStore(
        {
            "n8n-data": {"a.txt": b"hello", "nodes/custom.js": b"module.exports = {};"},
            "postgres-data": {"b.bin": bytes([0x01, 0x02]), "PG_VERSION": b"16\n"},
        }
    )


@pytest.fixture
def archiver() -> TarArchiver:
    return TarArchiver()


@pytest.fixture
def runner(context: DeploymentContext) -> FakeComposeRunner:
    return FakeComposeRunner(context)


@pytest.fixture
def service(
    context: DeploymentContext,
    volume_store: InMemoryVolumeStore,
    archiver: TarArchiver,
    runner: FakeComposeRunner,
) -> StackService:
    return StackService(context, volume_store=volume_store, archiver=archiver, runner=runner)
