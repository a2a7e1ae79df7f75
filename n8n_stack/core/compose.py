"""Docker Compose command execution and the stack controller facade."""

import asyncio
import json
import shutil
import subprocess
from typing import Any

import structlog

from ..models.stack import ServiceStatus
from .exceptions import ComposeCommandError, PreconditionFailure
from .settings import DeploymentContext

logger = structlog.get_logger()


class ComposeRunner:
    """Runs `docker compose` against the deployment's compose and env files."""

    def __init__(self, context: DeploymentContext):
        self.context = context
        self.logger = logger.bind(component="compose_runner")
        self._compose_cmd: list[str] | None = None

    async def _run(
        self, cmd: list[str], *, capture: bool = True, check: bool = True
    ) -> subprocess.CompletedProcess:
        """Run a command from the project root.

        With capture=False the command inherits the terminal, for interactive
        shells and followed logs.
        """
        self.logger.debug("Executing command", command=" ".join(cmd), capture=capture)
        try:
            result = await asyncio.to_thread(
                subprocess.run,  # nosec B603
                cmd,
                cwd=self.context.project_dir,
                capture_output=capture,
                text=True,
                check=False,
            )
        except FileNotFoundError as e:
            raise PreconditionFailure(f"Missing required command: {cmd[0]}") from e

        if check and result.returncode != 0:
            raise ComposeCommandError(cmd, result.returncode, result.stderr if capture else "")
        return result

    async def compose_command(self) -> list[str]:
        """Detect the compose front end: the docker plugin first, then legacy docker-compose."""
        if self._compose_cmd is not None:
            return self._compose_cmd

        docker_bin = self.context.docker_bin
        try:
            result = await self._run([docker_bin, "compose", "version"], check=False)
            plugin_ok = result.returncode == 0
        except PreconditionFailure:
            plugin_ok = False

        if plugin_ok:
            self._compose_cmd = [docker_bin, "compose"]
        elif legacy := shutil.which("docker-compose"):
            self._compose_cmd = [legacy]
        else:
            raise PreconditionFailure(
                "Docker Compose not found. Install Docker Desktop or the docker compose plugin."
            )
        self.logger.debug("Compose command detected", command=self._compose_cmd)
        return self._compose_cmd

    async def is_legacy(self) -> bool:
        """True when running through the standalone docker-compose v1 binary."""
        return len(await self.compose_command()) == 1

    async def compose(
        self, *args: str, capture: bool = True, check: bool = True
    ) -> subprocess.CompletedProcess:
        base = await self.compose_command()
        cmd = base + [
            "-f",
            str(self.context.compose_path),
            "--env-file",
            str(self.context.env_path),
            *args,
        ]
        return await self._run(cmd, capture=capture, check=check)

    async def docker(
        self, *args: str, capture: bool = True, check: bool = True
    ) -> subprocess.CompletedProcess:
        return await self._run([self.context.docker_bin, *args], capture=capture, check=check)


def parse_ps_output(output: str) -> list[ServiceStatus]:
    """Parse `compose ps --format json`.

    Newer Compose releases print one JSON object per line, older ones a single
    JSON array.
    """
    output = output.strip()
    if not output:
        return []

    if output.startswith("["):
        entries: list[dict[str, Any]] = json.loads(output)
    else:
        entries = [json.loads(line) for line in output.splitlines() if line.strip()]

    statuses = []
    for entry in entries:
        state = (entry.get("State") or "unknown").lower()
        health = (entry.get("Health") or "").lower()
        statuses.append(
            ServiceStatus(
                service=entry.get("Service") or entry.get("Name", ""),
                container=entry.get("Name"),
                state=state,
                running=state == "running",
                healthy=(health == "healthy") if health else None,
            )
        )
    return statuses


class StackController:
    """Start/stop facade used to bracket snapshots and resume after a restore.

    Holds no state of its own; the container runtime's view is authoritative.
    """

    def __init__(self, runner: ComposeRunner):
        self.runner = runner
        self.logger = logger.bind(component="stack_controller")

    async def quiesce(self) -> None:
        """Stop services so their volumes are not written during a snapshot."""
        self.logger.info("Stopping services")
        await self.runner.compose("stop")

    async def resume(self) -> None:
        """Bring services up (creating or updating containers as needed)."""
        self.logger.info("Starting services")
        await self.runner.compose("up", "-d", "--remove-orphans")

    async def status(self) -> list[ServiceStatus]:
        if await self.runner.is_legacy():
            return await self._legacy_status()
        result = await self.runner.compose("ps", "--all", "--format", "json")
        try:
            return parse_ps_output(result.stdout)
        except json.JSONDecodeError as e:
            raise ComposeCommandError(
                ["compose", "ps"], 0, f"Unparseable compose ps output: {e}"
            ) from e

    async def _legacy_status(self) -> list[ServiceStatus]:
        """docker-compose v1 has no `ps --format json`; derive state from service name listings."""
        defined = await self.runner.compose("ps", "--services")
        running = await self.runner.compose("ps", "--services", "--filter", "status=running")
        up = set(running.stdout.split())
        return [
            ServiceStatus(
                service=service,
                state="running" if service in up else "not running",
                running=service in up,
            )
            for service in defined.stdout.split()
        ]

    async def is_running(self) -> bool:
        return any(service.running for service in await self.status())

    async def service_running(self, service: str) -> bool:
        return any(s.running for s in await self.status() if s.service == service)
