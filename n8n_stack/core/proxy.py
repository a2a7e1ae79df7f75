"""Host reverse proxy bootstrap through the nginx Ansible playbook."""

import asyncio
import shlex
import shutil
import tempfile
from typing import Any

import ansible_runner
import structlog

from .exceptions import PlaybookError, PreconditionFailure
from .settings import DeploymentContext

logger = structlog.get_logger()


class ProxyBootstrap:
    """Runs the playbook that installs nginx on the host and (optionally) sets up acme.sh."""

    def __init__(self, context: DeploymentContext):
        self.context = context
        self.logger = logger.bind(component="proxy_bootstrap")

    def build_cmdline(self, ansible_args: list[str], dry_run: bool = False) -> str:
        """Extra ansible-playbook options; --dry-run previews with --check --diff."""
        args = (["--check", "--diff"] if dry_run else []) + list(ansible_args)
        return shlex.join(args)

    async def run(self, ansible_args: list[str] | None = None, dry_run: bool = False) -> dict[str, Any]:
        """Run the bootstrap playbook.

        Args:
            ansible_args: Passed through to ansible-playbook (inventory, user, extra vars...)
            dry_run: Preview changes without applying them

        Returns:
            Status, return code and per-host stats

        Raises:
            PreconditionFailure: playbook or ansible-playbook missing
            PlaybookError: the run did not finish successfully
        """
        playbook = self.context.playbook_path
        if not playbook.is_file():
            raise PreconditionFailure(f"Playbook not found: {playbook}")
        if shutil.which("ansible-playbook") is None:
            raise PreconditionFailure(
                "ansible-playbook not found. Install Ansible (pip or system package)."
            )

        cmdline = self.build_cmdline(ansible_args or [], dry_run)
        self.logger.info("Running proxy bootstrap playbook", playbook=str(playbook), cmdline=cmdline, dry_run=dry_run)

        with tempfile.TemporaryDirectory(prefix="n8n-ansible-") as private_data_dir:
            result = await asyncio.to_thread(
                ansible_runner.run,
                private_data_dir=private_data_dir,
                project_dir=str(playbook.parent),
                playbook=playbook.name,
                cmdline=cmdline or None,
            )

        summary = {"status": result.status, "rc": result.rc, "stats": result.stats or {}}
        if result.status != "successful":
            self.logger.error("Proxy bootstrap failed", **summary)
            raise PlaybookError(f"Playbook failed with status: {result.status} (rc={result.rc})")

        self.logger.info("Proxy bootstrap complete", **summary)
        return summary
