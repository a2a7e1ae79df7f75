"""Preflight checks for a deployment."""

import asyncio
import re
import shutil
import subprocess
from pathlib import Path
from typing import Any

import structlog
import yaml

from ..constants import (
    ACME_DEPLOY_HOOK,
    CONFLICTING_HOST_SERVICES,
    ENCRYPTION_KEY_VAR,
    NGINX_SSL_DIR,
    NGINX_SSL_INCLUDE,
    NGINX_TEMPLATE,
)
from ..models.stack import DoctorReport
from .compose import ComposeRunner
from .env_file import encryption_key, load_env_file
from .exceptions import PreconditionFailure
from .settings import DeploymentContext
from .storage.base import VolumeStore

logger = structlog.get_logger()

UPSTREAM_PATTERN = re.compile(r"proxy_pass\s+http://\{\{\s*n8n_upstream\s*\}\}")


def declared_volumes(compose: dict[str, Any]) -> set[str]:
    """Names of the top-level volumes a compose file declares (keys and explicit `name:`)."""
    names: set[str] = set()
    for key, spec in (compose.get("volumes") or {}).items():
        names.add(key)
        if isinstance(spec, dict) and spec.get("name"):
            names.add(spec["name"])
    return names


class Doctor:
    """Collects preflight checks into a report instead of stopping at the first problem."""

    def __init__(
        self, context: DeploymentContext, runner: ComposeRunner, volume_store: VolumeStore
    ):
        self.context = context
        self.runner = runner
        self.volume_store = volume_store
        self.logger = logger.bind(component="doctor")

    async def run(self) -> DoctorReport:
        report = DoctorReport()

        docker_ok = await self.volume_store.ping()
        report.add("Docker", docker_ok, "daemon reachable" if docker_ok else "daemon not reachable")
        try:
            compose_cmd = await self.runner.compose_command()
            report.add("Compose", True, " ".join(compose_cmd))
        except PreconditionFailure as e:
            report.add("Compose", False, str(e))

        self._check_compose_file(report)
        self._check_env_file(report)
        self._check_proxy_assets(report)
        await self._check_host_services(report)

        self.logger.info(
            "Doctor checks complete",
            ok=report.ok,
            failed=[c.name for c in report.checks if not c.ok],
        )
        return report

    def _check_compose_file(self, report: DoctorReport) -> None:
        path = self.context.compose_path
        if not path.is_file():
            report.add("Compose file", False, f"missing {self.context.compose_file}")
            return
        report.add("Compose file", True, str(self.context.compose_file))

        try:
            compose = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
        except yaml.YAMLError as e:
            report.add("Compose file syntax", False, f"invalid YAML: {e}")
            return
        if not isinstance(compose, dict):
            report.add("Compose file syntax", False, "top level is not a mapping")
            return

        declared = declared_volumes(compose)
        missing = [v for v in self.context.volumes if v not in declared]
        report.add(
            "Compose volumes",
            not missing,
            f"not declared: {', '.join(missing)}" if missing else "all data volumes declared",
            severity="warning",
        )

    def _check_env_file(self, report: DoctorReport) -> None:
        path = self.context.env_path
        if not path.is_file():
            report.add("Env file", False, f"missing {self.context.env_file}")
            return
        report.add("Env file", True, str(self.context.env_file))

        has_key = encryption_key(load_env_file(path)) is not None
        report.add(
            "Encryption key",
            has_key,
            f"{ENCRYPTION_KEY_VAR} set" if has_key else f"{ENCRYPTION_KEY_VAR} missing or empty",
        )

    def _check_proxy_assets(self, report: DoctorReport) -> None:
        for name, relative in (
            ("nginx template", NGINX_TEMPLATE),
            ("nginx include", NGINX_SSL_INCLUDE),
            ("acme deploy hook", ACME_DEPLOY_HOOK),
        ):
            present = self.context.resolve(relative).is_file()
            report.add(
                name,
                present,
                relative if present else f"missing {relative}",
                severity="warning",
            )

        template = self.context.resolve(NGINX_TEMPLATE)
        if template.is_file():
            uses_upstream = bool(UPSTREAM_PATTERN.search(template.read_text(encoding="utf-8")))
            report.add(
                "nginx upstream",
                uses_upstream,
                "template proxies via n8n_upstream"
                if uses_upstream
                else "template may not proxy via n8n_upstream",
                severity="warning",
            )

        if self.context.resolve(NGINX_SSL_DIR).is_dir():
            report.add("nginx ssl dir", True, f"{NGINX_SSL_DIR} present (optional)", severity="info")

    async def _check_host_services(self, report: DoctorReport) -> None:
        systemctl = shutil.which("systemctl")
        if systemctl is None:
            return
        for service in CONFLICTING_HOST_SERVICES:
            if await self._service_active(systemctl, service):
                report.add(
                    f"host {service}",
                    False,
                    f"host {service} service is active; it may block ports 80/443",
                    severity="warning",
                )

    @staticmethod
    async def _service_active(systemctl: str | Path, service: str) -> bool:
        result = await asyncio.to_thread(
            subprocess.run,  # nosec B603
            [str(systemctl), "is-active", "--quiet", service],
            capture_output=True,
            check=False,
        )
        return result.returncode == 0
