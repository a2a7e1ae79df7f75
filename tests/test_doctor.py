"""Tests for preflight checks."""

import subprocess
from unittest.mock import patch

import pytest

from n8n_stack.core.doctor import Doctor, declared_volumes
from n8n_stack.core.exceptions import PreconditionFailure
from tests.conftest import InMemoryVolumeStore


class UnreachableStore(InMemoryVolumeStore):
    async def ping(self) -> bool:
        return False


def checks_by_name(report):
    return {check.name: check for check in report.checks}


@pytest.fixture
def no_systemctl():
    with patch("n8n_stack.core.doctor.shutil.which", return_value=None):
        yield


@pytest.fixture
def proxy_assets(project_dir):
    for relative in ("nginx/files/includes/ssl.conf", "nginx/files/acme.sh/deploy/nginx.sh"):
        path = project_dir / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text("# placeholder\n")
    return project_dir


class TestDeclaredVolumes:
    def test_keys_and_explicit_names(self):
        compose = {
            "volumes": {
                "n8n-data": {"external": True},
                "db": {"name": "postgres-data"},
                "cache": None,
            }
        }

        assert declared_volumes(compose) == {"n8n-data", "db", "postgres-data", "cache"}

    def test_no_volumes_section(self):
        assert declared_volumes({"services": {}}) == set()


@pytest.mark.usefixtures("no_systemctl")
class TestDoctor:
    """Preflight report contents."""

    @pytest.mark.asyncio
    async def test_healthy_deployment(self, context, runner, volume_store, proxy_assets):
        report = await Doctor(context, runner, volume_store).run()

        assert report.ok
        assert all(check.ok for check in report.checks)
        checks = checks_by_name(report)
        assert checks["Compose"].detail == "docker compose"
        assert checks["nginx upstream"].ok

    @pytest.mark.asyncio
    async def test_missing_proxy_assets_are_warnings(self, context, runner, volume_store):
        report = await Doctor(context, runner, volume_store).run()

        checks = checks_by_name(report)
        assert report.ok
        assert not checks["nginx include"].ok
        assert checks["nginx include"].severity == "warning"
        assert not checks["acme deploy hook"].ok

    @pytest.mark.asyncio
    async def test_docker_unreachable(self, context, runner, proxy_assets):
        report = await Doctor(context, runner, UnreachableStore()).run()

        assert not report.ok
        assert checks_by_name(report)["Docker"].detail == "daemon not reachable"

    @pytest.mark.asyncio
    async def test_compose_missing(self, context, runner, volume_store, proxy_assets):
        async def no_compose():
            raise PreconditionFailure("Docker Compose not found.")

        runner.compose_command = no_compose

        report = await Doctor(context, runner, volume_store).run()

        assert not report.ok
        assert checks_by_name(report)["Compose"].detail == "Docker Compose not found."

    @pytest.mark.asyncio
    async def test_missing_encryption_key(self, context, runner, volume_store, proxy_assets):
        context.env_path.write_text("N8N_DOMAIN=n8n.example.com\nN8N_ENCRYPTION_KEY=\n")

        report = await Doctor(context, runner, volume_store).run()

        assert not report.ok
        check = checks_by_name(report)["Encryption key"]
        assert not check.ok
        assert "missing or empty" in check.detail

    @pytest.mark.asyncio
    async def test_missing_files_reported_together(self, context, runner, volume_store):
        context.env_path.unlink()
        context.compose_path.unlink()

        report = await Doctor(context, runner, volume_store).run()

        checks = checks_by_name(report)
        assert not checks["Compose file"].ok
        assert not checks["Env file"].ok
        assert "Encryption key" not in checks

    @pytest.mark.asyncio
    async def test_invalid_compose_yaml(self, context, runner, volume_store, proxy_assets):
        context.compose_path.write_text("services: [unclosed\n")

        report = await Doctor(context, runner, volume_store).run()

        assert not report.ok
        assert "invalid YAML" in checks_by_name(report)["Compose file syntax"].detail

    @pytest.mark.asyncio
    async def test_undeclared_volume_is_warning(self, context, runner, volume_store, proxy_assets):
        context.compose_path.write_text("services:\n  n8n:\n    image: n8n\nvolumes:\n  n8n-data: {}\n")

        report = await Doctor(context, runner, volume_store).run()

        check = checks_by_name(report)["Compose volumes"]
        assert report.ok
        assert not check.ok
        assert check.detail == "not declared: postgres-data"

    @pytest.mark.asyncio
    async def test_template_without_upstream(self, context, runner, volume_store, proxy_assets):
        (context.project_dir / "nginx/templates/n8n.conf.j2").write_text(
            "server { location / { proxy_pass http://127.0.0.1:5678; } }\n"
        )

        report = await Doctor(context, runner, volume_store).run()

        assert not checks_by_name(report)["nginx upstream"].ok

    @pytest.mark.asyncio
    async def test_ssl_dir_is_informational(self, context, runner, volume_store, proxy_assets):
        (context.project_dir / "nginx/files/ssl").mkdir(parents=True)

        report = await Doctor(context, runner, volume_store).run()

        assert checks_by_name(report)["nginx ssl dir"].severity == "info"


class TestHostServices:
    """Host nginx/apache detection through systemctl."""

    @pytest.mark.asyncio
    async def test_active_host_nginx_warns(self, context, runner, volume_store, proxy_assets):
        def fake_run(cmd, **kwargs):
            return subprocess.CompletedProcess(cmd, 0 if cmd[-1] == "nginx" else 3, b"", b"")

        with (
            patch("n8n_stack.core.doctor.shutil.which", return_value="/usr/bin/systemctl"),
            patch("n8n_stack.core.doctor.subprocess.run", side_effect=fake_run),
        ):
            report = await Doctor(context, runner, volume_store).run()

        checks = checks_by_name(report)
        assert report.ok
        assert not checks["host nginx"].ok
        assert checks["host nginx"].severity == "warning"
        assert "host apache2" not in checks
