"""n8n-stack command line: manage the n8n + postgres compose stack and its bundles."""

import argparse
import asyncio
import os
import sys
import tempfile
from pathlib import Path
from typing import Any

from .constants import N8N_SERVICE
from .core.exceptions import ComposeCommandError, StackError
from .core.logging_config import get_logger, setup_logging
from .core.settings import DeploymentContext
from .models import DoctorReport, ServiceStatus
from .services import StackService

# Commands whose trailing arguments go verbatim to the underlying tool,
# mapped to how many fixed positionals precede them.
PASSTHROUGH_COMMANDS = {"logs": 0, "psql": 0, "exec": 1, "proxy": 0}

# Flag spellings accepted by the old manage.sh
LEGACY_FLAGS = {
    "--init": "init",
    "--doctor": "doctor",
    "--build": "build",
    "--start": "start",
    "--stop": "stop",
    "--down": "down",
    "--restart": "restart",
    "--status": "status",
    "--logs": "logs",
    "--upgrade": "upgrade",
    "--console": "console",
    "--psql": "psql",
    "--exec": "exec",
    "--export-bundle": "export-bundle",
    "--import-bundle": "import-bundle",
}

GLOBAL_VALUE_OPTIONS = {"--project-dir", "--compose-file", "--env-file", "--log-level"}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="n8n-stack",
        description="Manage the n8n + nginx + postgres compose stack. Safe by default.",
    )
    parser.add_argument("--project-dir", help="Project root (default: current directory)")
    parser.add_argument("--compose-file", help="Compose file (default: compose.yml, env COMPOSE_FILE)")
    parser.add_argument("--env-file", help="Env file (default: .env, env ENV_FILE)")
    parser.add_argument(
        "--log-level",
        default=os.getenv("LOG_LEVEL", "INFO"),
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level",
    )

    sub = parser.add_subparsers(dest="command", metavar="command")
    sub.add_parser("init", help="Create external volumes and run basic preflight checks")
    sub.add_parser("doctor", help="Run preflight checks (Docker, env, nginx config, certs)")
    sub.add_parser("build", aliases=["pull"], help="Pull images referenced by the compose file")
    sub.add_parser("start", aliases=["up"], help="Start or update the stack (up -d)")
    sub.add_parser("stop", help="Gracefully stop services")
    sub.add_parser("down", help="Stop and remove containers/network (keeps volumes)")
    sub.add_parser("restart", help="Restart all services")
    sub.add_parser("status", aliases=["ps"], help="Show service status")
    sub.add_parser("logs", help="Show logs: logs [SERVICE] [-f] (default: follow all, last 100)")
    sub.add_parser("upgrade", help="Pull latest images, recreate containers, remove orphans")

    console = sub.add_parser("console", help="Open an interactive shell inside a running service")
    console.add_argument("service", nargs="?", default=N8N_SERVICE)

    sub.add_parser("psql", help="Open psql in the postgres service: psql [ARGS...]")

    exec_parser = sub.add_parser("exec", help="Exec into a service: exec SERVICE [COMMAND...]")
    exec_parser.add_argument("service")

    export = sub.add_parser("export-bundle", help="Create a single-file migration bundle")
    export.add_argument("--out", help="Bundle file name (default: n8n-bundle-<timestamp>.tgz)")
    export.add_argument(
        "--live",
        action="store_true",
        help="Do not stop running services first (database snapshot may be inconsistent)",
    )

    import_parser = sub.add_parser("import-bundle", help="Restore volumes (and project files) from a bundle")
    import_parser.add_argument("bundle", help="Path to the bundle .tgz")
    import_parser.add_argument("--start", action="store_true", help="Start the stack afterwards")
    import_parser.add_argument(
        "--force-extract",
        action="store_true",
        help="Extract project files even if the compose file already exists",
    )

    proxy = sub.add_parser(
        "proxy", help="Run the nginx/acme.sh bootstrap playbook: proxy [--dry-run] [ansible args]"
    )
    proxy.add_argument("--dry-run", action="store_true", help="Preview with --check --diff")
    return parser


def _split_passthrough(argv: list[str]) -> tuple[list[str], list[str]]:
    """Split argv into the part argparse handles and the part passed through verbatim."""
    argv = list(argv)
    i = 0
    while i < len(argv):
        token = argv[i]
        if token in LEGACY_FLAGS:
            argv[i] = token = LEGACY_FLAGS[token]
        if token in GLOBAL_VALUE_OPTIONS:
            i += 2
            continue
        if token.startswith("-"):
            i += 1
            continue
        if token not in PASSTHROUGH_COMMANDS:
            return argv, []
        end = i + 1 + PASSTHROUGH_COMMANDS[token]
        if token == "proxy" and end < len(argv) and argv[end] == "--dry-run":
            end += 1
        return argv[:end], argv[end:]
    return argv, []


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command line arguments."""
    head, rest = _split_passthrough(sys.argv[1:] if argv is None else argv)
    args = build_parser().parse_args(head)
    args.rest = rest
    return args


def build_context(args: argparse.Namespace) -> DeploymentContext:
    overrides: dict[str, Any] = {"log_level": args.log_level}
    if args.project_dir:
        overrides["project_dir"] = Path(args.project_dir).expanduser().resolve()
    if args.compose_file:
        overrides["compose_file"] = args.compose_file
    if args.env_file:
        overrides["env_file"] = args.env_file
    return DeploymentContext(**overrides)


def print_status(statuses: list[ServiceStatus]) -> None:
    if not statuses:
        print("No services found. Start the stack with: n8n-stack start")
        return
    print(f"{'SERVICE':<16} {'STATE':<12} {'RUNNING':<8} HEALTH")
    for s in statuses:
        health = "-" if s.healthy is None else ("healthy" if s.healthy else "unhealthy")
        print(f"{s.service:<16} {s.state:<12} {'yes' if s.running else 'no':<8} {health}")


def print_report(report: DoctorReport) -> None:
    print("== Preflight checks ==")
    for check in report.checks:
        if check.ok:
            marker = "OK"
        else:
            marker = "NOT OK" if check.severity == "error" else "WARN"
        print(f"{check.name}: {marker} ({check.detail})" if check.detail else f"{check.name}: {marker}")
    print("Doctor checks complete." if report.ok else "Doctor found problems.")


async def run_command(service: StackService, args: argparse.Namespace) -> int:
    """Dispatch one command; returns the process exit code."""
    command = {"pull": "build", "up": "start", "ps": "status"}.get(args.command, args.command)

    if command == "init":
        result = await service.init()
        for volume in result["created"]:
            print(f"Created volume: {volume}")
        for volume in result["existing"]:
            print(f"Volume already exists: {volume}")
        print("Done. Run 'n8n-stack doctor' for an extra sanity check.")
    elif command == "doctor":
        report = await service.doctor()
        print_report(report)
        return 0 if report.ok else 1
    elif command == "build":
        await service.pull()
    elif command == "start":
        await service.start()
    elif command == "stop":
        await service.stop()
    elif command == "down":
        await service.down()
    elif command == "restart":
        await service.restart()
    elif command == "status":
        print_status(await service.status())
    elif command == "logs":
        return await service.logs(args.rest)
    elif command == "upgrade":
        await service.upgrade()
    elif command == "console":
        return await service.console(args.service)
    elif command == "psql":
        return await service.psql(args.rest)
    elif command == "exec":
        return await service.exec(args.service, args.rest)
    elif command == "export-bundle":
        info = await service.export_bundle(out=args.out, live=args.live)
        print(f"Bundle created: {info.bundle_path} ({info.size_human})")
        print(f"Transfer this file to the target and run: n8n-stack import-bundle {info.bundle_path.name}")
    elif command == "import-bundle":
        result = await service.import_bundle(
            args.bundle, start=args.start, force_extract=args.force_extract
        )
        for warning in result.warnings:
            print(f"Warning: {warning}")
        if not result.started:
            print("Import complete. Review project files, then start with: n8n-stack start")
    elif command == "proxy":
        await service.proxy(args.rest, dry_run=args.dry_run)
    return 0


def _setup_log_directory() -> str | None:
    """Setup log directory with fallback options."""
    log_dir_candidates = [
        os.getenv("LOG_DIR"),
        str(Path.home() / ".local" / "share" / "n8n-stack" / "logs"),
        str(Path(tempfile.gettempdir()) / "n8n-stack-logs"),
    ]

    for candidate in log_dir_candidates:
        if candidate:
            try:
                candidate_path = Path(candidate)
                candidate_path.mkdir(parents=True, exist_ok=True)
                if candidate_path.is_dir() and os.access(candidate_path, os.W_OK):
                    return str(candidate_path)
            except OSError:
                continue

    print("Warning: Unable to create log directory, using console-only logging", file=sys.stderr)
    return None


def main(argv: list[str] | None = None) -> None:
    """Main entry point."""
    args = parse_args(argv)
    if not args.command:
        build_parser().print_help()
        return

    setup_logging(log_dir=_setup_log_directory(), log_level=args.log_level)
    logger = get_logger().bind(command=args.command)

    try:
        service = StackService(build_context(args))
        code = asyncio.run(run_command(service, args))
    except KeyboardInterrupt:
        logger.warning("Interrupted; remove any leftover n8n-export-*/n8n-import-* scratch directories")
        sys.exit(130)
    except ComposeCommandError as e:
        logger.error("Command failed", error=str(e), returncode=e.returncode)
        sys.exit(e.returncode or 1)
    except StackError as e:
        logger.error(f"{args.command} failed", error=str(e), error_type=type(e).__name__)
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    sys.exit(code)


if __name__ == "__main__":
    main()
