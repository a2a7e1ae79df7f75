"""Deployment context for n8n stack operations.

Holds everything the tooling used to pick up from the process environment
(working directory, compose/env file names, tool locations) as one explicit
value that is handed to each component at construction.
"""

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from ..constants import (
    BOOTSTRAP_PLAYBOOK,
    DEFAULT_COMPOSE_FILE,
    DEFAULT_ENV_FILE,
    DEFAULT_HELPER_IMAGE,
    KNOWN_VOLUMES,
)


class DeploymentContext(BaseSettings):
    """Paths and tool locations for one deployment."""

    project_dir: Path = Field(
        default_factory=Path.cwd,
        alias="N8N_STACK_PROJECT_DIR",
        description="Project root holding the compose file, env file and nginx assets",
    )
    compose_file: str = Field(
        DEFAULT_COMPOSE_FILE, alias="COMPOSE_FILE", description="Compose stack definition"
    )
    env_file: str = Field(
        DEFAULT_ENV_FILE, alias="ENV_FILE", description="Env file with deployment configuration"
    )
    docker_bin: str = Field("docker", alias="DOCKER_BIN", description="Docker CLI binary")
    helper_image: str = Field(
        DEFAULT_HELPER_IMAGE,
        alias="N8N_STACK_HELPER_IMAGE",
        description="Image used to read from and write into volumes",
    )
    scratch_dir: Path | None = Field(
        None,
        alias="N8N_STACK_SCRATCH_DIR",
        description="Parent directory for import scratch directories (system temp when unset)",
    )
    playbook: str = Field(
        BOOTSTRAP_PLAYBOOK, alias="ANSIBLE_PLAYBOOK", description="nginx bootstrap playbook"
    )
    volumes: tuple[str, ...] = Field(
        default=KNOWN_VOLUMES, alias="N8N_STACK_VOLUMES", description="Known data volumes"
    )
    log_level: str = Field("INFO", alias="LOG_LEVEL")

    model_config = SettingsConfigDict(extra="ignore", populate_by_name=True)

    def resolve(self, relative: str | Path) -> Path:
        """Resolve a path against the project root (absolute paths pass through)."""
        path = Path(relative)
        return path if path.is_absolute() else self.project_dir / path

    @property
    def compose_path(self) -> Path:
        return self.resolve(self.compose_file)

    @property
    def env_path(self) -> Path:
        return self.resolve(self.env_file)

    @property
    def playbook_path(self) -> Path:
        return self.resolve(self.playbook)
