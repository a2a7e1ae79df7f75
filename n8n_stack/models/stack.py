"""Stack status and preflight data models."""

from typing import Literal

from pydantic import Field

from .bundle import StackModel

Severity = Literal["error", "warning", "info"]


class ServiceStatus(StackModel):
    """State of one compose service as reported by the container runtime."""

    service: str
    container: str | None = None
    state: str = "unknown"
    running: bool = False
    healthy: bool | None = Field(
        default=None, description="None when the service defines no healthcheck"
    )


class DoctorCheck(StackModel):
    """Result of a single preflight check."""

    name: str
    ok: bool
    severity: Severity = "error"
    detail: str = ""


class DoctorReport(StackModel):
    """All preflight checks for a deployment."""

    checks: list[DoctorCheck] = Field(default_factory=list)

    @property
    def ok(self) -> bool:
        """True unless an error-severity check failed."""
        return all(check.ok for check in self.checks if check.severity == "error")

    def add(self, name: str, ok: bool, detail: str = "", severity: Severity = "error") -> None:
        self.checks.append(DoctorCheck(name=name, ok=ok, severity=severity, detail=detail))
