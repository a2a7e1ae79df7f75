"""Core exceptions for n8n stack operations."""


class StackError(Exception):
    """Base exception for n8n stack operations."""


class PreconditionFailure(StackError):
    """A required tool or file is missing; raised before anything is mutated."""


class MissingRequiredFile(PreconditionFailure):
    """A required file or directory is absent."""

    def __init__(self, path: str, why: str = ""):
        self.path = path
        self.why = why
        detail = f" ({why})" if why else ""
        super().__init__(f"Missing {path}{detail}")


class SnapshotFailed(StackError):
    """Archiving a volume failed; no bundle is emitted."""

    def __init__(self, volume: str, reason: str):
        self.volume = volume
        super().__init__(f"Snapshot of volume '{volume}' failed: {reason}")


class MalformedBundle(StackError):
    """A bundle lacks the expected inner structure. No volume has been touched."""


class RestoreInterrupted(StackError):
    """Replaying a snapshot failed partway.

    The volume is left partially overwritten and is not rolled back. Treat it
    as untrustworthy until a restore from a known-good bundle succeeds.
    """

    def __init__(self, volume: str, reason: str):
        self.volume = volume
        super().__init__(
            f"Restore of volume '{volume}' was interrupted: {reason}. "
            "The volume may be partially overwritten; re-run the import from a known-good bundle."
        )


class ComposeCommandError(StackError):
    """Docker Compose (or docker CLI) command exited non-zero."""

    def __init__(self, command: list[str], returncode: int, stderr: str = ""):
        self.command = command
        self.returncode = returncode
        self.stderr = stderr
        message = f"Command failed with exit code {returncode}: {' '.join(command)}"
        if stderr:
            message += f"\n{stderr.strip()}"
        super().__init__(message)


class PlaybookError(StackError):
    """Ansible playbook run did not finish successfully."""


class VolumeStoreError(StackError):
    """The container runtime refused a volume lookup or creation."""

    def __init__(self, volume: str, reason: str):
        self.volume = volume
        super().__init__(f"Volume '{volume}': {reason}")
