"""Reading the deployment env file.

The env file is archived and restored verbatim; this module only reads it,
mostly to guard the encryption key n8n uses for stored credentials.
"""

import io
from pathlib import Path

from dotenv import dotenv_values

from ..constants import ENCRYPTION_KEY_VAR


def load_env_file(path: Path) -> dict[str, str]:
    """Parse an env file into a dict, dropping keys without a value."""
    if not path.is_file():
        return {}
    return {key: value for key, value in dotenv_values(path).items() if value is not None}


def parse_env_content(content: bytes) -> dict[str, str]:
    """Parse env file content read out of an archive."""
    stream = io.StringIO(content.decode("utf-8", errors="replace"))
    return {key: value for key, value in dotenv_values(stream=stream).items() if value is not None}


def encryption_key(values: dict[str, str]) -> str | None:
    """Return the configured encryption key, or None when it is missing or empty."""
    key = values.get(ENCRYPTION_KEY_VAR, "").strip()
    return key or None
