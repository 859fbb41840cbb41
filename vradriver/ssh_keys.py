"""SSH key utilities.

Resolves named private keys from the configured key directories.
"""

from __future__ import annotations

from collections.abc import Iterable
from pathlib import Path

from loguru import logger

from vradriver.core.exceptions import MissingCredentialError


def find_private_key(name: str, key_paths: Iterable[str]) -> Path | None:
    """Find a private key file by name.

    Searches every directory in order, trying ``name`` then ``name.pem``.

    Args:
        name: Key name (file name without directory).
        key_paths: Directories to search.

    Returns:
        Path to the first matching file, or None.
    """
    for directory in key_paths:
        base = Path(directory).expanduser()
        for candidate in (base / name, base / f"{name}.pem"):
            if candidate.is_file():
                return candidate
    return None


def private_key_for(name: str, key_paths: Iterable[str]) -> str:
    """Return the contents of the named private key.

    Raises:
        MissingCredentialError: If no directory holds a key with that name.
    """
    paths = tuple(key_paths)
    path = find_private_key(name, paths)
    if path is None:
        raise MissingCredentialError(
            f"SSH key '{name}' not found in {', '.join(paths) or 'no key paths'}"
        )
    logger.debug(f"Using SSH key {name} from {path}")
    return path.read_text()
