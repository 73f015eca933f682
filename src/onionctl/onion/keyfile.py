"""
Onion key file.

The key file holds a single line ``<keyType>:<keyMaterial>``, exactly what
ADD_ONION accepts as a key spec, so a restarted process can bring the same
service identity back.
"""

import os
from pathlib import Path
from typing import Optional

from loguru import logger

from onionctl.errors import PersistenceError
from onionctl.onion.models import OnionKey

# The file holds a private key
KEY_FILE_MODE = 0o600


def parse_key_line(line: str) -> OnionKey:
    """
    Parse a ``<keyType>:<keyMaterial>`` line.

    Raises:
        PersistenceError: If either part is missing
    """
    key_type, sep, key_material = line.strip().partition(":")
    if not sep or not key_type or not key_material:
        raise PersistenceError("Key file does not contain '<keyType>:<keyMaterial>'")
    return OnionKey(key_type=key_type, key_material=key_material)


def read_key_file(path: Path) -> Optional[OnionKey]:
    """
    Read a persisted onion key.

    Args:
        path: Key file location

    Returns:
        The key, or None if the file does not exist

    Raises:
        PersistenceError: If the file exists but cannot be read or parsed
    """
    try:
        content = path.read_text(encoding="ascii")
    except FileNotFoundError:
        return None
    except (OSError, UnicodeDecodeError) as e:
        raise PersistenceError(f"Cannot read key file {path}: {e}") from e

    try:
        return parse_key_line(content)
    except PersistenceError as e:
        raise PersistenceError(f"{path}: {e}") from e


def write_key_file(path: Path, key: OnionKey) -> None:
    """
    Persist an onion key, readable by the owner only.

    The key is written to a temporary file next to path and renamed over it,
    so a crash never leaves a truncated key behind.

    Raises:
        PersistenceError: If the file cannot be written
    """
    tmp_path = path.with_name(f".{path.name}.tmp")
    try:
        fd = os.open(tmp_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, KEY_FILE_MODE)
        with os.fdopen(fd, "w", encoding="ascii") as f:
            f.write(str(key))
        os.replace(tmp_path, path)
    except (OSError, ValueError) as e:
        try:
            tmp_path.unlink(missing_ok=True)
        except OSError as unlink_error:
            logger.warning(f"Cannot remove temporary key file {tmp_path}: {unlink_error}")
        raise PersistenceError(f"Cannot write key file {path}: {e}") from e


def set_aside_key_file(path: Path) -> Path:
    """
    Move an unusable key file out of the way so it is not overwritten.

    Args:
        path: Key file that could not be read or parsed

    Returns:
        New location of the file

    Raises:
        PersistenceError: If the file cannot be renamed
    """
    aside = path.with_name(f"{path.name}.unreadable")
    try:
        os.replace(path, aside)
    except OSError as e:
        raise PersistenceError(f"Cannot move unreadable key file {path} aside: {e}") from e
    return aside
