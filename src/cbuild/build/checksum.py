"""Content checksums for source and object files.

Change detection is content-addressed: a file is considered changed only
when the SHA256 of its bytes changes, so touching a file or checking it out
again never triggers a rebuild.
"""

import hashlib
import logging
from pathlib import Path
from typing import Optional, Union

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]

_CHUNK_SIZE = 65536


def checksum(file_path: PathLike) -> str:
    """Calculate SHA256 hash of file contents.

    Args:
        file_path: Path to file

    Returns:
        SHA256 hash as hex string

    Raises:
        FileNotFoundError: If file does not exist
        OSError: If file cannot be read
    """
    sha256 = hashlib.sha256()
    with open(file_path, "rb") as f:
        for chunk in iter(lambda: f.read(_CHUNK_SIZE), b""):
            sha256.update(chunk)
    digest = sha256.hexdigest()
    logger.debug(f"Checksum of {Path(file_path).name} is: {digest}")
    return digest


def checksum_if_exists(file_path: PathLike) -> Optional[str]:
    """Checksum a file that may legitimately be missing.

    A not-yet-built object file is expected on a first run, so absence is
    reported as None rather than an error.

    Args:
        file_path: Path to file

    Returns:
        SHA256 hex digest, or None if the file does not exist
    """
    if not Path(file_path).is_file():
        return None
    return checksum(file_path)
