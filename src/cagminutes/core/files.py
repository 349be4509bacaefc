from __future__ import annotations

import os
import tempfile
from pathlib import Path


def ensure_directory(path: Path) -> None:
    path.mkdir(parents=True, exist_ok=True)


def write_bytes_atomic(dst: Path, data: bytes) -> None:
    """Write through a private temp file beside ``dst``, then rename it into place.

    Concurrent writers of one ``dst`` never share a temp file; the last rename wins.
    """
    ensure_directory(dst.parent)
    fd, temp_name = tempfile.mkstemp(dir=dst.parent, prefix=f".{dst.name}.", suffix=".tmp")
    temp_path = Path(temp_name)
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
        os.replace(temp_path, dst)
    finally:
        temp_path.unlink(missing_ok=True)
