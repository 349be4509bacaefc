from __future__ import annotations

import hashlib
from pathlib import Path

CONTENT_DIGEST_ALG = "sha256"


def compute_bytes_digest(data: bytes, alg: str = CONTENT_DIGEST_ALG) -> str:
    return hashlib.new(alg, data).hexdigest()


def compute_file_digest(path: Path, alg: str = CONTENT_DIGEST_ALG, chunk_size: int = 1024 * 1024) -> str:
    """Hex digest of a downloaded document, read in ``chunk_size`` blocks."""
    h = hashlib.new(alg)
    with path.open("rb") as f:
        for chunk in iter(lambda: f.read(chunk_size), b""):
            h.update(chunk)
    return h.hexdigest()


def url_fingerprint(url: str, length: int = 16) -> str:
    return compute_bytes_digest(url.strip().encode("utf-8"))[:length]
