"""
Content digests used as build cache keys.
"""
import hashlib
import json
import os
from typing import Any, Iterable, Optional

from ..errors import SourceCopyError

CHUNK_SIZE = 1024 * 1024

def _is_excluded(path: str, exclude: Iterable[str]) -> bool:
    return any(path == e or path.startswith(e + os.sep) for e in exclude)

def tree_digest(root: str, exclude: Optional[Iterable[str]] = None) -> str:
    """
    Computes a sha256 digest over a directory tree: relative paths, the
    executable bit, symlink targets and file contents, in sorted order.

    :param root: Directory to hash.
    :param exclude: Absolute paths to leave out (with everything below them).
    :return: ``sha256:<hex>``.
    :raises SourceCopyError: If a file cannot be read.
    """
    root = os.path.abspath(root)
    exclude = [os.path.abspath(e) for e in (exclude or [])]
    digest = hashlib.sha256()

    def onerror(err: OSError):
        raise SourceCopyError(f"Cannot read {err.filename}: {err.strerror}")

    for dirpath, dirnames, filenames in os.walk(root, onerror=onerror):
        dirnames[:] = sorted(d for d in dirnames
                             if not _is_excluded(os.path.join(dirpath, d), exclude))
        for name in sorted(filenames):
            path = os.path.join(dirpath, name)
            if _is_excluded(path, exclude):
                continue
            rel = os.path.relpath(path, root)
            digest.update(rel.encode() + b"\0")
            if os.path.islink(path):
                digest.update(b"L" + os.readlink(path).encode() + b"\0")
                continue
            digest.update(b"X" if os.access(path, os.X_OK) else b"F")
            try:
                with open(path, "rb") as f:
                    for chunk in iter(lambda: f.read(CHUNK_SIZE), b""):
                        digest.update(chunk)
            except OSError as e:
                raise SourceCopyError(f"Cannot read {path}: {e.strerror}")
    return f"sha256:{digest.hexdigest()}"

def json_digest(*parts: Any) -> str:
    """
    Digest of JSON-serialisable values, independent of dict ordering.
    """
    payload = json.dumps(parts, sort_keys=True, separators=(",", ":"), default=str)
    return f"sha256:{hashlib.sha256(payload.encode()).hexdigest()}"
