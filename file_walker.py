"""
Enumerate the regular files below a package root.

Nothing is filtered here; selection belongs to the pattern engine. Paths are
returned relative to the root with '/' separators on every platform.
"""

import logging
import os
import threading
from pathlib import Path
from typing import Dict, List, Set, Tuple, Union

from package_errors import ArchiveIOError, SymlinkCycleError

logger = logging.getLogger(__name__)


def _dir_key(path: str) -> Tuple[int, int]:
    st = os.stat(path)
    return st.st_dev, st.st_ino


def walk_files(root: Union[str, Path]) -> List[str]:
    """Return the sorted relative paths of every regular file under root."""
    root = str(root)
    if not os.path.isdir(root):
        raise ArchiveIOError("Package root is not a directory", root=root)

    files: List[str] = []
    try:
        _walk(root, '', {_dir_key(root)}, files, root)
    except SymlinkCycleError:
        raise
    except OSError as e:
        raise ArchiveIOError(f"Failed to walk directory: {e}", root=root) from e

    files.sort()
    logger.debug(f"Found {len(files)} files under {root}")
    return files


def _walk(directory: str, prefix: str, ancestors: Set[Tuple[int, int]],
          files: List[str], root: str) -> None:
    with os.scandir(directory) as it:
        entries = sorted(it, key=lambda e: e.name)

    for entry in entries:
        rel_path = f"{prefix}{entry.name}"
        if entry.is_dir(follow_symlinks=True):
            key = _dir_key(entry.path)
            if key in ancestors:
                raise SymlinkCycleError(f"Symlink cycle at {rel_path}", root=root)
            _walk(entry.path, f"{rel_path}/", ancestors | {key}, files, root)
        elif entry.is_file(follow_symlinks=True):
            files.append(rel_path)
        elif entry.is_symlink():
            logger.warning(f"Skipping dangling symlink: {rel_path}")


class WalkCache:
    """Walk each distinct root once per invocation and share the result."""

    def __init__(self):
        self._lock = threading.Lock()
        self._results: Dict[str, Tuple[str, ...]] = {}

    def get(self, root: Union[str, Path]) -> Tuple[str, ...]:
        key = os.path.realpath(str(root))
        with self._lock:
            if key not in self._results:
                self._results[key] = tuple(walk_files(root))
            return self._results[key]

    def __len__(self) -> int:
        return len(self._results)
