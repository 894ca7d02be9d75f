"""
Write reproducible ZIP packages from a resolved file list.

Entries are written in sorted order with a fixed timestamp so unchanged inputs
produce byte-identical archives. Permission bits come from the source files;
known executables are always stored as 0o755 so they stay runnable when the
package is built on a host without a Unix executable bit.
"""

import logging
import os
import shutil
import stat
import tempfile
import threading
import zipfile
from pathlib import Path
from typing import Iterable, List, Optional, Union

from package_errors import ArchiveIOError, EmptySelectionError, PackagingTimeoutError

logger = logging.getLogger(__name__)

FIXED_DATE_TIME = (1980, 1, 1, 0, 0, 0)
ZIP_CREATE_SYSTEM_UNIX = 3
EXECUTABLE_MODE = 0o755
DEFAULT_FILE_MODE = 0o644
CHUNK_SIZE = 1024 * 1024


def host_tracks_exec_bit() -> bool:
    return os.name != 'nt'


def entry_mode(source: Path, rel_path: str, executables: frozenset) -> int:
    """Permission bits to store for one entry."""
    if rel_path in executables:
        return EXECUTABLE_MODE
    if not host_tracks_exec_bit():
        return DEFAULT_FILE_MODE
    return stat.S_IMODE(os.stat(source).st_mode)


def _zip_info(rel_path: str, mode: int) -> zipfile.ZipInfo:
    zi = zipfile.ZipInfo(filename=rel_path, date_time=FIXED_DATE_TIME)
    zi.compress_type = zipfile.ZIP_DEFLATED
    zi.create_system = ZIP_CREATE_SYSTEM_UNIX
    zi.external_attr = (stat.S_IFREG | mode) << 16
    return zi


def _discard(tmp_name: str) -> None:
    if os.path.exists(tmp_name):
        os.remove(tmp_name)


def _write_entries(zip_path: str, paths: List[str], root: Path, executables: frozenset,
                   unit: Optional[str], cancel_event: Optional[threading.Event]) -> None:
    with zipfile.ZipFile(zip_path, 'w', zipfile.ZIP_DEFLATED) as zipf:
        for rel_path in paths:
            if cancel_event is not None and cancel_event.is_set():
                raise PackagingTimeoutError("Packaging cancelled", unit=unit, root=str(root))
            source = root / rel_path
            try:
                zi = _zip_info(rel_path, entry_mode(source, rel_path, executables))
                with open(source, 'rb') as src, zipf.open(zi, 'w') as dst:
                    shutil.copyfileobj(src, dst, CHUNK_SIZE)
            except OSError as e:
                raise ArchiveIOError(f"Failed to add {rel_path}: {e}", unit=unit, root=str(root)) from e
            logger.debug(f"Added {rel_path}")


def build_archive(paths: Iterable[str], root: Union[str, Path], destination: Union[str, Path],
                  executables: Iterable[str] = (), unit: Optional[str] = None,
                  cancel_event: Optional[threading.Event] = None) -> str:
    """Build a ZIP at destination from paths relative to root.

    The archive is written to a temporary file next to the destination and
    moved into place only when complete; on any failure nothing is left behind.
    """
    root = Path(root)
    destination = Path(destination)
    paths = sorted(set(paths))
    if not paths:
        raise EmptySelectionError("No files to package", unit=unit, root=str(root))

    try:
        destination.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{destination.name}.", suffix='.tmp',
                                        dir=str(destination.parent))
        os.close(fd)
    except OSError as e:
        raise ArchiveIOError(f"Cannot create {destination}: {e}", unit=unit, root=str(root)) from e

    try:
        _write_entries(tmp_name, paths, root, frozenset(executables), unit, cancel_event)
        # mkstemp creates 0o600 files
        os.chmod(tmp_name, DEFAULT_FILE_MODE)
        os.replace(tmp_name, destination)
    except ArchiveIOError:
        _discard(tmp_name)
        raise
    except OSError as e:
        _discard(tmp_name)
        raise ArchiveIOError(f"Failed to write {destination}: {e}", unit=unit, root=str(root)) from e
    except BaseException:
        _discard(tmp_name)
        raise

    logger.info(f"Created package {destination} ({len(paths)} files)")
    return str(destination)
