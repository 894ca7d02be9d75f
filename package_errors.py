"""
Error types raised while selecting and packaging deployment artifacts.
Every error carries the unit, root and pattern it concerns when known.
"""

from typing import Optional


class PackagingError(Exception):
    """Base class for all packaging failures."""

    def __init__(self, message: str, unit: Optional[str] = None,
                 root: Optional[str] = None, pattern: Optional[str] = None):
        self.message = message
        self.unit = unit
        self.root = str(root) if root is not None else None
        self.pattern = pattern
        super().__init__(self._format())

    def _format(self) -> str:
        context = []
        if self.unit:
            context.append(f"unit={self.unit}")
        if self.root:
            context.append(f"root={self.root}")
        if self.pattern is not None:
            context.append(f"pattern={self.pattern!r}")
        if not context:
            return self.message
        return f"{self.message} ({', '.join(context)})"


class ConfigurationError(PackagingError):
    """Invalid configuration, missing pre-built artifact, or unsatisfiable mode."""


class EmptySelectionError(PackagingError):
    """No files left to package."""


class PatternSyntaxError(PackagingError, ValueError):
    """Malformed include/exclude pattern."""


class ArchiveIOError(PackagingError, OSError):
    """Filesystem failure while walking a tree or writing an archive."""


class SymlinkCycleError(ArchiveIOError):
    """A followed symlink leads back into a directory being walked."""


class PackagingTimeoutError(PackagingError):
    """Packaging was abandoned after the caller's timeout expired."""
