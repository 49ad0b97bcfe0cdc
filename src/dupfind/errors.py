"""Exceptions raised while scanning a tree for duplicates."""

from pathlib import Path


class DupFindError(Exception):
    """Base class for dupfind errors."""


class StartupError(DupFindError):
    """The root path cannot be scanned; nothing was walked."""


class BranchError(DupFindError):
    """A walker branch failed. Only the subtree it was walking is affected."""

    def __init__(self, path: Path, message: str, error: OSError):
        super().__init__(f"{message} {path}: {error}")
        self.path = path
        self.error = error


class ListingError(BranchError):
    """A directory's entries could not be listed."""

    def __init__(self, path: Path, error: OSError):
        super().__init__(path, "Cannot list directory", error)


class StatError(BranchError):
    """An entry's metadata could not be read."""

    def __init__(self, path: Path, error: OSError):
        super().__init__(path, "Cannot stat entry", error)


class RootWalkError(DupFindError):
    """The walk of the root directory itself failed."""
