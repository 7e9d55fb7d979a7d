"""One-way directory mirroring used for backup and restore."""
from __future__ import annotations

import logging
import shutil
from pathlib import Path

LOGGER = logging.getLogger(__name__)


class FileOperationError(RuntimeError):
    """Raised when copying or deleting instance data fails."""


def mirror_folders(source: Path, destination: Path, *, allow_missing_source: bool = False) -> None:
    """Make *destination* an exact copy of *source*.

    Files are copied over, directories recursed, and anything present only in
    *destination* is deleted. A missing *source* is an error unless
    *allow_missing_source* is set, in which case *destination* ends up empty.
    """
    source = Path(source)
    destination = Path(destination)
    if not source.exists():
        if not allow_missing_source:
            raise FileOperationError(f"Mirror source does not exist: {source}")
        try:
            _prepare_destination(destination)
            _remove_children(destination, keep=set())
        except OSError as exc:
            raise FileOperationError(f"Failed to empty {destination}: {exc}") from exc
        return
    if not source.is_dir():
        raise FileOperationError(f"Mirror source is not a directory: {source}")
    if _is_within(destination, source):
        raise FileOperationError(f"Cannot mirror {source} into itself ({destination}).")

    try:
        _prepare_destination(destination)
        _sync_directory(source, destination)
    except OSError as exc:
        raise FileOperationError(f"Failed to mirror {source} to {destination}: {exc}") from exc
    LOGGER.debug("Mirrored %s -> %s", source, destination)


def delete_directory(path: Path) -> bool:
    """Remove *path* recursively; return ``False`` when it did not exist."""
    path = Path(path)
    try:
        if not path.exists() and not path.is_symlink():
            return False
        _remove(path)
    except OSError as exc:
        raise FileOperationError(f"Failed to delete {path}: {exc}") from exc
    return True


def _prepare_destination(destination: Path) -> None:
    if destination.is_symlink() or (destination.exists() and not destination.is_dir()):
        destination.unlink()
    destination.mkdir(parents=True, exist_ok=True)


def _sync_directory(source: Path, destination: Path) -> None:
    children = list(source.iterdir())
    _remove_children(destination, keep={child.name for child in children})
    for child in children:
        target = destination / child.name
        if child.is_dir() and not child.is_symlink():
            if target.is_symlink() or (target.exists() and not target.is_dir()):
                target.unlink()
            target.mkdir(exist_ok=True)
            _sync_directory(child, target)
            shutil.copystat(child, target)
            continue
        if target.is_symlink() or target.is_dir() or child.is_symlink():
            if target.exists() or target.is_symlink():
                _remove(target)
        shutil.copy2(child, target, follow_symlinks=False)


def _remove_children(directory: Path, *, keep: set[str]) -> None:
    for child in directory.iterdir():
        if child.name not in keep:
            _remove(child)


def _remove(path: Path) -> None:
    if path.is_dir() and not path.is_symlink():
        shutil.rmtree(path)
    else:
        path.unlink()


def _is_within(path: Path, parent: Path) -> bool:
    try:
        path.resolve().relative_to(parent.resolve())
    except ValueError:
        return False
    return True


__all__ = ["FileOperationError", "delete_directory", "mirror_folders"]
