"""Verbatim plugin overlay copied into (and retracted from) the upstream tree."""

from __future__ import annotations

import logging
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Tuple

from .vcs import remove_tree

LOGGER = logging.getLogger(__name__)


class OverlayError(RuntimeError):
    """Raised when the overlay source is missing or cannot be copied."""


@dataclass(frozen=True, slots=True)
class OverlayMarker:
    """Text that must appear in ``path`` once the overlay is wired into the build."""

    path: Path
    contains: str


@dataclass(slots=True)
class OverlayManager:
    """Delete-then-copy manager for a fixed set of overlay files.

    ``include`` lists the entries under ``source_root`` that make up the overlay
    (files or directories). Anything else in the source directory, such as local
    build output, never reaches the target tree.
    """

    source_root: Path
    destination: Path
    include: Tuple[str, ...] = ()
    marker: OverlayMarker | None = None

    def materialize(self, target_root: Path | str) -> Path:
        """Replace the overlay destination inside ``target_root`` with a fresh copy."""

        source = Path(self.source_root)
        if not source.is_dir():
            raise OverlayError(f"Overlay source not found at {source}")

        target = Path(target_root) / self.destination
        if target.exists() or target.is_symlink():
            LOGGER.info("Overlay %s already exists, replacing", self.destination.as_posix())
            remove_tree(target)
        target.mkdir(parents=True)

        entries = self.include or tuple(sorted(child.name for child in source.iterdir()))
        for entry in entries:
            origin = source / entry
            if not origin.exists():
                raise OverlayError(f"Overlay entry missing: {origin}")
            destination = target / entry
            destination.parent.mkdir(parents=True, exist_ok=True)
            if origin.is_dir():
                shutil.copytree(origin, destination, symlinks=True)
            else:
                shutil.copy2(origin, destination)
        LOGGER.info("Copied overlay %s", self.destination.as_posix())
        return target

    def retract(self, target_root: Path | str) -> bool:
        """Remove the overlay destination; returns ``True`` when something was removed."""

        target = Path(target_root) / self.destination
        if not (target.exists() or target.is_symlink()):
            return False
        remove_tree(target)
        LOGGER.info("Removed overlay %s", self.destination.as_posix())
        return True

    def is_materialized(self, target_root: Path | str) -> bool:
        """Return ``True`` when the overlay (and its build registration, if configured) is present."""

        root = Path(target_root)
        if not (root / self.destination).is_dir():
            return False
        if self.marker is None:
            return True
        marker_path = root / self.marker.path
        try:
            text = marker_path.read_text(encoding="utf-8", errors="replace")
        except OSError:
            return False
        return self.marker.contains in text


__all__ = ["OverlayError", "OverlayManager", "OverlayMarker"]
