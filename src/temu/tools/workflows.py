"""Disable upstream CI workflows by renaming them, and undo the rename."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Sequence

LOGGER = logging.getLogger(__name__)

DISABLED_SUFFIX = ".disabled"
WORKFLOW_SUFFIXES = (".yml", ".yaml")


def disable_upstream_workflows(directory: Path, keep_prefixes: Sequence[str] = ()) -> List[Path]:
    """Rename every workflow not starting with a kept prefix to ``*.disabled``."""

    if not directory.is_dir():
        LOGGER.info("No workflows directory found at %s", directory)
        return []
    disabled: List[Path] = []
    for path in sorted(directory.iterdir()):
        if not path.is_file() or path.suffix not in WORKFLOW_SUFFIXES:
            continue
        if path.name.startswith(tuple(keep_prefixes)):
            continue
        target = path.with_name(path.name + DISABLED_SUFFIX)
        path.rename(target)
        disabled.append(target)
    LOGGER.info("Disabled %d upstream workflow(s)", len(disabled))
    return disabled


def restore_disabled_workflows(directory: Path) -> List[Path]:
    """Rename ``*.yml.disabled``/``*.yaml.disabled`` back to their original names."""

    if not directory.is_dir():
        return []
    restored: List[Path] = []
    for path in sorted(directory.iterdir()):
        if not path.is_file() or not path.name.endswith(DISABLED_SUFFIX):
            continue
        original = path.with_name(path.name[: -len(DISABLED_SUFFIX)])
        if original.suffix not in WORKFLOW_SUFFIXES:
            continue
        path.rename(original)
        restored.append(original)
    return restored


__all__ = ["DISABLED_SUFFIX", "disable_upstream_workflows", "restore_disabled_workflows"]
