"""Structural validation of unified-diff patch files.

The validator walks the patch once, folding every line into an immutable scan
state. Each hunk header opens a hunk whose old/new tallies are compared with
the declared counts when the hunk closes. A hunk closes on the next header,
on a ``diff --git``/``index`` line, on any non-diff line, or at end of input.
``--- ``/``+++ `` lines only close a hunk once the matching tally is already
satisfied; before that they are ordinary removal/addition lines.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from functools import reduce
from pathlib import Path
from typing import Tuple

from .patch import (
    DiffLine,
    DiffLineKind,
    Hunk,
    HunkHeader,
    PatchError,
    emit_patch_event,
    normalise_diff_path,
)

_SIGNATURE_SEPARATOR = "-- "


@dataclass(frozen=True, slots=True)
class ValidationError:
    """Structural defect found in a patch file."""

    line: int

    @property
    def fatal(self) -> bool:
        return True

    @property
    def message(self) -> str:
        return f"Defect at line {self.line}"


@dataclass(frozen=True, slots=True)
class EmptyPatch(ValidationError):
    @property
    def message(self) -> str:
        return "Patch file is empty"


@dataclass(frozen=True, slots=True)
class MissingTrailingNewline(ValidationError):
    """The final byte is not a newline; git tolerates it, callers decide."""

    @property
    def fatal(self) -> bool:
        return False

    @property
    def message(self) -> str:
        return "Missing newline at end of file"


@dataclass(frozen=True, slots=True)
class MalformedHunkHeader(ValidationError):
    text: str

    @property
    def message(self) -> str:
        return f"Malformed hunk header at line {self.line}: {self.text}"


@dataclass(frozen=True, slots=True)
class HunkLineMismatch(ValidationError):
    expected_old: int
    actual_old: int
    expected_new: int
    actual_new: int
    path: str | None = None

    @property
    def start_line(self) -> int:
        return self.line

    @property
    def message(self) -> str:
        location = f" ({self.path})" if self.path else ""
        parts = []
        if self.actual_old != self.expected_old:
            parts.append(f"expected {self.expected_old} old lines, got {self.actual_old}")
        if self.actual_new != self.expected_new:
            parts.append(f"expected {self.expected_new} new lines, got {self.actual_new}")
        return f"Hunk at line {self.line}{location}: " + "; ".join(parts)


@dataclass(frozen=True, slots=True)
class ValidationReport:
    """Every closed hunk plus every defect found in one pass."""

    hunks: Tuple[Hunk, ...] = ()
    errors: Tuple[ValidationError, ...] = ()
    path: Path | None = None

    @property
    def ok(self) -> bool:
        return not self.errors

    @property
    def mismatches(self) -> Tuple[HunkLineMismatch, ...]:
        return tuple(error for error in self.errors if isinstance(error, HunkLineMismatch))

    def fatal_errors(self, *, allow_missing_newline: bool = False) -> Tuple[ValidationError, ...]:
        """Errors that must stop the apply path under the given policy."""
        if not allow_missing_newline:
            return self.errors
        return tuple(error for error in self.errors if error.fatal)

    def messages(self) -> list[str]:
        return [error.message for error in self.errors]


@dataclass(frozen=True, slots=True)
class _OpenHunk:
    header: HunkHeader
    start_line: int
    raw_header: str
    lines: Tuple[DiffLine, ...] = ()
    raw: Tuple[str, ...] = ()
    old_seen: int = 0
    new_seen: int = 0
    missing_newline: bool = False

    @property
    def complete(self) -> bool:
        return self.old_seen >= self.header.old_count and self.new_seen >= self.header.new_count

    def take(self, kind: DiffLineKind, text: str, raw: str) -> "_OpenHunk":
        return replace(
            self,
            lines=self.lines + (DiffLine(kind, text),),
            raw=self.raw + (raw,),
            old_seen=self.old_seen + (0 if kind is DiffLineKind.ADDITION else 1),
            new_seen=self.new_seen + (0 if kind is DiffLineKind.REMOVAL else 1),
        )


@dataclass(frozen=True, slots=True)
class _ScanState:
    path: str | None = None
    current: _OpenHunk | None = None
    hunks: Tuple[Hunk, ...] = ()
    errors: Tuple[ValidationError, ...] = ()


def _close(state: _ScanState) -> _ScanState:
    """Close the open hunk, recording a mismatch when tallies differ from the header."""
    current = state.current
    if current is None:
        return state
    hunk = Hunk(
        header=current.header,
        lines=current.lines,
        start_line=current.start_line,
        raw_header=current.raw_header,
        missing_newline=current.missing_newline,
        raw="\n".join((current.raw_header, *current.raw)) + "\n",
    )
    errors = state.errors
    if not hunk.is_consistent:
        errors = errors + (
            HunkLineMismatch(
                line=current.start_line,
                expected_old=current.header.old_count,
                actual_old=current.old_seen,
                expected_new=current.header.new_count,
                actual_new=current.new_seen,
                path=state.path,
            ),
        )
    return replace(state, current=None, hunks=state.hunks + (hunk,), errors=errors)


def _file_header_path(line: str) -> str | None:
    if line.startswith("diff --git "):
        _, _, right = line.partition(" b/")
        target = normalise_diff_path(right) if right else None
    else:
        target = normalise_diff_path(line[4:].split("\t", 1)[0])
    return target.as_posix() if target else None


def _step(state: _ScanState, numbered: tuple[int, str]) -> _ScanState:
    number, line = numbered

    if line.startswith("diff --git "):
        state = _close(state)
        return replace(state, path=_file_header_path(line))

    if line.startswith("@@"):
        state = _close(state)
        header = HunkHeader.parse(line)
        if header is None:
            return replace(state, errors=state.errors + (MalformedHunkHeader(line=number, text=line),))
        return replace(state, current=_OpenHunk(header=header, start_line=number, raw_header=line))

    current = state.current
    if current is None:
        if line.startswith("+++ "):
            return replace(state, path=_file_header_path(line) or state.path)
        return state

    if line.startswith("\\"):
        return replace(state, current=replace(current, missing_newline=True, raw=current.raw + (line,)))
    if line in {_SIGNATURE_SEPARATOR, ""} and current.complete:
        return _close(state)
    if line.startswith("--- ") and current.old_seen >= current.header.old_count:
        return _close(state)
    if line.startswith("+++ ") and current.new_seen >= current.header.new_count:
        state = _close(state)
        return replace(state, path=_file_header_path(line) or state.path)

    if line == "" or line.startswith(" "):
        return replace(state, current=current.take(DiffLineKind.CONTEXT, line[1:], line))
    if line.startswith("+"):
        return replace(state, current=current.take(DiffLineKind.ADDITION, line[1:], line))
    if line.startswith("-"):
        return replace(state, current=current.take(DiffLineKind.REMOVAL, line[1:], line))

    # index lines, mode lines and anything else outside the diff alphabet
    return _close(state)


def validate_patch(content: bytes | str, *, path: Path | None = None) -> ValidationReport:
    """Validate patch ``content`` and return every structural defect found."""

    if isinstance(content, bytes):
        try:
            text = content.decode("utf-8")
        except UnicodeDecodeError as error:
            raise PatchError(f"Patch is not valid UTF-8: {path or '<bytes>'}") from error
    else:
        text = content

    if not text:
        return ValidationReport(errors=(EmptyPatch(line=0),), path=path)

    lines = text.split("\n")
    if lines and lines[-1] == "":
        lines.pop()
    final = _close(reduce(_step, enumerate(lines, start=1), _ScanState()))

    errors = final.errors
    if not text.endswith("\n"):
        errors = errors + (MissingTrailingNewline(line=len(lines)),)

    report = ValidationReport(hunks=final.hunks, errors=errors, path=path)
    if not report.ok:
        emit_patch_event(
            "patch_validation_failed",
            stage="structure",
            patch_path=path,
            errors=report.messages(),
        )
    return report


def validate_patch_file(path: Path | str) -> ValidationReport:
    """Read ``path`` and validate its bytes."""
    patch_path = Path(path)
    try:
        content = patch_path.read_bytes()
    except FileNotFoundError as error:
        raise PatchError(f"Patch not found: {patch_path}") from error
    except OSError as error:
        raise PatchError(f"Patch file not readable: {patch_path}: {error}") from error
    return validate_patch(content, path=patch_path)


__all__ = [
    "EmptyPatch",
    "HunkLineMismatch",
    "MalformedHunkHeader",
    "MissingTrailingNewline",
    "ValidationError",
    "ValidationReport",
    "validate_patch",
    "validate_patch_file",
]
