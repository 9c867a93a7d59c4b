"""Unified diff model, parsing and rendering for temu patch files."""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Mapping, Sequence, Tuple


class PatchError(RuntimeError):
    """Raised when a patch cannot be read, trusted or produced."""

    def __init__(self, message: str, *, details: Mapping[str, Any] | None = None) -> None:
        super().__init__(message)
        self.details: dict[str, Any] = dict(details or {})


TELEMETRY_LOGGER = logging.getLogger("temu.telemetry")

_DIFF_HEADER = re.compile(r"^diff --git a/(?P<left>.+?) b/(?P<right>.+)$")
_HUNK_HEADER = re.compile(
    r"^@@ -(?P<old_start>\d+)(?:,(?P<old_count>\d+))? "
    r"\+(?P<new_start>\d+)(?:,(?P<new_count>\d+))? @@(?P<section>.*)$"
)
NO_NEWLINE_MARKER = "\\ No newline at end of file"


class DiffLineKind(str, Enum):
    """Line-type marker used inside a hunk body."""

    CONTEXT = " "
    ADDITION = "+"
    REMOVAL = "-"


class FileMode(str, Enum):
    """How a file diff changes its target."""

    MODIFY = "modify"
    NEW = "new file"
    DELETE = "deleted file"
    RENAME = "rename"


@dataclass(frozen=True, slots=True)
class DiffLine:
    """Single body line of a hunk."""

    kind: DiffLineKind
    text: str

    def render(self) -> str:
        return f"{self.kind.value}{self.text}"


@dataclass(frozen=True, slots=True)
class HunkHeader:
    """Declared ranges of an ``@@ -a,b +c,d @@`` line."""

    old_start: int
    old_count: int
    new_start: int
    new_count: int
    section: str = ""

    @classmethod
    def parse(cls, line: str) -> "HunkHeader | None":
        """Return the parsed header, or ``None`` when ``line`` is not a valid header.

        An omitted count means one line, as in any unified diff.
        """

        match = _HUNK_HEADER.match(line.rstrip("\n"))
        if not match:
            return None
        return cls(
            old_start=int(match.group("old_start")),
            old_count=_declared_count(match.group("old_count")),
            new_start=int(match.group("new_start")),
            new_count=_declared_count(match.group("new_count")),
            section=match.group("section").strip(),
        )

    def render(self) -> str:
        text = f"@@ -{self.old_start},{self.old_count} +{self.new_start},{self.new_count} @@"
        if self.section:
            text += f" {self.section}"
        return text


@dataclass(frozen=True, slots=True)
class Hunk:
    """A contiguous change region with its declared header and body lines."""

    header: HunkHeader
    lines: Tuple[DiffLine, ...] = ()
    start_line: int = 0
    raw_header: str = ""
    missing_newline: bool = False
    raw: str = ""

    @property
    def old_tally(self) -> int:
        return sum(1 for line in self.lines if line.kind is not DiffLineKind.ADDITION)

    @property
    def new_tally(self) -> int:
        return sum(1 for line in self.lines if line.kind is not DiffLineKind.REMOVAL)

    @property
    def added(self) -> int:
        return sum(1 for line in self.lines if line.kind is DiffLineKind.ADDITION)

    @property
    def removed(self) -> int:
        return sum(1 for line in self.lines if line.kind is DiffLineKind.REMOVAL)

    @property
    def is_consistent(self) -> bool:
        return self.old_tally == self.header.old_count and self.new_tally == self.header.new_count

    def render(self) -> str:
        if self.raw:
            return self.raw
        rendered = [self.raw_header or self.header.render()]
        rendered.extend(line.render() for line in self.lines)
        if self.missing_newline:
            rendered.append(NO_NEWLINE_MARKER)
        return "\n".join(rendered) + "\n"


@dataclass(frozen=True, slots=True)
class FileDiff:
    """All hunks that target a single path."""

    path: Path
    mode: FileMode = FileMode.MODIFY
    hunks: Tuple[Hunk, ...] = ()
    header_lines: Tuple[str, ...] = ()
    origin: Path | None = None

    @property
    def added(self) -> int:
        return sum(hunk.added for hunk in self.hunks)

    @property
    def removed(self) -> int:
        return sum(hunk.removed for hunk in self.hunks)


@dataclass(frozen=True, slots=True)
class PatchSource:
    """Upstream identity a patch file belongs to."""

    org: str
    repo: str
    branch: str

    @classmethod
    def from_slug(cls, slug: str, branch: str) -> "PatchSource":
        """Build a source from an ``org/repo`` slug."""

        parts = slug.strip().split("/")
        if len(parts) != 2 or not all(parts):
            raise PatchError(f"Repository must be in format 'org/repo', got {slug!r}")
        if not branch.strip():
            raise PatchError("Branch must not be empty.")
        return cls(org=parts[0], repo=parts[1], branch=branch.strip())

    @property
    def slug(self) -> str:
        return f"{self.org}/{self.repo}"

    @property
    def relative_path(self) -> Path:
        return Path(self.org) / self.repo / f"{self.branch}.patch"


@dataclass(frozen=True, slots=True)
class PatchFile:
    """Parsed patch file: ordered file diffs plus the raw content."""

    diffs: Tuple[FileDiff, ...]
    content: str
    source: PatchSource | None = None
    path: Path | None = field(default=None, compare=False)

    @property
    def has_trailing_newline(self) -> bool:
        return self.content.endswith("\n")

    @property
    def paths(self) -> Tuple[Path, ...]:
        """Every path the patch touches, rename sources included."""
        touched: list[Path] = []
        for diff in self.diffs:
            if diff.origin is not None:
                touched.append(diff.origin)
            touched.append(diff.path)
        return tuple(touched)

    @property
    def added_lines(self) -> int:
        return sum(diff.added for diff in self.diffs)

    @property
    def removed_lines(self) -> int:
        return sum(diff.removed for diff in self.diffs)

    @property
    def line_count(self) -> int:
        trailing = 0 if not self.content or self.has_trailing_newline else 1
        return self.content.count("\n") + trailing


def _declared_count(value: str | None) -> int:
    return int(value) if value is not None else 1


def normalise_diff_path(entry: str) -> Path | None:
    """Translate diff header operands into repository-relative paths."""
    entry = entry.strip()
    if entry == "/dev/null" or not entry:
        return None
    if entry.startswith("a/") or entry.startswith("b/"):
        entry = entry[2:]
    return Path(entry) if entry else None


def _is_body_line(line: str) -> bool:
    return line == "" or line[:1] in {" ", "+", "-", "\\"}


def parse_hunks(lines: Sequence[str], *, first_line_number: int = 1) -> Tuple[Hunk, ...]:
    """Read hunks out of ``lines`` using their declared counts.

    Lines outside hunks are skipped. A hunk ends when its declared counts are
    consumed, or early when a header or a non-diff line shows up.
    """

    hunks: list[Hunk] = []
    index = 0
    while index < len(lines):
        line = lines[index]
        header = HunkHeader.parse(line) if line.startswith("@@") else None
        if header is None:
            if line.startswith("@@"):
                raise PatchError(
                    f"Malformed hunk header at line {first_line_number + index}: {line}",
                )
            index += 1
            continue

        begin = index
        start_line = first_line_number + index
        body: list[DiffLine] = []
        old_seen = new_seen = 0
        missing_newline = False
        index += 1
        while index < len(lines):
            candidate = lines[index]
            if candidate.startswith("\\"):
                missing_newline = True
                index += 1
                continue
            if old_seen >= header.old_count and new_seen >= header.new_count:
                break
            if candidate.startswith(("diff --git ", "@@")) or not _is_body_line(candidate):
                break
            prefix = candidate[:1]
            if prefix == "+":
                body.append(DiffLine(DiffLineKind.ADDITION, candidate[1:]))
                new_seen += 1
            elif prefix == "-":
                body.append(DiffLine(DiffLineKind.REMOVAL, candidate[1:]))
                old_seen += 1
            else:
                body.append(DiffLine(DiffLineKind.CONTEXT, candidate[1:]))
                old_seen += 1
                new_seen += 1
            index += 1
        hunks.append(
            Hunk(
                header=header,
                lines=tuple(body),
                start_line=start_line,
                raw_header=line,
                missing_newline=missing_newline,
                raw="\n".join(lines[begin:index]) + "\n",
            )
        )
    return tuple(hunks)


def _split_diff_sections(lines: list[str]) -> list[tuple[int, int]]:
    """Identify line ranges corresponding to individual diff sections."""
    sections: list[tuple[int, int]] = []
    start: int | None = None
    for index, line in enumerate(lines):
        if line.startswith("diff --git "):
            if start is not None:
                sections.append((start, index))
            start = index
    if start is not None:
        sections.append((start, len(lines)))
    return sections


def parse_patch(text: str, *, source: PatchSource | None = None, path: Path | None = None) -> PatchFile:
    """Parse git-style unified diff ``text`` into a :class:`PatchFile`."""

    lines = text.split("\n")
    if lines and lines[-1] == "":
        lines.pop()
    diffs: list[FileDiff] = []
    for start, end in _split_diff_sections(lines):
        section = lines[start:end]
        match = _DIFF_HEADER.match(section[0])
        if not match:
            raise PatchError(f"Unrecognised diff header at line {start + 1}: {section[0]}")
        target = normalise_diff_path(match.group("right")) or normalise_diff_path(match.group("left"))
        if target is None:
            raise PatchError(f"Diff header without a target path at line {start + 1}")

        mode = FileMode.MODIFY
        origin: Path | None = None
        header_lines: list[str] = [section[0]]
        for candidate in section[1:]:
            if candidate.startswith("@@"):
                break
            header_lines.append(candidate)
            if candidate.startswith("new file mode"):
                mode = FileMode.NEW
            elif candidate.startswith("deleted file mode"):
                mode = FileMode.DELETE
            elif candidate.startswith("rename from "):
                mode = FileMode.RENAME
                origin = Path(candidate[len("rename from ") :])

        hunks = parse_hunks(section, first_line_number=start + 1)
        diffs.append(
            FileDiff(path=target, mode=mode, hunks=hunks, header_lines=tuple(header_lines), origin=origin)
        )

    return PatchFile(diffs=tuple(diffs), content=text, source=source, path=path)


def read_patch(path: Path | str, *, source: PatchSource | None = None) -> PatchFile:
    """Load and parse the patch stored at ``path``."""
    patch_path = Path(path)
    try:
        text = patch_path.read_text(encoding="utf-8")
    except FileNotFoundError as error:
        raise PatchError(f"Patch not found: {patch_path}") from error
    except UnicodeDecodeError as error:
        raise PatchError(f"Patch is not valid UTF-8: {patch_path}") from error
    except OSError as error:
        raise PatchError(f"Patch not readable: {patch_path}: {error}") from error
    return parse_patch(text, source=source, path=patch_path)


def render_new_file_diff(
    path: Path | str,
    content: str,
    *,
    blob: str | None = None,
    executable: bool = False,
) -> str:
    """Render a ``new file`` diff whose single hunk spans all of ``content``.

    The header always carries explicit counts (``@@ -0,0 +1,N @@``) and N is the
    literal number of lines in ``content``. Empty files get no hunk at all.
    """

    relative = Path(path).as_posix()
    body = content.split("\n")
    if body[-1] == "":
        body.pop()
    rendered = [
        f"diff --git a/{relative} b/{relative}",
        f"new file mode {'100755' if executable else '100644'}",
        f"index 0000000..{(blob or '0000000')[:7]}",
    ]
    if not body:
        return "\n".join(rendered) + "\n"
    rendered.append("--- /dev/null")
    rendered.append(f"+++ b/{relative}")
    rendered.append(HunkHeader(old_start=0, old_count=0, new_start=1, new_count=len(body)).render())
    rendered.extend(f"+{line}" for line in body)
    if not content.endswith("\n"):
        rendered.append(NO_NEWLINE_MARKER)
    return "\n".join(rendered) + "\n"


def _serialise_event_value(value: Any) -> Any:
    """Convert telemetry payload values into JSON-friendly representations."""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    if isinstance(value, Path):
        return value.as_posix()
    if isinstance(value, (list, tuple, set)):
        return [_serialise_event_value(item) for item in value]
    if isinstance(value, Mapping):
        return {str(key): _serialise_event_value(child) for key, child in value.items()}
    return str(value)


def emit_patch_event(event: str, **fields: Any) -> None:
    """Log structured telemetry events for patch validation, application and generation."""
    payload = {"event": event, "timestamp": datetime.now(timezone.utc).isoformat()}
    for key, value in fields.items():
        payload[key] = _serialise_event_value(value)
    TELEMETRY_LOGGER.info(json.dumps(payload, separators=(",", ":"), ensure_ascii=True))


__all__ = [
    "DiffLine",
    "DiffLineKind",
    "FileDiff",
    "FileMode",
    "Hunk",
    "HunkHeader",
    "NO_NEWLINE_MARKER",
    "PatchError",
    "PatchFile",
    "PatchSource",
    "emit_patch_event",
    "normalise_diff_path",
    "parse_hunks",
    "parse_patch",
    "read_patch",
    "render_new_file_diff",
]
