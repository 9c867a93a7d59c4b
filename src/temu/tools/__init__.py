"""Patch, overlay and git tooling used by the temu build pipeline."""

from .applicator import ApplyOutcome, ApplyStatus, PatchApplicator, RejectedHunk
from .diffgen import DiffGenerator, GeneratedPatch, NoChanges, PatchStatistics
from .hygiene import HygieneResult, ensure_gitignore_entries, remove_artifacts, reset_script_managed
from .native import (
    ArtifactFetcher,
    FetchError,
    NativeInstallResult,
    NativeLibrarySpec,
    NativeStatus,
    UrllibFetcher,
    install_native_library,
)
from .overlay import OverlayError, OverlayManager, OverlayMarker
from .patch import FileDiff, Hunk, HunkHeader, PatchError, PatchFile, PatchSource, parse_patch, read_patch
from .upstream import CheckoutAction, UpstreamCheckout, UpstreamError, prepare_upstream
from .validate import HunkLineMismatch, ValidationReport, validate_patch, validate_patch_file
from .vcs import GitError, GitRepository, StatusEntry
from .workflows import disable_upstream_workflows, restore_disabled_workflows

__all__ = [
    "ApplyOutcome",
    "ApplyStatus",
    "ArtifactFetcher",
    "CheckoutAction",
    "DiffGenerator",
    "FetchError",
    "FileDiff",
    "GeneratedPatch",
    "GitError",
    "GitRepository",
    "Hunk",
    "HunkHeader",
    "HunkLineMismatch",
    "HygieneResult",
    "NativeInstallResult",
    "NativeLibrarySpec",
    "NativeStatus",
    "NoChanges",
    "OverlayError",
    "OverlayManager",
    "OverlayMarker",
    "PatchApplicator",
    "PatchError",
    "PatchFile",
    "PatchSource",
    "PatchStatistics",
    "RejectedHunk",
    "StatusEntry",
    "UpstreamCheckout",
    "UpstreamError",
    "UrllibFetcher",
    "ValidationReport",
    "disable_upstream_workflows",
    "ensure_gitignore_entries",
    "install_native_library",
    "parse_patch",
    "prepare_upstream",
    "read_patch",
    "remove_artifacts",
    "reset_script_managed",
    "restore_disabled_workflows",
    "validate_patch",
    "validate_patch_file",
]
