"""Apply and save pipelines sequencing the patch tooling against an upstream checkout."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Tuple

from .config import ProjectSettings
from .tools.applicator import ApplyOutcome, PatchApplicator
from .tools.diffgen import DiffGenerator, GeneratedPatch, NoChanges
from .tools.hygiene import HygieneResult, ensure_gitignore_entries
from .tools.native import ArtifactFetcher, NativeInstallResult, UrllibFetcher, install_native_library
from .tools.overlay import OverlayManager
from .tools.patch import PatchError, PatchSource, emit_patch_event
from .tools.upstream import UpstreamCheckout, prepare_upstream
from .tools.validate import ValidationReport, validate_patch_file
from .tools.vcs import GitRepository
from .tools.workflows import disable_upstream_workflows

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class ApplyReport:
    """Everything the apply pipeline did to the target tree."""

    outcome: ApplyOutcome
    validation: ValidationReport
    overlay_path: Path | None = None
    native: NativeInstallResult | None = None
    gitignore: HygieneResult | None = None
    disabled_workflows: Tuple[Path, ...] = ()

    @property
    def ok(self) -> bool:
        return self.outcome.ok


class PatchOrchestrator:
    """Coordinate validation, application, overlay and hygiene steps for one project."""

    def __init__(
        self,
        settings: ProjectSettings,
        *,
        fetcher: ArtifactFetcher | None = None,
        install_native: bool | None = None,
    ) -> None:
        self.settings = settings
        self.fetcher = fetcher or UrllibFetcher(timeout=settings.config.native.timeout)
        self.install_native = settings.config.native.enabled if install_native is None else install_native

    # ------------------------------------------------------------ validate
    def validate(self, patch_path: Path | str) -> ValidationReport:
        return validate_patch_file(patch_path)

    def _require_valid(self, patch_path: Path) -> ValidationReport:
        report = self.validate(patch_path)
        fatal = report.fatal_errors(allow_missing_newline=self.settings.config.patches.allow_missing_newline)
        if fatal:
            raise PatchError(
                f"Patch failed validation: {patch_path}",
                details={"errors": [error.message for error in fatal]},
            )
        for error in report.errors:
            if not error.fatal:
                LOGGER.warning("%s", error.message)
        return report

    # --------------------------------------------------------------- apply
    def apply(
        self,
        source: PatchSource,
        target: Path | str | None = None,
        *,
        patch_path: Path | str | None = None,
    ) -> ApplyReport:
        """Validate, apply and then lay the overlay and script-managed state over ``target``.

        Post-apply steps only run once the patch is in (``Applied``,
        ``AlreadyApplied`` or ``AppliedWithMerge``); a conflict leaves the tree
        for the operator to inspect.
        """

        path = Path(patch_path) if patch_path is not None else self.settings.patch_path(source)
        validation = self._require_valid(path)
        repo = GitRepository(self.settings.upstream_target(target))
        overlay = self.settings.overlay_manager()

        def overlay_present() -> bool:
            return overlay is not None and overlay.is_materialized(repo.root)

        probe = overlay_present if overlay is not None else None
        outcome = PatchApplicator(repo, already_applied_probe=probe).apply(path)
        report = ApplyReport(outcome=outcome, validation=validation)
        if not outcome.ok:
            return report

        config = self.settings.config
        if overlay is not None:
            report.overlay_path = overlay.materialize(repo.root)
        if self.install_native:
            report.native = install_native_library(repo.root, self.settings.native_spec(), self.fetcher)
        report.gitignore = ensure_gitignore_entries(
            repo.root,
            config.hygiene.gitignore_entries,
            comment=config.hygiene.gitignore_comment,
        )
        report.disabled_workflows = tuple(
            disable_upstream_workflows(repo.root / config.workflows.directory, config.workflows.keep_prefixes)
        )
        emit_patch_event(
            "patch_pipeline_completed",
            source=source.slug,
            branch=source.branch,
            status=outcome.status,
            strategy=outcome.strategy,
            native=report.native.status if report.native else None,
        )
        return report

    # ---------------------------------------------------------------- save
    def _overlay_for_save(self) -> OverlayManager | None:
        overlay = self.settings.overlay_manager()
        if overlay is None:
            return None
        if not Path(overlay.source_root).is_dir():
            LOGGER.warning("Overlay source %s missing; leaving overlay untouched", overlay.source_root)
            return None
        return overlay

    def save(
        self,
        source: PatchSource,
        target: Path | str | None = None,
        *,
        patch_path: Path | str | None = None,
    ) -> GeneratedPatch | NoChanges:
        """Capture the developer's edits in ``target`` as the patch for ``source``."""

        path = Path(patch_path) if patch_path is not None else self.settings.patch_path(source)
        repo = GitRepository(self.settings.upstream_target(target))
        config = self.settings.config
        generator = DiffGenerator(
            repo=repo,
            overlay=self._overlay_for_save(),
            exclude=tuple(config.save.exclude),
            restore_paths=tuple(config.hygiene.restore_paths),
            native_artifacts=tuple(config.native.artifacts),
            workflows_dir=Path(config.workflows.directory),
            source=source,
        )
        return generator.generate(path)

    # ------------------------------------------------------------- prepare
    def prepare(
        self,
        source: PatchSource,
        target: Path | str | None = None,
        *,
        commit: str | None = None,
        force_clean: bool = False,
    ) -> UpstreamCheckout:
        return prepare_upstream(
            source.org,
            source.repo,
            source.branch,
            self.settings.upstream_target(target),
            commit=commit,
            force_clean=force_clean,
            remote_base=self.settings.config.upstream.remote_base,
        )


__all__ = ["ApplyReport", "PatchOrchestrator"]
