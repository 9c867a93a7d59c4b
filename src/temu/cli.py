"""CLI commands for validating, applying and saving temu patches."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import List, NoReturn, Optional

import typer

from .config import DEFAULT_CONFIG_NAME, ConfigError, ProjectSettings, load_config
from .orchestrator import ApplyReport, PatchOrchestrator
from .tools.applicator import ApplyStatus
from .tools.diffgen import NoChanges
from .tools.overlay import OverlayError
from .tools.patch import PatchError, PatchSource
from .tools.upstream import UpstreamError
from .tools.validate import validate_patch_file
from .tools.vcs import GitError
from .tools.workflows import disable_upstream_workflows

APP_HELP = "Patch tooling for building teku with the temu overlay."
EXIT_NO_CHANGES = 2

app = typer.Typer(help=APP_HELP)

_DOMAIN_ERRORS = (PatchError, GitError, OverlayError, UpstreamError, ConfigError)


def _fail(error: Exception) -> NoReturn:
    typer.echo(f"Error: {error}", err=True)
    details = getattr(error, "details", None) or {}
    for key, value in details.items():
        if isinstance(value, (list, tuple)):
            typer.echo(f"  {key}:", err=True)
            for item in value:
                typer.echo(f"    - {item}", err=True)
        else:
            typer.echo(f"  {key}: {value}", err=True)
    raise typer.Exit(code=1) from error


def _settings(config: Optional[str]) -> ProjectSettings:
    try:
        return load_config(config)
    except ConfigError as error:
        _fail(error)


def _source(settings: ProjectSettings, repo: Optional[str], branch: Optional[str]) -> PatchSource:
    try:
        return settings.patch_source(repo, branch)
    except (ConfigError, PatchError) as error:
        _fail(error)


def _print_apply_report(report: ApplyReport) -> None:
    outcome = report.outcome
    messages = {
        ApplyStatus.APPLIED: "Patch applied cleanly.",
        ApplyStatus.ALREADY_APPLIED: "Patch already applied; nothing to do.",
        ApplyStatus.APPLIED_WITH_MERGE: "Patch applied with a three-way merge.",
        ApplyStatus.CONFLICT: "Patch could not be applied; conflicting hunks were rejected.",
    }
    typer.echo(f"{messages[outcome.status]} (strategy: {outcome.strategy})")
    for hunk in outcome.rejected:
        typer.echo(f"- {hunk.path.as_posix()} {hunk.header}")
        snippet = hunk.render_snippet()
        if snippet:
            typer.echo(snippet)
    if outcome.partial:
        typer.echo("The working tree may be partially patched; resolve the conflicts and save the patch again.")
        return
    if report.overlay_path is not None:
        typer.echo(f"Overlay copied to {report.overlay_path.as_posix()}")
    if report.native is not None:
        prefix = "Warning: " if report.native.degraded else ""
        typer.echo(f"{prefix}{report.native.message}")
    if report.disabled_workflows:
        typer.echo(f"Disabled {len(report.disabled_workflows)} upstream workflow(s)")
    if outcome.latest_commit:
        typer.echo(f"Upstream at {outcome.branch or 'detached HEAD'}: {outcome.latest_commit}")


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log progress and telemetry events."),
) -> None:
    logging.basicConfig(
        level=logging.INFO if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )


@app.command()
def validate(
    patch: Path = typer.Argument(..., help="Patch file to check."),
    config: Optional[str] = typer.Option(
        None,
        "--config",
        "-c",
        help=f"Path to the configuration file (defaults to {DEFAULT_CONFIG_NAME}).",
    ),
) -> None:
    """Check the hunk line counts and trailing newline of a patch."""
    settings = _settings(config)
    try:
        report = validate_patch_file(patch)
    except PatchError as error:
        _fail(error)

    fatal = report.fatal_errors(allow_missing_newline=settings.config.patches.allow_missing_newline)
    for error in report.errors:
        typer.echo(f"{'error' if error in fatal else 'warning'}: {error.message}")
    if fatal:
        typer.echo(f"Patch validation failed: {patch}")
        raise typer.Exit(code=1)
    typer.echo(f"Patch is valid: {patch} ({len(report.hunks)} hunk(s))")


@app.command()
def apply(
    target: Optional[Path] = typer.Argument(None, help="Upstream checkout to patch."),
    repo: Optional[str] = typer.Option(None, "--repo", "-r", help="Upstream repository as org/repo."),
    branch: Optional[str] = typer.Option(None, "--branch", "-b", help="Upstream branch the patch targets."),
    patch: Optional[Path] = typer.Option(None, "--patch", "-p", help="Use this patch file instead of the stored one."),
    native: Optional[bool] = typer.Option(
        None,
        "--native/--no-native",
        help="Download the native sidecar library after applying.",
    ),
    config: Optional[str] = typer.Option(
        None,
        "--config",
        "-c",
        help=f"Path to the configuration file (defaults to {DEFAULT_CONFIG_NAME}).",
    ),
) -> None:
    """Apply the stored patch and overlay to an upstream checkout."""
    settings = _settings(config)
    source = _source(settings, repo, branch)
    orchestrator = PatchOrchestrator(settings, install_native=native)
    try:
        report = orchestrator.apply(source, target, patch_path=patch)
    except _DOMAIN_ERRORS as error:
        _fail(error)

    _print_apply_report(report)
    if not report.ok:
        raise typer.Exit(code=1)


@app.command()
def save(
    target: Optional[Path] = typer.Argument(None, help="Upstream checkout holding the edits."),
    repo: Optional[str] = typer.Option(None, "--repo", "-r", help="Upstream repository as org/repo."),
    branch: Optional[str] = typer.Option(None, "--branch", "-b", help="Upstream branch the patch targets."),
    patch: Optional[Path] = typer.Option(None, "--patch", "-p", help="Write to this file instead of the stored path."),
    quiet: bool = typer.Option(False, "--quiet", "-q", help="Only print the patch path."),
    config: Optional[str] = typer.Option(
        None,
        "--config",
        "-c",
        help=f"Path to the configuration file (defaults to {DEFAULT_CONFIG_NAME}).",
    ),
) -> None:
    """Capture the edits in an upstream checkout as the stored patch."""
    settings = _settings(config)
    source = _source(settings, repo, branch)
    orchestrator = PatchOrchestrator(settings, install_native=False)
    try:
        result = orchestrator.save(source, target, patch_path=patch)
    except _DOMAIN_ERRORS as error:
        _fail(error)

    if isinstance(result, NoChanges):
        if not quiet:
            typer.echo(result.reason)
        raise typer.Exit(code=EXIT_NO_CHANGES)

    if quiet:
        typer.echo(result.path.as_posix())
        return
    stats = result.stats
    typer.echo(f"Patch saved to {result.path.as_posix()}")
    typer.echo(
        f"{stats.files} file(s), {stats.lines} line(s), {stats.bytes} byte(s) "
        f"(+{stats.added} / -{stats.removed})"
    )
    for skipped in result.skipped:
        typer.echo(f"Skipped binary file {skipped.as_posix()}")


@app.command()
def prepare(
    target: Optional[Path] = typer.Argument(None, help="Where the upstream checkout lives."),
    repo: Optional[str] = typer.Option(None, "--repo", "-r", help="Upstream repository as org/repo."),
    branch: Optional[str] = typer.Option(None, "--branch", "-b", help="Upstream branch to check out."),
    commit: Optional[str] = typer.Option(None, "--commit", "-c", help="Pin the checkout to this commit."),
    force: bool = typer.Option(False, "--force", help="Discard local changes in the checkout."),
    config: Optional[str] = typer.Option(
        None,
        "--config",
        help=f"Path to the configuration file (defaults to {DEFAULT_CONFIG_NAME}).",
    ),
) -> None:
    """Clone or refresh the upstream checkout."""
    settings = _settings(config)
    source = _source(settings, repo, branch)
    orchestrator = PatchOrchestrator(settings, install_native=False)
    try:
        checkout = orchestrator.prepare(source, target, commit=commit, force_clean=force)
    except _DOMAIN_ERRORS as error:
        _fail(error)

    typer.echo(f"Upstream {source.slug} {checkout.action.value} at {checkout.path.as_posix()}")
    if checkout.cleaned:
        typer.echo("Local changes were discarded.")
    if checkout.head:
        typer.echo(f"HEAD: {checkout.head}")


@app.command("disable-workflows")
def disable_workflows(
    directory: Path = typer.Argument(Path(".github/workflows"), help="Workflows directory."),
    keep: List[str] = typer.Option(
        None,
        "--keep",
        "-k",
        help="Workflow name prefix to leave enabled (repeatable).",
    ),
    config: Optional[str] = typer.Option(
        None,
        "--config",
        "-c",
        help=f"Path to the configuration file (defaults to {DEFAULT_CONFIG_NAME}).",
    ),
) -> None:
    """Rename upstream CI workflows to *.disabled."""
    if not directory.is_dir():
        typer.echo(f"No workflows directory found at {directory}")
        return
    prefixes = keep or _settings(config).config.workflows.keep_prefixes
    disabled = disable_upstream_workflows(directory, prefixes)
    typer.echo(f"Disabled {len(disabled)} upstream workflow(s)")


if __name__ == "__main__":
    app()
