"""Project configuration for the temu patch tooling.

Settings live in ``temu.yaml`` at the project root. Every section is optional;
missing values fall back to the defaults the build scripts have always used.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import List, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .tools.native import NativeLibrarySpec
from .tools.overlay import OverlayManager, OverlayMarker
from .tools.patch import PatchSource

DEFAULT_CONFIG_NAME = "temu.yaml"
CONFIG_ENV_VAR = "TEMU_CONFIG"
DEFAULT_NATIVE_URL = (
    "https://github.com/ethpandaops/xatu-sidecar/releases/download/"
    "{version}/xatu-sidecar_{version_num}_{platform}.tar.gz"
)


class ConfigError(RuntimeError):
    """Raised when the configuration file cannot be read or fails validation."""


class SectionModel(BaseModel):
    """Base model rejecting unknown keys so typos surface early."""

    model_config = ConfigDict(extra="forbid")


class UpstreamSettings(SectionModel):
    remote_base: str = "https://github.com"
    org: Optional[str] = None
    repo: Optional[str] = None
    branch: Optional[str] = None
    target_dir: str = "teku"


class PatchSettings(SectionModel):
    root: str = "patches"
    allow_missing_newline: bool = False


class MarkerSettings(SectionModel):
    path: str = "settings.gradle"
    contains: str = "plugins:xatu"


class OverlaySettings(SectionModel):
    enabled: bool = True
    source: str = "plugins/xatu"
    destination: str = "plugins/xatu"
    include: List[str] = Field(default_factory=lambda: ["build.gradle", "src"])
    marker: Optional[MarkerSettings] = Field(default_factory=MarkerSettings)


class NativeSettings(SectionModel):
    enabled: bool = True
    version: str = "v0.0.6"
    url_template: str = DEFAULT_NATIVE_URL
    artifacts: List[str] = Field(default_factory=lambda: ["libxatu.so", "libxatu.h", "libxatu.dylib"])
    timeout: float = Field(default=60.0, gt=0)


class HygieneSettings(SectionModel):
    gitignore_comment: Optional[str] = "# Xatu build artifacts"
    gitignore_entries: List[str] = Field(default_factory=lambda: ["/libxatu.so", "/libxatu.h"])
    restore_paths: List[str] = Field(default_factory=lambda: [".gitignore"])


class WorkflowSettings(SectionModel):
    directory: str = ".github/workflows"
    keep_prefixes: List[str] = Field(default_factory=lambda: ["ethpandaops-", "temu-"])


class SaveSettings(SectionModel):
    exclude: List[str] = Field(
        default_factory=lambda: [
            "libxatu.so",
            "libxatu.h",
            "libxatu.dylib",
            "example-xatu-config.yaml",
            "test-xatu.sh",
            "XATU_REFACTORING.md",
            "plugins/xatu",
            "*.rej",
            "*.orig",
        ]
    )


class TemuConfig(SectionModel):
    upstream: UpstreamSettings = Field(default_factory=UpstreamSettings)
    patches: PatchSettings = Field(default_factory=PatchSettings)
    overlay: OverlaySettings = Field(default_factory=OverlaySettings)
    native: NativeSettings = Field(default_factory=NativeSettings)
    hygiene: HygieneSettings = Field(default_factory=HygieneSettings)
    workflows: WorkflowSettings = Field(default_factory=WorkflowSettings)
    save: SaveSettings = Field(default_factory=SaveSettings)


class ProjectSettings:
    """Validated configuration bound to the project root it was loaded from."""

    def __init__(self, config: TemuConfig, project_root: Path, config_path: Path | None = None) -> None:
        self.config = config
        self.project_root = project_root.resolve()
        self.config_path = config_path

    def _resolve(self, value: str) -> Path:
        path = Path(value)
        return path if path.is_absolute() else self.project_root / path

    @property
    def patches_root(self) -> Path:
        return self._resolve(self.config.patches.root)

    def patch_path(self, source: PatchSource) -> Path:
        """``<patches root>/<org>/<repo>/<branch>.patch``."""
        return self.patches_root / source.relative_path

    def upstream_target(self, override: Path | str | None = None) -> Path:
        if override is not None:
            return Path(override).resolve()
        return self._resolve(self.config.upstream.target_dir).resolve()

    def patch_source(self, slug: str | None = None, branch: str | None = None) -> PatchSource:
        upstream = self.config.upstream
        if slug is None and upstream.org and upstream.repo:
            slug = f"{upstream.org}/{upstream.repo}"
        branch = branch or upstream.branch
        if not slug or not branch:
            raise ConfigError("Upstream repository and branch are required (use --repo and --branch)")
        return PatchSource.from_slug(slug, branch)

    def overlay_manager(self) -> OverlayManager | None:
        overlay = self.config.overlay
        if not overlay.enabled:
            return None
        marker = None
        if overlay.marker is not None:
            marker = OverlayMarker(path=Path(overlay.marker.path), contains=overlay.marker.contains)
        return OverlayManager(
            source_root=self._resolve(overlay.source),
            destination=Path(overlay.destination),
            include=tuple(overlay.include),
            marker=marker,
        )

    def native_spec(self) -> NativeLibrarySpec:
        native = self.config.native
        return NativeLibrarySpec(
            version=native.version,
            url_template=native.url_template,
            artifacts=tuple(native.artifacts),
        )


def resolve_config_path(config: str | Path | None = None) -> Path:
    """Pick the configuration file: explicit argument, then ``$TEMU_CONFIG``, then ``temu.yaml``."""
    if config:
        return Path(config)
    env_value = os.environ.get(CONFIG_ENV_VAR, "").strip()
    if env_value:
        return Path(env_value)
    return Path(DEFAULT_CONFIG_NAME)


def load_config(config: str | Path | None = None, *, required: bool | None = None) -> ProjectSettings:
    """Load and validate the configuration.

    A missing default ``temu.yaml`` yields the built-in defaults rooted at the
    current directory; a missing file that was asked for explicitly (argument or
    environment variable) is an error.
    """

    explicit = bool(config) or bool(os.environ.get(CONFIG_ENV_VAR, "").strip())
    if required is None:
        required = explicit
    config_path = resolve_config_path(config)

    if not config_path.exists():
        if required:
            raise ConfigError(f"Config file not found: {config_path}")
        return ProjectSettings(TemuConfig(), Path.cwd())

    try:
        with config_path.open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle) or {}
    except yaml.YAMLError as error:
        raise ConfigError(f"Failed to parse config {config_path}: {error}") from error
    except OSError as error:
        raise ConfigError(f"Config file not readable: {config_path}: {error}") from error

    if not isinstance(data, dict):
        raise ConfigError("Configuration must be a mapping at the top level.")

    try:
        parsed = TemuConfig.model_validate(data)
    except ValidationError as error:
        raise ConfigError(f"Invalid configuration in {config_path}:\n{error}") from error

    return ProjectSettings(parsed, config_path.resolve().parent, config_path.resolve())


__all__ = [
    "CONFIG_ENV_VAR",
    "ConfigError",
    "DEFAULT_CONFIG_NAME",
    "ProjectSettings",
    "TemuConfig",
    "load_config",
    "resolve_config_path",
]
