from __future__ import annotations

import textwrap
from pathlib import Path

import pytest

from temu.config import CONFIG_ENV_VAR, ConfigError, load_config


def test_defaults_without_config_file(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv(CONFIG_ENV_VAR, raising=False)

    settings = load_config()

    assert settings.project_root == tmp_path.resolve()
    assert settings.config.native.version == "v0.0.6"
    assert settings.config.workflows.keep_prefixes == ["ethpandaops-", "temu-"]
    assert settings.upstream_target() == tmp_path.resolve() / "teku"


def test_yaml_overrides_and_paths_resolve_against_config(tmp_path: Path) -> None:
    config_path = tmp_path / "project" / "temu.yaml"
    config_path.parent.mkdir()
    config_path.write_text(
        textwrap.dedent(
            """
            upstream:
              org: consensys
              repo: teku
              branch: master
              target_dir: ../checkout
            patches:
              root: stored-patches
              allow_missing_newline: true
            overlay:
              include: [src]
            """
        ).lstrip(),
        encoding="utf-8",
    )

    settings = load_config(config_path)
    source = settings.patch_source()

    assert source.slug == "consensys/teku"
    assert settings.patch_path(source) == (
        tmp_path.resolve() / "project" / "stored-patches" / "consensys" / "teku" / "master.patch"
    )
    assert settings.upstream_target() == tmp_path.resolve() / "checkout"
    assert settings.config.patches.allow_missing_newline is True
    overlay = settings.overlay_manager()
    assert overlay is not None
    assert overlay.include == ("src",)
    assert overlay.marker is not None and overlay.marker.contains == "plugins:xatu"


def test_cli_arguments_override_configured_source(tmp_path: Path) -> None:
    config_path = tmp_path / "temu.yaml"
    config_path.write_text("upstream:\n  org: consensys\n  repo: teku\n  branch: master\n", encoding="utf-8")

    source = load_config(config_path).patch_source("ethpandaops/teku", "temu")

    assert (source.org, source.repo, source.branch) == ("ethpandaops", "teku", "temu")


def test_missing_source_is_config_error(tmp_path: Path) -> None:
    config_path = tmp_path / "temu.yaml"
    config_path.write_text("{}\n", encoding="utf-8")

    with pytest.raises(ConfigError):
        load_config(config_path).patch_source()


def test_unknown_keys_rejected(tmp_path: Path) -> None:
    config_path = tmp_path / "temu.yaml"
    config_path.write_text("patches:\n  rooot: typo\n", encoding="utf-8")

    with pytest.raises(ConfigError, match="Invalid configuration"):
        load_config(config_path)


def test_explicit_missing_file_is_error(tmp_path: Path) -> None:
    with pytest.raises(ConfigError, match="not found"):
        load_config(tmp_path / "absent.yaml")


def test_environment_variable_selects_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    config_path = tmp_path / "custom.yaml"
    config_path.write_text("native:\n  version: v1.2.3\n", encoding="utf-8")
    monkeypatch.setenv(CONFIG_ENV_VAR, str(config_path))

    assert load_config().config.native.version == "v1.2.3"


def test_non_mapping_config_rejected(tmp_path: Path) -> None:
    config_path = tmp_path / "temu.yaml"
    config_path.write_text("- just\n- a list\n", encoding="utf-8")

    with pytest.raises(ConfigError, match="mapping"):
        load_config(config_path)
