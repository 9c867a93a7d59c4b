from __future__ import annotations

from pathlib import Path

import pytest

from temu.tools.overlay import OverlayError, OverlayManager, OverlayMarker


def _plugin_source(root: Path) -> Path:
    source = root / "project" / "plugins" / "xatu"
    (source / "src" / "main").mkdir(parents=True)
    (source / "src" / "main" / "Plugin.java").write_text("class Plugin {}\n", encoding="utf-8")
    (source / "build.gradle").write_text("dependencies {}\n", encoding="utf-8")
    (source / "build").mkdir()
    (source / "build" / "out.class").write_bytes(b"\xca\xfe")
    return source


def _manager(source: Path) -> OverlayManager:
    return OverlayManager(
        source_root=source,
        destination=Path("plugins/xatu"),
        include=("build.gradle", "src"),
        marker=OverlayMarker(path=Path("settings.gradle"), contains="plugins:xatu"),
    )


def test_materialize_copies_only_included_entries(tmp_path: Path) -> None:
    manager = _manager(_plugin_source(tmp_path))
    target = tmp_path / "teku"
    target.mkdir()

    destination = manager.materialize(target)

    assert destination == target / "plugins" / "xatu"
    assert (destination / "build.gradle").read_text(encoding="utf-8") == "dependencies {}\n"
    assert (destination / "src" / "main" / "Plugin.java").exists()
    assert not (destination / "build").exists()


def test_materialize_replaces_stale_files(tmp_path: Path) -> None:
    manager = _manager(_plugin_source(tmp_path))
    target = tmp_path / "teku"
    stale = target / "plugins" / "xatu" / "Stale.java"
    stale.parent.mkdir(parents=True)
    stale.write_text("old\n", encoding="utf-8")

    manager.materialize(target)
    manager.materialize(target)

    assert not stale.exists()
    assert (target / "plugins" / "xatu" / "build.gradle").exists()


def test_retract_is_idempotent(tmp_path: Path) -> None:
    manager = _manager(_plugin_source(tmp_path))
    target = tmp_path / "teku"
    target.mkdir()
    manager.materialize(target)

    assert manager.retract(target) is True
    assert manager.retract(target) is False
    assert not (target / "plugins" / "xatu").exists()


def test_is_materialized_requires_marker(tmp_path: Path) -> None:
    manager = _manager(_plugin_source(tmp_path))
    target = tmp_path / "teku"
    target.mkdir()
    (target / "settings.gradle").write_text("include 'core'\n", encoding="utf-8")

    assert not manager.is_materialized(target)
    manager.materialize(target)
    assert not manager.is_materialized(target)

    (target / "settings.gradle").write_text("include 'core'\ninclude 'plugins:xatu'\n", encoding="utf-8")
    assert manager.is_materialized(target)


def test_missing_source_raises(tmp_path: Path) -> None:
    manager = _manager(tmp_path / "nowhere")

    with pytest.raises(OverlayError):
        manager.materialize(tmp_path)
