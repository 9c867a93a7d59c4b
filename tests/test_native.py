from __future__ import annotations

import io
import tarfile
from pathlib import Path

from temu.tools.native import (
    FetchError,
    NativeLibrarySpec,
    NativeStatus,
    detect_platform,
    install_native_library,
)

SPEC = NativeLibrarySpec(
    version="v0.0.6",
    url_template="https://example.invalid/{version}/xatu-sidecar_{version_num}_{platform}.tar.gz",
    artifacts=("libxatu.so", "libxatu.h", "libxatu.dylib"),
)


class FailingFetcher:
    def __init__(self) -> None:
        self.urls: list[str] = []

    def fetch(self, url: str) -> bytes:
        self.urls.append(url)
        raise FetchError("network unreachable")


class TarballFetcher:
    def __init__(self, members: dict[str, bytes]) -> None:
        buffer = io.BytesIO()
        with tarfile.open(fileobj=buffer, mode="w:gz") as archive:
            for name, payload in members.items():
                info = tarfile.TarInfo(name)
                info.size = len(payload)
                archive.addfile(info, io.BytesIO(payload))
        self.payload = buffer.getvalue()

    def fetch(self, url: str) -> bytes:
        return self.payload


def test_fetch_failure_degrades(tmp_path: Path) -> None:
    fetcher = FailingFetcher()

    result = install_native_library(tmp_path, SPEC, fetcher, platform="linux_amd64")

    assert result.degraded
    assert fetcher.urls == ["https://example.invalid/v0.0.6/xatu-sidecar_0.0.6_linux_amd64.tar.gz"]
    assert "network unreachable" in result.message
    assert not (tmp_path / "libxatu.so").exists()


def test_tarball_extracted_flat(tmp_path: Path) -> None:
    fetcher = TarballFetcher(
        {
            "xatu-sidecar/libxatu.so": b"\x7fELF",
            "xatu-sidecar/libxatu.h": b"#pragma once\n",
            "xatu-sidecar/README.md": b"docs\n",
        }
    )

    result = install_native_library(tmp_path, SPEC, fetcher, platform="linux_amd64")

    assert result.status is NativeStatus.DOWNLOADED
    assert (tmp_path / "libxatu.so").read_bytes() == b"\x7fELF"
    assert (tmp_path / "libxatu.h").exists()
    assert not (tmp_path / "README.md").exists()


def test_existing_library_skips_download(tmp_path: Path) -> None:
    (tmp_path / "libxatu.so").write_bytes(b"present")
    fetcher = FailingFetcher()

    result = install_native_library(tmp_path, SPEC, fetcher, platform="linux_amd64")

    assert result.status is NativeStatus.PRESENT
    assert fetcher.urls == []


def test_corrupt_archive_degrades(tmp_path: Path) -> None:
    class GarbageFetcher:
        def fetch(self, url: str) -> bytes:
            return b"not a tarball"

    result = install_native_library(tmp_path, SPEC, GarbageFetcher(), platform="darwin_arm64")

    assert result.degraded


def test_archive_without_library_degrades(tmp_path: Path) -> None:
    fetcher = TarballFetcher({"libxatu.h": b"#pragma once\n"})

    result = install_native_library(tmp_path, SPEC, fetcher, platform="linux_arm64")

    assert result.degraded


def test_detect_platform() -> None:
    assert detect_platform("Linux", "x86_64") == "linux_amd64"
    assert detect_platform("Darwin", "arm64") == "darwin_arm64"
    assert detect_platform("Windows", "AMD64") is None
