"""Best-effort download of the prebuilt native sidecar library.

The library is an opaque companion artifact. Nothing here is allowed to abort
the patch pipeline: unsupported platforms, network failures and unreadable
archives all produce a degraded :class:`NativeInstallResult` and a warning.
"""

from __future__ import annotations

import io
import logging
import platform as platform_module
import tarfile
import urllib.error
import urllib.request
import zlib
from dataclasses import dataclass
from enum import Enum
from pathlib import Path, PurePosixPath
from typing import Protocol, Tuple

LOGGER = logging.getLogger(__name__)

LIBRARY_SUFFIXES = (".so", ".dylib")
EXTRACT_SUFFIXES = (".so", ".dylib", ".h")

_OS_NAMES = {"linux": "linux", "darwin": "darwin"}
_ARCH_NAMES = {"x86_64": "amd64", "amd64": "amd64", "aarch64": "arm64", "arm64": "arm64"}


class FetchError(RuntimeError):
    """Raised by fetchers when an artifact cannot be retrieved."""


class ArtifactFetcher(Protocol):
    """Capability used to download release artifacts."""

    def fetch(self, url: str) -> bytes:
        ...


@dataclass(slots=True)
class UrllibFetcher:
    """Fetch artifacts over HTTP(S) with the standard library."""

    timeout: float = 60.0

    def fetch(self, url: str) -> bytes:
        request = urllib.request.Request(url, headers={"User-Agent": "temu-patch-tools"})
        try:
            with urllib.request.urlopen(request, timeout=self.timeout) as response:  # noqa: S310 - URL comes from config
                return response.read()
        except urllib.error.HTTPError as error:
            raise FetchError(f"HTTP {error.code} fetching {url}") from error
        except (urllib.error.URLError, TimeoutError, OSError) as error:
            raise FetchError(f"Unable to fetch {url}: {error}") from error


@dataclass(frozen=True, slots=True)
class NativeLibrarySpec:
    """Where the sidecar release lives and which files it provides."""

    version: str
    url_template: str
    artifacts: Tuple[str, ...] = ()

    def url_for(self, platform: str) -> str:
        return self.url_template.format(
            version=self.version,
            version_num=self.version.lstrip("v"),
            platform=platform,
        )


class NativeStatus(str, Enum):
    PRESENT = "present"
    DOWNLOADED = "downloaded"
    DEGRADED = "degraded"


@dataclass(slots=True)
class NativeInstallResult:
    status: NativeStatus
    message: str
    url: str | None = None
    files: Tuple[Path, ...] = ()

    @property
    def degraded(self) -> bool:
        return self.status is NativeStatus.DEGRADED


def detect_platform(system: str | None = None, machine: str | None = None) -> str | None:
    """Return ``<os>_<arch>`` in release naming (``linux_amd64``), or ``None`` when unsupported."""
    os_name = _OS_NAMES.get((system or platform_module.system()).lower())
    arch = _ARCH_NAMES.get((machine or platform_module.machine()).lower())
    if os_name is None or arch is None:
        return None
    return f"{os_name}_{arch}"


def _extract_libraries(payload: bytes, destination: Path) -> Tuple[Path, ...]:
    """Write library and header members of a ``.tar.gz`` payload flat into ``destination``."""
    written: list[Path] = []
    with tarfile.open(fileobj=io.BytesIO(payload), mode="r:gz") as archive:
        for member in archive.getmembers():
            if not member.isfile():
                continue
            name = PurePosixPath(member.name).name
            if not name.endswith(EXTRACT_SUFFIXES):
                continue
            source = archive.extractfile(member)
            if source is None:
                continue
            target = destination / name
            target.write_bytes(source.read())
            written.append(target)
    return tuple(written)


def _degraded(message: str, url: str | None = None) -> NativeInstallResult:
    LOGGER.warning("%s; the native library may need to be downloaded manually", message)
    return NativeInstallResult(status=NativeStatus.DEGRADED, message=message, url=url)


def install_native_library(
    target_root: Path | str,
    spec: NativeLibrarySpec,
    fetcher: ArtifactFetcher,
    *,
    platform: str | None = None,
) -> NativeInstallResult:
    """Download and unpack the native library into ``target_root`` unless it is already there."""

    root = Path(target_root)
    present = tuple(
        root / name for name in spec.artifacts if name.endswith(LIBRARY_SUFFIXES) and (root / name).exists()
    )
    if present:
        return NativeInstallResult(
            status=NativeStatus.PRESENT,
            message=f"{present[0].name} already exists, skipping download",
            files=present,
        )

    resolved_platform = platform or detect_platform()
    if resolved_platform is None:
        return _degraded(
            f"Unsupported platform {platform_module.system()}/{platform_module.machine()} for native library"
        )

    url = spec.url_for(resolved_platform)
    LOGGER.info("Downloading native library %s from %s", spec.version, url)
    try:
        payload = fetcher.fetch(url)
    except FetchError as error:
        return _degraded(f"Could not download native library: {error}", url)

    try:
        files = _extract_libraries(payload, root)
    except (tarfile.TarError, EOFError, zlib.error, OSError) as error:
        return _degraded(f"Could not unpack native library archive: {error}", url)

    if not any(path.name.endswith(LIBRARY_SUFFIXES) for path in files):
        return _degraded("Native library archive did not contain a shared library", url)

    return NativeInstallResult(
        status=NativeStatus.DOWNLOADED,
        message=f"Downloaded {', '.join(path.name for path in files)}",
        url=url,
        files=files,
    )


__all__ = [
    "ArtifactFetcher",
    "FetchError",
    "NativeInstallResult",
    "NativeLibrarySpec",
    "NativeStatus",
    "UrllibFetcher",
    "detect_platform",
    "install_native_library",
]
