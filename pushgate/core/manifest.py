"""Package manifests: archive entry path -> SHA-256 of its content.

A zip release is identified by the hash of its manifest rather than of its
archive bytes, so re-zipping identical content yields the same package hash.
"""

from __future__ import annotations

import json
import zipfile
from pathlib import Path

from pushgate.core.hasher import canonical_json_bytes, sha256_file, sha256_hex, sha256_stream

_MACOSX_PREFIX = "__MACOSX/"
_DS_STORE = ".DS_Store"


def normalize_path(name: str) -> str:
    return name.replace("\\", "/")


def is_ignored(name: str) -> bool:
    """Archive noise added by macOS tooling."""
    return (
        name.startswith(_MACOSX_PREFIX)
        or name == _DS_STORE
        or name.endswith("/" + _DS_STORE)
    )


class PackageManifest:
    """Ordered ``path -> sha256`` map of a package's archive entries.

    Directory entries (paths ending in ``/``) hash as empty content.
    """

    def __init__(self, file_hashes: dict[str, str] | None = None) -> None:
        self._map: dict[str, str] = dict(file_hashes or {})

    @classmethod
    def from_zip(cls, archive_path: Path) -> PackageManifest:
        hashes: dict[str, str] = {}
        with zipfile.ZipFile(archive_path) as zf:
            for info in zf.infolist():
                name = normalize_path(info.filename)
                if is_ignored(name):
                    continue
                with zf.open(info) as fh:
                    hashes[name] = sha256_stream(fh)
        return cls(hashes)

    def to_map(self) -> dict[str, str]:
        return dict(self._map)

    def compute_package_hash(self) -> str:
        """SHA-256 of the JSON array of sorted ``"path:hash"`` strings."""
        entries = sorted(f"{name}:{digest}" for name, digest in self._map.items())
        return sha256_hex(canonical_json_bytes(entries))

    def serialize(self) -> str:
        return json.dumps(self._map, separators=(",", ":"), ensure_ascii=False)

    @classmethod
    def deserialize(cls, text: str | bytes) -> PackageManifest:
        data = json.loads(text)
        if not isinstance(data, dict):
            raise ValueError("Package manifest must be a JSON object")
        return cls({str(k): str(v) for k, v in data.items()})

    def __len__(self) -> int:
        return len(self._map)

    def __contains__(self, name: object) -> bool:
        return name in self._map

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, PackageManifest):
            return NotImplemented
        return self._map == other._map


def is_zip_archive(path: Path) -> bool:
    return zipfile.is_zipfile(path)


def compute_artifact_hash(path: Path) -> tuple[str, PackageManifest | None]:
    """Package hash of an uploaded artifact and, for zips, its manifest.

    Flat (non-zip) artifacts are hashed whole.
    """
    if is_zip_archive(path):
        manifest = PackageManifest.from_zip(path)
        return manifest.compute_package_hash(), manifest
    return sha256_file(path), None
