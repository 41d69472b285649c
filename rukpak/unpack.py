"""Pack a bundle directory into a gzipped tar archive and print it as JSON."""

from __future__ import annotations

import argparse
import base64
import gzip
import io
import json
import os
import sys
import tarfile
from importlib.metadata import PackageNotFoundError, version
from typing import Sequence

SKIP_ROOT_PATHS = frozenset({"/dev", "/etc", "/proc", "/product_name", "/product_uuid", "/sys", "/bin"})


def _version_string() -> str:
    try:
        return version("rukpak")
    except PackageNotFoundError:
        return "unknown"


def _add(tar: tarfile.TarFile, full_path: str, arcname: str) -> None:
    try:
        info = tar.gettarinfo(full_path, arcname=arcname)
    except OSError as exc:
        raise OSError(f'get file info for "{arcname}": {exc}') from exc
    info.uid = info.gid = 0
    info.uname = info.gname = ""
    info.name = arcname
    if info.isdir():
        tar.addfile(info)
        return
    try:
        with open(full_path, "rb") as handle:
            tar.addfile(info, handle)
    except OSError as exc:
        raise OSError(f'write tar data for "{arcname}": {exc}') from exc


def _walk(tar: tarfile.TarFile, bundle_dir: str, directory: str, prefix: str) -> None:
    with os.scandir(directory) as scan:
        entries = sorted(scan, key=lambda e: e.name)
    for entry in entries:
        if entry.is_symlink():
            continue
        is_dir = entry.is_dir(follow_symlinks=False)
        if bundle_dir == "/" and entry.path in SKIP_ROOT_PATHS:
            if is_dir:
                continue
            # A skipped file ends the walk of its directory.
            return
        arcname = f"{prefix}{entry.name}"
        _add(tar, entry.path, arcname)
        if is_dir:
            _walk(tar, bundle_dir, entry.path, f"{arcname}/")


def build_bundle_archive(bundle_dir: str | os.PathLike[str]) -> bytes:
    """Return a tar.gz of the directory with owner data cleared and symlinks left out."""
    bundle_dir = os.path.abspath(bundle_dir)
    buffer = io.BytesIO()
    with gzip.GzipFile(fileobj=buffer, mode="wb", mtime=0) as gz:
        with tarfile.open(fileobj=gz, mode="w", format=tarfile.PAX_FORMAT) as tar:
            _add(tar, bundle_dir, ".")
            _walk(tar, bundle_dir, bundle_dir, "")
    return buffer.getvalue()


def main(argv: Sequence[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="unpack")
    parser.add_argument("--bundle-dir", default="", help="directory in which the bundle can be found")
    parser.add_argument("--version", action="store_true", help="displays rukpak version information")
    args = parser.parse_args(argv)

    if args.version:
        print(_version_string())
        return 0

    bundle_dir = os.path.abspath(args.bundle_dir)
    try:
        archive = build_bundle_archive(bundle_dir)
    except OSError as exc:
        print(f'generate tar.gz for bundle dir "{bundle_dir}": {exc}', file=sys.stderr)
        return 1

    sys.stdout.write(json.dumps({"content": base64.b64encode(archive).decode("ascii")}) + "\n")
    sys.stdout.flush()
    return 0