from __future__ import annotations

import logging
import tarfile
from pathlib import Path
from typing import List

import zstandard

LOG = logging.getLogger(__name__)

ZSTD_LEVEL = 3


def _sorted_files(root: Path) -> List[Path]:
    return sorted((path for path in root.rglob("*") if path.is_file()), key=lambda p: p.as_posix())


def _normalize(info: tarfile.TarInfo) -> tarfile.TarInfo:
    info.uid = 0
    info.gid = 0
    info.uname = ""
    info.gname = ""
    info.mtime = 0
    return info


def package_directory(source: Path, archive_path: Path, level: int = ZSTD_LEVEL) -> Path:
    """Write ``source`` as a zstd-compressed tar whose bytes depend only on file contents.

    Members are added in sorted order with owner and timestamp metadata zeroed, so
    re-dumping unchanged data yields an identical archive.
    """
    base = source.parent
    files = _sorted_files(source)
    LOG.info("Creating archive %s from %d files", archive_path, len(files))

    compressor = zstandard.ZstdCompressor(level=level)
    with archive_path.open("wb") as fh, compressor.stream_writer(fh, closefd=False) as stream:
        with tarfile.open(fileobj=stream, mode="w|", format=tarfile.GNU_FORMAT) as tar:
            for path in files:
                info = _normalize(tar.gettarinfo(str(path), arcname=path.relative_to(base).as_posix()))
                with path.open("rb") as member:
                    tar.addfile(info, member)
    return archive_path
