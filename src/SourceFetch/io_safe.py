# === NAVMAP v1 ===
# {
#   "module": "SourceFetch.io_safe",
#   "purpose": "Filesystem safety helpers and gzip+tar extraction for downloaded artifacts",
#   "sections": [
#     {
#       "id": "sanitize-filename",
#       "name": "sanitize_filename",
#       "anchor": "function-sanitize-filename",
#       "kind": "function"
#     },
#     {
#       "id": "validate-member-path",
#       "name": "_validate_member_path",
#       "anchor": "function-validate-member-path",
#       "kind": "function"
#     },
#     {
#       "id": "extract-tarball",
#       "name": "extract_tarball",
#       "anchor": "function-extract-tarball",
#       "kind": "function"
#     }
#   ]
# }
# === /NAVMAP ===

"""Filesystem and payload safety utilities for downloaded source artifacts."""

from __future__ import annotations

import io
import logging
import os
import re
import shutil
import stat
import tarfile
from pathlib import Path, PurePosixPath
from typing import BinaryIO, List, Optional, Union

from .errors import ExtractionError

__all__ = ["sanitize_filename", "extract_tarball"]


def sanitize_filename(filename: str) -> str:
    """Return a filesystem-safe filename derived from ``filename``.

    Examples:
        >>> sanitize_filename("flux-system-demo-v1/rc")
        'flux-system-demo-v1_rc'
    """

    safe = filename.replace(os.sep, "_").replace("/", "_").replace("\\", "_")
    safe = re.sub(r"[^A-Za-z0-9._-]", "_", safe)
    safe = safe.strip("._") or "source"
    if len(safe) > 200:
        safe = safe[:200]
    return safe


def _validate_member_path(member_name: str) -> Path:
    """Validate archive member paths to prevent traversal attacks."""

    normalized = member_name.replace("\\", "/")
    relative = PurePosixPath(normalized)
    if relative.is_absolute():
        raise ExtractionError(f"Unsafe absolute path detected in archive: {member_name}")
    parts = [part for part in relative.parts if part != "."]
    if not parts:
        raise ExtractionError(f"Empty path detected in archive: {member_name}")
    if any(part in {"", ".."} for part in parts):
        raise ExtractionError(f"Unsafe path detected in archive: {member_name}")
    return Path(*parts)


def extract_tarball(
    payload: Union[bytes, BinaryIO],
    destination: Path,
    *,
    logger: Optional[logging.Logger] = None,
) -> List[Path]:
    """Extract a gzip-compressed tar stream into ``destination``.

    Every member is validated before anything is written: absolute paths and
    ``..`` components abort the extraction.  Directories and regular files are
    materialised; links and special files are skipped.

    Args:
        payload: Archive bytes or a readable binary stream.
        destination: Target directory, created if missing.
        logger: Optional logger for structured logging with ``stage="extract"``.

    Returns:
        Paths of the regular files written, in header order.

    Raises:
        ExtractionError: If the archive is malformed, unsafe, or cannot be written.
    """

    fileobj = io.BytesIO(payload) if isinstance(payload, (bytes, bytearray)) else payload
    extracted: List[Path] = []
    try:
        destination.mkdir(parents=True, exist_ok=True)
        root = destination.resolve()
        with tarfile.open(fileobj=fileobj, mode="r:gz") as archive:
            members = archive.getmembers()
            safe_members: List[tuple[tarfile.TarInfo, Path]] = []
            for member in members:
                member_path = _validate_member_path(member.name)
                if not (root / member_path).resolve().is_relative_to(root):
                    raise ExtractionError(f"Archive member escapes destination: {member.name}")
                if member.isdir() or member.isfile():
                    safe_members.append((member, member_path))
                elif logger:
                    logger.warning(
                        "skipping unsupported tar member",
                        extra={"stage": "extract", "member": member.name},
                    )
            for member, member_path in safe_members:
                target_path = destination / member_path
                if member.isdir():
                    target_path.mkdir(parents=True, exist_ok=True)
                    continue
                target_path.parent.mkdir(parents=True, exist_ok=True)
                extracted_file = archive.extractfile(member)
                if extracted_file is None:
                    raise ExtractionError(f"Failed to extract member: {member.name}")
                with extracted_file as source, target_path.open("wb") as target:
                    shutil.copyfileobj(source, target)
                if member.mode & 0o111:
                    mode = target_path.stat().st_mode
                    target_path.chmod(mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
                extracted.append(target_path)
    except (tarfile.TarError, EOFError, OSError) as exc:
        raise ExtractionError(f"Failed to extract tar archive into {destination}: {exc}") from exc
    if logger:
        logger.info(
            "Untarred in %s",
            destination,
            extra={"stage": "extract", "files": len(extracted)},
        )
    return extracted
