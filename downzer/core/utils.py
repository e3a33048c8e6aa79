"""
Core Utilities

Helpers shared by modes and the control plane.
"""

import os
import re
from datetime import datetime
from pathlib import Path
from typing import Any
from urllib.parse import unquote, urlparse


_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")
MAX_FILENAME_LENGTH = 200


def serialize_value(value: Any) -> Any:
    """
    Serialize a value for JSON.

    Converts:
    - datetime -> ISO string
    - dict -> recursively serialize
    - list -> recursively serialize items
    """
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict):
        return {k: serialize_value(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [serialize_value(v) for v in value]
    return value


def target_filename(target: str, index: int, prefix: str = "download") -> str:
    """
    Deterministic file name for a target.

    The combination index is always part of the name, so two targets
    sharing a last path segment never compete for the same file:
    report.pdf at index 3 becomes report_000003.pdf. Targets without a
    usable segment fall back to {prefix}_{index:06d}.
    """
    path = urlparse(target).path if "://" in target else target
    segment = unquote(path.rstrip("/").rsplit("/", 1)[-1]) if path else ""
    name = _UNSAFE_CHARS.sub("_", segment).strip("._")[:MAX_FILENAME_LENGTH]
    if not name:
        return f"{prefix}_{index:06d}"
    stem, dot, ext = name.rpartition(".")
    if not stem:
        return f"{name}_{index:06d}"
    return f"{stem}_{index:06d}{dot}{ext}"


def write_unique_file(directory: Path, name: str, payload: bytes) -> Path:
    """
    Write payload to directory/name without ever replacing an existing file.

    Names from target_filename are unique within a run, so collisions only
    come from files left by earlier runs. They get _1, _2, ... suffixes
    before the extension. The file is created with O_EXCL, so concurrent
    writers cannot claim the same name.
    """
    directory = Path(directory)
    directory.mkdir(parents=True, exist_ok=True)

    stem, dot, ext = name.rpartition(".")
    if not stem:
        stem, dot, ext = name, "", ""

    counter = 0
    while True:
        candidate = name if counter == 0 else f"{stem}_{counter}{dot}{ext}"
        path = directory / candidate
        try:
            fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o644)
        except FileExistsError:
            counter += 1
            continue
        with os.fdopen(fd, "wb") as f:
            f.write(payload)
        return path
