"""Utilities for working with the local store of crawl audit artefacts."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Union

_PACKAGE_DIR = Path(__file__).resolve().parent

#: Name of the directory under :mod:`eventcrawler.blobstore` that contains the data.
DEFAULT_BLOB_SUBDIR = "data"

#: Default location where audit artefacts are stored.
DEFAULT_BLOB_ROOT = _PACKAGE_DIR / DEFAULT_BLOB_SUBDIR

#: Environment variable that overrides :data:`DEFAULT_BLOB_ROOT`.
BLOB_ROOT_ENV = "EVENTCRAWLER_AUDIT_DIR"

#: File name of the combined artefact written after every orchestration pass.
ALL_EVENTS_FILENAME = "all_events.json"


_Pathish = Union[str, Path]


def resolve_blob_root(blob_root: _Pathish | None = None) -> Path:
    """Return a :class:`Path` pointing at the blob root.

    ``blob_root`` may be either a string or :class:`Path`.  When ``None`` is
    provided the ``EVENTCRAWLER_AUDIT_DIR`` environment variable is consulted
    before falling back to :data:`DEFAULT_BLOB_ROOT`.  The path is
    not created on disk.
    """

    if blob_root is None:
        override = os.environ.get(BLOB_ROOT_ENV)
        return Path(override) if override else DEFAULT_BLOB_ROOT
    if isinstance(blob_root, Path):
        return blob_root
    return Path(blob_root)


def store_json(path: str, payload: Any, *, blob_root: _Pathish | None = None) -> Path:
    """Save ``payload`` as JSON under the blob root and return the written path."""

    full_path = resolve_blob_root(blob_root) / path
    full_path.parent.mkdir(parents=True, exist_ok=True)
    with full_path.open("w", encoding="utf-8") as file:
        json.dump(payload, file, ensure_ascii=False, indent=2, default=str)
    return full_path


def load_json(path: str, *, blob_root: _Pathish | None = None) -> Any | None:
    """Return the JSON document stored at ``path`` or ``None`` when absent or unreadable."""

    full_path = resolve_blob_root(blob_root) / path
    if not full_path.exists():
        return None
    try:
        with full_path.open("r", encoding="utf-8") as file:
            return json.load(file)
    except (OSError, json.JSONDecodeError):
        return None


__all__ = [
    "ALL_EVENTS_FILENAME",
    "BLOB_ROOT_ENV",
    "DEFAULT_BLOB_ROOT",
    "DEFAULT_BLOB_SUBDIR",
    "load_json",
    "resolve_blob_root",
    "store_json",
]
