"""File relocation utilities.

`relocate` moves a handled file into one of the terminal directories
(processed or discard) and returns the destination path. Once a file has
been relocated it is no longer in the watch directory, so a duplicate
creation event cannot make it go through the pipeline twice.
"""
from __future__ import annotations

import logging
import os
import shutil
import time
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional, Union

from processors.errors import RelocationError

PathLike = Union[str, os.PathLike]


class Terminal(str, Enum):
    PROCESSED = "processed"
    DISCARD = "discard"


@dataclass(frozen=True)
class RelocationOutcome:
    """Where a file ended up after the handler tried to move it."""

    terminal: Terminal
    destination: Optional[Path]
    moved: bool


def ensure_dir(path: PathLike) -> None:
    os.makedirs(path, exist_ok=True)


def relocate(path: PathLike, dest_dir: PathLike, logger: Optional[logging.Logger] = None) -> Path:
    """Move `path` into `dest_dir` and return the destination path.

    - Creates `dest_dir` (and parents) if needed.
    - Never overwrites: a same-named file gets a numeric suffix.
    - Raises `RelocationError` if the source is gone or the move fails.
    """
    source = Path(path)
    if not source.is_file():
        raise RelocationError(f"source no longer exists: {source}")

    try:
        ensure_dir(dest_dir)
        dest = _free_destination(Path(dest_dir), source.name)
        shutil.move(str(source), str(dest))
    except OSError as exc:
        raise RelocationError(f"cannot move {source} to {dest_dir}: {exc}") from exc

    if logger:
        logger.info("Moved %s to %s", source, dest)

    return dest


def _free_destination(dest_dir: Path, name: str) -> Path:
    dest = dest_dir / name

    # Avoid overwrite by adding numeric suffix
    if dest.exists():
        base, ext = os.path.splitext(name)
        i = 1
        while True:
            candidate = dest_dir / f"{base}-{i}{ext}"
            if not candidate.exists():
                dest = candidate
                break
            i += 1

    return dest


def wait_for_stable(path: PathLike, settle_seconds: float = 0.5, max_tries: int = 10) -> bool:
    """Wait for the size of `path` to stop changing.

    Returns True once two consecutive checks agree, False if the file kept
    changing (or vanished) for `max_tries` checks.
    """
    prev_size = -1
    for _ in range(max_tries):
        try:
            size = os.path.getsize(path)
        except OSError:
            size = -1
        if size == prev_size and size != -1:
            return True
        prev_size = size
        time.sleep(settle_seconds)
    return False
