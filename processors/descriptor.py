"""Descriptor parsing and validation.

A descriptor is a JSON object sitting next to an image in the watch
directory::

    {"ImagePath": "cat.png", "Caption": "hi", "AuthorKey": "abc123"}

`ApiKey` is accepted in place of `AuthorKey`. Unknown fields are ignored.
Validation never moves files; the arrival handler decides where an invalid
descriptor goes.
"""
from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional, Union

from processors.errors import InvalidDescriptor, UnreadableFile

DEFAULT_COMMENT = "New image uploaded to Slack!"


@dataclass(frozen=True)
class ImageDescriptor:
    image_path: Path
    caption: Optional[str] = None
    author_key: Optional[str] = None
    source: Optional[Path] = None

    @property
    def comment(self) -> str:
        return self.caption or DEFAULT_COMMENT


def validate(path: Union[str, os.PathLike], root: Optional[Union[str, os.PathLike]] = None) -> ImageDescriptor:
    """Read the descriptor at `path` and return the parsed record.

    - Raises `UnreadableFile` if the file cannot be read.
    - Raises `InvalidDescriptor` for malformed or schema-mismatched content.
    - When `root` is given, the referenced image must live under it.
    """
    source = Path(path)
    try:
        raw = source.read_bytes()
    except OSError as exc:
        raise UnreadableFile(f"cannot read {source}: {exc}") from exc
    return parse_descriptor(raw, source=source, root=root)


def parse_descriptor(
    text: Union[str, bytes],
    source: Optional[Path] = None,
    root: Optional[Union[str, os.PathLike]] = None,
) -> ImageDescriptor:
    if isinstance(text, bytes):
        try:
            text = text.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise InvalidDescriptor(f"descriptor is not valid UTF-8: {exc}") from exc
    try:
        data = json.loads(text)
    except RecursionError as exc:
        raise InvalidDescriptor("descriptor is nested too deeply") from exc
    except ValueError as exc:
        raise InvalidDescriptor(f"invalid JSON: {exc}") from exc

    if not isinstance(data, dict):
        raise InvalidDescriptor("descriptor must be a JSON object")

    raw_image = data.get("ImagePath")
    if not isinstance(raw_image, str) or not raw_image.strip():
        raise InvalidDescriptor("ImagePath must be a non-empty string")

    caption = _optional_str(data, "Caption")
    author_key = _optional_str(data, "AuthorKey")
    if author_key is None:
        author_key = _optional_str(data, "ApiKey")

    image_path = Path(raw_image)
    if not image_path.is_absolute() and source is not None:
        image_path = source.parent / image_path
    image_path = Path(os.path.abspath(image_path))

    if root is not None and not _is_within(image_path, Path(os.path.abspath(root))):
        raise InvalidDescriptor(f"ImagePath {raw_image!r} is outside the watch directory")

    return ImageDescriptor(
        image_path=image_path,
        caption=caption,
        author_key=author_key,
        source=source,
    )


def _optional_str(data: dict, key: str) -> Optional[str]:
    value: Any = data.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise InvalidDescriptor(f"{key} must be a string")
    return value or None


def _is_within(path: Path, root: Path) -> bool:
    try:
        path.relative_to(root)
    except ValueError:
        return False
    return True
