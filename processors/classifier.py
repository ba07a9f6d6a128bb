"""Extension based file classification."""
from __future__ import annotations

import os
from enum import Enum
from typing import Union

IMAGE_EXTENSIONS = (".jpg", ".jpeg", ".png", ".gif")
DESCRIPTOR_EXTENSIONS = (".json",)


class FileKind(str, Enum):
    IMAGE = "image"
    DESCRIPTOR = "descriptor"
    UNKNOWN = "unknown"


def classify(path: Union[str, os.PathLike]) -> FileKind:
    """Return the kind of `path` judged by its suffix alone (case-insensitive)."""
    name = os.fspath(path).lower()
    if name.endswith(IMAGE_EXTENSIONS):
        return FileKind.IMAGE
    if name.endswith(DESCRIPTOR_EXTENSIONS):
        return FileKind.DESCRIPTOR
    return FileKind.UNKNOWN


def is_image(path: Union[str, os.PathLike]) -> bool:
    return classify(path) is FileKind.IMAGE


def is_descriptor(path: Union[str, os.PathLike]) -> bool:
    return classify(path) is FileKind.DESCRIPTOR
