"""Tests for processors.classifier module"""
from pathlib import Path

import pytest

from processors.classifier import FileKind, classify, is_descriptor, is_image


@pytest.mark.parametrize("name", ["cat.jpg", "cat.JPEG", "dir/cat.png", "Cat.Gif"])
def test_images(name):
    assert classify(name) is FileKind.IMAGE
    assert is_image(Path(name))


@pytest.mark.parametrize("name", ["cat.json", "CAT.JSON"])
def test_descriptors(name):
    assert classify(name) is FileKind.DESCRIPTOR
    assert is_descriptor(name)


@pytest.mark.parametrize("name", ["notes.txt", "cat.png.bak", "json", "", "archive.jsonl"])
def test_unknown(name):
    assert classify(name) is FileKind.UNKNOWN
