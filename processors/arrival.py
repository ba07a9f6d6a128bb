"""Per-arrival state machine: classify, validate, upload, relocate.

The handler owns every relocation decision. It holds its exclusivity lock
for the whole body of `handle`, so no two arrivals are processed at the
same time however many threads call it.
"""
from __future__ import annotations

import logging
import os
import threading
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import List, Optional, Union

from processors.classifier import FileKind, classify
from processors.descriptor import ImageDescriptor, validate
from processors.errors import (
    InvalidDescriptor,
    RelayError,
    RelocationError,
    SinkUnavailable,
    UnreadableFile,
    UploadError,
)
from processors.events import ArrivalEvent
from processors.file_processor import RelocationOutcome, Terminal, relocate
from processors.uploader import Uploader


class ArrivalState(str, Enum):
    ARRIVED = "arrived"
    CLASSIFIED = "classified"
    IMAGE_IGNORED = "image_ignored"
    UNKNOWN_IGNORED = "unknown_ignored"
    UNREADABLE = "unreadable"
    DESCRIPTOR_VALIDATED = "descriptor_validated"
    DESCRIPTOR_DISCARDED = "descriptor_discarded"
    UPLOADED = "uploaded"
    UPLOAD_FAILED = "upload_failed"
    RELOCATED = "relocated"
    RELOCATION_FAILED = "relocation_failed"


@dataclass
class HandlingResult:
    """Final state of one arrival, with where the descriptor went."""

    path: Path
    state: ArrivalState
    outcome: Optional[RelocationOutcome] = None
    error: Optional[RelayError] = None
    history: List[ArrivalState] = field(default_factory=list)


@dataclass
class HandlerStats:
    events: int = 0
    uploaded: int = 0
    discarded: int = 0
    ignored: int = 0
    failed: int = 0


@dataclass
class TerminalDirs:
    processed: Path
    discard: Path

    def path_for(self, terminal: Terminal) -> Path:
        return self.processed if terminal is Terminal.PROCESSED else self.discard


@dataclass
class ArrivalHandler:
    """Processes arrival events one at a time.

    `lock` is the exclusivity token; pass the same lock to several handlers
    to serialize them against each other.
    """

    terminals: TerminalDirs
    uploader: Uploader
    root: Optional[Path] = None
    lock: threading.Lock = field(default_factory=threading.Lock)
    upload_attempts: int = 1
    discard_on_upload_failure: bool = False
    relocate_images: bool = False
    logger: logging.Logger = field(default_factory=lambda: logging.getLogger("image_relay"))
    stats: HandlerStats = field(default_factory=HandlerStats)

    def handle(self, arrival: Union[ArrivalEvent, str, os.PathLike]) -> HandlingResult:
        path = arrival.path if isinstance(arrival, ArrivalEvent) else Path(arrival)
        self.logger.debug("Waiting for exclusivity to handle %s", path)
        with self.lock:
            self.stats.events += 1
            result = self._process(path)
            self._count(result)
        return result

    def _process(self, path: Path) -> HandlingResult:
        history = [ArrivalState.ARRIVED]
        kind = classify(path)
        history.append(ArrivalState.CLASSIFIED)
        self.logger.debug("%s classified as %s", path, kind.value)

        if kind is FileKind.IMAGE:
            # Bare images wait for a descriptor that references them.
            return self._stop(path, ArrivalState.IMAGE_IGNORED, history)
        if kind is FileKind.UNKNOWN:
            return self._stop(path, ArrivalState.UNKNOWN_IGNORED, history)

        try:
            descriptor = validate(path, root=self.root)
        except UnreadableFile as exc:
            self.logger.warning("Cannot read descriptor %s: %s", path, exc)
            return self._stop(path, ArrivalState.UNREADABLE, history, exc)
        except InvalidDescriptor as exc:
            self.logger.warning("Invalid descriptor %s (%s), moving to discard", path, exc)
            return self._finish(path, Terminal.DISCARD, ArrivalState.DESCRIPTOR_DISCARDED, history, exc)

        history.append(ArrivalState.DESCRIPTOR_VALIDATED)
        self.logger.info("Valid descriptor %s for image %s", path, descriptor.image_path)

        error = self._upload(descriptor)
        if error is not None:
            if self.discard_on_upload_failure:
                history.append(ArrivalState.UPLOAD_FAILED)
                return self._finish(path, Terminal.DISCARD, ArrivalState.DESCRIPTOR_DISCARDED, history, error)
            self.logger.warning("Leaving %s in place after failed upload", path)
            return self._stop(path, ArrivalState.UPLOAD_FAILED, history, error)

        history.append(ArrivalState.UPLOADED)
        if self.relocate_images:
            self._move_image(descriptor)
        return self._finish(path, Terminal.PROCESSED, ArrivalState.RELOCATED, history)

    def _upload(self, descriptor: ImageDescriptor) -> Optional[UploadError]:
        error: Optional[UploadError] = None
        for attempt in range(1, max(self.upload_attempts, 1) + 1):
            try:
                self.uploader.upload(descriptor)
                return None
            except UploadError as exc:
                error = exc
                self.logger.warning(
                    "Upload of %s failed (attempt %s/%s): %s",
                    descriptor.image_path,
                    attempt,
                    self.upload_attempts,
                    exc,
                )
                if not _retryable(exc):
                    break
        return error

    def _stop(
        self,
        path: Path,
        state: ArrivalState,
        history: List[ArrivalState],
        error: Optional[RelayError] = None,
    ) -> HandlingResult:
        history.append(state)
        return HandlingResult(path, state, error=error, history=history)

    def _finish(
        self,
        path: Path,
        terminal: Terminal,
        state: ArrivalState,
        history: List[ArrivalState],
        error: Optional[RelayError] = None,
    ) -> HandlingResult:
        try:
            dest = relocate(path, self.terminals.path_for(terminal), logger=self.logger)
        except RelocationError as exc:
            self.logger.error("Could not relocate %s to %s: %s", path, terminal.value, exc)
            history.append(ArrivalState.RELOCATION_FAILED)
            outcome = RelocationOutcome(terminal, None, moved=False)
            return HandlingResult(path, ArrivalState.RELOCATION_FAILED, outcome, exc, history)
        history.append(state)
        return HandlingResult(path, state, RelocationOutcome(terminal, dest, moved=True), error, history)

    def _move_image(self, descriptor: ImageDescriptor) -> None:
        try:
            relocate(descriptor.image_path, self.terminals.processed, logger=self.logger)
        except RelocationError as exc:
            self.logger.error("Could not relocate image %s: %s", descriptor.image_path, exc)

    def _count(self, result: HandlingResult) -> None:
        state = result.state
        if state is ArrivalState.RELOCATED:
            self.stats.uploaded += 1
        elif state is ArrivalState.DESCRIPTOR_DISCARDED:
            self.stats.discarded += 1
        elif state in (ArrivalState.IMAGE_IGNORED, ArrivalState.UNKNOWN_IGNORED):
            self.stats.ignored += 1
        else:
            self.stats.failed += 1


def _retryable(exc: UploadError) -> bool:
    return isinstance(exc, SinkUnavailable)
