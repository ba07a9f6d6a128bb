"""Upload of validated image descriptors to the messaging sink."""
from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Optional, Protocol

import requests

from processors.classifier import is_image
from processors.descriptor import ImageDescriptor
from processors.errors import (
    LookupFailed,
    NotAnImage,
    SinkRejected,
    SinkUnavailable,
    SourceUnreadable,
)

ANONYMOUS_AUTHOR = "Anonymous"
UNKNOWN_AUTHOR = "Author Unknown"

SLACK_API_URL = "https://slack.com/api"
DEFAULT_TIMEOUT = 30.0


class Sink(Protocol):
    def upload_file(
        self,
        content: bytes,
        filename: str,
        title: str,
        channel: str,
        initial_comment: str,
    ) -> None:
        ...


class AuthorLookup(Protocol):
    def resolve(self, key: str) -> str:
        ...


class SlackSink:
    """Uploads files to a Slack channel through the Web API.

    Uses the external upload flow: ask for an upload URL, send the bytes,
    then complete the upload into the channel with title and comment.
    Every request is bounded by `timeout` seconds.
    """

    def __init__(
        self,
        token: str,
        timeout: float = DEFAULT_TIMEOUT,
        api_url: str = SLACK_API_URL,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.token = token
        self.timeout = timeout
        self.api_url = api_url.rstrip("/")
        self.session = session or requests.Session()
        self.session.headers.update({"Authorization": f"Bearer {token}"})

    def upload_file(
        self,
        content: bytes,
        filename: str,
        title: str,
        channel: str,
        initial_comment: str,
    ) -> None:
        ticket = self._call(
            "files.getUploadURLExternal",
            data={"filename": filename, "length": str(len(content))},
        )
        upload_url = ticket.get("upload_url")
        file_id = ticket.get("file_id")
        if not upload_url or not file_id:
            raise SinkRejected("files.getUploadURLExternal returned no upload_url/file_id")

        try:
            response = self.session.post(
                upload_url,
                files={"file": (filename, content)},
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise SinkUnavailable(f"upload of {filename} failed: {exc}") from exc
        self._check_status(response, "file upload")

        self._call(
            "files.completeUploadExternal",
            json={
                "files": [{"id": file_id, "title": title}],
                "channel_id": channel,
                "initial_comment": initial_comment,
            },
        )

    def _call(self, method: str, **kwargs) -> dict:
        try:
            response = self.session.post(f"{self.api_url}/{method}", timeout=self.timeout, **kwargs)
        except requests.RequestException as exc:
            raise SinkUnavailable(f"{method} failed: {exc}") from exc
        self._check_status(response, method)

        try:
            payload = response.json()
        except ValueError as exc:
            raise SinkRejected(f"{method} returned a non-JSON response") from exc
        if not isinstance(payload, dict):
            raise SinkRejected(f"{method} returned an unexpected response")
        if not payload.get("ok"):
            raise SinkRejected(f"{method} error: {payload.get('error', 'unknown')}")
        return payload

    @staticmethod
    def _check_status(response: requests.Response, what: str) -> None:
        if response.status_code == 429 or response.status_code >= 500:
            raise SinkUnavailable(f"{what} returned HTTP {response.status_code}")
        if response.status_code >= 400:
            raise SinkRejected(f"{what} returned HTTP {response.status_code}")


class CredentialsAuthorLookup:
    """Resolves author keys from JSON credential files.

    Each file in `credentials_dir` holds ``{"api_key": ..., "name": ...}``.
    A file named ``<key>.json`` is checked first, then every ``*.json`` file.
    """

    def __init__(self, credentials_dir: os.PathLike | str, logger: Optional[logging.Logger] = None) -> None:
        self.credentials_dir = Path(credentials_dir)
        self.logger = logger or logging.getLogger("image_relay")

    def resolve(self, key: str) -> str:
        if not self.credentials_dir.is_dir():
            raise LookupFailed(f"credentials directory {self.credentials_dir} does not exist")

        candidates = []
        if key and os.sep not in key and "/" not in key and not key.startswith("."):
            candidates.append(self.credentials_dir / f"{key}.json")
        candidates.extend(sorted(self.credentials_dir.glob("*.json")))

        for path in candidates:
            record = self._load(path)
            if record is None or record.get("api_key") != key:
                continue
            name = record.get("name")
            if isinstance(name, str) and name:
                return name
        raise LookupFailed("no credentials entry for author key")

    def _load(self, path: Path) -> Optional[dict]:
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as exc:
            self.logger.debug("Skipping credentials file %s: %s", path, exc)
            return None
        return data if isinstance(data, dict) else None


class Uploader:
    """Sends one validated descriptor (and its image) to the sink."""

    def __init__(
        self,
        sink: Sink,
        channel: str,
        author_lookup: Optional[AuthorLookup] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.sink = sink
        self.channel = channel
        self.author_lookup = author_lookup
        self.logger = logger or logging.getLogger("image_relay")

    def resolve_author(self, key: Optional[str]) -> str:
        if not key:
            return ANONYMOUS_AUTHOR
        if self.author_lookup is None:
            return UNKNOWN_AUTHOR
        try:
            return self.author_lookup.resolve(key)
        except LookupFailed as exc:
            self.logger.warning("Author lookup failed, using %r: %s", UNKNOWN_AUTHOR, exc)
            return UNKNOWN_AUTHOR

    def upload(self, descriptor: ImageDescriptor) -> None:
        """Upload the image referenced by `descriptor`.

        Raises `NotAnImage` or `SourceUnreadable` before touching the sink,
        and `SinkUnavailable` / `SinkRejected` when the single sink call fails.
        """
        image_path = descriptor.image_path
        if not is_image(image_path):
            raise NotAnImage(f"{image_path} is not an image")

        try:
            with open(image_path, "rb") as fh:
                content = fh.read()
        except OSError as exc:
            raise SourceUnreadable(f"cannot open {image_path}: {exc}") from exc

        author = self.resolve_author(descriptor.author_key)
        self.sink.upload_file(
            content=content,
            filename=image_path.name,
            title=author,
            channel=self.channel,
            initial_comment=descriptor.comment,
        )
        self.logger.info("Uploaded %s to %s", image_path.name, self.channel)
