"""Tests for processors.uploader module"""
import json
import logging
from unittest.mock import Mock

import pytest
import requests

from processors.descriptor import DEFAULT_COMMENT, ImageDescriptor
from processors.errors import (
    LookupFailed,
    NotAnImage,
    SinkRejected,
    SinkUnavailable,
    SourceUnreadable,
)
from processors.uploader import (
    ANONYMOUS_AUTHOR,
    UNKNOWN_AUTHOR,
    CredentialsAuthorLookup,
    SlackSink,
    Uploader,
)


@pytest.fixture
def image(tmp_path):
    path = tmp_path / "cat.png"
    path.write_bytes(b"\x89PNG fake")
    return path


class TestUploader:
    """Test suite for Uploader"""

    def test_upload_calls_sink_once(self, image):
        sink = Mock()
        uploader = Uploader(sink, "C123")

        uploader.upload(ImageDescriptor(image_path=image, caption="hi"))

        sink.upload_file.assert_called_once_with(
            content=b"\x89PNG fake",
            filename="cat.png",
            title=ANONYMOUS_AUTHOR,
            channel="C123",
            initial_comment="hi",
        )

    def test_default_comment(self, image):
        sink = Mock()
        Uploader(sink, "C123").upload(ImageDescriptor(image_path=image))
        assert sink.upload_file.call_args.kwargs["initial_comment"] == DEFAULT_COMMENT

    def test_not_an_image(self, tmp_path):
        sink = Mock()
        text = tmp_path / "notes.txt"
        text.write_text("x")

        with pytest.raises(NotAnImage):
            Uploader(sink, "C123").upload(ImageDescriptor(image_path=text))

        sink.upload_file.assert_not_called()

    def test_missing_image(self, tmp_path):
        sink = Mock()

        with pytest.raises(SourceUnreadable):
            Uploader(sink, "C123").upload(ImageDescriptor(image_path=tmp_path / "missing.png"))

        sink.upload_file.assert_not_called()

    def test_sink_errors_propagate(self, image):
        sink = Mock()
        sink.upload_file.side_effect = SinkRejected("channel_not_found")

        with pytest.raises(SinkRejected):
            Uploader(sink, "C123").upload(ImageDescriptor(image_path=image))

        assert sink.upload_file.call_count == 1

    def test_author_resolved(self, image):
        sink = Mock()
        lookup = Mock()
        lookup.resolve.return_value = "Ada"

        Uploader(sink, "C123", author_lookup=lookup).upload(ImageDescriptor(image_path=image, author_key="k1"))

        lookup.resolve.assert_called_once_with("k1")
        assert sink.upload_file.call_args.kwargs["title"] == "Ada"

    def test_author_lookup_failure_is_not_fatal(self, image):
        sink = Mock()
        lookup = Mock()
        lookup.resolve.side_effect = LookupFailed("nope")
        logger = Mock(spec=logging.Logger)

        Uploader(sink, "C123", author_lookup=lookup, logger=logger).upload(
            ImageDescriptor(image_path=image, author_key="k1")
        )

        assert sink.upload_file.call_args.kwargs["title"] == UNKNOWN_AUTHOR
        assert logger.warning.called

    def test_author_key_without_lookup(self, image):
        sink = Mock()
        Uploader(sink, "C123").upload(ImageDescriptor(image_path=image, author_key="k1"))
        assert sink.upload_file.call_args.kwargs["title"] == UNKNOWN_AUTHOR


class TestCredentialsAuthorLookup:
    """Test suite for CredentialsAuthorLookup"""

    def test_named_file(self, tmp_path):
        (tmp_path / "k1.json").write_text(json.dumps({"api_key": "k1", "name": "Ada"}))
        assert CredentialsAuthorLookup(tmp_path).resolve("k1") == "Ada"

    def test_scans_all_files(self, tmp_path):
        (tmp_path / "a.json").write_text("{broken")
        (tmp_path / "b.json").write_text(json.dumps({"api_key": "other", "name": "Bob"}))
        (tmp_path / "c.json").write_text(json.dumps({"api_key": "k2", "name": "Cy"}))
        assert CredentialsAuthorLookup(tmp_path).resolve("k2") == "Cy"

    def test_unknown_key(self, tmp_path):
        (tmp_path / "b.json").write_text(json.dumps({"api_key": "other", "name": "Bob"}))
        with pytest.raises(LookupFailed):
            CredentialsAuthorLookup(tmp_path).resolve("k1")

    def test_missing_directory(self, tmp_path):
        with pytest.raises(LookupFailed):
            CredentialsAuthorLookup(tmp_path / "nope").resolve("k1")

    def test_key_in_file_must_match(self, tmp_path):
        (tmp_path / "k1.json").write_text(json.dumps({"api_key": "different", "name": "Eve"}))
        with pytest.raises(LookupFailed):
            CredentialsAuthorLookup(tmp_path).resolve("k1")


def response(status=200, payload=None):
    resp = Mock(spec=requests.Response)
    resp.status_code = status
    resp.json.return_value = payload if payload is not None else {"ok": True}
    return resp


class TestSlackSink:
    """Test suite for SlackSink (no network)"""

    @pytest.fixture
    def session(self):
        session = Mock(spec=requests.Session)
        session.headers = {}
        return session

    def test_upload_flow(self, session):
        session.post.side_effect = [
            response(payload={"ok": True, "upload_url": "https://files.example/u", "file_id": "F1"}),
            response(),
            response(payload={"ok": True}),
        ]
        sink = SlackSink("xoxb-token", timeout=5, session=session)

        sink.upload_file(b"data", "cat.png", "Ada", "C123", "hi")

        assert session.headers["Authorization"] == "Bearer xoxb-token"
        calls = session.post.call_args_list
        assert calls[0].args[0].endswith("/files.getUploadURLExternal")
        assert calls[0].kwargs["data"] == {"filename": "cat.png", "length": "4"}
        assert calls[1].args[0] == "https://files.example/u"
        assert calls[2].args[0].endswith("/files.completeUploadExternal")
        assert calls[2].kwargs["json"] == {
            "files": [{"id": "F1", "title": "Ada"}],
            "channel_id": "C123",
            "initial_comment": "hi",
        }
        assert all(call.kwargs["timeout"] == 5 for call in calls)

    def test_connection_error(self, session):
        session.post.side_effect = requests.ConnectionError("down")
        with pytest.raises(SinkUnavailable):
            SlackSink("t", session=session).upload_file(b"d", "cat.png", "A", "C", "c")

    def test_timeout(self, session):
        session.post.side_effect = requests.Timeout("slow")
        with pytest.raises(SinkUnavailable):
            SlackSink("t", session=session).upload_file(b"d", "cat.png", "A", "C", "c")

    def test_api_error(self, session):
        session.post.return_value = response(payload={"ok": False, "error": "invalid_auth"})
        with pytest.raises(SinkRejected, match="invalid_auth"):
            SlackSink("t", session=session).upload_file(b"d", "cat.png", "A", "C", "c")

    def test_server_error(self, session):
        session.post.return_value = response(status=503)
        with pytest.raises(SinkUnavailable):
            SlackSink("t", session=session).upload_file(b"d", "cat.png", "A", "C", "c")

    def test_client_error_on_upload(self, session):
        session.post.side_effect = [
            response(payload={"ok": True, "upload_url": "https://files.example/u", "file_id": "F1"}),
            response(status=403),
        ]
        with pytest.raises(SinkRejected):
            SlackSink("t", session=session).upload_file(b"d", "cat.png", "A", "C", "c")
        assert session.post.call_count == 2

    def test_non_object_response(self, session):
        session.post.return_value = response(payload=["ok"])
        with pytest.raises(SinkRejected, match="unexpected response"):
            SlackSink("t", session=session).upload_file(b"d", "cat.png", "A", "C", "c")
