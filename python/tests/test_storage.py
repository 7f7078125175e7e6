"""Tests for storage client and path utilities.

Tests cover:
- Audio path building and extension mapping
- StorageClient requests against the Supabase Storage API (mocked)
- FakeStorageClient behavior
"""

from uuid import uuid4

import httpx
import pytest
import respx

from companion.storage import (
    FakeStorageClient,
    StorageClient,
    StorageError,
    build_audio_path,
    get_audio_extension,
    normalize_mime,
)

SUPABASE_URL = "https://project.supabase.test"


class TestPaths:
    def test_codec_parameters_stripped(self):
        assert normalize_mime("Audio/WebM; codecs=opus") == "audio/webm"

    @pytest.mark.parametrize(
        "mime,ext",
        [
            ("audio/webm;codecs=opus", "webm"),
            ("audio/mp4", "m4a"),
            ("audio/x-wav", "wav"),
            ("audio/flac", "flac"),
        ],
    )
    def test_extension(self, mime, ext):
        assert get_audio_extension(mime) == ext

    @pytest.mark.parametrize("mime", ["video/webm", "audio/", "text/plain"])
    def test_non_audio_rejected(self, mime):
        with pytest.raises(ValueError):
            get_audio_extension(mime)

    def test_audio_path_layout(self):
        chat_id, object_id = uuid4(), uuid4()
        path = build_audio_path(chat_id, "audio/ogg", object_id)
        assert path == f"chats/{chat_id}/{object_id}.ogg"

    def test_fresh_object_id_per_call(self):
        chat_id = uuid4()
        assert build_audio_path(chat_id, "audio/webm") != build_audio_path(chat_id, "audio/webm")


class TestStorageClient:
    @pytest.fixture
    def storage(self):
        return StorageClient(SUPABASE_URL, "service-key", bucket="chat-audio")

    @respx.mock
    def test_upload_posts_object(self, storage):
        route = respx.post(f"{SUPABASE_URL}/storage/v1/object/chat-audio/chats/a/b.webm").mock(
            return_value=httpx.Response(200, json={"Key": "chat-audio/chats/a/b.webm"})
        )

        storage.upload_object("chats/a/b.webm", b"audio", content_type="audio/webm")

        request = route.calls.last.request
        assert request.content == b"audio"
        assert request.headers["content-type"] == "audio/webm"
        assert request.headers["authorization"] == "Bearer service-key"

    @respx.mock
    def test_upload_rejected(self, storage):
        respx.post(f"{SUPABASE_URL}/storage/v1/object/chat-audio/x.webm").mock(
            return_value=httpx.Response(400, text="Duplicate")
        )

        with pytest.raises(StorageError) as exc_info:
            storage.upload_object("x.webm", b"audio", content_type="audio/webm")
        assert exc_info.value.code == "E_UPLOAD_FAILED"

    @respx.mock
    def test_upload_unreachable(self, storage):
        respx.post(f"{SUPABASE_URL}/storage/v1/object/chat-audio/x.webm").mock(
            side_effect=httpx.ConnectError("refused")
        )

        with pytest.raises(StorageError):
            storage.upload_object("x.webm", b"audio", content_type="audio/webm")

    def test_public_url(self, storage):
        assert (
            storage.public_url("chats/a/b.webm")
            == f"{SUPABASE_URL}/storage/v1/object/public/chat-audio/chats/a/b.webm"
        )

    @respx.mock
    def test_delete_failure_is_absorbed(self, storage):
        respx.delete(f"{SUPABASE_URL}/storage/v1/object/chat-audio/x.webm").mock(
            return_value=httpx.Response(500)
        )
        storage.delete_object("x.webm")


class TestFakeStorageClient:
    def test_round_trip(self):
        storage = FakeStorageClient()
        storage.upload_object("chats/a/b.webm", b"audio", content_type="audio/webm")

        assert storage.get_object("chats/a/b.webm") == b"audio"
        assert storage.paths() == ["chats/a/b.webm"]

        storage.delete_object("chats/a/b.webm")
        assert storage.get_object("chats/a/b.webm") is None

    def test_fail_uploads(self):
        with pytest.raises(StorageError):
            FakeStorageClient(fail_uploads=True).upload_object(
                "x", b"", content_type="audio/webm"
            )
