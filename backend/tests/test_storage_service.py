"""Tests for local artifact storage."""

import pytest


class TestLocalStorageService:
    def test_key_for_render(self, storage):
        assert storage.key_for_render("render_1_a", "webm") == "renders/render_1_a.webm"

    def test_upload_returns_public_url(self, storage):
        url = storage.upload_file_from_bytes("renders/x.mp4", b"data")

        assert url == "http://testserver/api/storage/files/renders/x.mp4"
        assert storage.get_file_path("renders/x.mp4").read_bytes() == b"data"

    def test_delete_file(self, storage):
        storage.upload_file_from_bytes("renders/x.mp4", b"data")

        assert storage.delete_file("renders/x.mp4") is True
        assert not storage.file_exists("renders/x.mp4")
        assert storage.delete_file("renders/x.mp4") is False

    def test_rejects_keys_outside_root(self, storage):
        with pytest.raises(ValueError):
            storage.get_file_path("../../etc/passwd")
