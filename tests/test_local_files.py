"""Tests for file tokens and local path safety."""

import os
import sys
from pathlib import Path

import pytest

from core.config import Settings
from services.media.cache_store import CacheStore
from services.media.exceptions import (
    ForbiddenError,
    InvalidIdError,
    InvalidTokenError,
    NotFoundError,
)
from services.media.local_files import LocalMediaAccess, decode_token, encode_token

from conftest import VALID_ID


@pytest.fixture
def access(settings: Settings) -> LocalMediaAccess:
    return LocalMediaAccess(settings, CacheStore(settings))


class TestTokens:
    def test_encode_decode(self) -> None:
        token = encode_token("/home/user/Music/song.mp3")

        assert "=" not in token
        assert decode_token(token) == "/home/user/Music/song.mp3"

    @pytest.mark.parametrize("token", ["", "!!!", "%%%%", "_w"])
    def test_malformed_tokens(self, token: str) -> None:
        with pytest.raises(InvalidTokenError):
            decode_token(token)


class TestLocalMediaAccess:
    """Test each path safety rule."""

    def test_allowed_file(self, access: LocalMediaAccess, media_dir: Path) -> None:
        song = media_dir / "song.mp3"
        song.write_bytes(b"id3")

        assert access.resolve(encode_token(str(song))) == song

    def test_nested_allowed_file(self, access: LocalMediaAccess, media_dir: Path) -> None:
        album = media_dir / "Artist" / "Album"
        album.mkdir(parents=True)
        song = album / "01.flac"
        song.write_bytes(b"flac")

        assert access.resolve(encode_token(str(song))) == song

    def test_relative_path(self, access: LocalMediaAccess) -> None:
        with pytest.raises(ForbiddenError):
            access.resolve(encode_token("Music/song.mp3"))

    def test_parent_segments(self, access: LocalMediaAccess, media_dir: Path) -> None:
        with pytest.raises(ForbiddenError):
            access.resolve(encode_token(f"{media_dir}/../secret.mp3"))

    def test_null_byte(self, access: LocalMediaAccess, media_dir: Path) -> None:
        with pytest.raises(ForbiddenError):
            access.resolve(encode_token(f"{media_dir}/song.mp3\x00.txt"))

    def test_outside_allowed_dirs(self, access: LocalMediaAccess, tmp_path: Path) -> None:
        outside = tmp_path / "elsewhere.mp3"
        outside.write_bytes(b"x")

        with pytest.raises(ForbiddenError):
            access.resolve(encode_token(str(outside)))

    def test_non_audio_extension(self, access: LocalMediaAccess, media_dir: Path) -> None:
        notes = media_dir / "notes.txt"
        notes.write_text("hi")

        with pytest.raises(ForbiddenError):
            access.resolve(encode_token(str(notes)))

    def test_missing_file(self, access: LocalMediaAccess, media_dir: Path) -> None:
        with pytest.raises(NotFoundError):
            access.resolve(encode_token(str(media_dir / "gone.mp3")))

    def test_directory_with_audio_name(self, access: LocalMediaAccess, media_dir: Path) -> None:
        (media_dir / "folder.mp3").mkdir()

        with pytest.raises(ForbiddenError):
            access.resolve(encode_token(str(media_dir / "folder.mp3")))

    @pytest.mark.skipif(sys.platform == "win32", reason="symlinks need privileges on Windows")
    def test_symlink_rejected(self, access: LocalMediaAccess, media_dir: Path) -> None:
        target = media_dir / "real.mp3"
        target.write_bytes(b"x")
        link = media_dir / "link.mp3"
        os.symlink(target, link)

        with pytest.raises(ForbiddenError):
            access.resolve(encode_token(str(link)))

    def test_cached_token(self, access: LocalMediaAccess) -> None:
        cached = access.cache.directory / f"{VALID_ID}.m4a"
        cached.write_bytes(b"audio")

        assert access.resolve(encode_token(f"youtube:{VALID_ID}")) == cached

    def test_cached_token_not_cached(self, access: LocalMediaAccess) -> None:
        with pytest.raises(NotFoundError):
            access.resolve(encode_token(f"youtube:{VALID_ID}"))

    def test_cached_token_bad_id(self, access: LocalMediaAccess) -> None:
        with pytest.raises(InvalidIdError):
            access.resolve(encode_token("youtube:../../x"))
