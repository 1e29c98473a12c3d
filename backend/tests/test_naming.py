"""Tests for stored-name derivation."""
import re
import uuid

import pytest

from mediavault.services.naming import (
    MAX_NAME_LENGTH,
    SCHEME_UUID,
    derive_stored_name,
    is_safe_name,
    sanitize,
)

SAFE = re.compile(r"^[A-Za-z0-9._-]+$")


class TestSanitize:
    """Tests for reducing client filenames to the safe character class."""

    @pytest.mark.parametrize("original,expected", [
        ("holiday.mp4", "holiday.mp4"),
        ("my video (1).mov", "my_video__1_.mov"),
        ("../../etc/passwd", "____etc_passwd"),
        ("..", "_"),
        ("clip..final.mp4", "clip_final.mp4"),
        (".hidden.mp4", "_hidden.mp4"),
        ("C:\\Users\\x.mp4", "C__Users_x.mp4"),
        ("vidéo.mp4", "vid_o.mp4"),
        ("", "file"),
        (None, "file"),
    ])
    def test_sanitize(self, original, expected):
        assert sanitize(original) == expected


class TestDeriveStoredName:
    """Tests for the collision-free stored names."""

    def test_timestamp_scheme_shape(self):
        name = derive_stored_name("clip one.mp4")
        assert re.fullmatch(r"\d{13,}-\d+-clip_one\.mp4", name)

    def test_uuid_scheme_keeps_lowercased_extension_only(self):
        name = derive_stored_name("Party Night.MOV", scheme=SCHEME_UUID)
        stem, ext = name[:-4], name[-4:]
        assert ext == ".mov"
        assert str(uuid.UUID(stem)) == stem

    def test_unknown_scheme(self):
        with pytest.raises(ValueError, match="Unknown naming scheme"):
            derive_stored_name("a.mp4", scheme="sequential")

    @pytest.mark.parametrize("original", [
        "../../../../etc/shadow",
        "..\\..\\boot.ini",
        "a/b/c.mp4",
        "\x00evil.mp4",
        "..",
        ".",
        "  ",
        "名前.mp4",
    ])
    def test_hostile_names_come_out_safe(self, original):
        for scheme in ("timestamp", SCHEME_UUID):
            name = derive_stored_name(original, scheme=scheme)
            assert SAFE.match(name)
            assert ".." not in name
            assert not name.startswith(".")
            assert is_safe_name(name)

    def test_long_names_are_bounded_and_keep_extension(self):
        name = derive_stored_name("x" * 1000 + ".webm")
        assert len(name) <= MAX_NAME_LENGTH
        assert name.endswith(".webm")

    def test_ten_thousand_sequential_names_are_unique(self):
        names = [derive_stored_name("same.mp4") for _ in range(10_000)]
        assert len(set(names)) == len(names)
        assert all(SAFE.match(n) for n in names)


class TestIsSafeName:
    @pytest.mark.parametrize("name,expected", [
        ("1700000000000-42-clip.mp4", True),
        ("..", False),
        ("a..b.mp4", False),
        (".part", False),
        ("a/b", False),
        ("a\\b", False),
        ("", False),
        ("x" * (MAX_NAME_LENGTH + 1), False),
    ])
    def test_is_safe_name(self, name, expected):
        assert is_safe_name(name) is expected
