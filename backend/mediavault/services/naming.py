"""Stored-name derivation.

Every byte written under the storage root lives at ``root / stored_name``.
Stored names are built here and nowhere else: the client's filename is
reduced to ``[A-Za-z0-9._-]`` and combined with a uniqueness token, so two
uploads never target the same path and no name can climb out of the root.
"""
import random
import re
import time
import uuid
from pathlib import PurePosixPath

SAFE_NAME_RE = re.compile(r"[A-Za-z0-9._-]+")
_UNSAFE_CHARS_RE = re.compile(r"[^A-Za-z0-9._-]")
_DOT_RUN_RE = re.compile(r"\.{2,}")

MAX_NAME_LENGTH = 200
MAX_EXTENSION_LENGTH = 16

SCHEME_TIMESTAMP = "timestamp"
SCHEME_UUID = "uuid"


def sanitize(original_name: str | None) -> str:
    """Replace every character outside the safe class with ``_``.

    Runs of dots and leading dots are replaced too, so the result is never
    hidden and never contains ``..``.
    """
    cleaned = _UNSAFE_CHARS_RE.sub("_", original_name or "")
    cleaned = _DOT_RUN_RE.sub("_", cleaned)
    stripped = cleaned.lstrip(".")
    cleaned = "_" * (len(cleaned) - len(stripped)) + stripped
    return cleaned or "file"


def _split_extension(name: str) -> tuple[str, str]:
    suffix = PurePosixPath(name).suffix
    if not suffix or len(suffix) > MAX_EXTENSION_LENGTH:
        return name, ""
    return name[: -len(suffix)], suffix


def _timestamp_token() -> str:
    return f"{int(time.time() * 1000)}-{random.randint(0, 10**9)}"


def _fit(token: str, body: str, ext: str) -> str:
    """Join token, body and extension, trimming the body to stay under MAX_NAME_LENGTH."""
    room = MAX_NAME_LENGTH - len(token) - len(ext)
    return token + body[: max(room, 0)].rstrip(".") + ext


def derive_stored_name(original_name: str | None, scheme: str = SCHEME_TIMESTAMP) -> str:
    """Build a collision-free, filesystem-safe name for an incoming file.

    ``timestamp``: ``<epoch-ms>-<random>-<sanitized original>``
    ``uuid``: ``<uuid4><lowercased extension>``; the original stem is dropped.
    """
    safe = sanitize(original_name)
    body, ext = _split_extension(safe)

    if scheme == SCHEME_UUID:
        return f"{uuid.uuid4()}{ext.lower()}"
    if scheme == SCHEME_TIMESTAMP:
        return _fit(f"{_timestamp_token()}-", body, ext)
    raise ValueError(f"Unknown naming scheme: {scheme}")


def is_safe_name(name: str) -> bool:
    """True if ``name`` could have been issued by derive_stored_name."""
    return (
        bool(name)
        and len(name) <= MAX_NAME_LENGTH
        and not name.startswith(".")
        and ".." not in name
        and SAFE_NAME_RE.fullmatch(name) is not None
    )
