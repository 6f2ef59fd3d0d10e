"""
auth/avatars.py -- Avatar ingestion: stage, decode, resize, publish.

ingest() takes the raw upload stream and returns the relative path stored on
the Account ("avatars/{account_id}.{ext}"). Steps:

  1. Validate the extension of the original filename.
  2. Stream the upload into a uniquely named temp file, enforcing a size cap.
  3. Decode with Pillow and resize to a fixed square canvas in place.
  4. os.replace() the processed temp file onto the account's avatar path.
     The rename is atomic, so the previous avatar stays served until the
     new one is complete.

Whatever step fails, the temp file is removed before the error propagates.
Undecodable input raises ValidationError; filesystem trouble raises
InternalError.

The work is blocking (disk and image decode). Callers on the event loop run
it in the worker thread pool.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import hashlib
import logging
import os
import uuid
from collections.abc import Iterable
from pathlib import Path, PurePath
from typing import BinaryIO

from PIL import Image, UnidentifiedImageError

from auth.errors import InternalError, ValidationError

logger = logging.getLogger("contactsauth.avatars")

_CHUNK_SIZE = 64 * 1024

# Formats that cannot store an alpha channel.
_OPAQUE_EXTENSIONS = frozenset({"jpg", "jpeg", "bmp"})
_WRITABLE_MODES = frozenset({"RGB", "RGBA", "L", "P"})


def default_avatar_url(email: str) -> str:
    """Gravatar URL for an email, used until the account uploads its own image."""
    digest = hashlib.md5(email.strip().lower().encode("utf-8"), usedforsecurity=False).hexdigest()
    return f"https://www.gravatar.com/avatar/{digest}?s=250&d=identicon"


class AvatarPipeline:
    """Turns an uploaded image into the account's published avatar file."""

    def __init__(
        self,
        avatars_dir: Path,
        tmp_dir: Path,
        size: int = 250,
        max_bytes: int = 5 * 1024 * 1024,
        allowed_extensions: Iterable[str] = ("jpg", "jpeg", "png", "gif", "bmp", "webp"),
    ) -> None:
        self.avatars_dir = Path(avatars_dir)
        self.tmp_dir = Path(tmp_dir)
        self.size = size
        self.max_bytes = max_bytes
        self.allowed_extensions = frozenset(e.lower().lstrip(".") for e in allowed_extensions)
        self.avatars_dir.mkdir(parents=True, exist_ok=True)
        self.tmp_dir.mkdir(parents=True, exist_ok=True)

    def ingest(self, account_id: str, filename: str | None, stream: BinaryIO) -> str:
        """Publish the uploaded image as the account's avatar and return its relative path."""
        ext = self._extension(filename)
        tmp_path = self.tmp_dir / f"{uuid.uuid4().hex}.{ext}"
        target = self.avatars_dir / f"{account_id}.{ext}"
        try:
            self._stage(stream, tmp_path)
            self._resize(tmp_path, ext)
            try:
                os.replace(tmp_path, target)
            except OSError as exc:
                raise InternalError(f"could not publish avatar {target}: {exc}") from exc
        finally:
            # No-op after a successful replace.
            tmp_path.unlink(missing_ok=True)

        self._remove_stale(account_id, keep=target)
        logger.info("Avatar stored for account %s at %s", account_id, target)
        return f"avatars/{target.name}"

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    def _extension(self, filename: str | None) -> str:
        suffix = PurePath(filename or "").suffix.lower().lstrip(".")
        if not suffix:
            raise ValidationError("Avatar file must have an extension")
        if suffix not in self.allowed_extensions:
            raise ValidationError(
                f"Unsupported avatar format '.{suffix}'. Allowed: {', '.join(sorted(self.allowed_extensions))}"
            )
        return suffix

    def _stage(self, stream: BinaryIO, tmp_path: Path) -> None:
        total = 0
        try:
            with open(tmp_path, "wb") as out:
                while True:
                    chunk = stream.read(_CHUNK_SIZE)
                    if not chunk:
                        break
                    total += len(chunk)
                    if total > self.max_bytes:
                        raise ValidationError(f"Avatar exceeds {self.max_bytes} bytes")
                    out.write(chunk)
        except OSError as exc:
            raise InternalError(f"could not stage upload at {tmp_path}: {exc}") from exc
        if total == 0:
            raise ValidationError("Avatar file is empty")

    def _resize(self, path: Path, ext: str) -> None:
        try:
            with Image.open(path) as img:
                img.load()
                resized = img.resize((self.size, self.size))
        except (UnidentifiedImageError, Image.DecompressionBombError, OSError, ValueError, SyntaxError) as exc:
            raise ValidationError("Unsupported or corrupt image file") from exc

        if ext in _OPAQUE_EXTENSIONS:
            if resized.mode not in ("RGB", "L"):
                resized = resized.convert("RGB")
        elif resized.mode not in _WRITABLE_MODES:
            resized = resized.convert("RGBA")

        try:
            resized.save(path)
        except OSError as exc:
            raise InternalError(f"could not write resized avatar {path}: {exc}") from exc

    def _remove_stale(self, account_id: str, keep: Path) -> None:
        """Drop avatars this account stored earlier under a different extension."""
        for old in self.avatars_dir.glob(f"{account_id}.*"):
            if old == keep:
                continue
            try:
                old.unlink(missing_ok=True)
            except OSError as e:
                logger.warning("Could not remove stale avatar %s: %s", old, e)
