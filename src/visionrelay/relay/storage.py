"""Filesystem storage for uploaded images.

Images are stored flat under a single root directory, keyed by name.
Writing an existing name overwrites it (last write wins); there is no
locking and no deletion path.
"""

from __future__ import annotations

import copy
import logging
import secrets
import time
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

import aiofiles
import aiofiles.os

if TYPE_CHECKING:
    from visionrelay.log import RelayLogger

# Staging directory for in-progress writes, inside the storage root.
INCOMING_DIR = ".incoming"
STALE_PARTIAL_SECONDS = 3600
# NAME_MAX on common filesystems.
MAX_NAME_BYTES = 255

_RESERVED_NAMES = {"", ".", "..", INCOMING_DIR}


class ImageNotFoundError(LookupError):
    """No stored image exists under the requested name."""

    def __init__(self, name: str) -> None:
        super().__init__(f"Image not found: {name}")
        self.name = name


class InvalidImageNameError(ValueError):
    """The name cannot address a file directly under the storage root."""

    def __init__(self, name: object) -> None:
        super().__init__(f"Invalid image name: {name!r}")
        self.name = name


class ImageStorage(Protocol):
    """Protocol for image storage backends."""

    def resolve(self, name: str) -> Path:
        """Return the storage location for ``name``."""
        ...

    async def write(self, name: str, data: bytes) -> None:
        """Persist ``data`` under ``name``, replacing any previous content."""
        ...

    async def exists(self, name: str) -> bool:
        """Return True if an image is retrievable under ``name``."""
        ...

    async def read(self, name: str) -> bytes:
        """Return the stored bytes for ``name``.

        Raises:
            ImageNotFoundError: If nothing is stored under ``name``.
        """
        ...


def make_storage_name(filename: str, *, unique: bool = False) -> str:
    """Derive the stored name for an uploaded file.

    The directory part of the client's filename is dropped. With ``unique``
    a random token is prepended so two uploads never share a name; the
    original stem is shortened if needed to stay within ``MAX_NAME_BYTES``.
    """
    base = Path(filename.replace("\\", "/")).name
    if unique and base:
        prefix = f"{secrets.token_hex(8)}_"
        return prefix + _fit_name(base, MAX_NAME_BYTES - len(prefix))
    return base


def _fit_name(name: str, limit: int) -> str:
    if len(name.encode(errors="surrogatepass")) <= limit:
        return name
    suffix = Path(name).suffix
    if len(suffix.encode()) >= limit:
        suffix = ""
    stem = name[: len(name) - len(suffix)]
    room = limit - len(suffix.encode())
    return stem.encode(errors="surrogatepass")[:room].decode(errors="ignore") + suffix


class FileSystemStorage:
    """Stores images as files in a local directory.

    Writes are staged in a hidden ``.incoming`` subdirectory and moved into
    place with an atomic replace, so readers never observe a partial file and
    staged files are never addressable by name.
    """

    def __init__(self, root: str | Path, logger: RelayLogger | None = None) -> None:
        self._root = Path(root).resolve()
        self._incoming = self._root / INCOMING_DIR
        self._incoming.mkdir(parents=True, exist_ok=True)
        self._logger = logger if logger is not None else logging.getLogger(__name__)
        self._sweep_stale_partials()

    @property
    def root(self) -> Path:
        return self._root

    def with_logger(self, logger: RelayLogger) -> FileSystemStorage:
        """Return a storage over the same root that logs through ``logger``."""
        clone = copy.copy(self)
        clone._logger = logger
        return clone

    def resolve(self, name: str) -> Path:
        if (
            not isinstance(name, str)
            or name in _RESERVED_NAMES
            or "/" in name
            or "\\" in name
            or "\x00" in name
            or len(name.encode(errors="surrogatepass")) > MAX_NAME_BYTES
        ):
            raise InvalidImageNameError(name)
        return self._root / name

    async def write(self, name: str, data: bytes) -> None:
        target = self.resolve(name)
        partial = self._incoming / f"{secrets.token_hex(8)}.part"
        try:
            async with aiofiles.open(partial, "wb") as f:
                await f.write(data)
            await aiofiles.os.replace(partial, target)
        except BaseException:
            if await aiofiles.os.path.exists(partial):
                await aiofiles.os.remove(partial)
            raise
        self._logger.info("Stored %s (%d bytes)", name, len(data))

    async def exists(self, name: str) -> bool:
        try:
            path = self.resolve(name)
        except InvalidImageNameError:
            return False
        return await aiofiles.os.path.isfile(path)

    async def read(self, name: str) -> bytes:
        try:
            path = self.resolve(name)
        except InvalidImageNameError:
            raise ImageNotFoundError(str(name)) from None

        try:
            async with aiofiles.open(path, "rb") as f:
                data: bytes = await f.read()
        except (FileNotFoundError, IsADirectoryError):
            raise ImageNotFoundError(name) from None
        return data

    def _sweep_stale_partials(self) -> None:
        # Only old files: another worker may be mid-write on a fresh one.
        cutoff = time.time() - STALE_PARTIAL_SECONDS
        for partial in self._incoming.glob("*.part"):
            try:
                if partial.stat().st_mtime < cutoff:
                    partial.unlink()
                    self._logger.info("Removed stale partial upload %s", partial.name)
            except FileNotFoundError:
                continue
