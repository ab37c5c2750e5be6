"""
Album art cache.

Decodes embedded artwork, scales it to a fixed thumbnail size and stores
it on disk as JPEG under a signature derived from the owning entry. The
work runs on a small thread pool; callers receive a Future and may wait on
it (the metadata sync worker does, one artwork at a time).

Dependencies:
    - Pillow: Image decoding and thumbnailing

Usage:
    art_cache = AlbumArtCache(storage.album_art_directory)
    future = art_cache.submit(signature, picture_bytes)
    path = future.result()  # raises ArtworkError on failure
"""

import io
import os
import tempfile
from concurrent.futures import Future, ThreadPoolExecutor
from pathlib import Path

from PIL import Image, UnidentifiedImageError

from kite_sync.core.exceptions import ArtworkError
from kite_sync.core.logger import get_logger

logger = get_logger(__name__)


LARGE_ALBUM_ART_DIMENSIONS = (480, 480)
SMALL_ALBUM_ART_DIMENSIONS = (128, 128)
JPEG_QUALITY = 90


class AlbumArtCache:
    """
    Disk cache of decoded album art thumbnails.

    Attributes:
        directory: Where thumbnails are stored.
    """

    def __init__(self, directory: Path, max_workers: int = 2) -> None:
        self.directory = directory
        self.directory.mkdir(parents=True, exist_ok=True)
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="album-art")

    def path_for(self, signature: str, size: tuple[int, int] = LARGE_ALBUM_ART_DIMENSIONS) -> Path:
        return self.directory / f"{signature}_{size[0]}x{size[1]}.jpg"

    def get(self, signature: str, size: tuple[int, int] = LARGE_ALBUM_ART_DIMENSIONS) -> Path | None:
        path = self.path_for(signature, size)
        return path if path.exists() else None

    def submit(
        self,
        signature: str,
        data: bytes,
        size: tuple[int, int] = LARGE_ALBUM_ART_DIMENSIONS
    ) -> "Future[Path]":
        """Schedule decoding and caching of one picture."""
        return self._executor.submit(self.store, signature, data, size)

    def store(
        self,
        signature: str,
        data: bytes,
        size: tuple[int, int] = LARGE_ALBUM_ART_DIMENSIONS
    ) -> Path:
        """
        Decode, thumbnail and write one picture synchronously.

        Returns:
            Path of the cached thumbnail.

        Raises:
            ArtworkError: If the bytes are not a decodable image or the
                          thumbnail cannot be written.
        """
        target = self.path_for(signature, size)
        if target.exists():
            return target

        temp_name = None
        try:
            with Image.open(io.BytesIO(data)) as image:
                thumbnail = image.convert("RGB")
            thumbnail.thumbnail(size)
            fd, temp_name = tempfile.mkstemp(suffix=".jpg", dir=self.directory)
            with os.fdopen(fd, "wb") as out:
                thumbnail.save(out, format="JPEG", quality=JPEG_QUALITY)
            os.replace(temp_name, target)
            temp_name = None
        except (UnidentifiedImageError, Image.DecompressionBombError, OSError, ValueError) as e:
            raise ArtworkError(
                f"Unable to cache album art: {e}",
                details={"signature": signature, "original_error": str(e)}
            ) from e
        finally:
            if temp_name is not None:
                Path(temp_name).unlink(missing_ok=True)

        logger.debug(f"Cached album art {target.name}")
        return target

    def shutdown(self) -> None:
        self._executor.shutdown(wait=True)
