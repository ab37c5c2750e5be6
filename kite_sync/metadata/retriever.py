"""
Tag and artwork extraction for audio files.

MetadataRetriever reads embedded tags and pictures from an audio file,
either from a locally cached copy or from a streaming URL. Values are
returned as raw strings, exactly as stored in the file; converting numeric
fields is left to the caller, so a malformed field never hides the others.

Supported Formats:
    Anything mutagen can open. Tag lookup tries the names used by each
    container in turn:

    Field          ID3     MP4       Vorbis/FLAC
    ------------   -----   -------   -------------------
    title          TIT2    \xa9nam   title
    artist         TPE1    \xa9ART   artist
    album          TALB    \xa9alb   album
    genre          TCON    \xa9gen   genre
    track number   TRCK    trkn      tracknumber
    total tracks   (TRCK)  (trkn)    tracktotal / totaltracks

    Artwork: ID3 APIC frames, MP4 covr atoms, FLAC pictures and the Vorbis
    metadata_block_picture comment.

Dependencies:
    - mutagen: Audio metadata library
    - requests: For reading the head of a streamed file

Usage:
    retriever = MetadataRetriever.from_file(Path("/cache/abc.mp3"))
    title = retriever.extract_metadata(MetadataKey.TITLE)
    picture = retriever.get_embedded_picture()
"""

import base64
import enum
import io
from pathlib import Path
from typing import Any

import mutagen
import requests
from mutagen.flac import Picture

from kite_sync.core.exceptions import ExtractionError
from kite_sync.core.logger import get_logger

logger = get_logger(__name__)


# Upper bound of bytes read from a streaming URL. Tags and artwork live
# near the start of nearly every container.
MAX_STREAM_BYTES = 16 * 1024 * 1024
STREAM_CHUNK_SIZE = 64 * 1024


class MetadataKey(enum.Enum):
    """Fields a retriever can extract."""
    ALBUM = "album"
    ARTIST = "artist"
    GENRE = "genre"
    TITLE = "title"
    DURATION = "duration"
    CD_TRACK_NUMBER = "track_number"
    NUM_TRACKS = "total_tracks"


_TAG_NAMES: dict[MetadataKey, list[str]] = {
    MetadataKey.TITLE: ["TIT2", "\xa9nam", "title", "TITLE"],
    MetadataKey.ARTIST: ["TPE1", "\xa9ART", "artist", "ARTIST"],
    MetadataKey.ALBUM: ["TALB", "\xa9alb", "album", "ALBUM"],
    MetadataKey.GENRE: ["TCON", "\xa9gen", "genre", "GENRE"],
    MetadataKey.CD_TRACK_NUMBER: ["TRCK", "trkn", "tracknumber", "TRACKNUMBER"],
    MetadataKey.NUM_TRACKS: ["tracktotal", "TRACKTOTAL", "totaltracks", "TOTALTRACKS"],
}


def _first_text(value: Any) -> str | None:
    """Flatten the different tag value shapes mutagen returns into one string."""
    if value is None:
        return None
    if isinstance(value, (list, tuple)) and not isinstance(value, str):
        if not value:
            return None
        first = value[0]
        # MP4 trkn/disk: [(track, total)]
        if isinstance(first, tuple):
            number, total = (list(first) + [0, 0])[:2]
            return f"{number}/{total}" if total else str(number)
        return _first_text(first)
    if hasattr(value, "genres"):
        # ID3 TCON: resolves "(17)" and "17" to genre names
        return _first_text(value.genres)
    if hasattr(value, "text"):
        # ID3 text frames
        return _first_text(value.text)
    text = str(value).strip()
    return text or None


class MetadataRetriever:
    """
    Extracts tags and artwork from one opened audio file.

    Instances are cheap wrappers around a mutagen FileType; create one per
    file and discard it after use.

    Attributes:
        source: Human-readable origin (file path or URL) for log messages.
        truncated: True when only the head of a streamed file was parsed.
            Stream properties such as the duration are then unreliable.
    """

    def __init__(self, audio: mutagen.FileType, source: str, truncated: bool = False) -> None:
        self._audio = audio
        self.source = source
        self.truncated = truncated

    @classmethod
    def from_file(cls, path: Path) -> "MetadataRetriever":
        """
        Open a local audio file.

        Raises:
            ExtractionError: If the file cannot be read or is not audio.
        """
        try:
            audio = mutagen.File(str(path))
        except (mutagen.MutagenError, OSError) as e:
            raise ExtractionError(
                f"Unable to read audio file: {e}",
                details={"path": str(path), "original_error": str(e)}
            ) from e

        if audio is None:
            raise ExtractionError(
                "Unrecognized audio format",
                details={"path": str(path)}
            )
        return cls(audio, str(path))

    @classmethod
    def from_url(
        cls,
        url: str,
        session: requests.Session | None = None,
        timeout: int = 30,
        max_bytes: int = MAX_STREAM_BYTES
    ) -> "MetadataRetriever":
        """
        Open an audio file served over HTTP.

        Reads at most max_bytes from the URL into memory and parses that.
        If the limit is reached the retriever is marked truncated and
        reports no duration.

        Raises:
            ExtractionError: If the URL cannot be fetched or parsed.
        """
        http = session or requests
        buffer = io.BytesIO()
        truncated = False

        try:
            with http.get(url, stream=True, timeout=timeout) as response:
                response.raise_for_status()
                for chunk in response.iter_content(chunk_size=STREAM_CHUNK_SIZE):
                    buffer.write(chunk)
                    if buffer.tell() >= max_bytes:
                        truncated = True
                        break
        except requests.RequestException as e:
            raise ExtractionError(
                f"Unable to stream audio file: {e}",
                details={"url": url, "original_error": str(e)}
            ) from e

        buffer.seek(0)
        try:
            audio = mutagen.File(buffer)
        except (mutagen.MutagenError, OSError) as e:
            raise ExtractionError(
                f"Unable to parse streamed audio file: {e}",
                details={"url": url, "original_error": str(e)}
            ) from e

        if audio is None:
            raise ExtractionError("Unrecognized audio format", details={"url": url})
        if truncated:
            logger.debug(f"Parsed only the first {buffer.tell()} bytes of {url}")
        return cls(audio, url, truncated=truncated)

    def _tag_value(self, names: list[str]) -> str | None:
        tags = self._audio.tags
        if tags is None:
            return None
        for name in names:
            try:
                value = tags.get(name)
            except (KeyError, ValueError):
                # Vorbis comments raise ValueError for keys they can't hold
                continue
            text = _first_text(value)
            if text:
                return text
        return None

    def extract_metadata(self, key: MetadataKey) -> str | None:
        """
        Return the raw string value of a field, or None if absent.

        DURATION is reported in milliseconds, and is None for a truncated
        stream since mutagen may derive it from the size of the bytes read.
        CD_TRACK_NUMBER and NUM_TRACKS are split out of combined "3/12"
        values when the container stores them together.
        """
        if key is MetadataKey.DURATION:
            if self.truncated:
                return None
            length = getattr(getattr(self._audio, "info", None), "length", None)
            if length is None:
                return None
            return str(int(round(length * 1000)))

        if key is MetadataKey.CD_TRACK_NUMBER:
            value = self._tag_value(_TAG_NAMES[key])
            return value.split("/", 1)[0].strip() if value else None

        if key is MetadataKey.NUM_TRACKS:
            value = self._tag_value(_TAG_NAMES[key])
            if value:
                return value
            combined = self._tag_value(_TAG_NAMES[MetadataKey.CD_TRACK_NUMBER])
            if combined and "/" in combined:
                return combined.split("/", 1)[1].strip() or None
            return None

        return self._tag_value(_TAG_NAMES[key])

    def get_embedded_picture(self) -> bytes | None:
        """Return the bytes of the first embedded picture, or None."""
        pictures = getattr(self._audio, "pictures", None)
        if pictures:
            return bytes(pictures[0].data)

        tags = self._audio.tags
        if tags is None:
            return None

        if hasattr(tags, "getall"):
            frames = tags.getall("APIC")
            if frames:
                return bytes(frames[0].data)

        try:
            covers = tags.get("covr")
        except (KeyError, ValueError):
            covers = None
        if covers:
            return bytes(covers[0])

        try:
            blocks = tags.get("metadata_block_picture")
        except (KeyError, ValueError):
            blocks = None
        for block in blocks or []:
            try:
                return bytes(Picture(base64.b64decode(block)).data)
            except (ValueError, mutagen.MutagenError):
                logger.debug(f"Skipping malformed picture block in {self.source}")

        return None
