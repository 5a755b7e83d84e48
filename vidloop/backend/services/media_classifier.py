"""Content-based media classification.

The MIME type is probed from the file's bytes with the ``file`` utility,
never inferred from the filename, so renaming a file does not change its
class.
"""

from __future__ import annotations

import logging
import subprocess
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from vidloop.backend.services.errors import UnsupportedMediaError
from vidloop.backend.utils.constant import FFPROBE_BIN, FILE_BIN


class MediaClass(str, Enum):
    """Kind of media an input file holds."""

    AUDIO = "audio"
    ANIMATED_IMAGE = "animated_image"
    VIDEO = "video"


@dataclass(frozen=True)
class MediaInfo:
    """Result of inspecting an input file.

    Attributes:
        media_class: Classified media kind.
        mime_type: MIME type probed from the content.
        has_audio: Whether the file carries at least one audio stream.
    """

    media_class: MediaClass
    mime_type: str
    has_audio: bool


def media_class_for_mime(mime_type: str) -> MediaClass:
    """Map a probed MIME type onto a media class.

    Args:
        mime_type: MIME type such as ``audio/mpeg`` or ``image/gif``.

    Returns:
        The matching media class.

    Raises:
        UnsupportedMediaError: For anything other than audio/*, image/gif or video/*.
    """
    mime = mime_type.strip().lower()
    if mime.startswith("audio/"):
        return MediaClass.AUDIO
    if mime == "image/gif":
        return MediaClass.ANIMATED_IMAGE
    if mime.startswith("video/"):
        return MediaClass.VIDEO
    raise UnsupportedMediaError(mime_type)


def probe_mime_type(path: Path, *, file_bin: str = FILE_BIN) -> str:
    """Return the MIME type of ``path`` as reported by ``file --mime-type``.

    Args:
        path: File to inspect.
        file_bin: ``file`` executable.

    Returns:
        The MIME type string.

    Raises:
        UnsupportedMediaError: If the probe cannot run or reports nothing.
    """
    cmd = [file_bin, "--mime-type", "-b", str(path)]
    try:
        out = subprocess.run(cmd, capture_output=True, text=True, check=True, timeout=30)
    except (OSError, subprocess.SubprocessError) as e:
        logging.error("MIME probe failed for %s: %s", path, e)
        raise UnsupportedMediaError("") from e
    return out.stdout.strip()


def probe_has_audio(path: Path, *, ffprobe_bin: str = FFPROBE_BIN) -> bool:
    """Return True if ffprobe finds at least one audio stream in ``path``.

    A probe that cannot run is logged and treated as "has audio" so that a
    missing ffprobe does not silently strip sound from the output.

    Args:
        path: File to inspect.
        ffprobe_bin: ``ffprobe`` executable.

    Returns:
        Whether an audio stream is present.
    """
    cmd = [
        ffprobe_bin,
        "-v",
        "error",
        "-select_streams",
        "a",
        "-show_entries",
        "stream=codec_type",
        "-of",
        "csv=p=0",
        str(path),
    ]
    try:
        out = subprocess.run(cmd, capture_output=True, text=True, check=True, timeout=30)
    except (OSError, subprocess.SubprocessError) as e:
        logging.warning("Audio stream probe failed for %s, assuming audio: %s", path, e)
        return True
    return "audio" in out.stdout


class MediaClassifier:
    """Inspect files and classify them by content."""

    def __init__(self, *, file_bin: str = FILE_BIN, ffprobe_bin: str = FFPROBE_BIN) -> None:
        self._file_bin = file_bin
        self._ffprobe_bin = ffprobe_bin

    def classify(self, path: Path) -> MediaClass:
        """Classify ``path`` as audio, animated image or video.

        Raises:
            UnsupportedMediaError: If the content type is not supported.
        """
        return media_class_for_mime(probe_mime_type(path, file_bin=self._file_bin))

    def inspect(self, path: Path) -> MediaInfo:
        """Classify ``path`` and detect whether it carries audio.

        Audio files always carry audio and GIFs never do; only video inputs
        are probed for an audio stream.

        Raises:
            UnsupportedMediaError: If the content type is not supported.
        """
        mime_type = probe_mime_type(path, file_bin=self._file_bin)
        media_class = media_class_for_mime(mime_type)
        if media_class is MediaClass.AUDIO:
            has_audio = True
        elif media_class is MediaClass.ANIMATED_IMAGE:
            has_audio = False
        else:
            has_audio = probe_has_audio(path, ffprobe_bin=self._ffprobe_bin)
        logging.info(
            "Classified %s as %s (mime=%s, audio=%s)",
            path,
            media_class.value,
            mime_type,
            has_audio,
        )
        return MediaInfo(media_class=media_class, mime_type=mime_type, has_audio=has_audio)
