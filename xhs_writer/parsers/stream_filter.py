"""
Streamed output post-processing.

Cleans generated text chunk by chunk: invisible and control characters
are removed, everything before the start marker is discarded, and an
optional post-processing hook (e.g. sensitive-word filtering) is applied
to the text that is forwarded.
"""

import logging
import unicodedata
from typing import Callable, Optional

logger = logging.getLogger(__name__)

DEFAULT_START_MARKER = "## 1."

# Whitespace control characters that survive sanitizing
_KEPT_CONTROLS = {"\n", "\r", "\t"}


def sanitize_text(text: str) -> str:
    """
    Remove invisible and control characters from text.

    Drops every character in the Unicode "C" categories (control, format,
    private use, surrogate, unassigned) except newline, carriage return
    and tab. Zero-width joiners and similar watermark characters are
    format characters and are removed.
    """
    if not text:
        return ""
    return "".join(
        ch for ch in text
        if ch in _KEPT_CONTROLS or not unicodedata.category(ch).startswith("C")
    )


class StartMarkerFilter:
    """
    Stateful filter that forwards streamed text from the start marker on.

    Content is accumulated until the marker appears; the first forwarded
    piece begins exactly at the marker, even when the marker was split
    across several chunks. After that every chunk passes through.
    Zero-length heartbeat chunks are returned unchanged.

    Example:
        >>> f = StartMarkerFilter()
        >>> f.feed("preamble ## ")
        ''
        >>> f.feed("1. Title")
        '## 1. Title'
    """

    def __init__(
        self,
        marker: str = DEFAULT_START_MARKER,
        post_process: Optional[Callable[[str], str]] = None,
    ):
        if not marker:
            raise ValueError("Start marker cannot be empty")
        self.marker = marker
        self.post_process = post_process
        self.started = False
        self._accumulated = ""
        self.discarded_chars = 0

    def feed(self, chunk: str) -> str:
        """
        Process one chunk.

        Returns:
            Text to forward; empty while the preamble is being discarded
        """
        if chunk == "":
            return ""

        clean = sanitize_text(chunk)

        if not self.started:
            self._accumulated += clean
            index = self._accumulated.find(self.marker)
            if index == -1:
                return ""
            self.started = True
            self.discarded_chars = index
            logger.debug(f"Start marker found after {index} discarded characters")
            to_send = self._accumulated[index:]
            self._accumulated = ""
        else:
            to_send = clean

        if to_send and self.post_process is not None:
            to_send = self.post_process(to_send)
        return to_send
