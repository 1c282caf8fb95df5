import mimetypes
from typing import NamedTuple, Tuple

import filetype

# Number of leading bytes inspected when sniffing a payload
SNIFF_BYTES = 261

# Forced content types for text payloads, keyed by filename extension
TEXT_OVERRIDES = {
    ".js": "application/javascript",
    ".css": "text/css",
}


class Classification(NamedTuple):
    content_type: str
    is_image: bool
    is_text: bool
    is_audio: bool
    is_video: bool
    is_ascii: bool


def is_ascii(data: bytes) -> bool:
    return all(byte < 0x80 for byte in data)


def is_utf8_text(data: bytes) -> bool:
    """True if ``data`` decodes as UTF-8, allowing a multibyte character cut off at the end."""
    try:
        data.decode("utf-8")
    except UnicodeDecodeError as e:
        return e.reason == "unexpected end of data" and e.start >= len(data) - 3
    return True


def sniff(prefix: bytes) -> Tuple[str, bool]:
    """Return the MIME type of a byte prefix and whether it is ASCII text."""
    ascii_text = is_ascii(prefix)
    kind = filetype.guess(prefix) if prefix else None
    if kind is not None:
        return kind.mime, ascii_text
    if ascii_text or is_utf8_text(prefix):
        return "text/plain", ascii_text
    return "application/octet-stream", False


def classify(filename: str, prefix: bytes) -> Classification:
    """Classify an upload from its name and the first bytes of its content."""
    content_type, ascii_text = sniff(prefix[:SNIFF_BYTES])

    if content_type == "application/octet-stream":
        guessed, _ = mimetypes.guess_type(filename)
        if guessed:
            content_type = guessed

    # Plain text is refined by extension
    if content_type == "text/plain":
        lowered = filename.lower()
        for extension, forced in TEXT_OVERRIDES.items():
            if lowered.endswith(extension):
                content_type = forced
                break

    return Classification(
        content_type=content_type,
        is_image=content_type.startswith("image/"),
        is_text=content_type.startswith("text/"),
        is_audio=content_type.startswith("audio/"),
        is_video=content_type.startswith("video/"),
        is_ascii=ascii_text,
    )
