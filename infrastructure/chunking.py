# infrastructure/chunking.py
"""
UTF-8 chunking utilities for the key-value store.

Splits a string into pieces whose UTF-8 size stays under a byte limit
without ever cutting a multi-byte character in half.
"""

from typing import Iterable, List

from infrastructure.logging_service import get_module_logger

logger = get_module_logger("Chunking", "chunking.log")

ENCODING = "utf-8"

# Conservative upper bound used when the exact size cannot be measured
ESTIMATED_BYTES_PER_CHAR = 4


def encoded_length(text: str) -> int:
    """UTF-8 size of a string (lone surrogates counted as 3 bytes)."""
    return len(text.encode(ENCODING, errors="surrogatepass"))


def split_by_bytes(text: str, max_bytes: int) -> List[str]:
    """
    Split text into chunks of at most max_bytes encoded bytes.

    The chunk is flushed right before the character that would push it
    over the limit. A single character larger than the limit is emitted
    as its own chunk.

    Raises UnicodeEncodeError if the text cannot be encoded strictly.
    """
    if max_bytes <= 0:
        raise ValueError("max_bytes must be positive")
    if not text:
        return []

    chunks: List[str] = []
    current: List[str] = []
    current_bytes = 0

    for char in text:
        char_bytes = len(char.encode(ENCODING))
        if current and current_bytes + char_bytes > max_bytes:
            chunks.append("".join(current))
            current = []
            current_bytes = 0
        current.append(char)
        current_bytes += char_bytes

    if current:
        chunks.append("".join(current))

    return chunks


def split_by_bytes_estimated(text: str, max_bytes: int) -> List[str]:
    """
    Fallback splitter that does not measure encoded sizes.

    Every character is assumed to take ESTIMATED_BYTES_PER_CHAR bytes,
    which over-estimates, so chunks only come out smaller than needed.
    """
    if max_bytes <= 0:
        raise ValueError("max_bytes must be positive")
    if not text:
        return []

    chars_per_chunk = max(1, max_bytes // ESTIMATED_BYTES_PER_CHAR)
    return [text[i:i + chars_per_chunk] for i in range(0, len(text), chars_per_chunk)]


def split_string_by_bytes(text: str, max_bytes: int) -> List[str]:
    """Split with exact measurement, falling back to the estimate when it fails."""
    try:
        return split_by_bytes(text, max_bytes)
    except UnicodeEncodeError as e:
        logger.warning(f"Exact UTF-8 measurement unavailable ({e.reason}), using estimated chunking")
        return split_by_bytes_estimated(text, max_bytes)


def join_chunks(chunks: Iterable[str]) -> str:
    """Rebuild a string from its chunks, in order."""
    return "".join(chunks)
