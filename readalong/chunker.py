"""Split document text into provider-sized chunks at sentence or word boundaries."""

from typing import Callable

from readalong.models import TextChunk

SENTENCE_ENDERS = ".?!\n"


def _find_split(text: str, start: int, max_len: int) -> int:
    """Return the exclusive end index for a chunk beginning at start.

    Prefers the last sentence delimiter followed by whitespace (or sitting at
    the window edge), then the last space, then a hard split at max_len.
    """
    window_end = start + max_len
    for pos in range(window_end - 1, start - 1, -1):
        if text[pos] in SENTENCE_ENDERS:
            after = pos + 1
            if after == window_end or text[after].isspace():
                return after

    last_space = text.rfind(" ", start, window_end)
    if last_space > start:
        return last_space

    return window_end


def split(text: str, max_len: int, size: Callable[[str], int] = len) -> list[TextChunk]:
    """Split text into ordered chunks with size(chunk) <= max_len.

    size measures a chunk the way the provider counts it; the default is
    plain characters. Whitespace between chunks is consumed, so every chunk
    starts on a non-space character and char_offset points at that character
    in the source. Whitespace-only remainders produce no chunk. A single
    character that alone exceeds max_len is still emitted.
    """
    if max_len < 1:
        raise ValueError(f"max_len must be >= 1, got {max_len}")

    chunks = []
    pos = 0
    length = len(text)

    while pos < length:
        # Skip whitespace left over from the previous split point
        while pos < length and text[pos].isspace():
            pos += 1
        if pos >= length:
            break

        window = max_len
        while True:
            if length - pos <= window:
                end = length
            else:
                end = _find_split(text, pos, window)
            overflow = size(text[pos:end]) - max_len
            if overflow <= 0 or window == 1:
                break
            # Markup or escaping grew the chunk; retry in a smaller window
            window = max(1, min(window, end - pos) - overflow)

        piece = text[pos:end]
        if piece.strip():
            chunks.append(TextChunk(index=len(chunks), text=piece, char_offset=pos))
        pos = end

    return chunks
