"""Re-base chunk-local speech marks onto the document timeline and text."""

import logging

from readalong.errors import AlignmentError
from readalong.models import RawMark, SpeechMark, TextChunk

logger = logging.getLogger(__name__)

# Tokens that attach to the previous word without a space
ATTACHED_PUNCTUATION = frozenset({",", ".", "?", "!"})


def reconstruct_word_offsets(words: list[str]) -> list[int]:
    """Return the start offset of each word when joined back into text.

    Words are separated by one space; punctuation tokens attach directly.
    """
    offsets = []
    cursor = 0
    for i, word in enumerate(words):
        if i > 0 and word not in ATTACHED_PUNCTUATION:
            cursor += 1
        offsets.append(cursor)
        cursor += len(word)
    return offsets


def _local_offsets(raw_marks: list[RawMark]) -> list[int]:
    """Native offsets where the provider gave them, else accumulated word positions."""
    accumulated = iter(reconstruct_word_offsets([m.text for m in raw_marks if m.char_start is None]))
    return [m.char_start if m.char_start is not None else next(accumulated) for m in raw_marks]


def validate_marks(marks: list[SpeechMark], document_length: int | None = None) -> None:
    """Raise AlignmentError unless marks are time-ordered with valid text ranges."""
    previous_ms = None
    for i, mark in enumerate(marks):
        if previous_ms is not None and mark.time_ms < previous_ms:
            raise AlignmentError(
                f"Mark {i} at {mark.time_ms}ms precedes the previous mark at {previous_ms}ms"
            )
        if mark.char_start < 0 or mark.char_start >= mark.char_end:
            raise AlignmentError(f"Mark {i} has an empty or negative range [{mark.char_start}, {mark.char_end})")
        if document_length is not None and mark.char_end > document_length:
            raise AlignmentError(
                f"Mark {i} ends at {mark.char_end}, past the document length {document_length}"
            )
        previous_ms = mark.time_ms


def align(
    chunks: list[TextChunk],
    raw_marks_per_chunk: list[list[RawMark]],
    time_offsets_sec: list[float],
    document_length: int | None = None,
) -> list[SpeechMark]:
    """Convert per-chunk raw marks into one document-global mark sequence.

    Chunks without raw marks contribute nothing. The result keeps chunk order,
    which is already time order because offsets never decrease; it is still
    validated and any violation raises AlignmentError.
    """
    if not len(chunks) == len(raw_marks_per_chunk) == len(time_offsets_sec):
        raise AlignmentError(
            f"Mismatched inputs: {len(chunks)} chunks, {len(raw_marks_per_chunk)} mark lists, "
            f"{len(time_offsets_sec)} offsets"
        )

    marks = []
    for chunk, raw_marks, offset_sec in zip(chunks, raw_marks_per_chunk, time_offsets_sec):
        for raw, local in zip(raw_marks, _local_offsets(raw_marks)):
            char_start = chunk.char_offset + local
            marks.append(SpeechMark(
                time_ms=round((offset_sec + raw.start_sec) * 1000),
                type=raw.kind,
                char_start=char_start,
                char_end=char_start + len(raw.text),
                value=raw.text,
            ))

    validate_marks(marks, document_length)
    return marks


def align_or_empty(
    chunks: list[TextChunk],
    raw_marks_per_chunk: list[list[RawMark]],
    time_offsets_sec: list[float],
    document_length: int | None = None,
) -> list[SpeechMark]:
    """Like align(), but falls back to no marks (no highlighting) on bad data."""
    try:
        return align(chunks, raw_marks_per_chunk, time_offsets_sec, document_length)
    except AlignmentError as e:
        logger.warning("Speech marks discarded, highlighting unavailable: %s", e)
        return []
