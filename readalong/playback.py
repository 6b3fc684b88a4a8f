"""Map an audio playback position to the speech mark being spoken."""

from bisect import bisect_right

from readalong.models import SpeechMark


def current_mark(marks: list[SpeechMark], position_ms: float) -> SpeechMark | None:
    """Last mark with time_ms <= position_ms, or None before the first mark.

    marks must be sorted by time_ms. The lookup ignores mark type; filter
    with marks_of_type() first to follow only words or only sentences.
    """
    i = bisect_right(marks, position_ms, key=lambda m: m.time_ms)
    return marks[i - 1] if i else None


def marks_of_type(marks: list[SpeechMark], mark_type: str) -> list[SpeechMark]:
    return [m for m in marks if m.type == mark_type]


def page_for_offset(page_character_offsets: list[int], char_offset: int) -> int:
    """Zero-based page containing char_offset.

    page_character_offsets[i] is the first character of page i. Offsets
    before the first page start map to page 0.
    """
    if not page_character_offsets:
        return 0
    return max(bisect_right(page_character_offsets, char_offset) - 1, 0)


class PlaybackSynchronizer:
    """Precomputed word and sentence tracks for one document's marks."""

    def __init__(self, marks: list[SpeechMark], page_character_offsets: list[int] | None = None) -> None:
        self.marks = marks
        self.words = marks_of_type(marks, "word")
        self.sentences = marks_of_type(marks, "sentence")
        self.page_character_offsets = page_character_offsets or []

    def word_at(self, position_ms: float) -> SpeechMark | None:
        return current_mark(self.words, position_ms)

    def sentence_at(self, position_ms: float) -> SpeechMark | None:
        return current_mark(self.sentences, position_ms)

    def highlight_at(self, position_ms: float) -> SpeechMark | None:
        """Word under the playhead, falling back to the sentence."""
        return self.word_at(position_ms) or self.sentence_at(position_ms)

    def page_at(self, position_ms: float) -> int | None:
        mark = self.highlight_at(position_ms)
        if mark is None:
            return None
        return page_for_offset(self.page_character_offsets, mark.char_start)
