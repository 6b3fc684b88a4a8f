"""Tests for CLI module."""

from unittest.mock import patch

import pytest

from readalong.cli import main
from readalong.exporter import dump_speech_marks, to_data_uri
from readalong.models import AudioGenerationStatus, DocumentRecord, SpeechMark
from readalong.storage import JsonDocumentStore, LocalBlobStore
from readalong.synthesis import SpeechSynthesizer

from conftest import FakeAdapter


# --- Helpers ---

def _create_text_file(tmp_path, name="essay.txt", content="First sentence here. Second one follows."):
    path = tmp_path / name
    path.write_text(content)
    return str(path)


def _use_output_dir(tmp_path, monkeypatch):
    output = tmp_path / "output"
    monkeypatch.setattr("readalong.cli.OUTPUT_DIR", str(output))
    return output


def _use_fake_synthesizer(tmp_path, monkeypatch, adapter):
    output = _use_output_dir(tmp_path, monkeypatch)
    synth = SpeechSynthesizer(
        store=JsonDocumentStore(output / "documents"),
        blobs=LocalBlobStore(output / "blobs"),
        adapter_factory=lambda voice, persist=False: adapter,
        probe_durations=False,
    )
    monkeypatch.setattr("readalong.cli._synthesizer", lambda storage="local": synth)
    return output


def _create_document(output, marks, offsets=None):
    blobs = LocalBlobStore(output / "blobs")
    marks_url = blobs.put("doc1-speech-marks.jsonl", dump_speech_marks(marks).encode())
    JsonDocumentStore(output / "documents").save(DocumentRecord(
        id="doc1",
        audio_url=blobs.put("doc1-audio.mp3", b"\xff"),
        speech_marks_url=marks_url,
        audio_generation_status=AudioGenerationStatus.COMPLETED,
        voice="lemonfox/sarah",
        page_character_offsets=offsets or [],
    ))


MARKS = [
    SpeechMark(0, "sentence", 0, 20, "First sentence here."),
    SpeechMark(0, "word", 0, 5, "First"),
    SpeechMark(400, "word", 6, 14, "sentence"),
    SpeechMark(900, "word", 15, 19, "here"),
    SpeechMark(1500, "sentence", 21, 40, "Second one follows."),
    SpeechMark(1500, "word", 21, 27, "Second"),
]


# --- Routing ---

def test_no_command_prints_help(capsys):
    with patch("sys.argv", ["readalong"]):
        main()
    assert "usage" in capsys.readouterr().out.lower()


def test_version(capsys):
    with pytest.raises(SystemExit):
        main(["--version"])
    assert "0.1.0" in capsys.readouterr().out


# --- voices ---

def test_cli_voices(capsys):
    with patch("sys.argv", ["readalong", "voices"]):
        main()
    out = capsys.readouterr().out
    assert "Available voices:" in out
    assert "amazon/Joanna" in out
    assert "vibevoice/en-Alice_woman" in out


def test_cli_voices_filter(capsys):
    with patch("sys.argv", ["readalong", "voices", "--filter", "lemonfox"]):
        main()
    out = capsys.readouterr().out
    assert "lemonfox/sarah" in out
    assert "openai/alloy" not in out


def test_cli_voices_no_match(capsys):
    with patch("sys.argv", ["readalong", "voices", "--filter", "zzz"]):
        main()
    assert "No matching voices found." in capsys.readouterr().out


# --- read ---

def test_cli_read_writes_audio(tmp_path, monkeypatch, capsys):
    output = _use_fake_synthesizer(tmp_path, monkeypatch, FakeAdapter())
    path = _create_text_file(tmp_path)

    with patch("sys.argv", ["readalong", "read", path]):
        main()

    assert (output / "essay.mp3").read_bytes() == b"\xff" * 1000
    out = capsys.readouterr().out
    assert "in 1 chunk(s)" in out
    assert "Audio written to" in out


def test_cli_read_with_doc_id(tmp_path, monkeypatch, capsys):
    output = _use_fake_synthesizer(tmp_path, monkeypatch, FakeAdapter())
    path = _create_text_file(tmp_path)

    with patch("sys.argv", ["readalong", "read", path, "--doc-id", "doc1"]):
        main()

    record = JsonDocumentStore(output / "documents").get("doc1")
    assert record.audio_generation_status is AudioGenerationStatus.COMPLETED
    assert "Audio: file://" in capsys.readouterr().out


def test_cli_read_chunk_failure(tmp_path, monkeypatch, capsys):
    from readalong.errors import TransientError

    adapter = FakeAdapter(fail_on=0, error=TransientError("upstream 503", status_code=503))
    _use_fake_synthesizer(tmp_path, monkeypatch, adapter)
    path = _create_text_file(tmp_path)

    with pytest.raises(SystemExit):
        with patch("sys.argv", ["readalong", "read", path]):
            main()
    assert "upstream 503" in capsys.readouterr().err


def test_cli_read_missing_file(tmp_path, monkeypatch):
    _use_output_dir(tmp_path, monkeypatch)
    with pytest.raises(SystemExit):
        with patch("sys.argv", ["readalong", "read", str(tmp_path / "nope.txt")]):
            main()


def test_cli_read_empty_file(tmp_path, monkeypatch):
    _use_output_dir(tmp_path, monkeypatch)
    path = _create_text_file(tmp_path, content="  \n")
    with pytest.raises(SystemExit):
        with patch("sys.argv", ["readalong", "read", path]):
            main()


def test_cli_read_bad_voice(tmp_path, monkeypatch, capsys):
    _use_output_dir(tmp_path, monkeypatch)
    path = _create_text_file(tmp_path)
    with pytest.raises(SystemExit):
        with patch("sys.argv", ["readalong", "read", path, "--voice", "google/wavenet"]):
            main()
    assert "Unsupported voice provider" in capsys.readouterr().err


def test_cli_read_bad_doc_id(tmp_path, monkeypatch):
    _use_output_dir(tmp_path, monkeypatch)
    path = _create_text_file(tmp_path)
    with pytest.raises(SystemExit):
        with patch("sys.argv", ["readalong", "read", path, "--doc-id", "../x"]):
            main()


# --- status ---

def test_cli_status(tmp_path, monkeypatch, capsys):
    output = _use_output_dir(tmp_path, monkeypatch)
    _create_document(output, MARKS)

    with patch("sys.argv", ["readalong", "status", "doc1"]):
        main()

    out = capsys.readouterr().out
    assert "Document: doc1" in out
    assert "Status:   completed" in out
    assert "Voice:    lemonfox/sarah" in out


def test_cli_status_not_found(tmp_path, monkeypatch):
    _use_output_dir(tmp_path, monkeypatch)
    with pytest.raises(SystemExit):
        with patch("sys.argv", ["readalong", "status", "missing"]):
            main()


# --- marks ---

def test_cli_marks_highlight_prefers_word(tmp_path, monkeypatch, capsys):
    output = _use_output_dir(tmp_path, monkeypatch)
    _create_document(output, MARKS, offsets=[0, 21])

    with patch("sys.argv", ["readalong", "marks", "doc1", "--at", "500"]):
        main()

    out = capsys.readouterr().out
    assert "word @ 400ms [6:14] 'sentence'" in out
    assert "Page: 1" in out


def test_cli_marks_sentence(tmp_path, monkeypatch, capsys):
    output = _use_output_dir(tmp_path, monkeypatch)
    _create_document(output, MARKS, offsets=[0, 21])

    with patch("sys.argv", ["readalong", "marks", "doc1", "--at", "1600", "--type", "sentence"]):
        main()

    out = capsys.readouterr().out
    assert "sentence @ 1500ms [21:40] 'Second one follows.'" in out
    assert "Page: 2" in out


def test_cli_marks_before_first(tmp_path, monkeypatch, capsys):
    output = _use_output_dir(tmp_path, monkeypatch)
    _create_document(output, [SpeechMark(200, "word", 0, 5, "First")])

    with patch("sys.argv", ["readalong", "marks", "doc1", "--at", "100"]):
        main()
    assert "Nothing is being spoken" in capsys.readouterr().out


# --- preview ---

def test_cli_preview(tmp_path, monkeypatch, capsys):
    output = _use_output_dir(tmp_path, monkeypatch)
    monkeypatch.setattr("readalong.cli.preview_voice", lambda voice: to_data_uri(b"abc", "mp3"))

    with patch("sys.argv", ["readalong", "preview", "amazon/Joanna"]):
        main()

    assert (output / "preview_joanna.mp3").read_bytes() == b"abc"
    assert "Preview written to" in capsys.readouterr().out
