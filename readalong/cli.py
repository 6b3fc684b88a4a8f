"""CLI interface with subcommand routing."""

import argparse
import logging
import os
import sys

from readalong.constants import (
    BLOBS_SUBDIR,
    DEFAULT_SPEAKING_RATE,
    DEFAULT_VOICE,
    DOCUMENTS_SUBDIR,
    OUTPUT_DIR,
    VERSION,
)
from readalong.errors import SynthesisError
from readalong.exporter import from_data_uri
from readalong.models import VoiceSpec
from readalong.playback import PlaybackSynchronizer
from readalong.storage import JsonDocumentStore, LocalBlobStore, S3BlobStore, check_doc_id, slug_from_path
from readalong.synthesis import AsyncSynthesis, SpeechSynthesizer
from readalong.voices import list_voices, preview_voice


def _fail(message: str):
    print(f"Error: {message}", file=sys.stderr)
    raise SystemExit(1)


def _synthesizer(storage: str = "local") -> SpeechSynthesizer:
    store = JsonDocumentStore(os.path.join(OUTPUT_DIR, DOCUMENTS_SUBDIR))
    if storage == "s3":
        try:
            blobs = S3BlobStore()
        except SynthesisError as e:
            _fail(str(e))
    else:
        blobs = LocalBlobStore(os.path.join(OUTPUT_DIR, BLOBS_SUBDIR))
    return SpeechSynthesizer(store=store, blobs=blobs)


def _parse_voice(name: str, rate: float = DEFAULT_SPEAKING_RATE) -> VoiceSpec:
    try:
        return VoiceSpec.parse(name, rate)
    except ValueError as e:
        _fail(str(e))


def _check_doc_id(doc_id: str) -> str:
    try:
        return check_doc_id(doc_id)
    except ValueError as e:
        _fail(str(e))


def _write_audio(audio: bytes, path: str) -> None:
    os.makedirs(os.path.dirname(os.path.abspath(path)), exist_ok=True)
    with open(path, "wb") as f:
        f.write(audio)


def cmd_read(args):
    """Synthesize a text file."""
    if not os.path.exists(args.file):
        _fail(f"File not found: {args.file}")
    with open(args.file, encoding="utf-8") as f:
        text = f.read()
    if not text.strip():
        _fail(f"File is empty: {args.file}")

    voice = _parse_voice(args.voice, args.rate)
    doc_id = _check_doc_id(args.doc_id) if args.doc_id is not None else None

    synthesizer = _synthesizer(args.storage)
    try:
        result = synthesizer.synthesize(text, voice, doc_id=doc_id)
        if isinstance(result, AsyncSynthesis):
            print(f"Started {len(result.task_ids)} provider job(s) for {doc_id}; polling...")
            try:
                result = result.wait()
            except KeyboardInterrupt:
                # provider jobs keep running; only our polling stops
                result.cancel()
                result = result.wait()
    except SynthesisError as e:
        _fail(str(e))

    print(f"Synthesized {len(text)} chars in {result.chunk_count} chunk(s), {result.duration_sec:.1f}s of audio")
    if result.timestamps_supported and not result.has_highlighting:
        print("Warning: speech marks were unusable; audio has no highlighting.", file=sys.stderr)
    elif result.has_highlighting:
        print(f"Speech marks: {len(result.marks)}")

    if doc_id is not None:
        print(f"Audio: {result.audio_url}")
        if result.speech_marks_url:
            print(f"Marks: {result.speech_marks_url}")
    else:
        out = args.out or os.path.join(OUTPUT_DIR, f"{slug_from_path(args.file)}.{result.audio_format}")
        _write_audio(from_data_uri(result.audio_url)[0], out)
        print(f"Audio written to {out}")


def cmd_status(args):
    """Show a document's audio generation status."""
    record = _synthesizer().status(_check_doc_id(args.doc_id))
    if record is None:
        _fail(f"Document '{args.doc_id}' not found.")

    print(f"Document: {record.id}")
    print(f"Status:   {record.audio_generation_status.value}")
    if record.voice:
        print(f"Voice:    {record.voice}")
    if record.audio_generation_task_ids:
        print(f"Tasks:    {', '.join(record.audio_generation_task_ids)}")
    if record.audio_url:
        print(f"Audio:    {record.audio_url}")
    if record.speech_marks_url:
        print(f"Marks:    {record.speech_marks_url}")
    if record.error:
        print(f"Error:    {record.error}")
    if record.updated_at:
        print(f"Updated:  {record.updated_at}")


def cmd_voices(args):
    """List available voices."""
    voices = list_voices(args.filter)
    if not voices:
        print("No matching voices found.")
        return
    print("Available voices:")
    for v in voices:
        print(f"  {v.name:<26} {v.display_name:<14} {v.gender}")


def cmd_preview(args):
    """Speak the preview sentence with one voice."""
    voice = _parse_voice(args.voice)
    try:
        uri = preview_voice(voice)
    except SynthesisError as e:
        _fail(str(e))
    audio, audio_format = from_data_uri(uri)
    out = args.out or os.path.join(OUTPUT_DIR, f"preview_{slug_from_path(voice.voice_id)}.{audio_format}")
    _write_audio(audio, out)
    print(f"Preview written to {out}")


def cmd_marks(args):
    """Show the speech mark at a playback position."""
    record = _synthesizer().status(_check_doc_id(args.doc_id))
    if record is None:
        _fail(f"Document '{args.doc_id}' not found.")
    storage = "local" if (record.speech_marks_url or "file:").startswith("file:") else "s3"
    marks = _synthesizer(storage).load_marks(args.doc_id)
    if not marks:
        _fail(f"Document '{args.doc_id}' has no speech marks.")

    sync = PlaybackSynchronizer(marks, record.page_character_offsets)
    if args.type == "word":
        mark = sync.word_at(args.at)
    elif args.type == "sentence":
        mark = sync.sentence_at(args.at)
    else:
        mark = sync.highlight_at(args.at)

    if mark is None:
        print(f"Nothing is being spoken at {args.at}ms.")
        return
    print(f"{mark.type} @ {mark.time_ms}ms [{mark.char_start}:{mark.char_end}] {mark.value!r}")
    if record.page_character_offsets:
        print(f"Page: {sync.page_at(args.at) + 1}")


def main(argv=None):
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="readalong",
        description="Readalong: turn documents into narrated audio with word highlighting",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {VERSION}")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # read
    read_parser = subparsers.add_parser("read", help="Synthesize a text file")
    read_parser.add_argument("file", help="Path to a UTF-8 text file")
    read_parser.add_argument("--voice", default=DEFAULT_VOICE, help=f"provider/voice (default: {DEFAULT_VOICE})")
    read_parser.add_argument("--rate", type=float, default=DEFAULT_SPEAKING_RATE, help="Speaking rate, 0.25-4.0")
    read_parser.add_argument("--doc-id", help="Store audio and speech marks under this document id")
    read_parser.add_argument("--out", help="Audio output path when no document id is given")
    read_parser.add_argument("--storage", choices=["local", "s3"], default="local", help="Blob storage for documents")
    read_parser.set_defaults(func=cmd_read)

    # status
    status_parser = subparsers.add_parser("status", help="Show document audio status")
    status_parser.add_argument("doc_id", help="Document id")
    status_parser.set_defaults(func=cmd_status)

    # voices
    voices_parser = subparsers.add_parser("voices", help="List available voices")
    voices_parser.add_argument("--filter", help="Filter by name, gender, or provider")
    voices_parser.set_defaults(func=cmd_voices)

    # preview
    preview_parser = subparsers.add_parser("preview", help="Preview a voice")
    preview_parser.add_argument("voice", help="provider/voice")
    preview_parser.add_argument("--out", help="Audio output path")
    preview_parser.set_defaults(func=cmd_preview)

    # marks
    marks_parser = subparsers.add_parser("marks", help="Show the speech mark at a playback position")
    marks_parser.add_argument("doc_id", help="Document id")
    marks_parser.add_argument("--at", type=int, required=True, help="Playback position in milliseconds")
    marks_parser.add_argument("--type", choices=["word", "sentence"], help="Only this mark type")
    marks_parser.set_defaults(func=cmd_marks)

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    if not args.command:
        parser.print_help()
        return

    args.func(args)


if __name__ == "__main__":
    main()
