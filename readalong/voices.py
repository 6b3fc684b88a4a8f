"""Voice catalog and voice previews."""

import logging
from dataclasses import dataclass

from readalong.constants import DEFAULT_SPEAKING_RATE, PREVIEW_TEXT
from readalong.models import Provider, VoiceSpec

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AvailableVoice:
    name: str           # "provider/voice", accepted by VoiceSpec.parse
    display_name: str
    gender: str
    provider: Provider


def _voice(provider: Provider, voice_id: str, display_name: str, gender: str) -> AvailableVoice:
    return AvailableVoice(f"{provider.value}/{voice_id}", display_name, gender, provider)


# Hardcoded catalog (no provider listing calls at startup)
VOICES = [
    _voice(Provider.OPENAI, "alloy", "Alloy", "Neutral"),
    _voice(Provider.OPENAI, "echo", "Echo", "Male"),
    _voice(Provider.OPENAI, "fable", "Fable", "Male"),
    _voice(Provider.OPENAI, "onyx", "Onyx", "Male"),
    _voice(Provider.OPENAI, "nova", "Nova", "Female"),
    _voice(Provider.OPENAI, "shimmer", "Shimmer", "Female"),
    _voice(Provider.AMAZON, "Matthew", "Matthew (US)", "Male"),
    _voice(Provider.AMAZON, "Joanna", "Joanna (US)", "Female"),
    _voice(Provider.AMAZON, "Amy", "Amy (UK)", "Female"),
    _voice(Provider.AMAZON, "Brian", "Brian (UK)", "Male"),
    _voice(Provider.AMAZON, "Russell", "Russell (AU)", "Male"),
    _voice(Provider.LEMONFOX, "sarah", "Sarah", "Female"),
    _voice(Provider.LEMONFOX, "heart", "Heart", "Female"),
    _voice(Provider.LEMONFOX, "michael", "Michael", "Male"),
    _voice(Provider.LEMONFOX, "liam", "Liam", "Male"),
    _voice(Provider.VIBEVOICE, "en-Alice_woman", "Alice", "Female"),
    _voice(Provider.VIBEVOICE, "en-Carter_man", "Carter", "Male"),
    _voice(Provider.VIBEVOICE, "en-Frank_man", "Frank", "Male"),
    _voice(Provider.VIBEVOICE, "en-Maya_woman", "Maya", "Female"),
]


def list_voices(filter_str: str | None = None) -> list[AvailableVoice]:
    """Catalog entries whose name, display name, gender or provider contains filter_str."""
    if not filter_str:
        return list(VOICES)
    needle = filter_str.lower()
    return [
        v for v in VOICES
        if needle in v.name.lower()
        or needle in v.display_name.lower()
        or needle == v.gender.lower()
        or needle == v.provider.value
    ]


def preview_voice(voice: str | VoiceSpec, synthesizer=None, speaking_rate: float = DEFAULT_SPEAKING_RATE) -> str:
    """Speak the preview sentence and return it as a data URI.

    Previews are never stored, so Polly voices use the sync path.
    """
    from readalong.synthesis import SpeechSynthesizer

    spec = voice if isinstance(voice, VoiceSpec) else VoiceSpec.parse(voice, speaking_rate)
    synthesizer = synthesizer or SpeechSynthesizer()
    logger.info("Previewing %s", spec.name)
    return synthesizer.synthesize(PREVIEW_TEXT, spec).audio_url
