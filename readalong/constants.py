"""All magic numbers and configuration constants."""

# Per-provider character limits for one synthesis request
OPENAI_MAX_CHUNK_CHARS = 4000        # API hard limit is 4096
LEMONFOX_MAX_CHUNK_CHARS = 4000
POLLY_SYNC_MAX_CHUNK_CHARS = 2800    # whole SSML request; SynthesizeSpeech bills up to 3000
POLLY_ASYNC_MAX_CHUNK_CHARS = 100000 # whole SSML request; StartSpeechSynthesisTask limit
VIBEVOICE_MAX_CHUNK_CHARS = 5000

# Byte rates used to estimate duration when a provider reports none
OPENAI_MP3_BYTES_PER_SECOND = 20000  # 160 kbps
POLLY_MP3_BYTES_PER_SECOND = 6000    # 48 kbps at 24 kHz
LEMONFOX_MP3_BYTES_PER_SECOND = 16000
VIBEVOICE_WAV_BYTES_PER_SECOND = 48000  # 24 kHz, 16-bit mono

SPEAKING_RATE_MIN = 0.25
SPEAKING_RATE_MAX = 4.0
DEFAULT_SPEAKING_RATE = 1.0

POLL_INTERVAL_SECONDS = 5.0           # fixed interval between status checks
POLL_TIMEOUT_SECONDS = 15 * 60        # overall wall-clock budget per job
POLL_MAX_TRANSIENT_ERRORS = 3         # consecutive status-check failures tolerated

MAX_PARALLEL_REQUESTS = 8             # chunk fan-out width
REQUEST_TIMEOUT_SECONDS = 60.0        # per-call network timeout

OPENAI_TTS_MODEL = "tts-1"
LEMONFOX_BASE_URL = "https://api.lemonfox.ai/v1"
LEMONFOX_MODEL = "tts-1"
POLLY_ENGINE = "neural"
VIBEVOICE_SPACE_URL = "https://neuralfalcon-vibevoice-colab.hf.space"
VIBEVOICE_ENDPOINT = "generate_podcast_with_timestamps"

DEFAULT_VOICE = "openai/alloy"
PREVIEW_TEXT = "Hello! This is a preview of my voice."
OUTPUT_DIR = "output"
DOCUMENTS_SUBDIR = "documents"
BLOBS_SUBDIR = "blobs"
VERSION = "0.1.0"
