# ===============================
# Transcription: framing + Google
# ===============================
#
# - Float microphone chunks are converted to 16-bit PCM frames.
# - An energy gate splits one spoken answer out of the stream: the answer
#   ends after a short trailing silence, or when it runs too long.
# - The finished answer is sent to the Google Web Speech API through the
#   speech_recognition library, with a few retries on request errors.

import struct
import time

import numpy as np
import speech_recognition as sr

from .errors import NoSpeechError, RecognitionError

# Audio framing constants
RATE = 16000
FRAME_MS = 20
BYTES_PER_SAMPLE = 2

# Transcription logic parameters
RETRY_LIMIT = 3
RETRY_DELAY_S = 0.25
ENERGY_MIN = 200
SILENCE_MS = 800
MAX_PHRASE_MS = 10000


def to_pcm16(chunk_np: np.ndarray) -> bytes:
    """
    Convert float samples (-1.0 to 1.0) to little-endian 16-bit PCM bytes.
    """
    clipped = np.clip(chunk_np, -1.0, 1.0)
    return (clipped * 32767).astype("<i2").tobytes()


def frame_energy(frame_bytes: bytes) -> int:
    """
    Compute average absolute sample value (a basic energy measure)
    for a frame of 16-bit PCM audio.

    param frame_bytes: Raw PCM data.
    return: Average magnitude across samples (integer).
    """
    n = len(frame_bytes) // 2
    if n == 0:
        return 0
    samples = struct.unpack(f"<{n}h", frame_bytes[: n * 2])
    return sum(abs(s) for s in samples) // n


def normalize_transcript(text: str) -> str:
    """
    Collapse whitespace in what the recognizer returned.
    """
    return " ".join((text or "").split())


class UtteranceSegmenter:
    """
    Collects PCM frames for one spoken answer.

    feed() returns True once the answer is complete: speech was heard and
    then silence_ms of quiet followed, or max_phrase_ms of audio piled up.
    Leading silence alone never completes an answer.
    """

    def __init__(self, frame_ms=FRAME_MS, energy_min=ENERGY_MIN,
                 silence_ms=SILENCE_MS, max_phrase_ms=MAX_PHRASE_MS):
        self.frame_ms = frame_ms
        self.energy_min = energy_min
        self.silence_ms = silence_ms
        self.max_phrase_ms = max_phrase_ms
        self.frames = []
        self.heard_speech = False
        self.quiet_ms = 0
        self.total_ms = 0

    def feed(self, frame_bytes: bytes) -> bool:
        self.frames.append(frame_bytes)
        self.total_ms += self.frame_ms
        if frame_energy(frame_bytes) >= self.energy_min:
            self.heard_speech = True
            self.quiet_ms = 0
        elif self.heard_speech:
            self.quiet_ms += self.frame_ms

        if self.heard_speech and self.quiet_ms >= self.silence_ms:
            return True
        return self.total_ms >= self.max_phrase_ms

    def audio(self) -> bytes:
        return b"".join(self.frames)

    def reset(self) -> None:
        self.frames.clear()
        self.heard_speech = False
        self.quiet_ms = 0
        self.total_ms = 0


# Global speech recognizer instance (Google Web API)
recognizer = sr.Recognizer()


def recognize_google_raw(raw_pcm: bytes, language: str, rate: int = RATE) -> str:
    """
    Send raw 16-bit PCM audio to Google Web Speech API using
    the speech_recognition library, and return the recognized text.
    """
    audio = sr.AudioData(raw_pcm, rate, BYTES_PER_SAMPLE)
    return recognizer.recognize_google(audio, language=language)


def transcribe(raw_pcm: bytes, language: str, rate: int = RATE,
               retries: int = RETRY_LIMIT) -> str:
    """
    Transcribe one answer, with retry logic.

    - Unknown speech is not retried; it raises NoSpeechError.
    - Request (network/API) errors are retried up to `retries` attempts.

    return: Normalized transcript.
    raises RecognitionError: when every attempt failed.
    """
    last_error = None
    for attempt in range(1, max(1, retries) + 1):
        try:
            text = recognize_google_raw(raw_pcm, language, rate)
            return normalize_transcript(text)
        except sr.UnknownValueError as e:
            print("[Speech] Warning: could not understand speech")
            raise NoSpeechError("speech not understood") from e
        except sr.RequestError as e:
            last_error = e
            if attempt < retries:
                print(f"[Speech] Warning: retry {attempt}/{retries}")
                time.sleep(RETRY_DELAY_S)
            else:
                print(f"[Speech] Warning: failed after {retries} attempts: {e}")
    raise RecognitionError(f"api {last_error}")
