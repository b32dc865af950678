# =========================
# SpeechManager: Mic + STT + TTS
# =========================
#
# - Captures microphone audio in small chunks using sounddevice.
# - Cuts one spoken answer out of the stream and transcribes it on a
#   background thread (see recognition.py).
# - Speaks model answers with gTTS; the mp3 is decoded by pygame and played
#   back through sounddevice so the playback rate can be changed.

import base64
import hashlib
import os
import sys
import tempfile
import threading
from pathlib import Path
from typing import Callable, Optional

# sounddevice: live audio recording with NumPy arrays, supports callbacks
import sounddevice as sd

# numpy: basic numerical array operations, used for mic level and PCM conversion
import numpy as np

import pygame
from gtts import gTTS

from . import recognition
from .errors import NoSpeechError, RecognitionError


# ===========================================================
# Microphone input class: reads audio in short chunks
# ===========================================================
class MicrophoneInput:
    """
    Wraps a sounddevice InputStream to capture mono audio in small chunks.

    - Calls audio_callback every time the sounddevice stream has new audio.
    - Computes an RMS level for a simple mic level meter.
    - Forwards the audio chunk to a user callback for transcription.
    """

    def __init__(self, sample_rate=recognition.RATE, chunk_dur=recognition.FRAME_MS / 1000):
        """
        Initialize microphone input parameters.

        param sample_rate: Sampling rate in Hz.
        param chunk_dur: Duration of each audio chunk in seconds.
        """
        self.rate = sample_rate                         # Audio sample rate (Hz)
        self.chunk_size = int(self.rate * chunk_dur)    # Samples per chunk
        self.stream = None                              # sounddevice InputStream instance
        self.callback = None                            # Callback for processed audio chunks
        self.level_callback = None                      # Callback for mic level (RMS) updates

    def audio_callback(self, indata, frames, time_info, status):
        """
        sounddevice callback: flatten the buffer, report RMS, forward audio.
        """
        if status:
            print(f"[Speech] Stream status: {status}")

        audio_chunk = indata.flatten()

        if self.level_callback:
            rms = float(np.sqrt(np.mean(audio_chunk ** 2))) if audio_chunk.size else 0.0
            self.level_callback(rms)

        if self.callback:
            self.callback(audio_chunk)

    def start_stream(self, callback=None, level_callback=None):
        """
        Start the microphone stream and register callbacks.

        :param callback: Function taking one NumPy array of audio samples (float32).
        :param level_callback: Function taking a float RMS level for visual feedback.
        """
        self.callback = callback
        self.level_callback = level_callback

        self.stream = sd.InputStream(
            channels=1,                     # Mono input
            samplerate=self.rate,           # Sample rate in Hz
            blocksize=self.chunk_size,      # One frame per callback
            dtype="float32",
            callback=self.audio_callback,   # Called whenever new audio arrives
        )
        self.stream.start()
        print("[Speech] Microphone stream started")

    def stop_stream(self):
        """
        Stop and close the microphone stream if it is currently running.
        """
        if self.stream:
            self.stream.stop()
            self.stream.close()
            self.stream = None
            print("[Speech] Microphone stream stopped")


def input_device_available() -> bool:
    """
    True if sounddevice can see at least one input device.
    """
    try:
        devices = sd.query_devices()
    except (sd.PortAudioError, OSError) as e:
        print(f"[Speech] Audio device error: {e}", file=sys.stderr)
        return False
    return any(d.get("max_input_channels", 0) > 0 for d in devices)


# ===========================================================
# Speech manager used by the quiz player
# ===========================================================
class SpeechManager:
    """
    One-answer-at-a-time speech recognition plus text-to-speech.

    Callbacks run on worker threads; the Tk side must hop back to the main
    thread (root.after) before touching widgets.
    """

    def __init__(self, language: str = "fr-FR",
                 on_end: Optional[Callable[[], None]] = None,
                 config: Optional[dict] = None,
                 cache_dir: Optional[Path] = None):
        cfg = config or {}
        self.language = language
        self.on_end = on_end
        self.rate = int(cfg.get("sample_rate", recognition.RATE))
        self.retries = int(cfg.get("max_retries", recognition.RETRY_LIMIT))
        self.segmenter = recognition.UtteranceSegmenter(
            frame_ms=int(cfg.get("frame_ms", recognition.FRAME_MS)),
            energy_min=int(cfg.get("energy_min", recognition.ENERGY_MIN)),
            silence_ms=int(cfg.get("silence_ms", recognition.SILENCE_MS)),
            max_phrase_ms=int(cfg.get("max_phrase_ms", recognition.MAX_PHRASE_MS)),
        )
        self.mic = MicrophoneInput(
            sample_rate=self.rate,
            chunk_dur=self.segmenter.frame_ms / 1000,
        )
        self.available = input_device_available()
        self.cache_dir = Path(cache_dir or tempfile.gettempdir()) / "tts_cache"
        self._lock = threading.Lock()
        self._listening = False
        self._generation = 0
        self._on_result: Optional[Callable[[str], None]] = None
        self._on_error: Optional[Callable[[str], None]] = None
        self.level_callback: Optional[Callable[[float], None]] = None

    # ----- recognition -----
    def start(self, on_result: Callable[[str], None], on_error: Callable[[str], None]) -> None:
        """
        Start listening for one answer.

        on_result(text) fires with the transcript, on_error(message) for
        microphone/API failures other than "no speech", then on_end() once.
        """
        if not self.available:
            on_error("no microphone")
            return
        with self._lock:
            if self._listening:
                print("[Speech] Speech recognition already started")
                return
            self._listening = True
            self._generation += 1
            self.segmenter.reset()
            self._on_result, self._on_error = on_result, on_error
        try:
            self.mic.start_stream(callback=self._on_audio, level_callback=self.level_callback)
        except (sd.PortAudioError, OSError) as e:
            print(f"[Speech] Failed to start microphone: {e}", file=sys.stderr)
            with self._lock:
                self._listening = False
            on_error(str(e))
            self._fire_end(self._generation)

    def stop(self) -> None:
        """
        Manual stop: whatever speech was captured so far is still transcribed.
        """
        self._finish_capture()

    def _on_audio(self, chunk_np) -> None:
        if not self._listening:
            return
        if self.segmenter.feed(recognition.to_pcm16(chunk_np)):
            # The audio callback must not block; close the stream elsewhere.
            threading.Thread(target=self._finish_capture, daemon=True).start()

    def _finish_capture(self) -> None:
        with self._lock:
            if not self._listening:
                return
            self._listening = False
            generation = self._generation
            raw = self.segmenter.audio()
            heard = self.segmenter.heard_speech
            on_result, on_error = self._on_result, self._on_error
        try:
            self.mic.stop_stream()
        except (sd.PortAudioError, OSError) as e:
            print(f"[Speech] Speech recognition failed to stop: {e}", file=sys.stderr)

        if not heard:
            self._fire_end(generation)
            return
        threading.Thread(
            target=self._transcribe,
            args=(raw, generation, on_result, on_error),
            daemon=True,
        ).start()

    def _transcribe(self, raw, generation, on_result, on_error) -> None:
        try:
            text = recognition.transcribe(raw, self.language, self.rate, self.retries)
            if text and generation == self._generation and on_result:
                on_result(text)
        except NoSpeechError:
            pass
        except RecognitionError as e:
            if generation == self._generation and on_error:
                on_error(str(e))
        finally:
            self._fire_end(generation)

    def _fire_end(self, generation: int) -> None:
        # A listen that was superseded by a newer start() ends silently.
        if generation != self._generation or not self.on_end:
            return
        try:
            self.on_end()
        except Exception as e:
            print(f"[Speech] Error in on_end callback: {e}", file=sys.stderr)

    @property
    def listening(self) -> bool:
        return self._listening

    # ----- text to speech -----
    def _tts_path(self, text: str, lang: str, voice: Optional[str]) -> Path:
        key = hashlib.sha1(f"{lang}|{voice or ''}|{text}".encode("utf-8")).hexdigest()
        return self.cache_dir / f"{key}.mp3"

    def synthesize(self, text: str, voice: Optional[str] = None) -> Path:
        """
        Generate (or reuse) an mp3 of text in the quiz language.
        """
        lang = self.language.split("-")[0] or "fr"
        path = self._tts_path(text, lang, voice)
        if not path.exists():
            self.cache_dir.mkdir(parents=True, exist_ok=True)
            kwargs = {"tld": voice} if voice else {}
            gTTS(text=text, lang=lang, **kwargs).save(str(path))
        return path

    def speak(self, text: str, voice: Optional[str] = None, rate: float = 1.0) -> None:
        """
        Say text aloud on a background thread (gTTS needs the network).
        """
        self.cancel_audio()

        def run():
            try:
                play_file(self.synthesize(text, voice), rate)
            except Exception as e:
                print(f"[Speech] TTS failed: {e}", file=sys.stderr)

        threading.Thread(target=run, daemon=True).start()

    def play_data_url(self, data_url: str, rate: float = 1.0,
                      fallback_text: Optional[str] = None, voice: Optional[str] = None) -> None:
        """
        Play an uploaded audio override; fall back to TTS if it cannot be decoded.
        """
        self.cancel_audio()

        def run():
            try:
                play_file(data_url_to_file(data_url, self.cache_dir), rate)
            except (ValueError, OSError, pygame.error) as e:
                print(f"[Speech] Audio override failed, using TTS: {e}", file=sys.stderr)
                if fallback_text:
                    self.speak(fallback_text, voice, rate)

        threading.Thread(target=run, daemon=True).start()

    def cancel_audio(self) -> None:
        sd.stop()


def data_url_to_file(data_url: str, directory: Path) -> Path:
    """
    Write the payload of a base64 data URL to a cached file and return its path.
    """
    header, sep, payload = data_url.partition(",")
    if not sep or ";base64" not in header:
        raise ValueError("not a base64 data URL")
    raw = base64.b64decode(payload)
    mime = header[5:].split(";")[0]
    ext = {"audio/mpeg": ".mp3", "audio/mp3": ".mp3", "audio/wav": ".wav",
           "audio/x-wav": ".wav", "audio/ogg": ".ogg"}.get(mime, ".bin")
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / (hashlib.sha1(raw).hexdigest() + ext)
    if not path.exists():
        path.write_bytes(raw)
    return path


def play_file(path: Path, rate: float = 1.0) -> None:
    """
    Decode an audio file with pygame and play it through sounddevice.

    The rate is applied by playing the samples at a scaled sample rate.
    """
    if not pygame.mixer.get_init():
        pygame.mixer.init()
    frequency, _size, _channels = pygame.mixer.get_init()
    sound = pygame.mixer.Sound(os.fspath(path))
    samples = pygame.sndarray.array(sound)
    sd.play(samples, samplerate=int(frequency * rate))
