import numpy as np
import pytest
import speech_recognition as sr

from speakmatch import recognition
from speakmatch.errors import NoSpeechError, RecognitionError

FRAME = 320  # 20 ms at 16 kHz


def frame(level):
    return recognition.to_pcm16(np.full(FRAME, level, dtype="float32"))


def test_to_pcm16_clips_and_scales():
    pcm = recognition.to_pcm16(np.array([0.0, 1.0, -1.0, 2.0], dtype="float32"))
    assert np.frombuffer(pcm, dtype="<i2").tolist() == [0, 32767, -32767, 32767]


def test_frame_energy():
    assert recognition.frame_energy(b"") == 0
    assert recognition.frame_energy(frame(0.0)) == 0
    assert recognition.frame_energy(frame(0.5)) == 16383


def test_segmenter_waits_for_trailing_silence():
    seg = recognition.UtteranceSegmenter(frame_ms=20, energy_min=200, silence_ms=100, max_phrase_ms=10_000)
    # Leading silence never completes the answer.
    assert not any(seg.feed(frame(0.0)) for _ in range(20))
    assert not seg.heard_speech
    assert not seg.feed(frame(0.3))
    assert seg.heard_speech
    results = [seg.feed(frame(0.0)) for _ in range(5)]
    assert results == [False, False, False, False, True]
    assert len(seg.audio()) == 26 * FRAME * 2

    seg.reset()
    assert seg.audio() == b""
    assert not seg.heard_speech


def test_segmenter_stops_at_max_length():
    seg = recognition.UtteranceSegmenter(frame_ms=20, energy_min=200, silence_ms=800, max_phrase_ms=100)
    results = [seg.feed(frame(0.3)) for _ in range(5)]
    assert results[-1] is True
    assert not any(results[:-1])


def test_transcribe_normalizes_text(monkeypatch):
    monkeypatch.setattr(recognition, "recognize_google_raw", lambda raw, language, rate: "  le  chat dort ")
    assert recognition.transcribe(b"\x00\x00", "fr-FR") == "le chat dort"


def test_transcribe_unknown_value_is_no_speech(monkeypatch):
    def fake(raw, language, rate):
        raise sr.UnknownValueError()

    monkeypatch.setattr(recognition, "recognize_google_raw", fake)
    with pytest.raises(NoSpeechError):
        recognition.transcribe(b"\x00\x00", "fr-FR")


def test_transcribe_retries_request_errors(monkeypatch):
    monkeypatch.setattr(recognition, "RETRY_DELAY_S", 0)
    calls = []

    def flaky(raw, language, rate):
        calls.append(language)
        if len(calls) < 3:
            raise sr.RequestError("network down")
        return "Bonjour"

    monkeypatch.setattr(recognition, "recognize_google_raw", flaky)
    assert recognition.transcribe(b"\x00\x00", "fr-FR", retries=3) == "Bonjour"
    assert calls == ["fr-FR"] * 3


def test_transcribe_gives_up_after_retries(monkeypatch):
    monkeypatch.setattr(recognition, "RETRY_DELAY_S", 0)

    def down(raw, language, rate):
        raise sr.RequestError("network down")

    monkeypatch.setattr(recognition, "recognize_google_raw", down)
    with pytest.raises(RecognitionError, match="network down"):
        recognition.transcribe(b"\x00\x00", "fr-FR", retries=2)
