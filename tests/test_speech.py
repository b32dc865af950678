import threading
from types import SimpleNamespace

import numpy as np
import pytest

from speakmatch import recognition, speech
from speakmatch.errors import NoSpeechError, RecognitionError

# One 20 ms frame at 16 kHz.
LOUD = np.full(320, 0.3, dtype=np.float32)
QUIET = np.zeros(320, dtype=np.float32)


class FakeMic:
    def __init__(self, fail=None):
        self.fail = fail
        self.started = 0
        self.stopped = 0

    def start_stream(self, callback=None, level_callback=None):
        if self.fail:
            raise self.fail
        self.started += 1

    def stop_stream(self):
        self.stopped += 1


class Listener:
    """
    Collects what the manager reports back for each listen.
    """

    def __init__(self):
        self.results = []
        self.errors = []
        self.ends = 0

    def on_end(self):
        self.ends += 1


@pytest.fixture
def workers(monkeypatch):
    """
    Threads started by speech.py, so a test can wait for all of them.
    """
    started = []
    real_thread = threading.Thread

    def tracking_thread(*args, **kwargs):
        t = real_thread(*args, **kwargs)
        started.append(t)
        return t

    monkeypatch.setattr(speech, "threading", SimpleNamespace(Thread=tracking_thread, Lock=threading.Lock))
    return started


def wait_for(workers):
    # Workers can start more workers; keep going until the list stops growing.
    i = 0
    while i < len(workers):
        workers[i].join(timeout=2)
        assert not workers[i].is_alive()
        i += 1


@pytest.fixture
def listener():
    return Listener()


@pytest.fixture
def manager(monkeypatch, tmp_path, listener, workers):
    monkeypatch.setattr(speech, "input_device_available", lambda: True)
    m = speech.SpeechManager(
        on_end=listener.on_end,
        config={"frame_ms": 20, "silence_ms": 40},
        cache_dir=tmp_path,
    )
    m.mic = FakeMic()
    return m


def start(manager, listener):
    manager.start(listener.results.append, listener.errors.append)


def test_trailing_silence_transcribes_and_ends_once(manager, listener, workers, monkeypatch):
    calls = []

    def fake_transcribe(raw, language, rate, retries):
        calls.append((len(raw), language, rate))
        return "le chat dort"

    monkeypatch.setattr(recognition, "transcribe", fake_transcribe)
    start(manager, listener)
    for frame in (LOUD, QUIET, QUIET):
        manager._on_audio(frame)
    wait_for(workers)
    # Late frames and a second stop belong to no listen.
    manager._on_audio(LOUD)
    manager.stop()

    assert calls == [(3 * 640, "fr-FR", recognition.RATE)]
    assert listener.results == ["le chat dort"]
    assert listener.errors == []
    assert listener.ends == 1
    assert manager.mic.stopped == 1
    assert not manager.listening


def test_manual_stop_still_transcribes(manager, listener, workers, monkeypatch):
    monkeypatch.setattr(recognition, "transcribe", lambda *args: "bonjour")
    start(manager, listener)
    manager._on_audio(LOUD)
    manager.stop()
    wait_for(workers)

    assert listener.results == ["bonjour"]
    assert listener.ends == 1


def test_stop_without_speech_ends_without_transcribing(manager, listener, workers, monkeypatch):
    calls = []
    monkeypatch.setattr(recognition, "transcribe", lambda *args: calls.append(args) or "x")
    start(manager, listener)
    manager._on_audio(QUIET)
    manager.stop()
    wait_for(workers)

    assert calls == []
    assert listener.results == []
    assert listener.ends == 1


def test_no_speech_is_not_an_error(manager, listener, workers, monkeypatch):
    def fake_transcribe(*args):
        raise NoSpeechError("no speech")

    monkeypatch.setattr(recognition, "transcribe", fake_transcribe)
    start(manager, listener)
    manager._on_audio(LOUD)
    manager.stop()
    wait_for(workers)

    assert listener.errors == []
    assert listener.results == []
    assert listener.ends == 1


def test_recognition_error_is_reported(manager, listener, workers, monkeypatch):
    def fake_transcribe(*args):
        raise RecognitionError("network")

    monkeypatch.setattr(recognition, "transcribe", fake_transcribe)
    start(manager, listener)
    manager._on_audio(LOUD)
    manager.stop()
    wait_for(workers)

    assert listener.errors == ["network"]
    assert listener.ends == 1


def test_superseded_listen_drops_result_and_end(manager, listener, workers, monkeypatch):
    release = threading.Event()

    def slow_transcribe(*args):
        release.wait(timeout=2)
        return "ancienne réponse"

    monkeypatch.setattr(recognition, "transcribe", slow_transcribe)
    start(manager, listener)
    manager._on_audio(LOUD)
    manager.stop()

    # Microphone reset: a new listen starts while the old answer is in flight.
    start(manager, listener)
    release.set()
    wait_for(workers)

    assert listener.results == []
    assert listener.ends == 0
    assert manager.listening

    manager.stop()
    assert listener.ends == 1


def test_start_twice_is_ignored(manager, listener):
    start(manager, listener)
    start(manager, listener)
    assert manager.mic.started == 1


def test_mic_failure_reports_and_ends(manager, listener):
    manager.mic = FakeMic(fail=OSError("device busy"))
    start(manager, listener)

    assert listener.errors == ["device busy"]
    assert listener.ends == 1
    assert not manager.listening


def test_no_microphone(manager, listener):
    manager.available = False
    start(manager, listener)

    assert listener.errors == ["no microphone"]
    assert manager.mic.started == 0


def test_audio_override_plays_on_worker_and_falls_back_to_tts(manager, workers, monkeypatch):
    played_on = []
    spoken = []

    def broken_play(path, rate=1.0):
        played_on.append(threading.current_thread())
        raise ValueError("cannot decode")

    monkeypatch.setattr(speech, "play_file", broken_play)
    monkeypatch.setattr(manager, "cancel_audio", lambda: None)
    monkeypatch.setattr(manager, "speak", lambda text, voice=None, rate=1.0: spoken.append((text, voice, rate)))

    manager.play_data_url("data:audio/mpeg;base64,AAAA", rate=0.75, fallback_text="Le chat dort", voice="ca")
    wait_for(workers)

    assert played_on and played_on[0] is not threading.main_thread()
    assert spoken == [("Le chat dort", "ca", 0.75)]


def test_bad_data_url_without_fallback_stays_quiet(manager, workers, monkeypatch):
    spoken = []
    monkeypatch.setattr(manager, "cancel_audio", lambda: None)
    monkeypatch.setattr(manager, "speak", lambda *args, **kwargs: spoken.append(args))

    manager.play_data_url("https://example.com/a.mp3")
    wait_for(workers)

    assert spoken == []


def test_data_url_to_file_is_cached_by_content(tmp_path):
    first = speech.data_url_to_file("data:audio/wav;base64,UklGRg==", tmp_path)
    second = speech.data_url_to_file("data:audio/wav;base64,UklGRg==", tmp_path)

    assert first == second
    assert first.suffix == ".wav"
    assert first.read_bytes() == b"RIFF"
