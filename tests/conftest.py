import os
import sys

import pytest
import types

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

# Test machines often have no PortAudio; sounddevice raises OSError on import then.
try:
    import sounddevice  # noqa: F401
except OSError:
    sounddevice = types.ModuleType("sounddevice")

    class _StubPortAudioError(Exception):
        pass

    class _StubInputStream:
        def __init__(self, *_args, **_kwargs):
            pass

        def start(self):
            pass

        def stop(self):
            pass

        def close(self):
            pass

    sounddevice.PortAudioError = _StubPortAudioError
    sounddevice.InputStream = _StubInputStream
    sounddevice.query_devices = lambda *_args, **_kwargs: []
    sounddevice.play = lambda *_args, **_kwargs: None
    sounddevice.stop = lambda *_args, **_kwargs: None
    sys.modules["sounddevice"] = sounddevice

from speakmatch.auth import AdminGate
from speakmatch.config import DEFAULT_CONFIG
from speakmatch.library import Library
from speakmatch.models import Card, Quiz, QuizSettings, PUBLISHED
from speakmatch.storage import Store

ADMIN_PASSWORD = "HikariFrench2026"


def make_quiz(quiz_id="quiz_1", name="Au café", created=1_000_000, **kwargs):
    settings = kwargs.pop("settings", QuizSettings(language="fr-FR", goalScore=80))
    return Quiz(id=quiz_id, name=name, createdAt=created, settings=settings, **kwargs)


def make_cards(quiz_id="quiz_1", count=3):
    return [
        Card(
            id=f"{quiz_id}_card_{i}",
            quizId=quiz_id,
            image="",
            targetSentence=f"Le chat numéro {i} dort",
            acceptedSentences=[f"Un chat {i} dort"],
        )
        for i in range(count)
    ]


@pytest.fixture
def store(tmp_path):
    return Store(tmp_path / "data")


@pytest.fixture
def library(store):
    quiz = make_quiz(status=PUBLISHED)
    store.save_quizzes([quiz])
    store.save_cards(make_cards())
    # Keep card order predictable when a quiz is randomized.
    return Library(store, shuffle=lambda cards: list(reversed(cards)))


@pytest.fixture
def gate(store):
    return AdminGate(store, DEFAULT_CONFIG["admin_password_sha256"], DEFAULT_CONFIG["admin_timeout_ms"])
