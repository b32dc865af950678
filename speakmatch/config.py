"""
Paths and tunable parameters.

Settings the learner changes from the UI (language, TTS voice, XP multiplier)
live in the Settings record in storage. This module holds the lower-level
knobs: where data lives, recognition timing, admin session timeout. They are
read from config.json in the data directory, falling back to defaults.
"""

import hashlib
import json
import os
from pathlib import Path
from typing import Optional

# Directory for storing quizzes, cards, attempts, sessions and config JSON files.
DATA_DIR_ENV = "SPEAKMATCH_DATA_DIR"
DEFAULT_DATA_DIR = Path.cwd() / "speakmatch_data"
CONFIG_NAME = "config.json"

APP_NAME = "SpeakMatch French Practice"
TEMPLATE_ID = "speak-to-match"

# Languages offered by the quiz editor (code, label).
QUIZ_LANGUAGES = [
    ("fr-FR", "French (France)"),
    ("en-US", "English (US)"),
    ("es-ES", "Spanish (Spain)"),
]

# Accent options for gTTS, passed as its top-level-domain argument.
TTS_VOICES = [
    ("", "Default"),
    ("fr", "France"),
    ("ca", "Canada"),
]

PLAYBACK_RATES = [0.8, 1.0, 1.2]

DEFAULT_CONFIG = {
    "admin_password_sha256": hashlib.sha256(b"HikariFrench2026").hexdigest(),
    "admin_timeout_ms": 20 * 60 * 1000,
    "admin_poll_ms": 5000,
    "sample_rate": 16000,
    "frame_ms": 20,
    "energy_min": 200,
    "silence_ms": 800,
    "max_phrase_ms": 10000,
    "max_retries": 3,
    "watchdog_ms": 8000,
    "export_warn_bytes": 10 * 1024 * 1024,
}


def data_dir() -> Path:
    """
    Return the data directory, creating it if needed.

    SPEAKMATCH_DATA_DIR overrides the default of ./speakmatch_data.
    """
    override = os.environ.get(DATA_DIR_ENV)
    path = Path(override) if override else DEFAULT_DATA_DIR
    path.mkdir(parents=True, exist_ok=True)
    return path


def load_config(directory: Optional[Path] = None) -> dict:
    """
    Load configuration from config.json or return defaults if missing/invalid.

    Keys missing from the file are filled in from DEFAULT_CONFIG so older
    config files keep working after new knobs are added.
    """
    path = (directory or data_dir()) / CONFIG_NAME
    cfg = dict(DEFAULT_CONFIG)
    if path.exists():
        try:
            stored = json.loads(path.read_text(encoding="utf-8"))
            if isinstance(stored, dict):
                cfg.update(stored)
        except (OSError, ValueError) as e:
            print(f"[Config] Ignoring unreadable {path}: {e}")
    return cfg


def save_config(cfg: dict, directory: Optional[Path] = None) -> None:
    """
    Persist the configuration dictionary to config.json.
    """
    path = (directory or data_dir()) / CONFIG_NAME
    path.write_text(json.dumps(cfg, indent=2), encoding="utf-8")
