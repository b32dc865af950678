"""
Local JSON storage for quizzes, cards, attempts, stats, settings and sessions.

Every collection is one JSON file in the data directory. Reads never raise:
a missing or corrupt file yields the default value, the same way the notes
app handled notes.json. Writes overwrite the whole file.
"""

import datetime
import json
import sys
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple

from .errors import BackupImportError
from .models import Attempt, Card, Quiz, QuizSessionState, Settings, UserStats

QUIZZES_FILE = "quizzes.json"
CARDS_FILE = "cards.json"
ATTEMPTS_FILE = "attempts.json"
STATS_FILE = "stats.json"
SETTINGS_FILE = "settings.json"
SESSIONS_FILE = "sessions.json"
LAST_QUIZ_FILE = "last_quiz.json"
ADMIN_SESSION_FILE = "admin_session.json"

BLOB_WARNING = (
    "Warning: This backup contains temporary 'blob:' links instead of embedded "
    "images. Images may not load. Import anyway?"
)
IMPORTED_SUFFIX = " (imported)"


def backup_filename(today: Optional[datetime.date] = None) -> str:
    """
    Default file name offered when exporting a backup.
    """
    today = today or datetime.date.today()
    return f"speakmatch-backup-{today.isoformat()}.json"


def _check_stats(stats: UserStats) -> None:
    """
    raises ValueError: when a counter in imported stats is not a number.
    """
    for name in ("xp", "level", "totalSessions", "streak", "lastActive"):
        value = getattr(stats, name)
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ValueError(f"stats.{name} must be a number, got {value!r}")


class Store:
    """
    Data access object over the JSON files in one directory.
    """

    def __init__(self, directory: Path):
        self.dir = Path(directory)
        self.dir.mkdir(parents=True, exist_ok=True)

    # ----- raw helpers -----
    def _read(self, name: str, default):
        path = self.dir / name
        if not path.exists():
            return default
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            # On error, fall back to the default instead of crashing.
            print(f"[Storage] Could not read {name}: {e}", file=sys.stderr)
            return default

    def _write(self, name: str, value) -> None:
        (self.dir / name).write_text(json.dumps(value, indent=2, ensure_ascii=False), encoding="utf-8")

    def _remove(self, name: str) -> None:
        path = self.dir / name
        if path.exists():
            path.unlink()

    # ----- quizzes / cards / attempts -----
    def get_quizzes(self) -> List[Quiz]:
        return [Quiz.from_dict(q) for q in self._read(QUIZZES_FILE, [])]

    def save_quizzes(self, quizzes: List[Quiz]) -> None:
        self._write(QUIZZES_FILE, [q.to_dict() for q in quizzes])

    def get_cards(self) -> List[Card]:
        return [Card.from_dict(c) for c in self._read(CARDS_FILE, [])]

    def save_cards(self, cards: List[Card]) -> None:
        self._write(CARDS_FILE, [c.to_dict() for c in cards])

    def get_attempts(self) -> List[Attempt]:
        return [Attempt.from_dict(a) for a in self._read(ATTEMPTS_FILE, [])]

    def save_attempts(self, attempts: List[Attempt]) -> None:
        self._write(ATTEMPTS_FILE, [a.to_dict() for a in attempts])

    # ----- stats / settings -----
    def get_stats(self) -> UserStats:
        return UserStats.from_dict(self._read(STATS_FILE, {}))

    def save_stats(self, stats: UserStats) -> None:
        self._write(STATS_FILE, stats.to_dict())

    def get_settings(self) -> Settings:
        return Settings.from_dict(self._read(SETTINGS_FILE, {}))

    def save_settings(self, settings: Settings) -> None:
        self._write(SETTINGS_FILE, settings.to_dict())

    # ----- sessions -----
    def _sessions(self) -> Dict[str, dict]:
        raw = self._read(SESSIONS_FILE, {})
        return raw if isinstance(raw, dict) else {}

    def get_session(self, quiz_id: str) -> Optional[QuizSessionState]:
        data = self._sessions().get(quiz_id)
        if not data:
            return None
        try:
            return QuizSessionState.from_dict(data)
        except (TypeError, ValueError) as e:
            print(f"[Storage] Dropping unreadable session for {quiz_id}: {e}", file=sys.stderr)
            return None

    def save_session(self, session: QuizSessionState) -> None:
        sessions = self._sessions()
        sessions[session.quizId] = session.to_dict()
        self._write(SESSIONS_FILE, sessions)

    def clear_session(self, quiz_id: str) -> None:
        sessions = self._sessions()
        if sessions.pop(quiz_id, None) is not None:
            self._write(SESSIONS_FILE, sessions)

    # ----- last quiz -----
    def set_last_quiz(self, quiz_id: Optional[str]) -> None:
        if quiz_id:
            self._write(LAST_QUIZ_FILE, quiz_id)
        else:
            self._remove(LAST_QUIZ_FILE)

    def get_last_quiz(self) -> Optional[str]:
        value = self._read(LAST_QUIZ_FILE, None)
        return value if isinstance(value, str) else None

    # ----- admin session -----
    def get_admin_session(self) -> Optional[dict]:
        value = self._read(ADMIN_SESSION_FILE, None)
        return value if isinstance(value, dict) else None

    def save_admin_session(self, session: dict) -> None:
        self._write(ADMIN_SESSION_FILE, session)

    def clear_admin_session(self) -> None:
        self._remove(ADMIN_SESSION_FILE)

    # ----- backup -----
    def generate_backup(self) -> Tuple[str, int]:
        """
        Serialize everything to one JSON document.

        return: (json text, size in bytes of its UTF-8 encoding)
        """
        data = {
            "quizzes": [q.to_dict() for q in self.get_quizzes()],
            "cards": [c.to_dict() for c in self.get_cards()],
            "attempts": [a.to_dict() for a in self.get_attempts()],
            "stats": self.get_stats().to_dict(),
            "settings": self.get_settings().to_dict(),
            "sessions": self._sessions(),
        }
        text = json.dumps(data, indent=2, ensure_ascii=False)
        return text, len(text.encode("utf-8"))

    def write_backup(self, text: str, path: Path) -> None:
        Path(path).write_text(text, encoding="utf-8")

    def import_backup(self, text: str, confirm: Optional[Callable[[str], bool]] = None) -> bool:
        """
        Merge a backup into the current data.

        - quizzes with a known id replace the stored one; new quizzes get
          " (imported)" appended while their name collides,
        - cards and attempts are added only when their id is new,
        - stats are taken when the backup has more XP,
        - settings are merged over the current ones.

        param text: Backup JSON text.
        param confirm: Asked before importing backups with blob: image links.
        return: False if the user declined the import, True once merged.
        raises BackupImportError: when the text is not a valid backup.
        """
        if '"image":"blob:' in text or '"image": "blob:' in text:
            if confirm is None or not confirm(BLOB_WARNING):
                print("[Storage] Import cancelled (blob images)")
                return False

        try:
            data = json.loads(text)
            if not isinstance(data, dict):
                raise ValueError("backup root must be an object")
            imported_quizzes = [Quiz.from_dict(q) for q in data.get("quizzes") or []]
            imported_cards = [Card.from_dict(c) for c in data.get("cards") or []]
            imported_attempts = [Attempt.from_dict(a) for a in data.get("attempts") or []]
            for iq in imported_quizzes:
                if not isinstance(iq.id, str) or not isinstance(iq.name, str):
                    raise ValueError("quiz id and name must be strings")
            imported_stats = UserStats.from_dict(data["stats"]) if data.get("stats") else None
            if imported_stats is not None:
                _check_stats(imported_stats)
            imported_settings = data.get("settings")
            if imported_settings is not None and not isinstance(imported_settings, dict):
                raise ValueError("settings must be an object")
        except (ValueError, TypeError, AttributeError, KeyError) as e:
            print(f"[Storage] Import failed: {e}", file=sys.stderr)
            raise BackupImportError(
                "Failed to import backup. The file format may be invalid."
            ) from e

        quizzes = self.get_quizzes()
        for iq in imported_quizzes:
            idx = next((i for i, q in enumerate(quizzes) if q.id == iq.id), None)
            if idx is not None:
                quizzes[idx] = iq
                continue
            names = {q.name for q in quizzes}
            while iq.name in names:
                iq.name += IMPORTED_SUFFIX
            quizzes.append(iq)

        cards = self.get_cards()
        card_ids = {c.id for c in cards}
        cards.extend(c for c in imported_cards if c.id not in card_ids)

        attempts = self.get_attempts()
        attempt_ids = {a.id for a in attempts}
        attempts.extend(a for a in imported_attempts if a.id not in attempt_ids)

        self.save_quizzes(quizzes)
        self.save_cards(cards)
        self.save_attempts(attempts)

        if imported_stats and imported_stats.xp > self.get_stats().xp:
            self.save_stats(imported_stats)

        if imported_settings:
            merged = self.get_settings().to_dict()
            merged.update(imported_settings)
            self.save_settings(Settings.from_dict(merged))

        print(f"[Storage] Imported {len(imported_quizzes)} quizzes, "
              f"{len(imported_cards)} cards, {len(imported_attempts)} attempts")
        return True
