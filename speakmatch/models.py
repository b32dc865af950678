"""
Data model: plain records stored as JSON.

Field names stay camelCase so the JSON written here is the same shape as
backup files exported by the browser version of the app.
"""

import time
import uuid
from dataclasses import asdict, dataclass, field, fields
from typing import List, Optional

DRAFT = "draft"
PUBLISHED = "published"


def now_ms() -> int:
    """
    Return the current time in milliseconds since the epoch.
    """
    return int(time.time() * 1000)


def new_id(prefix: str) -> str:
    """
    Return a fresh record id such as "card_3f2a9c...".
    """
    return f"{prefix}_{uuid.uuid4().hex}"


def _known(cls, data: dict) -> dict:
    """
    Keep only keys that are fields of the dataclass cls.

    Backups from other versions may carry extra keys; those are dropped
    instead of making the constructor fail.
    """
    names = {f.name for f in fields(cls)}
    return {k: v for k, v in data.items() if k in names}


# ---------------- Quiz ----------------

@dataclass
class QuizSettings:
    """
    Per-quiz options chosen in the editor.
    """
    language: str = "fr-FR"
    goalScore: int = 80
    shuffle: bool = True          # legacy flag, always written as True
    randomize: bool = False       # shuffle cards for every new run

    @classmethod
    def from_dict(cls, data: dict) -> "QuizSettings":
        return cls(**_known(cls, data or {}))


@dataclass
class Quiz:
    """
    A named collection of cards using the speak-to-match template.
    """
    id: str
    name: str
    createdAt: int
    settings: QuizSettings = field(default_factory=QuizSettings)
    templateId: str = "speak-to-match"
    updatedAt: Optional[int] = None
    status: str = DRAFT
    isTrashed: bool = False
    deletedAt: Optional[int] = None

    @property
    def version(self) -> int:
        """Timestamp of the last content change, used to invalidate sessions."""
        return self.updatedAt or self.createdAt

    @property
    def published(self) -> bool:
        return self.status == PUBLISHED

    @classmethod
    def from_dict(cls, data: dict) -> "Quiz":
        values = _known(cls, data)
        values["settings"] = QuizSettings.from_dict(data.get("settings") or {})
        values["status"] = values.get("status") or DRAFT
        values["isTrashed"] = bool(values.get("isTrashed", False))
        return cls(**values)

    def to_dict(self) -> dict:
        return asdict(self)


# ---------------- Card ----------------

@dataclass
class Card:
    """
    One image to describe plus the sentences accepted as answers.
    """
    id: str
    quizId: str
    image: str = ""
    targetSentence: str = ""
    acceptedSentences: List[str] = field(default_factory=list)
    preferredModelAnswer: Optional[str] = None  # sentence used for TTS / labels
    hint: Optional[str] = None
    audioOverride: Optional[str] = None         # data URL of uploaded audio

    @property
    def all_sentences(self) -> List[str]:
        return [self.targetSentence, *self.acceptedSentences]

    @property
    def model_answer(self) -> str:
        return self.preferredModelAnswer or self.targetSentence

    @classmethod
    def from_dict(cls, data: dict) -> "Card":
        values = _known(cls, data)
        accepted = values.get("acceptedSentences")
        values["acceptedSentences"] = list(accepted) if isinstance(accepted, list) else []
        return cls(**values)

    def to_dict(self) -> dict:
        return asdict(self)


# ---------------- Attempts & sessions ----------------

@dataclass
class Attempt:
    """
    One spoken answer and how it scored.
    """
    id: str
    cardId: str
    quizId: str
    timestamp: int
    coreScore: int
    accentScore: int
    passed: bool
    xpChange: int
    transcript: str

    @classmethod
    def from_dict(cls, data: dict) -> "Attempt":
        return cls(**_known(cls, data))

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class QuizSessionState:
    """
    Saved progress through a quiz so a run can be resumed later.
    """
    quizId: str
    currentIndex: int = 0
    sessionAttempts: List[Attempt] = field(default_factory=list)
    startTime: int = 0
    pausedAt: int = 0
    quizUpdatedAt: Optional[int] = None   # quiz version the run was started on
    shuffledCardIds: Optional[List[str]] = None

    def is_within(self, card_count: int) -> bool:
        """
        True when the stored index still points at an existing card.
        """
        return 0 <= self.currentIndex < card_count

    @classmethod
    def from_dict(cls, data: dict) -> "QuizSessionState":
        values = _known(cls, data)
        values["sessionAttempts"] = [
            Attempt.from_dict(a) for a in data.get("sessionAttempts") or []
        ]
        values["currentIndex"] = int(values.get("currentIndex", 0))
        return cls(**values)

    def to_dict(self) -> dict:
        return asdict(self)


# ---------------- Stats & settings ----------------

@dataclass
class UserStats:
    """
    Totals shown in the sidebar and on the dashboard.
    """
    xp: int = 0
    level: int = 1
    totalSessions: int = 0
    streak: int = 0
    lastActive: int = field(default_factory=now_ms)

    @classmethod
    def from_dict(cls, data: dict) -> "UserStats":
        return cls(**_known(cls, data or {}))

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class Settings:
    """
    Learner-facing preferences.
    """
    uiLanguage: str = "en"
    speechLang: str = "fr-FR"
    xpMultiplier: float = 1
    ttsVoice: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict) -> "Settings":
        return cls(**_known(cls, data or {}))

    def to_dict(self) -> dict:
        return asdict(self)
