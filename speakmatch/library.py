"""
Application controller: quizzes, sessions, attempts and stats.

Holds the in-memory collections, writes them back through Store after every
change, and knows the rules for resuming a quiz run. The Tk layer only calls
into this class and renders what it returns.
"""

import datetime
import math
from dataclasses import dataclass, field, replace
from typing import Callable, Dict, List, Optional, Tuple

from .models import Attempt, Card, Quiz, QuizSessionState, Settings, UserStats, now_ms
from .scoring import shuffle_cards
from .storage import Store

# Grace period when comparing a saved session with the quiz version.
STALE_SESSION_GRACE_MS = 1000
# Estimated speaking time per attempt, for the "practice time" tile.
PRACTICE_MS_PER_ATTEMPT = 15000
WEAKEST_COUNT = 3


def level_for_xp(xp: int) -> int:
    """
    Level grows with the square root of XP: 0-99 -> 1, 100-399 -> 2, ...
    """
    return int(math.floor(math.sqrt(xp / 100))) + 1


def next_streak(streak: int, last_active_ms: int, now: int) -> int:
    """
    Day streak after an attempt at time now.

    Same calendar day keeps the streak (at least 1), the following day adds
    one, any longer gap restarts at 1.
    """
    last_day = datetime.date.fromtimestamp(last_active_ms / 1000)
    today = datetime.date.fromtimestamp(now / 1000)
    gap = (today - last_day).days
    if gap <= 0:
        return max(1, streak)
    if gap == 1:
        return streak + 1
    return 1


@dataclass
class LaunchedQuiz:
    """
    What the player needs to run a quiz: the quiz, its card order and the
    session it starts from.
    """
    quiz: Quiz
    cards: List[Card]
    session: QuizSessionState
    resumed: bool = False


@dataclass
class SessionResults:
    attempts: List[Attempt] = field(default_factory=list)
    xpGained: int = 0
    timeSpent: int = 0

    @property
    def accuracy(self) -> int:
        return average_core(self.attempts)


@dataclass
class CardStat:
    card: Card
    best_core: int
    attempts: int
    last_practiced: Optional[int]


def average_core(attempts: List[Attempt]) -> int:
    if not attempts:
        return 0
    return int(math.floor(sum(a.coreScore for a in attempts) / len(attempts) + 0.5))


class Library:
    """
    In-memory state of the app, persisted through a Store.
    """

    def __init__(self, store: Store, shuffle: Callable[[List[Card]], List[Card]] = shuffle_cards):
        self.store = store
        self.shuffle = shuffle
        self.reload()

    def reload(self) -> None:
        """
        Re-read everything from disk (used after importing a backup).
        """
        self.quizzes: List[Quiz] = self.store.get_quizzes()
        self.cards: List[Card] = self.store.get_cards()
        self.attempts: List[Attempt] = self.store.get_attempts()
        self.stats: UserStats = self.store.get_stats()
        self.settings: Settings = self.store.get_settings()

    # ----- lookups -----
    def quiz(self, quiz_id: str) -> Optional[Quiz]:
        return next((q for q in self.quizzes if q.id == quiz_id), None)

    def cards_for(self, quiz_id: str) -> List[Card]:
        return [c for c in self.cards if c.quizId == quiz_id]

    def visible_quizzes(self, is_admin: bool) -> List[Quiz]:
        """
        Admins see every quiz outside the trash; learners only published ones.
        """
        if is_admin:
            return [q for q in self.quizzes if not q.isTrashed]
        return [q for q in self.quizzes if not q.isTrashed and q.published]

    def trashed_quizzes(self) -> List[Quiz]:
        return [q for q in self.quizzes if q.isTrashed]

    def resumable_session(self, quiz: Quiz) -> Optional[QuizSessionState]:
        """
        The stored session for quiz if its index is within the current cards.
        """
        session = self.store.get_session(quiz.id)
        if session and session.is_within(len(self.cards_for(quiz.id))):
            return session
        return None

    # ----- quiz runs -----
    def start_quiz(self, quiz: Quiz, reset: bool = False) -> LaunchedQuiz:
        """
        Resume the stored run of quiz or start a fresh one.

        A stored run is dropped when reset is requested, when its index is out
        of range, or when the quiz was edited after the run started.
        """
        print(f"[App] start_quiz: {quiz.name} (ID: {quiz.id}) | Reset: {reset}")
        self.store.set_last_quiz(quiz.id)

        if reset:
            print("[App] Resetting session per user request.")
            self.store.clear_session(quiz.id)
            return self._launch(quiz, None)

        existing = self.resumable_session(quiz)
        if existing is None:
            print("[App] No valid session found. Starting new.")
            return self._launch(quiz, None)

        if quiz.version > (existing.quizUpdatedAt or 0) + STALE_SESSION_GRACE_MS:
            print("[App] Session invalidated due to content update. Starting fresh.")
            self.store.clear_session(quiz.id)
            return self._launch(quiz, None)

        print(f"[App] Resuming valid session at index {existing.currentIndex}")
        return self._launch(quiz, existing)

    def _launch(self, quiz: Quiz, session: Optional[QuizSessionState]) -> LaunchedQuiz:
        quiz_cards = self.cards_for(quiz.id)
        if session is not None:
            ordered = quiz_cards
            if session.shuffledCardIds:
                by_id = {c.id: c for c in quiz_cards}
                ordered = [by_id[cid] for cid in session.shuffledCardIds if cid in by_id] or quiz_cards
            return LaunchedQuiz(quiz, ordered, session, resumed=True)

        ordered = self.shuffle(quiz_cards) if quiz.settings.randomize else list(quiz_cards)
        now = now_ms()
        session = QuizSessionState(
            quizId=quiz.id,
            quizUpdatedAt=quiz.version,
            shuffledCardIds=[c.id for c in ordered],
            currentIndex=0,
            sessionAttempts=[],
            startTime=now,
            pausedAt=now,
        )
        self.store.save_session(session)
        return LaunchedQuiz(quiz, ordered, session)

    def pause_quiz(self, session: QuizSessionState) -> None:
        self.store.save_session(session)

    def finish_quiz(self, quiz_id: str, results: SessionResults) -> SessionResults:
        print("[App] Quiz finished")
        self.store.clear_session(quiz_id)
        self.stats = replace(self.stats, totalSessions=self.stats.totalSessions + 1)
        self.store.save_stats(self.stats)
        return results

    def add_attempt(self, attempt: Attempt) -> UserStats:
        """
        Record an attempt and fold its XP into the stats.
        """
        self.attempts.append(attempt)
        now = now_ms()
        xp = max(0, self.stats.xp + attempt.xpChange)
        self.stats = replace(
            self.stats,
            xp=xp,
            level=level_for_xp(xp),
            streak=next_streak(self.stats.streak, self.stats.lastActive, now),
            lastActive=now,
        )
        self.store.save_attempts(self.attempts)
        self.store.save_stats(self.stats)
        print(f"[App] Attempt added: {'Pass' if attempt.passed else 'Fail'}")
        return self.stats

    # ----- editing -----
    def save_quiz(self, quiz: Quiz, quiz_cards: List[Card]) -> Quiz:
        """
        Insert or replace quiz and swap in its new card list.

        updatedAt is stamped here so saved runs of the old version go stale.
        """
        print(f"[App] Save Quiz: {quiz.name}")
        updated = replace(quiz, updatedAt=now_ms())
        idx = next((i for i, q in enumerate(self.quizzes) if q.id == quiz.id), None)
        if idx is None:
            self.quizzes.append(updated)
        else:
            self.quizzes[idx] = updated
        self.cards = [c for c in self.cards if c.quizId != quiz.id] + list(quiz_cards)
        self.store.save_quizzes(self.quizzes)
        self.store.save_cards(self.cards)
        return updated

    def _forget_quiz_run(self, quiz_id: str) -> None:
        self.store.clear_session(quiz_id)
        if self.store.get_last_quiz() == quiz_id:
            self.store.set_last_quiz(None)

    def move_to_trash(self, quiz_id: str) -> None:
        print(f"[App] Move to Trash: {quiz_id}")
        self.quizzes = [
            replace(q, isTrashed=True, deletedAt=now_ms()) if q.id == quiz_id else q
            for q in self.quizzes
        ]
        self.store.save_quizzes(self.quizzes)
        self._forget_quiz_run(quiz_id)

    def restore(self, quiz_id: str) -> None:
        print(f"[App] Restore: {quiz_id}")
        self.quizzes = [
            replace(q, isTrashed=False, deletedAt=None) if q.id == quiz_id else q
            for q in self.quizzes
        ]
        self.store.save_quizzes(self.quizzes)

    def permanent_delete(self, quiz_id: str) -> None:
        """
        Remove a quiz together with its cards and attempt history.
        """
        print(f"[App] Perm Delete: {quiz_id}")
        self.quizzes = [q for q in self.quizzes if q.id != quiz_id]
        self.cards = [c for c in self.cards if c.quizId != quiz_id]
        self.attempts = [a for a in self.attempts if a.quizId != quiz_id]
        self.store.save_quizzes(self.quizzes)
        self.store.save_cards(self.cards)
        self.store.save_attempts(self.attempts)
        self._forget_quiz_run(quiz_id)

    def update_settings(self, settings: Settings) -> None:
        self.settings = settings
        self.store.save_settings(settings)

    # ----- dashboard -----
    def accuracy(self) -> int:
        return average_core(self.attempts)

    def practice_time_ms(self) -> int:
        return len(self.attempts) * PRACTICE_MS_PER_ATTEMPT

    def weakest_quizzes(self, quizzes: List[Quiz], count: int = WEAKEST_COUNT) -> List[Tuple[Quiz, float]]:
        """
        Quizzes with the lowest average core score; unplayed ones count as 100.
        """
        by_quiz: Dict[str, List[int]] = {}
        for a in self.attempts:
            by_quiz.setdefault(a.quizId, []).append(a.coreScore)
        scored = []
        for q in quizzes:
            scores = by_quiz.get(q.id)
            scored.append((q, sum(scores) / len(scores) if scores else 100.0))
        scored.sort(key=lambda pair: pair[1])
        return scored[:count]

    def last_quiz(self, quizzes: List[Quiz]) -> Optional[Quiz]:
        last_id = self.store.get_last_quiz()
        return next((q for q in quizzes if q.id == last_id), None)

    def card_stats(self, quiz_id: Optional[str] = None) -> List[CardStat]:
        """
        Best core score and last practice time for every card (or one quiz's).
        """
        out = []
        for card in self.cards:
            if quiz_id and card.quizId != quiz_id:
                continue
            mine = [a for a in self.attempts if a.cardId == card.id]
            out.append(CardStat(
                card=card,
                best_core=max((a.coreScore for a in mine), default=0),
                attempts=len(mine),
                last_practiced=max((a.timestamp for a in mine), default=None),
            ))
        return out
