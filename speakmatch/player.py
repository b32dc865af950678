"""
Quiz run state machine, independent of Tk and of the speech backend.

The UI feeds transcripts and listening events in and renders the state out.
"""

import math
from dataclasses import dataclass, field
from typing import List, Optional

from .library import LaunchedQuiz, SessionResults
from .models import Attempt, Card, QuizSessionState, new_id, now_ms
from .scoring import best_match, get_diff

XP_PASS = 20
XP_PARTIAL = 5

NO_SPEECH_MESSAGE = "No speech detected. Please try again."
UNSUPPORTED_MESSAGE = "Speech recognition is not supported on this system."
NO_CARDS_MESSAGE = "No cards found."


@dataclass
class Feedback:
    """
    Result shown after an answer; the model answer stays hidden until revealed.
    """
    bestSentence: str
    coreScore: int
    accentScore: int
    diff: List[dict] = field(default_factory=list)
    revealed: bool = False


def xp_for(passed: bool, core: int, already_passed: bool, multiplier: float = 1) -> int:
    """
    XP for one attempt: nothing for cards already passed in this run, 20 for
    a pass, 5 for any partial match, scaled by the settings multiplier.
    """
    if already_passed:
        base = 0
    elif passed:
        base = XP_PASS
    elif core > 0:
        base = XP_PARTIAL
    else:
        base = 0
    return int(math.floor(base * multiplier + 0.5))


class QuizPlayer:
    """
    Progress through one quiz run.

    Listening flags mirror the microphone: result_received and manual_stop
    decide whether the end of a listen means "no speech".
    """

    def __init__(self, launched: LaunchedQuiz, xp_multiplier: float = 1):
        self.quiz = launched.quiz
        self.cards = launched.cards
        session = launched.session
        self.session_updated_at = session.quizUpdatedAt
        self.shuffled_ids = session.shuffledCardIds
        self.current_index = session.currentIndex or 0
        self.session_attempts: List[Attempt] = list(session.sessionAttempts)
        self.start_time = session.startTime or now_ms()
        self.xp_multiplier = xp_multiplier

        self.transcript = ""
        self.feedback: Optional[Feedback] = None
        self.feedback_error: Optional[str] = None
        self.error: Optional[str] = None
        self.finished: Optional[SessionResults] = None

        self.listening = False
        self.listen_started_ms = 0
        self.result_received = False
        self.manual_stop = False

    # ----- state -----
    @property
    def card(self) -> Optional[Card]:
        if 0 <= self.current_index < len(self.cards):
            return self.cards[self.current_index]
        return None

    @property
    def is_last(self) -> bool:
        return self.current_index >= len(self.cards) - 1

    @property
    def progress_label(self) -> str:
        return f"{self.current_index + 1} / {len(self.cards)}"

    def blocking_message(self) -> Optional[str]:
        """
        Message that replaces the whole player, if any.
        """
        if self.error:
            return self.error
        if self.card is None:
            return NO_CARDS_MESSAGE
        return None

    # ----- listening -----
    def start_listening(self) -> None:
        self.transcript = ""
        self.feedback = None
        self.feedback_error = None
        self.listening = True
        self.listen_started_ms = now_ms()
        self.result_received = False
        self.manual_stop = False

    def stop_listening(self) -> None:
        self.manual_stop = True
        self.listening = False

    def is_stuck(self, watchdog_ms: int, now: Optional[int] = None) -> bool:
        """
        True after watchdog_ms of listening without any result.
        """
        now = now_ms() if now is None else now
        return self.listening and now - self.listen_started_ms >= watchdog_ms

    def on_listen_end(self) -> None:
        """
        Recognition stopped; without a result or a manual stop that means
        nothing was heard.
        """
        self.listening = False
        if not self.result_received and not self.manual_stop:
            self.feedback_error = NO_SPEECH_MESSAGE

    def on_listen_error(self, message: str) -> None:
        self.listening = False
        self.error = f"Microphone error: {message}"

    def mark_unsupported(self) -> None:
        self.error = UNSUPPORTED_MESSAGE

    # ----- answers -----
    def process_result(self, text: str) -> Optional[Attempt]:
        """
        Score a transcript against the current card.

        return: The new Attempt, or None for an empty transcript.
        """
        card = self.card
        if not text or card is None:
            return None
        self.result_received = True
        self.listening = False
        self.transcript = text

        sentence, core, accent = best_match(card.all_sentences, text)
        passed = core >= self.quiz.settings.goalScore
        already = any(a.cardId == card.id and a.passed for a in self.session_attempts)
        now = now_ms()
        attempt = Attempt(
            id=new_id("attempt"),
            cardId=card.id,
            quizId=self.quiz.id,
            timestamp=now,
            coreScore=core,
            accentScore=accent,
            passed=passed,
            xpChange=xp_for(passed, core, already, self.xp_multiplier),
            transcript=text,
        )
        self.session_attempts.append(attempt)
        self.feedback = Feedback(
            bestSentence=sentence,
            coreScore=core,
            accentScore=accent,
            diff=get_diff(sentence, text),
        )
        return attempt

    def reveal(self) -> None:
        if self.feedback:
            self.feedback.revealed = True

    def next(self) -> Optional[SessionResults]:
        """
        Move to the next card, or finish on the last one.

        return: SessionResults when the run is over, otherwise None.
        """
        if not self.is_last:
            self.current_index += 1
            self.transcript = ""
            self.feedback = None
            self.feedback_error = None
            return None
        self.finished = SessionResults(
            attempts=list(self.session_attempts),
            xpGained=sum(a.xpChange for a in self.session_attempts),
            timeSpent=now_ms() - self.start_time,
        )
        return self.finished

    def snapshot(self) -> QuizSessionState:
        """
        Session to store when leaving the run early.

        Keeps the quiz version and card order so the run can be resumed.
        """
        return QuizSessionState(
            quizId=self.quiz.id,
            quizUpdatedAt=self.session_updated_at,
            shuffledCardIds=self.shuffled_ids or [c.id for c in self.cards],
            currentIndex=self.current_index,
            sessionAttempts=list(self.session_attempts),
            startTime=self.start_time,
            pausedAt=now_ms(),
        )

    def model_answer_text(self) -> str:
        card = self.card
        return card.model_answer if card else ""
