from dataclasses import replace

from speakmatch.library import LaunchedQuiz
from speakmatch.models import QuizSessionState
from speakmatch.player import (
    NO_CARDS_MESSAGE,
    NO_SPEECH_MESSAGE,
    UNSUPPORTED_MESSAGE,
    QuizPlayer,
    xp_for,
)


def new_player(library, multiplier=1):
    return QuizPlayer(library.start_quiz(library.quiz("quiz_1")), xp_multiplier=multiplier)


def test_xp_rules():
    assert xp_for(passed=True, core=95, already_passed=False) == 20
    assert xp_for(passed=False, core=40, already_passed=False) == 5
    assert xp_for(passed=False, core=0, already_passed=False) == 0
    assert xp_for(passed=True, core=100, already_passed=True) == 0
    assert xp_for(passed=True, core=100, already_passed=False, multiplier=1.5) == 30


def test_pass_then_repeat_earns_nothing(library):
    player = new_player(library)
    first = player.process_result("le chat numéro 0 dort")
    assert first.passed is True
    assert first.coreScore == 100
    assert first.xpChange == 20

    again = player.process_result("le chat numéro 0 dort")
    assert again.xpChange == 0
    assert len(player.session_attempts) == 2


def test_accepted_sentence_can_win(library):
    player = new_player(library)
    result = player.process_result("un chat 0 dort")
    assert result.passed is True
    assert player.feedback.bestSentence == "Un chat 0 dort"
    assert player.feedback.revealed is False
    player.reveal()
    assert player.feedback.revealed is True


def test_partial_match_earns_partial_xp(library):
    player = new_player(library)
    result = player.process_result("bonjour")
    assert result.passed is False
    assert result.xpChange == 5


def test_empty_transcript_is_ignored(library):
    player = new_player(library)
    assert player.process_result("") is None
    assert player.session_attempts == []


def test_next_and_finish(library):
    player = new_player(library)
    assert player.progress_label == "1 / 3"
    player.process_result("le chat numéro 0 dort")
    assert player.next() is None
    assert player.feedback is None
    assert player.next() is None
    assert player.is_last
    results = player.next()
    assert results.xpGained == 20
    assert len(results.attempts) == 1


def test_snapshot_keeps_version_and_order(library):
    launched = library.start_quiz(library.quiz("quiz_1"))
    player = QuizPlayer(launched)
    player.process_result("le chat numéro 0 dort")
    player.next()
    snap = player.snapshot()
    assert snap.currentIndex == 1
    assert snap.quizUpdatedAt == launched.session.quizUpdatedAt
    assert snap.shuffledCardIds == [c.id for c in launched.cards]
    assert len(snap.sessionAttempts) == 1

    library.pause_quiz(snap)
    resumed = library.start_quiz(library.quiz("quiz_1"))
    assert resumed.resumed is True
    assert QuizPlayer(resumed).current_index == 1


def test_listen_end_without_result_means_no_speech(library):
    player = new_player(library)
    player.start_listening()
    player.on_listen_end()
    assert player.listening is False
    assert player.feedback_error == NO_SPEECH_MESSAGE


def test_manual_stop_is_not_no_speech(library):
    player = new_player(library)
    player.start_listening()
    player.stop_listening()
    player.on_listen_end()
    assert player.feedback_error is None


def test_result_before_end_is_not_no_speech(library):
    player = new_player(library)
    player.start_listening()
    player.process_result("le chat")
    player.on_listen_end()
    assert player.feedback_error is None


def test_watchdog(library):
    player = new_player(library)
    player.start_listening()
    start = player.listen_started_ms
    assert not player.is_stuck(8000, now=start + 7999)
    assert player.is_stuck(8000, now=start + 8000)
    player.stop_listening()
    assert not player.is_stuck(8000, now=start + 9000)


def test_blocking_messages(library):
    player = new_player(library)
    assert player.blocking_message() is None
    player.on_listen_error("device busy")
    assert player.blocking_message() == "Microphone error: device busy"

    player = new_player(library)
    player.mark_unsupported()
    assert player.blocking_message() == UNSUPPORTED_MESSAGE

    empty = LaunchedQuiz(library.quiz("quiz_1"), [], QuizSessionState(quizId="quiz_1"))
    assert QuizPlayer(empty).blocking_message() == NO_CARDS_MESSAGE


def test_model_answer_prefers_preferred_sentence(library):
    player = new_player(library)
    assert player.model_answer_text() == "Le chat numéro 0 dort"
    player.cards[0] = replace(player.cards[0], preferredModelAnswer="Le chat dort.")
    assert player.model_answer_text() == "Le chat dort."
