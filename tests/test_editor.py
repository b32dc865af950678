import base64

import pytest

from conftest import make_cards, make_quiz
from speakmatch.editor import MIN_CARDS_MESSAGE, QuizDraft, file_to_data_url, parse_variants
from speakmatch.errors import QuizValidationError
from speakmatch.models import PUBLISHED


def test_parse_variants():
    assert parse_variants(" Le chat dort , ,Un chat dort,  ") == ["Le chat dort", "Un chat dort"]
    assert parse_variants("") == []


def test_blank_draft_has_one_card():
    draft = QuizDraft()
    assert len(draft.cards) == 1
    assert draft.cards[0].quizId == draft.quiz_id
    assert draft.published is False


def test_validation_messages():
    draft = QuizDraft()
    draft.add_card()
    draft.cards[1].targetSentence = "Il pleut"
    assert draft.validate() == ["Quiz name is required.", "Card #1: Target sentence is required."]
    with pytest.raises(QuizValidationError) as err:
        draft.build()
    assert err.value.errors == draft.validate()


def test_cannot_remove_last_card():
    draft = QuizDraft()
    with pytest.raises(QuizValidationError, match=MIN_CARDS_MESSAGE):
        draft.remove_card(draft.cards[0].id)
    extra = draft.add_card()
    draft.remove_card(extra.id)
    assert len(draft.cards) == 1


def test_editing_does_not_touch_originals():
    cards = make_cards(count=2)
    draft = QuizDraft(make_quiz(), cards)
    draft.set_variants(cards[0].id, "a, b")
    assert cards[0].acceptedSentences == ["Un chat 0 dort"]
    assert draft.card(cards[0].id).acceptedSentences == ["a", "b"]


def test_build_keeps_identity_of_existing_quiz():
    quiz = make_quiz(created=42, isTrashed=False)
    draft = QuizDraft(quiz, make_cards(count=2))
    draft.name = "Renamed"
    draft.randomize = True
    draft.set_published(True)
    built, cards = draft.build()
    assert built.id == quiz.id
    assert built.createdAt == 42
    assert built.name == "Renamed"
    assert built.status == PUBLISHED
    assert built.templateId == "speak-to-match"
    assert built.settings.shuffle is True
    assert built.settings.randomize is True
    assert [c.quizId for c in cards] == [quiz.id, quiz.id]


def test_media_files_become_data_urls(tmp_path):
    image = tmp_path / "cat.png"
    image.write_bytes(b"\x89PNG fake")
    audio = tmp_path / "answer.mp3"
    audio.write_bytes(b"ID3 fake")

    assert file_to_data_url(image) == "data:image/png;base64," + base64.b64encode(b"\x89PNG fake").decode()

    draft = QuizDraft()
    card_id = draft.cards[0].id
    draft.set_image_file(card_id, image)
    draft.set_audio_file(card_id, audio)
    assert draft.card(card_id).image.startswith("data:image/png;base64,")
    assert draft.card(card_id).audioOverride.startswith("data:audio/mpeg;base64,")
    draft.clear_audio(card_id)
    assert draft.card(card_id).audioOverride is None
