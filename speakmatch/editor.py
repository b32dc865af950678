"""
Quiz editor model: a mutable draft of a quiz and its cards.

The Tk form binds its widgets to a QuizDraft and calls build() on save.
"""

import base64
import copy
import mimetypes
from pathlib import Path
from typing import List, Optional, Tuple

from .errors import QuizValidationError
from .models import DRAFT, PUBLISHED, Card, Quiz, QuizSettings, new_id, now_ms

MIN_CARDS_MESSAGE = "A quiz must have at least one card."


def parse_variants(text: str) -> List[str]:
    """
    Split the comma separated variants field, dropping blanks.
    """
    return [s.strip() for s in text.split(",") if s.strip()]


def file_to_data_url(path: Path) -> str:
    """
    Read a file into a base64 data URL so it travels inside backups.
    """
    path = Path(path)
    mime, _ = mimetypes.guess_type(path.name)
    payload = base64.b64encode(path.read_bytes()).decode("ascii")
    return f"data:{mime or 'application/octet-stream'};base64,{payload}"


class QuizDraft:
    """
    Editable copy of a quiz. Nothing is persisted until build() succeeds and
    the caller hands the result to Library.save_quiz().
    """

    def __init__(self, quiz: Optional[Quiz] = None, cards: Optional[List[Card]] = None):
        self.existing = quiz
        self.name = quiz.name if quiz else ""
        self.language = quiz.settings.language if quiz else "fr-FR"
        self.goal_score = quiz.settings.goalScore if quiz else 80
        self.randomize = bool(quiz.settings.randomize) if quiz else False
        self.status = (quiz.status or DRAFT) if quiz else DRAFT
        self.quiz_id = quiz.id if quiz else new_id("quiz")
        if cards:
            self.cards = copy.deepcopy(list(cards))
        else:
            self.cards = [self._blank_card()]

    def _blank_card(self) -> Card:
        return Card(id=new_id("card"), quizId=self.quiz_id)

    # ----- cards -----
    def card(self, card_id: str) -> Card:
        for c in self.cards:
            if c.id == card_id:
                return c
        raise KeyError(card_id)

    def add_card(self) -> Card:
        c = self._blank_card()
        self.cards.append(c)
        return c

    def remove_card(self, card_id: str) -> None:
        """
        raises QuizValidationError: when card_id is the only card left.
        """
        if len(self.cards) <= 1:
            raise QuizValidationError([MIN_CARDS_MESSAGE])
        self.cards = [c for c in self.cards if c.id != card_id]

    def set_variants(self, card_id: str, text: str) -> None:
        self.card(card_id).acceptedSentences = parse_variants(text)

    def set_image_file(self, card_id: str, path: Path) -> None:
        self.card(card_id).image = file_to_data_url(path)

    def set_audio_file(self, card_id: str, path: Path) -> None:
        self.card(card_id).audioOverride = file_to_data_url(path)

    def clear_audio(self, card_id: str) -> None:
        self.card(card_id).audioOverride = None

    @property
    def published(self) -> bool:
        return self.status == PUBLISHED

    def set_published(self, value: bool) -> None:
        self.status = PUBLISHED if value else DRAFT

    # ----- save -----
    def validate(self) -> List[str]:
        errors = []
        if not self.name.strip():
            errors.append("Quiz name is required.")
        if not self.cards:
            errors.append(MIN_CARDS_MESSAGE)
        for idx, c in enumerate(self.cards, start=1):
            if not (c.targetSentence or "").strip():
                errors.append(f"Card #{idx}: Target sentence is required.")
        return errors

    def build(self) -> Tuple[Quiz, List[Card]]:
        """
        Produce the Quiz and Cards to save.

        raises QuizValidationError: listing every problem found.
        """
        errors = self.validate()
        if errors:
            raise QuizValidationError(errors)

        existing = self.existing
        quiz = Quiz(
            id=self.quiz_id,
            name=self.name,
            createdAt=existing.createdAt if existing else now_ms(),
            templateId="speak-to-match",
            status=self.status,
            isTrashed=existing.isTrashed if existing else False,
            deletedAt=existing.deletedAt if existing else None,
            settings=QuizSettings(
                language=self.language,
                goalScore=int(self.goal_score),
                shuffle=True,
                randomize=self.randomize,
            ),
        )
        cards = [
            Card(
                id=c.id,
                quizId=self.quiz_id,
                image=c.image or "",
                targetSentence=c.targetSentence or "",
                acceptedSentences=list(c.acceptedSentences or []),
                preferredModelAnswer=c.preferredModelAnswer or None,
                hint=c.hint,
                audioOverride=c.audioOverride,
            )
            for c in self.cards
        ]
        return quiz, cards
