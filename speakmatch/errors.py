"""
Exceptions raised by the SpeakMatch core.

The Tk layer catches these at the action boundary and turns them into
messagebox alerts; nothing below the UI shows dialogs itself.
"""

from typing import List


class SpeakMatchError(Exception):
    """Base class for every error raised by this package."""


class BackupImportError(SpeakMatchError):
    """A backup file could not be parsed or had an unexpected shape."""


class QuizValidationError(SpeakMatchError):
    """
    The quiz editor refused to build a quiz.

    Holds every problem found so the UI can list them at once.
    """

    def __init__(self, errors: List[str]):
        super().__init__("; ".join(errors))
        self.errors = list(errors)


class AdminRequiredError(SpeakMatchError):
    """An admin-only action was attempted without a valid admin session."""


class RecognitionError(SpeakMatchError):
    """The speech backend failed (network, API quota, device)."""


class NoSpeechError(RecognitionError):
    """Audio was captured but nothing intelligible was recognized."""
