import random

import pytest

from speakmatch.scoring import (
    ACCENT_ERROR,
    CORRECT,
    MISSING,
    best_match,
    calculate_similarity,
    edit_distance,
    format_time,
    get_diff,
    normalize,
    shuffle_cards,
)


@pytest.mark.parametrize("text", ["", "Bonjour", "Le café est très chaud.", "  où   est-il ?  "])
def test_identical_strings_score_100(text):
    assert calculate_similarity(text, text) == 100
    assert calculate_similarity(text, text, strip_accents=True) == 100


@pytest.mark.parametrize("a,b", [
    ("Le chat dort", "le chien dort"),
    ("abc", "abd"),
    ("", "bonjour"),
    ("élève", "eleve"),
])
def test_similarity_is_symmetric(a, b):
    assert calculate_similarity(a, b) == calculate_similarity(b, a)
    assert calculate_similarity(a, b, True) == calculate_similarity(b, a, True)


def test_normalize_strips_punctuation_and_spaces():
    assert normalize("  Bonjour,   Marie!  Ça va? ") == "bonjour marie ça va"
    assert normalize("Ça va?", strip_accents=True) == "ca va"


def test_accents_only_count_in_accent_score():
    assert calculate_similarity("café", "cafe") == 75
    assert calculate_similarity("café", "cafe", strip_accents=True) == 100


def test_similarity_rounds_half_up():
    # (3 - 1) / 3 = 66.67%
    assert calculate_similarity("abc", "abd") == 67
    # (2 - 1) / 2 = 50%
    assert calculate_similarity("ab", "ac") == 50


def test_edit_distance():
    assert edit_distance("kitten", "sitting") == 3
    assert edit_distance("", "abc") == 3
    assert edit_distance("abc", "") == 3
    assert edit_distance("same", "same") == 0


def test_get_diff_statuses():
    diff = get_diff("Le café est chaud", "le cafe chaud")
    assert diff == [
        {"word": "Le", "status": CORRECT},
        {"word": "café", "status": ACCENT_ERROR},
        {"word": "est", "status": MISSING},
        {"word": "chaud", "status": CORRECT},
    ]


def test_best_match_prefers_highest_core_and_first_on_ties():
    sentence, core, accent = best_match(["Il pleut", "Il fait beau"], "il fait beau")
    assert (sentence, core, accent) == ("Il fait beau", 100, 100)

    sentence, _, _ = best_match(["abx", "aby"], "abz")
    assert sentence == "abx"


def test_best_match_reports_accent_score_of_winner():
    sentence, core, accent = best_match(["Un élève"], "un eleve")
    assert sentence == "Un élève"
    assert core == 100
    assert accent < 100


def test_format_time():
    assert format_time(0) == "0s"
    assert format_time(42_000) == "42s"
    assert format_time(200_000) == "3m 20s"
    assert format_time(3_723_000) == "1h 2m"


def test_shuffle_cards_returns_new_permutation():
    items = list(range(10))
    out = shuffle_cards(items, random.Random(7))
    assert sorted(out) == items
    assert items == list(range(10))
