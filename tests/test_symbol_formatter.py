import itertools

import pytest

from chord_helpers import I, II7, V7, seventh, triad
from chordlab.core.chord_builder import chord_pitch_classes
from chordlab.core.chord_model import (
    ChordQuality,
    ChordRecipe,
    Inversion,
    RequestedExtensions as Ext,
    SeventhQuality,
    Tension,
    TensionClassification as TC,
    TensionKind,
)
from chordlab.core.music_theory import Key, ScaleMode
from chordlab.core.notation_parser import parse_chord_symbol, parse_roman_numeral
from chordlab.core.symbol_formatter import (
    chord_symbol,
    chord_symbol_with_tensions,
    recipe_to_roman_numeral,
    roman_numeral_with_tensions,
    spelled_chord_tones,
)

VII_HALF_DIM = seventh(7, ChordQuality.DIMINISHED, SeventhQuality.HALF_DIMINISHED7)


# ---------- Roman numerals ----------

@pytest.mark.parametrize(
    "mode, recipe, expected",
    [
        (ScaleMode.IONIAN, V7, "V7"),
        (ScaleMode.IONIAN, triad(2, offset=-1), "bII"),
        (ScaleMode.IONIAN, triad(6, offset=-1), "bVI"),
        (ScaleMode.IONIAN, VII_HALF_DIM, "viiø7"),
        (ScaleMode.IONIAN, II7.with_changes(inversion=Inversion.FIRST), "iim7/3rd"),
        (ScaleMode.AEOLIAN, triad(6, ChordQuality.MINOR, offset=1), "nvi"),
        (ScaleMode.AEOLIAN, triad(7, offset=-1), "bVII"),
    ],
)
def test_recipe_to_roman_numeral(mode, recipe, expected):
    assert recipe_to_roman_numeral(Key(0, mode), recipe) == expected


ROUND_TRIP_CASES = list(
    itertools.product(
        [ScaleMode.IONIAN, ScaleMode.AEOLIAN],
        range(1, 8),
        list(ChordQuality),
        list(SeventhQuality),
        (-1, 0, 1),
        list(Inversion),
    )
)


@pytest.mark.parametrize("mode, degree, quality, seventh_q, offset, inversion", ROUND_TRIP_CASES)
def test_roman_numeral_round_trip(mode, degree, quality, seventh_q, offset, inversion):
    key = Key(0, mode)
    recipe = ChordRecipe(
        degree=degree, quality=quality, seventh=seventh_q, root_offset=offset, inversion=inversion
    )
    text = recipe_to_roman_numeral(key, recipe)
    result = parse_roman_numeral(key, text)
    assert result.success, f"{text}: {result.message}"
    assert result.recipe.equivalent(recipe), text


@pytest.mark.parametrize(
    "recipe, expected",
    [
        (V7.with_changes(extensions=Ext.FLAT_NINE | Ext.SHARP_ELEVEN), "V7b9#11"),
        (V7.with_changes(extensions=Ext.SUS4), "V7sus4"),
        (triad(1, extensions=Ext.ADD9), "Iadd9"),
        (V7.with_changes(extensions=Ext.ADD11), "V7"),
    ],
)
def test_roman_numeral_with_tensions(c_major, recipe, expected):
    text = roman_numeral_with_tensions(c_major, recipe)
    assert text == expected
    assert parse_roman_numeral(c_major, text).success


# ---------- Lead-sheet symbols ----------

@pytest.mark.parametrize(
    "recipe, expected",
    [
        (V7, "G7"),
        (I.with_changes(inversion=Inversion.FIRST), "C/E"),
        (VII_HALF_DIM, "Bm7b5"),
        (II7, "Dm7"),
        (seventh(4, ChordQuality.MAJOR, SeventhQuality.MAJOR7), "Fmaj7"),
        (triad(6, offset=-1), "Ab"),
        (triad(2, offset=-1), "Db"),
        (seventh(7, ChordQuality.DIMINISHED, SeventhQuality.DIMINISHED7), "Bdim7"),
    ],
)
def test_chord_symbol(c_major, recipe, expected):
    assert chord_symbol(c_major, recipe) == expected


def test_chord_symbol_uses_actual_bass(c_major):
    assert chord_symbol(c_major, I, bass_midi=52) == "C/E"
    assert chord_symbol(c_major, I, bass_midi=48) == "C"


def test_chord_symbol_root_override(c_major):
    assert chord_symbol(c_major, V7, root_name="Sol") == "Sol7"


@pytest.mark.parametrize(
    "recipe, expected",
    [
        (seventh(5, ChordQuality.MAJOR, SeventhQuality.MINOR7), "G7"),
        (seventh(7, ChordQuality.DIMINISHED, SeventhQuality.DOMINANT7), "Bm7b5"),
        (seventh(1, ChordQuality.AUGMENTED, SeventhQuality.MAJOR7), "Caugmaj7"),
        (seventh(1, ChordQuality.AUGMENTED, SeventhQuality.MINOR7), "Caug7"),
        (seventh(7, ChordQuality.DIMINISHED, SeventhQuality.MAJOR7), "Bdimmaj7"),
        (seventh(2, ChordQuality.MINOR, SeventhQuality.DOMINANT7), "Dm7"),
        (seventh(6, ChordQuality.MINOR, SeventhQuality.MAJOR7), "Ammaj7"),
    ],
)
def test_chord_symbol_names_by_sound(c_major, recipe, expected):
    assert chord_symbol(c_major, recipe) == expected


@pytest.mark.parametrize(
    "key",
    [Key(0, ScaleMode.IONIAN), Key(10, ScaleMode.IONIAN), Key(9, ScaleMode.AEOLIAN)],
)
@pytest.mark.parametrize("quality, seventh_q", list(itertools.product(ChordQuality, SeventhQuality)))
def test_chord_symbol_keeps_pitch_classes(key, quality, seventh_q):
    for degree in range(1, 8):
        recipe = ChordRecipe(degree=degree, quality=quality, seventh=seventh_q)
        text = chord_symbol(key, recipe)
        result = parse_chord_symbol(key, text)
        assert result.success, (text, result.message)
        assert sorted(chord_pitch_classes(key, result.recipe)) == sorted(chord_pitch_classes(key, recipe)), text


@pytest.mark.parametrize(
    "recipe, expected",
    [
        (V7.with_changes(extensions=Ext.FLAT_NINE | Ext.SHARP_ELEVEN), "G7(b9,#11)"),
        (V7.with_changes(extensions=Ext.ADD11), "G7"),
        (V7.with_changes(extensions=Ext.SUS4), "G7sus4"),
        (triad(1, extensions=Ext.SUS4), "Csus4"),
        (triad(1, extensions=Ext.ADD9), "Cadd9"),
    ],
)
def test_chord_symbol_with_tensions(c_major, recipe, expected):
    assert chord_symbol_with_tensions(c_major, recipe) == expected


def test_detected_tensions_override_requested(c_major):
    tensions = [
        Tension(TensionKind.NINE, TC.COLOR_TONE),
        Tension(TensionKind.ELEVEN, TC.AVOID_TONE),
    ]
    assert chord_symbol_with_tensions(c_major, V7, tensions=tensions) == "G7(9)"
    assert roman_numeral_with_tensions(c_major, V7, tensions=tensions) == "V79"


def test_detected_eleventh_renders_by_classification(c_major):
    suspended = [Tension(TensionKind.ELEVEN, TC.SUSPENSION)]
    avoided = [Tension(TensionKind.ELEVEN, TC.AVOID_TONE)]
    assert chord_symbol_with_tensions(c_major, V7, tensions=suspended) == "G7sus4"
    assert chord_symbol_with_tensions(c_major, V7, tensions=avoided) == "G7"


def test_symbol_round_trip(c_major):
    for text in ("G7", "Dm7", "Bm7b5", "Fmaj7", "C/E", "G7(b9,#11)", "Csus4", "Cadd9"):
        recipe = parse_chord_symbol(c_major, text).recipe
        assert chord_symbol_with_tensions(c_major, recipe) == text


# ---------- Spelling ----------

def test_spelled_tones_dominant(c_major):
    assert spelled_chord_tones(c_major, V7) == ["G", "B", "D", "F"]


@pytest.mark.parametrize(
    "key, text, expected",
    [
        (Key(9, ScaleMode.IONIAN), "iii", ["C#", "E", "G#"]),
        (Key(5, ScaleMode.IONIAN), "ii", ["G", "Bb", "D"]),
        (Key(10, ScaleMode.IONIAN), "viio", ["A", "C", "Eb"]),
        (Key(0, ScaleMode.IONIAN), "bVI", ["Ab", "C", "Eb"]),
    ],
)
def test_spelled_tones_follow_letters(key, text, expected):
    recipe = parse_roman_numeral(key, text).recipe
    assert spelled_chord_tones(key, recipe) == expected


def test_spelled_tones_sus4(c_major):
    assert spelled_chord_tones(c_major, triad(5, extensions=Ext.SUS4)) == ["G", "C", "D"]
