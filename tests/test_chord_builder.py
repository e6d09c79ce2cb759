import itertools

import pytest

from chord_helpers import I, V7, seventh, triad
from chordlab.core.chord_builder import (
    adjust_triad_quality_to_mode,
    bass_pitch_class,
    build_chord,
    build_chord_events,
    build_progression,
    chord_intervals,
    chord_pitch_classes,
    is_dominant_like,
    root_pitch_class,
    rotate_inversion,
)
from chordlab.core.chord_model import (
    ChordQuality,
    ChordRecipe,
    Inversion,
    RequestedExtensions as Ext,
    SeventhQuality,
)
from chordlab.core.music_theory import Key, ScaleMode


def test_dominant_seventh_in_c(c_major):
    assert build_chord(c_major, V7, 4) == (67, 71, 74, 77)


def test_neapolitan_root(c_major):
    bII = triad(2, offset=-1)
    assert root_pitch_class(c_major, bII) == 1
    assert build_chord(c_major, bII, 4) == (61, 65, 68)


def test_first_inversion_rotation(c_major):
    assert build_chord(c_major, I.with_changes(inversion=Inversion.FIRST), 4) == (64, 67, 72)


def test_third_inversion_on_triad_clamps(c_major):
    recipe = I.with_changes(inversion=Inversion.THIRD)
    assert build_chord(c_major, recipe, 4) == (67, 72, 76)
    assert bass_pitch_class(c_major, recipe) == 7


def test_rotate_inversion_empty():
    assert rotate_inversion([], Inversion.FIRST) == []


def test_sus4_intervals():
    recipe = triad(5, extensions=Ext.SUS4)
    assert chord_intervals(recipe) == [0, 5, 7]


def test_chord_pitch_classes_order(c_major):
    assert chord_pitch_classes(c_major, V7) == [7, 11, 2, 5]


QUALITIES = list(ChordQuality)
SEVENTHS = list(SeventhQuality)


@pytest.mark.parametrize(
    "degree, quality, seventh_q, inversion",
    list(itertools.product(range(1, 8), QUALITIES, SEVENTHS, list(Inversion))),
)
def test_build_chord_strictly_increasing_and_bass(c_major, degree, quality, seventh_q, inversion):
    recipe = ChordRecipe(degree=degree, quality=quality, seventh=seventh_q, inversion=inversion)
    notes = build_chord(c_major, recipe, 4)
    assert all(a < b for a, b in zip(notes, notes[1:]))
    assert notes[0] % 12 == bass_pitch_class(c_major, recipe)


def test_build_progression_skips_invalid(c_major, capsys):
    chords = build_progression(c_major, ["I", "nonsense", "V7"], debug=True)
    assert chords == [(60, 64, 67), (67, 71, 74, 77)]
    assert "[ChordBuilder] skip 'nonsense'" in capsys.readouterr().out


def test_adjust_triad_quality_to_mode():
    c_minor = Key(0, ScaleMode.AEOLIAN)
    adjusted, changed = adjust_triad_quality_to_mode(c_minor, triad(1))
    assert changed and adjusted.quality == ChordQuality.MINOR
    same, changed = adjust_triad_quality_to_mode(c_minor, triad(3))
    assert not changed and same.quality == ChordQuality.MAJOR


def test_build_chord_events_spacing_and_melody(c_major):
    evs = build_chord_events(c_major, [I, V7, I], start_beat=2.0, beat_step=4.0, melody=[72, None])
    assert [e.time_beats for e in evs] == [2.0, 6.0, 10.0]
    assert [e.melody_midi for e in evs] == [72, None, None]
    assert evs[1].recipe == V7


def test_is_dominant_like():
    assert is_dominant_like(ChordQuality.MAJOR)
    assert is_dominant_like(ChordQuality.AUGMENTED)
    assert not is_dominant_like(ChordQuality.MINOR)


def test_diminished_sevenths_force_quality():
    recipe = seventh(7, ChordQuality.MAJOR, SeventhQuality.DIMINISHED7)
    assert recipe.quality == ChordQuality.DIMINISHED


def test_two_ninths_raise():
    with pytest.raises(ValueError):
        ChordRecipe(degree=5, extensions=Ext.NINE | Ext.FLAT_NINE)
