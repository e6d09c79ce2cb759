import pytest

from chord_helpers import I, V7, seventh, triad
from chordlab.core.chord_model import (
    ChordQuality,
    RequestedExtensions as Ext,
    SeventhQuality,
    TensionClassification as TC,
    TensionKind,
)
from chordlab.core.tension_classifier import classify_tension, detect_tensions, requested_tensions

MINOR_TRIAD = triad(2, ChordQuality.MINOR)
MINOR_SEVENTH = seventh(2, ChordQuality.MINOR, SeventhQuality.MINOR7)
DIM_TRIAD = triad(7, ChordQuality.DIMINISHED)


@pytest.mark.parametrize(
    "recipe, kind, expected",
    [
        (MINOR_TRIAD, TensionKind.SHARP_NINE, TC.CHORD_TONE),
        (DIM_TRIAD, TensionKind.SHARP_ELEVEN, TC.CHORD_TONE),
        (MINOR_SEVENTH, TensionKind.ELEVEN, TC.COLOR_TONE),
        (MINOR_TRIAD, TensionKind.SHARP_ELEVEN, TC.NON_CHORD_TONE),
        (V7, TensionKind.SHARP_ELEVEN, TC.COLOR_TONE),
        (V7, TensionKind.FLAT_NINE, TC.COLOR_TONE),
        (V7, TensionKind.ELEVEN, TC.AVOID_TONE),
        (I, TensionKind.NINE, TC.COLOR_TONE),
        (I, TensionKind.SHARP_ELEVEN, TC.COLOR_TONE),
        (I, TensionKind.ELEVEN, TC.NON_CHORD_TONE),
        (triad(1, extensions=Ext.SUS4), TensionKind.ELEVEN, TC.SUSPENSION),
    ],
)
def test_classify_tension(recipe, kind, expected):
    assert classify_tension(recipe, kind) == expected


def test_eleven_without_third_is_suspension():
    assert classify_tension(V7, TensionKind.ELEVEN, third_present=False) == TC.SUSPENSION


def test_requested_tensions_sorted():
    recipe = V7.with_changes(extensions=Ext.SHARP_ELEVEN | Ext.FLAT_NINE)
    tensions = requested_tensions(recipe)
    assert [t.kind for t in tensions] == [TensionKind.FLAT_NINE, TensionKind.SHARP_ELEVEN]
    assert all(t.classification == TC.COLOR_TONE for t in tensions)


def test_requested_sus4_and_add9():
    tensions = requested_tensions(triad(1, extensions=Ext.SUS4 | Ext.ADD9))
    assert [(t.kind, t.classification) for t in tensions] == [
        (TensionKind.NINE, TC.COLOR_TONE),
        (TensionKind.ELEVEN, TC.SUSPENSION),
    ]


def test_detect_ninth_in_inner_voice(c_major):
    found = detect_tensions(c_major, I, [48, 62, 64, 67])
    assert [t.kind for t in found.tensions] == [TensionKind.NINE]
    assert found.tensions[0].classification == TC.COLOR_TONE
    assert found.analyzed_pcs == (0, 2, 4, 7)


def test_detect_eleven_in_soprano_over_major_third_is_avoid(c_major):
    found = detect_tensions(c_major, V7, [43, 59, 65, 72])
    assert [(t.kind, t.classification) for t in found.tensions] == [(TensionKind.ELEVEN, TC.AVOID_TONE)]
    assert not found.tensions[0].surfaced


def test_detect_eleven_without_third_is_suspension(c_major):
    found = detect_tensions(c_major, V7, [43, 62, 65, 72])
    assert [(t.kind, t.classification) for t in found.tensions] == [(TensionKind.ELEVEN, TC.SUSPENSION)]
    assert found.tensions[0].surfaced


def test_eleventh_below_soprano_is_ignored(c_major):
    found = detect_tensions(c_major, V7, [43, 60, 65, 71])
    assert not found.has_tensions


def test_detect_plain_voicing_has_no_tensions(c_major):
    assert not detect_tensions(c_major, V7, [43, 59, 65, 74]).has_tensions
    assert not detect_tensions(c_major, I, []).has_tensions
