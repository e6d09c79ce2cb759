import pytest

from chordlab.core.music_theory import (
    Key,
    ScaleMode,
    degree_of_pitch_class,
    degree_pitch_class,
    diatonic_pitch_classes,
    is_note_in_scale,
    midi_for_degree,
    note_number,
    parse_mode,
    parse_progression_string,
    wrap_semitones,
)


def test_key_from_name_and_str():
    key = Key.from_name("Eb", "aeolian")
    assert key.tonic_pc == 3
    assert key.mode == ScaleMode.AEOLIAN
    assert str(key) == "Eb Aeolian"


def test_key_from_unknown_name_falls_back_to_c():
    key = Key.from_name("H", "lydian")
    assert key.tonic_pc == 0
    assert key.mode == ScaleMode.LYDIAN


@pytest.mark.parametrize(
    "name, expected",
    [
        ("major", ScaleMode.IONIAN),
        ("minor", ScaleMode.AEOLIAN),
        ("Dorian", ScaleMode.DORIAN),
        ("  locrian ", ScaleMode.LOCRIAN),
        ("nonsense", ScaleMode.IONIAN),
        (None, ScaleMode.IONIAN),
    ],
)
def test_parse_mode(name, expected):
    assert parse_mode(name) == expected


def test_diatonic_pitch_classes():
    assert diatonic_pitch_classes(Key(0, ScaleMode.IONIAN)) == [0, 2, 4, 5, 7, 9, 11]
    assert diatonic_pitch_classes(Key(0, ScaleMode.AEOLIAN)) == [0, 2, 3, 5, 7, 8, 10]
    assert diatonic_pitch_classes(Key(7, ScaleMode.IONIAN)) == [7, 9, 11, 0, 2, 4, 6]


def test_degree_lookups():
    c = Key(0, ScaleMode.IONIAN)
    assert degree_pitch_class(c, 5) == 7
    assert degree_pitch_class(c, 0) is None
    assert degree_pitch_class(c, 8) is None
    assert midi_for_degree(c, 5, 4) == 67
    assert midi_for_degree(c, 9, 4) is None
    assert degree_of_pitch_class(c, 11) == 7
    assert degree_of_pitch_class(c, 1) == 0
    assert note_number(0, 4) == 60


@pytest.mark.parametrize("diff, expected", [(0, 0), (5, 5), (6, -6), (7, -5), (11, -1), (-7, 5), (13, 1)])
def test_wrap_semitones(diff, expected):
    assert wrap_semitones(diff) == expected


def test_is_note_in_scale():
    c = Key(0, ScaleMode.IONIAN)
    assert is_note_in_scale(c, 64)
    assert not is_note_in_scale(c, 61)


def test_parse_progression_string_sections_and_repeats():
    tokens = parse_progression_string("<A> I*2 | V7(b9,#11)\n<B> vi, IV")
    assert tokens == [
        ("I", "A"),
        ("I", "A"),
        ("V7(b9,#11)", "A"),
        ("vi", "B"),
        ("IV", "B"),
    ]


def test_parse_progression_string_defaults():
    assert parse_progression_string("") == []
    assert parse_progression_string("ii V*x") == [("ii", "Main"), ("V", "Main")]
