import pytest

from chordlab.chordlab_core import render_from_options
from chordlab.core.chord_model import ChordQuality, SeventhQuality
from chordlab.core.harmonizer import (
    AccidentalHint,
    HarmonizerSettings,
    MelodyEvent,
    analyze_melody_event,
    analyze_melody_line,
    build_chord_events_from_harmonization,
    build_naive_harmonization,
    chord_candidates_for_melody_note,
    choose_best_transition,
    melody_events_from_values,
    parse_melody_note,
)
from chordlab.core.music_theory import Key, ScaleMode


def _melody(values, step=1.0):
    return melody_events_from_values(values, beat_step=step)


def _candidates(key, value):
    midi, hint = parse_melody_note(value)
    analysis = analyze_melody_event(key, MelodyEvent(0.0, 1.0, midi, hint))
    return chord_candidates_for_melody_note(key, analysis, hint)


def _chosen(steps):
    return [step.chosen.roman if step.chosen else None for step in steps]


# ---------- Melody input ----------

@pytest.mark.parametrize(
    "value, expected",
    [
        (72, (72, AccidentalHint.NONE)),
        (72.0, (72, AccidentalHint.NONE)),
        ("72", (72, AccidentalHint.NONE)),
        ("c4", (60, AccidentalHint.NONE)),
        ("F#5", (78, AccidentalHint.SHARP)),
        ("Bb4", (70, AccidentalHint.FLAT)),
        ("En4", (64, AccidentalHint.NATURAL)),
        ("B#4", (72, AccidentalHint.SHARP)),
        ("Cb5", (71, AccidentalHint.FLAT)),
    ],
)
def test_parse_melody_note(value, expected):
    assert parse_melody_note(value) == expected


@pytest.mark.parametrize("value", [None, True, "H4", "C#", ""])
def test_parse_melody_note_rejects(value):
    assert parse_melody_note(value) is None


def test_melody_events_keep_their_slot(capsys):
    melody = _melody([72, None, "zz", "F#5"], step=2.0)
    assert [(e.time_beats, e.midi) for e in melody] == [(0.0, 72), (6.0, 78)]
    assert all(e.duration_beats == 2.0 for e in melody)
    out = capsys.readouterr().out
    assert "[WARN] Skip melody note 'zz'" in out
    assert "None" not in out


# ---------- Analysis ----------

@pytest.mark.parametrize(
    "midi, degree, offset",
    [
        (64, 3, 0),
        (65, 4, 0),
        (61, 1, 1),
        (63, 2, 1),
        (66, 4, 1),
        (70, 6, 1),
    ],
)
def test_analyze_melody_event(c_major, midi, degree, offset):
    analysis = analyze_melody_event(c_major, MelodyEvent(2.0, 1.0, midi))
    assert (analysis.degree, analysis.semitone_offset) == (degree, offset)
    assert analysis.is_diatonic == (offset == 0)
    assert analysis.pitch_class == midi % 12
    assert analysis.time_beats == 2.0


def test_analyze_melody_line_other_key():
    d_dorian = Key(2, ScaleMode.DORIAN)
    line = analyze_melody_line(d_dorian, _melody([62, 71, 72]))
    assert [(a.degree, a.semitone_offset) for a in line] == [(1, 0), (6, 0), (7, 0)]
    assert analyze_melody_line(d_dorian, []) == []


# ---------- Candidates ----------

@pytest.mark.parametrize(
    "value, romans, symbols",
    [
        (64, ["I", "iii", "vi"], ["C", "Em", "Am"]),
        (71, ["V", "viidim"], ["G", "Bdim"]),
        (62, ["ii", "V"], ["Dm", "G"]),
        (65, ["IV", "ii"], ["F", "Dm"]),
    ],
)
def test_diatonic_candidates(c_major, value, romans, symbols):
    candidates = _candidates(c_major, value)
    assert [c.roman for c in candidates] == romans
    assert [c.symbol for c in candidates] == symbols
    assert candidates[0].reason.startswith("Melody degree")


@pytest.mark.parametrize(
    "value, romans",
    [
        ("Db5", ["bII"]),
        ("C#5", ["VI", "VI7"]),
        ("Eb5", ["bIII"]),
        ("D#5", ["VII7"]),
        ("Gb4", ["bV"]),
        ("F#4", ["II7"]),
        ("Ab4", ["bVI"]),
        ("G#4", ["III", "III7"]),
        ("Bb4", ["bVII"]),
        ("A#4", ["#IV"]),
    ],
)
def test_chromatic_candidates_follow_accidental(c_major, value, romans):
    candidates = _candidates(c_major, value)
    assert [c.roman for c in candidates] == romans
    for candidate in candidates:
        assert candidate.reason.startswith("Chromatic melody")


def test_chromatic_candidate_reasons(c_major):
    neapolitan = _candidates(c_major, "Db5")[0]
    assert neapolitan.symbol == "Db"
    assert "Neapolitan" in neapolitan.reason
    a7 = _candidates(c_major, "C#5")[1]
    assert a7.recipe.seventh == SeventhQuality.DOMINANT7
    assert a7.recipe.quality == ChordQuality.MAJOR
    assert "sec. to II" in a7.reason


def test_non_diatonic_note_without_accidental_has_no_candidates(c_major):
    assert _candidates(c_major, 61) == []
    assert _candidates(c_major, "En4") != []


def test_candidates_only_in_ionian():
    a_minor = Key(9, ScaleMode.AEOLIAN)
    assert _candidates(a_minor, 69) == []


# ---------- Harmonization ----------

def test_harmonization_follows_transitions(c_major):
    steps = build_naive_harmonization(_melody([72, 74, 71, 72]), c_major)
    assert _chosen(steps) == ["I", "ii", "V", "I"]
    assert steps[0].reason.startswith("Start on tonic")
    assert steps[1].reason.startswith("Transition I -> ii")


def test_harmonization_keeps_chord_while_melody_fits(c_major):
    melody = _melody([72, 76, 79])
    assert _chosen(build_naive_harmonization(melody, c_major)) == ["I", "I", "I"]
    restless = HarmonizerSettings(prefer_chord_continuity=False)
    assert _chosen(build_naive_harmonization(melody, c_major, restless)) == ["I", "I", "V"]


def test_harmonization_tonic_start(c_major):
    melody = _melody([67])
    assert _chosen(build_naive_harmonization(melody, c_major)) == ["I"]
    settings = HarmonizerSettings(prefer_tonic_start=False)
    assert _chosen(build_naive_harmonization(melody, c_major, settings)) == ["V"]


def test_harmonization_reuses_previous_chord_for_chromatic_note(c_major):
    steps = build_naive_harmonization(_melody([73, 72, 73]), c_major)
    assert _chosen(steps) == [None, "I", "I"]
    assert steps[0].reason == "Non-diatonic melody note; no chord available"
    assert steps[2].reason == "Non-diatonic melody note; reused previous chord I"


def test_harmonization_with_accidental_uses_chromatic_chord(c_major):
    steps = build_naive_harmonization(_melody([72, "F#5", 79, 71, 72]), c_major)
    assert _chosen(steps) == ["I", "II7", "V", "V", "I"]


def test_harmonization_short_reasons(c_major):
    settings = HarmonizerSettings(detailed_reasons=False)
    steps = build_naive_harmonization(_melody([72, 74]), c_major, settings)
    assert steps[0].reason == "Start on tonic"
    assert steps[1].reason == "Transition I -> ii"


def test_harmonization_empty_and_unsupported(capsys):
    assert build_naive_harmonization([], Key(0, ScaleMode.IONIAN)) == []
    debug = HarmonizerSettings(debug=True)
    assert build_naive_harmonization(_melody([69]), Key(9, ScaleMode.AEOLIAN), debug) == []
    assert "[Harmonizer]" in capsys.readouterr().out


def test_harmonization_debug_log(c_major, capsys):
    build_naive_harmonization(_melody([72, 74]), c_major, HarmonizerSettings(debug=True))
    out = capsys.readouterr().out
    assert "[Harmonizer] 0: midi=72 deg=1+0 -> I" in out


def test_choose_best_transition_falls_back_to_first(c_major):
    iii = _candidates(c_major, 64)[1]
    assert iii.roman == "iii"
    # iii -> vi nếu có, không thì ứng viên đầu
    assert choose_best_transition(iii, _candidates(c_major, 72)).roman == "vi"
    assert choose_best_transition(iii, _candidates(c_major, 74)).roman == "ii"


def test_chord_events_from_harmonization(c_major):
    steps = build_naive_harmonization(_melody([73, 72, 74], step=2.0), c_major)
    evs = build_chord_events_from_harmonization(c_major, steps)
    assert [(e.time_beats, e.melody_midi) for e in evs] == [(2.0, 72), (4.0, 74)]
    assert all(e.key == c_major for e in evs)
    assert evs[1].recipe == steps[2].chosen.recipe


def test_settings_from_user_options():
    settings = HarmonizerSettings.from_user_options(
        {"harmonizer": {"prefer_tonic_start": False, "debug": True}}
    )
    assert not settings.prefer_tonic_start
    assert settings.prefer_chord_continuity
    assert settings.debug
    assert HarmonizerSettings.from_user_options(None) == HarmonizerSettings()


# ---------- Pipeline ----------

def test_render_harmonizes_melody_without_progression(capsys):
    result = render_from_options({"key": "C", "melody": [72, 74, "B4", 72]}, write_midi=False)
    assert [row.numeral for row in result.rows] == ["I", "ii", "V", "I"]
    assert [v.soprano for v in result.voiced] == [72, 74, 71, 72]
    assert "> Harmonized 4 chord(s) from melody" in capsys.readouterr().out


def test_render_harmonizer_unsupported_mode(capsys):
    result = render_from_options({"key": "A", "mode": "aeolian", "melody": [69, 71]}, write_midi=False)
    assert result.rows == []
    assert "[WARN] Harmonizer" in capsys.readouterr().out


def test_render_progression_accepts_note_names():
    result = render_from_options({"key": "C", "progression": "I V I", "melody": ["C5", "B4", "C5"]}, write_midi=False)
    assert [v.soprano for v in result.voiced] == [72, 71, 72]
