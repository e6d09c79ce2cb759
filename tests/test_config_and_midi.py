import os

import mido
import pytest
import yaml

from chord_helpers import I, V7, events
from chordlab.chordlab_core import main, parse_tokens, render_from_options, render_progression
from chordlab.core.chord_model import VoicedChord
from chordlab.core.register_manager import RegisterBand, RegisterManager
from chordlab.core.voice_leading import voice_lead_progression
from chordlab.utils.config_loader import (
    VoicingProfileLoader,
    apply_voicing_profile,
    load_user_options,
)
from chordlab.utils.midi_writer import MidiWriter

EXAMPLE_OPTIONS = os.path.join(os.path.dirname(__file__), "..", "config", "user_options.example.yaml")


def _write_yaml(path, data):
    path.write_text(yaml.safe_dump(data, allow_unicode=True), encoding="utf-8")
    return str(path)


# ---------- RegisterManager ----------

def test_register_band_helpers():
    band = RegisterBand(55, 80)
    assert band.fold(96) == 72
    assert band.fold(40) == 64
    assert band.contains(55) and not band.contains(81)


def test_register_manager_overrides_and_aliases():
    rm = RegisterManager({"voicing": {"registers": {"B": [40, 58], "upper_voices": {"min": 60, "max": 79}}}})
    assert rm.band("BASS") == RegisterBand(40, 58)
    assert rm.band("U") == RegisterBand(60, 79)
    with pytest.raises(KeyError):
        rm.band("soprano")


def test_register_manager_bad_override_warns(capsys):
    rm = RegisterManager({"voicing": {"registers": {"BASS": {"min": "low"}, "TENOR": [48, 67]}}})
    assert rm.band("BASS") == RegisterBand(36, 60)
    out = capsys.readouterr().out
    assert "[WARN] Register override" in out
    assert "[WARN] Register không hỗ trợ" in out


# ---------- Config loading ----------

def test_load_user_options(tmp_path):
    path = _write_yaml(tmp_path / "opts.yaml", {"key": "G", "progression": "I V"})
    assert load_user_options(path) == {"key": "G", "progression": "I V"}


def test_load_user_options_errors(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_user_options(str(tmp_path / "missing.yaml"))
    bad = tmp_path / "list.yaml"
    bad.write_text("- a\n- b\n", encoding="utf-8")
    with pytest.raises(ValueError):
        load_user_options(str(bad))


def test_voicing_profile_loader(tmp_path):
    path = _write_yaml(
        tmp_path / "profiles.yaml",
        {
            "trio": {"name": "Trio", "num_voices": 3, "unknown_field": 1},
            "broken": "not a mapping",
        },
    )
    loader = VoicingProfileLoader(path)
    assert loader.has_profile("trio")
    assert not loader.has_profile("broken")
    profile = loader.get_profile("trio")
    assert profile.name == "Trio" and profile.num_voices == 3
    assert loader.get_profile("nope").name == "default"


def test_voicing_profile_loader_missing_file_warns(tmp_path, capsys):
    loader = VoicingProfileLoader(str(tmp_path / "nope.yaml"))
    assert loader.profiles == {}
    assert "[WARN] Loader Error" in capsys.readouterr().out


def test_apply_voicing_profile_user_keys_win(tmp_path):
    _write_yaml(tmp_path / "profiles.yaml", {"close": {"num_voices": 3, "upper_min": 57, "upper_max": 76}})
    options = {
        "voicing_profiles_path": "profiles.yaml",
        "voicing_profile": "close",
        "voicing": {"upper_max": 78},
    }
    merged = apply_voicing_profile(options, base_dir=str(tmp_path))
    assert merged["voicing"]["num_voices"] == 3
    assert merged["voicing"]["upper_min"] == 57
    assert merged["voicing"]["upper_max"] == 78
    assert options["voicing"] == {"upper_max": 78}


def test_apply_voicing_profile_without_reference():
    options = {"key": "C"}
    assert apply_voicing_profile(options) is options


# ---------- MIDI ----------

def _cadence(c_major):
    return voice_lead_progression(events(c_major, [I, V7, I]))


def test_midi_writer_round_trip(c_major, tmp_path):
    writer = MidiWriter(ppq=480, tempo_bpm=90)
    writer.write_voiced_progression(_cadence(c_major), beats_per_chord=1.0, track_name="SATB")
    path = writer.save(str(tmp_path / "out" / "cadence.mid"))

    midi = mido.MidiFile(path)
    assert midi.ticks_per_beat == 480
    assert len(midi.tracks) == 2
    note_ons = [m for m in midi.tracks[1] if m.type == "note_on" and m.velocity > 0]
    assert len(note_ons) == 12
    assert sorted(m.note for m in note_ons[:4]) == [48, 64, 67, 72]
    tempos = [m for m in midi.tracks[0] if m.type == "set_tempo"]
    assert len(tempos) == 1
    assert mido.tempo2bpm(tempos[0].tempo) == pytest.approx(90)


def test_repeated_notes_are_released_before_restrike(c_major):
    writer = MidiWriter()
    writer.write_voiced_progression(_cadence(c_major))
    track = writer.finalize().tracks[1]
    state = {}
    for msg in track:
        if msg.type == "note_on" and msg.velocity > 0:
            assert not state.get(msg.note), f"note {msg.note} struck twice"
            state[msg.note] = True
        elif msg.type == "note_off":
            state[msg.note] = False
    assert not any(state.values())


def test_midi_finalize_is_idempotent(c_major):
    writer = MidiWriter()
    writer.write_voiced_progression(_cadence(c_major))
    first = writer.finalize()
    second = writer.finalize()
    assert first is second
    assert sum(1 for m in first.tracks[0] if m.type == "set_tempo") == 1


def test_midi_writer_rejects_empty_progression():
    with pytest.raises(ValueError):
        MidiWriter().write_voiced_progression([])


def test_midi_note_clamping():
    writer = MidiWriter()
    writer.write_voiced_progression([VoicedChord(0.0, (200, -5))], velocity=500)
    notes = [m for m in writer.finalize().tracks[1] if m.type == "note_on"]
    assert sorted(m.note for m in notes) == [0, 127]
    assert all(m.velocity == 127 for m in notes)


# ---------- Pipeline ----------

def test_parse_tokens_skips_invalid(c_major, capsys):
    parsed = parse_tokens(c_major, "<Intro> I foo V7*2")
    assert [(token, section) for token, section, _ in parsed] == [("I", "Intro"), ("V7", "Intro"), ("V7", "Intro")]
    assert "[WARN] Skip 'foo'" in capsys.readouterr().out


def test_render_from_options_writes_midi(tmp_path):
    out = tmp_path / "render.mid"
    result = render_from_options(
        {"key": "C", "progression": "<A> I V7 I", "midi": {"output_path": str(out)}}
    )
    assert [row.symbol for row in result.rows] == ["C", "G7", "C"]
    assert [row.numeral for row in result.rows] == ["I", "V7", "I"]
    assert [row.section for row in result.rows] == ["A", "A", "A"]
    assert result.rows[1].voicing == (43, 65, 67, 71)
    assert result.midi_path == str(out)
    assert out.exists()


def test_render_symbol_notation_with_analysis():
    result = render_from_options(
        {"key": "C", "notation": "symbol", "progression": "C Ab D7 G7 C"}, write_midi=False
    )
    infos = [row.function_info for row in result.rows]
    assert infos == ["", "from ∥ minor", "sec. to V", "", ""]
    assert result.midi_path is None


def test_render_unknown_notation_falls_back_to_roman(capsys):
    result = render_from_options({"notation": "tabs", "progression": "I IV"}, write_midi=False)
    assert len(result.rows) == 2
    assert "[WARN] Unknown notation" in capsys.readouterr().out


def test_render_empty_progression():
    result = render_from_options({"key": "D", "progression": ""}, write_midi=False)
    assert result.rows == [] and result.voiced == []


def test_render_with_melody_and_profile(tmp_path):
    _write_yaml(tmp_path / "profiles.yaml", {"trio": {"num_voices": 3}})
    options_path = _write_yaml(
        tmp_path / "opts.yaml",
        {
            "key": "C",
            "progression": "I bogus V I",
            "melody": [72, 71, 72],
            "voicing_profiles_path": "profiles.yaml",
            "voicing_profile": "trio",
        },
    )
    result = render_progression(options_path, write_midi=False)
    assert [len(row.voicing) for row in result.rows] == [3, 3, 3]
    assert [v.soprano for v in result.voiced] == [72, 71, 72]


def test_example_options_render():
    result = render_progression(EXAMPLE_OPTIONS, write_midi=False)
    assert len(result.rows) == 8
    assert result.rows[5].function_info == "sec. to V"
    assert [row.section for row in result.rows] == ["A"] * 4 + ["B"] * 4


def test_main_without_midi(tmp_path, capsys):
    out = tmp_path / "cli.mid"
    options_path = _write_yaml(
        tmp_path / "opts.yaml", {"progression": "ii7 V7 I", "midi": {"output_path": str(out)}}
    )
    assert main([options_path, "--no-midi"]) == 0
    assert not out.exists()
    assert "=== CHORDLAB: RENDER DONE ===" in capsys.readouterr().out


def test_render_progression_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        render_progression(str(tmp_path / "missing.yaml"))
