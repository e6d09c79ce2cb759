# Tệp: chordlab/chordlab_core.py
# (FINAL V2.1.0) - CHORDLAB CORE PIPELINE
#
# Vai trò:
# - "Bộ não tổng" gọi các lớp trong core/ và utils/.
# - user_options.yaml -> Key -> parse token (roman | symbol) -> ChordEvent
#   -> voice leading -> bảng ProgressionRow -> (tuỳ chọn) file MIDI.
# - Chỉ có melody (không progression) -> harmonizer tự chọn hợp âm.
#
# Chạy:
#   python -m chordlab.chordlab_core config/user_options.example.yaml

import argparse
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

from chordlab.core.chord_builder import build_chord_events
from chordlab.core.chord_model import ChordEvent, ChordRecipe, ParseResult, Tension, VoicedChord, tensions_sorted
from chordlab.core.function_analyzer import analyze_chord_profile, non_diatonic_info
from chordlab.core.harmonizer import (
    HarmonizerSettings,
    build_chord_events_from_harmonization,
    build_naive_harmonization,
    melody_events_from_values,
    parse_melody_note,
)
from chordlab.core.music_theory import Key, parse_progression_string
from chordlab.core.notation_parser import parse_chord_symbol, parse_roman_numeral
from chordlab.core.pitch_spelling import pitch_name_from_midi
from chordlab.core.symbol_formatter import chord_symbol_with_tensions, roman_numeral_with_tensions
from chordlab.core.tension_classifier import detect_tensions, requested_tensions
from chordlab.core.voice_leading import VoiceLeadingConfig, VoiceLeadingEngine
from chordlab.utils.config_loader import apply_voicing_profile, load_user_options
from chordlab.utils.midi_writer import MidiWriter

NOTATIONS = ("roman", "symbol")


# =========================
# 1. RESULT TYPES
# =========================

@dataclass
class ProgressionRow:
    index: int
    section: str
    token: str
    numeral: str
    symbol: str
    function_info: str
    tensions: List[str]
    voicing: Tuple[int, ...]
    voicing_names: List[str]

    def format(self) -> str:
        info = f" [{self.function_info}]" if self.function_info else ""
        tens = f" tensions={','.join(self.tensions)}" if self.tensions else ""
        notes = " ".join(self.voicing_names)
        return f"{self.index:>3} <{self.section}> {self.numeral:<12} {self.symbol:<14} {notes}{info}{tens}"


@dataclass
class RenderResult:
    key: Key
    rows: List[ProgressionRow] = field(default_factory=list)
    voiced: List[VoicedChord] = field(default_factory=list)
    midi_path: Optional[str] = None


# =========================
# 2. OPTIONS HELPERS
# =========================

def _safe_float(value, default: float) -> float:
    try:
        if value is None:
            return default
        return float(value)
    except (TypeError, ValueError):
        return default


def _safe_int(value, default: int) -> int:
    try:
        if value is None:
            return default
        return int(value)
    except (TypeError, ValueError):
        return default


def _validate_options(options: Dict[str, Any]) -> Dict[str, Any]:
    """Đảm bảo các field cơ bản luôn có giá trị hợp lệ."""
    if not options.get("key"):
        options["key"] = "C"
    if not options.get("mode"):
        options["mode"] = "ionian"
    notation = str(options.get("notation") or "roman").strip().lower()
    if notation not in NOTATIONS:
        print(f"  [WARN] Unknown notation '{notation}', using 'roman'.")
        notation = "roman"
    options["notation"] = notation
    if _safe_float(options.get("beats_per_chord"), 0.0) <= 0:
        options["beats_per_chord"] = 1.0
    return options


def _normalize_melody(raw: Any) -> Optional[List[Optional[int]]]:
    """MIDI số hoặc tên nốt ("F#5"); null / giá trị hỏng -> soprano tự do."""
    if not raw:
        return None
    melody: List[Optional[int]] = []
    for value in raw:
        parsed = parse_melody_note(value)
        melody.append(parsed[0] if parsed else None)
    return melody


# =========================
# 3. ROWS
# =========================

def _merge_tensions(requested: Sequence[Tension], detected: Sequence[Tension]) -> List[Tension]:
    kinds = {t.kind for t in requested}
    merged = list(requested) + [t for t in detected if t.kind not in kinds]
    return tensions_sorted(merged)


def build_progression_row(
    index: int,
    section: str,
    token: str,
    event: ChordEvent,
    voiced: VoicedChord,
) -> ProgressionRow:
    key, recipe = event.key, event.recipe
    profile = analyze_chord_profile(key, recipe)
    detected = detect_tensions(key, recipe, voiced.voices_midi)
    tensions = _merge_tensions(requested_tensions(recipe), detected.tensions)

    return ProgressionRow(
        index=index,
        section=section,
        token=token,
        numeral=roman_numeral_with_tensions(key, recipe, tensions),
        symbol=chord_symbol_with_tensions(key, recipe, bass_midi=voiced.bass, tensions=tensions),
        function_info=non_diatonic_info(profile, key),
        tensions=[str(t) for t in tensions],
        voicing=voiced.voices_midi,
        voicing_names=[pitch_name_from_midi(m, key) for m in voiced.voices_midi],
    )


def parse_tokens(
    key: Key,
    progression: str,
    notation: str = "roman",
) -> List[Tuple[str, str, ChordRecipe]]:
    """Token hỏng bị bỏ qua với 1 dòng [WARN]."""
    parse = parse_roman_numeral if notation == "roman" else parse_chord_symbol
    parsed: List[Tuple[str, str, ChordRecipe]] = []
    for token, section in parse_progression_string(progression):
        result: ParseResult = parse(key, token)
        if not result.success:
            print(f"  [WARN] Skip '{token}': {result.message}")
            continue
        if result.message:
            print(f"  [ChordLab] '{token}': {result.message}")
        parsed.append((token, section, result.recipe))
    return parsed


def harmonize_melody(
    key: Key,
    options: Dict[str, Any],
    beats_per_chord: float = 1.0,
) -> Tuple[List[Tuple[str, str, ChordRecipe]], List[ChordEvent]]:
    """Không có progression: tự chọn 1 hợp âm / nốt melody (chỉ Ionian)."""
    settings = HarmonizerSettings.from_user_options(options)
    melody = melody_events_from_values(options.get("melody") or [], beat_step=beats_per_chord)
    steps = build_naive_harmonization(melody, key, settings)
    if melody and not steps:
        print(f"  [WARN] Harmonizer: {key} không được hỗ trợ (chỉ Ionian).")

    parsed: List[Tuple[str, str, ChordRecipe]] = []
    for step in steps:
        if step.chosen is None:
            print(f"  [WARN] Skip melody {step.melody.midi}: {step.reason}")
            continue
        if settings.detailed_reasons:
            print(f"  [Harmonizer] {step.melody.midi} -> {step.chosen.roman}: {step.reason}")
        parsed.append((step.chosen.roman, "Main", step.chosen.recipe))
    return parsed, build_chord_events_from_harmonization(key, steps)


# =========================
# 4. PIPELINE
# =========================

def render_from_options(
    user_options: Dict[str, Any],
    base_dir: str = ".",
    write_midi: bool = True,
) -> RenderResult:
    print("\n=== CHORDLAB: RENDER START ===")
    options = _validate_options(dict(user_options))
    options = apply_voicing_profile(options, base_dir)

    key = Key.from_name(str(options["key"]), str(options["mode"]))
    print(f"  > Key: {key}")

    result = RenderResult(key=key)
    beats_per_chord = _safe_float(options.get("beats_per_chord"), 1.0)
    progression = str(options.get("progression") or "")
    if progression.strip() or not options.get("melody"):
        parsed = parse_tokens(key, progression, options["notation"])
        print(f"  > Parsed {len(parsed)} chord(s) ({options['notation']})")
        events = build_chord_events(
            key,
            [recipe for _token, _section, recipe in parsed],
            start_beat=0.0,
            beat_step=beats_per_chord,
            melody=_normalize_melody(options.get("melody")),
        )
    else:
        parsed, events = harmonize_melody(key, options, beats_per_chord)
        print(f"  > Harmonized {len(parsed)} chord(s) from melody")

    if not parsed:
        print("  [WARN] No valid chords, nothing to voice.")
        print("=== CHORDLAB: RENDER DONE ===\n")
        return result

    config = VoiceLeadingConfig.from_user_options(options)
    print(
        f"  > Voicing: {config.num_voices} voices, "
        f"upper {config.upper_min}..{config.upper_max}, bass octave {config.bass_octave}"
    )
    result.voiced = VoiceLeadingEngine(config).voice_lead_progression(events)

    for idx, ((token, section, _recipe), event, voiced) in enumerate(zip(parsed, events, result.voiced)):
        row = build_progression_row(idx, section, token, event, voiced)
        result.rows.append(row)
        print(f"    {row.format()}")

    midi_cfg = options.get("midi", {}) or {}
    output_path = midi_cfg.get("output_path")
    if write_midi and output_path:
        print("  > Writing MIDI file...")
        writer = MidiWriter(
            ppq=_safe_int(midi_cfg.get("ppq"), 480),
            tempo_bpm=_safe_float(midi_cfg.get("tempo_bpm"), 80.0),
        )
        writer.write_voiced_progression(
            result.voiced,
            beats_per_chord=beats_per_chord,
            velocity=_safe_int(midi_cfg.get("velocity"), 80),
            program=_safe_int(midi_cfg.get("program"), 0),
            track_name="ChordLab SATB",
        )
        result.midi_path = writer.save(str(output_path))
        print(f"  > Output MIDI: {result.midi_path}")

    print("=== CHORDLAB: RENDER DONE ===\n")
    return result


def render_progression(options_path: str, write_midi: bool = True) -> RenderResult:
    """
    Entry chính: đọc user_options từ options_path rồi chạy pipeline.
    voicing_profiles_path (nếu tương đối) được tính từ thư mục chứa options.
    """
    user_options = load_user_options(options_path)
    base_dir = os.path.dirname(os.path.abspath(options_path))
    return render_from_options(user_options, base_dir=base_dir, write_midi=write_midi)


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        description="Parse, analyze and voice-lead a chord progression."
    )
    parser.add_argument("options", help="path to user_options.yaml")
    parser.add_argument("--no-midi", action="store_true", help="skip MIDI export")
    args = parser.parse_args(argv)

    render_progression(args.options, write_midi=not args.no_midi)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
