# Tệp: chordlab/core/chord_builder.py
# (FINAL V1.3.0) - CHORD BUILDER
#
# Nhiệm vụ:
#   - (Key, ChordRecipe) -> pitch class / MIDI cụ thể.
#   - Xoay thế đảo: N nốt thấp nhất lên trên (+12), N = inversion kẹp về số nốt - 1.
#   - Dựng progression từ list numeral, điều chỉnh triad theo mode, tạo ChordEvent.
#
# Fallback:
#   - Degree hỏng (scale data lỗi) -> root pc = 0, không raise.

from __future__ import annotations

from typing import Iterable, List, Optional, Sequence, Tuple

from chordlab.core.chord_model import (
    SUS4_INTERVAL,
    ChordEvent,
    ChordQuality,
    ChordRecipe,
    Inversion,
    seventh_interval,
    triad_intervals,
)
from chordlab.core.music_theory import Key, degree_pitch_class, note_number


def root_pitch_class(key: Key, recipe: ChordRecipe) -> int:
    """Pitch class của root (degree + offset). Degree hỏng -> 0."""
    base = degree_pitch_class(key, recipe.degree)
    if base is None:
        base = 0
    return (base + recipe.root_offset) % 12


def chord_intervals(recipe: ChordRecipe) -> List[int]:
    """Semitone từ root: [0, third|fourth, fifth, (seventh)]."""
    third, fifth = triad_intervals(recipe.quality)
    if recipe.is_sus4:
        third = SUS4_INTERVAL
    intervals = [0, third, fifth]
    if recipe.has_seventh:
        intervals.append(seventh_interval(recipe.seventh))
    return intervals


def chord_pitch_classes(key: Key, recipe: ChordRecipe) -> List[int]:
    """Pitch class theo thứ tự vai trò: root, third, fifth, (seventh)."""
    root_pc = root_pitch_class(key, recipe)
    return [(root_pc + iv) % 12 for iv in chord_intervals(recipe)]


def bass_pitch_class(key: Key, recipe: ChordRecipe) -> int:
    """
    Pitch class mà thế đảo đặt ở bass.

    Kẹp giống rotate_inversion: third inversion trên triad -> fifth.
    """
    pcs = chord_pitch_classes(key, recipe)
    return pcs[min(int(recipe.inversion), len(pcs) - 1)]


def rotate_inversion(notes: Sequence[int], inversion: Inversion) -> List[int]:
    out = list(notes)
    if not out:
        return out
    turns = max(0, min(int(inversion), len(out) - 1))
    for _ in range(turns):
        lowest = out.pop(0)
        out.append(lowest + 12)
    return out


def build_chord(key: Key, recipe: ChordRecipe, octave: int = 4) -> Tuple[int, ...]:
    """
    Dựng hợp âm MIDI ở octave cho trước (root position rồi xoay thế đảo).

    C Ionian, V7, octave 4 -> (67, 71, 74, 77).
    """
    base = degree_pitch_class(key, recipe.degree)
    if base is None:
        base = 0
    # offset cộng thẳng vào MIDI của bậc (bI trong C -> B3, không nhảy octave)
    root_midi = note_number(base, octave) + recipe.root_offset
    notes = [root_midi + iv for iv in chord_intervals(recipe)]
    return tuple(rotate_inversion(notes, recipe.inversion))


def build_progression(
    key: Key,
    numerals: Iterable[str],
    octave: int = 4,
    debug: bool = False,
) -> List[Tuple[int, ...]]:
    """Parse + build từng numeral; numeral hỏng bị bỏ qua (log khi debug)."""
    from chordlab.core.notation_parser import parse_roman_numeral

    chords: List[Tuple[int, ...]] = []
    for numeral in numerals:
        result = parse_roman_numeral(key, numeral)
        if not result.success:
            if debug:
                print(f"[ChordBuilder] skip '{numeral}': {result.message}")
            continue
        chords.append(build_chord(key, result.recipe, octave))
    return chords


def adjust_triad_quality_to_mode(key: Key, recipe: ChordRecipe) -> Tuple[ChordRecipe, bool]:
    """Ép triad quality về đúng bảng diatonic của mode. Trả về (recipe, was_adjusted)."""
    from chordlab.core.function_analyzer import diatonic_triad_quality

    expected = diatonic_triad_quality(key, recipe.degree)
    if recipe.quality == expected:
        return recipe, False
    return recipe.with_changes(quality=expected), True


def build_chord_events(
    key: Key,
    recipes: Sequence[ChordRecipe],
    start_beat: float = 0.0,
    beat_step: float = 1.0,
    melody: Optional[Sequence[Optional[int]]] = None,
) -> List[ChordEvent]:
    """Mỗi recipe -> 1 ChordEvent cách nhau beat_step; melody (nếu có) khoá soprano."""
    events: List[ChordEvent] = []
    for idx, recipe in enumerate(recipes):
        melody_midi = None
        if melody is not None and idx < len(melody):
            melody_midi = melody[idx]
        events.append(
            ChordEvent(
                key=key,
                recipe=recipe,
                time_beats=start_beat + idx * beat_step,
                melody_midi=melody_midi,
            )
        )
    return events


def is_dominant_like(quality: ChordQuality) -> bool:
    return quality in (ChordQuality.MAJOR, ChordQuality.AUGMENTED)
