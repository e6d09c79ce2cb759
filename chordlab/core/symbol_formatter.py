# Tệp: chordlab/core/symbol_formatter.py
# (FINAL V1.3.0) - SYMBOL FORMATTER
#
# ChordRecipe -> text:
#   - recipe_to_roman_numeral   : "V7", "bII", "nvi", "viiø7/3rd" (parse lại được)
#   - roman_numeral_with_tensions: "V7b9#11", "V7sus4", "Iadd9"
#   - chord_symbol              : "G7", "Bbmaj7", "Bm7b5", "C/E"
#   - chord_symbol_with_tensions: "G7(b9,#11)", "G7sus4", "Cadd9"
#   - spelled_chord_tones       : ["G", "B", "D", "F"] (đánh vần theo chữ cái)
#
# Chỉ tension COLOR_TONE / SUSPENSION được hiện ra.

from __future__ import annotations

from typing import List, Optional, Sequence, Tuple

from chordlab.core.chord_builder import (
    bass_pitch_class,
    chord_intervals,
    chord_pitch_classes,
    root_pitch_class,
)
from chordlab.core.chord_model import (
    ChordQuality,
    ChordRecipe,
    Inversion,
    RequestedExtensions as Ext,
    SeventhQuality,
    Tension,
    TensionClassification,
    TensionKind,
    tensions_sorted,
)
from chordlab.core.function_analyzer import (
    analyze_chord_profile,
    borrowed_source_mode,
    degree_to_roman,
)
from chordlab.core.music_theory import Key
from chordlab.core.notation_parser import parallel_ionian_offset
from chordlab.core.pitch_spelling import (
    degree_letter_index,
    pitch_class_name,
    spell_stack,
)
from chordlab.core.tension_classifier import requested_tensions

INVERSION_SUFFIXES = {
    Inversion.ROOT: "",
    Inversion.FIRST: "/3rd",
    Inversion.SECOND: "/5th",
    Inversion.THIRD: "/7th",
}

ROMAN_SEVENTH_TEXT = {
    SeventhQuality.MAJOR7: "maj7",
    SeventhQuality.MINOR7: "m7",
    SeventhQuality.HALF_DIMINISHED7: "ø7",
    SeventhQuality.DIMINISHED7: "dim7",
}

SYMBOL_QUALITY_TEXT = {
    ChordQuality.MAJOR: "",
    ChordQuality.MINOR: "m",
    ChordQuality.DIMINISHED: "dim",
    ChordQuality.AUGMENTED: "aug",
}

# Số bước chữ cái cho root / third / fifth / seventh (sus4: bậc 4)
_LETTER_STEPS = (0, 2, 4, 6)
_SUS4_LETTER_STEP = 3


# ============================================================
# SPELLING
# ============================================================

def spelled_chord_tones(key: Key, recipe: ChordRecipe) -> List[str]:
    """
    Tên các chord tone theo thứ tự root, third, fifth, (seventh).

    V7 trong C -> ["G", "B", "D", "F"]; iii trong A -> ["C#", "E", "G#"].
    Hợp âm mượn được đánh vần theo mode song song mà nó mượn.
    """
    profile = analyze_chord_profile(key, recipe)
    spell_key = key.parallel(borrowed_source_mode(key, profile))

    intervals = chord_intervals(recipe)
    tones: List[Tuple[int, int]] = []
    for idx, semis in enumerate(intervals):
        steps = _LETTER_STEPS[idx]
        if idx == 1 and recipe.is_sus4:
            steps = _SUS4_LETTER_STEP
        tones.append((steps, semis))

    return spell_stack(
        spell_key,
        degree_letter_index(spell_key, recipe.degree),
        root_pitch_class(key, recipe),
        tones,
    )


def _bass_name(key: Key, recipe: ChordRecipe, bass_pc: int, tone_names: Sequence[str]) -> str:
    for idx, pc in enumerate(chord_pitch_classes(key, recipe)):
        if pc == bass_pc and idx < len(tone_names):
            return tone_names[idx]
    return pitch_class_name(bass_pc, key)


# ============================================================
# ROMAN NUMERALS
# ============================================================

def _roman_prefix(key: Key, recipe: ChordRecipe) -> str:
    offset = recipe.root_offset
    if offset == 0:
        return ""
    if offset == parallel_ionian_offset(key, recipe.degree):
        return "n"
    return ("#" if offset > 0 else "b") * abs(offset)


def _roman_core(key: Key, recipe: ChordRecipe) -> str:
    """Numeral không kèm thế đảo."""
    upper = recipe.quality in (ChordQuality.MAJOR, ChordQuality.AUGMENTED)
    numeral = degree_to_roman(recipe.degree)
    text = _roman_prefix(key, recipe) + (numeral if upper else numeral.lower())

    seventh = recipe.seventh
    implied_dim = seventh in (SeventhQuality.HALF_DIMINISHED7, SeventhQuality.DIMINISHED7)
    if recipe.quality == ChordQuality.DIMINISHED and not implied_dim:
        text += "dim"
    elif recipe.quality == ChordQuality.AUGMENTED:
        text += "aug"

    if seventh == SeventhQuality.DOMINANT7:
        text += "7" if upper else "dom7"
    elif seventh != SeventhQuality.NONE:
        text += ROMAN_SEVENTH_TEXT[seventh]
    return text


def recipe_to_roman_numeral(key: Key, recipe: ChordRecipe) -> str:
    """C Ionian: V7 -> "V7"; bII -> "bII"; C Aeolian: vi (+1) -> "nvi"."""
    return _roman_core(key, recipe) + INVERSION_SUFFIXES[recipe.inversion]


def _roman_tension_suffix(recipe: ChordRecipe, tensions: Sequence[Tension]) -> str:
    parts = []
    for tension in tensions_sorted(list(tensions)):
        if not tension.surfaced:
            continue
        if tension.classification == TensionClassification.SUSPENSION:
            parts.append("sus4")
        elif tension.kind == TensionKind.NINE and recipe.extensions & Ext.ADD9 and not recipe.has_seventh:
            parts.append("add9")
        elif tension.kind == TensionKind.ELEVEN:
            parts.append("add11")
        else:
            parts.append(tension.kind.label)
    return "".join(parts)


def roman_numeral_with_tensions(
    key: Key,
    recipe: ChordRecipe,
    tensions: Optional[Sequence[Tension]] = None,
) -> str:
    """Numeral + tension dạng bóc được: "V7b9#11", "V7sus4", "Iadd9"."""
    if tensions is None:
        tensions = requested_tensions(recipe)
    return (
        _roman_core(key, recipe)
        + _roman_tension_suffix(recipe, tensions)
        + INVERSION_SUFFIXES[recipe.inversion]
    )


# ============================================================
# LEAD-SHEET SYMBOLS
# ============================================================

def _symbol_body(recipe: ChordRecipe, suspended: bool = False) -> str:
    """Phần quality + seventh (không gồm root / bass / tension)."""
    seventh = recipe.seventh
    if seventh == SeventhQuality.HALF_DIMINISHED7:
        return "m7b5"
    if seventh == SeventhQuality.DIMINISHED7:
        return "dim7"

    quality_text = SYMBOL_QUALITY_TEXT.get(recipe.quality, "")
    if suspended and recipe.quality == ChordQuality.MINOR:
        quality_text = ""

    if seventh == SeventhQuality.MAJOR7:
        return quality_text + "maj7"
    if seventh in (SeventhQuality.DOMINANT7, SeventhQuality.MINOR7):
        # Cùng quãng 7 thứ: tên theo triad
        if recipe.quality == ChordQuality.DIMINISHED:
            return "m7b5"
        return quality_text + "7"
    return quality_text


def _symbol_bass(
    key: Key,
    recipe: ChordRecipe,
    tone_names: Sequence[str],
    bass_midi: Optional[int],
) -> str:
    root_pc = root_pitch_class(key, recipe)
    bass_pc = bass_midi % 12 if bass_midi is not None else bass_pitch_class(key, recipe)
    if bass_pc == root_pc:
        return ""
    return "/" + _bass_name(key, recipe, bass_pc, tone_names)


def chord_symbol(
    key: Key,
    recipe: ChordRecipe,
    root_name: Optional[str] = None,
    bass_midi: Optional[int] = None,
) -> str:
    """V7 trong C -> "G7"; I/3rd -> "C/E"; viiø7 -> "Bm7b5"."""
    tone_names = spelled_chord_tones(key, recipe)
    root = root_name or tone_names[0]
    return root + _symbol_body(recipe) + _symbol_bass(key, recipe, tone_names, bass_midi)


def chord_symbol_with_tensions(
    key: Key,
    recipe: ChordRecipe,
    root_name: Optional[str] = None,
    bass_midi: Optional[int] = None,
    tensions: Optional[Sequence[Tension]] = None,
) -> str:
    """
    Ký hiệu kèm tension hiện được.

    - SUSPENSION -> "sus4" (G7sus4, Csus4; bỏ "m").
    - add9 trên triad -> "add9".
    - COLOR_TONE khác -> ngoặc, tăng dần: G7(b9,#11).
    - AVOID_TONE / NON_CHORD_TONE / CHORD_TONE bị bỏ.
    """
    if tensions is None:
        tensions = requested_tensions(recipe)
    surfaced = [t for t in tensions_sorted(list(tensions)) if t.surfaced]
    suspended = any(t.classification == TensionClassification.SUSPENSION for t in surfaced)

    tone_names = spelled_chord_tones(key, recipe)
    text = (root_name or tone_names[0]) + _symbol_body(recipe, suspended)
    if suspended:
        text += "sus4"

    colors = []
    for tension in surfaced:
        if tension.classification == TensionClassification.SUSPENSION:
            continue
        if (
            tension.kind == TensionKind.NINE
            and recipe.extensions & Ext.ADD9
            and not recipe.has_seventh
        ):
            text += "add9"
            continue
        colors.append(tension.kind.label)
    if colors:
        text += "(" + ",".join(colors) + ")"

    return text + _symbol_bass(key, recipe, tone_names, bass_midi)
