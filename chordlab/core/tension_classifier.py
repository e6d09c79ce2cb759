# Tệp: chordlab/core/tension_classifier.py
# (FINAL V1.1.0) - TENSION CLASSIFIER
#
# Phân loại b9 / 9 / #9 / 11 / #11 so với hợp âm:
#   CHORD_TONE     : pc của tension đã là chord tone (#9 trên minor, #11 trên dim)
#   COLOR_TONE     : mọi 9th; #11 trên dom7 / maj7 / triad trưởng; 11 trên hợp âm third thứ
#   SUSPENSION     : 11 thay chỗ third (sus4, hoặc third bị bỏ)
#   AVOID_TONE     : 11 chỏi với third trưởng trên dom7
#   NON_CHORD_TONE : còn lại
#
# Detect (voicing thật):
#   - 9th: mọi nốt ngoài root / third / fifth / seventh.
#   - 11th: chỉ xét soprano (nốt cao nhất).

from __future__ import annotations

from typing import Iterable, List, Optional

from chordlab.core.chord_builder import chord_intervals, root_pitch_class
from chordlab.core.chord_model import (
    ChordQuality,
    ChordRecipe,
    DetectedTensions,
    RequestedExtensions as Ext,
    SeventhQuality,
    Tension,
    TensionClassification as TC,
    TensionKind,
    seventh_interval,
    tensions_sorted,
    triad_intervals,
)
from chordlab.core.music_theory import Key

NINTHS = (TensionKind.FLAT_NINE, TensionKind.NINE, TensionKind.SHARP_NINE)
ELEVENTHS = (TensionKind.ELEVEN, TensionKind.SHARP_ELEVEN)

# Khoảng (mod 12) phía trên root -> tension kind
_NINTH_BY_INTERVAL = {1: TensionKind.FLAT_NINE, 2: TensionKind.NINE, 3: TensionKind.SHARP_NINE}
_ELEVENTH_BY_INTERVAL = {5: TensionKind.ELEVEN, 6: TensionKind.SHARP_ELEVEN}

# Extension được yêu cầu -> tension kind (sus4 / add11 đều là 11)
_EXTENSION_KINDS = (
    (Ext.FLAT_NINE, TensionKind.FLAT_NINE),
    (Ext.NINE, TensionKind.NINE),
    (Ext.ADD9, TensionKind.NINE),
    (Ext.SHARP_NINE, TensionKind.SHARP_NINE),
    (Ext.SUS4, TensionKind.ELEVEN),
    (Ext.ADD11, TensionKind.ELEVEN),
    (Ext.SHARP_ELEVEN, TensionKind.SHARP_ELEVEN),
)


def _has_minor_third(recipe: ChordRecipe) -> bool:
    return recipe.quality in (ChordQuality.MINOR, ChordQuality.DIMINISHED)


def classify_tension(
    recipe: ChordRecipe,
    kind: TensionKind,
    third_present: Optional[bool] = None,
) -> TC:
    """
    Phân loại 1 tension trên recipe.

    third_present: None -> suy ra từ recipe (sus4 = không có third).
    """
    if third_present is None:
        third_present = not recipe.is_sus4

    if kind == TensionKind.ELEVEN and recipe.is_sus4:
        return TC.SUSPENSION

    chord_offsets = {iv % 12 for iv in chord_intervals(recipe)}
    if kind.pc_offset in chord_offsets:
        return TC.CHORD_TONE

    if kind in NINTHS:
        return TC.COLOR_TONE

    if kind == TensionKind.ELEVEN:
        if recipe.seventh == SeventhQuality.DOMINANT7 and third_present:
            return TC.AVOID_TONE
        if _has_minor_third(recipe):
            return TC.COLOR_TONE
        if not third_present:
            return TC.SUSPENSION
        return TC.NON_CHORD_TONE

    # #11
    if recipe.seventh in (SeventhQuality.DOMINANT7, SeventhQuality.MAJOR7):
        return TC.COLOR_TONE
    if not recipe.has_seventh and recipe.quality == ChordQuality.MAJOR:
        return TC.COLOR_TONE
    return TC.NON_CHORD_TONE


def requested_tensions(recipe: ChordRecipe) -> List[Tension]:
    """Tension từ extensions của recipe, đã phân loại, sắp xếp tăng dần."""
    kinds = []
    for flag, kind in _EXTENSION_KINDS:
        if recipe.extensions & flag and kind not in kinds:
            kinds.append(kind)
    return tensions_sorted([Tension(kind, classify_tension(recipe, kind)) for kind in kinds])


def _core_pitch_classes(root_pc: int, recipe: ChordRecipe) -> set:
    # third theo quality (không thay bằng 4th khi sus4)
    third, fifth = triad_intervals(recipe.quality)
    core = {root_pc, (root_pc + third) % 12, (root_pc + fifth) % 12}
    if recipe.has_seventh:
        core.add((root_pc + seventh_interval(recipe.seventh)) % 12)
    return core


def detect_tensions(key: Key, recipe: ChordRecipe, midi_notes: Iterable[int]) -> DetectedTensions:
    """Tension xuất hiện trong voicing thật [B, T, A, S]."""
    analyzed = tuple(int(m) for m in (midi_notes or ()))
    if not analyzed:
        return DetectedTensions()
    pcs = tuple(m % 12 for m in analyzed)

    root_pc = root_pitch_class(key, recipe)
    core = _core_pitch_classes(root_pc, recipe)
    third_pc = (root_pc + triad_intervals(recipe.quality)[0]) % 12
    third_present = third_pc in pcs

    found: List[Tension] = []
    seen = set()
    for pc in pcs:
        if pc in core:
            continue
        kind = _NINTH_BY_INTERVAL.get((pc - root_pc) % 12)
        if kind is not None and kind not in seen:
            seen.add(kind)
            found.append(Tension(kind, TC.COLOR_TONE))

    soprano_pc = max(analyzed) % 12
    if soprano_pc not in core:
        kind = _ELEVENTH_BY_INTERVAL.get((soprano_pc - root_pc) % 12)
        if kind is not None and kind not in seen:
            seen.add(kind)
            found.append(Tension(kind, classify_tension(recipe, kind, third_present)))

    return DetectedTensions(
        tensions=tuple(tensions_sorted(found)),
        analyzed_midi=analyzed,
        analyzed_pcs=pcs,
    )
