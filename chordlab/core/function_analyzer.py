# Tệp: chordlab/core/function_analyzer.py
# (FINAL V1.2.0) - HARMONIC FUNCTION ANALYZER
#
# Phân loại hợp âm so với key:
#   Diatonic > SecondaryDominant > Neapolitan > Borrowed (major/minor/other) > OtherChromatic
#
# Ghi chú:
#   - Diatonic = offset 0 + triad đúng bảng + (nếu có 7) seventh đúng bảng.
#   - Membership: chứa TRỌN pc set trong từng mode song song (cùng tonic).
#   - Kết quả là FunctionProfile mới mỗi lần gọi.

from __future__ import annotations

from typing import Dict, List, Optional, Tuple

from chordlab.core.chord_builder import build_chord, chord_pitch_classes, root_pitch_class
from chordlab.core.chord_model import (
    BorrowSummary,
    ChordQuality,
    ChordRecipe,
    DiatonicStatus,
    FunctionProfile,
    FunctionTag,
    ParallelModeFlag,
    SeventhQuality,
)
from chordlab.core.music_theory import (
    Key,
    ScaleMode,
    degree_of_pitch_class,
    degree_pitch_class,
    diatonic_pitch_classes,
)

_M = ChordQuality.MAJOR
_m = ChordQuality.MINOR
_d = ChordQuality.DIMINISHED

DIATONIC_TRIADS: Dict[ScaleMode, Tuple[ChordQuality, ...]] = {
    ScaleMode.IONIAN: (_M, _m, _m, _M, _M, _m, _d),
    ScaleMode.DORIAN: (_m, _m, _M, _M, _m, _d, _M),
    ScaleMode.PHRYGIAN: (_m, _M, _M, _m, _d, _M, _m),
    ScaleMode.LYDIAN: (_M, _M, _m, _d, _M, _m, _m),
    ScaleMode.MIXOLYDIAN: (_M, _m, _d, _M, _m, _m, _M),
    ScaleMode.AEOLIAN: (_m, _d, _M, _m, _m, _M, _M),
    ScaleMode.LOCRIAN: (_d, _M, _m, _m, _M, _M, _m),
}

# Hàng Ionian, các mode khác = xoay theo giá trị mode
IONIAN_SEVENTHS: Tuple[SeventhQuality, ...] = (
    SeventhQuality.MAJOR7,
    SeventhQuality.MINOR7,
    SeventhQuality.MINOR7,
    SeventhQuality.MAJOR7,
    SeventhQuality.DOMINANT7,
    SeventhQuality.MINOR7,
    SeventhQuality.HALF_DIMINISHED7,
)

MODE_FLAGS: Dict[ScaleMode, ParallelModeFlag] = {
    ScaleMode.IONIAN: ParallelModeFlag.IONIAN,
    ScaleMode.DORIAN: ParallelModeFlag.DORIAN,
    ScaleMode.PHRYGIAN: ParallelModeFlag.PHRYGIAN,
    ScaleMode.LYDIAN: ParallelModeFlag.LYDIAN,
    ScaleMode.MIXOLYDIAN: ParallelModeFlag.MIXOLYDIAN,
    ScaleMode.AEOLIAN: ParallelModeFlag.AEOLIAN,
    ScaleMode.LOCRIAN: ParallelModeFlag.LOCRIAN,
}

DEGREE_NUMERALS = ("I", "II", "III", "IV", "V", "VI", "VII")

# Thứ tự hiển thị trong "borrowed ∥ ..."
_OTHER_MODE_LABELS = (
    (ParallelModeFlag.DORIAN, "Dorian"),
    (ParallelModeFlag.PHRYGIAN, "Phrygian"),
    (ParallelModeFlag.LYDIAN, "Lydian"),
    (ParallelModeFlag.MIXOLYDIAN, "Mixolydian"),
    (ParallelModeFlag.LOCRIAN, "Locrian"),
)


def diatonic_triad_quality(key: Key, degree: int) -> ChordQuality:
    return DIATONIC_TRIADS[key.mode][(int(degree) - 1) % 7]


def diatonic_seventh_quality(key: Key, degree: int) -> SeventhQuality:
    return IONIAN_SEVENTHS[((int(degree) - 1) + int(key.mode)) % 7]


def degree_to_roman(degree: int) -> str:
    return DEGREE_NUMERALS[(int(degree) - 1) % 7]


def is_diatonic(key: Key, recipe: ChordRecipe) -> bool:
    if recipe.root_offset != 0:
        return False
    if recipe.quality != diatonic_triad_quality(key, recipe.degree):
        return False
    if recipe.has_seventh and recipe.seventh != diatonic_seventh_quality(key, recipe.degree):
        return False
    return True


def parallel_membership(key: Key, pitch_classes) -> ParallelModeFlag:
    """Bitset các mode song song chứa toàn bộ pitch_classes."""
    wanted = {int(pc) % 12 for pc in pitch_classes}
    membership = ParallelModeFlag.NONE
    for mode, flag in MODE_FLAGS.items():
        if wanted.issubset(diatonic_pitch_classes(key.parallel(mode))):
            membership |= flag
    return membership


def secondary_target_degree(key: Key, recipe: ChordRecipe, root_pc: int) -> Optional[int]:
    """
    V/x hoặc vii°/x: root cách root bậc đích một quãng 5 đúng (dominant-like)
    hoặc 7 trưởng (leading-like). Quét bậc 1..7, bậc đầu tiên khớp thắng.
    """
    dominant_like = recipe.quality in (ChordQuality.MAJOR, ChordQuality.AUGMENTED)
    leading_like = recipe.quality == ChordQuality.DIMINISHED
    for degree in range(1, 8):
        target_pc = degree_pitch_class(key, degree)
        if dominant_like and root_pc == (target_pc + 7) % 12:
            return degree
        if leading_like and root_pc == (target_pc + 11) % 12:
            return degree
    return None


def is_neapolitan(recipe: ChordRecipe, diatonic: bool) -> bool:
    # bII trưởng, seventh tuỳ ý
    return (
        not diatonic
        and recipe.degree == 2
        and recipe.root_offset == -1
        and recipe.quality == ChordQuality.MAJOR
    )


def summarize_borrow(key: Key, membership: ParallelModeFlag) -> BorrowSummary:
    from_major = bool(membership & ParallelModeFlag.IONIAN) and key.mode != ScaleMode.IONIAN
    from_minor = bool(membership & ParallelModeFlag.AEOLIAN) and key.mode != ScaleMode.AEOLIAN

    if from_major and not from_minor:
        return BorrowSummary.FROM_PARALLEL_MAJOR
    if from_minor and not from_major:
        return BorrowSummary.FROM_PARALLEL_MINOR

    others = membership & ~(ParallelModeFlag.IONIAN | ParallelModeFlag.AEOLIAN)
    if others or (from_major and from_minor):
        return BorrowSummary.FROM_OTHER_MODES
    return BorrowSummary.NONE


_BORROW_TAGS = {
    BorrowSummary.FROM_PARALLEL_MAJOR: FunctionTag.BORROWED_PARALLEL_MAJOR,
    BorrowSummary.FROM_PARALLEL_MINOR: FunctionTag.BORROWED_PARALLEL_MINOR,
    BorrowSummary.FROM_OTHER_MODES: FunctionTag.BORROWED_OTHER_MODES,
}


# ---------- PUBLIC API ----------

def analyze_chord_profile(key: Key, recipe: ChordRecipe) -> FunctionProfile:
    """
    Phân tích chức năng của recipe trong key.

    C Ionian: "bII" -> NEAPOLITAN, "II7" (V7/V) -> SECONDARY_DOMINANT (target 5),
    "bVI" -> BORROWED_PARALLEL_MINOR.
    """
    diatonic = is_diatonic(key, recipe)
    root_pc = root_pitch_class(key, recipe)

    notes = build_chord(key, recipe, 4)
    bass_degree = degree_of_pitch_class(key, min(notes) % 12) if notes else 0

    membership = parallel_membership(key, chord_pitch_classes(key, recipe))

    target: Optional[int] = None
    borrow = BorrowSummary.NONE
    if not diatonic:
        target = secondary_target_degree(key, recipe, root_pc)
        borrow = summarize_borrow(key, membership)

    if diatonic:
        tag = FunctionTag.DIATONIC
    elif target is not None:
        tag = FunctionTag.SECONDARY_DOMINANT
    elif is_neapolitan(recipe, diatonic):
        tag = FunctionTag.NEAPOLITAN
    else:
        tag = _BORROW_TAGS.get(borrow, FunctionTag.OTHER_CHROMATIC)

    return FunctionProfile(
        status=DiatonicStatus.DIATONIC if diatonic else DiatonicStatus.NON_DIATONIC,
        degree=recipe.degree,
        root_pc=root_pc,
        membership=membership,
        secondary_target_degree=target,
        borrow=borrow,
        tag=tag,
        bass_degree=bass_degree,
    )


def non_diatonic_info(profile: FunctionProfile, key: Optional[Key] = None) -> str:
    """Chú thích ngắn cho hợp âm ngoài điệu, "" nếu diatonic."""
    if profile.is_diatonic:
        return ""

    parts: List[str] = []
    if profile.tag == FunctionTag.SECONDARY_DOMINANT and profile.secondary_target_degree:
        parts.append(f"sec. to {degree_to_roman(profile.secondary_target_degree)}")
    elif profile.tag == FunctionTag.NEAPOLITAN:
        parts.append("Neapolitan")
    elif profile.tag == FunctionTag.BORROWED_PARALLEL_MAJOR:
        parts.append("from ∥ major")
    elif profile.tag == FunctionTag.BORROWED_PARALLEL_MINOR:
        parts.append("from ∥ minor")
    elif profile.tag == FunctionTag.BORROWED_OTHER_MODES:
        names = [label for flag, label in _OTHER_MODE_LABELS if profile.membership & flag]
        if names:
            parts.append(f"borrowed ∥ {'/'.join(names)}")
        else:
            parts.append("borrowed ∥ other")
    return " · ".join(parts)


def borrowed_source_mode(key: Key, profile: FunctionProfile) -> ScaleMode:
    """Mode song song dùng để đánh vần hợp âm mượn (mặc định: mode hiện tại)."""
    if profile.tag == FunctionTag.BORROWED_PARALLEL_MINOR:
        return ScaleMode.AEOLIAN
    if profile.tag == FunctionTag.BORROWED_PARALLEL_MAJOR:
        return ScaleMode.IONIAN
    return key.mode
