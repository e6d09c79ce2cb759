# Tệp: chordlab/core/pitch_spelling.py
# (FINAL V1.2.0) - PITCH SPELLING (ENHARMONIC, KEY-AWARE)
#
# Mục tiêu:
# - Pitch class <-> tên nốt, ưu tiên # hoặc b theo tonic của key.
# - Đánh vần theo chữ cái (letter stacking) cho bậc & hợp âm:
#     V7 trong C -> G B D F, iii trong A -> C# E G#.
# - Chặn "crazy spelling" (bb, x, nhiều dấu hoá) -> quay về tên theo key.

from __future__ import annotations

from enum import Enum
from typing import List, Optional, Sequence, Tuple

from chordlab.core.music_theory import (
    FLAT_NAMES,
    Key,
    MODE_OFFSETS,
    wrap_semitones,
)

SHARP_NAMES = ("C", "C#", "D", "D#", "E", "F", "F#", "G", "G#", "A", "A#", "B")

LETTERS = "CDEFGAB"
NATURAL_PC = {"C": 0, "D": 2, "E": 4, "F": 5, "G": 7, "A": 9, "B": 11}

ACCIDENTAL_TEXT = {-2: "bb", -1: "b", 0: "", 1: "#", 2: "x"}

# Tonic pc dùng flat: Db Eb F Gb Ab Bb
FLAT_TONICS = frozenset({1, 3, 5, 6, 8, 10})


class AccidentalPreference(Enum):
    SHARPS = "sharps"
    FLATS = "flats"


def accidental_preference(key: Key) -> AccidentalPreference:
    if key.tonic_pc in FLAT_TONICS:
        return AccidentalPreference.FLATS
    return AccidentalPreference.SHARPS


def pitch_class_name(pc: int, key: Optional[Key] = None, prefer_flats: bool = True) -> str:
    """Tên pitch class. Có key -> theo accidental_preference của key."""
    pc = int(pc) % 12
    if key is not None:
        prefer_flats = accidental_preference(key) == AccidentalPreference.FLATS
    return FLAT_NAMES[pc] if prefer_flats else SHARP_NAMES[pc]


def pitch_name_from_midi(midi: int, key: Optional[Key] = None, with_octave: bool = True) -> str:
    """60 -> 'C4' (quy ước C4 = 60)."""
    name = pitch_class_name(midi, key)
    if not with_octave:
        return name
    return f"{name}{int(midi) // 12 - 1}"


def is_crazy_spelling(name: str) -> bool:
    """Tên có x, bb hoặc nhiều hơn 1 dấu hoá."""
    if not name:
        return True
    if "x" in name or "bb" in name:
        return True
    accidentals = sum(1 for ch in name[1:] if ch in "#b")
    return accidentals > 1


def spell_on_letter(letter_index: int, pc: int) -> Optional[str]:
    """Đánh vần pc trên chữ cái cho trước, None nếu cần hơn 1 dấu hoá."""
    letter = LETTERS[letter_index % 7]
    diff = wrap_semitones(pc - NATURAL_PC[letter])
    if abs(diff) > 1:
        return None
    return letter + ACCIDENTAL_TEXT[diff]


def tonic_letter_index(key: Key) -> int:
    name = pitch_class_name(key.tonic_pc, key)
    return LETTERS.index(name[0])


def degree_letter_index(key: Key, degree: int) -> int:
    return (tonic_letter_index(key) + (int(degree) - 1) % 7) % 7


def note_name_for_degree(key: Key, degree: int, semitone_offset: int = 0) -> str:
    """
    Tên nốt cho bậc + offset chromatic, giữ chữ cái của bậc.

    (C Ionian, 2, -1) -> 'Db'; (C Aeolian, 3, 0) -> 'Eb'.
    Cần bb/x -> fallback về tên theo key.
    """
    if degree < 1 or degree > 7:
        return pitch_class_name(key.tonic_pc, key)
    pc = (key.tonic_pc + MODE_OFFSETS[key.mode][degree - 1] + semitone_offset) % 12
    name = spell_on_letter(degree_letter_index(key, degree), pc)
    if name is None or is_crazy_spelling(name):
        return pitch_class_name(pc, key)
    return name


def spell_stack(
    key: Key,
    root_letter_index: int,
    root_pc: int,
    tones: Sequence[Tuple[int, int]],
) -> List[str]:
    """
    Đánh vần chồng chữ cái từ root.

    tones: list (letter_steps, semitones) tính từ root, vd triad trưởng
    [(0, 0), (2, 4), (4, 7)].
    """
    names: List[str] = []
    for steps, semis in tones:
        pc = (root_pc + semis) % 12
        name = spell_on_letter(root_letter_index + steps, pc)
        if name is None:
            name = pitch_class_name(pc, key)
        names.append(name)
    return names


def letter_index_of(name: str) -> int:
    """'F#' -> 3. Tên hỏng -> 0."""
    if not name:
        return 0
    head = name[0].upper()
    return LETTERS.index(head) if head in LETTERS else 0
