# Tệp: chordlab/core/music_theory.py
# (FINAL V1.4.0) - KEY / SCALE TABLE
# Features:
# - NOTE_TO_PC / note_number giữ nguyên API cũ
# - ScaleMode (7 mode diatonic) + Key bất biến
# - Degree -> Pitch Class / MIDI (trả về None nếu degree hỏng)
# - parse_progression_string: tách chuỗi progression (<Section>, *N, |)

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Tuple

# --- CONSTANTS ---
NOTE_TO_PC = {
    'C': 0, 'B#': 0, 'C#': 1, 'Db': 1, 'D': 2, 'D#': 3, 'Eb': 3,
    'E': 4, 'Fb': 4, 'F': 5, 'E#': 5, 'F#': 6, 'Gb': 6, 'G': 7,
    'G#': 8, 'Ab': 8, 'A': 9, 'A#': 10, 'Bb': 10, 'B': 11, 'Cb': 11
}


class ScaleMode(int, Enum):
    """7 mode diatonic, giá trị = độ lệch xoay so với Ionian."""

    IONIAN = 0
    DORIAN = 1
    PHRYGIAN = 2
    LYDIAN = 3
    MIXOLYDIAN = 4
    AEOLIAN = 5
    LOCRIAN = 6

    @property
    def display_name(self) -> str:
        return self.name.capitalize()


# Bước nhảy (semitone) của từng mode
MODE_STEPS: Dict[ScaleMode, Tuple[int, ...]] = {
    ScaleMode.IONIAN: (2, 2, 1, 2, 2, 2, 1),
    ScaleMode.DORIAN: (2, 1, 2, 2, 2, 1, 2),
    ScaleMode.PHRYGIAN: (1, 2, 2, 2, 1, 2, 2),
    ScaleMode.LYDIAN: (2, 2, 2, 1, 2, 2, 1),
    ScaleMode.MIXOLYDIAN: (2, 2, 1, 2, 2, 1, 2),
    ScaleMode.AEOLIAN: (2, 1, 2, 2, 1, 2, 2),
    ScaleMode.LOCRIAN: (1, 2, 2, 1, 2, 2, 2),
}

# Alias tên scale cũ (major/minor...) -> mode
MODE_ALIASES: Dict[str, ScaleMode] = {
    "major": ScaleMode.IONIAN,
    "minor": ScaleMode.AEOLIAN,
    "natural_minor": ScaleMode.AEOLIAN,
}


def _mode_offsets(mode: ScaleMode) -> Tuple[int, ...]:
    offsets = [0]
    for step in MODE_STEPS[mode][:-1]:
        offsets.append(offsets[-1] + step)
    return tuple(offsets)


MODE_OFFSETS: Dict[ScaleMode, Tuple[int, ...]] = {
    mode: _mode_offsets(mode) for mode in ScaleMode
}


def parse_mode(name: Optional[str], default: ScaleMode = ScaleMode.IONIAN) -> ScaleMode:
    """'ionian' / 'Dorian' / 'minor' ... -> ScaleMode (fallback = default)."""
    if not name:
        return default
    st = str(name).strip().lower()
    if st in MODE_ALIASES:
        return MODE_ALIASES[st]
    for mode in ScaleMode:
        if mode.name.lower() == st:
            return mode
    return default


@dataclass(frozen=True)
class Key:
    """
    Giọng (tonic pitch class + mode). Bất biến.

    tonic_pc luôn được chuẩn hoá về 0..11.
    """

    tonic_pc: int = 0
    mode: ScaleMode = ScaleMode.IONIAN

    def __post_init__(self):
        object.__setattr__(self, "tonic_pc", int(self.tonic_pc) % 12)
        object.__setattr__(self, "mode", ScaleMode(self.mode))

    @classmethod
    def from_name(cls, tonic: str, mode: Optional[str] = None) -> "Key":
        """Key.from_name('Eb', 'aeolian'). Tên nốt lạ -> C."""
        tonic = (tonic or "C").strip()
        if tonic[:1].islower():
            tonic = tonic[:1].upper() + tonic[1:]
        return cls(NOTE_TO_PC.get(tonic, 0), parse_mode(mode))

    def parallel(self, mode: ScaleMode) -> "Key":
        return Key(self.tonic_pc, mode)

    def __str__(self) -> str:
        # Tên tonic theo quy ước flat, vd "Eb Aeolian"
        return f"{FLAT_NAMES[self.tonic_pc]} {self.mode.display_name}"


FLAT_NAMES = ("C", "Db", "D", "Eb", "E", "F", "Gb", "G", "Ab", "A", "Bb", "B")


# --- CORE FUNCTIONS (API Preserved) ---
def note_number(pc: int, octave: int) -> int:
    """Trả về MIDI note number từ Pitch Class và Octave."""
    return int(pc + 12 * (octave + 1))


def pitch_class(midi: int) -> int:
    return int(midi) % 12


def diatonic_pitch_classes(key: Key) -> List[int]:
    """7 pitch class của key, theo thứ tự degree 1..7."""
    return [(key.tonic_pc + off) % 12 for off in MODE_OFFSETS[key.mode]]


def degree_pitch_class(key: Key, degree: int) -> Optional[int]:
    """Degree 1..7 -> pitch class. Degree ngoài dải -> None."""
    if degree is None or degree < 1 or degree > 7:
        return None
    return (key.tonic_pc + MODE_OFFSETS[key.mode][degree - 1]) % 12


def midi_for_degree(key: Key, degree: int, octave: int) -> Optional[int]:
    pc = degree_pitch_class(key, degree)
    if pc is None:
        return None
    return note_number(pc, octave)


def degree_of_pitch_class(key: Key, pc: int) -> int:
    """Pitch class -> degree 1..7 trong key, 0 nếu không thuộc scale."""
    pcs = diatonic_pitch_classes(key)
    pc = pc % 12
    for idx, scale_pc in enumerate(pcs):
        if scale_pc == pc:
            return idx + 1
    return 0


def wrap_semitones(diff: int) -> int:
    """Kẹp khoảng cách pitch class về dải -6..+5 (bước ngắn nhất)."""
    diff = diff % 12
    if diff > 6:
        diff -= 12
    if diff == 6:
        diff = -6
    return diff


def is_note_in_scale(key: Key, midi: int) -> bool:
    return pitch_class(midi) in diatonic_pitch_classes(key)


# --- UTILS (Prog Parsing) ---

def parse_progression_string(prog_str: str) -> List[Tuple[str, str]]:
    """
    Parse chuỗi hợp âm từ config thành list các tuple (Token, Section).
    Hỗ trợ format:
    <Intro> I*2 vi
    <Verse> ii7 | V7*2 | I
    """
    result = []
    current_section = "Main"

    # Chuẩn hóa chuỗi: thay | và , bằng space (giữ dấu , trong ngoặc tension), tách dòng
    cleaned = []
    depth = 0
    for ch in (prog_str or ""):
        if ch == "(":
            depth += 1
        elif ch == ")":
            depth = max(0, depth - 1)
        if ch == "|" or (ch == "," and depth == 0):
            ch = " "
        cleaned.append(ch)
    lines = "".join(cleaned).split("\n")

    for line in lines:
        tokens = line.strip().split()
        for token in tokens:
            if token.startswith("<") and token.endswith(">"):
                current_section = token[1:-1]  # Lấy tên section
                continue

            chord = token
            count = 1
            if "*" in token:
                chord, _, raw_count = token.partition("*")
                try:
                    count = int(raw_count)
                except ValueError:
                    count = 1

            for _ in range(max(0, count)):
                result.append((chord, current_section))

    return result
