# Tệp: chordlab/core/chord_model.py
# (FINAL V1.3.0) - CHORD DATA MODEL
#
# Vai trò:
#   - Các value type dùng chung cho parser / builder / analyzer / voicing.
#   - Tất cả đều bất biến (frozen dataclass) hoặc enum, không có state chia sẻ.
#
# Invariants:
#   - ChordRecipe.degree luôn nằm trong 1..7.
#   - HalfDiminished7 / Diminished7 ép triad quality = DIMINISHED.
#   - has_seventh <=> seventh != SeventhQuality.NONE.
#   - RequestedExtensions: tối đa 1 trong {NINE, FLAT_NINE, SHARP_NINE}.

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum, IntFlag
from typing import List, Optional, Tuple

from chordlab.core.music_theory import Key


class ChordQuality(Enum):
    MAJOR = "major"
    MINOR = "minor"
    DIMINISHED = "diminished"
    AUGMENTED = "augmented"


class SeventhQuality(Enum):
    NONE = "none"
    MAJOR7 = "maj7"
    MINOR7 = "m7"
    DOMINANT7 = "7"
    HALF_DIMINISHED7 = "m7b5"
    DIMINISHED7 = "dim7"


class Inversion(int, Enum):
    """Nốt nào của hợp âm nằm ở bass (giá trị = số lần xoay)."""

    ROOT = 0
    FIRST = 1
    SECOND = 2
    THIRD = 3


class RequestedExtensions(IntFlag):
    NONE = 0
    SUS4 = 1
    ADD9 = 2
    ADD11 = 4
    NINE = 8
    FLAT_NINE = 16
    SHARP_NINE = 32
    SHARP_ELEVEN = 64


NINTH_FLAGS = (
    RequestedExtensions.NINE,
    RequestedExtensions.FLAT_NINE,
    RequestedExtensions.SHARP_NINE,
)


def count_ninths(extensions: RequestedExtensions) -> int:
    return sum(1 for flag in NINTH_FLAGS if extensions & flag)


# (third, fifth) semitone tính từ root
TRIAD_INTERVALS = {
    ChordQuality.MAJOR: (4, 7),
    ChordQuality.MINOR: (3, 7),
    ChordQuality.DIMINISHED: (3, 6),
    ChordQuality.AUGMENTED: (4, 8),
}
SEVENTH_INTERVALS = {
    SeventhQuality.MAJOR7: 11,
    SeventhQuality.MINOR7: 10,
    SeventhQuality.DOMINANT7: 10,
    SeventhQuality.HALF_DIMINISHED7: 10,
    SeventhQuality.DIMINISHED7: 9,
}
SUS4_INTERVAL = 5

# Fallback an toàn cho enum lạ: major triad / dominant seventh
DEFAULT_TRIAD_INTERVALS = (4, 7)
DEFAULT_SEVENTH_INTERVAL = 10


def triad_intervals(quality: "ChordQuality") -> Tuple[int, int]:
    return TRIAD_INTERVALS.get(quality, DEFAULT_TRIAD_INTERVALS)


def seventh_interval(seventh: "SeventhQuality") -> int:
    return SEVENTH_INTERVALS.get(seventh, DEFAULT_SEVENTH_INTERVAL)


class DiatonicStatus(Enum):
    DIATONIC = "diatonic"
    NON_DIATONIC = "non_diatonic"


class ParallelModeFlag(IntFlag):
    """Bitset membership của 7 mode song song (cùng tonic)."""

    NONE = 0
    IONIAN = 1
    DORIAN = 2
    PHRYGIAN = 4
    LYDIAN = 8
    MIXOLYDIAN = 16
    AEOLIAN = 32
    LOCRIAN = 64


class BorrowSummary(Enum):
    NONE = "none"
    FROM_PARALLEL_MAJOR = "parallel_major"
    FROM_PARALLEL_MINOR = "parallel_minor"
    FROM_OTHER_MODES = "other_modes"


class FunctionTag(Enum):
    DIATONIC = "diatonic"
    SECONDARY_DOMINANT = "secondary_dominant"
    BORROWED_PARALLEL_MAJOR = "borrowed_parallel_major"
    BORROWED_PARALLEL_MINOR = "borrowed_parallel_minor"
    BORROWED_OTHER_MODES = "borrowed_other_modes"
    OTHER_CHROMATIC = "other_chromatic"
    NEAPOLITAN = "neapolitan"


class TensionKind(int, Enum):
    """Giá trị = khoảng cách semitone từ root."""

    FLAT_NINE = 13
    NINE = 14
    SHARP_NINE = 15
    ELEVEN = 17
    SHARP_ELEVEN = 18

    @property
    def label(self) -> str:
        return _TENSION_LABELS[self]

    @property
    def pc_offset(self) -> int:
        return self.value % 12


_TENSION_LABELS = {
    TensionKind.FLAT_NINE: "b9",
    TensionKind.NINE: "9",
    TensionKind.SHARP_NINE: "#9",
    TensionKind.ELEVEN: "11",
    TensionKind.SHARP_ELEVEN: "#11",
}


class TensionClassification(Enum):
    CHORD_TONE = "chord_tone"
    COLOR_TONE = "color_tone"
    SUSPENSION = "suspension"
    NON_CHORD_TONE = "non_chord_tone"
    AVOID_TONE = "avoid_tone"


@dataclass(frozen=True)
class ChordRecipe:
    """
    Mô tả chuẩn "hợp âm gì, ở đâu" trong một key.

    - degree: bậc 1..7 (được chuẩn hoá vòng).
    - quality: chất lượng triad.
    - seventh: chất lượng hợp âm 7 (NONE = triad).
    - root_offset: độ lệch chromatic của root so với bậc diatonic (bII -> -1).
    - inversion: thế đảo.
    - extensions: các mở rộng được yêu cầu (sus4, add9, b9...).
    """

    degree: int = 1
    quality: ChordQuality = ChordQuality.MAJOR
    seventh: SeventhQuality = SeventhQuality.NONE
    root_offset: int = 0
    inversion: Inversion = Inversion.ROOT
    extensions: RequestedExtensions = RequestedExtensions.NONE

    def __post_init__(self):
        object.__setattr__(self, "degree", (int(self.degree) - 1) % 7 + 1)
        object.__setattr__(self, "inversion", Inversion(self.inversion))
        object.__setattr__(self, "extensions", RequestedExtensions(self.extensions))
        if self.seventh in (SeventhQuality.HALF_DIMINISHED7, SeventhQuality.DIMINISHED7):
            object.__setattr__(self, "quality", ChordQuality.DIMINISHED)
        if count_ninths(self.extensions) > 1:
            raise ValueError(
                f"ChordRecipe: at most one ninth may be requested, got {self.extensions!r}"
            )

    @property
    def has_seventh(self) -> bool:
        return self.seventh != SeventhQuality.NONE

    @property
    def is_sus4(self) -> bool:
        return bool(self.extensions & RequestedExtensions.SUS4)

    def with_changes(self, **changes) -> "ChordRecipe":
        return replace(self, **changes)

    def equivalent(self, other: "ChordRecipe") -> bool:
        """So sánh degree/quality/seventh/offset/inversion (bỏ qua extensions)."""
        return (
            self.degree == other.degree
            and self.quality == other.quality
            and self.seventh == other.seventh
            and self.root_offset == other.root_offset
            and self.inversion == other.inversion
        )


@dataclass(frozen=True)
class FunctionProfile:
    """Kết quả phân tích chức năng (tính lại mỗi lần gọi, không mutate)."""

    status: DiatonicStatus
    degree: int
    root_pc: int
    membership: ParallelModeFlag
    secondary_target_degree: Optional[int]
    borrow: BorrowSummary
    tag: FunctionTag
    bass_degree: int

    @property
    def is_diatonic(self) -> bool:
        return self.status == DiatonicStatus.DIATONIC


@dataclass(frozen=True)
class Tension:
    kind: TensionKind
    classification: TensionClassification = TensionClassification.COLOR_TONE

    @property
    def surfaced(self) -> bool:
        """Chỉ ColorTone / Suspension được hiện trong ký hiệu."""
        return self.classification in (
            TensionClassification.COLOR_TONE,
            TensionClassification.SUSPENSION,
        )

    def __str__(self) -> str:
        return self.kind.label


@dataclass(frozen=True)
class DetectedTensions:
    tensions: Tuple[Tension, ...] = ()
    analyzed_midi: Tuple[int, ...] = ()
    analyzed_pcs: Tuple[int, ...] = ()

    @property
    def has_tensions(self) -> bool:
        return len(self.tensions) > 0


@dataclass(frozen=True)
class ChordEvent:
    key: Key
    recipe: ChordRecipe
    time_beats: float = 0.0
    melody_midi: Optional[int] = None


@dataclass(frozen=True)
class VoicedChord:
    time_beats: float
    voices_midi: Tuple[int, ...] = field(default_factory=tuple)

    @property
    def bass(self) -> int:
        return self.voices_midi[0]

    @property
    def upper(self) -> Tuple[int, ...]:
        return self.voices_midi[1:]

    @property
    def soprano(self) -> int:
        return self.voices_midi[-1]


@dataclass(frozen=True)
class ParseResult:
    """
    Kết quả parse (không bao giờ raise).

    - recipe: None khi thất bại.
    - success: cờ thành công, caller phải kiểm tra.
    - message: chẩn đoán (lỗi, hoặc cảnh báo không chết người như slash bass lạ).
    """

    recipe: Optional[ChordRecipe]
    success: bool
    message: str = ""

    @classmethod
    def ok(cls, recipe: ChordRecipe, message: str = "") -> "ParseResult":
        return cls(recipe=recipe, success=True, message=message)

    @classmethod
    def fail(cls, message: str) -> "ParseResult":
        return cls(recipe=None, success=False, message=message)

    def __iter__(self):
        # Cho phép: recipe, ok, msg = parse_roman_numeral(...)
        return iter((self.recipe, self.success, self.message))

    def __bool__(self) -> bool:
        return self.success


def tensions_sorted(tensions: List[Tension]) -> List[Tension]:
    return sorted(tensions, key=lambda t: t.kind.value)
