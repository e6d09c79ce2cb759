# Tệp: chordlab/core/harmonizer.py
# (FINAL V1.0.0) - NAIVE MELODY HARMONIZER
#
# Vai trò:
#   - Phân tích nốt melody theo bậc của key (bậc gần nhất + độ lệch semitone).
#   - Liệt kê hợp âm ứng viên chứa nốt melody (diatonic, và chromatic khi
#     nốt có dấu # / b rõ ràng).
#   - Chọn 1 hợp âm / nốt: tonic mở đầu, giữ hợp âm cũ nếu còn hợp,
#     không thì theo bảng chuyển hợp âm (I -> ii/IV -> V -> I ...).
#   - Kết quả -> ChordEvent (melody khoá soprano) cho VoiceLeadingEngine.
#
# Giới hạn: chỉ hỗ trợ Ionian. Mode khác -> không harmonize.

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple

from chordlab.core.chord_builder import chord_pitch_classes
from chordlab.core.chord_model import ChordEvent, ChordQuality, ChordRecipe, SeventhQuality
from chordlab.core.function_analyzer import analyze_chord_profile, non_diatonic_info
from chordlab.core.music_theory import (
    NOTE_TO_PC,
    Key,
    ScaleMode,
    degree_pitch_class,
    note_number,
    wrap_semitones,
)
from chordlab.core.notation_parser import parse_roman_numeral
from chordlab.core.symbol_formatter import chord_symbol, recipe_to_roman_numeral


class AccidentalHint(Enum):
    """Dấu hoá người dùng viết cho nốt melody (quyết định hợp âm chromatic)."""

    NONE = "none"
    NATURAL = "natural"
    SHARP = "sharp"
    FLAT = "flat"


# Bậc melody -> numeral ứng viên (theo thứ tự ưu tiên)
DIATONIC_CANDIDATES: Dict[int, Tuple[str, ...]] = {
    1: ("I", "vi"),
    2: ("ii", "V"),
    3: ("I", "iii", "vi"),
    4: ("IV", "ii"),
    5: ("V", "I"),
    6: ("vi", "IV"),
    7: ("V", "viidim"),
}

_MAJOR = ChordQuality.MAJOR
_NO7 = SeventhQuality.NONE
_DOM7 = SeventhQuality.DOMINANT7

# (pc tương đối so với tonic, dấu hoá) -> (degree, quality, seventh, root_offset)
CHROMATIC_CANDIDATES: Dict[Tuple[int, AccidentalHint], Tuple[Tuple[int, ChordQuality, SeventhQuality, int], ...]] = {
    (1, AccidentalHint.FLAT): ((2, _MAJOR, _NO7, -1),),                           # bII
    (1, AccidentalHint.SHARP): ((6, _MAJOR, _NO7, 0), (6, _MAJOR, _DOM7, 0)),     # V(7)/ii
    (3, AccidentalHint.FLAT): ((3, _MAJOR, _NO7, -1),),                           # bIII
    (3, AccidentalHint.SHARP): ((7, _MAJOR, _DOM7, 0),),                          # V7/iii
    (6, AccidentalHint.FLAT): ((5, _MAJOR, _NO7, -1),),                           # bV
    (6, AccidentalHint.SHARP): ((2, _MAJOR, _DOM7, 0),),                          # V7/V
    (8, AccidentalHint.FLAT): ((6, _MAJOR, _NO7, -1),),                           # bVI
    (8, AccidentalHint.SHARP): ((3, _MAJOR, _NO7, 0), (3, _MAJOR, _DOM7, 0)),     # V(7)/vi
    (10, AccidentalHint.FLAT): ((7, _MAJOR, _NO7, -1),),                          # bVII
    (10, AccidentalHint.SHARP): ((4, _MAJOR, _NO7, 1),),                          # #IV
}

# Hợp âm trước -> các nhóm numeral ưu tiên (nhóm đầu tiên có ứng viên thắng)
TRANSITION_PREFERENCES: Dict[str, Tuple[Tuple[str, ...], ...]] = {
    "I": (("ii", "IV"), ("V",)),
    "ii": (("V", "I"),),
    "IV": (("V", "I"),),
    "V": (("I", "vi"),),
    "vi": (("ii", "IV"),),
    "iii": (("vi",),),
    "viidim": (("I", "iii"),),
}

_NOTE_NAME_RE = re.compile(r"^([A-Ga-g])(#{1,2}|b{1,2}|n)?(-?\d+)$")


# =========================
# 1. DATA TYPES
# =========================

@dataclass(frozen=True)
class MelodyEvent:
    time_beats: float
    duration_beats: float
    midi: int
    accidental_hint: AccidentalHint = AccidentalHint.NONE


@dataclass(frozen=True)
class MelodyAnalysis:
    time_beats: float
    duration_beats: float
    midi: int
    pitch_class: int
    degree: int
    semitone_offset: int

    @property
    def is_diatonic(self) -> bool:
        return self.semitone_offset == 0


@dataclass(frozen=True)
class ChordCandidate:
    recipe: ChordRecipe
    roman: str
    symbol: str
    reason: str


@dataclass
class HarmonizedStep:
    melody: MelodyEvent
    analysis: MelodyAnalysis
    candidates: List[ChordCandidate] = field(default_factory=list)
    chosen: Optional[ChordCandidate] = None
    reason: str = ""


@dataclass
class HarmonizerSettings:
    prefer_tonic_start: bool = True
    prefer_chord_continuity: bool = True
    detailed_reasons: bool = True
    debug: bool = False

    @classmethod
    def from_user_options(cls, user_options: Optional[Dict[str, Any]]) -> "HarmonizerSettings":
        cfg = (user_options or {}).get("harmonizer", {}) or {}
        return cls(
            prefer_tonic_start=bool(cfg.get("prefer_tonic_start", True)),
            prefer_chord_continuity=bool(cfg.get("prefer_chord_continuity", True)),
            detailed_reasons=bool(cfg.get("detailed_reasons", True)),
            debug=bool(cfg.get("debug", False)),
        )


# =========================
# 2. MELODY INPUT
# =========================

def parse_melody_note(value: Any) -> Optional[Tuple[int, AccidentalHint]]:
    """
    72 -> (72, NONE); "F#5" -> (78, SHARP); "Bb4" -> (70, FLAT); "En4" -> (64, NATURAL).
    Giá trị không đọc được -> None.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return int(value), AccidentalHint.NONE
    match = _NOTE_NAME_RE.match(str(value).strip())
    if not match:
        try:
            return int(str(value).strip()), AccidentalHint.NONE
        except ValueError:
            return None

    letter, accidental, octave = match.groups()
    accidental = accidental or ""
    shift = 0
    if accidental.startswith("#"):
        hint = AccidentalHint.SHARP
        shift = len(accidental)
    elif accidental.startswith("b"):
        hint = AccidentalHint.FLAT
        shift = -len(accidental)
    elif accidental == "n":
        hint = AccidentalHint.NATURAL
    else:
        hint = AccidentalHint.NONE
    # Octave theo chữ cái: B#4 = 72, Cb5 = 71
    return note_number(NOTE_TO_PC[letter.upper()], int(octave)) + shift, hint


def melody_events_from_values(
    values: Sequence[Any],
    start_beat: float = 0.0,
    beat_step: float = 1.0,
) -> List[MelodyEvent]:
    """Mỗi giá trị đọc được -> 1 MelodyEvent; giá trị hỏng / null bị bỏ qua."""
    events: List[MelodyEvent] = []
    for idx, value in enumerate(values or []):
        parsed = parse_melody_note(value)
        if parsed is None:
            if value is not None:
                print(f"  [WARN] Skip melody note {value!r}")
            continue
        midi, hint = parsed
        events.append(MelodyEvent(start_beat + idx * beat_step, beat_step, midi, hint))
    return events


# =========================
# 3. ANALYSIS
# =========================

def analyze_melody_event(key: Key, event: MelodyEvent) -> MelodyAnalysis:
    """
    Bậc gần nhất của nốt. Bằng khoảng cách: nốt trùng bậc thắng, còn lại bậc nhỏ hơn thắng.
    C# trong C -> degree 1, offset +1.
    """
    pc = event.midi % 12
    best_degree, best_offset = 1, None
    for degree in range(1, 8):
        offset = wrap_semitones(pc - degree_pitch_class(key, degree))
        if best_offset is None or abs(offset) < abs(best_offset):
            best_degree, best_offset = degree, offset
        elif abs(offset) == abs(best_offset) and offset == 0 and best_offset != 0:
            best_degree, best_offset = degree, offset

    return MelodyAnalysis(
        time_beats=event.time_beats,
        duration_beats=event.duration_beats,
        midi=event.midi,
        pitch_class=pc,
        degree=best_degree,
        semitone_offset=best_offset or 0,
    )


def analyze_melody_line(key: Key, melody: Sequence[MelodyEvent]) -> List[MelodyAnalysis]:
    return [analyze_melody_event(key, event) for event in melody or []]


# =========================
# 4. CANDIDATES
# =========================

def _candidate(key: Key, recipe: ChordRecipe, reason: str) -> ChordCandidate:
    return ChordCandidate(
        recipe=recipe,
        roman=recipe_to_roman_numeral(key, recipe),
        symbol=chord_symbol(key, recipe),
        reason=reason,
    )


def _diatonic_candidates(key: Key, analysis: MelodyAnalysis) -> List[ChordCandidate]:
    out: List[ChordCandidate] = []
    for numeral in DIATONIC_CANDIDATES.get(analysis.degree, ()):
        result = parse_roman_numeral(key, numeral)
        if not result.success:
            continue
        if analysis.pitch_class not in chord_pitch_classes(key, result.recipe):
            continue
        reason = f"Melody degree {analysis.degree} is chord tone in {numeral}"
        out.append(_candidate(key, result.recipe, reason))
    return out


def _chromatic_candidates(key: Key, analysis: MelodyAnalysis, hint: AccidentalHint) -> List[ChordCandidate]:
    rel_pc = (analysis.pitch_class - key.tonic_pc) % 12
    out: List[ChordCandidate] = []
    for degree, quality, seventh, offset in CHROMATIC_CANDIDATES.get((rel_pc, hint), ()):
        recipe = ChordRecipe(degree=degree, quality=quality, seventh=seventh, root_offset=offset)
        if analysis.pitch_class not in chord_pitch_classes(key, recipe):
            continue
        info = non_diatonic_info(analyze_chord_profile(key, recipe), key)
        sign = "#" if hint == AccidentalHint.SHARP else "b"
        reason = f"Chromatic melody {sign}{rel_pc} fits {recipe_to_roman_numeral(key, recipe)}"
        if info:
            reason += f" ({info})"
        out.append(_candidate(key, recipe, reason))
    return out


def chord_candidates_for_melody_note(
    key: Key,
    analysis: MelodyAnalysis,
    hint: AccidentalHint = AccidentalHint.NONE,
) -> List[ChordCandidate]:
    """
    Hợp âm chứa nốt melody.

    - Nốt diatonic: bảng DIATONIC_CANDIDATES theo bậc.
    - Nốt ngoài điệu: chỉ khi có dấu # / b rõ ràng (CHROMATIC_CANDIDATES).
    - Mode khác Ionian: [].
    """
    if key.mode != ScaleMode.IONIAN:
        return []
    if analysis.is_diatonic:
        return _diatonic_candidates(key, analysis)
    if hint in (AccidentalHint.SHARP, AccidentalHint.FLAT):
        return _chromatic_candidates(key, analysis, hint)
    return []


# =========================
# 5. HARMONIZATION
# =========================

def _find(candidates: Sequence[ChordCandidate], romans: Sequence[str]) -> Optional[ChordCandidate]:
    for candidate in candidates:
        if candidate.roman in romans:
            return candidate
    return None


def choose_best_transition(previous: ChordCandidate, candidates: Sequence[ChordCandidate]) -> ChordCandidate:
    """Theo TRANSITION_PREFERENCES của hợp âm trước; không khớp -> ứng viên đầu."""
    for group in TRANSITION_PREFERENCES.get(previous.roman, ()):
        found = _find(candidates, group)
        if found is not None:
            return found
    return candidates[0]


def build_naive_harmonization(
    melody: Sequence[MelodyEvent],
    key: Key,
    settings: Optional[HarmonizerSettings] = None,
) -> List[HarmonizedStep]:
    """1 HarmonizedStep / nốt melody. chosen = None khi chưa có hợp âm nào dùng được."""
    settings = settings or HarmonizerSettings()
    if not melody:
        return []
    if key.mode != ScaleMode.IONIAN:
        if settings.debug:
            print(f"[Harmonizer] {key}: chỉ hỗ trợ Ionian, bỏ qua.")
        return []

    steps: List[HarmonizedStep] = []
    previous: Optional[ChordCandidate] = None
    for idx, event in enumerate(melody):
        analysis = analyze_melody_event(key, event)
        candidates = chord_candidates_for_melody_note(key, analysis, event.accidental_hint)
        step = HarmonizedStep(melody=event, analysis=analysis, candidates=candidates)

        if not candidates:
            if previous is not None:
                step.chosen = previous
                step.reason = f"Non-diatonic melody note; reused previous chord {previous.roman}"
            else:
                step.reason = "Non-diatonic melody note; no chord available"
        elif idx == 0:
            tonic = _find(candidates, ("I",)) if settings.prefer_tonic_start else None
            step.chosen = tonic or candidates[0]
            step.reason = "Start on tonic" if tonic else step.chosen.reason
        elif (
            previous is not None
            and settings.prefer_chord_continuity
            and _find(candidates, (previous.roman,)) is not None
        ):
            step.chosen = _find(candidates, (previous.roman,))
            step.reason = f"Keep {previous.roman}: melody still a chord tone"
        elif previous is not None:
            step.chosen = choose_best_transition(previous, candidates)
            step.reason = f"Transition {previous.roman} -> {step.chosen.roman}"
        else:
            step.chosen = candidates[0]
            step.reason = step.chosen.reason

        if settings.detailed_reasons and candidates and step.chosen.reason not in step.reason:
            step.reason += f"; {step.chosen.reason}"
        if settings.debug:
            chosen = step.chosen.roman if step.chosen else "-"
            print(f"[Harmonizer] {idx}: midi={event.midi} deg={analysis.degree}"
                  f"{analysis.semitone_offset:+d} -> {chosen} ({step.reason})")

        if step.chosen is not None:
            previous = step.chosen
        steps.append(step)
    return steps


def build_chord_events_from_harmonization(key: Key, steps: Sequence[HarmonizedStep]) -> List[ChordEvent]:
    """Bước không có hợp âm bị bỏ; melody của bước khoá soprano."""
    return [
        ChordEvent(
            key=key,
            recipe=step.chosen.recipe,
            time_beats=step.melody.time_beats,
            melody_midi=step.melody.midi,
        )
        for step in steps
        if step.chosen is not None
    ]
