# Tệp: chordlab/core/voice_scoring.py
# (FINAL V1.4.0) - VOICE SCORING (PURE FUNCTIONS)
#
# Các hàm thuần cho VoiceLeadingEngine:
#   - Spacing / crossing / thứ tự giọng
#   - Sinh candidate theo quãng
#   - Tendency cost: seventh, leading tone (global / local), third -> seventh
#
# Hằng số dưới đây là bảng điểm cố định. Âm = thưởng, dương = phạt.

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence, Tuple

from chordlab.core.chord_builder import chord_pitch_classes
from chordlab.core.chord_model import ChordRecipe, FunctionProfile, FunctionTag
from chordlab.core.music_theory import Key, degree_of_pitch_class, degree_pitch_class

# ---------- SEVENTH ----------
SEVENTH_DOWN_STEP_BONUS = -3.5
SEVENTH_HOLD_PENALTY = 2.0
SEVENTH_LARGE_LEAP_PENALTY = 0.5
SEVENTH_DOWN_STEP_BONUS_NORMAL = -6.0
SEVENTH_AVOID_PENALTY_NORMAL = 6.0
SEVENTH_MELODY_DOUBLE_BONUS = -4.0
SEVENTH_MELODY_DOUBLE_PENALTY = 4.0
SEVENTH_DOWN_STEP_BONUS_HARD = -10.0
SEVENTH_HARD_PENALTY = 1000.0

# ---------- LEADING TONES ----------
LEADING_TONE_INNER_BONUS = -1.25
LEADING_TONE_SOPRANO_BONUS = -2.5
LEADING_TONE_SOFTEN_FACTOR = 0.1
LOCAL_LEADING_TONE_UP_BONUS = -2.5
LOCAL_LEADING_TONE_DOWN_BONUS = -2.0
LOCAL_LEADING_TONE_HOLD_PENALTY = 1.5

# ---------- COMMON TONES / BASS ----------
COMMON_THIRD_TO_SEVENTH_BONUS = -3.0
ROOT_POSITION_BASS_BONUS = -4.0

# ---------- SPACING ----------
MAX_SOPRANO_ALTO = 12
MAX_ALTO_TENOR = 12
MAX_TENOR_BASS = 24
PREFERRED_UPPER_GAP = 7
PREFERRED_TENOR_BASS = 12
SPACING_LARGE_PENALTY = 200.0
SPACING_PREFERRED_PENALTY = 40.0
SPACING_BASS_TENOR_PENALTY = 15.0


# ============================================================
# SPACING / ORDER
# ============================================================

def spacing_penalty(voices: Sequence[int]) -> float:
    """
    Phạt mềm theo cặp giọng kề nhau [B, T, (A), S].

    Cặp (B, T): > 24 -> 200, > 12 -> 15.
    Cặp trên:   > 12 -> 200, > 7  -> 40.
    """
    penalty = 0.0
    for idx in range(len(voices) - 1):
        gap = voices[idx + 1] - voices[idx]
        if idx == 0:
            if gap > MAX_TENOR_BASS:
                penalty += SPACING_LARGE_PENALTY
            elif gap > PREFERRED_TENOR_BASS:
                penalty += SPACING_BASS_TENOR_PENALTY
        else:
            if gap > MAX_ALTO_TENOR:
                penalty += SPACING_LARGE_PENALTY
            elif gap > PREFERRED_UPPER_GAP:
                penalty += SPACING_PREFERRED_PENALTY
    return penalty


def violates_hard_spacing(voices: Sequence[int]) -> bool:
    for idx in range(len(voices) - 1):
        gap = voices[idx + 1] - voices[idx]
        limit = MAX_TENOR_BASS if idx == 0 else MAX_ALTO_TENOR
        if gap > limit:
            return True
    return False


def would_cause_crossing(candidate: int, bass: int, chosen: Iterable[int]) -> bool:
    """Candidate <= bass hoặc <= một giọng đã chọn -> vượt giọng."""
    if candidate <= bass:
        return True
    return any(candidate <= v for v in chosen)


def voice_order_error(voices: Sequence[int]) -> Optional[str]:
    """None nếu voices tăng ngặt; ngược lại mô tả cặp sai đầu tiên."""
    for idx in range(len(voices) - 1):
        if voices[idx] >= voices[idx + 1]:
            return f"voice {idx} ({voices[idx]}) >= voice {idx + 1} ({voices[idx + 1]})"
    return None


# ============================================================
# CANDIDATES
# ============================================================

def place_in_mid_register(pitch_class: int, min_midi: int, max_midi: int) -> int:
    """pc ở octave 4, dời theo octave vào [min, max], rồi clamp."""
    midi = 5 * 12 + int(pitch_class) % 12
    while midi < min_midi:
        midi += 12
    while midi > max_midi:
        midi -= 12
    return max(min_midi, min(max_midi, midi))


def generate_candidates_in_range(pitch_classes: Iterable[int], min_midi: int, max_midi: int) -> List[int]:
    """Theo thứ tự pc đầu vào, mỗi pc: các octave tăng dần trong [min, max]."""
    out: List[int] = []
    for pc in pitch_classes:
        pc = int(pc) % 12
        first = min_midi + ((pc - min_midi) % 12)
        for midi in range(first, max_midi + 1, 12):
            if midi not in out:
                out.append(midi)
    return out


def find_nearest_pitch_class_in_range(
    pitch_class: int,
    reference: int,
    min_midi: int,
    max_midi: int,
) -> Optional[int]:
    """Nốt có pc cho trước gần reference nhất (hoà: nốt cao hơn)."""
    best: Optional[int] = None
    for midi in reversed(generate_candidates_in_range([pitch_class], min_midi, max_midi)):
        if best is None or abs(midi - reference) < abs(best - reference):
            best = midi
    return best


def find_local_leading_tone_target(from_midi: int, target_pc: int) -> Optional[int]:
    """Root đích trong ±3 semitone, ưu tiên đi lên."""
    for step in (1, 2, 3):
        if (from_midi + step) % 12 == target_pc:
            return from_midi + step
    for step in (1, 2, 3):
        if (from_midi - step) % 12 == target_pc:
            return from_midi - step
    return None


def find_downward_seventh_resolution(
    prev_midi: int,
    target_pc: int,
    min_midi: int,
    max_midi: int,
) -> Optional[int]:
    """
    Giải quyết đi xuống của seventh: thử -1, -2, rồi -10, -11.

    Dừng ngay khi candidate rơi dưới min; bỏ qua candidate trên max.
    """
    for offset in (1, 2, 10, 11):
        candidate = prev_midi - offset
        if candidate < min_midi:
            break
        if candidate > max_midi:
            continue
        if candidate % 12 == target_pc % 12:
            return candidate
    return None


def find_seventh_resolution_candidate(
    from_midi: int,
    from_pc: int,
    min_midi: int,
    max_midi: int,
    chord_pcs: Iterable[int],
    melody_midi: Optional[int] = None,
) -> Optional[int]:
    """
    Nốt giải quyết cho giọng đang giữ seventh (xuống 1 hoặc 2 semitone).

    Melody đang ở nốt giải quyết -> ưu tiên pc của melody.
    """
    pcs = {int(pc) % 12 for pc in chord_pcs}
    down1 = (from_pc - 1) % 12
    down2 = (from_pc - 2) % 12

    if melody_midi is not None:
        melody_pc = melody_midi % 12
        if melody_pc in (down1, down2) and melody_pc in pcs:
            found = find_downward_seventh_resolution(from_midi, melody_pc, min_midi, max_midi)
            if found is None:
                found = find_nearest_pitch_class_in_range(melody_pc, from_midi, min_midi, max_midi)
            if found is not None:
                return found

    for target in (down1, down2):
        if target not in pcs:
            continue
        found = find_downward_seventh_resolution(from_midi, target, min_midi, max_midi)
        if found is None:
            found = find_nearest_pitch_class_in_range(target, from_midi, min_midi, max_midi)
        if found is not None:
            return found
    return None


# ============================================================
# TENDENCIES
# ============================================================

@dataclass(frozen=True)
class VoiceTendency:
    """Khuynh hướng của một nốt ở hợp âm trước."""

    midi: int
    is_chord_seventh: bool = False
    is_chord_third: bool = False
    is_global_leading_tone: bool = False
    is_local_leading_tone: bool = False
    scale_degree: int = 0
    local_target_root_pc: Optional[int] = None


def analyze_voice_tendency(
    midi: int,
    key: Key,
    recipe: ChordRecipe,
    profile: Optional[FunctionProfile] = None,
) -> VoiceTendency:
    pcs = chord_pitch_classes(key, recipe)
    pc = midi % 12

    is_seventh = recipe.has_seventh and len(pcs) > 3 and pc == pcs[3]
    # third theo vai trò (sus4 -> bậc 4 không phải third)
    is_third = not recipe.is_sus4 and pc == pcs[1]

    leading_pc = degree_pitch_class(key, 7)
    is_global = leading_pc is not None and pc == leading_pc

    is_local = False
    target_pc: Optional[int] = None
    if (
        is_third
        and profile is not None
        and profile.tag == FunctionTag.SECONDARY_DOMINANT
        and profile.secondary_target_degree
    ):
        target_pc = degree_pitch_class(key, profile.secondary_target_degree)
        is_local = target_pc is not None

    return VoiceTendency(
        midi=midi,
        is_chord_seventh=is_seventh,
        is_chord_third=is_third,
        is_global_leading_tone=is_global,
        is_local_leading_tone=is_local,
        scale_degree=degree_of_pitch_class(key, pc),
        local_target_root_pc=target_pc,
    )


def _legacy_seventh_cost(from_midi: int, to_midi: int, next_pcs: Sequence[int]) -> float:
    delta = to_midi - from_midi
    if -3 <= delta <= -1:
        return SEVENTH_DOWN_STEP_BONUS
    if delta == 0:
        from_pc = from_midi % 12
        # có nốt giải quyết (9..11 semitone trên = 1..3 dưới)
        if any((pc - from_pc) % 12 in (9, 10, 11) for pc in next_pcs):
            return SEVENTH_HOLD_PENALTY
        return 0.0
    if delta >= 5:
        return SEVENTH_LARGE_LEAP_PENALTY
    return 0.0


def seventh_resolution_cost(
    tendency: VoiceTendency,
    to_midi: int,
    next_pcs: Sequence[int],
    is_soprano: bool,
    melody_midi: Optional[int] = None,
    voice_min: Optional[int] = None,
    voice_max: Optional[int] = None,
) -> Tuple[float, bool]:
    """
    Điểm cho giọng đang đi ra từ seventh.

    Trả về (cost, hard); hard=True nghĩa là luật cứng đã quyết định, bỏ qua các luật sau.
    """
    if not tendency.is_chord_seventh:
        return 0.0, False
    pcs = [int(pc) % 12 for pc in next_pcs]
    to_pc = to_midi % 12
    if to_pc not in pcs:
        return 0.0, False

    from_midi = tendency.midi
    from_pc = from_midi % 12
    down1 = (from_pc - 1) % 12
    down2 = (from_pc - 2) % 12
    delta = to_midi - from_midi

    melody_pc = melody_midi % 12 if melody_midi is not None else None
    if not is_soprano and melody_pc is not None and melody_pc in (down1, down2):
        if to_midi < from_midi and to_pc == melody_pc and 1 <= abs(delta) <= 3:
            return SEVENTH_MELODY_DOUBLE_BONUS, False
        return SEVENTH_MELODY_DOUBLE_PENALTY, False

    if melody_midi is not None and is_soprano:
        return _legacy_seventh_cost(from_midi, to_midi, pcs), False

    resolution_pcs = [p for p in (down1, down2) if p in pcs]
    if resolution_pcs and voice_min is not None and voice_max is not None:
        resolution: Optional[int] = None
        for target in resolution_pcs:
            resolution = find_downward_seventh_resolution(from_midi, target, voice_min, voice_max)
            if resolution is not None:
                break
        if resolution is not None:
            if to_midi == resolution:
                return SEVENTH_DOWN_STEP_BONUS_HARD, True
            return SEVENTH_HARD_PENALTY, True

    if resolution_pcs:
        if -2 <= delta <= -1 and to_pc in resolution_pcs:
            return SEVENTH_DOWN_STEP_BONUS_NORMAL, False
        if delta >= 0:
            return SEVENTH_AVOID_PENALTY_NORMAL, False
        return 0.0, False

    return _legacy_seventh_cost(from_midi, to_midi, pcs), False


def leading_tone_cost(
    tendency: VoiceTendency,
    to_midi: int,
    key: Key,
    next_recipe: ChordRecipe,
    is_soprano: bool,
    melody_midi: Optional[int] = None,
) -> float:
    """Leading tone (bậc 7) đi lên 1-2 semitone về tonic."""
    if not tendency.is_global_leading_tone:
        return 0.0
    next_pcs = chord_pitch_classes(key, next_recipe)
    to_pc = to_midi % 12
    tonic_pc = degree_pitch_class(key, 1)
    if to_pc not in next_pcs or to_pc != tonic_pc:
        return 0.0
    delta = to_midi - tendency.midi
    if not 1 <= delta <= 2:
        return 0.0

    if is_soprano:
        if melody_midi is not None and melody_midi == to_midi:
            return LEADING_TONE_SOPRANO_BONUS
        return 0.0

    bonus = LEADING_TONE_INNER_BONUS
    if next_recipe.has_seventh and len(next_pcs) > 3 and to_pc != next_pcs[3]:
        bonus *= LEADING_TONE_SOFTEN_FACTOR
    return bonus


def local_leading_tone_cost(tendency: VoiceTendency, to_midi: int, next_root_pc: int) -> float:
    """Third của secondary dominant -> root đích."""
    target = tendency.local_target_root_pc
    if not tendency.is_local_leading_tone or target is None:
        return 0.0
    delta = to_midi - tendency.midi
    if to_midi % 12 == target and 1 <= abs(delta) <= 3:
        return LOCAL_LEADING_TONE_UP_BONUS if delta > 0 else LOCAL_LEADING_TONE_DOWN_BONUS
    if delta == 0 and next_root_pc == target:
        return LOCAL_LEADING_TONE_HOLD_PENALTY
    return 0.0


def common_third_to_seventh_cost(
    prev_midi: int,
    candidate: int,
    prev_third_pc: Optional[int],
    next_seventh_pc: Optional[int],
) -> float:
    """Third của hợp âm trước được giữ làm seventh của hợp âm mới."""
    if prev_third_pc is None or next_seventh_pc is None:
        return 0.0
    prev_pc = prev_midi % 12
    if prev_pc == prev_third_pc and candidate % 12 == next_seventh_pc == prev_pc:
        return COMMON_THIRD_TO_SEVENTH_BONUS
    return 0.0


def tendency_cost(
    tendency: VoiceTendency,
    to_midi: int,
    key: Key,
    next_recipe: ChordRecipe,
    is_soprano: bool,
    melody_midi: Optional[int] = None,
    voice_min: Optional[int] = None,
    voice_max: Optional[int] = None,
) -> float:
    """Tổng điều chỉnh theo khuynh hướng (seventh, leading tone, local leading tone)."""
    next_pcs = chord_pitch_classes(key, next_recipe)

    cost, hard = seventh_resolution_cost(
        tendency, to_midi, next_pcs, is_soprano, melody_midi, voice_min, voice_max
    )
    if hard:
        return cost

    cost += leading_tone_cost(tendency, to_midi, key, next_recipe, is_soprano, melody_midi)
    cost += local_leading_tone_cost(tendency, to_midi, next_pcs[0])
    return cost
