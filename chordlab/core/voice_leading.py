# Tệp: chordlab/core/voice_leading.py
# (FINAL V2.1.0) - VOICE LEADING ENGINE (SATB)
#
# Mục tiêu:
#   - [B, T, (A), S] cho từng ChordEvent, xử lý đúng thứ tự thời gian.
#   - Hợp âm i chỉ phụ thuộc voicing thật của hợp âm i-1.
#     Hợp âm đầu nhìn trước 1 bước để đặt seventh ở chỗ giải quyết được.
#   - Melody (nếu có) khoá soprano.
#
# Pipeline mỗi bước:
#   1) Bass      : chord tone của thế đảo, gần bass cũ nhất.
#   2) Upper     : common tone trước, cost = |Δ| + tendency; cấm vượt giọng.
#   3) Spacing   : ưu tiên giới hạn cứng, không có thì nới (log [Spacing Relax]).
#   4) Seventh   : giọng đến từ seventh bị kéo về nốt giải quyết đi xuống.
#   5) Coverage  : vá root / third / (fifth | seventh) còn thiếu.
#   6) Order     : sort, dời octave nếu cần (không vượt soprano bị khoá).
#   7) Hard rules: vi phạm thứ tự / spacing / coverage / melody -> tìm
#                  voicing hợp lệ gần nhất (bass trong band, giọng trên theo tổ hợp).
#
# Engine chỉ giữ config bất biến; state của mỗi lần gọi là biến cục bộ.

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass
from itertools import combinations
from typing import Any, Dict, List, Optional, Sequence, Set, Tuple

from chordlab.core.chord_builder import bass_pitch_class, chord_pitch_classes
from chordlab.core.chord_model import ChordEvent, ChordQuality, ChordRecipe, Inversion, VoicedChord
from chordlab.core.function_analyzer import analyze_chord_profile
from chordlab.core.music_theory import Key, note_number
from chordlab.core.register_manager import RegisterBand, RegisterManager
from chordlab.core.voice_scoring import (
    MAX_ALTO_TENOR,
    MAX_SOPRANO_ALTO,
    MAX_TENOR_BASS,
    ROOT_POSITION_BASS_BONUS,
    VoiceTendency,
    analyze_voice_tendency,
    common_third_to_seventh_cost,
    find_downward_seventh_resolution,
    find_local_leading_tone_target,
    find_seventh_resolution_candidate,
    generate_candidates_in_range,
    place_in_mid_register,
    spacing_penalty,
    tendency_cost,
    violates_hard_spacing,
    voice_order_error,
    would_cause_crossing,
)

MIN_VOICES = 3
MAX_VOICES = 4
# Bass được phép vượt band trên một chút
BASS_HEADROOM = 2
# Phạt mỗi giọng trên nằm ngoài upper band (tìm voicing hợp lệ)
OUT_OF_BAND_PENALTY = 12.0


@dataclass
class VoiceLeadingConfig:
    num_voices: int = 4
    bass_octave: int = 3
    upper_min: int = 55
    upper_max: int = 80
    bass_min: int = 36
    bass_max: int = 60
    debug: bool = False

    def __post_init__(self):
        self.num_voices = max(MIN_VOICES, min(MAX_VOICES, int(self.num_voices)))
        if self.upper_min > self.upper_max:
            self.upper_min, self.upper_max = self.upper_max, self.upper_min
        if self.bass_min > self.bass_max:
            self.bass_min, self.bass_max = self.bass_max, self.bass_min

    @classmethod
    def from_user_options(cls, user_options: Optional[Dict[str, Any]]) -> "VoiceLeadingConfig":
        user_options = user_options or {}
        voicing_cfg = user_options.get("voicing", {}) or {}
        registers = RegisterManager(user_options)
        upper = registers.band("UPPER")
        bass = registers.band("BASS")
        return cls(
            num_voices=int(voicing_cfg.get("num_voices", 4)),
            bass_octave=int(voicing_cfg.get("bass_octave", 3)),
            upper_min=int(voicing_cfg.get("upper_min", upper.min_midi)),
            upper_max=int(voicing_cfg.get("upper_max", upper.max_midi)),
            bass_min=bass.min_midi,
            bass_max=bass.max_midi,
            debug=bool(voicing_cfg.get("debug", False)),
        )

    @property
    def upper_band(self) -> RegisterBand:
        return RegisterBand(self.upper_min, self.upper_max)

    @property
    def bass_band(self) -> RegisterBand:
        return RegisterBand(self.bass_min, self.bass_max + BASS_HEADROOM)


@dataclass(frozen=True)
class _Step:
    """Ngữ cảnh chỉ đọc của một bước voice leading."""

    index: int
    key: Key
    recipe: ChordRecipe
    pcs: Tuple[int, ...]
    bass: int
    melody_midi: Optional[int]
    target: Optional[int]
    prev_third_pc: Optional[int] = None
    next_seventh_pc: Optional[int] = None


class VoiceLeadingEngine:
    """
    Engine voice leading 3-4 giọng.

    Sử dụng:

        engine = VoiceLeadingEngine(VoiceLeadingConfig(num_voices=4))
        voiced = engine.voice_lead_progression(events)
    """

    def __init__(self, config: Optional[VoiceLeadingConfig] = None):
        self.config = config or VoiceLeadingConfig()
        self.debug = self.config.debug

    def _log(self, msg: str) -> None:
        if self.debug:
            print(f"[VoiceLeading] {msg}")

    # ---------- PUBLIC API ----------
    def voice_lead_progression(self, events: Sequence[ChordEvent]) -> List[VoicedChord]:
        ordered = sorted(events or [], key=lambda e: e.time_beats)
        if not ordered:
            return []

        next_event = ordered[1] if len(ordered) > 1 else None
        voiced = [self.voice_first_chord(ordered[0], next_event)]
        for idx in range(1, len(ordered)):
            voiced.append(self.voice_next_chord(voiced[-1], ordered[idx - 1], ordered[idx], step=idx))
        return voiced

    def voice_single_event(self, event: ChordEvent) -> VoicedChord:
        return self.voice_first_chord(event)

    def voice_first_chord(self, event: ChordEvent, next_event: Optional[ChordEvent] = None) -> VoicedChord:
        cfg = self.config
        key, recipe = event.key, event.recipe
        pcs = chord_pitch_classes(key, recipe)
        root_pc, third_pc, fifth_pc = pcs[0], pcs[1], pcs[2]
        seventh_pc = pcs[3] if recipe.has_seventh else None
        n_upper = cfg.num_voices - 1

        bass = note_number(bass_pitch_class(key, recipe), cfg.bass_octave)

        lookahead_seventh: Optional[int] = None
        if seventh_pc is not None and next_event is not None:
            lookahead_seventh = self._resolution_aware_seventh(seventh_pc, next_event)
            if lookahead_seventh is not None:
                self._log(f"first chord: seventh placed at {lookahead_seventh} (lookahead)")

        def mid(pc: int) -> int:
            return place_in_mid_register(pc, cfg.upper_min, cfg.upper_max)

        target: Optional[int] = None
        if event.melody_midi is not None:
            target = self._soprano_target(event.melody_midi)
            melody_pc = target % 12
            available = [pc for pc in pcs if pc != melody_pc]
            ceiling = min(cfg.upper_max, target - 1)

            candidates = generate_candidates_in_range(available, cfg.upper_min, ceiling)
            if (
                lookahead_seventh is not None
                and seventh_pc != melody_pc
                and lookahead_seventh <= ceiling
            ):
                if lookahead_seventh in candidates:
                    candidates.remove(lookahead_seventh)
                candidates.insert(0, lookahead_seventh)

            inner = self._pick_spaced_inner(candidates, n_upper - 1, bass, target)
            self._fill_below_target(inner, n_upper - 1, available, target, bass)
            upper = sorted(inner) + [target]
        else:
            if seventh_pc is not None:
                seventh_midi = lookahead_seventh if lookahead_seventh is not None else mid(seventh_pc)
                if n_upper == 2:
                    upper = [mid(third_pc), seventh_midi]
                else:
                    upper = [mid(third_pc), mid(fifth_pc), seventh_midi]
            else:
                upper = [mid(third_pc), mid(fifth_pc)]
                if n_upper == 3:
                    root_above = mid(root_pc)
                    if root_above <= upper[-1]:
                        root_above += 12
                        if root_above > cfg.upper_max:
                            root_above -= 12
                    upper.append(root_above)
            upper.sort()

        voices = [bass] + upper
        locked = [False] * len(voices)
        voices = self._fix_coverage(voices, key, recipe, locked, protect_soprano=target is not None, step=0)
        voices = self._restore_order(voices, soprano_locked=target is not None, step=0)
        voices = self._enforce_hard_rules(voices, key, recipe, target, step=0)
        self._validate(voices, 0)
        return VoicedChord(event.time_beats, tuple(voices))

    def voice_next_chord(
        self,
        prev_voiced: VoicedChord,
        prev_event: ChordEvent,
        event: ChordEvent,
        step: int = 1,
    ) -> VoicedChord:
        cfg = self.config
        key, recipe = event.key, event.recipe
        pcs = chord_pitch_classes(key, recipe)
        n_upper = cfg.num_voices - 1

        prev_profile = analyze_chord_profile(prev_event.key, prev_event.recipe)
        prev_upper = list(prev_voiced.upper)[:n_upper]
        tendencies = [
            analyze_voice_tendency(m, prev_event.key, prev_event.recipe, prev_profile) for m in prev_upper
        ]

        bass = self._choose_bass(prev_voiced.bass, key, recipe)

        prev_pcs = chord_pitch_classes(prev_event.key, prev_event.recipe)
        target = self._soprano_target(event.melody_midi) if event.melody_midi is not None else None
        ctx = _Step(
            index=step,
            key=key,
            recipe=recipe,
            pcs=tuple(pcs),
            bass=bass,
            melody_midi=event.melody_midi,
            target=target,
            prev_third_pc=None if prev_event.recipe.is_sus4 else prev_pcs[1],
            next_seventh_pc=pcs[3] if recipe.has_seventh else None,
        )

        upper: List[int] = []
        used: Set[int] = set()
        selections: List[Tuple[int, int]] = []

        if target is not None:
            melody_pc = target % 12
            available = [pc for pc in pcs if pc != melody_pc]
            ceiling = min(cfg.upper_max, target - 1)
            candidates = generate_candidates_in_range(available, cfg.upper_min, ceiling)
            used.add(target)

            remaining = cfg.num_voices - 2
            for idx, tendency in enumerate(tendencies):
                if remaining <= 0:
                    break
                pool = self._inject_tendency_targets(candidates, tendency, pcs, ceiling, ctx.melody_midi, limit=target)
                chosen = self._select_voice(
                    ctx, idx, tendency, pool, upper, used,
                    is_soprano=False,
                    voice_max=ceiling,
                    limit=target,
                    check_soprano_gap=(remaining == 1),
                )
                if chosen is None:
                    continue
                selections.append((idx, chosen))
                upper.append(chosen)
                used.add(chosen)
                remaining -= 1

            inner = sorted(upper)
            for cand in candidates:
                if len(inner) >= n_upper - 1:
                    break
                if cand in used or cand >= target:
                    continue
                inner.append(cand)
                used.add(cand)
            self._fill_below_target(inner, n_upper - 1, available, target, bass)
            upper = sorted(inner) + [target]
        else:
            candidates = generate_candidates_in_range(pcs, cfg.upper_min, cfg.upper_max)
            for idx, tendency in enumerate(tendencies):
                is_soprano = idx == n_upper - 1
                pool = self._inject_tendency_targets(candidates, tendency, pcs, cfg.upper_max, None, limit=None)
                chosen = self._select_voice(
                    ctx, idx, tendency, pool, upper, used,
                    is_soprano=is_soprano,
                    voice_max=cfg.upper_max,
                    limit=None,
                    check_soprano_gap=False,
                )
                if chosen is None:
                    third_pc = pcs[1] if len(pcs) > 1 else pcs[0]
                    chosen = place_in_mid_register(third_pc, cfg.upper_min, cfg.upper_max)
                    self._log(f"step {step}: voice {idx} fallback -> {chosen}")
                selections.append((idx, chosen))
                upper.append(chosen)
                used.add(chosen)

            # Hợp âm trước có ít giọng hơn: bù bằng candidate chưa dùng
            for cand in candidates:
                if len(upper) >= n_upper:
                    break
                if cand not in used and not would_cause_crossing(cand, bass, upper):
                    upper.append(cand)
                    used.add(cand)
            upper.sort()

        voices = [bass] + upper
        voices = self._enforce_seventh_resolutions(ctx, voices, prev_upper, tendencies, selections)
        locked = self._locked_resolution_voices(ctx, voices, prev_upper, tendencies)
        voices = self._fix_coverage(voices, key, recipe, locked, protect_soprano=target is not None, step=step)
        voices = self._restore_order(voices, soprano_locked=target is not None, step=step)
        voices = self._enforce_hard_rules(voices, key, recipe, target, step=step)
        self._validate(voices, step)
        return VoicedChord(event.time_beats, tuple(voices))

    # ---------- BASS / SOPRANO ----------
    def _choose_bass(self, prev_bass: int, key: Key, recipe: ChordRecipe) -> int:
        cfg = self.config
        target_pc = bass_pitch_class(key, recipe)
        bonus = ROOT_POSITION_BASS_BONUS if recipe.inversion == Inversion.ROOT else 0.0
        band = cfg.bass_band

        best: Optional[Tuple[float, int]] = None
        for cand in generate_candidates_in_range([target_pc], band.min_midi, band.max_midi):
            cost = abs(cand - prev_bass) + bonus
            if best is None or cost < best[0]:
                best = (cost, cand)
        if best is None:
            return note_number(target_pc, cfg.bass_octave)
        return best[1]

    def _soprano_target(self, melody_midi: int) -> int:
        return self.config.upper_band.fold(melody_midi)

    def _pick_spaced_inner(self, candidates: Sequence[int], count: int, bass: int, target: int) -> List[int]:
        """
        Giọng trong của hợp âm đầu khi có melody.

        Tổ hợp giữ spacing cứng và phủ nhiều pitch class nhất thắng;
        hoà thì theo thứ tự candidate. Không có tổ hợp nào thì lấy greedy.
        """
        usable = [c for c in candidates if bass < c < target]
        best: Optional[Tuple[int, List[int]]] = None
        for combo in combinations(usable, count):
            inner = sorted(combo)
            voices = [bass] + inner + [target]
            if violates_hard_spacing(voices):
                continue
            distinct = len({v % 12 for v in voices})
            if best is None or distinct > best[0]:
                best = (distinct, inner)
        if best is not None:
            return best[1]
        return sorted(usable[:count])

    def _fill_below_target(
        self,
        inner: List[int],
        count: int,
        available: Sequence[int],
        target: int,
        bass: int,
    ) -> None:
        """Bù giọng trong còn thiếu, luôn nằm giữa bass và soprano."""
        cfg = self.config
        ceiling = min(cfg.upper_max, target - 1)
        for pc in available:
            if len(inner) >= count:
                return
            midi = place_in_mid_register(pc, cfg.upper_min, ceiling)
            if midi % 12 == pc and bass < midi < target and midi not in inner:
                inner.append(midi)
        pcs = list(available) or [target % 12]
        for _ in range(count):
            for pc in pcs:
                if len(inner) >= count:
                    return
                midi = target - ((target - pc) % 12 or 12)
                while midi in inner:
                    midi -= 12
                if midi > bass:
                    inner.append(midi)
        # Không còn chỗ trên bass: để bước hard rules đổi bass
        while len(inner) < count:
            midi = target - 12
            while midi in inner:
                midi -= 12
            inner.append(midi)

    def _resolution_aware_seventh(self, seventh_pc: int, next_event: ChordEvent) -> Optional[int]:
        """Seventh của hợp âm đầu đặt sao cho nốt giải quyết (-1/-2) nằm trong quãng."""
        cfg = self.config
        next_pcs = set(chord_pitch_classes(next_event.key, next_event.recipe))
        if (seventh_pc - 1) % 12 not in next_pcs and (seventh_pc - 2) % 12 not in next_pcs:
            return None

        center = (cfg.upper_min + cfg.upper_max) // 2
        best: Optional[int] = None
        for midi in generate_candidates_in_range([seventh_pc], cfg.upper_min, cfg.upper_max):
            reachable = any(
                cfg.upper_min <= midi - step <= cfg.upper_max and (midi - step) % 12 in next_pcs
                for step in (1, 2)
            )
            if reachable and (best is None or abs(midi - center) < abs(best - center)):
                best = midi
        return best

    # ---------- UPPER VOICES ----------
    def _inject_tendency_targets(
        self,
        candidates: Sequence[int],
        tendency: VoiceTendency,
        pcs: Sequence[int],
        voice_max: int,
        melody_midi: Optional[int],
        limit: Optional[int],
    ) -> List[int]:
        pool = list(candidates)
        extra: List[int] = []
        if tendency.is_local_leading_tone and tendency.local_target_root_pc is not None:
            found = find_local_leading_tone_target(tendency.midi, tendency.local_target_root_pc)
            if found is not None:
                extra.append(found)
        if tendency.is_chord_seventh:
            found = find_seventh_resolution_candidate(
                tendency.midi, tendency.midi % 12, self.config.upper_min, voice_max, pcs, melody_midi
            )
            if found is not None:
                extra.append(found)
        for midi in extra:
            if midi not in pool and (limit is None or midi < limit):
                pool.append(midi)
        return pool

    def _spacing_ok(self, ctx: _Step, chosen: Sequence[int], cand: int, is_soprano: bool, check_soprano_gap: bool) -> bool:
        if not chosen:
            if cand - ctx.bass > MAX_TENOR_BASS:
                return False
        else:
            limit = MAX_SOPRANO_ALTO if is_soprano else MAX_ALTO_TENOR
            if cand - chosen[-1] > limit:
                return False
        if check_soprano_gap and ctx.target is not None and ctx.target - cand > MAX_SOPRANO_ALTO:
            return False
        return True

    def _select_voice(
        self,
        ctx: _Step,
        prev_idx: int,
        tendency: VoiceTendency,
        pool: Sequence[int],
        chosen: Sequence[int],
        used: Set[int],
        is_soprano: bool,
        voice_max: int,
        limit: Optional[int],
        check_soprano_gap: bool,
    ) -> Optional[int]:
        prev_pc = tendency.midi % 12
        common = [c for c in pool if c % 12 == prev_pc]
        relaxed: List[Tuple[Tuple[float, float], int]] = []
        for candidates in (common, pool):
            best_spaced: Optional[Tuple[Tuple[float, float], int]] = None
            best_any: Optional[Tuple[Tuple[float, float], int]] = None
            for cand in candidates:
                if cand in used:
                    continue
                if limit is not None and cand >= limit:
                    continue
                if would_cause_crossing(cand, ctx.bass, chosen):
                    continue

                cost = float(abs(cand - tendency.midi))
                cost += tendency_cost(
                    tendency, cand, ctx.key, ctx.recipe, is_soprano,
                    ctx.melody_midi, self.config.upper_min, voice_max,
                )
                cost += common_third_to_seventh_cost(
                    tendency.midi, cand, ctx.prev_third_pc, ctx.next_seventh_pc
                )
                trial = [ctx.bass] + list(chosen) + [cand]
                if check_soprano_gap and ctx.target is not None:
                    trial.append(ctx.target)
                rank = (cost, spacing_penalty(trial))

                if best_any is None or rank < best_any[0]:
                    best_any = (rank, cand)
                if self._spacing_ok(ctx, chosen, cand, is_soprano, check_soprano_gap):
                    if best_spaced is None or rank < best_spaced[0]:
                        best_spaced = (rank, cand)

            if best_spaced is not None:
                self._log(
                    f"step {ctx.index} voice {prev_idx}: {tendency.midi} -> {best_spaced[1]} "
                    f"(cost {best_spaced[0][0]:.2f})"
                )
                return best_spaced[1]
            if best_any is not None:
                relaxed.append(best_any)

        # Cả common tone lẫn toàn bộ pool đều vượt spacing cứng
        if relaxed:
            chosen_relaxed = relaxed[0][1]
            if self.debug:
                print(
                    f"[Spacing Relax] step {ctx.index} voice {prev_idx}: "
                    f"{tendency.midi} -> {chosen_relaxed} (no candidate within hard spacing)"
                )
            return chosen_relaxed
        return None

    # ---------- SEVENTH RESOLUTION ----------
    def _expected_resolution(self, ctx: _Step, prev_midi: int) -> Optional[int]:
        cfg = self.config
        voice_max = cfg.upper_max
        if ctx.target is not None:
            voice_max = min(voice_max, ctx.target - 1)
        pcs = set(ctx.pcs)
        prev_pc = prev_midi % 12
        for target_pc in ((prev_pc - 1) % 12, (prev_pc - 2) % 12):
            if target_pc not in pcs:
                continue
            found = find_downward_seventh_resolution(prev_midi, target_pc, cfg.upper_min, voice_max)
            if found is not None:
                return found
        return None

    def _last_modifiable_index(self, voices: Sequence[int], protect_soprano: bool) -> int:
        return len(voices) - (2 if protect_soprano else 1)

    def _enforce_seventh_resolutions(
        self,
        ctx: _Step,
        voices: List[int],
        prev_upper: Sequence[int],
        tendencies: Sequence[VoiceTendency],
        selections: Sequence[Tuple[int, int]],
    ) -> List[int]:
        voices = list(voices)
        last = self._last_modifiable_index(voices, ctx.target is not None)
        for vi in range(1, last + 1):
            source = next((idx for idx, midi in selections if midi == voices[vi]), None)
            if source is None or not tendencies[source].is_chord_seventh:
                continue
            resolution = self._expected_resolution(ctx, prev_upper[source])
            if resolution is not None and resolution != voices[vi] and resolution not in voices:
                self._log(f"step {ctx.index}: seventh {prev_upper[source]} forced to {resolution} (was {voices[vi]})")
                voices[vi] = resolution
        return voices

    def _locked_resolution_voices(
        self,
        ctx: _Step,
        voices: Sequence[int],
        prev_upper: Sequence[int],
        tendencies: Sequence[VoiceTendency],
    ) -> List[bool]:
        locked = [False] * len(voices)
        last = self._last_modifiable_index(voices, ctx.target is not None)
        for vi in range(1, last + 1):
            for idx, prev_midi in enumerate(prev_upper):
                if not tendencies[idx].is_chord_seventh:
                    continue
                if self._expected_resolution(ctx, prev_midi) == voices[vi]:
                    locked[vi] = True
                    break
        return locked

    # ---------- COVERAGE / ORDER ----------
    def _required_pitch_classes(self, key: Key, recipe: ChordRecipe) -> List[int]:
        pcs = chord_pitch_classes(key, recipe)
        if not recipe.has_seventh:
            return [pcs[0], pcs[1], pcs[2]]
        required = [pcs[0], pcs[1], pcs[3]]
        altered_fifth = recipe.quality in (ChordQuality.DIMINISHED, ChordQuality.AUGMENTED)
        if altered_fifth and self.config.num_voices == MAX_VOICES:
            required.append(pcs[2])
        return required

    def _essential_pitch_classes(self, key: Key, recipe: ChordRecipe) -> List[int]:
        """Root + third (+ seventh); fifth luôn bỏ được."""
        pcs = chord_pitch_classes(key, recipe)
        if recipe.has_seventh:
            return [pcs[0], pcs[1], pcs[3]]
        return [pcs[0], pcs[1]]

    def _fix_coverage(
        self,
        voices: List[int],
        key: Key,
        recipe: ChordRecipe,
        locked: Sequence[bool],
        protect_soprano: bool,
        step: int,
    ) -> List[int]:
        cfg = self.config
        voices = list(voices)
        pcs = chord_pitch_classes(key, recipe)
        required = self._required_pitch_classes(key, recipe)
        essential = self._essential_pitch_classes(key, recipe)
        counts = Counter(v % 12 for v in voices)

        if recipe.has_seventh:
            seventh_pc = pcs[3]
            if counts[seventh_pc] == 0:
                required.remove(seventh_pc)
                required.insert(0, seventh_pc)

        # Giọng vá phải nằm trên bass và dưới soprano bị khoá
        floor = max(cfg.upper_min, voices[0] + 1)
        ceiling = min(cfg.upper_max, voices[-1] - 1) if protect_soprano else cfg.upper_max

        last = self._last_modifiable_index(voices, protect_soprano)
        for req in required:
            if counts[req] > 0:
                continue
            placements = generate_candidates_in_range([req], floor, ceiling)
            if not placements:
                continue

            movable = [i for i in range(1, last + 1) if not locked[i]]
            duplicated = [i for i in movable if counts[voices[i] % 12] > 1]
            # Không lấy chỗ của chord tone bắt buộc duy nhất
            spare = [i for i in movable if voices[i] % 12 not in required]
            donors = duplicated or spare
            if not donors and recipe.has_seventh and req in essential:
                # Fifth của hợp âm 7 nhường chỗ cho root / third / seventh
                donors = [i for i in movable if voices[i] % 12 == pcs[2]]
            best: Optional[Tuple[int, int, int]] = None
            for i in donors:
                for cand in placements:
                    dist = abs(cand - voices[i])
                    if best is None or dist < best[0]:
                        best = (dist, i, cand)
            if best is None:
                continue

            _, i, cand = best
            if self.debug:
                print(f"[Coverage] step {step}: voice {i} {voices[i]} -> {cand} (missing pc {req})")
            counts[voices[i] % 12] -= 1
            counts[req] += 1
            voices[i] = cand

        if protect_soprano:
            return [voices[0]] + sorted(voices[1:-1]) + [voices[-1]]
        return [voices[0]] + sorted(voices[1:])

    def _restore_order(self, voices: List[int], soprano_locked: bool, step: int) -> List[int]:
        bass = voices[0]
        if soprano_locked:
            inner, top = list(voices[1:-1]), [voices[-1]]
        else:
            inner, top = list(voices[1:]), []

        fixed: List[int] = []
        for v in inner:
            original = v
            while v <= bass:
                v += 12
            if top:
                # Dời xuống theo octave, không bao giờ vượt soprano bị khoá
                while v >= top[0] and v - 12 > bass:
                    v -= 12
            if v != original:
                self._log(f"step {step}: voice {original} displaced to {v}")
            fixed.append(v)

        result = [bass] + sorted(fixed) + top
        error = voice_order_error(result)
        if error is not None and not soprano_locked:
            self._log(f"step {step}: order restored by full sort ({error})")
            result = sorted(result)
        return result

    # ---------- HARD RULES ----------
    def _hard_violation(
        self,
        voices: Sequence[int],
        required: Sequence[int],
        target: Optional[int],
        spaced: bool = True,
    ) -> Optional[str]:
        """None nếu voicing hợp lệ; ngược lại mô tả vi phạm đầu tiên."""
        if len(voices) != self.config.num_voices:
            return f"expected {self.config.num_voices} voices, got {len(voices)}"
        error = voice_order_error(voices)
        if error is not None:
            return error
        if target is not None and voices[-1] != target:
            return f"soprano {voices[-1]} is not the melody {target}"
        if spaced and violates_hard_spacing(voices):
            return "hard spacing exceeded"
        present = {v % 12 for v in voices}
        missing = [pc for pc in required if pc not in present]
        if missing:
            return f"missing pc {missing}"
        return None

    def _search_voicing(
        self,
        reference: Sequence[int],
        key: Key,
        recipe: ChordRecipe,
        required: Sequence[int],
        target: Optional[int],
        spaced: bool,
    ) -> Optional[List[int]]:
        """
        Voicing hợp lệ gần `reference` nhất.

        Bass: mọi octave của bass pc trong bass band. Giọng trên: tổ hợp tăng
        ngặt các chord tone giữa bass và soprano (hoặc upper_max).
        Cost = tổng |Δ| so với reference + phạt nốt ngoài upper band;
        hoà thì spacing penalty, rồi thứ tự liệt kê.
        """
        cfg = self.config
        bass_band = cfg.bass_band
        upper_band = cfg.upper_band
        pcs = chord_pitch_classes(key, recipe)
        ref_bass, ref_upper = reference[0], list(reference[1:])

        if target is not None:
            free, top, fixed_top = cfg.num_voices - 2, target - 1, [target]
        else:
            free, top, fixed_top = cfg.num_voices - 1, cfg.upper_max, []

        best: Optional[Tuple[Tuple[float, float], List[int]]] = None
        basses = generate_candidates_in_range([bass_pitch_class(key, recipe)], bass_band.min_midi, bass_band.max_midi)
        for bass in basses:
            pool = sorted(generate_candidates_in_range(pcs, bass + 1, top))
            for combo in combinations(pool, free):
                voices = [bass] + list(combo) + fixed_top
                if self._hard_violation(voices, required, target, spaced) is not None:
                    continue
                upper = voices[1:]
                cost = float(abs(bass - ref_bass))
                cost += sum(abs(a - b) for a, b in zip(upper, ref_upper))
                cost += sum(OUT_OF_BAND_PENALTY for v in upper if not upper_band.contains(v))
                rank = (cost, spacing_penalty(voices))
                if best is None or rank < best[0]:
                    best = (rank, voices)
        return None if best is None else best[1]

    def _enforce_hard_rules(
        self,
        voices: List[int],
        key: Key,
        recipe: ChordRecipe,
        target: Optional[int],
        step: int,
    ) -> List[int]:
        """
        Thứ tự tăng ngặt, spacing cứng, chord tone bắt buộc, soprano = melody.

        Nới dần: đủ chord tone bắt buộc -> chỉ root/third/seventh -> bỏ spacing.
        """
        required = self._required_pitch_classes(key, recipe)
        error = self._hard_violation(voices, required, target)
        if error is None:
            return voices

        self._log(f"step {step}: {error} in {list(voices)}, searching nearest valid voicing")
        essential = self._essential_pitch_classes(key, recipe)
        for tones, spaced in ((required, True), (essential, True), (essential, False)):
            found = self._search_voicing(voices, key, recipe, tones, target, spaced)
            if found is None:
                continue
            if not spaced and self.debug:
                print(f"[Spacing Relax] step {step}: no voicing within hard spacing, using {found}")
            self._log(f"step {step}: {list(voices)} -> {found}")
            return found

        self._log(f"step {step}: no voicing satisfies the hard rules, keeping {list(voices)}")
        return voices

    def _validate(self, voices: Sequence[int], step: int) -> None:
        if not self.debug:
            return
        error = voice_order_error(voices)
        if error is not None:
            print(f"[VoiceLeading] step {step}: order violation {error}")
        if violates_hard_spacing(voices):
            print(f"[VoiceLeading] step {step}: hard spacing exceeded {list(voices)}")
        penalty = spacing_penalty(voices)
        if penalty:
            print(f"[VoiceLeading] step {step}: spacing penalty {penalty:.0f} for {list(voices)}")


# ---------- MODULE API ----------

def voice_lead_progression(
    events: Sequence[ChordEvent],
    num_voices: int = 4,
    bass_octave: int = 3,
    upper_min: int = 55,
    upper_max: int = 80,
    config: Optional[VoiceLeadingConfig] = None,
) -> List[VoicedChord]:
    """Voice lead cả progression; `config` (nếu có) thay cho các tham số rời."""
    if config is None:
        config = VoiceLeadingConfig(
            num_voices=num_voices,
            bass_octave=bass_octave,
            upper_min=upper_min,
            upper_max=upper_max,
        )
    return VoiceLeadingEngine(config).voice_lead_progression(events)
