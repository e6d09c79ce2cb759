# Tệp: chordlab/core/register_manager.py
# (FINAL V2.1.0) - REGISTER MANAGER (SATB BANDS)
#
# - Dải quãng an toàn cho bass / upper voices.
# - Override từ user_options["voicing"]["registers"].
# - fold: đưa MIDI vào band theo octave (giữ pitch class).

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class RegisterBand:
    """
    Dải quãng an toàn cho một nhóm giọng (min_midi, max_midi).
    """

    min_midi: int
    max_midi: int

    def contains(self, pitch: int) -> bool:
        return self.min_midi <= pitch <= self.max_midi

    def fold(self, pitch: int) -> int:
        """Dời theo octave vào band (giữ pitch class nếu band rộng >= 1 octave)."""
        pitch = int(pitch)
        while pitch < self.min_midi:
            pitch += 12
        while pitch > self.max_midi:
            pitch -= 12
        return pitch


class RegisterManager:
    """
    Register Manager – ChordLab

    - Quản lý quãng an toàn cho bass và các giọng trên.
    - Cho phép override band từ user_options.

    Khởi tạo:

        rm = RegisterManager(user_options=user_options)

    Sử dụng:

        bass_band = rm.band("BASS")
        upper_band = rm.band("UPPER")

    Tên band viết upper-case: "BASS", "UPPER" (alias "B", "U", "UPPER_VOICES").
    """

    DEFAULT_BANDS: Dict[str, RegisterBand] = {
        # Bass: C2..C4
        "BASS": RegisterBand(36, 60),
        # Cửa sổ chung cho mọi giọng trên (tenor..soprano): G3..G#5
        "UPPER": RegisterBand(55, 80),
    }

    LAYER_ALIAS: Dict[str, str] = {
        "B": "BASS",
        "U": "UPPER",
        "UPPER_VOICES": "UPPER",
    }

    def __init__(self, user_options: Optional[Dict[str, Any]] = None) -> None:
        self.user_options = user_options or {}
        voicing_cfg = self.user_options.get("voicing", {}) or {}
        self.debug = bool(voicing_cfg.get("debug", False))

        self.bands: Dict[str, RegisterBand] = self._build_bands_with_override(voicing_cfg)

        if self.debug:
            self.debug_print_bands()

    def _build_bands_with_override(self, voicing_cfg: Dict[str, Any]) -> Dict[str, RegisterBand]:
        """
        Clone DEFAULT_BANDS rồi áp override.

        Format nhận:
          registers:
            BASS: [38, 60]
            UPPER:
              min: 57
              max: 79
        """
        bands: Dict[str, RegisterBand] = dict(self.DEFAULT_BANDS)

        override_cfg = voicing_cfg.get("registers", {}) or {}
        if not isinstance(override_cfg, dict):
            print(f"  [WARN] voicing.registers phải là mapping, bỏ qua: {override_cfg!r}")
            return bands

        for layer_name, cfg in override_cfg.items():
            name = self._normalize_layer_name(layer_name)
            if name is None:
                print(f"  [WARN] Register không hỗ trợ, bỏ qua: {layer_name!r}")
                continue
            try:
                if isinstance(cfg, dict):
                    min_val = int(cfg.get("min"))
                    max_val = int(cfg.get("max"))
                elif isinstance(cfg, (list, tuple)) and len(cfg) == 2:
                    min_val, max_val = int(cfg[0]), int(cfg[1])
                else:
                    continue
            except (TypeError, ValueError):
                print(f"  [WARN] Register override lỗi cho {layer_name}: {cfg!r}")
                continue
            if min_val > max_val:
                min_val, max_val = max_val, min_val

            bands[name] = RegisterBand(min_val, max_val)

        return bands

    def _normalize_layer_name(self, layer_name: Any) -> Optional[str]:
        nm = str(layer_name or "").strip().upper()
        nm = self.LAYER_ALIAS.get(nm, nm)
        return nm if nm in self.DEFAULT_BANDS else None

    # ---------- PUBLIC API ----------
    def band(self, layer_name: str) -> RegisterBand:
        key = self._normalize_layer_name(layer_name)
        if key is None:
            raise KeyError(f"unknown register band: {layer_name!r}")
        return self.bands[key]

    def debug_print_bands(self) -> None:
        print("[RegisterManager] Bands after override:")
        for name, band in sorted(self.bands.items()):
            print(f"    - {name}: {band.min_midi} .. {band.max_midi}")
