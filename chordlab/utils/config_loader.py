# Tệp: chordlab/utils/config_loader.py
# (FINAL V2.0.0) - CONFIG & VOICING PROFILE LOADER
#
# Nhiệm vụ:
#   - load_user_options: đọc user_options.yaml -> dict thuần.
#   - Định nghĩa VoicingProfile (dataclass).
#   - Load voicing_profiles.yaml vào dict[ref -> VoicingProfile].
#   - apply_voicing_profile: gộp profile vào section "voicing" (key user đặt thắng).

import dataclasses
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import yaml


def load_user_options(path: str) -> Dict[str, Any]:
    """Đọc YAML options. File không tồn tại -> FileNotFoundError."""
    if not os.path.exists(path):
        raise FileNotFoundError(f"Options file not found: {path}")
    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Options file must contain a mapping: {path}")
    return data


@dataclass
class VoicingProfile:
    name: str
    num_voices: int = 4
    bass_octave: int = 3
    upper_min: int = 55
    upper_max: int = 80
    debug: bool = False
    # {LAYER: [min, max]} giống voicing.registers
    registers: Dict[str, List[int]] = field(default_factory=dict)

    def to_voicing_section(self) -> Dict[str, Any]:
        section = dataclasses.asdict(self)
        section.pop("name", None)
        if not section["registers"]:
            section.pop("registers")
        return section


class VoicingProfileLoader:
    """
    Sử dụng:
        loader = VoicingProfileLoader("config/voicing_profiles.yaml")
        profile = loader.get_profile("satb_close")
    """

    def __init__(self, path: Optional[str] = None):
        self.profiles: Dict[str, VoicingProfile] = {}
        if path:
            self._load(path, self.profiles)

    def _load(self, path: str, target: Dict[str, VoicingProfile]):
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}

            valid_fields = {f.name for f in dataclasses.fields(VoicingProfile)}

            for k, v in data.items():
                if not isinstance(v, dict):
                    continue

                # "name" trong YAML là display name, ref key k là mã profile.
                profile_name = v.get("name", k)

                clean_v = {
                    key: val
                    for key, val in v.items()
                    if key in valid_fields and key != "name"
                }

                target[k] = VoicingProfile(name=profile_name, **clean_v)
        except (OSError, yaml.YAMLError, AttributeError, TypeError) as e:
            print(f"  [WARN] Loader Error {path}: {e}")

    def get_profile(self, ref: str) -> VoicingProfile:
        return self.profiles.get(ref, VoicingProfile(name="default"))

    def has_profile(self, ref: str) -> bool:
        return ref in self.profiles


def apply_voicing_profile(user_options: Dict[str, Any], base_dir: str = ".") -> Dict[str, Any]:
    """
    Nếu options có voicing_profile (+ voicing_profiles_path), gộp profile vào
    options["voicing"]. Key đặt trực tiếp trong "voicing" được giữ nguyên.
    """
    ref = user_options.get("voicing_profile")
    path = user_options.get("voicing_profiles_path")
    if not ref or not path:
        return user_options

    if not os.path.isabs(path):
        path = os.path.join(base_dir, path)
    loader = VoicingProfileLoader(path)
    if not loader.has_profile(ref):
        print(f"  [WARN] Voicing profile '{ref}' not found in {path}, using defaults.")

    merged = dict(user_options)
    voicing = loader.get_profile(ref).to_voicing_section()
    voicing.update(user_options.get("voicing", {}) or {})
    merged["voicing"] = voicing
    return merged
