# Tệp: chordlab/core/notation_parser.py
# (FINAL V1.5.0) - NOTATION PARSER (ROMAN NUMERAL + LEAD-SHEET)
#
# Vai trò:
#   - "bII", "V7/3rd", "viiø7", "V7b9#11", "nvi" ... -> ChordRecipe.
#   - "C#m7", "G7(b9,#11)", "F/A", "Bbmaj9" ...      -> ChordRecipe theo key.
#
# Quy tắc:
#   - Parser là hàm toàn phần: input hỏng -> ParseResult.fail(msg), không raise.
#   - Roman numeral, trái -> phải:
#       1. dấu hoá đầu (b / # / n)
#       2. numeral I..VII (hoa = major, thường = minor, lẫn = major)
#       3. hậu tố explicit dim/aug/m7/maj7/ø7/°7 ghi đè chữ hoa/thường
#       4. bóc extension từ phải sang trái: 7sus4, sus4, add11, add9, #11, #9, b9, 9
#       5. /3rd /5th /7th -> thế đảo
#   - V trơn + 9th/11th alteration, không ghi 7 -> dominant 7.
#
# Tích hợp:
#   from chordlab.core.notation_parser import parse_roman_numeral, parse_chord_symbol
#
#   result = parse_roman_numeral(key, "V7")
#   if result.success:
#       recipe = result.recipe

from __future__ import annotations

import re
from typing import List, Optional, Tuple

from chordlab.core.chord_model import (
    ChordQuality,
    ChordRecipe,
    Inversion,
    ParseResult,
    RequestedExtensions as Ext,
    SeventhQuality,
    count_ninths,
)
from chordlab.core.music_theory import (
    Key,
    MODE_OFFSETS,
    ScaleMode,
    degree_pitch_class,
    wrap_semitones,
)
from chordlab.core.pitch_spelling import LETTERS, NATURAL_PC, degree_letter_index

# --- CONSTANTS ---
ROMAN_TO_DEGREE = {"I": 1, "II": 2, "III": 3, "IV": 4, "V": 5, "VI": 6, "VII": 7}

# Thứ tự ưu tiên khi bóc extension từ phải sang trái
EXTENSION_SUFFIXES: Tuple[Tuple[str, Ext], ...] = (
    ("7sus4", Ext.SUS4),
    ("sus4", Ext.SUS4),
    ("add11", Ext.ADD11),
    ("add9", Ext.ADD9),
    ("#11", Ext.SHARP_ELEVEN),
    ("#9", Ext.SHARP_NINE),
    ("b9", Ext.FLAT_NINE),
    ("9", Ext.NINE),
)

# "7" = plain seventh (quyết định sau theo triad quality)
_PLAIN_SEVENTH = "plain"
ROMAN_SEVENTH_SUFFIXES: Tuple[Tuple[str, object], ...] = (
    ("maj7", SeventhQuality.MAJOR7),
    ("hdim7", SeventhQuality.HALF_DIMINISHED7),
    ("dim7", SeventhQuality.DIMINISHED7),
    ("°7", SeventhQuality.DIMINISHED7),
    ("o7", SeventhQuality.DIMINISHED7),
    ("ø7", SeventhQuality.HALF_DIMINISHED7),
    ("m7b5", SeventhQuality.HALF_DIMINISHED7),
    ("ø", SeventhQuality.HALF_DIMINISHED7),
    ("dom7", SeventhQuality.DOMINANT7),
    ("m7", SeventhQuality.MINOR7),
    ("7", _PLAIN_SEVENTH),
)

ROMAN_TRIAD_SUFFIXES: Tuple[Tuple[str, ChordQuality], ...] = (
    ("dim", ChordQuality.DIMINISHED),
    ("°", ChordQuality.DIMINISHED),
    ("o", ChordQuality.DIMINISHED),
    ("aug", ChordQuality.AUGMENTED),
    ("+", ChordQuality.AUGMENTED),
)

# 9th/11th alteration biến V trơn thành V7
_IMPLIES_DOMINANT = Ext.NINE | Ext.FLAT_NINE | Ext.SHARP_NINE | Ext.SHARP_ELEVEN | Ext.ADD11

_UNICODE_ACCIDENTALS = {"♭": "b", "♯": "#", "♮": "n"}


def _normalize_text(text: str) -> str:
    s = (text or "").strip()
    for src, dst in _UNICODE_ACCIDENTALS.items():
        s = s.replace(src, dst)
    return s


def _add_extension(current: Ext, flag: Ext) -> Optional[Ext]:
    """OR thêm flag; None nếu vi phạm luật 'tối đa 1 ninth'."""
    merged = current | flag
    if count_ninths(merged) > 1:
        return None
    return merged


def parse_inversion_specifier(text: str) -> Inversion:
    """'3rd' / '3' -> FIRST, '5th' -> SECOND, '7th' -> THIRD, khác -> ROOT."""
    s = (text or "").strip().lower()
    for tail in ("st", "nd", "rd", "th"):
        if s.endswith(tail):
            s = s[: -len(tail)]
            break
    return {
        "1": Inversion.ROOT,
        "3": Inversion.FIRST,
        "5": Inversion.SECOND,
        "7": Inversion.THIRD,
    }.get(s, Inversion.ROOT)


def _peel_extensions(body: str) -> Tuple[str, Ext, str]:
    """
    Bóc extension từ phải sang trái theo EXTENSION_SUFFIXES.

    Returns: (body còn lại, extensions, lỗi hoặc "").
    """
    body = body.replace("(", "").replace(")", "").replace(",", "")
    extensions = Ext.NONE
    peeled = True
    while peeled:
        peeled = False
        for suffix, flag in EXTENSION_SUFFIXES:
            if not body.endswith(suffix) or len(body) <= len(suffix):
                continue
            body = body[: -len(suffix)]
            merged = _add_extension(extensions, flag)
            if merged is None:
                return body, extensions, "at most one of 9 / b9 / #9 may be requested"
            extensions = merged
            if suffix == "7sus4":
                body += "7"
            elif suffix == "9":
                # maj9 / m9 -> maj7 / m7 + 9
                if body.endswith("maj") or (body.endswith("m") and not body.endswith("dim")):
                    body += "7"
            peeled = True
            break
    return body, extensions, ""


def parse_roman_numeral(key: Key, text: str) -> ParseResult:
    """
    Parse Roman numeral trong key.

    C Ionian: "V7" -> degree 5, MAJOR, DOMINANT7; "bII" -> degree 2, offset -1.
    """
    s = _normalize_text(text)
    if not s:
        return ParseResult.fail("empty Roman numeral")

    # 1. Dấu hoá đầu
    offset = 0
    naturalize = False
    idx = 0
    while idx < len(s) and s[idx] in "b#":
        offset += 1 if s[idx] == "#" else -1
        idx += 1
    if idx == 0 and s[0] in "nN" and len(s) > 1:
        naturalize = True
        idx = 1
    rest = s[idx:]
    if not rest:
        return ParseResult.fail(f"accidental without numeral in '{text}'")

    # 2. Thế đảo
    inversion = Inversion.ROOT
    if "/" in rest:
        rest, inv_part = rest.split("/", 1)
        inversion = parse_inversion_specifier(inv_part)

    # 3. Extensions
    body, extensions, err = _peel_extensions(rest)
    if err:
        return ParseResult.fail(f"{err} ('{text}')")

    # 4. Hậu tố seventh
    seventh_token = None
    for suffix, value in ROMAN_SEVENTH_SUFFIXES:
        if body.endswith(suffix) and len(body) > len(suffix):
            seventh_token = value
            body = body[: -len(suffix)]
            break

    # 5. Hậu tố triad
    explicit_quality: Optional[ChordQuality] = None
    for suffix, quality in ROMAN_TRIAD_SUFFIXES:
        if body.endswith(suffix) and len(body) > len(suffix):
            explicit_quality = quality
            body = body[: -len(suffix)]
            break

    # 6. Numeral
    if not body or any(ch not in "IViv" for ch in body):
        return ParseResult.fail(f"unrecognized Roman numeral '{text}'")
    degree = ROMAN_TO_DEGREE.get(body.upper())
    if degree is None:
        return ParseResult.fail(f"degree out of range in '{text}'")

    if explicit_quality is not None:
        quality = explicit_quality
    elif body.islower():
        quality = ChordQuality.MINOR
    else:
        quality = ChordQuality.MAJOR

    if seventh_token == _PLAIN_SEVENTH:
        seventh = SeventhQuality.MINOR7 if quality == ChordQuality.MINOR else SeventhQuality.DOMINANT7
    elif seventh_token is None:
        seventh = SeventhQuality.NONE
    else:
        seventh = seventh_token

    # V trơn + 9/11 alteration -> V7
    if (
        seventh == SeventhQuality.NONE
        and body == "V"
        and explicit_quality is None
        and extensions & _IMPLIES_DOMINANT
    ):
        seventh = SeventhQuality.DOMINANT7

    if naturalize:
        offset = parallel_ionian_offset(key, degree)

    recipe = ChordRecipe(
        degree=degree,
        quality=quality,
        seventh=seventh,
        root_offset=offset,
        inversion=inversion,
        extensions=extensions,
    )
    return ParseResult.ok(recipe)


# ============================================================
# LEAD-SHEET SYMBOLS
# ============================================================

_ROOT_RE = re.compile(r"^([A-Ga-g])([#b]?)")
_NOTE_RE = re.compile(r"^([A-G])([#b]?)$")

# (token, quality, seventh, extra extensions)
_SYMBOL_QUALITY_TOKENS: List[Tuple[str, ChordQuality, SeventhQuality, Ext]] = sorted(
    [
        ("m7b5", ChordQuality.DIMINISHED, SeventhQuality.HALF_DIMINISHED7, Ext.NONE),
        ("ø7", ChordQuality.DIMINISHED, SeventhQuality.HALF_DIMINISHED7, Ext.NONE),
        ("ø", ChordQuality.DIMINISHED, SeventhQuality.HALF_DIMINISHED7, Ext.NONE),
        ("dim7", ChordQuality.DIMINISHED, SeventhQuality.DIMINISHED7, Ext.NONE),
        ("°7", ChordQuality.DIMINISHED, SeventhQuality.DIMINISHED7, Ext.NONE),
        ("o7", ChordQuality.DIMINISHED, SeventhQuality.DIMINISHED7, Ext.NONE),
        ("mMaj7", ChordQuality.MINOR, SeventhQuality.MAJOR7, Ext.NONE),
        ("mmaj7", ChordQuality.MINOR, SeventhQuality.MAJOR7, Ext.NONE),
        ("mM7", ChordQuality.MINOR, SeventhQuality.MAJOR7, Ext.NONE),
        ("maj7", ChordQuality.MAJOR, SeventhQuality.MAJOR7, Ext.NONE),
        ("Maj7", ChordQuality.MAJOR, SeventhQuality.MAJOR7, Ext.NONE),
        ("M7", ChordQuality.MAJOR, SeventhQuality.MAJOR7, Ext.NONE),
        ("Δ7", ChordQuality.MAJOR, SeventhQuality.MAJOR7, Ext.NONE),
        ("Δ", ChordQuality.MAJOR, SeventhQuality.MAJOR7, Ext.NONE),
        ("maj9", ChordQuality.MAJOR, SeventhQuality.MAJOR7, Ext.NINE),
        ("Maj9", ChordQuality.MAJOR, SeventhQuality.MAJOR7, Ext.NINE),
        ("M9", ChordQuality.MAJOR, SeventhQuality.MAJOR7, Ext.NINE),
        ("min7", ChordQuality.MINOR, SeventhQuality.MINOR7, Ext.NONE),
        ("m7", ChordQuality.MINOR, SeventhQuality.MINOR7, Ext.NONE),
        ("-7", ChordQuality.MINOR, SeventhQuality.MINOR7, Ext.NONE),
        ("min9", ChordQuality.MINOR, SeventhQuality.MINOR7, Ext.NINE),
        ("m9", ChordQuality.MINOR, SeventhQuality.MINOR7, Ext.NINE),
        ("m11", ChordQuality.MINOR, SeventhQuality.MINOR7, Ext.ADD11),
        ("min", ChordQuality.MINOR, SeventhQuality.NONE, Ext.NONE),
        ("m", ChordQuality.MINOR, SeventhQuality.NONE, Ext.NONE),
        ("-", ChordQuality.MINOR, SeventhQuality.NONE, Ext.NONE),
        ("dim", ChordQuality.DIMINISHED, SeventhQuality.NONE, Ext.NONE),
        ("°", ChordQuality.DIMINISHED, SeventhQuality.NONE, Ext.NONE),
        ("o", ChordQuality.DIMINISHED, SeventhQuality.NONE, Ext.NONE),
        ("aug7", ChordQuality.AUGMENTED, SeventhQuality.DOMINANT7, Ext.NONE),
        ("+7", ChordQuality.AUGMENTED, SeventhQuality.DOMINANT7, Ext.NONE),
        ("augmaj7", ChordQuality.AUGMENTED, SeventhQuality.MAJOR7, Ext.NONE),
        ("augMaj7", ChordQuality.AUGMENTED, SeventhQuality.MAJOR7, Ext.NONE),
        ("+maj7", ChordQuality.AUGMENTED, SeventhQuality.MAJOR7, Ext.NONE),
        ("+M7", ChordQuality.AUGMENTED, SeventhQuality.MAJOR7, Ext.NONE),
        ("dimmaj7", ChordQuality.DIMINISHED, SeventhQuality.MAJOR7, Ext.NONE),
        ("dimMaj7", ChordQuality.DIMINISHED, SeventhQuality.MAJOR7, Ext.NONE),
        ("°maj7", ChordQuality.DIMINISHED, SeventhQuality.MAJOR7, Ext.NONE),
        ("aug", ChordQuality.AUGMENTED, SeventhQuality.NONE, Ext.NONE),
        ("+", ChordQuality.AUGMENTED, SeventhQuality.NONE, Ext.NONE),
        ("7", ChordQuality.MAJOR, SeventhQuality.DOMINANT7, Ext.NONE),
        ("9", ChordQuality.MAJOR, SeventhQuality.DOMINANT7, Ext.NINE),
        ("11", ChordQuality.MAJOR, SeventhQuality.DOMINANT7, Ext.ADD11),
    ],
    key=lambda item: len(item[0]),
    reverse=True,
)

_SYMBOL_TENSION_TOKENS: List[Tuple[str, Ext]] = sorted(
    [
        ("sus4", Ext.SUS4),
        ("sus", Ext.SUS4),
        ("add9", Ext.ADD9),
        ("add11", Ext.ADD11),
        ("b9", Ext.FLAT_NINE),
        ("#9", Ext.SHARP_NINE),
        ("9", Ext.NINE),
        ("#11", Ext.SHARP_ELEVEN),
        ("11", Ext.ADD11),
    ],
    key=lambda item: len(item[0]),
    reverse=True,
)


def _nearest_degree(key: Key, root_pc: int, letter: str, accidental: int) -> Tuple[int, int]:
    """
    Root pc -> (degree, offset) gần nhất trong key.

    Hoà: ưu tiên bậc có cùng chữ cái đã viết, rồi dấu hoá đã viết.
    """
    candidates = []
    for degree in range(1, 8):
        diff = wrap_semitones(root_pc - degree_pitch_class(key, degree))
        candidates.append((abs(diff), degree, diff))
    best_dist = min(c[0] for c in candidates)
    tied = [c for c in candidates if c[0] == best_dist]
    if len(tied) == 1:
        return tied[0][1], tied[0][2]

    letter_idx = LETTERS.index(letter)
    for _, degree, diff in tied:
        if degree_letter_index(key, degree) == letter_idx:
            return degree, diff
    for _, degree, diff in tied:
        if accidental and (diff > 0) == (accidental > 0):
            return degree, diff
    return tied[0][1], tied[0][2]


def _split_parenthesized(text: str) -> Tuple[str, List[str], str]:
    """'7(b9,#11)' -> ('7', ['b9', '#11'], lỗi)."""
    tokens: List[str] = []
    out = []
    depth = 0
    current = []
    for ch in text:
        if ch == "(":
            if depth > 0:
                return text, [], "nested parentheses"
            depth = 1
            current = []
        elif ch == ")":
            if depth == 0:
                return text, [], "unbalanced parentheses"
            depth = 0
            tokens.extend(t for t in re.split(r"[,\s]+", "".join(current)) if t)
        elif depth:
            current.append(ch)
        else:
            out.append(ch)
    if depth:
        return text, [], "unbalanced parentheses"
    return "".join(out), tokens, ""


def _consume_tension_tail(tail: str, extensions: Ext) -> Tuple[Ext, str]:
    """Bóc tension trần liên tiếp ('sus4', 'b9#11'). Trả về (extensions, lỗi)."""
    pos = 0
    while pos < len(tail):
        for token, flag in _SYMBOL_TENSION_TOKENS:
            if tail.startswith(token, pos):
                merged = _add_extension(extensions, flag)
                if merged is None:
                    return extensions, "at most one of 9 / b9 / #9 may be requested"
                extensions = merged
                pos += len(token)
                break
        else:
            return extensions, f"unsupported chord suffix '{tail[pos:]}'"
    return extensions, ""


def parse_chord_symbol(key: Key, text: str) -> ParseResult:
    """
    Parse ký hiệu lead-sheet trong key.

    A Ionian: "C#m" -> degree 3 MINOR; C Ionian: "F/A" -> degree 4, FIRST.
    Slash bass không thuộc hợp âm -> root position (vẫn success, có cảnh báo).
    """
    s = _normalize_text(text)
    if not s:
        return ParseResult.fail("empty chord symbol")

    m = _ROOT_RE.match(s)
    if not m:
        return ParseResult.fail(f"unknown root letter in '{text}'")
    letter = m.group(1).upper()
    accidental = {"#": 1, "b": -1}.get(m.group(2), 0)
    rest = s[m.end():]

    bass_text = None
    if "/" in rest:
        rest, bass_text = rest.rsplit("/", 1)
        if not _NOTE_RE.match(bass_text):
            return ParseResult.fail(f"invalid bass note '{bass_text}' in '{text}'")

    rest, paren_tokens, err = _split_parenthesized(rest)
    if err:
        return ParseResult.fail(f"{err} in '{text}'")

    quality = ChordQuality.MAJOR
    seventh = SeventhQuality.NONE
    extensions = Ext.NONE
    for token, q, sev, extra in _SYMBOL_QUALITY_TOKENS:
        if rest.startswith(token):
            quality, seventh, extensions = q, sev, extra
            rest = rest[len(token):]
            break

    extensions, err = _consume_tension_tail(rest, extensions)
    if err:
        return ParseResult.fail(f"{err} in '{text}'")
    for token in paren_tokens:
        extensions, err = _consume_tension_tail(token, extensions)
        if err:
            return ParseResult.fail(f"{err} in '{text}'")

    root_pc = (NATURAL_PC[letter] + accidental) % 12
    degree, offset = _nearest_degree(key, root_pc, letter, accidental)
    recipe = ChordRecipe(
        degree=degree,
        quality=quality,
        seventh=seventh,
        root_offset=offset,
        extensions=extensions,
    )

    message = ""
    if bass_text is not None:
        bm = _NOTE_RE.match(bass_text)
        bass_pc = (NATURAL_PC[bm.group(1)] + {"#": 1, "b": -1}.get(bm.group(2), 0)) % 12
        inversion = _inversion_for_bass(key, recipe, bass_pc)
        if inversion is None:
            message = f"bass '{bass_text}' is not a chord tone; using root position"
        else:
            recipe = recipe.with_changes(inversion=inversion)

    return ParseResult.ok(recipe, message)


def _inversion_for_bass(key: Key, recipe: ChordRecipe, bass_pc: int) -> Optional[Inversion]:
    from chordlab.core.chord_builder import chord_pitch_classes

    for idx, pc in enumerate(chord_pitch_classes(key, recipe)):
        if pc == bass_pc:
            return Inversion(idx)
    return None


def parallel_ionian_offset(key: Key, degree: int) -> int:
    """Độ lệch pc của bậc giữa Ionian song song và mode hiện tại (dùng cho tiền tố 'n')."""
    return wrap_semitones(MODE_OFFSETS[ScaleMode.IONIAN][degree - 1] - MODE_OFFSETS[key.mode][degree - 1])
