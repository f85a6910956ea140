from __future__ import annotations

import math
import re
from dataclasses import dataclass
from datetime import date
from typing import Literal

Category = Literal["general_blood", "chemistry", "coagulation", "urinalysis", "other"]
Flag = Literal["H", "L"]

CATEGORY_LABELS: dict[str, str] = {
    "general_blood": "일반혈액",
    "chemistry": "일반화학",
    "coagulation": "응고",
    "urinalysis": "요검사",
    "other": "기타",
}

# Precompiled regexes shared by every extractor
DATE_TOKEN = re.compile(r"^(\d{4})[./-](\d{1,2})[./-](\d{1,2})$")
HEADER_HINT = re.compile(r"(검사|항목|item|test|unit|참고|ref)", re.IGNORECASE)
# Supports negative bounds and decimals: "13.0~17.0", "(1.01~1.03)", "-2 - 2"
RANGE_PATTERN = re.compile(r"(-?\d+(?:\.\d+)?)\s*[~-]\s*(-?\d+(?:\.\d+)?)")
# Units start with '%', a Latin letter, a micro sign or a CJK compatibility unit
# glyph (U+3380-U+33FF, e.g. '㎎', '㎗'); superscripts cover "x10³/μL".
UNIT_PATTERN = re.compile(
    r"^[%a-zA-Z\u00b5\u03bc\u3380-\u33ff][a-zA-Z0-9/._%^\-\u00b5\u03bc\u00b2\u00b3\u00b9\u2070-\u2079\u3380-\u33ff]*$"
)
UNIT_CHAR = re.compile(r"[a-zA-Z\u00b5\u03bc/%^\u3380-\u33ff]")
HANGUL = re.compile(r"[가-힣]")
LATIN = re.compile(r"[A-Za-z]")
NAME_SEPARATORS = re.compile(r"[()\[\]/]+")
WHITESPACE = re.compile(r"\s+")
WIDE_GAP = re.compile(r"\s{2,}")
# Plain decimal or scientific notation; rejects "inf", "nan" and "1_000"
NUMBER = re.compile(r"^[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?$")
FLAG_SUFFIX = re.compile(r"(?P<rest>.*?)(?P<gap>\s*)(?P<flag>[HhLl])$", re.DOTALL)

_CATEGORY_KEYWORDS: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("general_blood", ("일반혈액", "cbc", "complete blood")),
    ("chemistry", ("일반화학", "chemistry", "간기능", "신장기능")),
    ("coagulation", ("응고", "coag")),
    ("urinalysis", ("요검사", "urinalysis", "urine")),
)


@dataclass(frozen=True)
class ValueToken:
    value_numeric: float | None
    value_text: str | None
    flag: Flag | None

    @property
    def is_empty(self) -> bool:
        return self.value_numeric is None and self.value_text is None


@dataclass(frozen=True)
class RefRange:
    ref_low: float | None = None
    ref_high: float | None = None

    @property
    def is_empty(self) -> bool:
        return self.ref_low is None and self.ref_high is None


@dataclass(frozen=True)
class LocalizedName:
    test_name_raw: str
    test_name_ko: str | None
    test_name_en: str


EMPTY_VALUE = ValueToken(None, None, None)
EMPTY_RANGE = RefRange()


def normalize_lines(raw: str) -> list[str]:
    """Split pasted text into trimmed, non-empty lines.

    Non-breaking spaces copied out of hospital portals become plain spaces.
    Internal tabs are preserved because the table and grouped-block
    extractors use them as column boundaries.
    """
    lines: list[str] = []
    for line in re.split(r"\r?\n", raw or ""):
        line = line.replace("\u00a0", " ").strip()
        if line:
            lines.append(line)
    return lines


def parse_number(raw: str | None) -> float | None:
    if not raw:
        return None
    s = raw.replace(",", "").strip()
    if not s or not NUMBER.match(s):
        return None
    value = float(s)
    return value if math.isfinite(value) else None


def normalize_date(raw: str | None) -> str | None:
    """Return ``YYYY-MM-DD`` for a real calendar date token, else None."""
    token = (raw or "").strip()
    m = DATE_TOKEN.match(token)
    if not m:
        return None
    year, month, day = (int(part) for part in m.groups())
    if not year or not month or not day:
        return None
    try:
        parsed = date(year, month, day)
    except ValueError:
        # Feb 30, month 13 and friends
        return None
    return parsed.isoformat()


def parse_range(text: str | None) -> RefRange:
    m = RANGE_PATTERN.search(text or "")
    if not m:
        return EMPTY_RANGE
    return RefRange(parse_number(m.group(1)), parse_number(m.group(2)))


def normalize_flag_glyphs(raw: str) -> str:
    return raw.replace("▲", "H").replace("↑", "H").replace("▼", "L").replace("↓", "L").strip()


def parse_value_token(raw: str | None) -> ValueToken:
    """Tokenize a result cell into numeric/text value and an H/L flag.

    ``"12.5▼"`` -> (12.5, None, "L"), ``"Negative"`` -> (None, "Negative", None),
    ``"-"`` -> empty, ``"2+H"`` -> (None, "2+", "H"). A trailing H/L glued to
    a letter belongs to the word, so text results such as "Normal" or "Nil"
    keep their spelling.
    """
    token = normalize_flag_glyphs(raw or "")
    if not token or token in {"-", "--"}:
        return EMPTY_VALUE

    m = FLAG_SUFFIX.match(token)
    if m:
        rest = m.group("rest").strip()
        flag: Flag = "H" if m.group("flag").upper() == "H" else "L"
        numeric = parse_number(rest)
        if numeric is not None:
            return ValueToken(numeric, None, flag)
        if not rest or rest in {"-", "--"}:
            # A bare "H" or "L" carries a direction but no result
            return EMPTY_VALUE
        if m.group("gap") or not rest[-1].isalpha():
            return ValueToken(None, rest, flag)

    numeric = parse_number(token)
    if numeric is not None:
        return ValueToken(numeric, None, None)
    return ValueToken(None, token, None)


def split_localized_name(raw_name: str) -> LocalizedName:
    """Split "Hemoglobin(혈색소)" style names into Korean and English parts."""
    compact = WHITESPACE.sub(" ", raw_name or "").strip()
    chunks = [c.strip() for c in NAME_SEPARATORS.split(compact) if c.strip()]
    ko_parts = [c for c in chunks if HANGUL.search(c)]
    en_parts = [c for c in chunks if LATIN.search(c)]
    return LocalizedName(
        test_name_raw=compact,
        test_name_ko=" ".join(ko_parts) if ko_parts else None,
        test_name_en=" ".join(en_parts) if en_parts else (compact or "Unknown Test"),
    )


def split_columns(line: str) -> list[str]:
    # Tabs win over pipes, pipes over runs of 2+ spaces
    if "\t" in line:
        return [cell.strip() for cell in line.split("\t")]
    if "|" in line:
        return [cell.strip() for cell in line.split("|")]
    return [cell.strip() for cell in WIDE_GAP.split(line)]


def is_unit_shaped(token: str) -> bool:
    return bool(UNIT_PATTERN.match(token))


def infer_unit(tokens: list[str]) -> str | None:
    """First token that looks like a compound unit ("mg/dL", "%", "x10^3/uL")."""
    for token in tokens:
        if is_unit_shaped(token) and any(ch in token for ch in "/%^"):
            return token
    return None


def normalize_unit_token(raw: str) -> str:
    return raw.replace("(", "").replace(")", "").strip()


def is_likely_unit_line(raw: str) -> bool:
    token = normalize_unit_token(raw)
    if not token:
        return False
    if normalize_date(token) is not None:
        return False
    if not parse_range(token).is_empty:
        return False
    value = parse_value_token(token)
    if value.value_numeric is not None:
        return False
    return bool(UNIT_CHAR.search(token))


def category_from_text(raw: str | None) -> Category | None:
    line = (raw or "").lower()
    for category, keywords in _CATEGORY_KEYWORDS:
        if any(k in line for k in keywords):
            return category  # type: ignore[return-value]
    return None


def detect_category(lines: list[str]) -> Category | None:
    for line in lines:
        matched = category_from_text(line)
        if matched:
            return matched
    return None
