from __future__ import annotations

import json
import logging
import re
from dataclasses import asdict, dataclass
from typing import Callable, Iterable, Mapping

from .tokens import (
    EMPTY_RANGE,
    HANGUL,
    HEADER_HINT,
    LATIN,
    RANGE_PATTERN,
    Category,
    Flag,
    LocalizedName,
    RefRange,
    ValueToken,
    category_from_text,
    detect_category,
    infer_unit,
    is_likely_unit_line,
    is_unit_shaped,
    normalize_date,
    normalize_lines,
    normalize_unit_token,
    parse_number,
    parse_range,
    parse_value_token,
    split_columns,
    split_localized_name,
)

logger = logging.getLogger(__name__)

# Panel titles and column captions that surround grouped hospital exports
BLOCK_IGNORE = re.compile(
    r"(검사결과|검사일\s*:|검사명|한글명|정상범위|요검사|일반혈액|일반화학|응고)",
    re.IGNORECASE,
)
UNIT_COLUMN = re.compile(r"unit", re.IGNORECASE)
REF_COLUMN = re.compile(r"(참고|ref|range)", re.IGNORECASE)
LETTERS = re.compile(r"[A-Za-z가-힣]")


@dataclass
class ParsedObservation:
    test_name_raw: str
    test_name_ko: str | None
    test_name_en: str
    category_hint: Category | None
    observed_at: str
    value_numeric: float | None
    value_text: str | None
    unit: str | None
    ref_low: float | None
    ref_high: float | None
    flag: Flag | None
    raw_row: str

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class _BlockHeader:
    name: LocalizedName
    unit: str | None


def _observation(
    name: LocalizedName,
    *,
    category: Category | None,
    observed_at: str,
    value: ValueToken,
    unit: str | None,
    ref: RefRange,
    raw_row: str,
) -> ParsedObservation:
    return ParsedObservation(
        test_name_raw=name.test_name_raw,
        test_name_ko=name.test_name_ko,
        test_name_en=name.test_name_en,
        category_hint=category,
        observed_at=observed_at,
        value_numeric=value.value_numeric,
        value_text=value.value_text,
        unit=unit,
        ref_low=ref.ref_low,
        ref_high=ref.ref_high,
        flag=value.flag,
        raw_row=raw_row,
    )


# --------------------------------------------------------------------------
# Table style: a header row carrying date columns, one test per row below it
# --------------------------------------------------------------------------


def _find_header_row(rows: list[list[str]]) -> int | None:
    for i, row in enumerate(rows):
        has_keyword = any(HEADER_HINT.search(cell) for cell in row)
        has_date = any(normalize_date(cell) is not None for cell in row)
        if has_keyword and has_date:
            return i
    return None


def _first_index(cells: list[str], pattern: re.Pattern[str]) -> int | None:
    for i, cell in enumerate(cells):
        if pattern.search(cell):
            return i
    return None


def parse_table_style(
    lines: list[str], category: Category | None
) -> list[ParsedObservation]:
    rows = [split_columns(line) for line in lines]
    header_index = _find_header_row(rows)
    if header_index is None:
        return []

    header = rows[header_index]
    date_columns = [
        (i, d) for i, d in ((i, normalize_date(cell)) for i, cell in enumerate(header)) if d
    ]
    if not date_columns:
        return []

    unit_col = _first_index(header, UNIT_COLUMN)
    ref_col = _first_index(header, REF_COLUMN)

    parsed: list[ParsedObservation] = []
    for row_index in range(header_index + 1, len(rows)):
        row = rows[row_index]
        first = row[0].strip() if row else ""
        if not first or HEADER_HINT.search(first):
            continue

        name = split_localized_name(first)
        unit = (row[unit_col] or None) if unit_col is not None and unit_col < len(row) else None
        ref = (
            parse_range(row[ref_col])
            if ref_col is not None and ref_col < len(row)
            else EMPTY_RANGE
        )

        for col, observed_at in date_columns:
            if col >= len(row) or not row[col]:
                continue
            value = parse_value_token(row[col])
            if value.is_empty:
                continue
            parsed.append(
                _observation(
                    name,
                    category=category,
                    observed_at=observed_at,
                    value=value,
                    unit=unit,
                    ref=ref,
                    raw_row=lines[row_index],
                )
            )
    return parsed


# --------------------------------------------------------------------------
# Grouped blocks: header line, N date lines, N values, N units?, <=N ranges
# --------------------------------------------------------------------------


def _parse_tabbed_header(line: str) -> _BlockHeader | None:
    columns = [cell.strip() for cell in line.split("\t") if cell.strip()]
    if not columns:
        return None
    if any(normalize_date(cell) is not None for cell in columns):
        return None
    if all(HEADER_HINT.search(cell) for cell in columns):
        return None

    first = columns[0]
    second = columns[1] if len(columns) > 1 else ""
    third = columns[2] if len(columns) > 2 else ""

    name_en = first
    name_ko = second if HANGUL.search(second) else None
    # Korean-first exports put the English name in the second column
    if not LATIN.search(name_en) and LATIN.search(second):
        name_en = second
        name_ko = first if HANGUL.search(first) else name_ko

    combined = split_localized_name(f"{name_en} ({name_ko})" if name_ko else name_en)
    name = LocalizedName(
        test_name_raw=combined.test_name_raw,
        test_name_ko=name_ko,
        test_name_en=name_en.strip() or combined.test_name_en,
    )
    return _BlockHeader(name=name, unit=third if is_unit_shaped(third) else None)


def parse_block_header(line: str) -> _BlockHeader | None:
    """Return the test identity a grouped block starts with, or None."""
    trimmed = line.strip()
    if not trimmed:
        return None
    if normalize_date(trimmed) is not None:
        return None
    if BLOCK_IGNORE.search(trimmed):
        return None
    if "\t" in trimmed:
        return _parse_tabbed_header(trimmed)
    if not LETTERS.search(trimmed):
        return None

    name = split_localized_name(trimmed)
    if not name.test_name_ko and not LATIN.search(name.test_name_en):
        return None
    return _BlockHeader(name=name, unit=infer_unit(trimmed.split()))


def _consume_dates(lines: list[str], cursor: int) -> list[str]:
    dates: list[str] = []
    while cursor + len(dates) < len(lines):
        observed_at = normalize_date(lines[cursor + len(dates)])
        if not observed_at:
            break
        dates.append(observed_at)
    return dates


def _consume_values(lines: list[str], cursor: int, count: int) -> list[ValueToken] | None:
    window = lines[cursor : cursor + count]
    if len(window) < count:
        return None
    values = [parse_value_token(line) for line in window]
    # All or nothing, otherwise dates and values could drift out of step
    if any(v.is_empty for v in values):
        return None
    return values


def _consume_units(lines: list[str], cursor: int, count: int) -> list[str]:
    window = lines[cursor : cursor + count]
    if len(window) == count and all(is_likely_unit_line(line) for line in window):
        return [normalize_unit_token(line) for line in window]
    return []


def _consume_ranges(lines: list[str], cursor: int, count: int) -> list[RefRange]:
    ranges: list[RefRange] = []
    while cursor + len(ranges) < len(lines) and len(ranges) < count:
        ref = parse_range(lines[cursor + len(ranges)])
        if ref.is_empty:
            break
        ranges.append(ref)
    return ranges


def parse_grouped_block_style(
    lines: list[str], category: Category | None
) -> list[ParsedObservation]:
    parsed: list[ParsedObservation] = []
    current_category = category
    index = 0

    while index < len(lines):
        line = lines[index]
        header = parse_block_header(line)
        # Panel captions such as "일반혈액(검사일 : ...)" switch the category
        # for every block that follows, header lines included.
        line_category = category_from_text(line)
        if line_category:
            current_category = line_category
        if header is None:
            index += 1
            continue

        cursor = index + 1
        dates = _consume_dates(lines, cursor)
        if not dates:
            index += 1
            continue
        cursor += len(dates)

        count = len(dates)
        values = _consume_values(lines, cursor, count)
        if values is None:
            logger.debug("grouped block at line %d dropped: incomplete values", index)
            index += 1
            continue
        cursor += count

        units = _consume_units(lines, cursor, count)
        cursor += len(units)

        ranges = _consume_ranges(lines, cursor, count)
        cursor += len(ranges)

        raw_row = " | ".join(lines[index:cursor])
        for i, (observed_at, value) in enumerate(zip(dates, values)):
            unit = units[i] if i < len(units) else (units[0] if units else header.unit)
            ref = ranges[i] if i < len(ranges) else (ranges[0] if ranges else EMPTY_RANGE)
            parsed.append(
                _observation(
                    header.name,
                    category=current_category,
                    observed_at=observed_at,
                    value=value,
                    unit=unit,
                    ref=ref,
                    raw_row=raw_row,
                )
            )

        index = cursor

    return parsed


# --------------------------------------------------------------------------
# Inline style: "name unit range date value date value ..." on one line
# --------------------------------------------------------------------------


def parse_inline_style(
    lines: list[str], category: Category | None
) -> list[ParsedObservation]:
    parsed: list[ParsedObservation] = []

    for line in lines:
        if not line.strip() or HEADER_HINT.search(line):
            continue

        tokens = line.split()
        date_indices = [
            (i, d) for i, d in ((i, normalize_date(tok)) for i, tok in enumerate(tokens)) if d
        ]
        if not date_indices:
            continue

        meta_tokens = tokens[: date_indices[0][0]]
        meta_text = " ".join(meta_tokens)
        unit = infer_unit(meta_tokens)
        ref = parse_range(meta_text)
        base_name = RANGE_PATTERN.sub("", meta_text, count=1)
        if unit:
            base_name = base_name.replace(unit, "", 1)
        base_name = base_name.strip()
        name = split_localized_name(
            base_name or (meta_tokens[0] if meta_tokens else "Unknown Test")
        )

        for date_index, observed_at in date_indices:
            if date_index + 1 >= len(tokens):
                continue
            value = parse_value_token(tokens[date_index + 1])
            if value.is_empty:
                continue
            parsed.append(
                _observation(
                    name,
                    category=category,
                    observed_at=observed_at,
                    value=value,
                    unit=unit,
                    ref=ref,
                    raw_row=line,
                )
            )

    return parsed


# --------------------------------------------------------------------------
# Dispatcher
# --------------------------------------------------------------------------

Extractor = Callable[[list[str], "Category | None"], list[ParsedObservation]]

EXTRACTORS: tuple[tuple[str, Extractor], ...] = (
    ("table", parse_table_style),
    ("grouped_block", parse_grouped_block_style),
    ("inline", parse_inline_style),
)


def parse_with_format(raw: str) -> tuple[str | None, list[ParsedObservation]]:
    """Run the extractors in priority order and keep the first non-empty result.

    Returns the winning extractor's name alongside its rows, or
    ``(None, [])`` when nothing in the text could be parsed.
    """
    lines = normalize_lines(raw)
    if not lines:
        return None, []

    category = detect_category(lines)
    for name, extractor in EXTRACTORS:
        rows = extractor(lines, category)
        if rows:
            logger.debug("%s extractor produced %d rows", name, len(rows))
            return name, rows
        logger.debug("%s extractor produced no rows", name)
    return None, []


def parse_pasted_lab_text(raw: str) -> list[ParsedObservation]:
    return parse_with_format(raw)[1]


# --------------------------------------------------------------------------
# CSV rows (one observation per record)
# --------------------------------------------------------------------------


def _first_present(row: Mapping[str, str | None], *keys: str) -> str | None:
    for key in keys:
        value = row.get(key)
        if value is not None:
            return value
    return None


def _first_truthy(row: Mapping[str, str | None], *keys: str) -> str:
    for key in keys:
        value = row.get(key)
        if value:
            return value
    return ""


def _csv_row(row: Mapping[str, str | None]) -> ParsedObservation | None:
    merged_name = " ".join(
        part for part in (row.get("test_name_ko"), row.get("test_name_en")) if part
    ).strip()
    test_raw = row.get("test_name") or merged_name or _first_truthy(row, "test", "name")
    observed_at = normalize_date(_first_truthy(row, "observed_at", "date"))
    if not test_raw or not observed_at:
        return None

    token = parse_value_token(_first_present(row, "value", "value_numeric", "value_text") or "")
    value_numeric = token.value_numeric
    if value_numeric is None:
        value_numeric = parse_number(row.get("value_numeric"))
    value_text = token.value_text or (row.get("value_text") or "").strip() or None
    if value_numeric is None and value_text is None:
        return None
    if value_numeric is not None:
        value_text = None

    ref = parse_range(row.get("ref_range"))
    ref_low = parse_number(row.get("ref_low"))
    ref_high = parse_number(row.get("ref_high"))

    flag_input = (row.get("flag") or "").strip().upper()
    flag: Flag | None = flag_input if flag_input in ("H", "L") else token.flag  # type: ignore[assignment]

    name = split_localized_name(test_raw)
    return ParsedObservation(
        test_name_raw=name.test_name_raw,
        test_name_ko=name.test_name_ko,
        test_name_en=name.test_name_en,
        category_hint=category_from_text(
            _first_present(row, "category", "panel", "section", "group")
        ),
        observed_at=observed_at,
        value_numeric=value_numeric,
        value_text=value_text,
        unit=row.get("unit") or None,
        ref_low=ref_low if ref_low is not None else ref.ref_low,
        ref_high=ref_high if ref_high is not None else ref.ref_high,
        flag=flag,
        raw_row=json.dumps(dict(row), ensure_ascii=False),
    )


def parse_csv_rows(rows: Iterable[Mapping[str, str | None]]) -> list[ParsedObservation]:
    """Map column-per-field CSV records through the shared token utilities.

    Rows without a resolvable name, date or value are dropped silently.
    """
    parsed: list[ParsedObservation] = []
    for row in rows:
        observation = _csv_row(row)
        if observation is not None:
            parsed.append(observation)
    return parsed
