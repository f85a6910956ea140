"""
Import service: validates pasted/CSV lab text and runs it through the parser.
"""
import csv
import io
import logging
from dataclasses import dataclass, field
from typing import List, Optional

from ..config import settings
from .parser import ParsedObservation, parse_csv_rows, parse_with_format

logger = logging.getLogger(__name__)


class ImportValidationError(ValueError):
    """User-facing rejection of an import (empty, too large, nothing parseable)."""

    def __init__(self, code: str, message: str):
        super().__init__(message)
        self.code = code
        self.message = message


def derive_flag(
    value_numeric: Optional[float],
    ref_low: Optional[float],
    ref_high: Optional[float],
    input_flag: Optional[str],
) -> Optional[str]:
    """Final H/L marker for a stored observation.

    A numeric value compared against an asserted range wins over any glyph
    parsed from the source text; the parsed flag is only kept when there is
    no range to compare with.
    """
    if value_numeric is not None:
        if ref_low is not None and value_numeric < ref_low:
            return "L"
        if ref_high is not None and value_numeric > ref_high:
            return "H"
        if ref_low is not None or ref_high is not None:
            return None
    return input_flag


@dataclass
class ImportResult:
    format: str
    rows: List[ParsedObservation]
    line_count: int = 0
    resolved_flags: List[Optional[str]] = field(default_factory=list)

    @property
    def row_count(self) -> int:
        return len(self.rows)


class ImportService:
    """Service wrapping the lab text parser with the import-level checks."""

    def __init__(self, max_bytes: Optional[int] = None, max_rows: Optional[int] = None):
        self._max_bytes = max_bytes
        self._max_rows = max_rows

    @property
    def max_bytes(self) -> int:
        return self._max_bytes or settings.import_max_bytes_or_default()

    @property
    def max_rows(self) -> int:
        return self._max_rows or settings.import_max_rows_or_default()

    def import_text(self, text: str) -> ImportResult:
        """
        Parse pasted lab report text.

        Args:
            text: Raw text copied from a hospital portal or spreadsheet

        Returns:
            ImportResult with the parsed rows and the winning extractor

        Raises:
            ImportValidationError: if the text is blank, too large or unparseable
        """
        self._check_payload(text, "붙여넣기 텍스트를 입력하세요.")

        fmt, rows = parse_with_format(text)
        if not rows:
            logger.info("Text import produced no rows")
            raise ImportValidationError(
                "no_rows",
                "파싱 가능한 데이터가 없습니다. 샘플 형식으로 다시 붙여넣어 주세요.",
            )
        return self._finish(fmt or "unknown", rows, text)

    def import_csv(self, csv_text: str) -> ImportResult:
        """Parse CSV text whose header row names the observation fields."""
        self._check_payload(csv_text, "CSV 텍스트를 입력하세요.")

        records = self._read_csv(csv_text)
        rows = parse_csv_rows(records)
        if not rows:
            logger.info("CSV import produced no rows from %d records", len(records))
            raise ImportValidationError(
                "no_rows",
                "CSV에서 저장 가능한 행을 찾지 못했습니다. "
                "필수 컬럼(test_name, observed_at, value)을 확인하세요.",
            )
        return self._finish("csv", rows, csv_text)

    def _check_payload(self, text: str, empty_message: str) -> None:
        if not text or not text.strip():
            raise ImportValidationError("empty", empty_message)

        self.check_size(len(text.encode("utf-8")))

    def check_size(self, size: int) -> None:
        """Raise too_large when a payload of ``size`` bytes exceeds the ceiling."""
        if size > self.max_bytes:
            logger.warning(f"Rejected import of {size} bytes (limit {self.max_bytes})")
            raise ImportValidationError(
                "too_large",
                f"입력 텍스트가 너무 큽니다. 최대 {self.max_bytes:,} bytes까지 허용됩니다.",
            )

    def _read_csv(self, csv_text: str) -> List[dict]:
        try:
            reader = csv.DictReader(io.StringIO(csv_text, newline=""), strict=True)
            if reader.fieldnames is None:
                return []
            reader.fieldnames = [(h or "").strip().lower() for h in reader.fieldnames]
            records = []
            for record in reader:
                # Skip blank lines and rows made only of separators
                if not any((v or "").strip() for k, v in record.items() if k is not None):
                    continue
                records.append({k: v for k, v in record.items() if k is not None})
            return records
        except csv.Error as e:
            raise ImportValidationError("csv_error", f"CSV 파싱 오류: {e}") from e

    def _finish(self, fmt: str, rows: List[ParsedObservation], text: str) -> ImportResult:
        if len(rows) > self.max_rows:
            raise ImportValidationError(
                "too_many_rows",
                f"한 번에 저장 가능한 행 수를 초과했습니다. 최대 {self.max_rows:,}건까지 허용됩니다.",
            )

        result = ImportResult(
            format=fmt,
            rows=rows,
            line_count=len(text.splitlines()),
            resolved_flags=[
                derive_flag(r.value_numeric, r.ref_low, r.ref_high, r.flag) for r in rows
            ],
        )
        logger.info(f"Parsed {result.row_count} observations ({fmt})")
        return result


# Global service instance
import_service = ImportService()
