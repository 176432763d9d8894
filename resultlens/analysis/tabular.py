"""
Cell normalization and the header/row contract.

Gradesheet cells arrive as strings, numbers, None or NaN. The helpers here
turn them into the few values the analysis needs (semester number, result
outcome, backlog count, SPI/CPI) and never reject a cell: malformed input
becomes a neutral default.

`rows_from_frame` and `load_gradesheet` hand a pandas DataFrame over as
(headers, rows), the shape every analysis function consumes.
"""

from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Union

import pandas as pd

from resultlens.analysis.column_resolver import normalize_header
from resultlens.analysis.policy import (
    DEFAULT_POLICY,
    FAIL_GRADES,
    FAIL_KEYWORDS,
    INDEX_SCALE_MAX,
    MAX_SEMESTER,
    MIN_SEMESTER,
    PASS_KEYWORDS,
    AnalysisPolicy,
)

logger = logging.getLogger(__name__)

Headers = list[str]
Row = list
Rows = list[Row]

RESULT_PASS = "pass"
RESULT_FAIL = "fail"
RESULT_UNKNOWN = "unknown"

_DIGITS_RE = re.compile(r"\d+")


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


@dataclass
class GradesheetError(Exception):
    """Raised when a gradesheet file cannot be handed to the analysis."""
    reason: str
    affected_file: str
    fix_steps: list[str] = field(default_factory=list)

    def __str__(self) -> str:
        lines = [
            "═" * 60,
            "RESULTLENS LOAD HALT",
            "═" * 60,
            f"Reason          : {self.reason}",
            f"Affected File   : {self.affected_file}",
        ]
        if self.fix_steps:
            lines.append("Fix Steps:")
            for i, step in enumerate(self.fix_steps, 1):
                lines.append(f"  {i}. {step}")
        lines.append("═" * 60)
        return "\n".join(lines)


# ---------------------------------------------------------------------------
# Cell helpers
# ---------------------------------------------------------------------------


def is_blank(value) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip() == ""
    try:
        return bool(pd.isna(value))
    except (TypeError, ValueError):
        return False


def cell_text(value) -> str:
    """Trimmed text of a cell. Integral floats lose their '.0' (3.0 -> '3')."""
    if is_blank(value):
        return ""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value).strip()


def cell_at(row: Row, index: int):
    """Cell at `index`, or None when the column is unresolved or the row is short."""
    if index < 0 or row is None or index >= len(row):
        return None
    return row[index]


def parse_semester(value) -> Optional[int]:
    """First run of digits in the cell, if it falls in 1..8."""
    match = _DIGITS_RE.search(cell_text(value))
    if match is None:
        return None
    semester = int(match.group(0))
    if MIN_SEMESTER <= semester <= MAX_SEMESTER:
        return semester
    return None


def parse_number(value) -> Optional[float]:
    if is_blank(value) or isinstance(value, bool):
        return None
    try:
        number = float(value) if isinstance(value, (int, float)) else float(str(value).strip())
    except (ValueError, OverflowError):
        return None
    return number if math.isfinite(number) else None


def backlog_value(value) -> float:
    """Backlog count of a cell; non-numeric or empty reads as 0."""
    number = parse_number(value)
    return number if number is not None else 0.0


def parse_index(value) -> Optional[float]:
    """SPI/CPI/CGPA on the 0-10 scale. Out-of-range values are ignored."""
    number = parse_number(value)
    if number is None or not 0.0 <= number <= INDEX_SCALE_MAX:
        return None
    return number


def classify_result(value, policy: AnalysisPolicy = DEFAULT_POLICY) -> str:
    """
    Read a free-text result cell as "pass", "fail" or "unknown".

    Fail keywords are checked first so "unsuccessful" or "pass - kt" read
    as fail. A cell with no known keyword follows
    `policy.unknown_result_policy`.
    """
    words = normalize_header(cell_text(value)).split()
    if any(word in FAIL_KEYWORDS for word in words):
        return RESULT_FAIL
    if any(word in PASS_KEYWORDS for word in words):
        return RESULT_PASS
    return policy.unknown_result_policy


def is_fail_grade(value) -> bool:
    return cell_text(value).upper() in FAIL_GRADES


# ---------------------------------------------------------------------------
# DataFrame hand-off
# ---------------------------------------------------------------------------


def rows_from_frame(df: pd.DataFrame) -> tuple[Headers, Rows]:
    """Convert a DataFrame to (headers, rows). NaN cells become None."""
    headers = [str(col) for col in df.columns]
    cleaned = df.astype(object).where(df.notna(), None)
    return headers, cleaned.values.tolist()


def load_gradesheet(
    path: Union[str, Path],
    sheet_name: Union[str, int] = 0,
) -> tuple[Headers, Rows]:
    """
    Read a CSV or Excel gradesheet into (headers, rows).

    Raises
    ------
    GradesheetError
        If the file is missing, has an unsupported extension, or pandas
        cannot parse it.
    """
    path = Path(path)
    if not path.exists():
        raise GradesheetError(
            reason="Gradesheet file not found",
            affected_file=str(path),
            fix_steps=[
                f"Verify the path is correct: {path}",
                "Export the gradesheet before running the analysis.",
            ],
        )

    suffix = path.suffix.lower()
    try:
        if suffix == ".csv":
            df = pd.read_csv(path, dtype=str)
        elif suffix in (".xlsx", ".xlsm"):
            df = pd.read_excel(path, dtype=str, sheet_name=sheet_name)
        else:
            raise GradesheetError(
                reason=f"Unsupported file type '{suffix or '(none)'}'",
                affected_file=str(path),
                fix_steps=["Save the gradesheet as .csv or .xlsx."],
            )
    except GradesheetError:
        raise
    except Exception as e:
        raise GradesheetError(
            reason="Gradesheet file is not parseable",
            affected_file=str(path),
            fix_steps=[
                "Verify the file opens in a spreadsheet application.",
                f"Parse error: {e}",
            ],
        ) from e

    headers, rows = rows_from_frame(df)
    logger.info("[tabular] %s: %d rows, %d columns", path.name, len(rows), len(headers))
    return headers, rows
