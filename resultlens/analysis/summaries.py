"""
Subject grade and branch result summaries.

Both are plain tallies over rows; neither looks at students across
semesters (see detention.py for that).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional

import numpy as np
import pandas as pd

from resultlens.analysis.column_resolver import find_subject_columns, resolve_column
from resultlens.analysis.policy import (
    AVERAGE_GRADE_THRESHOLDS,
    GRADE_POINTS,
    AnalysisPolicy,
)
from resultlens.analysis.tabular import (
    RESULT_FAIL,
    RESULT_PASS,
    Headers,
    Rows,
    cell_at,
    cell_text,
    classify_result,
    is_fail_grade,
    parse_index,
)

logger = logging.getLogger(__name__)

UNKNOWN_BRANCH = "Unknown"

# Results with no pass/fail keyword are counted as neither.
_TALLY_POLICY = AnalysisPolicy(unknown_result_policy="unknown")


@dataclass
class SubjectStats:
    code: str
    name: str
    total: int
    passed: int
    failed: int
    pass_rate: float
    grade_counts: dict[str, int] = field(default_factory=dict)
    average_grade: Optional[str] = None


def average_grade_letter(points: float) -> str:
    for minimum, letter in AVERAGE_GRADE_THRESHOLDS:
        if points >= minimum:
            return letter
    return AVERAGE_GRADE_THRESHOLDS[-1][1]


def subject_grade_summary(rows: Rows, headers: Headers) -> dict[str, SubjectStats]:
    """
    Per-subject grade tallies keyed by subject code.

    Only rows with a grade in the subject's column count. The subject name
    is the first non-empty cell of its name column, else the code.
    """
    rows = rows or []
    summary: dict[str, SubjectStats] = {}
    for column in find_subject_columns(headers):
        if column.code in summary:
            continue
        names = (cell_text(cell_at(row, column.name_index)) for row in rows)
        name = next((n for n in names if n), column.code)

        grades = pd.Series(
            [cell_text(cell_at(row, column.grade_index)).upper() for row in rows],
            dtype=object,
        )
        grades = grades[grades != ""]
        total = int(len(grades))
        failed = int(grades.map(is_fail_grade).sum()) if total else 0
        points = grades.map(GRADE_POINTS).dropna()

        summary[column.code] = SubjectStats(
            code=column.code,
            name=name,
            total=total,
            passed=total - failed,
            failed=failed,
            pass_rate=((total - failed) / total * 100) if total else 0.0,
            grade_counts={str(k): int(v) for k, v in grades.value_counts().sort_index().items()},
            average_grade=average_grade_letter(float(points.mean())) if len(points) else None,
        )
    logger.info("[summaries] %d subject grade columns summarised", len(summary))
    return summary


def branch_summary(
    rows: Rows,
    headers: Headers,
    policy: Optional[AnalysisPolicy] = None,
) -> dict[str, dict]:
    """
    Per-branch pass/fail tallies and average SPI/CPI/CGPA.

    Averages only use values above 0 and are None when a branch has none.
    Returns {} without a branch or result column.
    """
    policy = policy or _TALLY_POLICY
    branch_idx = resolve_column(headers, "branch")
    result_idx = resolve_column(headers, "result")
    if branch_idx == -1 or result_idx == -1 or not rows:
        return {}
    spi_idx = resolve_column(headers, "spi")
    cpi_idx = resolve_column(headers, "cpi")
    cgpa_idx = resolve_column(headers, "cgpa")

    def _positive(value) -> float:
        number = parse_index(value)
        return number if number is not None and number > 0 else np.nan

    records = []
    for row in rows:
        outcome = classify_result(cell_at(row, result_idx), policy)
        records.append({
            "branch": cell_text(cell_at(row, branch_idx)) or UNKNOWN_BRANCH,
            "passed": outcome == RESULT_PASS,
            "failed": outcome == RESULT_FAIL,
            "spi": _positive(cell_at(row, spi_idx)),
            "cpi": _positive(cell_at(row, cpi_idx)),
            "cgpa": _positive(cell_at(row, cgpa_idx)),
        })

    grouped = pd.DataFrame(records).groupby("branch", sort=True).agg(
        total=("branch", "size"),
        passed=("passed", "sum"),
        failed=("failed", "sum"),
        avg_spi=("spi", "mean"),
        avg_cpi=("cpi", "mean"),
        avg_cgpa=("cgpa", "mean"),
    )

    def _mean(value) -> Optional[float]:
        return None if pd.isna(value) else round(float(value), 2)

    return {
        str(branch): {
            "total": int(row["total"]),
            "passed": int(row["passed"]),
            "failed": int(row["failed"]),
            "percentage": int(row["passed"]) / int(row["total"]) * 100,
            "avg_spi": _mean(row["avg_spi"]),
            "avg_cpi": _mean(row["avg_cpi"]),
            "avg_cgpa": _mean(row["avg_cgpa"]),
        }
        for branch, row in grouped.iterrows()
    }
