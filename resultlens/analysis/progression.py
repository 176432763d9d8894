"""
Year progression eligibility.

A student qualifies for an academic year when at least one of the year's
two semesters is on record for them and every recorded row for those
semesters is clean (result reads as pass and backlog is exactly 0).
Semesters with no row at all are given the benefit of the doubt.

`filter_by_grade_range` narrows the year's rows further by SPI/CPI/CGPA
bounds and tallies pass/fail inside and outside the range.

Filtering never mutates or copies rows: output lists hold the original
row objects, in input order.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Mapping, Optional, Union

import pandas as pd

from resultlens.analysis.column_resolver import resolve_column
from resultlens.analysis.policy import (
    DEFAULT_POLICY,
    INDEX_SCALE_MAX,
    YEAR_SEMESTERS,
    AnalysisPolicy,
)
from resultlens.analysis.tabular import (
    RESULT_PASS,
    Headers,
    Rows,
    backlog_value,
    cell_at,
    cell_text,
    classify_result,
    parse_index,
    parse_semester,
)

logger = logging.getLogger(__name__)

YearArg = Union[int, str, None]

INSIGHT_TOP_N = 5

GRADE_INDICES = ("spi", "cpi", "cgpa")


def _coerce_year(year: YearArg) -> Optional[int]:
    """None / "all" mean no year filter. Anything else must be 1..4."""
    if year is None:
        return None
    if isinstance(year, str):
        text = year.strip().lower()
        if text in ("", "all"):
            return None
        if not text.isdigit():
            raise ValueError(f"Year must be 1-4 or 'all', got '{year}'")
        year = int(text)
    if isinstance(year, bool) or year not in YEAR_SEMESTERS:
        raise ValueError(f"Year must be 1-4 or 'all', got '{year}'")
    return year


def semesters_for_year(year: int) -> tuple[int, int]:
    """Academic year Y covers semesters (2Y-1, 2Y)."""
    coerced = _coerce_year(year)
    if coerced is None:
        raise ValueError("semesters_for_year needs a concrete year 1-4")
    return YEAR_SEMESTERS[coerced]


def year_label(year: YearArg) -> str:
    coerced = _coerce_year(year)
    if coerced is None:
        return ""
    first, second = YEAR_SEMESTERS[coerced]
    return f"Sem {first}–{second}"


def _qualifying_students(
    rows: Rows,
    key_idx: int,
    sem_idx: int,
    result_idx: int,
    backlog_idx: int,
    target: tuple[int, ...],
    policy: AnalysisPolicy,
) -> set[str]:
    # student -> semester -> clean? (False sticks once any row is unclean)
    clean_by_student: dict[str, dict[int, bool]] = {}
    for row in rows:
        key = cell_text(cell_at(row, key_idx))
        if not key:
            continue
        semesters = clean_by_student.setdefault(key, {})
        semester = parse_semester(cell_at(row, sem_idx))
        if semester is None or semester not in target:
            continue
        passed = classify_result(cell_at(row, result_idx), policy) == RESULT_PASS
        backlog = backlog_value(cell_at(row, backlog_idx))
        row_clean = passed and backlog == 0
        semesters[semester] = semesters.get(semester, True) and row_clean

    return {
        key
        for key, semesters in clean_by_student.items()
        if semesters and all(semesters.values())
    }


def filter_by_year(
    rows: Rows,
    headers: Headers,
    year: YearArg,
    policy: Optional[AnalysisPolicy] = None,
) -> Rows:
    """
    Restrict `rows` to qualifying students' rows in the year's semesters.

    Without a student key, semester or result column the filter is a
    no-op and a new list with every input row is returned.

    Raises
    ------
    ValueError
        If `year` is not 1-4, "all" or None.
    """
    coerced = _coerce_year(year)
    rows = list(rows or [])
    if coerced is None:
        return rows

    policy = policy or DEFAULT_POLICY
    key_idx = resolve_column(headers, "student_key")
    sem_idx = resolve_column(headers, "semester")
    result_idx = resolve_column(headers, "result")
    backlog_idx = resolve_column(headers, "backlog")

    missing = [
        role for role, idx in (
            ("student_key", key_idx),
            ("semester", sem_idx),
            ("result", result_idx),
        ) if idx == -1
    ]
    if missing:
        logger.warning(
            "[progression] year %d filter skipped; unresolved column(s): %s",
            coerced, ", ".join(missing),
        )
        return rows

    target = YEAR_SEMESTERS[coerced]
    qualifies = _qualifying_students(
        rows, key_idx, sem_idx, result_idx, backlog_idx, target, policy,
    )
    filtered = [
        row for row in rows
        if cell_text(cell_at(row, key_idx)) in qualifies
        and parse_semester(cell_at(row, sem_idx)) in target
    ]
    logger.info(
        "[progression] year %d (%s): %d students qualify, %d of %d rows kept",
        coerced, year_label(coerced), len(qualifies), len(filtered), len(rows),
    )
    return filtered


def qualified_count(rows: Rows, headers: Headers) -> int:
    """Distinct student keys in `rows`; the row count when no key column resolves."""
    rows = rows or []
    key_idx = resolve_column(headers, "student_key")
    if key_idx == -1:
        return len(rows)
    keys = {cell_text(cell_at(row, key_idx)) for row in rows}
    keys.discard("")
    return len(keys)


# ---------------------------------------------------------------------------
# Grade range
# ---------------------------------------------------------------------------


@dataclass
class GradeRangeResult:
    rows: Rows
    total: int = 0
    passed: int = 0
    failed: int = 0
    in_range: int = 0
    passed_in_range: int = 0
    ranges: dict[str, tuple[float, float]] = field(default_factory=dict)


def _coerce_ranges(ranges: Optional[Mapping]) -> dict[str, tuple[float, float]]:
    """Fill omitted indices with the full scale and check every bound."""
    ranges = dict(ranges or {})
    unknown = sorted(set(ranges) - set(GRADE_INDICES))
    if unknown:
        raise ValueError(f"Unknown grade index {unknown}; expected one of {list(GRADE_INDICES)}")

    coerced = {}
    for name in GRADE_INDICES:
        low, high = ranges.get(name) or (0.0, INDEX_SCALE_MAX)
        low, high = float(low), float(high)
        if not 0.0 <= low <= high <= INDEX_SCALE_MAX:
            raise ValueError(
                f"{name.upper()} range must satisfy 0 <= min <= max <= {INDEX_SCALE_MAX:g}, "
                f"got ({low:g}, {high:g})"
            )
        coerced[name] = (low, high)
    return coerced


def filter_by_grade_range(
    rows: Rows,
    headers: Headers,
    ranges: Optional[Mapping] = None,
    year: YearArg = None,
    policy: Optional[AnalysisPolicy] = None,
) -> GradeRangeResult:
    """
    Keep rows whose SPI, CPI and CGPA all fall inside `ranges`.

    `ranges` maps "spi" / "cpi" / "cgpa" to inclusive (min, max) bounds on
    the 0-10 scale; omitted indices accept the full scale. The year filter
    runs first when `year` is given. A missing or unreadable index reads
    as 0, so a (0, 10) range never drops a row.

    Raises
    ------
    ValueError
        If a bound is outside 0-10, min > max, an index name is unknown,
        or `year` is invalid.
    """
    bounds = _coerce_ranges(ranges)
    policy = policy or DEFAULT_POLICY
    candidates = filter_by_year(rows, headers, year, policy=policy)

    result_idx = resolve_column(headers, "result")
    index_columns = {name: resolve_column(headers, name) for name in GRADE_INDICES}

    result = GradeRangeResult(rows=[], total=len(candidates), ranges=bounds)
    for row in candidates:
        passed = classify_result(cell_at(row, result_idx), policy) == RESULT_PASS
        if passed:
            result.passed += 1
        else:
            result.failed += 1

        in_range = True
        for name, idx in index_columns.items():
            value = parse_index(cell_at(row, idx))
            low, high = bounds[name]
            if not low <= (value if value is not None else 0.0) <= high:
                in_range = False
                break
        if in_range:
            result.rows.append(row)
            result.in_range += 1
            if passed:
                result.passed_in_range += 1

    logger.info(
        "[progression] grade range %s: %d of %d rows in range",
        ", ".join(f"{k}={lo:g}-{hi:g}" for k, (lo, hi) in bounds.items()),
        result.in_range, result.total,
    )
    return result


def year_subject_insights(
    rows: Rows,
    headers: Headers,
    year: YearArg,
) -> Optional[dict[str, list[dict]]]:
    """
    Subject-level signals for one academic year.

    Uses every row in the year's semesters (qualified or not), grouped by
    the subject column. Returns
    {"highest_backlogs": [...], "lowest_median_spi": [...]}, each a list of
    up to five {"subject", "rows", "backlog_rows", "median_spi"} dicts,
    or None without a semester or subject column.
    """
    coerced = _coerce_year(year)
    if coerced is None:
        return None
    sem_idx = resolve_column(headers, "semester")
    subject_idx = resolve_column(headers, "subject")
    if sem_idx == -1 or subject_idx == -1:
        return None
    spi_idx = resolve_column(headers, "spi")
    backlog_idx = resolve_column(headers, "backlog")
    target = YEAR_SEMESTERS[coerced]

    records = []
    for row in rows or []:
        if parse_semester(cell_at(row, sem_idx)) not in target:
            continue
        subject = cell_text(cell_at(row, subject_idx))
        if not subject:
            continue
        records.append({
            "subject": subject,
            "has_backlog": backlog_value(cell_at(row, backlog_idx)) > 0,
            "spi": parse_index(cell_at(row, spi_idx)),
        })

    if not records:
        return {"highest_backlogs": [], "lowest_median_spi": []}

    df = pd.DataFrame(records)
    df["spi"] = pd.to_numeric(df["spi"], errors="coerce")
    summary = df.groupby("subject").agg(
        rows=("subject", "size"),
        backlog_rows=("has_backlog", "sum"),
        median_spi=("spi", "median"),
    ).reset_index()
    summary["median_spi"] = summary["median_spi"].fillna(0.0)

    def _as_dicts(frame: pd.DataFrame) -> list[dict]:
        return [
            {
                "subject": row["subject"],
                "rows": int(row["rows"]),
                "backlog_rows": int(row["backlog_rows"]),
                "median_spi": float(row["median_spi"]),
            }
            for _, row in frame.head(INSIGHT_TOP_N).iterrows()
        ]

    highest = summary.sort_values(["backlog_rows", "subject"], ascending=[False, True])
    lowest = summary.sort_values(["median_spi", "subject"], ascending=[True, True])
    return {
        "highest_backlogs": _as_dicts(highest),
        "lowest_median_spi": _as_dicts(lowest),
    }
