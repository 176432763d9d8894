"""
resultlens Detention Classifier

Classifies every student in a multi-semester gradesheet as detained,
at-risk or clear under the GTU rule table, then aggregates branch-wise,
semester-wise, subject-wise and year-wise detention figures.

PIPELINE:
  1. gather_evidence   rows -> {student key: StudentEvidence}
     Reads each row once, in any order, and freezes what was seen per
     student (semesters on record, cleared and failed semesters, failed
     subjects, backlog, SPI/CPI history).
  2. classify_student  StudentEvidence -> DetentionRecord
     Every semester from 1 up to the highest one on record counts as
     cleared: an unreported or unproven result is taken as a pass. The rule
     table is checked once, against that reconciled set, so detention in
     practice comes from explicit fail results.
  3. analyze_detention_data / generate_detention_report
     Filter the records and aggregate.

Missing columns never raise. A report built without a branch column
simply has an empty branch breakdown.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Optional

import pandas as pd

from resultlens.analysis.column_resolver import find_subject_columns, resolve_column
from resultlens.analysis.detention_rules import (
    RISK_HIGH,
    RISK_MEDIUM,
    RISK_ORDER,
    assess_detention_risk,
    should_student_be_detained,
)
from resultlens.analysis.policy import DEFAULT_POLICY, MIN_SEMESTER, AnalysisPolicy
from resultlens.analysis.tabular import (
    RESULT_FAIL,
    Headers,
    Rows,
    backlog_value,
    cell_at,
    cell_text,
    classify_result,
    is_blank,
    is_fail_grade,
    parse_index,
    parse_semester,
)

logger = logging.getLogger(__name__)

STATUS_DETAINED = "detained"
STATUS_AT_RISK = "at-risk"
STATUS_CLEAR = "clear"

DEFAULT_REPORT_TITLE = "Detention Analysis Report"
UNKNOWN_NAME = "Unknown"


# ---------------------------------------------------------------------------
# Dataclasses
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class StudentEvidence:
    """Everything the rows say about one student, before any judgement."""
    student_key: str
    student_name: str
    branch: str
    academic_year: str
    semesters_seen: frozenset[int]
    cleared_semesters: frozenset[int]
    failed_semesters: frozenset[int]
    failed_subjects: tuple[str, ...]
    backlog_count: int
    spi_history: tuple[float, ...] = ()
    cpi_history: tuple[float, ...] = ()
    cgpa: Optional[float] = None

    @property
    def current_semester(self) -> int:
        return max(self.semesters_seen)


@dataclass(frozen=True)
class DetentionRecord:
    student_id: str
    student_name: str
    branch: str
    current_semester: int
    detention_status: str
    detention_reasons: tuple[str, ...]
    failed_subjects: tuple[str, ...]
    cleared_semesters: tuple[int, ...]
    available_semesters: tuple[int, ...]
    risk_level: str
    backlog_count: int
    academic_year: str
    spi_history: tuple[float, ...] = ()
    cpi_history: tuple[float, ...] = ()
    cgpa: Optional[float] = None

    def as_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class DetentionFilter:
    branch: Optional[str] = None
    semester: Optional[int] = None
    academic_year: Optional[str] = None
    risk_level: Optional[str] = None
    detention_status: Optional[str] = None

    def matches(self, record: DetentionRecord) -> bool:
        if self.branch and record.branch.strip().lower() != self.branch.strip().lower():
            return False
        if self.semester and record.current_semester != self.semester:
            return False
        if self.academic_year and record.academic_year != self.academic_year:
            return False
        if self.risk_level and record.risk_level != self.risk_level:
            return False
        if self.detention_status and record.detention_status != self.detention_status:
            return False
        return True

    def describe(self) -> str:
        active = {k: v for k, v in asdict(self).items() if v}
        if not active:
            return "none"
        return ", ".join(f"{k}={v}" for k, v in active.items())


@dataclass
class DetentionAnalysis:
    total_students: int
    detained_students: int
    at_risk_students: int
    clear_students: int
    detention_rate: float
    risk_rate: float
    branch_wise: dict[str, dict] = field(default_factory=dict)
    semester_wise: dict[int, dict] = field(default_factory=dict)
    subject_wise: dict[str, dict] = field(default_factory=dict)
    detention_trends: list[dict] = field(default_factory=list)


@dataclass
class DetentionReport:
    title: str
    generated_at: str
    filters: DetentionFilter
    summary: DetentionAnalysis
    detailed_records: list[DetentionRecord]

    def as_text(self) -> str:
        s = self.summary
        lines = [
            "═" * 60,
            self.title.upper(),
            "═" * 60,
            f"Generated       : {self.generated_at}",
            f"Filters         : {self.filters.describe()}",
            "",
            "SUMMARY",
            f"  Students      : {s.total_students}",
            f"  Detained      : {s.detained_students} ({s.detention_rate:.1f}%)",
            f"  At risk       : {s.at_risk_students} ({s.risk_rate:.1f}%)",
            f"  Clear         : {s.clear_students}",
        ]

        def _breakdown(title: str, stats: dict) -> None:
            lines.extend(["", title])
            if not stats:
                lines.append("  None")
            for key, entry in stats.items():
                lines.append(
                    f"  {key}: {entry['detained']}/{entry['total']} detained "
                    f"({entry['rate']:.1f}%)"
                )

        _breakdown("BRANCH-WISE", s.branch_wise)
        _breakdown("SEMESTER-WISE", {f"Sem {k}": v for k, v in s.semester_wise.items()})
        _breakdown("SUBJECT-WISE (failed subjects)", s.subject_wise)

        lines.extend(["", "TRENDS BY ACADEMIC YEAR"])
        if not s.detention_trends:
            lines.append("  None")
        for trend in s.detention_trends:
            lines.append(
                f"  {trend['academic_year']}: {trend['detention_rate']:.1f}% "
                f"of {trend['total_students']} students"
            )

        detained = sort_detained(r for r in self.detailed_records
                                 if r.detention_status == STATUS_DETAINED)
        lines.extend(["", "DETAINED STUDENTS"])
        if not detained:
            lines.append("  None")
        for record in detained:
            lines.append(
                f"  {record.student_id} {record.student_name} "
                f"[{record.branch or '-'}, Sem {record.current_semester}]: "
                + "; ".join(record.detention_reasons)
            )
        lines.append("═" * 60)
        return "\n".join(lines)


# ---------------------------------------------------------------------------
# Stage 1: evidence
# ---------------------------------------------------------------------------


@dataclass
class _EvidenceBuilder:
    student_key: str
    latest: dict[str, tuple[int, str]] = field(default_factory=dict)
    semesters_seen: set[int] = field(default_factory=set)
    cleared: set[int] = field(default_factory=set)
    failed: set[int] = field(default_factory=set)
    failed_subjects: list[str] = field(default_factory=list)
    backlog_by_semester: dict[int, int] = field(default_factory=dict)
    spi: list[tuple[int, float]] = field(default_factory=list)
    cpi: list[tuple[int, float]] = field(default_factory=list)
    cgpa: Optional[tuple[int, float]] = None

    def keep_latest(self, name: str, semester: int, value: str) -> None:
        # The value from the highest semester wins; ties keep the first seen.
        if not value:
            return
        current = self.latest.get(name)
        if current is None or semester > current[0]:
            self.latest[name] = (semester, value)

    def freeze(self) -> StudentEvidence:
        current = max(self.semesters_seen)
        return StudentEvidence(
            student_key=self.student_key,
            student_name=self.latest.get("name", (0, UNKNOWN_NAME))[1],
            branch=self.latest.get("branch", (0, ""))[1],
            academic_year=self.latest.get("academic_year", (0, ""))[1],
            semesters_seen=frozenset(self.semesters_seen),
            cleared_semesters=frozenset(self.cleared),
            failed_semesters=frozenset(self.failed),
            failed_subjects=tuple(self.failed_subjects),
            backlog_count=self.backlog_by_semester.get(current, 0),
            spi_history=tuple(v for _, v in sorted(self.spi, key=lambda p: p[0])),
            cpi_history=tuple(v for _, v in sorted(self.cpi, key=lambda p: p[0])),
            cgpa=self.cgpa[1] if self.cgpa else None,
        )


def gather_evidence(
    rows: Rows,
    headers: Headers,
    policy: Optional[AnalysisPolicy] = None,
) -> dict[str, StudentEvidence]:
    """
    Collect per-student evidence from every usable row.

    A row is usable when its student key is non-empty and its semester
    parses to 1..8. Failed subjects come only from subject-grade columns.
    A semester is cleared by any row for it with no explicit fail result
    and no failed subject grade.
    """
    policy = policy or DEFAULT_POLICY
    key_idx = resolve_column(headers, "student_key")
    sem_idx = resolve_column(headers, "semester")
    if key_idx == -1 or sem_idx == -1:
        logger.warning(
            "[detention] no evidence gathered; student key column %s, semester column %s",
            "found" if key_idx != -1 else "missing",
            "found" if sem_idx != -1 else "missing",
        )
        return {}

    name_idx = resolve_column(headers, "student_name")
    branch_idx = resolve_column(headers, "branch")
    year_idx = resolve_column(headers, "academic_year")
    result_idx = resolve_column(headers, "result")
    backlog_idx = resolve_column(headers, "backlog")
    spi_idx = resolve_column(headers, "spi")
    cpi_idx = resolve_column(headers, "cpi")
    cgpa_idx = resolve_column(headers, "cgpa")
    subject_columns = find_subject_columns(headers)

    builders: dict[str, _EvidenceBuilder] = {}
    skipped = 0
    for row in rows or []:
        key = cell_text(cell_at(row, key_idx))
        semester = parse_semester(cell_at(row, sem_idx))
        if not key or semester is None:
            skipped += 1
            continue

        builder = builders.setdefault(key, _EvidenceBuilder(key))
        builder.semesters_seen.add(semester)
        builder.keep_latest("name", semester, cell_text(cell_at(row, name_idx)))
        builder.keep_latest("branch", semester, cell_text(cell_at(row, branch_idx)))
        builder.keep_latest("academic_year", semester, cell_text(cell_at(row, year_idx)))

        spi = parse_index(cell_at(row, spi_idx))
        if spi is not None:
            builder.spi.append((semester, spi))
        cpi = parse_index(cell_at(row, cpi_idx))
        if cpi is not None:
            builder.cpi.append((semester, cpi))
        cgpa = parse_index(cell_at(row, cgpa_idx))
        if cgpa is not None and (builder.cgpa is None or semester > builder.cgpa[0]):
            builder.cgpa = (semester, cgpa)

        failed_here = 0
        for column in subject_columns:
            if not is_fail_grade(cell_at(row, column.grade_index)):
                continue
            failed_here += 1
            subject = cell_text(cell_at(row, column.name_index)) or column.code
            if subject not in builder.failed_subjects:
                builder.failed_subjects.append(subject)

        result_cell = cell_at(row, result_idx)
        explicit_fail = (
            not is_blank(result_cell)
            and classify_result(result_cell, policy) == RESULT_FAIL
        )
        if explicit_fail:
            builder.failed.add(semester)
        if not explicit_fail and failed_here == 0:
            builder.cleared.add(semester)

        backlog = max(failed_here, int(backlog_value(cell_at(row, backlog_idx))))
        builder.backlog_by_semester[semester] = max(
            builder.backlog_by_semester.get(semester, 0), backlog,
        )

    if skipped:
        logger.info("[detention] %d rows skipped (no student key or semester)", skipped)
    return {key: builder.freeze() for key, builder in builders.items()}


# ---------------------------------------------------------------------------
# Stage 2: classification
# ---------------------------------------------------------------------------


def reconcile_cleared_semesters(evidence: StudentEvidence) -> frozenset[int]:
    """Explicitly cleared semesters plus every semester from 1 up to the current one."""
    implicit = frozenset(range(MIN_SEMESTER, evidence.current_semester + 1))
    return evidence.cleared_semesters | implicit


def _failed_core_subjects(evidence: StudentEvidence, policy: AnalysisPolicy) -> list[str]:
    if not policy.core_subjects:
        return list(evidence.failed_subjects)
    return [s for s in evidence.failed_subjects if s.strip().upper() in policy.core_subjects]


def classify_student(
    evidence: StudentEvidence,
    policy: Optional[AnalysisPolicy] = None,
) -> DetentionRecord:
    policy = policy or DEFAULT_POLICY
    current = evidence.current_semester
    cleared = reconcile_cleared_semesters(evidence)

    reasons = [f"Failed in semester {s}" for s in sorted(evidence.failed_semesters)]
    check = should_student_be_detained(current, cleared)
    if check.is_detained:
        reasons.append(check.reason)

    risk = assess_detention_risk(
        current, cleared, evidence.backlog_count,
        _failed_core_subjects(evidence, policy),
    )
    if reasons:
        status = STATUS_DETAINED
        risk = RISK_HIGH
    elif risk in (RISK_HIGH, RISK_MEDIUM):
        status = STATUS_AT_RISK
    else:
        status = STATUS_CLEAR

    return DetentionRecord(
        student_id=evidence.student_key,
        student_name=evidence.student_name,
        branch=evidence.branch,
        current_semester=current,
        detention_status=status,
        detention_reasons=tuple(reasons),
        failed_subjects=evidence.failed_subjects,
        cleared_semesters=tuple(sorted(cleared)),
        available_semesters=tuple(sorted(evidence.semesters_seen)),
        risk_level=risk,
        backlog_count=evidence.backlog_count,
        academic_year=evidence.academic_year,
        spi_history=evidence.spi_history,
        cpi_history=evidence.cpi_history,
        cgpa=evidence.cgpa,
    )


def build_student_records(
    rows: Rows,
    headers: Headers,
    policy: Optional[AnalysisPolicy] = None,
) -> list[DetentionRecord]:
    """One DetentionRecord per student, in order of first appearance."""
    policy = policy or DEFAULT_POLICY
    return [classify_student(ev, policy) for ev in gather_evidence(rows, headers, policy).values()]


def apply_filters(
    records: list[DetentionRecord],
    filters: Optional[DetentionFilter] = None,
) -> list[DetentionRecord]:
    if filters is None:
        return list(records)
    return [r for r in records if filters.matches(r)]


# ---------------------------------------------------------------------------
# Aggregation
# ---------------------------------------------------------------------------


def _rate(part: int, whole: int) -> float:
    return (part / whole * 100) if whole > 0 else 0.0


def _breakdown(frame: pd.DataFrame, key: str, cast=str) -> dict:
    """{key value: {total, detained, rate}} over `frame`, keys sorted."""
    if frame.empty:
        return {}
    grouped = frame.groupby(key, sort=True).agg(
        total=("detained", "size"),
        detained=("detained", "sum"),
    )
    return {
        cast(value): {
            "total": int(row["total"]),
            "detained": int(row["detained"]),
            "rate": _rate(int(row["detained"]), int(row["total"])),
        }
        for value, row in grouped.iterrows()
    }


def calculate_detention_analysis(records: list[DetentionRecord]) -> DetentionAnalysis:
    total = len(records)
    detained = sum(1 for r in records if r.detention_status == STATUS_DETAINED)
    at_risk = sum(1 for r in records if r.detention_status == STATUS_AT_RISK)
    clear = sum(1 for r in records if r.detention_status == STATUS_CLEAR)

    analysis = DetentionAnalysis(
        total_students=total,
        detained_students=detained,
        at_risk_students=at_risk,
        clear_students=clear,
        detention_rate=_rate(detained, total),
        risk_rate=_rate(at_risk, total),
    )
    if not records:
        return analysis

    students = pd.DataFrame([
        {
            "branch": r.branch,
            "semester": r.current_semester,
            "academic_year": r.academic_year,
            "detained": r.detention_status == STATUS_DETAINED,
        }
        for r in records
    ])
    analysis.branch_wise = _breakdown(students[students["branch"] != ""], "branch")
    analysis.semester_wise = _breakdown(students, "semester", cast=int)

    subjects = pd.DataFrame(
        [
            {"subject": subject, "detained": r.detention_status == STATUS_DETAINED}
            for r in records
            for subject in r.failed_subjects
        ],
        columns=["subject", "detained"],
    )
    analysis.subject_wise = _breakdown(subjects, "subject")

    years = _breakdown(students[students["academic_year"] != ""], "academic_year")
    analysis.detention_trends = [
        {
            "academic_year": year,
            "detention_rate": stats["rate"],
            "total_students": stats["total"],
        }
        for year, stats in years.items()
    ]
    return analysis


# ---------------------------------------------------------------------------
# Public entry points
# ---------------------------------------------------------------------------


def analyze_detention_data(
    rows: Rows,
    headers: Headers,
    filters: Optional[DetentionFilter] = None,
    policy: Optional[AnalysisPolicy] = None,
) -> DetentionAnalysis:
    records = apply_filters(build_student_records(rows, headers, policy), filters)
    analysis = calculate_detention_analysis(records)
    logger.info(
        "[detention] %d students: %d detained, %d at risk, %d clear",
        analysis.total_students, analysis.detained_students,
        analysis.at_risk_students, analysis.clear_students,
    )
    return analysis


def generate_detention_report(
    rows: Rows,
    headers: Headers,
    filters: Optional[DetentionFilter] = None,
    title: Optional[str] = None,
    policy: Optional[AnalysisPolicy] = None,
) -> DetentionReport:
    filters = filters or DetentionFilter()
    records = apply_filters(build_student_records(rows, headers, policy), filters)
    return DetentionReport(
        title=title or DEFAULT_REPORT_TITLE,
        generated_at=datetime.now().isoformat(timespec="seconds"),
        filters=filters,
        summary=calculate_detention_analysis(records),
        detailed_records=records,
    )


def sort_detained(records) -> list[DetentionRecord]:
    """Branch, then current semester, then student name."""
    return sorted(records, key=lambda r: (r.branch, r.current_semester, r.student_name))


def sort_at_risk(records) -> list[DetentionRecord]:
    """Highest risk first, then largest backlog."""
    return sorted(records, key=lambda r: (-RISK_ORDER.get(r.risk_level, 0), -r.backlog_count))


def get_detained_students_list(
    rows: Rows,
    headers: Headers,
    filters: Optional[DetentionFilter] = None,
    policy: Optional[AnalysisPolicy] = None,
) -> list[DetentionRecord]:
    records = apply_filters(build_student_records(rows, headers, policy), filters)
    return sort_detained(r for r in records if r.detention_status == STATUS_DETAINED)


def get_at_risk_students(
    rows: Rows,
    headers: Headers,
    filters: Optional[DetentionFilter] = None,
    policy: Optional[AnalysisPolicy] = None,
) -> list[DetentionRecord]:
    records = apply_filters(build_student_records(rows, headers, policy), filters)
    return sort_at_risk(r for r in records if r.detention_status == STATUS_AT_RISK)
