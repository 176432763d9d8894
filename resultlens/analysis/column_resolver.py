"""
resultlens Column Resolver

Locates semantic columns (student key, semester, result, backlog, ...) in
a gradesheet whose headers are free-form and inconsistently named across
exports ("Sem", "SEMESTER", "Sem No" and "semno" are all the semester).

RULES:
- Every lookup happens at read time. Nothing here is cached as a schema.
- Headers are normalized before comparison: lowercase, trimmed, runs of
  punctuation / underscores / whitespace collapsed to a single space.
- Each role is a list of tiers, tried in order. Within a tier the first
  header (left to right) that matches wins.
- A role that cannot be resolved returns -1. Callers treat -1 as
  "feature unavailable" and degrade. Nothing here raises on header input.

Public API:
  normalize_header(raw) -> str
  resolve_column(headers, role) -> int
  resolve_columns(headers) -> dict[str, int]
  find_subject_columns(headers) -> list[SubjectColumn]
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Optional, Sequence

logger = logging.getLogger(__name__)

_COLLAPSE_RE = re.compile(r"[\W_]+")


def normalize_header(raw) -> str:
    """Lowercase, trim, collapse punctuation/whitespace runs to one space."""
    if raw is None:
        return ""
    return _COLLAPSE_RE.sub(" ", str(raw).lower()).strip()


# ---------------------------------------------------------------------------
# Role table
# ---------------------------------------------------------------------------
# Names are written already normalized. `contains` means every listed
# substring must be present; `excludes` vetoes the header for that tier.


@dataclass(frozen=True)
class MatchTier:
    names: frozenset[str] = frozenset()
    prefixes: tuple[str, ...] = ()
    contains: tuple[str, ...] = ()
    excludes: tuple[str, ...] = ()
    patterns: tuple[str, ...] = ()

    def matches(self, normalized: str) -> bool:
        if not normalized:
            return False
        if any(token in normalized for token in self.excludes):
            return False
        if normalized in self.names:
            return True
        if any(normalized.startswith(prefix) for prefix in self.prefixes):
            return True
        if self.contains and all(token in normalized for token in self.contains):
            return True
        return any(re.fullmatch(p, normalized) for p in self.patterns)


# Subject grade headers: SUB1GR / 3110005GR, Subject Grade, Sub 1 Grade, Maths Grade.
_CODE_GR_PATTERN = r"(?P<code>[a-z]*\d+) ?gr"
_SUBJECT_GRADE_PATTERN = r"(?P<code>subject) grade"
_SUB_N_GRADE_PATTERN = r"(?P<code>sub ?\d+) grade"
# Overall/final grade columns are not subjects.
_AGGREGATE_GRADE_WORDS = ("final", "overall", "letter", "total", "average", "avg", "cumulative")
_WORD_GRADE_PATTERN = r"(?P<code>(?!(?:%s) )\w+) grade" % "|".join(_AGGREGATE_GRADE_WORDS)

_MAP_NUMBER_NAMES = frozenset({
    "mapno",
    "map no",
    "map num",
    "map number",
    "mapnumber",
})

_STUDENT_ID_NAMES = frozenset({
    "student id",
    "studentid",
    "st id",
    "std id",
    "id",
    "enrollment",
    "enrollment no",
    "enrollmentno",
    "enroll no",
    "enrolment no",
})

ROLE_TABLE: dict[str, tuple[MatchTier, ...]] = {
    "student_key": (
        MatchTier(names=_MAP_NUMBER_NAMES),
        MatchTier(names=_STUDENT_ID_NAMES),
    ),
    "student_id": (
        MatchTier(names=_STUDENT_ID_NAMES),
    ),
    "student_name": (
        MatchTier(names=frozenset({
            "name",
            "student name",
            "studentname",
            "student",
            "full name",
        })),
    ),
    "semester": (
        MatchTier(
            names=frozenset({
                "sem",
                "semester",
                "sem no",
                "semester no",
                "sem number",
                "semester number",
                "semno",
                "semesterno",
            }),
            prefixes=("sem",),
        ),
        MatchTier(names=frozenset({"exam", "exam name", "exam title"})),
    ),
    "result": (
        MatchTier(
            names=frozenset({"result", "result status", "status"}),
            contains=("result",),
        ),
    ),
    "backlog": (
        MatchTier(names=frozenset({
            "curr bck",
            "current bck",
            "current backlog",
            "backlog",
            "backlogs",
            "backlog current",
            "no of backlogs",
            "no backlogs",
            "bck",
            "bck curr",
        })),
    ),
    "branch": (
        MatchTier(names=frozenset({
            "br name",
            "branch",
            "branch name",
            "brname",
            "dept",
            "department",
            "program",
        })),
    ),
    "spi": (MatchTier(names=frozenset({"spi"})),),
    "cpi": (MatchTier(names=frozenset({"cpi"})),),
    "cgpa": (MatchTier(names=frozenset({"cgpa"})),),
    "academic_year": (
        MatchTier(names=frozenset({
            "academic year",
            "academicyear",
            "acad year",
            "academic yr",
            "ay",
            "year",
        })),
    ),
    "subject_grade": (
        MatchTier(patterns=(
            _CODE_GR_PATTERN,
            _SUBJECT_GRADE_PATTERN,
            _SUB_N_GRADE_PATTERN,
            _WORD_GRADE_PATTERN,
        )),
    ),
    "subject": (
        MatchTier(contains=("subject",), excludes=("grade",)),
        MatchTier(names=frozenset({"sub code", "subject code", "sub name", "subject name"})),
    ),
    "source_file": (
        MatchTier(names=frozenset({"source file", "filename", "file name"})),
        MatchTier(contains=("source", "file")),
    ),
}

ROLES: frozenset[str] = frozenset(ROLE_TABLE)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def resolve_column(headers: Optional[Sequence], role: str) -> int:
    """
    Return the index of the first header that plays `role`, or -1.

    Raises
    ------
    ValueError
        If `role` is not a known role name. Header content never raises.
    """
    if role not in ROLE_TABLE:
        raise ValueError(f"Unknown column role '{role}'. Valid roles: {sorted(ROLES)}")
    if not headers:
        return -1

    normalized = [normalize_header(h) for h in headers]
    for tier in ROLE_TABLE[role]:
        for index, header in enumerate(normalized):
            if tier.matches(header):
                logger.debug("[column_resolver] %s -> %r (index %d)", role, headers[index], index)
                return index
    return -1


def resolve_columns(headers: Optional[Sequence]) -> dict[str, int]:
    """Resolve every known role at once. Unresolved roles map to -1."""
    resolved = {role: resolve_column(headers, role) for role in sorted(ROLES)}
    found = {role: idx for role, idx in resolved.items() if idx != -1}
    logger.info(
        "[column_resolver] resolved %d/%d roles: %s",
        len(found), len(ROLES),
        ", ".join(f"{role}={headers[idx]!r}" for role, idx in found.items()) or "none",
    )
    return resolved


@dataclass(frozen=True)
class SubjectColumn:
    """A subject grade column and, when present, its paired name column."""
    code: str
    grade_index: int
    name_index: int = -1


# (grade pattern, name-header templates tried in order)
_SUBJECT_PAIRINGS: list[tuple[str, tuple[str, ...]]] = [
    (_CODE_GR_PATTERN, ("{code}na", "{code} na", "{code}name", "{code} name")),
    (_SUBJECT_GRADE_PATTERN, ("subject name",)),
    (_SUB_N_GRADE_PATTERN, ("{code} name",)),
    (_WORD_GRADE_PATTERN, ("{code} name",)),
]


def find_subject_columns(headers: Optional[Sequence]) -> list[SubjectColumn]:
    """
    Return every subject grade column, in header order.

    Each header is claimed by the first pairing pattern it matches. The
    subject code is the upper-cased captured code (e.g. "SUB1", "MATHS").
    """
    if not headers:
        return []

    normalized = [normalize_header(h) for h in headers]
    columns: list[SubjectColumn] = []
    for index, header in enumerate(normalized):
        if not header:
            continue
        for pattern, name_templates in _SUBJECT_PAIRINGS:
            match = re.fullmatch(pattern, header)
            if match is None:
                continue
            code = match.group("code")
            name_index = -1
            for template in name_templates:
                candidate = template.format(code=code)
                if candidate in normalized:
                    name_index = normalized.index(candidate)
                    break
            columns.append(SubjectColumn(
                code=code.upper(),
                grade_index=index,
                name_index=name_index,
            ))
            break
    return columns
