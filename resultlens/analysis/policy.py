"""
Analysis policy and fixed vocabularies.

Every keyword list, grade table and threshold used by the progression
filter and the detention classifier lives here, so the behaviour on noisy
gradesheet input can be read (and tested) in one place.
"""

from __future__ import annotations

from dataclasses import dataclass, field

# ---------------------------------------------------------------------------
# Semester range
# ---------------------------------------------------------------------------

MIN_SEMESTER: int = 1
MAX_SEMESTER: int = 8

YEAR_SEMESTERS: dict[int, tuple[int, int]] = {
    1: (1, 2),
    2: (3, 4),
    3: (5, 6),
    4: (7, 8),
}

# ---------------------------------------------------------------------------
# Result keywords (matched against whole words of the normalized cell)
# ---------------------------------------------------------------------------

PASS_KEYWORDS: frozenset[str] = frozenset({
    "pass",
    "passed",
    "p",
    "1",
    "promoted",
    "cleared",
    "successful",
})

FAIL_KEYWORDS: frozenset[str] = frozenset({
    "fail",
    "failed",
    "f",
    "r",
    "reappear",
    "repeat",
    "unsuccessful",
    "detained",
    "detain",
    "kt",
    "drop",
    "dropped",
    "absent",
})

# ---------------------------------------------------------------------------
# Subject grades
# ---------------------------------------------------------------------------

# Literal values in a subject-grade column that mark the subject as failed.
FAIL_GRADES: frozenset[str] = frozenset({"FF", "F", "FAIL", "0"})

GRADE_POINTS: dict[str, int] = {
    "AA": 10,
    "AB": 9,
    "BB": 8,
    "BC": 7,
    "CC": 6,
    "CD": 5,
    "DD": 4,
    "FF": 0,
    "I": 0,
    "X": 0,
}

# (minimum average points, letter); first match wins.
AVERAGE_GRADE_THRESHOLDS: list[tuple[float, str]] = [
    (9.5, "AA"),
    (8.5, "AB"),
    (7.5, "BB"),
    (6.5, "BC"),
    (5.5, "CC"),
    (4.5, "CD"),
    (4.0, "DD"),
    (0.0, "FF"),
]

INDEX_SCALE_MAX: float = 10.0

# ---------------------------------------------------------------------------
# Policy
# ---------------------------------------------------------------------------

UNKNOWN_RESULT_POLICIES: frozenset[str] = frozenset({"pass", "fail", "unknown"})


@dataclass(frozen=True)
class AnalysisPolicy:
    """
    Tunable policy for ambiguous input.

    unknown_result_policy
        How a result cell matching neither keyword list is read:
        "pass" (default), "fail", or "unknown" (neither clean nor an
        explicit fail).
    core_subjects
        Subject names/codes counted as core by the risk score. Empty means
        every failed subject is core.
    """
    unknown_result_policy: str = "pass"
    core_subjects: frozenset[str] = field(default_factory=frozenset)

    def __post_init__(self) -> None:
        if self.unknown_result_policy not in UNKNOWN_RESULT_POLICIES:
            raise ValueError(
                f"unknown_result_policy must be one of "
                f"{sorted(UNKNOWN_RESULT_POLICIES)}, got '{self.unknown_result_policy}'"
            )
        object.__setattr__(
            self,
            "core_subjects",
            frozenset(s.strip().upper() for s in self.core_subjects if s and s.strip()),
        )


DEFAULT_POLICY = AnalysisPolicy()
