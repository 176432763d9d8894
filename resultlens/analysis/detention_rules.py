"""
GTU detention rules (AY 2018-19 onwards).

Detention is decided on entry to a semester: a student entering semester N
must already have cleared the semesters listed for N. There is no rule
before semester 5.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional, Sequence

RISK_HIGH = "high"
RISK_MEDIUM = "medium"
RISK_LOW = "low"

RISK_ORDER: dict[str, int] = {RISK_HIGH: 3, RISK_MEDIUM: 2, RISK_LOW: 1}

FIRST_DETENTION_SEMESTER = 5


@dataclass(frozen=True)
class DetentionRule:
    target_semester: int
    required_semesters: tuple[int, ...]
    description: str
    detained_if: str


@dataclass(frozen=True)
class DetentionCheck:
    is_detained: bool
    reason: str
    required_semesters: tuple[int, ...]


def _rule(target: int, required: tuple[int, ...]) -> DetentionRule:
    if not required:
        return DetentionRule(target, (), "No detention rule", "N/A - No detention rule")
    listed = " & ".join(f"Sem {s}" for s in required)
    either = " or ".join(f"Sem {s}" for s in required)
    return DetentionRule(
        target_semester=target,
        required_semesters=required,
        description=f"MUST pass {listed}",
        detained_if=f"If {either} not cleared → DETAINED",
    )


GTU_DETENTION_RULES: dict[int, DetentionRule] = {
    2: _rule(2, ()),
    3: _rule(3, ()),
    4: _rule(4, ()),
    5: _rule(5, (1, 2)),
    6: _rule(6, (3, 4)),
    7: _rule(7, (5,)),
    8: _rule(8, (5, 6)),
    9: _rule(9, (7,)),
    10: _rule(10, (7, 8)),
}


def should_student_be_detained(
    current_semester: int,
    cleared_semesters: Iterable[int],
) -> DetentionCheck:
    """Check the rule for entering `current_semester` against the cleared set."""
    if current_semester < FIRST_DETENTION_SEMESTER:
        return DetentionCheck(False, "No detention rule for this semester transition", ())

    rule = GTU_DETENTION_RULES.get(current_semester)
    if rule is None:
        return DetentionCheck(False, "No detention rule defined for this semester", ())

    cleared = set(cleared_semesters)
    missing = [s for s in rule.required_semesters if s not in cleared]
    if missing:
        return DetentionCheck(
            True,
            "Detained because required semesters are not cleared: "
            + ", ".join(str(s) for s in missing),
            rule.required_semesters,
        )
    return DetentionCheck(False, "All required semesters cleared", rule.required_semesters)


def get_detention_rule_for_semester(semester: int) -> Optional[DetentionRule]:
    return GTU_DETENTION_RULES.get(semester)


def get_all_detention_rules() -> list[DetentionRule]:
    return [GTU_DETENTION_RULES[s] for s in sorted(GTU_DETENTION_RULES)]


def assess_detention_risk(
    current_semester: int,
    cleared_semesters: Iterable[int],
    current_backlog_count: float,
    failed_core_subjects: Sequence[str] = (),
) -> str:
    """
    Risk of detention: "high", "medium" or "low".

    high   -- detained by the rule table, backlog >= 3, two or more failed
              core subjects, or backlog >= 2 from semester 7 on
    medium -- backlog == 2, exactly one failed core subject, or any
              backlog from semester 5 on
    """
    if should_student_be_detained(current_semester, cleared_semesters).is_detained:
        return RISK_HIGH

    failed_core = len(failed_core_subjects)
    if (
        current_backlog_count >= 3
        or failed_core >= 2
        or (current_semester >= 7 and current_backlog_count >= 2)
    ):
        return RISK_HIGH
    if (
        current_backlog_count == 2
        or failed_core == 1
        or (current_semester >= 5 and current_backlog_count >= 1)
    ):
        return RISK_MEDIUM
    return RISK_LOW


def get_detention_statistics(rules: Optional[Sequence[DetentionRule]] = None) -> dict:
    rules = get_all_detention_rules() if rules is None else list(rules)
    return {
        "total_rules": len(rules),
        "no_detention_rules": sum(1 for r in rules if not r.required_semesters),
        "detention_rules": sum(1 for r in rules if r.required_semesters),
        "detention_starts_from_semester": FIRST_DETENTION_SEMESTER,
        "summary": (
            "Detention happens when mandatory earlier-semester subjects are "
            "not cleared before entering the next semester"
        ),
    }


def validate_detention_rules(
    rules: Optional[dict[int, DetentionRule]] = None,
) -> tuple[bool, list[str]]:
    """Every target 2..10 must be defined and only require earlier semesters in 1..10."""
    rules = GTU_DETENTION_RULES if rules is None else rules
    errors: list[str] = []

    for semester in range(2, 11):
        if semester not in rules:
            errors.append(f"Missing detention rule for semester {semester}")

    for semester, rule in sorted(rules.items()):
        for required in rule.required_semesters:
            if required >= semester:
                errors.append(
                    f"Invalid rule: Semester {semester} cannot require semester {required}"
                )
            if required < 1 or required > 10:
                errors.append(
                    f"Invalid required semester {required} in rule for semester {semester}"
                )

    return not errors, errors
