"""
Pure analysis over (headers, rows) gradesheet data.

Nothing in this package performs I/O except tabular.load_gradesheet.
"""

from resultlens.analysis.column_resolver import find_subject_columns, resolve_column, resolve_columns
from resultlens.analysis.detention import (
    DetentionFilter,
    analyze_detention_data,
    generate_detention_report,
    get_at_risk_students,
    get_detained_students_list,
)
from resultlens.analysis.detention_rules import assess_detention_risk, should_student_be_detained
from resultlens.analysis.policy import AnalysisPolicy
from resultlens.analysis.progression import (
    filter_by_grade_range,
    filter_by_year,
    qualified_count,
    semesters_for_year,
)

__all__ = [
    "AnalysisPolicy",
    "DetentionFilter",
    "analyze_detention_data",
    "assess_detention_risk",
    "filter_by_grade_range",
    "filter_by_year",
    "find_subject_columns",
    "generate_detention_report",
    "get_at_risk_students",
    "get_detained_students_list",
    "qualified_count",
    "resolve_column",
    "resolve_columns",
    "semesters_for_year",
    "should_student_be_detained",
]
