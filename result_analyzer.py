#!/usr/bin/env python3
"""
Result Analysis Brief - GTU VERSION
Year progression roster, detention status and result summaries
Deterministic rules-based analysis of an exported gradesheet
"""

import argparse
import hashlib
import logging
import sys
from datetime import datetime

from resultlens.analysis.detention import (
    STATUS_AT_RISK,
    STATUS_DETAINED,
    DetentionFilter,
    generate_detention_report,
    sort_at_risk,
    sort_detained,
)
from resultlens.analysis.detention_rules import get_all_detention_rules
from resultlens.analysis.policy import UNKNOWN_RESULT_POLICIES, AnalysisPolicy
from resultlens.analysis.progression import (
    filter_by_grade_range,
    filter_by_year,
    qualified_count,
    year_label,
    year_subject_insights,
)
from resultlens.analysis.summaries import branch_summary, subject_grade_summary
from resultlens.analysis.tabular import GradesheetError, load_gradesheet

# ============================================================================
# CONFIGURATION
# ============================================================================

RULE_SET = "GTU_2018"

BANNER = "═" * 75

TOP_SUBJECTS = 5
TOP_AT_RISK = 10

# ============================================================================
# POSTURE DETERMINATION
# ============================================================================

def determine_posture(summary):
    """Determine cohort posture from detention and risk rates"""

    detention_rate = summary.detention_rate
    risk_rate = summary.risk_rate

    if detention_rate >= 20 or risk_rate >= 40:
        return "ESCALATE", "Detention levels require immediate academic intervention."
    elif detention_rate >= 10 or risk_rate >= 25:
        return "INTERVENE", "Cohort under significant pressure; mentor at-risk students now."
    elif detention_rate > 0 or risk_rate >= 10:
        return "MONITOR", "Isolated detentions. Track backlog clearance closely."
    else:
        return "STABLE", "Cohort progressing within expected parameters."

# ============================================================================
# BRIEF GENERATION
# ============================================================================

def _section(title):
    return f"{BANNER}\n{title}\n{BANNER}\n\n"


def _data_hash(headers, rows):
    payload = "\n".join(
        ",".join("" if cell is None else str(cell) for cell in row)
        for row in [headers] + list(rows)
    )
    return hashlib.md5(payload.encode()).hexdigest()[:8]


def generate_result_brief(headers, rows, year=None, filters=None, policy=None, grade_ranges=None,
                          institute_name="Institute", period_name="Current Period"):
    """Generate the full result analysis brief as plain text"""

    report = generate_detention_report(rows, headers, filters=filters, policy=policy)
    summary = report.summary
    posture, interpretation = determine_posture(summary)

    # ========== HEADER ==========
    brief = f"""
{BANNER}
RESULT ANALYSIS BRIEF
{BANNER}

Institute: {institute_name}
Period: {period_name}
Rule Set: {RULE_SET}
Rows Analysed: {len(rows)}
Filters: {report.filters.describe()}
Data Hash: {_data_hash(headers, rows)}
Generated: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}

"""

    # ========== STATUS AT A GLANCE ==========
    brief += _section("DETENTION STATUS — AT A GLANCE")
    brief += f"""Decision Posture: {posture}
Interpretation: {interpretation}

Students: {summary.total_students}
  Detained: {summary.detained_students} ({summary.detention_rate:.1f}%)
  At Risk: {summary.at_risk_students} ({summary.risk_rate:.1f}%)
  Clear: {summary.clear_students}

"""

    # ========== BRANCH / SEMESTER PRESSURE ==========
    brief += _section("BRANCH-WISE DETENTION")
    if not summary.branch_wise:
        brief += "Branch column not available.\n"
    ranked = sorted(summary.branch_wise.items(), key=lambda kv: kv[1]["rate"], reverse=True)
    for branch, stats in ranked:
        variance = stats["rate"] - summary.detention_rate
        sign = "+" if variance > 0 else ""
        brief += (f"{branch}: {stats['detained']}/{stats['total']} detained, "
                  f"{stats['rate']:.1f}% ({sign}{variance:.1f}% vs cohort)\n")
    brief += "\n"

    brief += _section("SEMESTER-WISE DETENTION")
    for semester, stats in summary.semester_wise.items():
        brief += f"Sem {semester}: {stats['detained']}/{stats['total']} detained, {stats['rate']:.1f}%\n"
    brief += "\n"

    # ========== FAILED SUBJECTS ==========
    brief += _section("TOP FAILED SUBJECTS")
    subjects = sorted(summary.subject_wise.items(), key=lambda kv: (-kv[1]["total"], kv[0]))
    if not subjects:
        brief += "No failed subject grades recorded.\n"
    for subject, stats in subjects[:TOP_SUBJECTS]:
        brief += f"{subject}: failed by {stats['total']} students, {stats['detained']} of them detained\n"
    brief += "\n"

    # ========== DETAINED / AT RISK ==========
    brief += _section("DETAINED STUDENTS")
    detained = sort_detained(r for r in report.detailed_records if r.detention_status == STATUS_DETAINED)
    if not detained:
        brief += "None.\n"
    for record in detained:
        brief += (f"{record.student_id} {record.student_name} "
                  f"[{record.branch or '-'}, Sem {record.current_semester}]: "
                  f"{'; '.join(record.detention_reasons)}\n")
    brief += "\n"

    brief += _section("AT-RISK STUDENTS")
    at_risk = sort_at_risk(r for r in report.detailed_records if r.detention_status == STATUS_AT_RISK)
    if not at_risk:
        brief += "None.\n"
    for record in at_risk[:TOP_AT_RISK]:
        brief += (f"{record.student_id} {record.student_name}: {record.risk_level} risk, "
                  f"{record.backlog_count} backlog(s), Sem {record.current_semester}\n")
    if len(at_risk) > TOP_AT_RISK:
        brief += f"... and {len(at_risk) - TOP_AT_RISK} more\n"
    brief += "\n"

    # ========== YEAR QUALIFICATION ==========
    if year is not None:
        qualified_rows = filter_by_year(rows, headers, year, policy=policy)
        brief += _section(f"YEAR {year} QUALIFICATION ({year_label(year)})")
        brief += f"Qualified Students: {qualified_count(qualified_rows, headers)}\n"
        brief += f"Qualified Rows: {len(qualified_rows)}\n"
        insights = year_subject_insights(rows, headers, year)
        if insights:
            brief += "\nHighest backlog subjects:\n"
            for item in insights["highest_backlogs"]:
                brief += f"  {item['subject']}: {item['backlog_rows']} of {item['rows']} rows with backlog\n"
            brief += "Lowest median SPI subjects:\n"
            for item in insights["lowest_median_spi"]:
                brief += f"  {item['subject']}: median SPI {item['median_spi']:.2f}\n"
        brief += "\n"

    # ========== GRADE RANGE ==========
    if grade_ranges:
        in_range = filter_by_grade_range(rows, headers, grade_ranges, year=year, policy=policy)
        bounds = ", ".join(f"{k.upper()} {lo:g}-{hi:g}" for k, (lo, hi) in in_range.ranges.items())
        brief += _section("GRADE RANGE")
        brief += f"""Ranges: {bounds}
Rows Considered: {in_range.total} ({in_range.passed} passed, {in_range.failed} failed)
Rows In Range: {in_range.in_range} ({in_range.passed_in_range} passed)

"""

    # ========== RESULT SUMMARIES ==========
    brief += _section("SUBJECT GRADE SUMMARY")
    grade_summary = subject_grade_summary(rows, headers)
    if not grade_summary:
        brief += "No subject grade columns found.\n"
    for stats in grade_summary.values():
        brief += (f"{stats.code} {stats.name}: {stats.pass_rate:.1f}% pass "
                  f"({stats.failed} failed of {stats.total}), average {stats.average_grade or 'N/A'}\n")
    brief += "\n"

    brief += _section("BRANCH RESULT SUMMARY")
    branches = branch_summary(rows, headers)
    if not branches:
        brief += "Branch or result column not available.\n"
    for branch, stats in branches.items():
        spi = f"{stats['avg_spi']:.2f}" if stats["avg_spi"] is not None else "N/A"
        brief += (f"{branch}: {stats['passed']}/{stats['total']} passed "
                  f"({stats['percentage']:.1f}%), avg SPI {spi}\n")
    brief += "\n"

    # ========== RULE TABLE ==========
    brief += _section("GTU DETENTION RULES")
    for rule in get_all_detention_rules():
        brief += f"Entering Sem {rule.target_semester}: {rule.description}\n"
    brief += "\nNote: Semesters up to a student's current one count as cleared; detention follows explicit fail results.\n\n"

    brief += BANNER + "\n"

    return brief

# ============================================================================
# CLI
# ============================================================================

def build_parser():
    parser = argparse.ArgumentParser(description="GTU result analysis brief")
    parser.add_argument("gradesheet", help="CSV or Excel gradesheet")
    parser.add_argument("--sheet", default=0, help="Excel sheet name or index")
    parser.add_argument("--year", choices=["1", "2", "3", "4"], help="Academic year roster to include")
    parser.add_argument("--branch")
    parser.add_argument("--semester", type=int)
    parser.add_argument("--academic-year")
    parser.add_argument("--risk-level", choices=["high", "medium", "low"])
    parser.add_argument("--status", choices=["detained", "at-risk", "clear"])
    parser.add_argument("--unknown-result-policy", default="pass",
                        choices=sorted(UNKNOWN_RESULT_POLICIES))
    parser.add_argument("--core-subject", action="append", default=[],
                        help="Subject counted as core for risk scoring (repeatable)")
    for index in ("spi", "cpi", "cgpa"):
        parser.add_argument(f"--{index}-range", nargs=2, type=float, metavar=("MIN", "MAX"),
                            help=f"Keep rows with {index.upper()} inside MIN..MAX (0-10)")
    parser.add_argument("--institute", default="Institute")
    parser.add_argument("--period", default="Current Period")
    parser.add_argument("--log-level", default="WARNING")
    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, str(args.log_level).upper(), logging.WARNING),
        format="%(levelname)s %(name)s: %(message)s",
    )

    sheet = int(args.sheet) if str(args.sheet).isdigit() else args.sheet
    try:
        headers, rows = load_gradesheet(args.gradesheet, sheet_name=sheet)
    except GradesheetError as e:
        print(str(e))
        return 2

    filters = DetentionFilter(
        branch=args.branch,
        semester=args.semester,
        academic_year=args.academic_year,
        risk_level=args.risk_level,
        detention_status=args.status,
    )
    policy = AnalysisPolicy(
        unknown_result_policy=args.unknown_result_policy,
        core_subjects=frozenset(args.core_subject),
    )
    grade_ranges = {
        index: tuple(bounds)
        for index, bounds in (("spi", args.spi_range), ("cpi", args.cpi_range), ("cgpa", args.cgpa_range))
        if bounds
    }
    try:
        brief = generate_result_brief(
            headers, rows,
            year=args.year,
            filters=filters,
            policy=policy,
            grade_ranges=grade_ranges,
            institute_name=args.institute,
            period_name=args.period,
        )
    except ValueError as e:
        print(f"Invalid option: {e}")
        return 2
    print(brief)
    return 0


if __name__ == "__main__":
    sys.exit(main())
