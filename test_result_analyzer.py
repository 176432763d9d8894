"""
Result analysis brief + CLI tests.
"""

import os
import tempfile

import pandas as pd
import pytest

from resultlens.analysis.detention import DetentionAnalysis
from result_analyzer import determine_posture, generate_result_brief, main


HEADERS = ["Map No", "Name", "Sem", "Result", "CURR BCK", "Branch", "SUB1GR", "SUB1NA"]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def rows():
    return [
        ["S1", "Asha", "1", "PASS", "0", "CE", "AA", "Maths"],
        ["S1", "Asha", "5", "FAIL", "1", "CE", "FF", "Maths"],
        ["S2", "Ravi", "1", "PASS", "0", "IT", "BB", "Maths"],
        ["S2", "Ravi", "2", "PASS", "0", "IT", "AB", "Maths"],
        ["S3", "Mina", "3", "PASS", "2", "CE", "CC", "Maths"],
    ]


def analysis(detention_rate, risk_rate):
    return DetentionAnalysis(
        total_students=10,
        detained_students=0,
        at_risk_students=0,
        clear_students=10,
        detention_rate=detention_rate,
        risk_rate=risk_rate,
    )


def write_csv(headers, data) -> str:
    tmp = tempfile.NamedTemporaryFile(mode="w", suffix=".csv", delete=False)
    pd.DataFrame(data, columns=headers).to_csv(tmp.name, index=False)
    tmp.close()
    return tmp.name


# ---------------------------------------------------------------------------
# Posture
# ---------------------------------------------------------------------------

class TestPosture:
    @pytest.mark.parametrize("detention,risk,posture", [
        (25.0, 0.0, "ESCALATE"),
        (0.0, 40.0, "ESCALATE"),
        (10.0, 0.0, "INTERVENE"),
        (0.0, 25.0, "INTERVENE"),
        (5.0, 0.0, "MONITOR"),
        (0.0, 10.0, "MONITOR"),
        (0.0, 9.9, "STABLE"),
    ])
    def test_thresholds(self, detention, risk, posture):
        assert determine_posture(analysis(detention, risk))[0] == posture


# ---------------------------------------------------------------------------
# Brief
# ---------------------------------------------------------------------------

class TestBrief:
    def test_sections_present(self):
        brief = generate_result_brief(HEADERS, rows(), institute_name="GEC Test")
        for heading in [
            "RESULT ANALYSIS BRIEF",
            "DETENTION STATUS",
            "BRANCH-WISE DETENTION",
            "SEMESTER-WISE DETENTION",
            "TOP FAILED SUBJECTS",
            "DETAINED STUDENTS",
            "AT-RISK STUDENTS",
            "SUBJECT GRADE SUMMARY",
            "BRANCH RESULT SUMMARY",
            "GTU DETENTION RULES",
        ]:
            assert heading in brief
        assert "Institute: GEC Test" in brief
        assert "QUALIFICATION" not in brief

    def test_status_figures(self):
        brief = generate_result_brief(HEADERS, rows())
        assert "Students: 3" in brief
        assert "Detained: 1 (33.3%)" in brief
        assert "Decision Posture: ESCALATE" in brief
        assert "S1 Asha [CE, Sem 5]: Failed in semester 5" in brief
        assert "S3 Mina: medium risk, 2 backlog(s), Sem 3" in brief

    def test_year_section(self):
        brief = generate_result_brief(HEADERS, rows(), year=1)
        assert "YEAR 1 QUALIFICATION (Sem 1–2)" in brief
        assert "Qualified Students: 2" in brief
        assert "Qualified Rows: 3" in brief

    def test_data_hash_is_stable(self):
        first = generate_result_brief(HEADERS, rows())
        second = generate_result_brief(HEADERS, rows())
        hash_line = [line for line in first.splitlines() if line.startswith("Data Hash")]
        assert hash_line and hash_line[0] in second

    def test_degrades_without_branch(self):
        headers = ["Map No", "Sem", "Result"]
        brief = generate_result_brief(headers, [["A", "5", "FAIL"]])
        assert "Branch column not available." in brief
        assert "No subject grade columns found." in brief


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------

class TestMain:
    def test_prints_brief(self, capsys):
        path = write_csv(HEADERS, rows())
        try:
            assert main([path, "--institute", "GEC Test", "--year", "1"]) == 0
        finally:
            os.unlink(path)
        out = capsys.readouterr().out
        assert "RESULT ANALYSIS BRIEF" in out
        assert "YEAR 1 QUALIFICATION" in out

    def test_filters_applied(self, capsys):
        path = write_csv(HEADERS, rows())
        try:
            assert main([path, "--branch", "it"]) == 0
        finally:
            os.unlink(path)
        out = capsys.readouterr().out
        assert "Filters: branch=it" in out
        assert "Students: 1" in out

    def test_missing_file_returns_2(self, capsys):
        assert main(["/nonexistent/results.csv"]) == 2
        assert "RESULTLENS LOAD HALT" in capsys.readouterr().out

    def test_invalid_policy_rejected_by_parser(self):
        with pytest.raises(SystemExit):
            main(["results.csv", "--unknown-result-policy", "maybe"])

    def test_grade_range_section(self, capsys):
        headers = ["Map No", "Sem", "Result", "SPI"]
        path = write_csv(headers, [["A", "1", "PASS", "8.0"], ["B", "1", "FAIL", "4.0"]])
        try:
            assert main([path, "--spi-range", "7", "10"]) == 0
        finally:
            os.unlink(path)
        out = capsys.readouterr().out
        assert "GRADE RANGE" in out
        assert "SPI 7-10, CPI 0-10, CGPA 0-10" in out
        assert "Rows Considered: 2 (1 passed, 1 failed)" in out
        assert "Rows In Range: 1 (1 passed)" in out

    def test_invalid_grade_range_returns_2(self, capsys):
        path = write_csv(HEADERS, rows())
        try:
            assert main([path, "--spi-range", "9", "2"]) == 2
        finally:
            os.unlink(path)
        assert "Invalid option" in capsys.readouterr().out
