"""
Cell normalization + gradesheet loading tests.

Malformed cells become neutral defaults; they are never rejected.
"""

import os
import tempfile

import numpy as np
import pandas as pd
import pytest

from resultlens.analysis.policy import AnalysisPolicy
from resultlens.analysis.tabular import (
    RESULT_FAIL,
    RESULT_PASS,
    RESULT_UNKNOWN,
    GradesheetError,
    backlog_value,
    cell_at,
    cell_text,
    classify_result,
    is_blank,
    is_fail_grade,
    load_gradesheet,
    parse_index,
    parse_semester,
    rows_from_frame,
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def write_csv(df: pd.DataFrame, suffix: str = ".csv") -> str:
    tmp = tempfile.NamedTemporaryFile(mode="w", suffix=suffix, delete=False)
    df.to_csv(tmp.name, index=False)
    tmp.close()
    return tmp.name


# ---------------------------------------------------------------------------
# Blank / text
# ---------------------------------------------------------------------------

class TestCellText:
    @pytest.mark.parametrize("value", [None, "", "   ", float("nan"), np.nan, pd.NA])
    def test_blank_values(self, value):
        assert is_blank(value)
        assert cell_text(value) == ""

    def test_integral_float_drops_suffix(self):
        assert cell_text(12345.0) == "12345"

    def test_text_is_trimmed(self):
        assert cell_text("  CE  ") == "CE"

    def test_cell_at_handles_short_rows_and_missing_columns(self):
        assert cell_at(["a"], 3) is None
        assert cell_at(["a"], -1) is None
        assert cell_at(None, 0) is None
        assert cell_at(["a", "b"], 1) == "b"


# ---------------------------------------------------------------------------
# Semester
# ---------------------------------------------------------------------------

class TestParseSemester:
    @pytest.mark.parametrize("value,expected", [
        ("Sem 3", 3),
        ("3", 3),
        ("Semester-03", 3),
        (5, 5),
        (7.0, 7),
        ("BE SEM 8 EXAM", 8),
    ])
    def test_first_digit_run(self, value, expected):
        assert parse_semester(value) == expected

    @pytest.mark.parametrize("value", [None, "", "Sem", 0, 9, "Sem 12", "Winter 2023"])
    def test_out_of_range_or_missing_is_none(self, value):
        assert parse_semester(value) is None


# ---------------------------------------------------------------------------
# Result
# ---------------------------------------------------------------------------

class TestClassifyResult:
    @pytest.mark.parametrize("value", ["PASS", "p", "Promoted", "Cleared", "Successful", "1"])
    def test_pass_keywords(self, value):
        assert classify_result(value) == RESULT_PASS

    @pytest.mark.parametrize("value", [
        "FAIL", "f", "R", "Reappear", "Repeat", "DETAINED", "KT", "Drop", "Absent", "Unsuccessful",
    ])
    def test_fail_keywords(self, value):
        assert classify_result(value) == RESULT_FAIL

    def test_fail_wins_over_pass(self):
        assert classify_result("Pass with KT") == RESULT_FAIL

    def test_promoted_is_not_read_as_r(self):
        """Keywords match whole words only."""
        assert classify_result("promoted") == RESULT_PASS

    def test_unknown_defaults_to_pass(self):
        assert classify_result("WH") == RESULT_PASS
        assert classify_result(None) == RESULT_PASS

    def test_unknown_policy_is_configurable(self):
        assert classify_result("WH", AnalysisPolicy(unknown_result_policy="fail")) == RESULT_FAIL
        assert classify_result("WH", AnalysisPolicy(unknown_result_policy="unknown")) == RESULT_UNKNOWN

    def test_invalid_policy_rejected(self):
        with pytest.raises(ValueError):
            AnalysisPolicy(unknown_result_policy="maybe")


# ---------------------------------------------------------------------------
# Numbers / grades
# ---------------------------------------------------------------------------

class TestNumbers:
    @pytest.mark.parametrize("value,expected", [
        ("2", 2.0), (3, 3.0), ("", 0.0), (None, 0.0), ("N/A", 0.0), ("inf", 0.0), (np.nan, 0.0),
    ])
    def test_backlog_value(self, value, expected):
        assert backlog_value(value) == expected

    def test_index_range(self):
        assert parse_index("8.25") == 8.25
        assert parse_index(10) == 10.0
        assert parse_index("11") is None
        assert parse_index("-1") is None
        assert parse_index("--") is None

    @pytest.mark.parametrize("value", ["FF", "ff", "F", "FAIL", "0", 0])
    def test_fail_grades(self, value):
        assert is_fail_grade(value)

    @pytest.mark.parametrize("value", ["AA", "DD", "", None, "AB "])
    def test_passing_grades(self, value):
        assert not is_fail_grade(value)


# ---------------------------------------------------------------------------
# Frame hand-off
# ---------------------------------------------------------------------------

class TestRowsFromFrame:
    def test_nan_becomes_none(self):
        df = pd.DataFrame({"Map No": ["1", "2"], "SPI": [7.5, np.nan]})
        headers, rows = rows_from_frame(df)
        assert headers == ["Map No", "SPI"]
        assert rows == [["1", 7.5], ["2", None]]

    def test_empty_frame(self):
        headers, rows = rows_from_frame(pd.DataFrame(columns=["Sem"]))
        assert headers == ["Sem"]
        assert rows == []


class TestLoadGradesheet:
    def test_csv_loaded_as_text(self):
        path = write_csv(pd.DataFrame([{"Map No": "001", "Sem": "3", "Result": "PASS"}]))
        try:
            headers, rows = load_gradesheet(path)
            assert headers == ["Map No", "Sem", "Result"]
            assert rows == [["001", "3", "PASS"]]
        finally:
            os.unlink(path)

    def test_missing_file_halts(self):
        with pytest.raises(GradesheetError) as exc_info:
            load_gradesheet("/nonexistent/results.csv")
        assert "not found" in str(exc_info.value).lower()

    def test_unsupported_extension_halts(self):
        tmp = tempfile.NamedTemporaryFile(mode="w", suffix=".txt", delete=False)
        tmp.write("Map No,Sem\n")
        tmp.close()
        try:
            with pytest.raises(GradesheetError) as exc_info:
                load_gradesheet(tmp.name)
            assert "Unsupported" in exc_info.value.reason
        finally:
            os.unlink(tmp.name)

    def test_error_text_lists_fix_steps(self):
        err = GradesheetError(reason="bad", affected_file="x.csv", fix_steps=["Do this"])
        text = str(err)
        assert "Reason          : bad" in text
        assert "1. Do this" in text
