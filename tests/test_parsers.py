"""Unit tests for parsers module."""

from datetime import date
from io import BytesIO

import pandas as pd
import pytest

from profile_flags.parsers import (
    clean_id_value,
    clean_numeric_value,
    load_data_dir,
    load_table,
    normalize_and_rename_columns,
    normalize_status,
    parse_grade_value,
    prepare_dataset,
)
from profile_flags.store import DataFrameStudentStore


def test_parse_grade_value():
    """Test grade parsing."""
    assert parse_grade_value(85) == 85.0
    assert parse_grade_value(3.5) == 3.5
    assert parse_grade_value("77 C") == 77.0
    assert parse_grade_value("92.5") == 92.5
    assert parse_grade_value("B") == 3.0
    assert parse_grade_value("a-") == 4.0
    assert parse_grade_value("F") == 0.0
    assert parse_grade_value("") is None
    assert parse_grade_value(None) is None
    assert parse_grade_value("Incomplete") is None
    assert parse_grade_value(float('nan')) is None


def test_clean_numeric_value():
    assert clean_numeric_value("85%") == 85.0
    assert clean_numeric_value("1,250") == 1250.0
    assert clean_numeric_value(412) == 412.0
    assert clean_numeric_value(float('inf')) is None
    assert clean_numeric_value(pd.NA) is None
    assert clean_numeric_value("n/a") is None


def test_clean_id_value():
    """Numeric IDs read from Excel lose their decimal part."""
    assert clean_id_value(1234567.0) == "1234567"
    assert clean_id_value(" 0042 ") == "0042"
    assert clean_id_value(None) is None
    assert clean_id_value(float('nan')) is None


def test_normalize_status():
    assert normalize_status("P") == "present"
    assert normalize_status("Absent") == "absent"
    assert normalize_status("late") == "tardy"
    assert normalize_status("Early Dismissal") == "early_dismissal"
    assert normalize_status("field trip") == "field trip"


def test_normalize_and_rename_columns():
    """Header variations map to canonical names."""
    df = pd.DataFrame({
        'Student#': ['1'],
        'First Name': ['John'],
        'Last_Name': ['Smith'],
        'Grade Level': ['5'],
        'Homeroom': ['Room 12'],
        'Notes': ['ignored'],
    })

    renamed = normalize_and_rename_columns(df, 'students')

    assert list(renamed.columns) == ['student_number', 'first_name', 'last_name', 'grade', 'class_name']
    assert renamed['first_name'].iloc[0] == 'John'


def test_normalize_missing_required_column():
    """Missing required columns are rejected."""
    df = pd.DataFrame({'Student ID': ['1'], 'Date': ['2024-09-03']})
    with pytest.raises(ValueError, match="status"):
        normalize_and_rename_columns(df, 'attendance')


def test_normalize_unknown_dataset():
    with pytest.raises(ValueError):
        normalize_and_rename_columns(pd.DataFrame(), 'lunch')


def test_prepare_students_assigns_ids():
    """Roster rows without an internal ID get one; summary rows are dropped."""
    raw = pd.DataFrame({
        'Student Number': [1234567.0, 2345678.0, None],
        'First Name': ['John', 'Jane', None],
        'Last Name': ['Smith', 'Smith', 'Total'],
        'Grade': [5.0, 4.0, None],
    })

    df = prepare_dataset(raw, 'students')

    assert len(df) == 2
    assert list(df['student_number']) == ['1234567', '2345678']
    assert list(df['grade']) == ['5', '4']
    assert df['id'].str.match(r'^sid_\d+_\d+$').all()
    assert df['id'].is_unique


def test_prepare_students_keeps_existing_ids():
    raw = pd.DataFrame({
        'ID': ['sid_7_1', None],
        'First Name': ['John', 'Jane'],
        'Last Name': ['Smith', 'Smith'],
    })
    df = prepare_dataset(raw, 'students')
    assert df['id'].iloc[0] == 'sid_7_1'
    assert df['id'].iloc[1].startswith('sid_1_')


def test_prepare_attendance():
    """Dates and statuses are normalized; rows without a student are dropped."""
    raw = pd.DataFrame({
        'Student ID': ['sid_1_100', 'sid_1_100', None],
        'Attendance Date': ['2024-09-03', '09/04/2024', '2024-09-05'],
        'Code': ['P', 'A', 'P'],
    })

    df = prepare_dataset(raw, 'attendance')

    assert len(df) == 2
    assert list(df['status']) == ['present', 'absent']
    assert df['date'].iloc[0] == date(2024, 9, 3)
    assert df['date'].iloc[1] == date(2024, 9, 4)


def test_prepare_grades():
    raw = pd.DataFrame({
        'Student ID': ['sid_1_100', 'sid_1_100', 'sid_1_100'],
        'Course Name': ['Math', 'ELA', 'Art'],
        'Final Grade': ['77 C', 'B', ''],
    })
    df = prepare_dataset(raw, 'grades')
    assert df['grade'].iloc[0] == 77.0
    assert df['grade'].iloc[1] == 3.0
    assert pd.isna(df['grade'].iloc[2])


def test_prepare_assessments_drops_unscored_rows():
    raw = pd.DataFrame({
        'Student ID': ['sid_1_100', 'sid_1_100'],
        'Test Name': ['iReady', 'iReady'],
        'Subject': ['Reading', 'Reading'],
        'Test Date': ['2025-01-15', '2025-02-15'],
        'Scale Score': ['455', ''],
    })
    df = prepare_dataset(raw, 'assessments')
    assert len(df) == 1
    assert df['score'].iloc[0] == 455.0
    assert df['test_date'].iloc[0] == date(2025, 1, 15)


def test_load_table_csv_and_excel():
    """CSV and Excel uploads read into the same frame."""
    frame = pd.DataFrame({'First Name': ['John'], 'Last Name': ['Smith']})

    csv_bytes = frame.to_csv(index=False).encode('utf-8')
    assert load_table(csv_bytes, 'roster.CSV')['First Name'].iloc[0] == 'John'

    buffer = BytesIO()
    frame.to_excel(buffer, index=False, engine='openpyxl')
    assert load_table(buffer.getvalue(), 'roster.xlsx')['Last Name'].iloc[0] == 'Smith'

    with pytest.raises(ValueError):
        load_table(b'', 'roster.pdf')


def test_load_data_dir(tmp_path):
    """Dataset files found in a directory are loaded into the store."""
    pd.DataFrame({
        'Student Number': ['1234567'], 'First Name': ['John'], 'Last Name': ['Smith'],
    }).to_csv(tmp_path / 'students.csv', index=False)
    pd.DataFrame({
        'Student ID': ['sid_1_100'], 'Date': ['2024-09-03'], 'Status': ['present'],
    }).to_csv(tmp_path / 'attendance.csv', index=False)

    store = DataFrameStudentStore()
    loaded = load_data_dir(tmp_path, store)

    assert loaded == {'students': 1, 'attendance': 1}
    assert store.count('students') == 1
    assert load_data_dir(tmp_path / 'missing', DataFrameStudentStore()) == {}
