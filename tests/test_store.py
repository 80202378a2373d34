"""Unit tests for the DataFrame-backed student store."""

import asyncio
from datetime import date

import pandas as pd
import pytest

from profile_flags.store import DataFrameStudentStore


def test_all_students_and_lookup(make_store, students):
    """Students convert to records; missing optional cells use defaults."""
    students[1].pop('class_name')
    store = make_store(students=students)

    all_students = asyncio.run(store.all_students())
    assert [s.full_name for s in all_students] == ['John Smith', 'Jane Smith', 'Bob Jones']
    assert all_students[1].class_name is None

    student = asyncio.run(store.get_student('sid_3_100'))
    assert student.student_number == '3456789'
    assert asyncio.run(store.get_student('sid_9_999')) is None


def test_records_filtered_by_student(make_store):
    """Per-student reads only return that student's rows."""
    store = make_store(attendance=[
        {'student_id': 'sid_1_100', 'date': date(2024, 9, 3), 'status': 'present'},
        {'student_id': 'sid_2_100', 'date': date(2024, 9, 3), 'status': 'absent'},
        {'student_id': 'sid_1_100', 'date': date(2024, 9, 4), 'status': 'tardy'},
    ])

    records = asyncio.run(store.attendance_for('sid_1_100'))
    assert [r.status for r in records] == ['present', 'tardy']
    assert asyncio.run(store.attendance_for('sid_3_100')) == []


def test_empty_store_reads():
    store = DataFrameStudentStore()
    assert asyncio.run(store.all_students()) == []
    assert asyncio.run(store.grades_for('sid_1_100')) == []
    assert asyncio.run(store.discipline_for('sid_1_100')) == []
    assert asyncio.run(store.assessments_for('sid_1_100')) == []
    assert store.count('students') == 0


def test_load_replaces_dataset(make_store):
    store = make_store(grades=[{'student_id': 'sid_1_100', 'course': 'Math', 'grade': 80.0}])
    store.load('grades', pd.DataFrame([{'student_id': 'sid_1_100', 'course': 'ELA', 'grade': 90.0}]))

    grades = asyncio.run(store.grades_for('sid_1_100'))
    assert [g.course for g in grades] == ['ELA']


def test_load_unknown_dataset():
    with pytest.raises(ValueError):
        DataFrameStudentStore().load('lunch', pd.DataFrame())


def test_records_keyed_by_student_number(make_store, students):
    """Rows exported by student number belong to the matching roster student."""
    store = make_store(students=students, discipline=[
        {'student_id': '3456789', 'infraction': 'Disruption'},
        {'student_id': 'sid_3_100', 'infraction': 'Fighting'},
        {'student_id': '1234567', 'infraction': 'Tardy'},
    ])

    records = asyncio.run(store.discipline_for('sid_3_100'))
    assert [r.infraction for r in records] == ['Disruption', 'Fighting']


def test_records_follow_reloaded_roster(make_store, students):
    """A new roster with fresh identifiers still finds existing records."""
    store = make_store(students=students, grades=[
        {'student_id': '1234567', 'course': 'Math', 'grade': 3.0},
    ])
    roster = pd.DataFrame(students)
    roster['id'] = ['sid_1_200', 'sid_2_200', 'sid_3_200']
    store.load('students', roster)

    assert [g.course for g in asyncio.run(store.grades_for('sid_1_200'))] == ['Math']
    assert asyncio.run(store.grades_for('sid_1_100')) == []
