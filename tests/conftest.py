"""Shared fixtures for building in-memory stores."""

import pandas as pd
import pytest

from profile_flags.store import DataFrameStudentStore


@pytest.fixture
def make_store():
    """Factory building a store from lists of row dicts keyed by dataset name."""
    def _make_store(**datasets) -> DataFrameStudentStore:
        return DataFrameStudentStore({
            name: pd.DataFrame(rows) for name, rows in datasets.items()
        })
    return _make_store


@pytest.fixture
def students():
    return [
        {'id': 'sid_1_100', 'student_number': '1234567', 'first_name': 'John', 'last_name': 'Smith',
         'grade': '5', 'class_name': 'Room 12'},
        {'id': 'sid_2_100', 'student_number': '2345678', 'first_name': 'Jane', 'last_name': 'Smith',
         'grade': '4', 'class_name': 'Room 8'},
        {'id': 'sid_3_100', 'student_number': '3456789', 'first_name': 'Bob', 'last_name': 'Jones',
         'grade': '5', 'class_name': 'Room 12'},
    ]
