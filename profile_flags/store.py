"""Read-only student data store backed by pandas DataFrames."""

import logging
from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Type

import pandas as pd
from pydantic import BaseModel

from profile_flags.models import (
    StudentRecord,
    AttendanceRecord,
    GradeRecord,
    DisciplineRecord,
    AssessmentRecord,
)

logger = logging.getLogger(__name__)


# Dataset name -> record model. Column names in the frames match model fields.
DATASET_MODELS: Dict[str, Type[BaseModel]] = {
    'students': StudentRecord,
    'attendance': AttendanceRecord,
    'grades': GradeRecord,
    'discipline': DisciplineRecord,
    'assessments': AssessmentRecord,
}


class StudentStore(ABC):
    """Queryable source of students and their per-student records.

    Every read is a coroutine so that callers suspend at data fetches only.
    """

    @abstractmethod
    async def all_students(self) -> List[StudentRecord]:
        ...

    @abstractmethod
    async def get_student(self, student_id: str) -> Optional[StudentRecord]:
        ...

    @abstractmethod
    async def attendance_for(self, student_id: str) -> List[AttendanceRecord]:
        ...

    @abstractmethod
    async def grades_for(self, student_id: str) -> List[GradeRecord]:
        ...

    @abstractmethod
    async def discipline_for(self, student_id: str) -> List[DisciplineRecord]:
        ...

    @abstractmethod
    async def assessments_for(self, student_id: str) -> List[AssessmentRecord]:
        ...


def _rows_to_records(df: pd.DataFrame, model: Type[BaseModel]) -> list:
    """Convert DataFrame rows to models, dropping missing cells so defaults apply."""
    records = []
    for row in df.to_dict(orient='records'):
        clean = {k: v for k, v in row.items() if k in model.model_fields and not is_missing(v)}
        records.append(model(**clean))
    return records


def is_missing(value) -> bool:
    """True for None, NaN, NaT and pd.NA cells."""
    if isinstance(value, (list, dict)):
        return False
    try:
        return bool(pd.isna(value))
    except (TypeError, ValueError):
        return False


class DataFrameStudentStore(StudentStore):
    """In-memory store holding one DataFrame per dataset.

    Frames are expected to be cleaned by `parsers.prepare_dataset`.
    """

    def __init__(self, frames: Optional[Dict[str, pd.DataFrame]] = None):
        self._frames: Dict[str, pd.DataFrame] = {}
        for dataset, df in (frames or {}).items():
            self.load(dataset, df)

    def load(self, dataset: str, df: pd.DataFrame) -> None:
        """Replace a dataset wholesale."""
        if dataset not in DATASET_MODELS:
            raise ValueError(f"Unknown dataset '{dataset}'. Expected one of: {', '.join(DATASET_MODELS)}")
        self._frames[dataset] = df.reset_index(drop=True)
        logger.info("Loaded %d %s rows", len(df), dataset)

    def count(self, dataset: str) -> int:
        df = self._frames.get(dataset)
        return 0 if df is None else len(df)

    def _select(self, dataset: str, column: str, values: List[str]) -> list:
        df = self._frames.get(dataset)
        if df is None or df.empty or column not in df.columns:
            return []
        matches = df[df[column].astype(str).isin([str(v) for v in values])]
        return _rows_to_records(matches, DATASET_MODELS[dataset])

    def _student_keys(self, student_id: str) -> List[str]:
        """
        Keys a record may reference a student by.

        Exports key rows by student number while the roster assigns its own
        internal identifiers, so both are accepted.
        """
        keys = [str(student_id)]
        roster = self._frames.get('students')
        if roster is None or 'id' not in roster.columns or 'student_number' not in roster.columns:
            return keys
        numbers = roster.loc[roster['id'].astype(str) == str(student_id), 'student_number']
        keys.extend(str(n) for n in numbers if not is_missing(n))
        return keys

    async def all_students(self) -> List[StudentRecord]:
        df = self._frames.get('students')
        if df is None:
            return []
        return _rows_to_records(df, StudentRecord)

    async def get_student(self, student_id: str) -> Optional[StudentRecord]:
        students = self._select('students', 'id', [student_id])
        return students[0] if students else None

    async def attendance_for(self, student_id: str) -> List[AttendanceRecord]:
        return self._select('attendance', 'student_id', self._student_keys(student_id))

    async def grades_for(self, student_id: str) -> List[GradeRecord]:
        return self._select('grades', 'student_id', self._student_keys(student_id))

    async def discipline_for(self, student_id: str) -> List[DisciplineRecord]:
        return self._select('discipline', 'student_id', self._student_keys(student_id))

    async def assessments_for(self, student_id: str) -> List[AssessmentRecord]:
        return self._select('assessments', 'student_id', self._student_keys(student_id))
