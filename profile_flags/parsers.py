"""CSV/Excel dataset parsing and data normalization."""

import logging
import re
import time
from io import BytesIO
from pathlib import Path
from typing import Dict, List, Optional, Union

import numpy as np
import pandas as pd

from profile_flags.store import DataFrameStudentStore, is_missing

logger = logging.getLogger(__name__)


DATASETS = ('students', 'attendance', 'grades', 'discipline', 'assessments')

# Canonical column -> accepted header variations (already normalized)
COLUMN_MAPPINGS: Dict[str, Dict[str, List[str]]] = {
    'students': {
        'id': ['id', 'internal id', 'student key'],
        'student_number': [
            'student number', 'student#', 'studentnumber', 'student id', 'studentid',
            'district id', 'local id', 'studentnum'
        ],
        'first_name': ['first name', 'firstname', 'first', 'given name'],
        'last_name': ['last name', 'lastname', 'last', 'surname', 'family name'],
        'grade': ['grade', 'grade level', 'gradelevel', 'grd'],
        'class_name': ['class', 'class name', 'classname', 'homeroom', 'homeroom class'],
        'gender': ['gender', 'sex'],
    },
    'attendance': {
        'student_id': ['student id', 'studentid', 'student number', 'student#', 'id'],
        'date': ['date', 'attendance date', 'day'],
        'status': ['status', 'attendance code', 'code', 'attendance status'],
    },
    'grades': {
        'student_id': ['student id', 'studentid', 'student number', 'student#', 'id'],
        'course': ['course', 'course name', 'coursename', 'class', 'subject'],
        'grade': ['grade', 'final grade', 'finalgrade', 'mark', 'score'],
        'term': ['term', 'period', 'quarter', 'semester'],
        'teacher': ['teacher', 'instructor'],
    },
    'discipline': {
        'student_id': ['student id', 'studentid', 'student number', 'student#', 'id'],
        'incident_date': ['incident date', 'incidentdate', 'date'],
        'infraction': ['infraction', 'offense', 'incident', 'incident type'],
        'action': ['action', 'action taken', 'consequence'],
        'location': ['location', 'place'],
    },
    'assessments': {
        'student_id': ['student id', 'studentid', 'student number', 'student#', 'id'],
        'source': ['source', 'assessment', 'test', 'test name'],
        'subject': ['subject', 'domain'],
        'test_date': ['test date', 'testdate', 'date', 'completion date'],
        'score': ['score', 'scale score', 'scalescore', 'overall scale score'],
        'percentile': ['percentile', 'national percentile', 'percentile rank'],
        'proficiency': ['proficiency', 'achievement level', 'placement'],
    },
}

REQUIRED_COLUMNS: Dict[str, List[str]] = {
    'students': ['first_name', 'last_name'],
    'attendance': ['student_id', 'date', 'status'],
    'grades': ['student_id'],
    'discipline': ['student_id'],
    'assessments': ['student_id', 'source', 'test_date', 'score'],
}

STATUS_ALIASES = {
    'present': 'present', 'p': 'present', 'in': 'present',
    'absent': 'absent', 'a': 'absent', 'abs': 'absent',
    'unexcused absence': 'absent', 'excused absence': 'absent',
    'tardy': 'tardy', 't': 'tardy', 'late': 'tardy',
    'early dismissal': 'early_dismissal', 'early_dismissal': 'early_dismissal', 'ed': 'early_dismissal',
}

LETTER_GRADE_POINTS = {'A': 4.0, 'B': 3.0, 'C': 2.0, 'D': 1.0, 'F': 0.0}


def normalize_col_name(col_name) -> str:
    """Normalize a column name for matching."""
    if pd.isna(col_name):
        return ""
    normalized = str(col_name).strip().lower()
    normalized = re.sub(r'[.,%]', '', normalized)  # Remove dots, commas, %
    normalized = re.sub(r'[_\s]+', ' ', normalized)  # Normalize whitespace/underscores
    return normalized.strip()


def normalize_and_rename_columns(df: pd.DataFrame, dataset: str) -> pd.DataFrame:
    """
    Clean and standardize column names for a dataset.
    Handles minor naming variations and formatting differences.

    Args:
        df: DataFrame to normalize
        dataset: One of DATASETS

    Returns:
        DataFrame with canonical column names
    """
    if dataset not in COLUMN_MAPPINGS:
        raise ValueError(f"Unknown dataset '{dataset}'. Expected one of: {', '.join(DATASETS)}")

    df = df.copy()
    target_mappings = COLUMN_MAPPINGS[dataset]

    # Canonical names are accepted as-is
    actual_rename = {}
    claimed = {col for col in df.columns if col in target_mappings}

    for orig_col in df.columns:
        if orig_col in target_mappings:
            continue
        normalized = normalize_col_name(orig_col)
        for target_name, variations in target_mappings.items():
            if normalized in variations and target_name not in claimed:
                # First matching header wins
                actual_rename[orig_col] = target_name
                claimed.add(target_name)
                break

    if actual_rename:
        df = df.rename(columns=actual_rename)
        logger.debug("Renamed columns in %s dataset: %s", dataset, actual_rename)
    else:
        logger.debug("No columns renamed in %s dataset. Columns: %s", dataset, list(df.columns))

    # Remove duplicate columns (keep first occurrence)
    if df.columns.duplicated().any():
        logger.warning("Found duplicate columns in %s dataset: %s",
                       dataset, df.columns[df.columns.duplicated()].tolist())
        df = df.loc[:, ~df.columns.duplicated(keep='first')]

    missing = [col for col in REQUIRED_COLUMNS[dataset] if col not in df.columns]
    if missing:
        raise ValueError(
            f"Missing required column(s) {missing} in {dataset} dataset. "
            f"Found columns: {list(df.columns)}"
        )

    # Keep only canonical columns
    return df[[col for col in target_mappings if col in df.columns]]


def safe_get_series(df: pd.DataFrame, column_name: str) -> pd.Series:
    """
    Safely extract a Series from a DataFrame, ensuring it's a Series not a DataFrame.

    Args:
        df: DataFrame to extract from
        column_name: Name of the column

    Returns:
        Series object
    """
    if column_name not in df.columns:
        raise KeyError(f"Column '{column_name}' not found in DataFrame")

    col_data = df[column_name]
    if isinstance(col_data, pd.DataFrame):
        logger.warning("Column '%s' returned DataFrame instead of Series, using first column", column_name)
        return col_data.iloc[:, 0]
    return col_data


def clean_numeric_value(value) -> Optional[float]:
    """
    Convert a cell to float.
    Returns None for NaN, Infinity, blanks and unparseable text.
    """
    if value is None:
        return None
    try:
        if pd.isna(value):
            return None
    except (TypeError, ValueError):
        return None
    try:
        if isinstance(value, str):
            value = value.strip().replace('%', '').replace(',', '')
            if not value:
                return None
        val = float(value)
    except (ValueError, TypeError):
        return None
    if np.isnan(val) or np.isinf(val):
        return None
    return val


def clean_id_value(value) -> Optional[str]:
    """
    Standardize an identifier cell to a string.
    Whole floats lose their '.0' (Excel reads numeric IDs as floats).
    """
    if value is None:
        return None
    try:
        if pd.isna(value):
            return None
    except (TypeError, ValueError):
        pass
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    text = str(value).strip()
    return text or None


def normalize_status(value) -> str:
    """
    Map attendance codes to 'present', 'absent', 'tardy' or 'early_dismissal'.
    Unknown codes are lowercased and kept.
    """
    if value is None or (not isinstance(value, str) and pd.isna(value)):
        return 'absent'
    key = str(value).strip().lower()
    return STATUS_ALIASES.get(key, key)


def parse_grade_value(value) -> Optional[float]:
    """
    Parse a recorded grade.

    Handles:
    - numbers (85, 85.5)
    - strings with a leading number ("77 C" -> 77.0)
    - pure letter grades ("B" -> 3.0, on the 4-point scale; +/- ignored)

    Returns:
        Numeric grade, or None if nothing usable is recorded
    """
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return clean_numeric_value(value)
    if value is None:
        return None
    text = str(value).strip().upper()
    if not text or text == 'NAN':
        return None

    letter = text.rstrip('+-')
    if letter in LETTER_GRADE_POINTS:
        return LETTER_GRADE_POINTS[letter]

    numeric_match = re.match(r'^\d+(\.\d+)?', text)
    if numeric_match:
        return float(numeric_match.group(0))
    return None


def _to_dates(series: pd.Series) -> pd.Series:
    """Parse a column to datetime.date values (NaT for unparseable)."""
    parsed = pd.to_datetime(series, errors='coerce', format='mixed')
    return parsed.dt.date.where(parsed.notna(), None)


def _to_optional_str(series: pd.Series) -> pd.Series:
    return series.map(lambda v: None if is_missing(v) or not str(v).strip() else str(v).strip())


def prepare_dataset(df: pd.DataFrame, dataset: str) -> pd.DataFrame:
    """
    Normalize a raw export into the frame layout the store expects.

    - Renames header variations to canonical names
    - Cleans identifiers, dates, numbers and attendance statuses
    - Drops rows with no student reference (summary/total rows)
    - Assigns internal identifiers to roster rows that lack one

    Args:
        df: Raw DataFrame read from CSV/Excel
        dataset: One of DATASETS

    Returns:
        Cleaned DataFrame
    """
    df = normalize_and_rename_columns(df, dataset)

    if dataset == 'students':
        # Drop summary rows and blank names
        names = safe_get_series(df, 'last_name').astype(str)
        mask = (
            ~names.str.contains('Total', case=False, na=False) &
            ~names.str.contains('Summary', case=False, na=False) &
            df['last_name'].notna() & names.str.strip().ne('')
        )
        df = df[mask].copy()

        df['first_name'] = _to_optional_str(df['first_name']).fillna('')
        df['last_name'] = _to_optional_str(df['last_name']).fillna('')
        if 'student_number' in df.columns:
            df['student_number'] = df['student_number'].map(clean_id_value)
        if 'grade' in df.columns:
            df['grade'] = df['grade'].map(clean_id_value).fillna('')
        for col in ('class_name', 'gender'):
            if col in df.columns:
                df[col] = _to_optional_str(df[col])

        if 'id' in df.columns:
            df['id'] = df['id'].map(clean_id_value)
        else:
            df['id'] = None
        missing_ids = df['id'].isna()
        if missing_ids.any():
            stamp = int(time.time())
            df.loc[missing_ids, 'id'] = [
                f"sid_{row_number}_{stamp}" for row_number in range(1, int(missing_ids.sum()) + 1)
            ]
            logger.info("Assigned %d internal student identifiers", int(missing_ids.sum()))
        return df.reset_index(drop=True)

    df = df.copy()
    df['student_id'] = df['student_id'].map(clean_id_value)
    df = df[df['student_id'].notna()].copy()

    if dataset == 'attendance':
        df['date'] = _to_dates(df['date'])
        df['status'] = df['status'].map(normalize_status)
        df = df[df['date'].notna()]
    elif dataset == 'grades':
        if 'grade' in df.columns:
            df['grade'] = df['grade'].map(parse_grade_value)
        if 'course' in df.columns:
            df['course'] = _to_optional_str(df['course']).fillna('')
        for col in ('term', 'teacher'):
            if col in df.columns:
                df[col] = _to_optional_str(df[col])
    elif dataset == 'discipline':
        if 'incident_date' in df.columns:
            df['incident_date'] = _to_dates(df['incident_date'])
        if 'infraction' in df.columns:
            df['infraction'] = _to_optional_str(df['infraction']).fillna('')
        for col in ('action', 'location'):
            if col in df.columns:
                df[col] = _to_optional_str(df[col])
    elif dataset == 'assessments':
        df['test_date'] = _to_dates(df['test_date'])
        df['score'] = df['score'].map(clean_numeric_value)
        df['source'] = _to_optional_str(df['source'])
        if 'subject' in df.columns:
            df['subject'] = _to_optional_str(df['subject']).fillna('')
        if 'percentile' in df.columns:
            df['percentile'] = df['percentile'].map(clean_numeric_value)
        if 'proficiency' in df.columns:
            df['proficiency'] = _to_optional_str(df['proficiency'])
        # Scores and dates are required to rank assessments
        df = df[df['test_date'].notna() & df['score'].notna() & df['source'].notna()]

    return df.reset_index(drop=True)


def load_table(file_bytes: bytes, filename: str) -> pd.DataFrame:
    """
    Read an uploaded CSV or Excel file into a DataFrame.

    Args:
        file_bytes: Raw file content
        filename: Original file name, used to pick the reader

    Returns:
        Raw DataFrame (all columns as read)
    """
    name = filename.lower()
    if name.endswith('.csv'):
        return pd.read_csv(BytesIO(file_bytes), dtype=object)
    if name.endswith('.xlsx'):
        return pd.read_excel(BytesIO(file_bytes), dtype=object, engine='openpyxl')
    raise ValueError("Invalid file type. Please upload a CSV or Excel file (.csv, .xlsx)")


def load_data_dir(data_dir: Union[str, Path], store: DataFrameStudentStore) -> Dict[str, int]:
    """
    Load every dataset file found in a directory into the store.

    Looks for `<dataset>.csv` or `<dataset>.xlsx` for each dataset name.

    Returns:
        Mapping of loaded dataset -> row count
    """
    data_dir = Path(data_dir)
    loaded: Dict[str, int] = {}
    if not data_dir.is_dir():
        logger.warning("Data directory %s not found; starting with an empty store", data_dir)
        return loaded

    for dataset in DATASETS:
        for suffix in ('.csv', '.xlsx'):
            path = data_dir / f"{dataset}{suffix}"
            if path.exists():
                raw = load_table(path.read_bytes(), path.name)
                df = prepare_dataset(raw, dataset)
                store.load(dataset, df)
                loaded[dataset] = len(df)
                break
    return loaded
