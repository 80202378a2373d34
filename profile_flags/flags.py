"""Flag rule evaluation: per-student metrics checked against thresholds."""

import logging
from typing import Dict, List, Optional, Sequence, Tuple, Union

import pandas as pd

from profile_flags.models import (
    AssessmentRecord,
    FlagCategory,
    FlagCondition,
    FlagResult,
    FlagRule,
    StudentFlag,
    StudentRecord,
)
from profile_flags.store import StudentStore

logger = logging.getLogger(__name__)


NOT_FLAGGED = FlagResult(is_flagged=False, message='')

# category -> (label, generic sources, subject keywords, dedicated sources)
ASSESSMENT_FILTERS: Dict[FlagCategory, Tuple[str, Tuple[str, ...], Tuple[str, ...], Tuple[str, ...]]] = {
    FlagCategory.READING_ASSESSMENT: (
        'Reading assessment', ('iready', 'fast', 'star'), ('reading', 'ela'),
        ('iready reading', 'fast ela', 'star reading'),
    ),
    FlagCategory.MATH_ASSESSMENT: (
        'Math assessment', ('iready', 'fast', 'star'), ('math',),
        ('iready math', 'fast math', 'star math'),
    ),
    FlagCategory.SCIENCE_ASSESSMENT: (
        'Science assessment', ('fast',), ('science',),
        ('fast science',),
    ),
    FlagCategory.WRITING_ASSESSMENT: (
        'Writing assessment', ('fast',), ('writing',),
        ('fast writing',),
    ),
}


def compare(metric: float, condition: Union[FlagCondition, str], threshold: float) -> bool:
    """
    Threshold test.

    Args:
        metric: Computed student metric
        condition: 'below', 'above' or 'equals' (anything else never matches)
        threshold: Rule threshold

    Returns:
        True if the metric crosses the threshold
    """
    try:
        condition = FlagCondition(condition)
    except ValueError:
        return False

    if condition == FlagCondition.BELOW:
        return metric < threshold
    elif condition == FlagCondition.ABOVE:
        return metric > threshold
    return metric == threshold


def matches_assessment_category(record: AssessmentRecord, category: FlagCategory) -> bool:
    """Check if an assessment record belongs to an assessment category."""
    _, sources, keywords, dedicated = ASSESSMENT_FILTERS[category]
    source = record.source.strip().lower()
    if source in dedicated:
        return True
    subject = (record.subject or '').lower()
    return source in sources and any(keyword in subject for keyword in keywords)


def latest_assessment(records: Sequence[AssessmentRecord], category: FlagCategory) -> Optional[AssessmentRecord]:
    """Most recent record (by test date) for a category, or None."""
    matching = [r for r in records if matches_assessment_category(r, category)]
    if not matching:
        return None
    # max() keeps the first of equal dates
    return max(matching, key=lambda r: r.test_date)


def format_score(score: float) -> str:
    """Render whole scores without a trailing '.0'."""
    if float(score).is_integer():
        return str(int(score))
    return f"{score:g}"


async def compute_metric(student: StudentRecord, category: FlagCategory,
                         store: StudentStore) -> Optional[Tuple[float, str]]:
    """
    Aggregate a student's records for a category.

    Returns:
        Tuple of (metric, message), or None when there is nothing to measure
    """
    if category == FlagCategory.ATTENDANCE:
        records = await store.attendance_for(student.id)
        if not records:
            return None
        present_days = sum(1 for r in records if r.status == 'present')
        rate = present_days / len(records) * 100.0
        return rate, f"Attendance rate: {rate:.1f}%"

    if category == FlagCategory.GRADES:
        records = await store.grades_for(student.id)
        values = [r.grade for r in records if r.grade is not None]
        if not values:
            return None
        average = sum(values) / len(values)
        return average, f"GPA: {average:.2f}"

    if category == FlagCategory.DISCIPLINE:
        records = await store.discipline_for(student.id)
        count = len(records)
        noun = 'record' if count == 1 else 'records'
        return float(count), f"{count} discipline {noun}"

    records = await store.assessments_for(student.id)
    latest = latest_assessment(records, category)
    if latest is None:
        return None
    label = ASSESSMENT_FILTERS[category][0]
    return latest.score, f"{label}: {format_score(latest.score)}"


async def evaluate_flag(student: StudentRecord, rule: FlagRule, store: StudentStore) -> FlagResult:
    """
    Evaluate one rule against one student.

    Grade/class filters are not checked here; see `rule_applies_to`.
    Unknown categories/conditions and data access errors give a
    non-flagged result.

    Args:
        student: Student to evaluate
        rule: Flag rule
        store: Source of the student's records

    Returns:
        FlagResult with a message summarizing the metric when flagged
    """
    try:
        category = FlagCategory(rule.category)
    except ValueError:
        logger.debug("Rule %s has unknown category %r", rule.id, rule.category)
        return NOT_FLAGGED

    try:
        computed = await compute_metric(student, category, store)
    except Exception:
        logger.exception("Error evaluating flag %s for student %s", rule.id, student.id)
        return NOT_FLAGGED

    if computed is None:
        return NOT_FLAGGED

    metric, message = computed
    if compare(metric, rule.criteria.condition, rule.criteria.threshold):
        return FlagResult(is_flagged=True, message=message)
    return NOT_FLAGGED


def rule_applies_to(student: StudentRecord, rule: FlagRule) -> bool:
    """Check a rule's grade/class filters. Empty filter lists match everyone."""
    filters = rule.filters
    if filters.grades and str(student.grade) not in filters.grades:
        return False
    if filters.classes and (student.class_name or '') not in filters.classes:
        return False
    return True


async def evaluate_student_flags(student: StudentRecord, rules: Sequence[FlagRule],
                                 store: StudentStore) -> Dict[str, List[StudentFlag]]:
    """
    Evaluate every active, applicable rule for a student.

    Returns:
        Flags grouped by profile section (the rule category)
    """
    sections: Dict[str, List[StudentFlag]] = {}
    for rule in rules:
        if not rule.is_active or not rule_applies_to(student, rule):
            continue

        result = await evaluate_flag(student, rule, store)
        if not result.is_flagged:
            continue

        section = FlagCategory(rule.category).value
        sections.setdefault(section, []).append(StudentFlag(
            flag_id=rule.id,
            flag_name=rule.name,
            category=section,
            message=result.message,
            color=rule.color or 'red',
        ))
    return sections


REPORT_COLUMNS = [
    'Student ID', 'Student Number', 'Student Name', 'Grade', 'Class',
    'Flag', 'Category', 'Message', 'Color',
]


async def build_flag_report(students: Sequence[StudentRecord], rules: Sequence[FlagRule],
                            store: StudentStore) -> pd.DataFrame:
    """
    Flatten section flags for a set of students into a report table.

    Returns:
        DataFrame with one row per raised flag, ordered by student name
    """
    rows = []
    for student in students:
        sections = await evaluate_student_flags(student, rules, store)
        for flags in sections.values():
            for flag in flags:
                rows.append({
                    'Student ID': student.id,
                    'Student Number': student.student_number or '',
                    'Student Name': student.full_name,
                    'Grade': student.grade,
                    'Class': student.class_name or '',
                    'Flag': flag.flag_name,
                    'Category': flag.category,
                    'Message': flag.message,
                    'Color': flag.color,
                })

    report = pd.DataFrame(rows, columns=REPORT_COLUMNS)
    if not report.empty:
        report = report.sort_values(['Student Name', 'Category'], kind='stable').reset_index(drop=True)
    return report
