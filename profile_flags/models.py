"""Data models for the Student Profile Flags service."""

import datetime
from enum import Enum
from typing import Optional, Dict, List, Union

from pydantic import BaseModel, Field


class FlagCategory(str, Enum):
    """Metric domain a flag rule applies to."""
    ATTENDANCE = 'attendance'
    GRADES = 'grades'
    DISCIPLINE = 'discipline'
    READING_ASSESSMENT = 'reading-assessment'
    MATH_ASSESSMENT = 'math-assessment'
    SCIENCE_ASSESSMENT = 'science-assessment'
    WRITING_ASSESSMENT = 'writing-assessment'


class FlagCondition(str, Enum):
    """How a metric is compared with a rule threshold."""
    BELOW = 'below'
    ABOVE = 'above'
    EQUALS = 'equals'


class StudentRecord(BaseModel):
    """A roster entry. `id` is the internal identifier."""
    id: str
    student_number: Optional[str] = None
    first_name: str = ''
    last_name: str = ''
    grade: str = ''
    class_name: Optional[str] = None
    gender: Optional[str] = None

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


class AttendanceRecord(BaseModel):
    """One attendance day."""
    student_id: str
    date: datetime.date
    status: str  # "present" | "absent" | "tardy" | "early_dismissal"


class GradeRecord(BaseModel):
    """Course grade for a student."""
    student_id: str
    course: str = ''
    grade: Optional[float] = None
    term: Optional[str] = None
    teacher: Optional[str] = None


class DisciplineRecord(BaseModel):
    """A discipline incident."""
    student_id: str
    incident_date: Optional[datetime.date] = None
    infraction: str = ''
    action: Optional[str] = None
    location: Optional[str] = None


class AssessmentRecord(BaseModel):
    """A scored assessment, tagged by source and subject."""
    student_id: str
    source: str
    subject: str = ''
    test_date: datetime.date
    score: float
    percentile: Optional[float] = None
    proficiency: Optional[str] = None


class FlagCriteria(BaseModel):
    """Threshold test of a rule.

    `condition` keeps unknown values so that a hand-edited rule file still
    loads; such rules never flag.
    """
    condition: Union[FlagCondition, str]
    threshold: float


class FlagFilters(BaseModel):
    """Grade/class restrictions. Empty lists apply to every student."""
    grades: List[str] = Field(default_factory=list)
    classes: List[str] = Field(default_factory=list)


class FlagRule(BaseModel):
    """A user-defined flagging rule."""
    id: str
    name: str
    category: Union[FlagCategory, str]
    criteria: FlagCriteria
    filters: FlagFilters = Field(default_factory=FlagFilters)
    color: str = 'red'
    is_active: bool = True
    description: Optional[str] = None


class FlagResult(BaseModel):
    """Outcome of evaluating one rule against one student."""
    is_flagged: bool
    message: str = ''


class StudentFlag(BaseModel):
    """A raised flag, as displayed on a profile section."""
    flag_id: str
    flag_name: str
    category: str
    message: str
    severity: str = 'high'
    color: str = 'red'


class NameMapping(BaseModel):
    """Cached identity of a student for name translation."""
    student_id: str
    name: str
    student_number: str


class Translation(BaseModel):
    """One name replaced by an identifier token."""
    original_name: str
    student_id: str
    student_name: str


class TranslationResult(BaseModel):
    """Rewritten message plus the substitutions made."""
    translated_message: str
    translations: List[Translation]


class EvaluateFlagRequest(BaseModel):
    """Request to evaluate an ad-hoc rule against a student."""
    student_id: str
    rule: FlagRule


class MessageRequest(BaseModel):
    """Free-text message to translate."""
    message: str


class TranslatedMessage(BaseModel):
    """Response of identifier-to-name translation."""
    translated_message: str


class UploadResponse(BaseModel):
    """Response from dataset upload endpoint."""
    success: bool
    message: str
    dataset: str
    record_count: int


class StudentFlagsResponse(BaseModel):
    """Flags for one student grouped by profile section."""
    student_id: str
    student_name: str
    sections: Dict[str, List[StudentFlag]]
