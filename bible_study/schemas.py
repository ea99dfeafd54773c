from datetime import datetime
from decimal import Decimal
from typing import List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Snake case in Python, camelCase on the wire (parser and editor both speak it)."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# =========================
# PARSED STUDY (document parser output)
# =========================
# Kept permissive on purpose: missing or blank fields are reported by the
# validator as field-level errors instead of a generic 422.
class ParsedQuestion(CamelModel):
    question_text: Optional[str] = None
    question_type: Optional[str] = "text"
    order: Optional[int] = None


class ParsedDay(CamelModel):
    day_number: Optional[int] = None
    title: Optional[str] = None
    content: Optional[str] = None
    scripture: Optional[str] = None
    questions: List[ParsedQuestion] = []


class ParsedWeek(CamelModel):
    week_number: Optional[int] = None
    title: Optional[str] = None
    description: Optional[str] = None
    days: List[ParsedDay] = []


class ParsedStudy(CamelModel):
    title: Optional[str] = None
    description: Optional[str] = None
    author: Optional[str] = None
    weeks: List[ParsedWeek] = []


class ClarifyingQuestion(CamelModel):
    id: str
    question: str
    context: Optional[str] = None
    options: Optional[List[str]] = None


class ParseOutcome(CamelModel):
    """What the document parser hands back: a study, or questions for the admin."""

    success: bool
    study: Optional[ParsedStudy] = None
    clarifying_questions: Optional[List[ClarifyingQuestion]] = None
    raw_text: Optional[str] = None
    error: Optional[str] = None

    @property
    def needs_clarification(self) -> bool:
        return not self.success and bool(self.clarifying_questions)


# =========================
# VALIDATION / STATS
# =========================
class ValidationResult(CamelModel):
    valid: bool
    errors: List[str] = []
    warnings: List[str] = []


class StudyStats(CamelModel):
    total_weeks: int = 0
    total_days: int = 0
    total_questions: int = 0
    average_questions_per_day: float = 0.0
    average_days_per_week: float = 0.0


# =========================
# CREATE
# =========================
class PublishOptions(CamelModel):
    is_published: bool = False
    is_premium: bool = False
    price: Decimal = Field(default=Decimal("0"), ge=0)


class CreateStudyRequest(PublishOptions):
    study: ParsedStudy

    @property
    def options(self) -> PublishOptions:
        return PublishOptions(is_published=self.is_published, is_premium=self.is_premium, price=self.price)


class CreateFromParseRequest(PublishOptions):
    outcome: ParseOutcome

    @property
    def options(self) -> PublishOptions:
        return PublishOptions(is_published=self.is_published, is_premium=self.is_premium, price=self.price)


# =========================
# READ
# =========================
def _as_float(value):
    # Numeric(10, 2) comes back as Decimal; the editor works with plain numbers
    return float(value) if isinstance(value, Decimal) else value


class QuestionRead(CamelModel):
    id: int
    day_id: int
    question_text: str
    question_type: str
    order: int

    model_config = ConfigDict(from_attributes=True)


class DayRead(CamelModel):
    id: int
    week_id: int
    day_number: int
    title: str
    content: Optional[str] = None
    scripture: Optional[str] = None
    questions: List[QuestionRead] = []

    model_config = ConfigDict(from_attributes=True)


class WeekRead(CamelModel):
    id: int
    study_id: int
    week_number: int
    title: str
    description: Optional[str] = None
    days: List[DayRead] = []

    model_config = ConfigDict(from_attributes=True)


class StudyRead(CamelModel):
    id: int
    title: str
    description: Optional[str] = None
    author: Optional[str] = None
    cover_image: Optional[str] = None
    is_published: bool
    is_premium: bool
    price: Optional[float] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    weeks: List[WeekRead] = []

    model_config = ConfigDict(from_attributes=True)

    @field_validator("price", mode="before")
    @classmethod
    def price_as_float(cls, value):
        return _as_float(value)


class StudySummary(CamelModel):
    id: int
    title: str
    author: Optional[str] = None
    is_published: bool
    is_premium: bool
    price: Optional[float] = None
    week_count: int = 0
    created_at: Optional[datetime] = None

    @field_validator("price", mode="before")
    @classmethod
    def price_as_float(cls, value):
        return _as_float(value)


# =========================
# EDIT (admin study editor)
# =========================
# `id` is a persisted id, or a "new-..." placeholder for rows the editor added.
class QuestionEdit(CamelModel):
    id: Union[int, str]
    question_text: str
    question_type: str = "text"
    order: int


class DayEdit(CamelModel):
    id: Union[int, str]
    day_number: int
    title: str
    content: Optional[str] = None
    scripture: Optional[str] = None
    questions: Optional[List[QuestionEdit]] = None


class WeekEdit(CamelModel):
    id: Union[int, str]
    week_number: int
    title: str
    description: Optional[str] = None
    days: Optional[List[DayEdit]] = None


class StudyMetadataEdit(CamelModel):
    title: str = Field(min_length=1)
    description: Optional[str] = None
    author: Optional[str] = None
    cover_image: Optional[str] = None
    price: Optional[Decimal] = Field(default=None, ge=0)
    is_published: Optional[bool] = None
    is_premium: Optional[bool] = None


class StudyUpdatePayload(CamelModel):
    metadata: StudyMetadataEdit
    weeks: Optional[List[WeekEdit]] = None


class LevelCounts(CamelModel):
    created: int = 0
    updated: int = 0
    unchanged: int = 0
    deleted: int = 0


class ReconcileReport(CamelModel):
    study_changed: bool = False
    weeks: LevelCounts = Field(default_factory=LevelCounts)
    days: LevelCounts = Field(default_factory=LevelCounts)
    questions: LevelCounts = Field(default_factory=LevelCounts)

    @property
    def total_created(self) -> int:
        return self.weeks.created + self.days.created + self.questions.created

    @property
    def total_deleted(self) -> int:
        return self.weeks.deleted + self.days.deleted + self.questions.deleted

    @property
    def total_updated(self) -> int:
        return self.weeks.updated + self.days.updated + self.questions.updated


# =========================
# RESPONSES
# =========================
class CreateStudyResponse(CamelModel):
    success: bool = True
    study: StudyRead
    stats: StudyStats
    warnings: List[str] = []


class UpdateStudyResponse(CamelModel):
    success: bool = True
    study: StudyRead
    report: ReconcileReport


class ValidateStudyResponse(CamelModel):
    validation: ValidationResult
    stats: StudyStats
