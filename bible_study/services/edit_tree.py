"""Typed view of an editor submission.

The editor marks rows it has not saved yet with a ``new-...`` placeholder id.
That string is inspected exactly once, in :func:`parse_node_ref`; the
reconciliation code only ever sees :class:`New` or :class:`Existing`.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Optional, Union

from bible_study.errors import StudyValidationError
from bible_study.schemas import DayEdit, QuestionEdit, StudyUpdatePayload, WeekEdit
from bible_study.services.validation import validate_study_edit

PLACEHOLDER_PREFIX = "new-"


@dataclass(frozen=True)
class New:
    """A node the editor added; it has no row yet."""


@dataclass(frozen=True)
class Existing:
    id: int


NodeRef = Union[New, Existing]


def parse_node_ref(raw: Union[int, str, None]) -> NodeRef:
    if isinstance(raw, bool) or raw is None:
        raise StudyValidationError([f"Invalid node id {raw!r}"])
    if isinstance(raw, int):
        if raw <= 0:
            raise StudyValidationError([f"Invalid node id {raw!r}"])
        return Existing(raw)
    text = str(raw).strip()
    if text.startswith(PLACEHOLDER_PREFIX):
        return New()
    if text.isdigit() and int(text) > 0:
        return Existing(int(text))
    raise StudyValidationError([f"Invalid node id {raw!r}"])


@dataclass(frozen=True)
class QuestionNode:
    ref: NodeRef
    question_text: str
    question_type: str
    order: int


@dataclass(frozen=True)
class DayNode:
    ref: NodeRef
    day_number: int
    title: str
    content: Optional[str] = None
    scripture: Optional[str] = None
    # None = leave persisted questions alone; [] = remove them all
    questions: Optional[tuple[QuestionNode, ...]] = None


@dataclass(frozen=True)
class WeekNode:
    ref: NodeRef
    week_number: int
    title: str
    description: Optional[str] = None
    days: Optional[tuple[DayNode, ...]] = None


@dataclass(frozen=True)
class StudyEdit:
    title: str
    description: Optional[str] = None
    author: Optional[str] = None
    cover_image: Optional[str] = None
    price: Decimal = Decimal("0")
    is_published: bool = False
    is_premium: bool = False
    weeks: Optional[tuple[WeekNode, ...]] = field(default=None)


def _question_node(q: QuestionEdit) -> QuestionNode:
    return QuestionNode(
        ref=parse_node_ref(q.id),
        question_text=q.question_text,
        question_type=q.question_type.strip().lower(),
        order=q.order,
    )


def _day_node(d: DayEdit) -> DayNode:
    return DayNode(
        ref=parse_node_ref(d.id),
        day_number=d.day_number,
        title=d.title,
        content=d.content or None,
        scripture=d.scripture or None,
        questions=None if d.questions is None else tuple(_question_node(q) for q in d.questions),
    )


def _week_node(w: WeekEdit) -> WeekNode:
    return WeekNode(
        ref=parse_node_ref(w.id),
        week_number=w.week_number,
        title=w.title,
        description=w.description or None,
        days=None if w.days is None else tuple(_day_node(d) for d in w.days),
    )


def edit_tree_from_payload(payload: StudyUpdatePayload) -> StudyEdit:
    """Study fields are a full overwrite: anything omitted falls back to its default.

    Field rules are checked before any node is built, so a rejected edit never
    reaches the store.
    """
    errors = validate_study_edit(payload)
    if errors:
        raise StudyValidationError(errors)
    meta = payload.metadata
    return StudyEdit(
        title=meta.title,
        description=meta.description or None,
        author=meta.author or None,
        cover_image=meta.cover_image or None,
        price=meta.price if meta.price is not None else Decimal("0"),
        is_published=bool(meta.is_published),
        is_premium=bool(meta.is_premium),
        weeks=None if payload.weeks is None else tuple(_week_node(w) for w in payload.weeks),
    )


__all__ = [
    "PLACEHOLDER_PREFIX",
    "New",
    "Existing",
    "NodeRef",
    "parse_node_ref",
    "QuestionNode",
    "DayNode",
    "WeekNode",
    "StudyEdit",
    "edit_tree_from_payload",
]
