# services/validation.py
from __future__ import annotations

from collections import Counter
from typing import Iterable, Optional

from bible_study.schemas import ParsedStudy, StudyUpdatePayload, ValidationResult
from bible_study.settings.config import settings


def _blank(value: Optional[str]) -> bool:
    return value is None or not str(value).strip()


def _positive(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value > 0


def _numbering_warnings(numbers: Iterable[int], label: str, where: str) -> list[str]:
    """Duplicates and gaps in caller-supplied numbering are reported, never fixed."""
    nums = [n for n in numbers if _positive(n)]
    if not nums:
        return []
    warnings: list[str] = []
    dupes = sorted(n for n, c in Counter(nums).items() if c > 1)
    if dupes:
        warnings.append(f"{where} has duplicate {label} numbers: {', '.join(map(str, dupes))}")
    missing = sorted(set(range(1, max(nums) + 1)) - set(nums))
    if missing:
        warnings.append(f"{where} is missing {label} numbers: {', '.join(map(str, missing))}")
    return warnings


def validate_parsed_study(study: ParsedStudy, question_types: Optional[Iterable[str]] = None) -> ValidationResult:
    """
    Structural check of a parsed study before anything is written.
    Missing required fields or malformed values are errors; numbering gaps,
    duplicates and empty weeks/days are warnings only.
    """
    allowed = frozenset(question_types) if question_types is not None else settings.question_types
    errors: list[str] = []
    warnings: list[str] = []

    if _blank(study.title):
        errors.append("Study title is required")

    weeks = study.weeks or []
    if not weeks:
        errors.append("Study must have at least one week/lesson")

    for w_idx, week in enumerate(weeks, start=1):
        w_label = f"Week {w_idx}"
        if not _positive(week.week_number):
            errors.append(f"{w_label} must have a positive week number")
        if _blank(week.title):
            errors.append(f"{w_label} is missing a title")

        days = week.days or []
        if not days:
            warnings.append(f"{w_label} has no days")

        for d_idx, day in enumerate(days, start=1):
            d_label = f"{w_label}, Day {d_idx}"
            if not _positive(day.day_number):
                errors.append(f"{d_label} must have a positive day number")
            if _blank(day.title):
                errors.append(f"{d_label} is missing a title")

            questions = day.questions or []
            if not questions:
                warnings.append(f"{d_label} has no questions")

            for q_idx, question in enumerate(questions, start=1):
                q_label = f"{d_label}, Question {q_idx}"
                if _blank(question.question_text):
                    errors.append(f"{q_label} is empty")
                qtype = (question.question_type or "").strip().lower()
                if qtype not in allowed:
                    errors.append(f"{q_label} has an unrecognized type {question.question_type!r}")
                if not isinstance(question.order, int) or isinstance(question.order, bool):
                    errors.append(f"{q_label} is missing its order")

            warnings.extend(
                _numbering_warnings((q.order for q in questions), "question order", d_label)
            )

        warnings.extend(_numbering_warnings((d.day_number for d in days), "day", w_label))

    warnings.extend(_numbering_warnings((w.week_number for w in weeks), "week", "Study"))

    return ValidationResult(valid=not errors, errors=errors, warnings=warnings)


def validate_study_edit(payload: StudyUpdatePayload, question_types: Optional[Iterable[str]] = None) -> list[str]:
    """Field rules of an editor submission; the same ones a new study must pass."""
    allowed = frozenset(question_types) if question_types is not None else settings.question_types
    errors: list[str] = []

    if _blank(payload.metadata.title):
        errors.append("Study title is required")

    for w_idx, week in enumerate(payload.weeks or [], start=1):
        w_label = f"Week {w_idx}"
        if not _positive(week.week_number):
            errors.append(f"{w_label} must have a positive week number")
        if _blank(week.title):
            errors.append(f"{w_label} is missing a title")

        for d_idx, day in enumerate(week.days or [], start=1):
            d_label = f"{w_label}, Day {d_idx}"
            if not _positive(day.day_number):
                errors.append(f"{d_label} must have a positive day number")
            if _blank(day.title):
                errors.append(f"{d_label} is missing a title")

            for q_idx, question in enumerate(day.questions or [], start=1):
                q_label = f"{d_label}, Question {q_idx}"
                if _blank(question.question_text):
                    errors.append(f"{q_label} is empty")
                if (question.question_type or "").strip().lower() not in allowed:
                    errors.append(f"{q_label} has an unrecognized type {question.question_type!r}")

    return errors


__all__ = ["validate_parsed_study", "validate_study_edit"]
